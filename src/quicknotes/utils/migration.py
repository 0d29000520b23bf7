"""Re-encryption of notes across key versions.

A load always runs the same steps: normalize every persisted record, open each
envelope with the key it most likely belongs to, re-encrypt anything not
already under the active key, then write the whole collection back once if
anything changed. When a legacy key is present at startup that load is the
migration pass; the legacy key is dropped only once every note opened.
"""
import json
import logging

from typing import Any, Dict, List, Optional, Tuple

from quicknotes.crypto.aead import decrypt_text, encrypt_text
from quicknotes.crypto.keys import KeyStore
from quicknotes.storage.kv import KeyValueStore
from quicknotes.utils.codec import NoteCodec
from quicknotes.utils.dataModels import LEGACY_KEY_SLOT, NOTES_SLOT, NoteCollection, QUARANTINE_SLOT
from quicknotes.utils.errors import AuthenticationFailed, KeyUnavailable, PersistenceUnavailable, QuotaExceeded
from quicknotes.utils.helper import now_iso

logger = logging.getLogger(__name__)


def _quarantine_key(reason: Any, record: Any) -> str:
    return json.dumps([reason, record], sort_keys=True, ensure_ascii=False)


class MigrationCoordinator:
    def __init__(self, keys: KeyStore, kv: KeyValueStore, codec: NoteCodec):
        self.keys = keys
        self.kv = kv
        self.codec = codec

    def reconcile(self, collection: NoteCollection) -> bool:
        """Bring every decryptable note under the active key, in memory.

        Returns True when at least one envelope was replaced.
        """
        active = self.keys.active
        if active is None:
            raise KeyUnavailable("Key store is not initialized")
        dirty = False
        for note in collection.notes:
            plaintext = None
            opened_with = None
            for candidate in self.keys.candidates(note.text):
                try:
                    plaintext = decrypt_text(candidate.key, note.text)
                except AuthenticationFailed:
                    continue
                opened_with = candidate
                break
            if opened_with is None:
                # Left untouched so a later pass with the right key can still recover it
                if note.id not in collection.unrecoverable:
                    collection.unrecoverable.append(note.id)
                continue
            if opened_with.key == active.key and note.text.key_id == active.key_id:
                continue
            note.text = encrypt_text(active.key, active.key_id, plaintext)
            if note.id not in collection.migrated:
                collection.migrated.append(note.id)
            dirty = True

        if collection.unrecoverable:
            logger.warning(
                "%d note(s) cannot be decrypted with any known key: %s",
                len(collection.unrecoverable),
                ", ".join(str(i) for i in collection.unrecoverable),
            )
        return dirty

    def snapshot(self) -> Tuple[NoteCollection, bool]:
        """Normalized and reconciled collection, without writing anything."""
        collection, changed = self.codec.normalize(self.kv.get(NOTES_SLOT))
        dirty = self.reconcile(collection)
        return collection, changed or dirty

    def load(self, strict: bool = False) -> NoteCollection:
        """Read, normalize and reconcile the collection, writing it back if it changed.

        A failed write-back is logged and the in-memory collection is still
        returned, unless `strict` is set.
        """
        collection, needs_write = self.snapshot()
        if needs_write:
            try:
                self.persist(collection)
            except (PersistenceUnavailable, QuotaExceeded) as exc:
                if strict:
                    raise
                logger.error("Could not write back migrated notes: %s", exc)
                return collection
            logger.info(
                "Rewrote note collection: %d migrated, %d quarantined",
                len(collection.migrated),
                len(collection.dropped),
            )
        return collection

    def persist(self, collection: NoteCollection) -> None:
        """One write for the collection; quarantined records are parked first."""
        if collection.dropped:
            parked: List[Dict[str, Any]] = list(self.kv.get(QUARANTINE_SLOT) or [])
            # A failed notes write leaves the same records behind for the next load
            known = {_quarantine_key(p.get("reason"), p.get("record")) for p in parked if isinstance(p, dict)}
            stamp = now_iso()
            fresh = [
                {"reason": d.reason, "record": d.raw, "quarantinedAt": stamp}
                for d in collection.dropped
                if _quarantine_key(d.reason, d.raw) not in known
            ]
            if fresh:
                self.kv.set(QUARANTINE_SLOT, parked + fresh)
        self.kv.set(NOTES_SLOT, collection.to_list())
        collection.rewritten = True

    def run(self, force_drop: bool = False) -> Optional[NoteCollection]:
        """Migration pass; a no-op when no legacy key is loaded.

        With `force_drop`, a legacy slot that holds no readable key is
        removed so rotation is possible again.
        """
        if self.keys.legacy is None:
            if force_drop and self.kv.get(LEGACY_KEY_SLOT) is not None:
                logger.warning("Discarding unreadable legacy key record")
                self.keys.drop_legacy()
                return self.load(strict=True)
            return None
        legacy_id = self.keys.legacy.key_id
        logger.info("Migrating notes from legacy key %s to %s", legacy_id, self.keys.active.key_id)
        collection = self.load(strict=True)
        if not collection.unrecoverable or force_drop:
            self.keys.drop_legacy()
        else:
            logger.warning(
                "Keeping legacy key %s: %d note(s) still unreadable",
                legacy_id,
                len(collection.unrecoverable),
            )
        return collection
