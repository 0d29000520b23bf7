"""Encrypted note store: save, load, update and delete on top of a key-value backend.

Every mutating call reads the collection, computes the complete new state in
memory and issues a single write for it. Quota checks run before any
encryption or write work.
"""
import logging

from dataclasses import replace
from typing import Any, Iterable, List, Optional, Tuple

from quicknotes.crypto.aead import decrypt_text, encrypt_text, sealed_size
from quicknotes.crypto.keys import KeyStore
from quicknotes.storage.kv import KeyValueStore, encoded_size
from quicknotes.utils.codec import NoteCodec, PlaintextShape, Unsalvageable, classify, sort_newest_first
from quicknotes.utils.config import Options, StoreLimits, load_options
from quicknotes.utils.dataModels import EncryptedEnvelope, NONCE_SIZE, NOTES_SLOT, Note, NoteCollection
from quicknotes.utils.errors import (
    AuthenticationFailed,
    InvalidNote,
    KeyUnavailable,
    NoteNotFound,
    NoteTooLarge,
    PersistenceUnavailable,
    StorageFull,
    StoreInitError,
    TooManyNotes,
)
from quicknotes.utils.helper import new_note_id, now_iso, suggest_category
from quicknotes.utils.migration import MigrationCoordinator

logger = logging.getLogger(__name__)


class NoteStore:
    def __init__(self, kv: KeyValueStore, keys: KeyStore, limits: StoreLimits | None = None,
                 options: Options | None = None):
        self.kv = kv
        self.keys = keys
        self.limits = limits or StoreLimits()
        self.options = options or Options()
        self.codec = NoteCodec(keys, self.options.categories)
        self.coordinator = MigrationCoordinator(keys, kv, self.codec)
        self.startup_migration: Optional[NoteCollection] = None

    @classmethod
    def open(cls, kv: KeyValueStore, limits: StoreLimits | None = None,
             options: Options | None = None) -> "NoteStore":
        """Load keys and run the pending migration pass, if any."""
        try:
            if options is None:
                options = load_options(kv)
            keys = KeyStore(kv)
            keys.initialize()
            store = cls(kv, keys, limits=limits, options=options)
            store.startup_migration = store.coordinator.run()
        except KeyUnavailable as exc:
            raise StoreInitError(
                f"Encryption key unavailable ({exc}). Existing notes cannot be read until the key is restored."
            ) from exc
        except PersistenceUnavailable as exc:
            raise StoreInitError(f"Note storage cannot be accessed ({exc}).") from exc
        return store

    # -- reads -----------------------------------------------------------

    def load_all(self) -> NoteCollection:
        collection = self.coordinator.load()
        self._warn_usage()
        return collection

    def read(self, note: Note) -> str:
        """Plaintext of a note; AuthenticationFailed when no known key opens it."""
        for candidate in self.keys.candidates(note.text):
            try:
                return decrypt_text(candidate.key, note.text)
            except AuthenticationFailed:
                continue
        raise AuthenticationFailed(f"Note {note.id} cannot be decrypted with any known key")

    def usage(self) -> Tuple[int, int]:
        return self.kv.bytes_in_use(), self.kv.quota_bytes

    # -- writes ----------------------------------------------------------

    def save(self, plaintext: str, category: str | None = None, source: str | None = None) -> Note:
        text = self._clean_text(plaintext)
        if category is None:
            category = suggest_category(text, self.options.default_category)
        self._check_category(category)
        self._check_note_size(text)

        collection = self._normalized()
        if len(collection) >= self.limits.max_notes_count:
            raise TooManyNotes(
                f"Maximum number of notes ({self.limits.max_notes_count}) reached. Please delete some notes.",
                limit=self.limits.max_notes_count,
                actual=len(collection),
            )
        note_id = new_note_id(collection.ids())
        placeholder = Note(
            id=note_id,
            text=self._placeholder_envelope(text),
            category=category,
            timestamp=now_iso(),
            source=source,
        )
        self._check_storage([placeholder] + [self._projected(n) for n in collection.notes])

        self.coordinator.reconcile(collection)
        active = self.keys.active
        note = Note(
            id=note_id,
            text=encrypt_text(active.key, active.key_id, text),
            category=category,
            timestamp=placeholder.timestamp,
            source=source,
        )
        collection.notes.insert(0, note)
        self.coordinator.persist(collection)
        logger.info("Saved note %s (%s)", note.id, note.category)
        self._warn_usage()
        return note

    def update(self, note_id: int, plaintext: str | None = None, category: str | None = None) -> Note:
        text = None
        if plaintext is not None:
            text = self._clean_text(plaintext)
            self._check_note_size(text)
        if category is not None:
            self._check_category(category)

        collection = self._normalized()
        note = collection.get(note_id)
        if note is None:
            raise NoteNotFound(note_id)
        projected = [self._projected(n) for n in collection.notes]
        if text is not None:
            placeholder = replace(note, text=self._placeholder_envelope(text))
            projected = [placeholder if n.id == note_id else n for n in projected]
        self._check_storage(projected)

        self.coordinator.reconcile(collection)
        if text is not None:
            active = self.keys.active
            note.text = encrypt_text(active.key, active.key_id, text)
            if note_id in collection.unrecoverable:
                collection.unrecoverable.remove(note_id)
        if category is not None:
            note.category = category
        self.coordinator.persist(collection)
        logger.info("Updated note %s", note_id)
        return note

    def delete(self, note_id: int) -> None:
        collection, _ = self.coordinator.snapshot()
        if collection.get(note_id) is None:
            raise NoteNotFound(note_id)
        collection.notes = [n for n in collection.notes if n.id != note_id]
        self.coordinator.persist(collection)
        logger.info("Deleted note %s", note_id)

    def merge(self, records: Iterable[Any]) -> int:
        """Add raw note records of any known shape, skipping ids already present."""
        collection = self._normalized()
        existing = collection.ids()
        fresh = []
        skipped = 0
        for raw in records:
            shape = classify(raw, self.codec.categories)
            if isinstance(shape, Unsalvageable):
                logger.warning("Skipping imported record: %s", shape.reason)
                skipped += 1
                continue
            if shape.header.id in existing:
                skipped += 1
                continue
            if isinstance(shape, PlaintextShape):
                self._check_note_size(shape.plaintext)
            existing.add(shape.header.id)
            fresh.append(shape)

        total = len(collection) + len(fresh)
        if total > self.limits.max_notes_count:
            raise TooManyNotes(
                f"Import would exceed the maximum number of notes ({self.limits.max_notes_count}).",
                limit=self.limits.max_notes_count,
                actual=total,
            )
        if not fresh:
            return 0
        self._check_storage(
            [self._projected(n) for n in collection.notes] + [self._shape_placeholder(s) for s in fresh]
        )

        self.coordinator.reconcile(collection)
        imported = NoteCollection(notes=[self.codec.migrate(shape) for shape in fresh])
        self.coordinator.reconcile(imported)
        collection.notes = sort_newest_first(collection.notes + imported.notes)
        collection.unrecoverable.extend(imported.unrecoverable)
        self.coordinator.persist(collection)
        logger.info("Merged %d note(s), skipped %d", len(imported), skipped)
        return len(imported)

    # -- key lifecycle ---------------------------------------------------

    def rotate_key(self) -> Optional[NoteCollection]:
        self.keys.rotate()
        return self.coordinator.run()

    def finish_migration(self, force: bool = False) -> Optional[NoteCollection]:
        """Retry a pending migration; `force` drops the legacy key even if notes stay unreadable."""
        return self.coordinator.run(force_drop=force)

    # -- checks ----------------------------------------------------------

    @staticmethod
    def _clean_text(plaintext: str) -> str:
        text = (plaintext or "").strip()
        if not text:
            raise InvalidNote("Note text cannot be empty")
        return text

    def _check_category(self, category: str) -> None:
        if category not in self.options.categories:
            raise InvalidNote(f"Unknown category {category!r}")

    def _check_note_size(self, text: str) -> None:
        size = len(text.encode("utf-8"))
        if size > self.limits.max_note_size_bytes:
            raise NoteTooLarge(
                f"Note too large ({size} bytes). Maximum size is {self.limits.max_note_size_bytes} bytes.",
                limit=self.limits.max_note_size_bytes,
                actual=size,
            )

    def _placeholder_envelope(self, text: str) -> EncryptedEnvelope:
        # Same serialized length as the real envelope, without spending a nonce
        return EncryptedEnvelope(
            ciphertext=bytes(sealed_size(len(text.encode("utf-8")))),
            nonce=bytes(NONCE_SIZE),
            key_id=self.keys.active.key_id,
        )

    def _normalized(self) -> NoteCollection:
        collection, _ = self.codec.normalize(self.kv.get(NOTES_SLOT))
        return collection

    def _projected(self, note: Note) -> Note:
        """The note as it will be stored once re-encrypted under the active key."""
        active = self.keys.active
        if note.text.key_id == active.key_id:
            return note
        envelope = EncryptedEnvelope(
            ciphertext=bytes(len(note.text.ciphertext)),
            nonce=bytes(NONCE_SIZE),
            key_id=active.key_id,
        )
        return replace(note, text=envelope)

    def _shape_placeholder(self, shape) -> Note:
        h = shape.header
        if isinstance(shape, PlaintextShape):
            envelope = self._placeholder_envelope(shape.plaintext)
        else:
            envelope = shape.envelope
        note = Note(id=h.id, text=envelope, category=h.category, timestamp=h.timestamp, source=h.source)
        return self._projected(note)

    def _check_storage(self, notes: List[Note]) -> None:
        current = self.kv.get(NOTES_SLOT)
        current_size = encoded_size(NOTES_SLOT, current) if current is not None else 0
        projected = self.kv.bytes_in_use() - current_size + encoded_size(NOTES_SLOT, [n.to_dict() for n in notes])
        if projected > self.kv.quota_bytes:
            raise StorageFull(
                f"Storage quota exceeded ({projected} of {self.kv.quota_bytes} bytes). Please delete some notes.",
                limit=self.kv.quota_bytes,
                actual=projected,
            )

    def _warn_usage(self) -> None:
        used = self.kv.bytes_in_use()
        if used > self.limits.warning_threshold_bytes:
            logger.warning(
                "Storage usage: %dMB / %dMB",
                round(used / 1048576),
                round(self.kv.quota_bytes / 1048576),
            )
