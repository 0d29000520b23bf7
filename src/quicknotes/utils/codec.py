"""Normalization of persisted note records.

Records written by older versions of the extension come in several shapes.
`classify` maps any raw record onto exactly one of the variants below;
`NoteCodec.migrate` turns a variant into a canonical `Note`, or returns None
for `Unsalvageable`.

    CanonicalShape       {"text": {"ciphertext": b64, "nonce": b64, "keyId": str}}
    UntaggedShape        canonical envelope without "keyId" (pre-versioning)
    LooseEnvelopeShape   ciphertext/nonce as int lists, index maps, Buffer JSON,
                         or the old "encrypted"/"iv" member names
    PlaintextShape       "text" is a bare string, or an object holding plaintext
    Unsalvageable        anything else

Nothing here writes to storage; callers decide when a migrated collection is
persisted.
"""
import base64
import binascii
import logging

from dataclasses import dataclass
from typing import Any, Iterable, List, Tuple, Union

from quicknotes.crypto.aead import encrypt_text
from quicknotes.crypto.keys import KeyStore
from quicknotes.utils.dataModels import (
    BUILTIN_CATEGORIES,
    DroppedRecord,
    EncryptedEnvelope,
    FALLBACK_CATEGORY,
    NONCE_SIZE,
    Note,
    NoteCollection,
)
from quicknotes.utils.errors import KeyUnavailable
from quicknotes.utils.helper import new_note_id, now_iso, parse_timestamp

logger = logging.getLogger(__name__)

_PLAINTEXT_FIELDS = ("plaintext", "text", "value")


@dataclass(frozen=True)
class RecordHeader:
    id: int
    category: str
    timestamp: str
    source: str | None


@dataclass(frozen=True)
class CanonicalShape:
    header: RecordHeader
    envelope: EncryptedEnvelope


@dataclass(frozen=True)
class UntaggedShape:
    header: RecordHeader
    envelope: EncryptedEnvelope


@dataclass(frozen=True)
class LooseEnvelopeShape:
    header: RecordHeader
    envelope: EncryptedEnvelope


@dataclass(frozen=True)
class PlaintextShape:
    header: RecordHeader
    plaintext: str


@dataclass(frozen=True)
class Unsalvageable:
    reason: str


RecordShape = Union[CanonicalShape, UntaggedShape, LooseEnvelopeShape, PlaintextShape, Unsalvageable]


def strict_bytes(value: Any) -> bytes | None:
    """Canonical byte sequence: raw bytes, or a strict base64 string."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return None
    return None


def _int_list_bytes(values: Any) -> bytes | None:
    if not isinstance(values, list):
        return None
    if not all(isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255 for v in values):
        return None
    return bytes(values)


def coerce_bytes(value: Any) -> bytes | None:
    """Best-effort recovery of bytes that went through a lossy serializer."""
    data = strict_bytes(value)
    if data is not None:
        return data
    if isinstance(value, list):
        return _int_list_bytes(value)
    if isinstance(value, dict):
        # Node Buffer.toJSON()
        if value.get("type") == "Buffer" and "data" in value:
            return _int_list_bytes(value["data"])
        # Typed array through JSON.stringify: {"0": 12, "1": 200, ...}
        if value and all(isinstance(k, str) and k.isdigit() for k in value):
            ordered = sorted(value.items(), key=lambda kv: int(kv[0]))
            if [int(k) for k, _ in ordered] != list(range(len(ordered))):
                return None
            return _int_list_bytes([v for _, v in ordered])
    return None


def _parse_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def classify(raw: Any, categories: Iterable[str] = BUILTIN_CATEGORIES) -> RecordShape:
    if not isinstance(raw, dict):
        return Unsalvageable("record is not an object")
    note_id = _parse_id(raw.get("id"))
    if note_id is None:
        return Unsalvageable("missing or non-integer id")

    category = raw.get("category")
    if not isinstance(category, str) or category not in set(categories):
        category = FALLBACK_CATEGORY
    timestamp = raw.get("timestamp")
    if not isinstance(timestamp, str) or not timestamp:
        timestamp = now_iso()
    source = raw.get("source") if isinstance(raw.get("source"), str) else None
    header = RecordHeader(id=note_id, category=category, timestamp=timestamp, source=source)

    text = raw.get("text")
    if isinstance(text, str):
        if not text:
            return Unsalvageable("empty text")
        return PlaintextShape(header, text)
    if not isinstance(text, dict):
        return Unsalvageable("missing text")

    if "ciphertext" in text or "encrypted" in text:
        key_id = text.get("keyId") if isinstance(text.get("keyId"), str) and text.get("keyId") else None
        ct = strict_bytes(text.get("ciphertext"))
        nonce = strict_bytes(text.get("nonce"))
        if ct is not None and nonce is not None and len(nonce) == NONCE_SIZE:
            envelope = EncryptedEnvelope(ciphertext=ct, nonce=nonce, key_id=key_id)
            return CanonicalShape(header, envelope) if key_id else UntaggedShape(header, envelope)

        ct = coerce_bytes(text["ciphertext"] if "ciphertext" in text else text.get("encrypted"))
        nonce = coerce_bytes(text["nonce"] if "nonce" in text else text.get("iv"))
        if ct is None or nonce is None:
            return Unsalvageable("ciphertext or nonce cannot be decoded")
        if len(nonce) != NONCE_SIZE:
            return Unsalvageable(f"nonce is {len(nonce)} bytes, expected {NONCE_SIZE}")
        return LooseEnvelopeShape(header, EncryptedEnvelope(ciphertext=ct, nonce=nonce, key_id=key_id))

    for name in _PLAINTEXT_FIELDS:
        value = text.get(name)
        if isinstance(value, str) and value:
            return PlaintextShape(header, value)
    return Unsalvageable("text object has neither ciphertext nor plaintext")


def validate(raw: Any) -> bool:
    """True iff the record already carries a well-formed envelope."""
    if not isinstance(raw, dict) or raw.get("id") in (None, ""):
        return False
    text = raw.get("text")
    if not isinstance(text, dict):
        return False
    ct = strict_bytes(text.get("ciphertext"))
    nonce = strict_bytes(text.get("nonce"))
    return ct is not None and nonce is not None and len(nonce) == NONCE_SIZE


def sort_newest_first(notes: List[Note]) -> List[Note]:
    stamps = [parse_timestamp(n.timestamp) for n in notes]
    if all(a is not None and b is not None and a >= b for a, b in zip(stamps, stamps[1:])):
        return notes
    floor = parse_timestamp("0001-01-01T00:00:00Z")
    order = sorted(range(len(notes)), key=lambda i: stamps[i] or floor, reverse=True)
    return [notes[i] for i in order]


class NoteCodec:
    def __init__(self, keys: KeyStore, categories: Iterable[str] = BUILTIN_CATEGORIES):
        self.keys = keys
        self.categories = tuple(categories)

    def migrate(self, shape: RecordShape) -> Note | None:
        if isinstance(shape, Unsalvageable):
            return None
        h = shape.header
        if isinstance(shape, PlaintextShape):
            active = self.keys.active
            if active is None:
                raise KeyUnavailable("Key store is not initialized")
            envelope = encrypt_text(active.key, active.key_id, shape.plaintext)
        else:
            # Untagged envelopes keep key_id=None; the migration pass decides which key opens them
            envelope = shape.envelope
        return Note(id=h.id, text=envelope, category=h.category, timestamp=h.timestamp, source=h.source)

    def migrate_shape(self, raw: Any) -> Note | None:
        return self.migrate(classify(raw, self.categories))

    def normalize(self, raws: Any) -> Tuple[NoteCollection, bool]:
        """Map a persisted collection to canonical notes.

        Returns (collection, changed); `changed` is True when writing the
        notes back would differ from what was read.
        """
        collection = NoteCollection()
        if raws is None:
            return collection, False
        if not isinstance(raws, list):
            logger.warning("Persisted notes are not a list; quarantining the whole value")
            collection.dropped.append(DroppedRecord(raw=raws, reason="collection is not a list"))
            return collection, True

        notes: List[Note] = []
        dropped = collection.dropped
        changed = False
        taken = {_parse_id(r.get("id")) for r in raws if isinstance(r, dict)}
        seen: set = set()
        for raw in raws:
            shape = classify(raw, self.categories)
            note = self.migrate(shape)
            if note is None:
                dropped.append(DroppedRecord(raw=raw, reason=shape.reason))
                changed = True
                continue
            if note.id in seen:
                old_id = note.id
                note.id = new_note_id(taken | seen)
                taken.add(note.id)
                logger.warning("Duplicate note id %s re-assigned to %s", old_id, note.id)
            seen.add(note.id)
            if not isinstance(shape, CanonicalShape):
                collection.migrated.append(note.id)
            if note.to_dict() != raw:
                changed = True
            notes.append(note)

        if dropped:
            logger.warning(
                "Dropped %d unsalvageable note record(s): %s",
                len(dropped),
                "; ".join(d.reason for d in dropped),
            )
        collection.notes = sort_newest_first(notes)
        return collection, changed
