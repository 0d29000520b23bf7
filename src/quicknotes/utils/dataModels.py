import base64

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

MAX_NOTE_SIZE_BYTES = 4194304  # 4 MiB
WARNING_THRESHOLD_BYTES = 4194304
MAX_NOTES_COUNT = 10000
DEFAULT_QUOTA_BYTES = 5242880  # 5 MiB, same as the browser local store

DEFAULT_T_COST = 4
DEFAULT_M_COST_KiB = 262144  # 256 MiB (tune per device)
DEFAULT_PARALLELISM = 2

BACKUP_MAGIC = b"QNB1"
BACKUP_VERSION = 1
BACKUP_HDR_FMT = ">4sBIII16s12s"  # magic, ver, t, m, p, salt(16), nonce(12)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_BITS = 256

ACTIVE_KEY_SLOT = "active_encryption_key"
LEGACY_KEY_SLOT = "encryption_key"
NOTES_SLOT = "notes"
QUARANTINE_SLOT = "notes_quarantine"
OPTIONS_SLOT = "options"

BUILTIN_CATEGORIES = ("sql", "url", "snippet", "command", "other")
FALLBACK_CATEGORY = "other"


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@dataclass(frozen=True)
class EncryptedEnvelope:
    ciphertext: bytes
    nonce: bytes
    key_id: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ciphertext": b64e(self.ciphertext), "nonce": b64e(self.nonce)}
        if self.key_id is not None:
            d["keyId"] = self.key_id
        return d


@dataclass
class Note:
    id: int
    text: EncryptedEnvelope
    category: str
    timestamp: str
    source: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "text": self.text.to_dict(),
            "category": self.category,
            "timestamp": self.timestamp,
        }
        if self.source is not None:
            d["source"] = self.source
        return d


@dataclass
class DroppedRecord:
    """A persisted record the codec could not turn into a Note."""
    raw: Any
    reason: str


@dataclass
class NoteCollection:
    """Newest-first list of notes plus what happened while loading them."""
    notes: List[Note] = field(default_factory=list)
    dropped: List[DroppedRecord] = field(default_factory=list)
    unrecoverable: List[int] = field(default_factory=list)
    migrated: List[int] = field(default_factory=list)
    rewritten: bool = False

    def __iter__(self) -> Iterator[Note]:
        return iter(self.notes)

    def __len__(self) -> int:
        return len(self.notes)

    def get(self, note_id: int) -> Optional[Note]:
        return next((n for n in self.notes if n.id == note_id), None)

    def ids(self) -> set:
        return {n.id for n in self.notes}

    def to_list(self) -> List[Dict[str, Any]]:
        return [n.to_dict() for n in self.notes]
