"""Error types raised by the note store."""


class NoteStoreError(Exception):
    """Base error for quicknotes."""


class ConfigError(NoteStoreError):
    """Raised when options or limits cannot be parsed."""


class KeyUnavailable(NoteStoreError):
    """No usable encryption key. The store cannot be used until this is resolved."""


class AuthenticationFailed(NoteStoreError):
    """A single decrypt attempt failed: wrong key, tampered data or bad nonce."""


class MalformedRecord(NoteStoreError):
    def __init__(self, reason: str, record_id=None):
        super().__init__(reason)
        self.reason = reason
        self.record_id = record_id


class PersistenceUnavailable(NoteStoreError):
    """The key-value backend could not be read or written."""


class NoteNotFound(NoteStoreError):
    def __init__(self, note_id):
        super().__init__(f"No such note id: {note_id}")
        self.note_id = note_id


class InvalidNote(NoteStoreError):
    """Empty text or unknown category."""


class StoreInitError(NoteStoreError):
    """Store-wide failure during open; carries a single actionable message."""


class QuotaExceeded(NoteStoreError):
    def __init__(self, message: str, limit: int, actual: int):
        super().__init__(message)
        self.limit = limit
        self.actual = actual


class NoteTooLarge(QuotaExceeded):
    pass


class TooManyNotes(QuotaExceeded):
    pass


class StorageFull(QuotaExceeded):
    pass


class RotationPending(NoteStoreError):
    """A previous key is still parked; rotating again would discard it."""
