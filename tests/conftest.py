"""
Shared pytest fixtures for quicknotes tests.

Everything runs against the in-memory key-value store, so no files are
touched unless a test asks for tmp_path.
"""

import base64
import os

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from quicknotes.storage.kv import MemoryStore
from quicknotes.storage.note_store import NoteStore


@pytest.fixture
def kv():
    return MemoryStore()


@pytest.fixture
def store(kv):
    return NoteStore.open(kv)


@pytest.fixture
def legacy_key():
    """Raw 256-bit key plus its JWK, as the pre-versioning extension exported it."""
    raw = AESGCM.generate_key(bit_length=256)
    jwk = {
        "kty": "oct",
        "k": base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii"),
        "alg": "A256GCM",
        "ext": True,
        "key_ops": ["encrypt", "decrypt"],
    }
    return raw, jwk


@pytest.fixture
def legacy_note():
    """Factory for a note record in the extension's old {encrypted, iv} shape."""

    def make(key: bytes, text: str, note_id: int = 1, **extra):
        iv = os.urandom(12)
        ct = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
        record = {
            "id": note_id,
            "text": {"encrypted": list(ct), "iv": list(iv)},
            "category": "other",
            "timestamp": "2024-01-01T00:00:00.000Z",
        }
        record.update(extra)
        return record

    return make
