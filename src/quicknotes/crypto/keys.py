"""Key lifecycle for the note store.

Two slots in the key-value store hold key material:

    active_encryption_key   {"key": <JWK>, "keyId": "v<ms>"}
    encryption_key          bare JWK, as written before key versioning existed;
                            also used to park a key demoted by rotate() until
                            every note has been re-encrypted ("kid" set then)

Presence of the legacy slot means a migration pass is still pending.
"""
import base64
import binascii
import logging

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from quicknotes.crypto.aead import generate_key
from quicknotes.storage.kv import KeyValueStore
from quicknotes.utils.dataModels import ACTIVE_KEY_SLOT, EncryptedEnvelope, LEGACY_KEY_SLOT
from quicknotes.utils.errors import KeyUnavailable, RotationPending
from quicknotes.utils.helper import new_key_id

logger = logging.getLogger(__name__)

_AES_KEY_SIZES = (16, 24, 32)


@dataclass(frozen=True)
class KeyMaterial:
    key: bytes
    key_id: str | None = None

    def __repr__(self) -> str:
        return f"KeyMaterial(key_id={self.key_id!r})"

    def to_jwk(self) -> Dict[str, Any]:
        jwk = {
            "kty": "oct",
            "k": base64.urlsafe_b64encode(self.key).rstrip(b"=").decode("ascii"),
            "alg": f"A{len(self.key) * 8}GCM",
            "ext": True,
            "key_ops": ["encrypt", "decrypt"],
        }
        return jwk

    @staticmethod
    def from_jwk(jwk: Any, key_id: str | None = None) -> "KeyMaterial":
        if not isinstance(jwk, dict) or jwk.get("kty") != "oct" or not isinstance(jwk.get("k"), str):
            raise KeyUnavailable("Stored key is not an AES JWK")
        k = jwk["k"]
        try:
            raw = base64.b64decode(k + "=" * (-len(k) % 4), altchars=b"-_", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise KeyUnavailable(f"Stored key is not valid base64url: {exc}") from exc
        if len(raw) not in _AES_KEY_SIZES:
            raise KeyUnavailable(f"Stored key has invalid length {len(raw)}")
        alg = jwk.get("alg")
        if alg is not None and alg != f"A{len(raw) * 8}GCM":
            raise KeyUnavailable(f"Stored key algorithm {alg!r} does not match its length")
        return KeyMaterial(key=raw, key_id=key_id)


class KeyStore:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self.active: Optional[KeyMaterial] = None
        self.legacy: Optional[KeyMaterial] = None

    def initialize(self) -> Tuple[KeyMaterial, Optional[KeyMaterial]]:
        record = self.kv.get(ACTIVE_KEY_SLOT)
        if record is None:
            self.active = self._create_active(previous_id=None)
        else:
            if not isinstance(record, dict) or not isinstance(record.get("keyId"), str) or not record["keyId"]:
                # Regenerating here would orphan every note encrypted under the lost key
                raise KeyUnavailable("Active key record is corrupt")
            self.active = KeyMaterial.from_jwk(record.get("key"), key_id=record["keyId"])
        self.legacy = self._load_legacy()
        return self.active, self.legacy

    def rotate(self) -> KeyMaterial:
        if self.active is None:
            self.initialize()
        if self.pending:
            pending = self.legacy.key_id if self.legacy and self.legacy.key_id else "(unversioned)"
            raise RotationPending(
                f"Key {pending} is still awaiting migration; resolve it before rotating again"
            )
        previous = self.active
        # Park the old key first so a crash before the new record lands loses nothing
        parked = previous.to_jwk()
        parked["kid"] = previous.key_id
        self.kv.set(LEGACY_KEY_SLOT, parked)
        self.active = self._create_active(previous_id=previous.key_id)
        self.legacy = previous
        logger.info("Rotated encryption key %s -> %s", previous.key_id, self.active.key_id)
        return self.active

    @property
    def pending(self) -> bool:
        """True while the legacy slot holds anything, readable or not."""
        return self.legacy is not None or self.kv.get(LEGACY_KEY_SLOT) is not None

    def drop_legacy(self) -> None:
        if self.kv.get(LEGACY_KEY_SLOT) is not None:
            self.kv.remove([LEGACY_KEY_SLOT])
            logger.info("Dropped legacy encryption key %s", self.legacy.key_id if self.legacy else None)
        self.legacy = None

    def candidates(self, envelope: EncryptedEnvelope) -> List[KeyMaterial]:
        """Keys to try for an envelope, most likely first."""
        if self.active is None:
            raise KeyUnavailable("Key store is not initialized")
        if self.legacy is None:
            return [self.active]
        if envelope.key_id == self.active.key_id:
            return [self.active, self.legacy]
        # Untagged envelopes predate key versioning, so they belong to the legacy key
        if envelope.key_id is None or envelope.key_id == self.legacy.key_id:
            return [self.legacy, self.active]
        return [self.active, self.legacy]

    def _create_active(self, previous_id: str | None) -> KeyMaterial:
        material = KeyMaterial(key=generate_key(), key_id=new_key_id(previous_id))
        self.kv.set(ACTIVE_KEY_SLOT, {"key": material.to_jwk(), "keyId": material.key_id})
        logger.info("Generated encryption key %s", material.key_id)
        return material

    def _load_legacy(self) -> Optional[KeyMaterial]:
        jwk = self.kv.get(LEGACY_KEY_SLOT)
        if jwk is None:
            return None
        kid = jwk.get("kid") if isinstance(jwk, dict) else None
        try:
            legacy = KeyMaterial.from_jwk(jwk, key_id=kid if isinstance(kid, str) else None)
        except KeyUnavailable as exc:
            logger.warning("Ignoring unreadable legacy key: %s", exc)
            return None
        if self.active is not None and legacy.key == self.active.key:
            # Left behind by a rotation that stopped before the new key was stored
            self.kv.remove([LEGACY_KEY_SLOT])
            return None
        return legacy
