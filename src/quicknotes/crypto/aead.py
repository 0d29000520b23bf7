import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from typing import Tuple

from quicknotes.utils.dataModels import EncryptedEnvelope, KEY_BITS, NONCE_SIZE, TAG_SIZE
from quicknotes.utils.errors import AuthenticationFailed, KeyUnavailable


def generate_key() -> bytes:
    try:
        return AESGCM.generate_key(bit_length=KEY_BITS)
    except Exception as exc:
        raise KeyUnavailable(f"Key generation failed: {exc}") from exc


def aead_encrypt(key: bytes, plaintext: bytes, aad: bytes | None = None) -> Tuple[bytes, bytes]:
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key)
    ct = aesgcm.encrypt(nonce, plaintext, aad)
    return nonce, ct


def aead_decrypt(key: bytes, nonce: bytes, ct: bytes, aad: bytes | None = None) -> bytes:
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(nonce, ct, aad)


def sealed_size(plaintext_len: int) -> int:
    """Ciphertext length AES-GCM produces for a plaintext of the given length."""
    return plaintext_len + TAG_SIZE


def encrypt_text(key: bytes, key_id: str | None, plaintext: str) -> EncryptedEnvelope:
    nonce, ct = aead_encrypt(key, plaintext.encode("utf-8"))
    return EncryptedEnvelope(ciphertext=ct, nonce=nonce, key_id=key_id)


def decrypt_text(key: bytes, envelope: EncryptedEnvelope) -> str:
    """Verify and decrypt an envelope. Raises AuthenticationFailed instead of returning garbage."""
    # Reject before touching AES-GCM: other nonce lengths are legal for GCM but never ours
    if len(envelope.nonce) != NONCE_SIZE:
        raise AuthenticationFailed(f"nonce must be {NONCE_SIZE} bytes, got {len(envelope.nonce)}")
    if len(envelope.ciphertext) < TAG_SIZE:
        raise AuthenticationFailed("ciphertext shorter than the authentication tag")
    try:
        pt = aead_decrypt(key, envelope.nonce, envelope.ciphertext)
    except InvalidTag as exc:
        raise AuthenticationFailed("authentication tag mismatch") from exc
    except ValueError as exc:
        # Wrong key length
        raise AuthenticationFailed(str(exc)) from exc
    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise AuthenticationFailed("decrypted payload is not UTF-8 text") from exc
