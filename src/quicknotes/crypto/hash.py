from argon2.low_level import hash_secret_raw, Type as Argon2Type
from cryptography.hazmat.primitives import hashes

from quicknotes.utils.dataModels import KEY_BITS

SALT_SIZE = 16


def sha3_512_bytes(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA3_512())
    digest.update(data)
    return digest.finalize()


def derive_backup_key(passphrase: str, salt: bytes, t_cost: int, m_cost_kib: int, parallelism: int) -> bytes:
    """Backup key = Argon2id(SHA3-512(passphrase)) -> 32 bytes"""
    if not passphrase:
        raise ValueError("Backup passphrase must not be empty")
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Backup salt must be {SALT_SIZE} bytes")
    prehash = sha3_512_bytes(passphrase.encode("utf-8"))
    return hash_secret_raw(
        secret=prehash,
        salt=salt,
        time_cost=t_cost,
        memory_cost=m_cost_kib,
        parallelism=parallelism,
        hash_len=KEY_BITS // 8,
        type=Argon2Type.ID,
    )
