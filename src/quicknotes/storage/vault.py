import os
import struct

from quicknotes.utils.dataModels import BACKUP_HDR_FMT, BACKUP_MAGIC, BACKUP_VERSION

from pathlib import Path
from typing import Tuple

BACKUP_HDR_SIZE = struct.calcsize(BACKUP_HDR_FMT)


def save_backup(path: Path, t: int, m: int, p: int, salt: bytes, nonce: bytes, ct: bytes) -> None:
    header = struct.pack(BACKUP_HDR_FMT, BACKUP_MAGIC, BACKUP_VERSION, t, m, p, salt, nonce)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("wb") as f:
        f.write(header)
        f.write(ct)
    os.replace(tmp, path)


def load_backup(path: Path) -> Tuple[int, int, int, bytes, bytes, bytes]:
    data = path.read_bytes()
    if len(data) < BACKUP_HDR_SIZE:
        raise ValueError(f"{path.name} is too small or corrupt")
    magic, ver, t, m, p, salt, nonce = struct.unpack(BACKUP_HDR_FMT, data[:BACKUP_HDR_SIZE])
    if magic != BACKUP_MAGIC:
        raise ValueError("Not a quicknotes backup (bad magic)")
    if ver != BACKUP_VERSION:
        raise ValueError(f"Unsupported backup version {ver}")
    ct = data[BACKUP_HDR_SIZE:]
    return t, m, p, salt, nonce, ct
