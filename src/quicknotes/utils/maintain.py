import argparse
import json
import logging
import os

from cryptography.exceptions import InvalidTag
from pathlib import Path

from quicknotes.crypto.aead import aead_decrypt, aead_encrypt
from quicknotes.crypto.hash import SALT_SIZE, derive_backup_key
from quicknotes.storage.note_store import NoteStore
from quicknotes.storage.vault import load_backup, save_backup
from quicknotes.utils.core import open_store
from quicknotes.utils.dataModels import DEFAULT_M_COST_KiB, DEFAULT_PARALLELISM, DEFAULT_T_COST
from quicknotes.utils.errors import AuthenticationFailed, MalformedRecord
from quicknotes.utils.helper import now_iso

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = 1


def export_backup(store: NoteStore, path: Path, passphrase: str, t: int = DEFAULT_T_COST,
                  m: int = DEFAULT_M_COST_KiB, p: int = DEFAULT_PARALLELISM) -> int:
    """Write every readable note, in plaintext, into a passphrase-encrypted backup file."""
    collection = store.load_all()
    entries = []
    for note in collection:
        try:
            text = store.read(note)
        except AuthenticationFailed:
            logger.warning("Leaving unreadable note %s out of the backup", note.id)
            continue
        entry = {"id": note.id, "text": text, "category": note.category, "timestamp": note.timestamp}
        if note.source is not None:
            entry["source"] = note.source
        entries.append(entry)

    inner = json.dumps(
        {"version": BACKUP_FORMAT_VERSION, "exportedAt": now_iso(), "notes": entries},
        ensure_ascii=False,
        separators=(",", ":"),
    ).encode("utf-8")

    salt = os.urandom(SALT_SIZE)
    kbackup = derive_backup_key(passphrase, salt, t, m, p)
    nonce, ct = aead_encrypt(kbackup, inner)
    save_backup(Path(path), t, m, p, salt, nonce, ct)
    logger.info("Exported %d note(s) to %s", len(entries), path)
    return len(entries)


def import_backup(store: NoteStore, path: Path, passphrase: str) -> int:
    try:
        t, m, p, salt, nonce, ct = load_backup(Path(path))
    except ValueError as exc:
        raise MalformedRecord(str(exc)) from exc
    kbackup = derive_backup_key(passphrase, salt, t, m, p)
    try:
        inner = aead_decrypt(kbackup, nonce, ct)
    except InvalidTag as exc:
        raise AuthenticationFailed("Wrong passphrase or corrupted backup") from exc
    try:
        payload = json.loads(inner.decode("utf-8"))
    except ValueError as exc:
        raise MalformedRecord(f"Backup payload is not JSON: {exc}") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("notes"), list):
        raise MalformedRecord("Backup payload has no notes list")
    return store.merge(payload["notes"])


def import_json(store: NoteStore, path: Path) -> int:
    """Merge a plain JSON export (a list of note records, as the extension wrote it)."""
    try:
        records = json.loads(Path(path).read_text(encoding="utf-8"))
    except ValueError as exc:
        raise MalformedRecord(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(records, list):
        raise MalformedRecord(f"{path} does not contain a list of notes")
    return store.merge(records)


def cmd_rm(args: argparse.Namespace) -> None:
    store = open_store(args)
    store.delete(args.id)
    print(f"[+] Removed id={args.id}")


def cmd_rotate_key(args: argparse.Namespace) -> None:
    store = open_store(args)
    old_id = store.keys.active.key_id
    collection = store.rotate_key()
    print(f"[+] Encryption key rotated: {old_id} -> {store.keys.active.key_id}")
    if collection is not None and collection.unrecoverable:
        print(f"[!] {len(collection.unrecoverable)} note(s) could not be re-encrypted; previous key kept")


def cmd_migrate(args: argparse.Namespace) -> None:
    store = open_store(args)
    if not store.keys.pending:
        print("[+] No migration pending")
        return
    if store.keys.legacy is None and not args.force:
        print("[!] The stored legacy key cannot be read; use --force to discard it")
        return
    collection = store.finish_migration(force=args.force)
    if not store.keys.pending:
        print(f"[+] Migration complete ({len(collection.migrated)} note(s) re-encrypted)")
    else:
        print(f"[!] {len(collection.unrecoverable)} note(s) still unreadable; use --force to discard the old key")


def cmd_export(args: argparse.Namespace) -> None:
    store = open_store(args)
    count = export_backup(store, Path(args.out), args.passphrase, args.t, args.m, args.p)
    print(f"[+] Exported {count} note(s) -> {args.out}")


def cmd_import(args: argparse.Namespace) -> None:
    store = open_store(args)
    if args.json:
        count = import_json(store, Path(args.src))
    else:
        count = import_backup(store, Path(args.src), args.passphrase)
    print(f"[+] Imported {count} note(s)")
