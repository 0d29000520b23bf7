import argparse
import sys

from pathlib import Path

from quicknotes.storage.kv import JsonFileStore
from quicknotes.storage.note_store import NoteStore
from quicknotes.utils.config import StoreLimits, save_options
from quicknotes.utils.errors import AuthenticationFailed
from quicknotes.utils.helper import filter_notes, store_paths

UNREADABLE = "Error: Could not decrypt note"


def open_store(args: argparse.Namespace) -> NoteStore:
    p = store_paths(Path(args.store))
    store = NoteStore.open(JsonFileStore(p["store"]), limits=StoreLimits.from_env())
    startup = store.startup_migration
    if startup is not None:
        print(f"[+] Migrated {len(startup.migrated)} note(s) to key {store.keys.active.key_id}")
        if startup.unrecoverable:
            print(f"[!] {len(startup.unrecoverable)} note(s) could not be decrypted with any known key")
    return store


def _one_line(text: str, width: int = 72) -> str:
    line = text.replace("\n", " ")
    return line if len(line) <= width else line[: width - 3] + "..."


def cmd_add(args: argparse.Namespace) -> None:
    store = open_store(args)
    note = store.save(args.text, category=args.category, source=args.source)
    print(f"[+] Saved note id={note.id} ({note.category})")


def cmd_ls(args: argparse.Namespace) -> None:
    store = open_store(args)
    collection = store.load_all()
    if collection.dropped:
        print(f"[!] {len(collection.dropped)} damaged record(s) moved to quarantine")
    entries = []
    for note in collection:
        try:
            entries.append((note, store.read(note)))
        except AuthenticationFailed:
            entries.append((note, None))
    limit = None if args.all else store.options.max_notes_display
    hits = filter_notes(entries, args.search, args.category, store.options.notes_order, limit)
    if not hits:
        print("(empty)")
        return
    for note, text in hits:
        shown = _one_line(text) if text is not None else UNREADABLE
        print(f"{note.id}\t{note.category.upper()}\t{note.timestamp}\t{shown}")


def cmd_show(args: argparse.Namespace) -> None:
    store = open_store(args)
    note = store.load_all().get(args.id)
    if note is None:
        print(f"[!] No such id: {args.id}")
        sys.exit(1)
    try:
        text = store.read(note)
    except AuthenticationFailed:
        text = UNREADABLE
    print(f"id:        {note.id}")
    print(f"category:  {note.category}")
    print(f"timestamp: {note.timestamp}")
    if note.source:
        print(f"source:    {note.source}")
    print(f"key:       {note.text.key_id}")
    print()
    print(text)


def cmd_edit(args: argparse.Namespace) -> None:
    if args.text is None and args.category is None:
        print("[!] Nothing to change; pass --text and/or --category")
        sys.exit(1)
    store = open_store(args)
    note = store.update(args.id, plaintext=args.text, category=args.category)
    print(f"[+] Updated id={note.id}")


def cmd_config(args: argparse.Namespace) -> None:
    store = open_store(args)
    options = store.options
    changed = False
    if args.add_category:
        if args.add_category not in options.categories:
            options.custom_categories.append(args.add_category)
            changed = True
    if args.default_category:
        options.default_category = args.default_category
        changed = True
    if args.order:
        options.notes_order = args.order
        changed = True
    if args.max_display is not None:
        options.max_notes_display = args.max_display
        changed = True
    if changed:
        save_options(store.kv, options)
        print("[+] Options saved")
    for key, value in options.to_dict().items():
        print(f"{key}: {value}")


def cmd_usage(args: argparse.Namespace) -> None:
    store = open_store(args)
    used, quota = store.usage()
    print(f"{used} / {quota} bytes ({used * 100 // quota}%)")
