#!/usr/bin/env python3
"""
Quick Notes: short text snippets, tagged by category, stored encrypted.

Every note's text is kept only as an AES-256-GCM envelope
{ciphertext, 12-byte nonce, keyId}. The note list, the key records and the
options live as named slots in a small key-value store (a JSON file on disk).

Store layout:
  <store>/
    notes.json            # slots: active_encryption_key, encryption_key (legacy),
                          #        notes, notes_quarantine, options
    logs/quicknotes.log

Key lifecycle:
  - The first run generates the active key and tags it with a timestamp id.
  - A pre-versioning key found under "encryption_key" (or a key demoted by
    rotate-key) triggers one migration pass. The pass opens each note with the
    old key, re-encrypts it under the active key and writes the collection once.
  - The old key is discarded only when every note opened.

Commands:
  add <text>           Save a note (URL-looking text defaults to category "url")
  ls                   List notes, with --search / --category filters
  show <id>            Print a note in full
  edit <id>            Change text (re-encrypted) and/or category
  rm <id>              Delete a note
  rotate-key           New encryption key; migrate every note to it
  migrate              Retry an unfinished migration
  export <out>         Passphrase-protected backup (Argon2id + AES-256-GCM)
  import <src>         Merge a backup or a plain JSON export, skipping known ids
  config               Show or change options
  usage                Bytes used versus the store quota
"""
from __future__ import annotations

import sys

from pathlib import Path

from quicknotes.ui.cli import build_parser
from quicknotes.utils.errors import NoteStoreError, QuotaExceeded
from quicknotes.utils.logger import configure_logging


def main():
    parser = build_parser()
    args = parser.parse_args()
    configure_logging(Path(args.store), verbose=args.verbose)
    try:
        args.func(args)
    except QuotaExceeded as e:
        print(f"[!] {e}")
        sys.exit(2)
    except (NoteStoreError, OSError, ValueError) as e:
        print(f"[!] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
