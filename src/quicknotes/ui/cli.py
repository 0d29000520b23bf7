import argparse

from quicknotes.utils.config import NOTES_ORDERS
from quicknotes.utils.core import cmd_add, cmd_config, cmd_edit, cmd_ls, cmd_show, cmd_usage
from quicknotes.utils.dataModels import DEFAULT_T_COST, DEFAULT_M_COST_KiB, DEFAULT_PARALLELISM
from quicknotes.utils.maintain import cmd_export, cmd_import, cmd_migrate, cmd_rm, cmd_rotate_key


def _store_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("store", help="Path to the notes directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Quick Notes: encrypted snippets by category")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_add = sub.add_parser("add", help="Save a new note")
    _store_arg(p_add)
    p_add.add_argument("text", help="Note text")
    p_add.add_argument("-c", "--category", help="sql, url, snippet, command, other or a custom category")
    p_add.add_argument("--source", help="URL the text came from")
    p_add.set_defaults(func=cmd_add)

    p_ls = sub.add_parser("ls", help="List notes")
    _store_arg(p_ls)
    p_ls.add_argument("-s", "--search", default="", help="Case-insensitive text filter")
    p_ls.add_argument("-c", "--category", help="Only this category")
    p_ls.add_argument("--all", action="store_true", help="Ignore maxNotesDisplay")
    p_ls.set_defaults(func=cmd_ls)

    p_show = sub.add_parser("show", help="Print one note in full")
    _store_arg(p_show)
    p_show.add_argument("id", type=int, help="Note id")
    p_show.set_defaults(func=cmd_show)

    p_edit = sub.add_parser("edit", help="Change a note's text and/or category")
    _store_arg(p_edit)
    p_edit.add_argument("id", type=int, help="Note id")
    p_edit.add_argument("--text", help="New text (re-encrypted under the active key)")
    p_edit.add_argument("-c", "--category", help="New category")
    p_edit.set_defaults(func=cmd_edit)

    p_rm = sub.add_parser("rm", help="Delete a note by id")
    _store_arg(p_rm)
    p_rm.add_argument("id", type=int, help="Note id")
    p_rm.set_defaults(func=cmd_rm)

    p_rot = sub.add_parser("rotate-key", help="Generate a new encryption key and re-encrypt every note")
    _store_arg(p_rot)
    p_rot.set_defaults(func=cmd_rotate_key)

    p_mig = sub.add_parser("migrate", help="Retry a pending key migration")
    _store_arg(p_mig)
    p_mig.add_argument("--force", action="store_true", help="Discard the old key even if some notes stay unreadable")
    p_mig.set_defaults(func=cmd_migrate)

    p_exp = sub.add_parser("export", help="Write a passphrase-protected backup")
    _store_arg(p_exp)
    p_exp.add_argument("out", help="Backup file to write")
    p_exp.add_argument("--passphrase", required=True)
    p_exp.add_argument("-t", type=int, default=DEFAULT_T_COST, help="Argon2 time cost (iterations)")
    p_exp.add_argument("-m", type=int, default=DEFAULT_M_COST_KiB, help="Argon2 memory (KiB)")
    p_exp.add_argument("-p", type=int, default=DEFAULT_PARALLELISM, help="Argon2 parallelism")
    p_exp.set_defaults(func=cmd_export)

    p_imp = sub.add_parser("import", help="Merge notes from a backup or a JSON export")
    _store_arg(p_imp)
    p_imp.add_argument("src", help="Backup or JSON file")
    mode = p_imp.add_mutually_exclusive_group(required=True)
    mode.add_argument("--passphrase", help="Passphrase of an encrypted backup")
    mode.add_argument("--json", action="store_true", help="Source is a plain JSON list of notes")
    p_imp.set_defaults(func=cmd_import)

    p_cfg = sub.add_parser("config", help="Show or change options")
    _store_arg(p_cfg)
    p_cfg.add_argument("--default-category")
    p_cfg.add_argument("--add-category", help="Register a custom category")
    p_cfg.add_argument("--order", choices=NOTES_ORDERS)
    p_cfg.add_argument("--max-display", type=int)
    p_cfg.set_defaults(func=cmd_config)

    p_use = sub.add_parser("usage", help="Show storage usage")
    _store_arg(p_use)
    p_use.set_defaults(func=cmd_usage)

    return p
