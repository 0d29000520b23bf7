import sys

import pytest

from quicknotes.notes import main
from quicknotes.storage.kv import JsonFileStore
from quicknotes.utils.dataModels import LEGACY_KEY_SLOT
from quicknotes.utils.helper import store_paths


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["quicknotes", *argv])
    main()


def test_add_list_show_remove(monkeypatch, capsys, tmp_path):
    store = str(tmp_path / "notes")
    run(monkeypatch, "add", store, "SELECT * FROM t;", "-c", "sql")
    saved = capsys.readouterr().out
    assert "Saved note id=" in saved
    note_id = saved.split("id=")[1].split()[0]

    run(monkeypatch, "ls", store, "-s", "select")
    listing = capsys.readouterr().out
    assert note_id in listing and "SQL" in listing

    run(monkeypatch, "show", store, note_id)
    assert "SELECT * FROM t;" in capsys.readouterr().out

    run(monkeypatch, "rm", store, note_id)
    run(monkeypatch, "ls", store)
    assert "(empty)" in capsys.readouterr().out


def test_quota_error_exit_code(monkeypatch, capsys, tmp_path):
    monkeypatch.setenv("QUICKNOTES_MAX_NOTE_SIZE", "3")
    with pytest.raises(SystemExit) as info:
        run(monkeypatch, "add", str(tmp_path), "too long")
    assert info.value.code == 2
    assert "Note too large" in capsys.readouterr().out


def test_unknown_id_exit_code(monkeypatch, tmp_path):
    with pytest.raises(SystemExit) as info:
        run(monkeypatch, "rm", str(tmp_path), "42")
    assert info.value.code == 1


def test_rotate_and_export(monkeypatch, capsys, tmp_path):
    store = str(tmp_path / "notes")
    run(monkeypatch, "add", store, "keep me")
    run(monkeypatch, "rotate-key", store)
    assert "Encryption key rotated" in capsys.readouterr().out

    out = tmp_path / "b.qnb"
    run(monkeypatch, "export", store, str(out), "--passphrase", "pw", "-t", "1", "-m", "8", "-p", "1")
    assert "Exported 1 note(s)" in capsys.readouterr().out

    other = str(tmp_path / "other")
    run(monkeypatch, "import", other, str(out), "--passphrase", "pw")
    assert "Imported 1 note(s)" in capsys.readouterr().out


def test_config_rejects_zero_max_display(monkeypatch, capsys, tmp_path):
    with pytest.raises(SystemExit) as info:
        run(monkeypatch, "config", str(tmp_path), "--max-display", "0")
    assert info.value.code == 1
    assert "maxNotesDisplay" in capsys.readouterr().out


def test_migrate_force_discards_unreadable_legacy_key(monkeypatch, capsys, tmp_path):
    JsonFileStore(store_paths(tmp_path)["store"]).set(LEGACY_KEY_SLOT, {"kty": "oct", "k": "short"})

    run(monkeypatch, "migrate", str(tmp_path))
    assert "--force" in capsys.readouterr().out

    run(monkeypatch, "migrate", str(tmp_path), "--force")
    assert "Migration complete" in capsys.readouterr().out

    run(monkeypatch, "rotate-key", str(tmp_path))
    assert "Encryption key rotated" in capsys.readouterr().out
