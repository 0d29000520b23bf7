import json

import pytest

from quicknotes.storage.kv import JsonFileStore, MemoryStore, encoded_size
from quicknotes.utils.errors import PersistenceUnavailable, StorageFull


def test_encoded_size_is_key_plus_compact_json():
    assert encoded_size("notes", [1, 2]) == len("notes") + len("[1,2]")
    assert encoded_size("k", "é") == 1 + len('"é"'.encode("utf-8"))


def test_get_returns_a_copy():
    kv = MemoryStore()
    kv.set("a", {"x": [1]})
    got = kv.get("a")
    got["x"].append(2)
    assert kv.get("a") == {"x": [1]}


def test_get_default():
    assert MemoryStore().get("missing", 7) == 7


def test_set_rejects_over_quota_without_writing():
    kv = MemoryStore(quota_bytes=20)
    kv.set("a", "12345")
    with pytest.raises(StorageFull):
        kv.set("b", "x" * 30)
    assert kv.get("b") is None
    assert kv.writes == 1


def test_replacing_a_slot_only_counts_the_difference():
    kv = MemoryStore(quota_bytes=20)
    kv.set("a", "x" * 15)
    kv.set("a", "y" * 15)
    assert kv.get("a") == "y" * 15


def test_non_json_value_rejected():
    with pytest.raises(PersistenceUnavailable):
        MemoryStore().set("a", object())


def test_remove():
    kv = MemoryStore()
    kv.set("a", 1)
    kv.set("b", 2)
    kv.remove(["a", "missing"])
    kv.remove("zzz")
    assert kv.get("a") is None
    assert kv.get("b") == 2
    assert kv.writes == 3


def test_file_store_round_trip(tmp_path):
    path = tmp_path / "store" / "notes.json"
    kv = JsonFileStore(path)
    kv.set("notes", [{"id": 1}])
    assert json.loads(path.read_text(encoding="utf-8")) == {"notes": [{"id": 1}]}
    assert JsonFileStore(path).get("notes") == [{"id": 1}]
    assert not path.with_suffix(".tmp").exists()


def test_file_store_missing_file_is_empty(tmp_path):
    kv = JsonFileStore(tmp_path / "nope.json")
    assert kv.get("notes") is None
    assert kv.bytes_in_use() == 0


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_file_store_unreadable(tmp_path, content):
    path = tmp_path / "notes.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(PersistenceUnavailable):
        JsonFileStore(path).get("notes")
