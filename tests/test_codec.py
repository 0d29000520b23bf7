"""Classification and normalization of persisted note records."""

import base64

import pytest

from quicknotes.crypto.aead import decrypt_text, encrypt_text
from quicknotes.crypto.keys import KeyStore
from quicknotes.utils.codec import (
    CanonicalShape,
    LooseEnvelopeShape,
    NoteCodec,
    PlaintextShape,
    Unsalvageable,
    UntaggedShape,
    classify,
    coerce_bytes,
    sort_newest_first,
    strict_bytes,
    validate,
)
from quicknotes.utils.dataModels import Note


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def keys(kv):
    ks = KeyStore(kv)
    ks.initialize()
    return ks


@pytest.fixture
def codec(keys):
    return NoteCodec(keys)


def canonical(keys, text="hello", note_id=1, timestamp="2024-05-01T10:00:00.000Z"):
    env = encrypt_text(keys.active.key, keys.active.key_id, text)
    return {"id": note_id, "text": env.to_dict(), "category": "sql", "timestamp": timestamp}


def test_strict_bytes_accepts_base64_only():
    assert strict_bytes("aGVsbG8=") == b"hello"
    assert strict_bytes(b"raw") == b"raw"
    assert strict_bytes("not base64!") is None
    assert strict_bytes([104, 105]) is None


@pytest.mark.parametrize(
    "value",
    [
        [104, 105],
        {"type": "Buffer", "data": [104, 105]},
        {"0": 104, "1": 105},
        {"1": 105, "0": 104},
        "aGk=",
    ],
)
def test_coerce_bytes_recovers_lossy_encodings(value):
    assert coerce_bytes(value) == b"hi"


@pytest.mark.parametrize("value", [[1, 256], [-1], {"0": 1, "2": 3}, {"a": 1}, 42, None, [True]])
def test_coerce_bytes_rejects_garbage(value):
    assert coerce_bytes(value) is None


def test_classify_canonical(keys):
    shape = classify(canonical(keys))
    assert isinstance(shape, CanonicalShape)
    assert shape.header.category == "sql"
    assert shape.envelope.key_id == keys.active.key_id


def test_classify_untagged(keys):
    raw = canonical(keys)
    del raw["text"]["keyId"]
    shape = classify(raw)
    assert isinstance(shape, UntaggedShape)
    assert shape.envelope.key_id is None


def test_classify_encrypted_iv_lists(legacy_key, legacy_note):
    shape = classify(legacy_note(legacy_key[0], "old"))
    assert isinstance(shape, LooseEnvelopeShape)
    assert len(shape.envelope.nonce) == 12


def test_classify_index_map_envelope(keys):
    env = encrypt_text(keys.active.key, keys.active.key_id, "x")
    raw = {
        "id": 5,
        "text": {
            "ciphertext": {str(i): b for i, b in enumerate(env.ciphertext)},
            "nonce": {str(i): b for i, b in enumerate(env.nonce)},
        },
    }
    shape = classify(raw)
    assert isinstance(shape, LooseEnvelopeShape)
    assert shape.envelope.ciphertext == env.ciphertext


@pytest.mark.parametrize(
    "text, expected",
    [
        ("hello", "hello"),
        ({"plaintext": "a"}, "a"),
        ({"text": "b"}, "b"),
        ({"value": "c"}, "c"),
    ],
)
def test_classify_plaintext_variants(text, expected):
    shape = classify({"id": 1, "text": text})
    assert isinstance(shape, PlaintextShape)
    assert shape.plaintext == expected


@pytest.mark.parametrize(
    "raw",
    [
        "just a string",
        {"text": "no id"},
        {"id": "abc", "text": "x"},
        {"id": True, "text": "x"},
        {"id": 1},
        {"id": 1, "text": ""},
        {"id": 1, "text": 42},
        {"id": 1, "text": {"foo": "bar"}},
        {"id": 1, "text": {"ciphertext": "!!", "nonce": "!!"}},
        {"id": 1, "text": {"ciphertext": "aGk=", "nonce": "aGk="}},
    ],
)
def test_classify_unsalvageable(raw):
    assert isinstance(classify(raw), Unsalvageable)


def test_classify_header_defaults():
    shape = classify({"id": "17", "text": "x", "category": "nonsense"})
    assert shape.header.id == 17
    assert shape.header.category == "other"
    assert shape.header.timestamp.endswith("Z")


def test_custom_category_is_kept_when_known():
    shape = classify({"id": 1, "text": "x", "category": "work"}, categories=("other", "work"))
    assert shape.header.category == "work"


def test_validate(keys):
    raw = canonical(keys)
    assert validate(raw)
    raw["text"]["nonce"] = b64(b"short")
    assert not validate(raw)
    assert not validate({"id": 1, "text": "plain"})
    assert not validate(None)


def test_plaintext_is_encrypted_under_active_key(codec, keys):
    note = codec.migrate_shape({"id": 9, "text": "SELECT 1", "category": "sql"})
    assert note.text.key_id == keys.active.key_id
    assert decrypt_text(keys.active.key, note.text) == "SELECT 1"
    assert note.category == "sql"


def test_unsalvageable_migrates_to_none(codec):
    assert codec.migrate_shape({"id": 1, "text": 3}) is None


def test_normalize_clean_collection_is_unchanged(codec, keys):
    raws = [canonical(keys, "b", 2, "2024-05-02T00:00:00.000Z"), canonical(keys, "a", 1)]
    collection, changed = codec.normalize(raws)
    assert not changed
    assert collection.ids() == {1, 2}
    assert collection.migrated == []
    assert collection.dropped == []


def test_normalize_drops_bad_records_and_keeps_good(codec, keys):
    raws = [canonical(keys), {"id": 2, "text": {"nothing": True}}, "junk"]
    collection, changed = codec.normalize(raws)
    assert changed
    assert [n.id for n in collection] == [1]
    assert len(collection.dropped) == 2
    assert collection.dropped[0].raw == {"id": 2, "text": {"nothing": True}}


def test_normalize_non_list_value_is_quarantined(codec):
    collection, changed = codec.normalize({"oops": 1})
    assert changed
    assert len(collection) == 0
    assert collection.dropped[0].raw == {"oops": 1}


def test_normalize_missing_collection(codec):
    collection, changed = codec.normalize(None)
    assert not changed
    assert len(collection) == 0


def test_normalize_reassigns_duplicate_ids(codec, keys):
    raws = [canonical(keys, "one", 1), canonical(keys, "two", 1)]
    collection, changed = codec.normalize(raws)
    assert changed
    assert len(collection) == 2
    assert len(collection.ids()) == 2
    assert 1 in collection.ids()


def test_normalize_records_migrated_ids(codec, legacy_key, legacy_note):
    collection, changed = codec.normalize([{"id": 1, "text": "hello"}, legacy_note(legacy_key[0], "x", 2)])
    assert changed
    assert sorted(collection.migrated) == [1, 2]


def test_sort_newest_first():
    def note(i, ts):
        return Note(id=i, text=None, category="other", timestamp=ts)

    notes = [note(1, "2024-01-01T00:00:00.000Z"), note(2, "2024-03-01T00:00:00.000Z"), note(3, "garbage")]
    assert [n.id for n in sort_newest_first(notes)] == [2, 1, 3]
