"""Tests for durable storage and the session store."""

import json

from toolmaster.schemas.session import ChatSession, PluginSession
from toolmaster.storage import JsonFileStorage, MemoryStorage
from toolmaster.store import (
    CHAT_HISTORY_KEY,
    PLUGIN_HISTORY_KEY,
    chat_store,
    plugin_store,
    sort_for_display,
)


def _session(title: str, last_modified: int) -> ChatSession:
    session = ChatSession(title=title, last_modified=last_modified)
    session.append("user", f"question {title}")
    session.append("assistant", f"answer {title}")
    return session


class TestSessionStore:
    """Load/save behaviour of SessionStore."""

    def test_round_trip_sorted_most_recent_first(self):
        """Saved sessions reload with the same ids and messages, newest first."""
        storage = MemoryStorage()
        store = chat_store(storage)
        older, newer, middle = _session("a", 100), _session("b", 300), _session("c", 200)

        store.save([older, newer, middle])
        loaded = store.load()

        assert [s.id for s in loaded] == [newer.id, middle.id, older.id]
        assert [m.text for m in loaded[0].messages] == ["question b", "answer b"]
        assert loaded[2].messages[1].id == older.messages[1].id

    def test_absent_key_is_empty(self):
        assert chat_store(MemoryStorage()).load() == []

    def test_malformed_json_is_empty(self):
        storage = MemoryStorage({CHAT_HISTORY_KEY: "{not json"})
        assert chat_store(storage).load() == []

    def test_non_array_is_empty(self):
        storage = MemoryStorage({CHAT_HISTORY_KEY: json.dumps({"id": "x"})})
        assert chat_store(storage).load() == []

    def test_schema_mismatch_is_empty(self):
        storage = MemoryStorage({CHAT_HISTORY_KEY: json.dumps([{"messages": "nope"}])})
        assert chat_store(storage).load() == []

    def test_empty_array_is_empty(self):
        storage = MemoryStorage({CHAT_HISTORY_KEY: "[]"})
        assert chat_store(storage).load() == []

    def test_duplicate_ids_keep_first_record(self):
        records = [
            {"id": "dup", "title": "first", "messages": [], "lastModified": 100},
            {"id": "dup", "title": "second", "messages": [], "lastModified": 200},
            {"id": "other", "title": "third", "messages": [], "lastModified": 50},
        ]
        storage = MemoryStorage({CHAT_HISTORY_KEY: json.dumps(records)})

        loaded = chat_store(storage).load()

        assert [(s.id, s.title) for s in loaded] == [("dup", "first"), ("other", "third")]

    def test_saving_empty_collection_clears_key(self):
        storage = MemoryStorage()
        store = chat_store(storage)
        store.save([_session("a", 1)])
        assert CHAT_HISTORY_KEY in storage.data

        store.save([])
        assert CHAT_HISTORY_KEY not in storage.data

    def test_variants_use_independent_keys(self):
        storage = MemoryStorage()
        chat_store(storage).save([_session("a", 1)])
        plugin_store(storage).save([PluginSession(name="P")])

        assert CHAT_HISTORY_KEY in storage.data
        assert PLUGIN_HISTORY_KEY in storage.data
        assert plugin_store(storage).load()[0].name == "P"

    def test_stored_layout_uses_camel_case(self):
        storage = MemoryStorage()
        chat_store(storage).save([_session("a", 42)])
        record = json.loads(storage.data[CHAT_HISTORY_KEY])[0]
        assert record["lastModified"] == 42
        assert record["title"] == "a"


def test_sort_for_display_is_stable():
    """Sessions with equal timestamps keep their relative order."""
    first, second, newest = _session("1", 10), _session("2", 10), _session("3", 20)
    ordered = sort_for_display([first, second, newest])
    assert [s.title for s in ordered] == ["3", "1", "2"]


class TestJsonFileStorage:
    """File-backed key-value storage."""

    def test_set_get_remove(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "data" / "storage.json")
        assert storage.get("k") is None

        storage.set("k", "v")
        assert storage.get("k") == "v"
        assert JsonFileStorage(tmp_path / "data" / "storage.json").get("k") == "v"

        storage.remove("k")
        assert storage.get("k") is None

    def test_keys_do_not_clobber_each_other(self, tmp_path):
        path = tmp_path / "storage.json"
        JsonFileStorage(path).set("a", "1")
        JsonFileStorage(path).set("b", "2")
        assert JsonFileStorage(path).get("a") == "1"

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("garbage", encoding="utf-8")
        storage = JsonFileStorage(path)
        assert storage.get("k") is None

        storage.set("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    def test_no_temp_files_left_behind(self, tmp_path):
        JsonFileStorage(tmp_path / "storage.json").set("k", "v")
        assert [p.name for p in tmp_path.iterdir()] == ["storage.json"]
