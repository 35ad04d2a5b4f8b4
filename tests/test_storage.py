"""Tests for the key-value stores."""

import pytest

from speakersync.core.exceptions import StorageError
from speakersync.core.storage import FileStore, KeyValueStore, MemoryStore, backup_key


@pytest.fixture(params=["memory", "file"])
def kv(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return FileStore(tmp_path / "store")


class TestKeyValueStore:
    """Behavior shared by both implementations."""

    def test_protocol(self, kv):
        assert isinstance(kv, KeyValueStore)

    def test_missing_key(self, kv):
        assert kv.get("speakers") is None

    def test_set_get_overwrite(self, kv):
        kv.set("speakers_version", "1")
        kv.set("speakers_version", "2")
        assert kv.get("speakers_version") == "2"

    def test_delete(self, kv):
        kv.set("speakers", "[]")
        kv.delete("speakers")
        kv.delete("speakers")
        assert kv.get("speakers") is None

    def test_keys_by_prefix(self, kv):
        kv.set("speakers", "[]")
        kv.set(backup_key("backup_2"), "{}")
        kv.set(backup_key("backup_1"), "{}")
        assert kv.keys("backup_") == ["backup_backup_1", "backup_backup_2"]
        assert kv.keys() == ["backup_backup_1", "backup_backup_2", "speakers"]

    @pytest.mark.parametrize("key", ["../escape", "a/b", "", "sp ace"])
    def test_invalid_keys_rejected(self, kv, key):
        with pytest.raises(StorageError):
            kv.set(key, "x")


class TestFileStore:
    """File-specific behavior."""

    def test_one_file_per_key(self, tmp_path):
        store = FileStore(tmp_path / "store")
        store.set("speakers", '[{"id": 1}]')
        assert (tmp_path / "store" / "speakers.json").read_text() == '[{"id": 1}]'
        assert not list((tmp_path / "store").glob("*.tmp"))

    def test_keys_on_missing_directory(self, tmp_path):
        assert FileStore(tmp_path / "nowhere").keys() == []

    def test_values_survive_new_instance(self, tmp_path):
        FileStore(tmp_path).set("config", '{"token": "x"}')
        assert FileStore(tmp_path).get("config") == '{"token": "x"}'
