"""
Tests for snapshot persistence.
"""
import json

import pytest

from npc_affect.errors import PersistenceFailure
from npc_affect.persistence import SnapshotStore


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(str(tmp_path / "snapshots"))


class TestSnapshotStore:

    def test_save_and_load(self, store):
        store.save("runtime", {"emotional_states": {"npc_1": {"anger": 70}}})
        assert store.load("runtime") == {"emotional_states": {"npc_1": {"anger": 70}}}

    def test_missing_snapshot(self, store):
        assert store.load("nothing") is None

    def test_backups_rotate(self, store):
        for i in range(5):
            store.save("runtime", {"version": i})

        assert store.load("runtime") == {"version": 4}
        backups = sorted(p.name for p in store.base_path.glob("runtime.backup*.json"))
        assert backups == ["runtime.backup1.json", "runtime.backup2.json", "runtime.backup3.json"]
        with open(store.base_path / "runtime.backup1.json") as f:
            assert json.load(f)["data"] == {"version": 3}

    def test_recovers_from_backup(self, store):
        store.save("runtime", {"version": 1})
        store.save("runtime", {"version": 2})
        (store.base_path / "runtime.json").write_text("{corrupt")

        assert store.load("runtime") == {"version": 1}

    def test_unserializable_data(self, store):
        with pytest.raises(PersistenceFailure):
            store.save("runtime", {("tuple", "key"): 1})
        assert store.list_snapshots() == []

    def test_list_and_delete(self, store):
        store.save("a", {})
        store.save("b", {})
        store.save("b", {})
        assert store.list_snapshots() == ["a", "b"]

        store.delete("b")
        assert store.list_snapshots() == ["a"]
        assert store.load("b") is None
