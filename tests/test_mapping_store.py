"""
Tests for the identity mapping store.
"""

from mtd_sync.core.mapping_store import MappingStore, build_key, split_key
from mtd_sync.core.models import ChecklistMappingEntry, MappingEntry


def entry(task_id="t1", list_id="W"):
    return MappingEntry(list_id=list_id, remote_task_id=task_id, last_synced_local_hash="0|a|")


class TestKeys:

    def test_split_on_last_separator(self):
        assert split_key("dir::odd/Tasks.md::mtd_abc") == ("dir::odd/Tasks.md", "mtd_abc")
        assert build_key("Tasks.md", "mtd_abc") == "Tasks.md::mtd_abc"

    def test_malformed_keys(self):
        assert split_key("no-separator") is None
        assert split_key("::mtd_abc") is None
        assert split_key("Tasks.md::") is None


class TestMappingStore:

    def test_set_get_delete(self):
        store = MappingStore()
        store.set_task("Tasks.md", "mtd_a", entry())
        assert store.get_task("Tasks.md", "mtd_a").remote_task_id == "t1"
        assert store.find_task_marker("Tasks.md", "t1") == "mtd_a"
        assert store.delete_task("Tasks.md", "mtd_a") is not None
        assert store.get_task("Tasks.md", "mtd_a") is None
        assert store.documents() == []

    def test_checklist_for_parent(self):
        store = MappingStore()
        store.set_checklist("T.md", "mtdc_1", ChecklistMappingEntry("W", "t1", "i1"))
        store.set_checklist("T.md", "mtdc_2", ChecklistMappingEntry("W", "t2", "i2"))
        assert list(store.checklist_for_parent("T.md", "t1")) == ["mtdc_1"]
        assert store.find_checklist_marker("T.md", "i2") == "mtdc_2"

    def test_copy_is_independent(self):
        store = MappingStore()
        store.set_task("T.md", "mtd_a", entry())
        working = store.copy()
        working.get_task("T.md", "mtd_a").last_synced_local_hash = "changed"
        working.delete_task("T.md", "mtd_a")
        assert store.get_task("T.md", "mtd_a").last_synced_local_hash == "0|a|"

        store.replace_with(working)
        assert len(store) == 0

    def test_clear_document(self):
        store = MappingStore()
        store.set_task("Old.md", "mtd_a", entry())
        store.set_checklist("Old.md", "mtdc_b", ChecklistMappingEntry("W", "t1", "i1"))
        store.set_task("Other.md", "mtd_c", entry())
        assert store.clear_document("Old.md") == 2
        assert store.documents() == ["Other.md"]
        store.clear_document("Other.md")
        assert len(store) == 0

    def test_flat_serialization(self):
        store = MappingStore()
        store.set_task("T.md", "mtd_a", entry())
        data = store.to_dict()
        assert data["taskMappings"]["T.md::mtd_a"]["graphTaskId"] == "t1"
        assert data["taskMappings"]["T.md::mtd_a"]["lastSyncedGraphHash"] == ""
        assert data["checklistMappings"] == {}

        restored = MappingStore.from_dict(data)
        assert restored.get_task("T.md", "mtd_a") == store.get_task("T.md", "mtd_a")

    def test_malformed_entries_are_dropped_individually(self):
        data = {
            "taskMappings": {
                "T.md::mtd_good": {"listId": "W", "graphTaskId": "t1"},
                "T.md::mtd_noid": {"listId": "W"},
                "broken-key": {"listId": "W", "graphTaskId": "t2"},
                "T.md::mtd_notdict": "nope",
            },
            "checklistMappings": {
                "T.md::mtdc_ok": {"listId": "W", "parentGraphTaskId": "t1", "checklistItemId": "i1"},
                "T.md::mtdc_bad": {"listId": "W", "parentGraphTaskId": "t1"},
            },
        }
        store = MappingStore.from_dict(data)
        assert list(store.list_tasks("T.md")) == ["mtd_good"]
        assert list(store.list_checklist("T.md")) == ["mtdc_ok"]
