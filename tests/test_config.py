"""
Tests for state loading, saving and migration.
"""

import json

from mtd_sync.core.config import SyncState, load_state, migrate_state, save_state
from mtd_sync.core.models import DeletionPolicy, MappingEntry, RoutingRule


class TestMigrateState:

    def test_non_dict_gives_defaults(self):
        state = migrate_state(["not", "a", "dict"])
        assert state.settings.tenant_id == "common"
        assert state.settings.deletion_policy == DeletionPolicy.COMPLETE
        assert len(state.mappings) == 0

    def test_current_layout(self):
        raw = {
            "settings": {
                "clientId": " abc ",
                "defaultListId": "W",
                "deletionPolicy": "detach",
                "autoSyncIntervalMinutes": 0,
                "tagRoutes": [{"tag": "Work", "listId": "W", "listName": "Work"}, {"tag": "x"}],
                "fetchLimit": "many",
            },
            "fileConfigs": {"T.md": {"listId": "H"}, "Bad.md": "H"},
            "taskMappings": {"T.md::mtd_a": {"listId": "W", "graphTaskId": "t1"}},
        }
        state = migrate_state(raw)
        settings = state.settings
        assert settings.client_id == "abc"
        assert settings.default_list_id == "W"
        assert settings.deletion_policy == DeletionPolicy.DETACH
        assert settings.auto_sync_interval_minutes == 1
        assert settings.tag_routes == [RoutingRule("#work", "W", "Work")]
        assert settings.fetch_limit == 1000
        assert state.file_configs == {"T.md": "H"}
        assert state.mappings.get_task("T.md", "mtd_a").remote_task_id == "t1"

    def test_unknown_policy_falls_back_to_complete(self):
        state = migrate_state({"settings": {"deletionPolicy": "explode"}})
        assert state.settings.deletion_policy == DeletionPolicy.COMPLETE

    def test_legacy_delete_flag(self):
        state = migrate_state({"settings": {"deleteRemoteWhenRemoved": True}})
        assert state.settings.deletion_policy == DeletionPolicy.DELETE

    def test_legacy_flat_layout(self):
        state = migrate_state({"clientId": "abc", "accessToken": "tok", "todoListId": "L1"})
        assert state.settings.client_id == "abc"
        assert state.settings.access_token == "tok"
        assert state.settings.default_list_id == "L1"

    def test_mappings_only_layout(self):
        state = migrate_state({"taskMappings": {"T.md::mtd_a": {"listId": "W", "graphTaskId": "t1"}}})
        assert len(state.mappings) == 1
        assert state.settings.client_id == ""


class TestPersistence:

    def test_save_and_load_round_trip(self, tmp_path):
        path = str(tmp_path / "state.json")
        state = SyncState()
        state.settings.client_id = "abc"
        state.settings.tag_routes.append(RoutingRule("#home", "H", "Home"))
        state.bind_document("T.md", "W")
        state.mappings.set_task("T.md", "mtd_a", MappingEntry("W", "t1", last_known_remote_modified="2024-01-01T00:00:00Z"))

        assert save_state(state, path)
        with open(path, encoding="utf-8") as handle:
            raw = json.load(handle)
        assert raw["settings"]["clientId"] == "abc"
        assert raw["fileConfigs"] == {"T.md": {"listId": "W"}}
        assert raw["taskMappings"]["T.md::mtd_a"]["lastKnownGraphLastModified"] == "2024-01-01T00:00:00Z"

        loaded = load_state(path)
        assert loaded.settings.client_id == "abc"
        assert loaded.settings.tag_routes == state.settings.tag_routes
        assert loaded.bound_list_id("T.md") == "W"
        assert loaded.mappings.get_task("T.md", "mtd_a") == state.mappings.get_task("T.md", "mtd_a")

    def test_missing_or_corrupt_file_gives_defaults(self, tmp_path):
        assert load_state(str(tmp_path / "missing.json")).settings.tenant_id == "common"
        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("{not json", encoding="utf-8")
        assert len(load_state(str(corrupt)).mappings) == 0

    def test_default_location_uses_home_override(self, tmp_path):
        assert save_state(SyncState())
        assert (tmp_path / "home" / "state.json").exists()
