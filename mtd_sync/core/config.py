"""
Configuration and state persistence for mtd-sync.

Settings, document bindings and identity mappings live together in one
JSON state file. Loading never fails: unknown or damaged shapes are
migrated to defaults field by field.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .mapping_store import MappingStore
from .models import DeletionPolicy, MIN_AUTO_SYNC_MINUTES, RoutingRule, SyncSettings
from .paths import get_path_manager
from ..utils.io import safe_read_json, safe_write_json


logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Everything persisted between runs."""

    settings: SyncSettings = field(default_factory=SyncSettings)
    file_configs: Dict[str, str] = field(default_factory=dict)
    mappings: MappingStore = field(default_factory=MappingStore)

    def bound_list_id(self, document_path: str) -> Optional[str]:
        return self.file_configs.get(document_path)

    def bind_document(self, document_path: str, list_id: str) -> None:
        self.file_configs[document_path] = list_id

    def unbind_document(self, document_path: str) -> None:
        self.file_configs.pop(document_path, None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "settings": self.settings.to_dict(),
            "fileConfigs": {path: {"listId": list_id} for path, list_id in self.file_configs.items()},
        }
        data.update(self.mappings.to_dict())
        return data


def get_default_state_path() -> Path:
    """Get the default state file path."""
    return get_path_manager().state_path


def _typed(raw: Dict[str, Any], key: str, kind, default):
    value = raw.get(key, default)
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if kind is int and isinstance(value, float):
        return int(value)
    if isinstance(value, bool) and kind is not bool:
        return default
    return value if isinstance(value, kind) else default


def migrate_settings(raw: Any) -> SyncSettings:
    """Build settings from a stored mapping, defaulting bad or missing fields."""
    defaults = SyncSettings()
    if not isinstance(raw, dict):
        return defaults

    policy_value = raw.get("deletionPolicy")
    if policy_value is None and raw.get("deleteRemoteWhenRemoved") is True:
        policy_value = DeletionPolicy.DELETE.value

    routes = []
    for item in raw.get("tagRoutes") or []:
        if not isinstance(item, dict):
            continue
        try:
            routes.append(RoutingRule.from_dict(item))
        except ValueError as exc:
            logger.warning(f"Ignoring tag route {item!r}: {exc}")

    interval = _typed(raw, "autoSyncIntervalMinutes", int, defaults.auto_sync_interval_minutes)

    return SyncSettings(
        client_id=_typed(raw, "clientId", str, defaults.client_id).strip(),
        tenant_id=_typed(raw, "tenantId", str, defaults.tenant_id).strip() or defaults.tenant_id,
        default_list_id=_typed(raw, "defaultListId", str, defaults.default_list_id),
        access_token=_typed(raw, "accessToken", str, defaults.access_token),
        refresh_token=_typed(raw, "refreshToken", str, defaults.refresh_token),
        access_token_expires_at=_typed(raw, "accessTokenExpiresAt", int, defaults.access_token_expires_at),
        auto_sync_enabled=_typed(raw, "autoSyncEnabled", bool, defaults.auto_sync_enabled),
        auto_sync_interval_minutes=max(MIN_AUTO_SYNC_MINUTES, interval),
        deletion_policy=DeletionPolicy.parse(policy_value),
        vault_path=_typed(raw, "vaultPath", str, defaults.vault_path),
        central_file=_typed(raw, "centralFile", str, defaults.central_file),
        tag_routes=routes,
        pull_tag=_typed(raw, "pullTag", str, defaults.pull_tag),
        pull_tag_append_list_name=_typed(raw, "pullTagAppendListName", bool, defaults.pull_tag_append_list_name),
        debounce_seconds=max(0.0, _typed(raw, "debounceSeconds", float, defaults.debounce_seconds)),
        fetch_limit=max(1, _typed(raw, "fetchLimit", int, defaults.fetch_limit)),
        stale_remote_favors_local=_typed(raw, "staleRemoteFavorsLocal", bool, defaults.stale_remote_favors_local),
    )


def _migrate_file_configs(raw: Any) -> Dict[str, str]:
    configs: Dict[str, str] = {}
    if not isinstance(raw, dict):
        return configs
    for path, value in raw.items():
        list_id = value.get("listId") if isinstance(value, dict) else None
        if isinstance(path, str) and isinstance(list_id, str) and list_id:
            configs[path] = list_id
    return configs


def migrate_state(raw: Any) -> SyncState:
    """
    Convert whatever was found on disk into a ``SyncState``.

    Handles three shapes:
    - the current layout with a ``settings`` key
    - the legacy flat layout (``clientId``/``accessToken``/``todoListId`` at top level)
    - anything else, which keeps only mapping tables that still parse
    """
    if not isinstance(raw, dict):
        return SyncState()

    if isinstance(raw.get("settings"), dict):
        return SyncState(
            settings=migrate_settings(raw["settings"]),
            file_configs=_migrate_file_configs(raw.get("fileConfigs")),
            mappings=MappingStore.from_dict(raw),
        )

    if any(key in raw for key in ("clientId", "accessToken", "todoListId")):
        legacy = dict(raw)
        if "todoListId" in legacy and "defaultListId" not in legacy:
            legacy["defaultListId"] = legacy.get("todoListId")
        logger.info("Migrating legacy flat settings layout")
        return SyncState(settings=migrate_settings(legacy))

    return SyncState(mappings=MappingStore.from_dict(raw))


def load_state(state_path: Optional[str] = None) -> SyncState:
    """
    Load state from file or return defaults.

    Args:
        state_path: Optional path to the state file. Uses default if not provided.
    """
    path = state_path or str(get_default_state_path())
    return migrate_state(safe_read_json(path, default={}))


def save_state(state: SyncState, state_path: Optional[str] = None) -> bool:
    """
    Save state atomically.

    Args:
        state: State to save
        state_path: Optional path to save to. Uses default if not provided.
    """
    if state_path is None:
        manager = get_path_manager()
        manager.ensure_directories()
        state_path = str(manager.state_path)
    return safe_write_json(state_path, state.to_dict())
