"""
Domain models for mtd-sync.

Transient per-pass views (``TaskRecord``, ``RemoteTask``) and the durable
records persisted in the state file (``MappingEntry``, ``SyncSettings``).
Persisted records keep the camelCase keys of the on-disk layout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.date import due_date_from_remote
from ..utils.text import CHECKLIST_MARKER_PREFIX, normalize_tag


class TaskStatus(Enum):
    """Remote task status values."""

    NOT_STARTED = "notStarted"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    WAITING_ON_OTHERS = "waitingOnOthers"
    DEFERRED = "deferred"

    @classmethod
    def parse(cls, value: Optional[str]) -> TaskStatus:
        try:
            return cls(value)
        except ValueError:
            return cls.NOT_STARTED


class DeletionPolicy(Enum):
    """What happens remotely when a synced line disappears from a document."""

    COMPLETE = "complete"
    DELETE = "delete"
    DETACH = "detach"

    @classmethod
    def parse(cls, value: Any) -> DeletionPolicy:
        try:
            return cls(value)
        except ValueError:
            return cls.COMPLETE


class MarkerKind(Enum):
    COMMENT = "comment"
    CARET = "caret"
    LEGACY_COMMENT = "legacy-comment"


@dataclass
class TaskRecord:
    """One parsed task line (top-level task or nested checklist line)."""

    line_index: int
    indent: str
    bullet: str
    completed: bool
    title: str
    due_date: Optional[str] = None
    tag: Optional[str] = None
    marker_id: str = ""
    heading: str = ""
    parent_index: Optional[int] = None
    marker_kind: Optional[MarkerKind] = None

    @property
    def is_checklist(self) -> bool:
        """Markers decide for synced lines; unsynced lines go by nesting."""
        if self.marker_id:
            return self.marker_id.startswith(CHECKLIST_MARKER_PREFIX)
        return self.parent_index is not None


@dataclass
class RemoteCollection:
    """A remote task list."""

    id: str
    display_name: str

    @classmethod
    def from_graph(cls, payload: Dict[str, Any]) -> RemoteCollection:
        return cls(id=payload.get("id", ""), display_name=payload.get("displayName", "") or "")


@dataclass
class RemoteChecklistItem:
    """A checklist (sub-)item of a remote task."""

    id: str
    display_name: str
    checked: bool = False
    last_modified: Optional[str] = None

    @classmethod
    def from_graph(cls, payload: Dict[str, Any]) -> RemoteChecklistItem:
        return cls(
            id=payload.get("id", ""),
            display_name=payload.get("displayName", "") or "",
            checked=bool(payload.get("isChecked", False)),
            last_modified=payload.get("lastModifiedDateTime"),
        )


@dataclass
class RemoteTask:
    """A remote task as observed through the client."""

    id: str
    title: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    last_modified: Optional[str] = None
    due_date_time: Optional[str] = None
    due_time_zone: Optional[str] = None
    checklist_items: List[RemoteChecklistItem] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def due_date(self) -> Optional[str]:
        return due_date_from_remote({"dateTime": self.due_date_time}) if self.due_date_time else None

    @classmethod
    def from_graph(cls, payload: Dict[str, Any]) -> RemoteTask:
        due = payload.get("dueDateTime") or {}
        items = payload.get("checklistItems") or []
        return cls(
            id=payload.get("id", ""),
            title=payload.get("title", "") or "",
            status=TaskStatus.parse(payload.get("status")),
            last_modified=payload.get("lastModifiedDateTime"),
            due_date_time=due.get("dateTime") if isinstance(due, dict) else None,
            due_time_zone=due.get("timeZone") if isinstance(due, dict) else None,
            checklist_items=[RemoteChecklistItem.from_graph(item) for item in items if isinstance(item, dict)],
        )


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"missing {key}")
    return value


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass
class MappingEntry:
    """Durable link between a document marker and a remote task."""

    list_id: str
    remote_task_id: str
    last_synced_at: int = 0
    last_synced_local_hash: str = ""
    last_synced_remote_hash: str = ""
    last_synced_file_mtime: int = 0
    last_known_remote_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "listId": self.list_id,
            "graphTaskId": self.remote_task_id,
            "lastSyncedAt": self.last_synced_at,
            "lastSyncedLocalHash": self.last_synced_local_hash,
            "lastSyncedGraphHash": self.last_synced_remote_hash,
            "lastSyncedFileMtime": self.last_synced_file_mtime,
        }
        if self.last_known_remote_modified:
            data["lastKnownGraphLastModified"] = self.last_known_remote_modified
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MappingEntry:
        """Build an entry, raising ValueError when identifiers are missing."""
        return cls(
            list_id=_require_str(data, "listId"),
            remote_task_id=_require_str(data, "graphTaskId"),
            last_synced_at=_as_int(data.get("lastSyncedAt")),
            last_synced_local_hash=_as_str(data.get("lastSyncedLocalHash")),
            last_synced_remote_hash=_as_str(data.get("lastSyncedGraphHash")),
            last_synced_file_mtime=_as_int(data.get("lastSyncedFileMtime")),
            last_known_remote_modified=data.get("lastKnownGraphLastModified") or None,
        )


@dataclass
class ChecklistMappingEntry:
    """Durable link between a nested document line and a remote checklist item."""

    list_id: str
    parent_task_id: str
    checklist_item_id: str
    last_synced_at: int = 0
    last_synced_local_hash: str = ""
    last_synced_remote_hash: str = ""
    last_synced_file_mtime: int = 0
    last_known_remote_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "listId": self.list_id,
            "parentGraphTaskId": self.parent_task_id,
            "checklistItemId": self.checklist_item_id,
            "lastSyncedAt": self.last_synced_at,
            "lastSyncedLocalHash": self.last_synced_local_hash,
            "lastSyncedGraphHash": self.last_synced_remote_hash,
            "lastSyncedFileMtime": self.last_synced_file_mtime,
        }
        if self.last_known_remote_modified:
            data["lastKnownGraphLastModified"] = self.last_known_remote_modified
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ChecklistMappingEntry:
        return cls(
            list_id=_require_str(data, "listId"),
            parent_task_id=_require_str(data, "parentGraphTaskId"),
            checklist_item_id=_require_str(data, "checklistItemId"),
            last_synced_at=_as_int(data.get("lastSyncedAt")),
            last_synced_local_hash=_as_str(data.get("lastSyncedLocalHash")),
            last_synced_remote_hash=_as_str(data.get("lastSyncedGraphHash")),
            last_synced_file_mtime=_as_int(data.get("lastSyncedFileMtime")),
            last_known_remote_modified=data.get("lastKnownGraphLastModified") or None,
        )


@dataclass
class RoutingRule:
    """Routes tasks carrying ``tag`` to a remote collection."""

    tag: str
    collection_id: str
    collection_name: str = ""

    def __post_init__(self) -> None:
        self.tag = normalize_tag(self.tag)

    def to_dict(self) -> Dict[str, Any]:
        return {"tag": self.tag, "listId": self.collection_id, "listName": self.collection_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RoutingRule:
        return cls(
            tag=_require_str(data, "tag"),
            collection_id=_require_str(data, "listId"),
            collection_name=_as_str(data.get("listName")),
        )


MIN_AUTO_SYNC_MINUTES = 1


@dataclass
class SyncSettings:
    """User settings persisted under the ``settings`` key."""

    client_id: str = ""
    tenant_id: str = "common"
    default_list_id: str = ""
    access_token: str = ""
    refresh_token: str = ""
    access_token_expires_at: int = 0
    auto_sync_enabled: bool = False
    auto_sync_interval_minutes: int = 5
    deletion_policy: DeletionPolicy = DeletionPolicy.COMPLETE
    vault_path: str = ""
    central_file: str = ""
    tag_routes: List[RoutingRule] = field(default_factory=list)
    pull_tag: str = ""
    pull_tag_append_list_name: bool = False
    debounce_seconds: float = 2.0
    fetch_limit: int = 1000
    stale_remote_favors_local: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "tenantId": self.tenant_id,
            "defaultListId": self.default_list_id,
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "accessTokenExpiresAt": self.access_token_expires_at,
            "autoSyncEnabled": self.auto_sync_enabled,
            "autoSyncIntervalMinutes": self.auto_sync_interval_minutes,
            "deletionPolicy": self.deletion_policy.value,
            "vaultPath": self.vault_path,
            "centralFile": self.central_file,
            "tagRoutes": [rule.to_dict() for rule in self.tag_routes],
            "pullTag": self.pull_tag,
            "pullTagAppendListName": self.pull_tag_append_list_name,
            "debounceSeconds": self.debounce_seconds,
            "fetchLimit": self.fetch_limit,
            "staleRemoteFavorsLocal": self.stale_remote_favors_local,
        }


@dataclass
class SyncSummary:
    """Counts reported to the command surface after a pass."""

    document_path: str = ""
    created: int = 0
    moved: int = 0
    pushed: int = 0
    deleted: int = 0
    pulled: int = 0
    removed: int = 0
    failures: List[str] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and not self.skipped

    @property
    def changed(self) -> bool:
        return any((self.created, self.moved, self.pushed, self.deleted, self.pulled, self.removed))

    def merge(self, other: SyncSummary) -> None:
        self.created += other.created
        self.moved += other.moved
        self.pushed += other.pushed
        self.deleted += other.deleted
        self.pulled += other.pulled
        self.removed += other.removed
        self.failures.extend(other.failures)

    def as_text(self) -> str:
        if self.skipped:
            return "Sync already in progress; skipped"
        if self.error:
            return f"Sync failed: {self.error}"
        text = (
            f"created {self.created}, moved {self.moved}, pushed {self.pushed}, "
            f"deleted {self.deleted}, pulled {self.pulled}, removed {self.removed}"
        )
        if self.failures:
            text += f" ({len(self.failures)} failed)"
        return text
