"""
Identity mapping store.

Maps document-local marker ids to remote identifiers plus the hashes and
timestamps recorded at the last successful sync. In memory the tables are
nested ``{document_path: {marker_id: entry}}``; on disk they use the flat
``"<document_path>::<marker_id>"`` keys of the persisted layout.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .models import ChecklistMappingEntry, MappingEntry


KEY_SEPARATOR = "::"

logger = logging.getLogger(__name__)


def build_key(document_path: str, marker_id: str) -> str:
    return f"{document_path}{KEY_SEPARATOR}{marker_id}"


def split_key(key: str) -> Optional[Tuple[str, str]]:
    """Split a flat key on its last separator; None when malformed."""
    if not isinstance(key, str) or KEY_SEPARATOR not in key:
        return None
    document_path, marker_id = key.rsplit(KEY_SEPARATOR, 1)
    if not document_path or not marker_id:
        return None
    return document_path, marker_id


class MappingStore:
    """Two-level mapping tables for tasks and checklist items."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Dict[str, MappingEntry]] = {}
        self._checklist: Dict[str, Dict[str, ChecklistMappingEntry]] = {}

    # Task table

    def get_task(self, document_path: str, marker_id: str) -> Optional[MappingEntry]:
        return self._tasks.get(document_path, {}).get(marker_id)

    def set_task(self, document_path: str, marker_id: str, entry: MappingEntry) -> None:
        self._tasks.setdefault(document_path, {})[marker_id] = entry

    def delete_task(self, document_path: str, marker_id: str) -> Optional[MappingEntry]:
        table = self._tasks.get(document_path)
        if not table:
            return None
        entry = table.pop(marker_id, None)
        if not table:
            del self._tasks[document_path]
        return entry

    def list_tasks(self, document_path: str) -> Dict[str, MappingEntry]:
        """Snapshot of all task entries for one document."""
        return dict(self._tasks.get(document_path, {}))

    def find_task_marker(self, document_path: str, remote_task_id: str) -> Optional[str]:
        for marker_id, entry in self._tasks.get(document_path, {}).items():
            if entry.remote_task_id == remote_task_id:
                return marker_id
        return None

    # Checklist table

    def get_checklist(self, document_path: str, marker_id: str) -> Optional[ChecklistMappingEntry]:
        return self._checklist.get(document_path, {}).get(marker_id)

    def set_checklist(self, document_path: str, marker_id: str, entry: ChecklistMappingEntry) -> None:
        self._checklist.setdefault(document_path, {})[marker_id] = entry

    def delete_checklist(self, document_path: str, marker_id: str) -> Optional[ChecklistMappingEntry]:
        table = self._checklist.get(document_path)
        if not table:
            return None
        entry = table.pop(marker_id, None)
        if not table:
            del self._checklist[document_path]
        return entry

    def list_checklist(self, document_path: str) -> Dict[str, ChecklistMappingEntry]:
        return dict(self._checklist.get(document_path, {}))

    def find_checklist_marker(self, document_path: str, checklist_item_id: str) -> Optional[str]:
        for marker_id, entry in self._checklist.get(document_path, {}).items():
            if entry.checklist_item_id == checklist_item_id:
                return marker_id
        return None

    def checklist_for_parent(self, document_path: str, parent_task_id: str) -> Dict[str, ChecklistMappingEntry]:
        return {
            marker_id: entry
            for marker_id, entry in self._checklist.get(document_path, {}).items()
            if entry.parent_task_id == parent_task_id
        }

    # Whole-store operations

    def documents(self) -> List[str]:
        return sorted(set(self._tasks) | set(self._checklist))

    def clear_document(self, document_path: str) -> int:
        """Forget every entry of a document; returns how many were dropped."""
        removed = len(self._tasks.pop(document_path, {}))
        removed += len(self._checklist.pop(document_path, {}))
        return removed

    def iter_tasks(self) -> Iterator[Tuple[str, str, MappingEntry]]:
        for document_path, table in self._tasks.items():
            for marker_id, entry in table.items():
                yield document_path, marker_id, entry

    def copy(self) -> MappingStore:
        """Deep copy used as the working set of a pass."""
        clone = MappingStore()
        clone._tasks = copy.deepcopy(self._tasks)
        clone._checklist = copy.deepcopy(self._checklist)
        return clone

    def replace_with(self, other: MappingStore) -> None:
        """Adopt the tables of ``other`` (commit of a pass's working set)."""
        self._tasks = other._tasks
        self._checklist = other._checklist

    def __len__(self) -> int:
        return sum(len(t) for t in self._tasks.values()) + sum(len(t) for t in self._checklist.values())

    # Serialization boundary

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {
            "taskMappings": {
                build_key(path, marker): entry.to_dict()
                for path, table in self._tasks.items()
                for marker, entry in table.items()
            },
            "checklistMappings": {
                build_key(path, marker): entry.to_dict()
                for path, table in self._checklist.items()
                for marker, entry in table.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MappingStore:
        """Load flat-keyed tables, skipping malformed keys and entries."""
        store = cls()
        task_data = data.get("taskMappings")
        checklist_data = data.get("checklistMappings")

        for key, raw in (task_data.items() if isinstance(task_data, dict) else []):
            parts = split_key(key)
            if parts is None or not isinstance(raw, dict):
                logger.warning(f"Dropping malformed task mapping {key!r}")
                continue
            try:
                store.set_task(parts[0], parts[1], MappingEntry.from_dict(raw))
            except ValueError as exc:
                logger.warning(f"Dropping task mapping {key!r}: {exc}")

        for key, raw in (checklist_data.items() if isinstance(checklist_data, dict) else []):
            parts = split_key(key)
            if parts is None or not isinstance(raw, dict):
                logger.warning(f"Dropping malformed checklist mapping {key!r}")
                continue
            try:
                store.set_checklist(parts[0], parts[1], ChecklistMappingEntry.from_dict(raw))
            except ValueError as exc:
                logger.warning(f"Dropping checklist mapping {key!r}: {exc}")

        return store
