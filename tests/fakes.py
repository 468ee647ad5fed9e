"""
In-memory stand-in for ``GraphClient``.

Keeps lists, tasks and checklist items in dicts and records every call as
``(method, collection_id, ...)`` so tests can assert exact remote traffic.
"""

import itertools
from typing import Dict, List, Optional

from mtd_sync.core.exceptions import AuthRequiredError, RemoteRequestFailed
from mtd_sync.core.models import RemoteChecklistItem, RemoteCollection, RemoteTask, TaskStatus
from mtd_sync.todo.gateway import KEEP
from mtd_sync.utils.date import due_date_to_remote
from mtd_sync.utils.text import sanitize_title_for_remote


class FakeRemote:
    """Remote task service backed by dictionaries."""

    def __init__(self):
        self.collections: Dict[str, RemoteCollection] = {}
        self.tasks: Dict[str, Dict[str, RemoteTask]] = {}
        self.calls: List[tuple] = []
        self.tag_names: List[str] = []
        self.auth_required = False
        self.fail_on: Dict[tuple, int] = {}
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    # Test helpers

    def add_collection(self, collection_id: str, name: str) -> RemoteCollection:
        collection = RemoteCollection(collection_id, name)
        self.collections[collection_id] = collection
        self.tasks.setdefault(collection_id, {})
        return collection

    def add_task(self, collection_id: str, title: str, completed: bool = False,
                 due_date: Optional[str] = None, items=()) -> RemoteTask:
        task = RemoteTask(
            id=f"task-{next(self._ids)}",
            title=title,
            status=TaskStatus.COMPLETED if completed else TaskStatus.NOT_STARTED,
            last_modified=self._stamp(),
            due_date_time=due_date_to_remote(due_date)["dateTime"] if due_date else None,
        )
        for name, checked in items:
            task.checklist_items.append(RemoteChecklistItem(f"item-{next(self._ids)}", name, checked))
        self.tasks[collection_id][task.id] = task
        return task

    def touch(self, collection_id: str, task_id: str, **changes) -> RemoteTask:
        """Edit a task the way another client would (bumps the timestamp)."""
        task = self.tasks[collection_id][task_id]
        if "title" in changes:
            task.title = changes["title"]
        if "completed" in changes:
            task.status = TaskStatus.COMPLETED if changes["completed"] else TaskStatus.NOT_STARTED
        task.last_modified = self._stamp()
        return task

    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if call[0] not in ("list_collections", "list_tasks", "get_task")]

    def _stamp(self) -> str:
        return f"2024-01-01T00:00:{next(self._clock):02d}.0000000Z"

    def _check(self, method: str, *key) -> None:
        if self.auth_required:
            raise AuthRequiredError()
        status = self.fail_on.get((method,) + key) or self.fail_on.get((method,))
        if status:
            raise RemoteRequestFailed(status, f"Graph request failed\nHTTP {status}")

    def _task(self, collection_id: str, task_id: str) -> RemoteTask:
        task = self.tasks.get(collection_id, {}).get(task_id)
        if task is None:
            raise RemoteRequestFailed(404, "Graph request failed\nHTTP 404")
        return task

    # GraphClient interface

    def list_collections(self) -> List[RemoteCollection]:
        self.calls.append(("list_collections",))
        self._check("list_collections")
        return list(self.collections.values())

    def list_tasks(self, collection_id, limit=200, only_active=False) -> List[RemoteTask]:
        self.calls.append(("list_tasks", collection_id))
        self._check("list_tasks", collection_id)
        tasks = list(self.tasks.get(collection_id, {}).values())
        if only_active:
            tasks = [task for task in tasks if not task.completed]
        return [self._copy(task) for task in tasks[:limit]]

    def get_task(self, collection_id, task_id) -> Optional[RemoteTask]:
        self.calls.append(("get_task", collection_id, task_id))
        self._check("get_task", collection_id, task_id)
        task = self.tasks.get(collection_id, {}).get(task_id)
        return self._copy(task) if task else None

    def create_task(self, collection_id, title, completed=False, due_date=None) -> RemoteTask:
        self.calls.append(("create_task", collection_id, title))
        self._check("create_task", collection_id)
        task = self.add_task(collection_id, sanitize_title_for_remote(title, self.tag_names), completed, due_date)
        return self._copy(task)

    def update_task(self, collection_id, task_id, title=None, completed=None, due_date=KEEP) -> Optional[RemoteTask]:
        self.calls.append(("update_task", collection_id, task_id))
        self._check("update_task", collection_id, task_id)
        task = self._task(collection_id, task_id)
        if title is not None:
            task.title = sanitize_title_for_remote(title, self.tag_names)
        if completed is not None:
            task.status = TaskStatus.COMPLETED if completed else TaskStatus.NOT_STARTED
        if due_date is not KEEP:
            task.due_date_time = due_date_to_remote(due_date)["dateTime"] if due_date else None
        task.last_modified = self._stamp()
        return self._copy(task)

    def delete_task(self, collection_id, task_id, missing_ok=False) -> bool:
        self.calls.append(("delete_task", collection_id, task_id))
        self._check("delete_task", collection_id, task_id)
        if self.tasks.get(collection_id, {}).pop(task_id, None) is None:
            if missing_ok:
                return False
            raise RemoteRequestFailed(404, "Graph request failed\nHTTP 404")
        return True

    def create_checklist_item(self, collection_id, task_id, display_name, checked=False) -> RemoteChecklistItem:
        self.calls.append(("create_checklist_item", collection_id, task_id, display_name))
        self._check("create_checklist_item", collection_id, task_id)
        item = RemoteChecklistItem(f"item-{next(self._ids)}", display_name, checked)
        self._task(collection_id, task_id).checklist_items.append(item)
        return RemoteChecklistItem(item.id, item.display_name, item.checked)

    def update_checklist_item(self, collection_id, task_id, item_id, display_name=None, checked=None):
        self.calls.append(("update_checklist_item", collection_id, task_id, item_id))
        self._check("update_checklist_item", collection_id, task_id, item_id)
        for item in self._task(collection_id, task_id).checklist_items:
            if item.id == item_id:
                if display_name is not None:
                    item.display_name = display_name
                if checked is not None:
                    item.checked = checked
                return RemoteChecklistItem(item.id, item.display_name, item.checked)
        raise RemoteRequestFailed(404, "Graph request failed\nHTTP 404")

    def delete_checklist_item(self, collection_id, task_id, item_id, missing_ok=False) -> bool:
        self.calls.append(("delete_checklist_item", collection_id, task_id, item_id))
        task = self._task(collection_id, task_id)
        before = len(task.checklist_items)
        task.checklist_items = [item for item in task.checklist_items if item.id != item_id]
        return len(task.checklist_items) < before

    @staticmethod
    def _copy(task: RemoteTask) -> RemoteTask:
        return RemoteTask(
            id=task.id,
            title=task.title,
            status=task.status,
            last_modified=task.last_modified,
            due_date_time=task.due_date_time,
            due_time_zone=task.due_time_zone,
            checklist_items=[
                RemoteChecklistItem(i.id, i.display_name, i.checked, i.last_modified) for i in task.checklist_items
            ],
        )


def write_doc(vault, name: str, text: str) -> str:
    path = vault / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return name


def read_doc(vault, name: str) -> str:
    return (vault / name).read_text(encoding="utf-8")
