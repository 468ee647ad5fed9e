"""
Microsoft Graph To Do client.

A thin wrapper over the ``/me/todo/lists`` endpoints. Every request asks
the token provider for a bearer token, retries once with a forced refresh
on HTTP 401, and turns any other failure into ``RemoteRequestFailed``
carrying the HTTP status and a readable diagnostic.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from ..core.exceptions import AuthRequiredError, RemoteRequestFailed
from ..core.models import RemoteChecklistItem, RemoteCollection, RemoteTask, TaskStatus
from ..utils.date import due_date_to_remote
from ..utils.text import sanitize_title_for_remote


GRAPH_ROOT = "https://graph.microsoft.com/v1.0/me/todo/lists"
PAGE_SIZE = 50
DEFAULT_TASK_LIMIT = 200
ACTIVE_FILTER = "status ne 'completed'"
ENCODED_ACTIVE_FILTER = quote(ACTIVE_FILTER, safe="'")


class _Keep:
    """Sentinel: leave a field untouched in a partial update."""

    def __repr__(self) -> str:
        return "KEEP"


KEEP = _Keep()


def format_graph_failure(url: str, status: int, payload: Any, text: str = "") -> str:
    """Build a multi-line diagnostic from a Graph error envelope."""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        code = str(error.get("code") or "").strip()
        message = str(error.get("message") or "").strip()
        parts = [
            "Graph request failed",
            f"HTTP {status}",
            f"Error: {code}" if code else "",
            f"Description: {message}" if message else "",
            f"API: {url}",
        ]
        return "\n".join(part for part in parts if part)
    text = (text or "").strip()
    if text:
        return f"Graph request failed\nHTTP {status}\n{text}\nAPI: {url}"
    return f"Graph request failed (HTTP {status})\nAPI: {url}"


def _segment(value: str) -> str:
    return quote(value, safe="")


class GraphClient:
    """Client for the Microsoft To Do lists, tasks and checklist items."""

    def __init__(
        self,
        token_provider,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
        base_url: str = GRAPH_ROOT,
        tag_names: Iterable[str] = (),
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            token_provider: Object with ``get_valid_access_token(force_refresh)``
            session: Optional requests session (one is created if omitted)
            timeout: Per-request timeout in seconds
            base_url: Lists endpoint root
            tag_names: Routing tags stripped from outgoing titles
        """
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.tag_names = list(tag_names)
        self.logger = logger or logging.getLogger(__name__)

    # Transport

    def _token(self, force_refresh: bool) -> str:
        token = self.token_provider.get_valid_access_token(force_refresh)
        if not token:
            raise AuthRequiredError()
        return token

    def _send(self, method: str, url: str, token: str, body: Optional[Dict[str, Any]]) -> requests.Response:
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        try:
            return self.session.request(method, url, headers=headers, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise RemoteRequestFailed(0, f"Graph request failed\n{exc}\nAPI: {url}") from exc

    def _request(
        self,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        response = self._send(method, url, self._token(False), body)
        if response.status_code == 401:
            self.logger.debug(f"401 from {url}; retrying with a refreshed token")
            response = self._send(method, url, self._token(True), body)

        if allow_not_found and response.status_code == 404:
            return None

        payload: Any = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = None

        if response.status_code >= 400:
            raise RemoteRequestFailed(
                response.status_code,
                format_graph_failure(url, response.status_code, payload, response.text),
            )
        return payload if isinstance(payload, dict) else {}

    def _paginate(self, url: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        while next_url and (limit is None or len(items) < limit):
            page = self._request("GET", next_url) or {}
            items.extend(item for item in page.get("value") or [] if isinstance(item, dict))
            next_url = page.get("@odata.nextLink")
        return items if limit is None else items[:limit]

    # URLs

    def _list_url(self, collection_id: str) -> str:
        return f"{self.base_url}/{_segment(collection_id)}"

    def _task_url(self, collection_id: str, task_id: str) -> str:
        return f"{self._list_url(collection_id)}/tasks/{_segment(task_id)}"

    def _checklist_url(self, collection_id: str, task_id: str, item_id: Optional[str] = None) -> str:
        url = f"{self._task_url(collection_id, task_id)}/checklistItems"
        return f"{url}/{_segment(item_id)}" if item_id else url

    def _clean(self, title: str) -> str:
        return sanitize_title_for_remote(title, self.tag_names)

    # Collections

    def list_collections(self) -> List[RemoteCollection]:
        return [RemoteCollection.from_graph(item) for item in self._paginate(f"{self.base_url}?$top={PAGE_SIZE}")]

    # Tasks

    def list_tasks(
        self,
        collection_id: str,
        limit: int = DEFAULT_TASK_LIMIT,
        only_active: bool = False,
    ) -> List[RemoteTask]:
        """
        Fetch up to ``limit`` tasks, following continuation links.

        ``only_active`` asks the server to drop completed tasks; if the
        server rejects the filter the tasks are filtered here instead.
        """
        base = f"{self._list_url(collection_id)}/tasks?$top={PAGE_SIZE}&$expand=checklistItems"
        filtered = only_active
        if filtered:
            try:
                items = self._paginate(f"{base}&$filter={ENCODED_ACTIVE_FILTER}", limit)
            except RemoteRequestFailed as exc:
                if exc.status != 400:
                    raise
                self.logger.info(f"Server rejected task filter for list {collection_id}; filtering locally")
                filtered = False
                items = self._paginate(base, None)
        else:
            items = self._paginate(base, limit)

        tasks = [RemoteTask.from_graph(item) for item in items]
        if only_active and not filtered:
            tasks = [task for task in tasks if not task.completed]
        return tasks[:limit]

    def get_task(self, collection_id: str, task_id: str) -> Optional[RemoteTask]:
        """Fetch one task; None if it no longer exists."""
        payload = self._request(
            "GET",
            f"{self._task_url(collection_id, task_id)}?$expand=checklistItems",
            allow_not_found=True,
        )
        return RemoteTask.from_graph(payload) if payload is not None else None

    def create_task(
        self,
        collection_id: str,
        title: str,
        completed: bool = False,
        due_date: Optional[str] = None,
    ) -> RemoteTask:
        body: Dict[str, Any] = {
            "title": self._clean(title),
            "status": TaskStatus.COMPLETED.value if completed else TaskStatus.NOT_STARTED.value,
        }
        if due_date:
            body["dueDateTime"] = due_date_to_remote(due_date)
        payload = self._request("POST", f"{self._list_url(collection_id)}/tasks", body) or {}
        return RemoteTask.from_graph(payload)

    def update_task(
        self,
        collection_id: str,
        task_id: str,
        title: Optional[str] = None,
        completed: Optional[bool] = None,
        due_date: Any = KEEP,
    ) -> Optional[RemoteTask]:
        """
        Partially update a task.

        ``title``/``completed`` of None are left unchanged; ``due_date`` of
        ``KEEP`` is left unchanged while None clears it.
        """
        body: Dict[str, Any] = {}
        if title is not None:
            body["title"] = self._clean(title)
        if completed is not None:
            body["status"] = TaskStatus.COMPLETED.value if completed else TaskStatus.NOT_STARTED.value
        if due_date is not KEEP:
            body["dueDateTime"] = due_date_to_remote(due_date) if due_date else None
        if not body:
            return None
        payload = self._request("PATCH", self._task_url(collection_id, task_id), body)
        return RemoteTask.from_graph(payload) if payload else None

    def delete_task(self, collection_id: str, task_id: str, missing_ok: bool = False) -> bool:
        """Delete a task; with ``missing_ok`` a 404 returns False instead of raising."""
        result = self._request("DELETE", self._task_url(collection_id, task_id), allow_not_found=missing_ok)
        return result is not None

    # Checklist items

    def create_checklist_item(
        self,
        collection_id: str,
        task_id: str,
        display_name: str,
        checked: bool = False,
    ) -> RemoteChecklistItem:
        body = {"displayName": self._clean(display_name), "isChecked": bool(checked)}
        payload = self._request("POST", self._checklist_url(collection_id, task_id), body) or {}
        return RemoteChecklistItem.from_graph(payload)

    def update_checklist_item(
        self,
        collection_id: str,
        task_id: str,
        item_id: str,
        display_name: Optional[str] = None,
        checked: Optional[bool] = None,
    ) -> Optional[RemoteChecklistItem]:
        body: Dict[str, Any] = {}
        if display_name is not None:
            body["displayName"] = self._clean(display_name)
        if checked is not None:
            body["isChecked"] = bool(checked)
        if not body:
            return None
        payload = self._request("PATCH", self._checklist_url(collection_id, task_id, item_id), body)
        return RemoteChecklistItem.from_graph(payload) if payload else None

    def delete_checklist_item(self, collection_id: str, task_id: str, item_id: str, missing_ok: bool = False) -> bool:
        result = self._request(
            "DELETE",
            self._checklist_url(collection_id, task_id, item_id),
            allow_not_found=missing_ok,
        )
        return result is not None
