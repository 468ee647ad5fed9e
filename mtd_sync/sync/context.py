"""Process-wide sync state shared by every pass."""

import contextlib
import logging
import re
import threading
from typing import Callable, Iterator, List, Optional

from ..core.config import SyncState, save_state
from ..core.models import RemoteCollection
from ..markdown.vault import DocumentStore
from .router import TagRouter


def collection_slug(display_name: str) -> str:
    """Tag-safe form of a collection name (``Grocery List`` -> ``grocery-list``)."""
    slug = re.sub(r'\s+', '-', display_name.strip().lower())
    return re.sub(r'[^\w/-]', '', slug)


class SyncContext:
    """
    Owns everything a pass reads or mutates.

    Holds the loaded state (settings, document bindings, mapping store),
    the remote client, the document store, the cached collection list and
    the guard that keeps passes from overlapping.
    """

    def __init__(
        self,
        state: SyncState,
        client,
        documents: DocumentStore,
        state_path: Optional[str] = None,
        notifier: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.state = state
        self.client = client
        self.documents = documents
        self.state_path = state_path
        self.notifier = notifier
        self.logger = logger or logging.getLogger(__name__)
        self._collections: Optional[List[RemoteCollection]] = None
        self._guard = threading.Lock()
        self.router = TagRouter.from_settings(state.settings)
        self._sync_client_tags()

    @property
    def settings(self):
        return self.state.settings

    @property
    def mappings(self):
        return self.state.mappings

    def _sync_client_tags(self) -> None:
        if hasattr(self.client, "tag_names"):
            self.client.tag_names = self.tag_names()

    # Collections

    def collections(self, refresh: bool = False) -> List[RemoteCollection]:
        if self._collections is None or refresh:
            self._collections = self.client.list_collections()
            self.logger.debug(f"Loaded {len(self._collections)} remote lists")
            self._sync_client_tags()
        return self._collections

    def find_collection(self, reference: str) -> Optional[RemoteCollection]:
        """Match a collection by id, then by display name (case-insensitive)."""
        wanted = reference.strip()
        for collection in self.collections():
            if collection.id == wanted:
                return collection
        lowered = wanted.lower()
        for collection in self.collections():
            if collection.display_name.strip().lower() == lowered:
                return collection
        return None

    def collection_name(self, collection_id: str) -> str:
        for collection in self._collections or []:
            if collection.id == collection_id:
                return collection.display_name
        for rule in self.router.rules:
            if rule.collection_id == collection_id and rule.collection_name:
                return rule.collection_name
        return collection_id

    # Tags

    def pull_tag_for(self, collection_id: str) -> Optional[str]:
        pull_tag = self.settings.pull_tag.strip()
        if not pull_tag:
            return None
        if not pull_tag.startswith('#'):
            pull_tag = f"#{pull_tag}"
        if self.settings.pull_tag_append_list_name:
            slug = collection_slug(self.collection_name(collection_id))
            if slug:
                return f"{pull_tag}/{slug}"
        return pull_tag

    def tag_names(self) -> List[str]:
        """Every tag the codec should treat as routing metadata."""
        names = list(self.router.tag_names())
        if self.settings.pull_tag.strip():
            ids = [c.id for c in self._collections or []] or [""]
            for collection_id in ids:
                tag = self.pull_tag_for(collection_id)
                if tag and tag.lower() not in (n.lower() for n in names):
                    names.append(tag)
        return names

    # Pass guard, persistence, notices

    @contextlib.contextmanager
    def exclusive_pass(self) -> Iterator[bool]:
        """Yield True if this caller may run a pass, False if one is already running."""
        acquired = self._guard.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._guard.release()

    def save(self) -> bool:
        return save_state(self.state, self.state_path)

    def notify(self, message: str) -> None:
        self.logger.info(message)
        if self.notifier is not None:
            self.notifier(message)
