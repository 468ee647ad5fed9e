"""Watch command - push local edits as they happen and sync periodically."""

import logging
import threading
from typing import List, Optional

from ..core.models import MIN_AUTO_SYNC_MINUTES
from ..markdown.watcher import Debouncer, DocumentWatcher, PeriodicRunner
from ..sync.context import SyncContext
from ..sync.engine import ReconciliationEngine


class WatchCommand:
    """
    Long-running command.

    Edits to bound documents are debounced and pushed with a local-only
    pass; when auto sync is enabled every bound document gets a full sync
    on a timer. Pass results are printed through the context notifier.
    """

    def __init__(self, context: SyncContext, verbose: bool = False):
        self.context = context
        self.verbose = verbose
        self.engine = ReconciliationEngine(context)
        self.logger = logging.getLogger(__name__)
        self.stop_event = threading.Event()
        self.watcher: Optional[DocumentWatcher] = None
        self.debouncer: Optional[Debouncer] = None
        self.timer: Optional[PeriodicRunner] = None
        self.watched: List[str] = []
        context.notifier = self._notice

    @staticmethod
    def _notice(message: str) -> None:
        print(f"🔔 {message}")

    def _push(self, document_path: str) -> None:
        summary = self.engine.run_local_push_only(document_path)
        if summary.changed and self.watcher is not None:
            self.watcher.acknowledge(document_path)

    def _sync_all(self) -> None:
        self.watched = self.engine.bound_documents()
        for summary in self.engine.sync_bound_documents():
            if summary.changed and self.watcher is not None:
                self.watcher.acknowledge(summary.document_path)

    def _documents(self) -> List[str]:
        return list(self.watched)

    def start(self, poll_interval: float = 1.0) -> None:
        settings = self.context.settings
        self.debouncer = Debouncer(settings.debounce_seconds, self._push)
        self.watcher = DocumentWatcher(
            self.context.documents,
            self._documents,
            self.debouncer.trigger,
            poll_interval=poll_interval,
        )
        self.watcher.start()

        if settings.auto_sync_enabled:
            minutes = max(MIN_AUTO_SYNC_MINUTES, settings.auto_sync_interval_minutes)
            self.timer = PeriodicRunner(minutes * 60, self._sync_all)
            self.timer.start()

    def stop(self) -> None:
        self.stop_event.set()
        if self.watcher is not None:
            self.watcher.stop()
        if self.debouncer is not None:
            self.debouncer.cancel_all()
        if self.timer is not None:
            self.timer.stop()

    def run(self, poll_interval: float = 1.0, initial_sync: bool = True) -> bool:
        """Run until interrupted (Ctrl+C) or ``stop()`` is called."""
        self.watched = self.engine.bound_documents()
        print(f"👀 Watching {len(self.watched)} document(s)")
        for document_path in self.watched:
            print(f"   • {document_path}")
        if self.context.settings.auto_sync_enabled:
            print(f"⏱️  Auto sync every {self.context.settings.auto_sync_interval_minutes} minute(s)")

        if initial_sync:
            self._sync_all()
        self.start(poll_interval)
        try:
            while not self.stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            print("\nStopping watcher.")
        finally:
            self.stop()
        return True
