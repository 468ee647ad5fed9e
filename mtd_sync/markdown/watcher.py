"""
Change notification for task documents.

``DocumentWatcher`` polls document modification times, ``Debouncer``
coalesces bursts of edits per document, and ``PeriodicRunner`` drives the
auto-sync timer. All three run callbacks on background threads; the
engine's re-entrancy guard keeps overlapping passes from running.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, Optional

from .vault import DocumentStore


class Debouncer:
    """Runs ``callback(key)`` once ``delay`` seconds after the last trigger for ``key``."""

    def __init__(self, delay: float, callback: Callable[[str], None], logger: Optional[logging.Logger] = None):
        self.delay = delay
        self.callback = callback
        self.logger = logger or logging.getLogger(__name__)
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def trigger(self, key: str) -> None:
        with self._lock:
            existing = self._timers.pop(key, None)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(self.delay, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire(self, key: str) -> None:
        with self._lock:
            self._timers.pop(key, None)
        try:
            self.callback(key)
        except Exception:
            self.logger.exception(f"Debounced handler failed for {key}")

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def cancel_all(self) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()


class DocumentWatcher:
    """Polls documents and reports the ones whose mtime changed."""

    def __init__(
        self,
        store: DocumentStore,
        documents: Callable[[], Iterable[str]],
        on_change: Callable[[str], None],
        poll_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.documents = documents
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self._mtimes: Dict[str, int] = {}
        self._primed = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll(self) -> None:
        """Check every watched document once; the first poll only records a baseline."""
        current = {path: self.store.mtime_ms(path) for path in self.documents()}
        if self._primed:
            for path, mtime in current.items():
                if mtime and mtime != self._mtimes.get(path):
                    self.logger.debug(f"Change detected in {path}")
                    self.on_change(path)
        self._mtimes = current
        self._primed = True

    def acknowledge(self, document_path: str) -> None:
        """Record our own write so it is not reported as an edit."""
        self._mtimes[document_path] = self.store.mtime_ms(document_path)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll()
            except Exception:
                self.logger.exception("Document poll failed")
            self._stop.wait(self.poll_interval)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="mtd-sync-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval * 2)
            self._thread = None


class PeriodicRunner:
    """Calls ``callback`` every ``interval_seconds`` until stopped."""

    def __init__(self, interval_seconds: float, callback: Callable[[], None], logger: Optional[logging.Logger] = None):
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.logger = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.callback()
            except Exception:
                self.logger.exception("Periodic sync failed")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="mtd-sync-timer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
