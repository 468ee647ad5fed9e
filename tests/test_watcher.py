"""
Tests for document change detection, debouncing and the auto-sync timer.
"""

import threading
from unittest.mock import Mock

from mtd_sync.markdown.watcher import Debouncer, DocumentWatcher, PeriodicRunner


class TestDebouncer:

    def test_burst_is_coalesced(self):
        fired = []
        done = threading.Event()

        def callback(key):
            fired.append(key)
            done.set()

        debouncer = Debouncer(0.05, callback)
        for _ in range(5):
            debouncer.trigger("Tasks.md")

        assert done.wait(2.0)
        assert fired == ["Tasks.md"]
        assert debouncer.pending() == 0

    def test_keys_are_independent(self):
        fired = []
        both = threading.Event()

        def callback(key):
            fired.append(key)
            if len(fired) == 2:
                both.set()

        debouncer = Debouncer(0.02, callback)
        debouncer.trigger("a.md")
        debouncer.trigger("b.md")

        assert both.wait(2.0)
        assert sorted(fired) == ["a.md", "b.md"]

    def test_cancel_all(self):
        callback = Mock()
        debouncer = Debouncer(10, callback)
        debouncer.trigger("a.md")
        assert debouncer.pending() == 1

        debouncer.cancel_all()

        assert debouncer.pending() == 0
        callback.assert_not_called()


class TestDocumentWatcher:

    def _watcher(self, mtimes, changes):
        store = Mock()
        store.mtime_ms.side_effect = lambda path: mtimes.get(path, 0)
        return DocumentWatcher(store, lambda: list(mtimes), changes.append)

    def test_first_poll_is_baseline(self):
        changes = []
        watcher = self._watcher({"Tasks.md": 100}, changes)
        watcher.poll()
        assert changes == []

    def test_reports_modified_document(self):
        mtimes = {"Tasks.md": 100, "Other.md": 100}
        changes = []
        watcher = self._watcher(mtimes, changes)
        watcher.poll()

        mtimes["Tasks.md"] = 200
        watcher.poll()
        watcher.poll()

        assert changes == ["Tasks.md"]

    def test_acknowledged_write_is_ignored(self):
        mtimes = {"Tasks.md": 100}
        changes = []
        watcher = self._watcher(mtimes, changes)
        watcher.poll()

        mtimes["Tasks.md"] = 300
        watcher.acknowledge("Tasks.md")
        watcher.poll()

        assert changes == []

    def test_missing_document_is_not_reported(self):
        mtimes = {"Tasks.md": 100}
        changes = []
        watcher = self._watcher(mtimes, changes)
        watcher.poll()

        mtimes["Tasks.md"] = 0
        watcher.poll()

        assert changes == []


class TestPeriodicRunner:

    def test_runs_until_stopped(self):
        ticked = threading.Event()
        runner = PeriodicRunner(0.01, ticked.set)

        runner.start()
        assert ticked.wait(2.0)
        runner.stop()

        assert runner._thread is None

    def test_failure_does_not_stop_timer(self):
        calls = []
        again = threading.Event()

        def callback():
            calls.append(1)
            if len(calls) >= 2:
                again.set()
            raise RuntimeError("offline")

        runner = PeriodicRunner(0.01, callback, logger=Mock())
        runner.start()
        assert again.wait(2.0)
        runner.stop()
