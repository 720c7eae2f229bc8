"""Directory monitor: watchdog events → IoEvents.

File creations and modifications are held back until the file has stopped
changing for ``stability_threshold`` milliseconds, so reactors never see a
half-written upload. Directory events and deletions go out immediately.
"""

import logging
import os
import threading
import time

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from overwatch.events import IoEvent


class SettleTracker:
    """Tracks files until their size and mtime stop changing."""

    def __init__(self, threshold_ms: int, emit, stat=os.stat, clock=time.monotonic):
        self._threshold = threshold_ms / 1000.0
        self._emit = emit
        self._stat = stat
        self._clock = clock
        self._pending: dict[str, list] = {}
        self._lock = threading.Lock()
        self._log = logging.getLogger("overwatch.monitor")

    def track(self, event_type: str, path: str):
        if self._threshold <= 0:
            self._emit(IoEvent.from_path(event_type, path))
            return
        signature = self._signature(path)
        with self._lock:
            entry = self._pending.get(path)
            if entry is None:
                self._pending[path] = [event_type, signature, self._clock()]
            else:
                # a pending add stays an add however often it is written to
                if entry[0] != "add":
                    entry[0] = event_type

    def discard(self, path: str):
        with self._lock:
            self._pending.pop(path, None)

    def pending(self) -> dict[str, str]:
        with self._lock:
            return {path: entry[0] for path, entry in self._pending.items()}

    def poll(self):
        """Emit every tracked file that has been stable long enough."""
        # no stat() while holding the lock
        with self._lock:
            paths = list(self._pending)
        signatures = {path: self._signature(path) for path in paths}

        now = self._clock()
        ready = []
        with self._lock:
            for path, signature in signatures.items():
                entry = self._pending.get(path)
                if entry is None:
                    continue
                if signature is None:
                    self._log.debug("Dropping vanished file %s", path)
                    del self._pending[path]
                elif signature != entry[1]:
                    entry[1], entry[2] = signature, now
                elif now - entry[2] >= self._threshold:
                    ready.append((entry[0], path))
                    del self._pending[path]
        for event_type, path in ready:
            self._emit(IoEvent.from_path(event_type, path))

    def _signature(self, path: str):
        try:
            st = self._stat(path)
        except OSError:
            return None
        return (st.st_size, st.st_mtime_ns)


class _MonitorHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into overwatch event types."""

    def __init__(self, emit, tracker: SettleTracker):
        super().__init__()
        self._emit = emit
        self._tracker = tracker

    def on_created(self, event: FileSystemEvent):
        path = os.fsdecode(event.src_path)
        if event.is_directory:
            self._emit(IoEvent.from_path("addDir", path))
        else:
            self._tracker.track("add", path)

    def on_modified(self, event: FileSystemEvent):
        # directory mtime changes are noise
        if event.is_directory:
            return
        self._tracker.track("change", os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent):
        path = os.fsdecode(event.src_path)
        if event.is_directory:
            self._emit(IoEvent.from_path("unlinkDir", path))
        else:
            self._tracker.discard(path)
            self._emit(IoEvent.from_path("unlink", path))

    def on_moved(self, event: FileSystemEvent):
        src = os.fsdecode(event.src_path)
        dest = os.fsdecode(event.dest_path)
        if event.is_directory:
            self._emit(IoEvent.from_path("unlinkDir", src))
            self._emit(IoEvent.from_path("addDir", dest))
        else:
            self._tracker.discard(src)
            self._emit(IoEvent.from_path("unlink", src))
            self._tracker.track("add", dest)


class DirectoryMonitor:
    """Watches one directory tree and feeds IoEvents to *emit*."""

    def __init__(self, path: str, emit, stability_threshold: int = 30000,
                 poll_interval: int = 1000, recursive: bool = True):
        self.path = os.path.abspath(path)
        self._emit = emit
        self._poll_interval = poll_interval / 1000.0
        self._recursive = recursive
        self.tracker = SettleTracker(stability_threshold, self._safe_emit)
        self._handler = _MonitorHandler(self._safe_emit, self.tracker)
        self._observer = Observer()
        self._stop = threading.Event()
        self._poller = None
        self._log = logging.getLogger("overwatch.monitor")

    def start(self):
        if not os.path.isdir(self.path):
            raise FileNotFoundError(f"Monitored directory does not exist: {self.path}")
        self._observer.schedule(self._handler, self.path, recursive=self._recursive)
        self._observer.start()
        self._poller = threading.Thread(target=self._poll_loop, name="settle-poller", daemon=True)
        self._poller.start()
        self._log.info("Watching %s (recursive=%s)", self.path, self._recursive)

    def stop(self):
        self._stop.set()
        self._observer.stop()
        self._observer.join()
        if self._poller:
            self._poller.join()
        self._log.info("Stopped watching %s", self.path)

    def _poll_loop(self):
        while not self._stop.wait(self._poll_interval):
            self.tracker.poll()

    def _safe_emit(self, event: IoEvent):
        try:
            self._emit(event)
        except Exception:
            self._log.exception("Failed to dispatch %s %s", event.event_type, event.full_path)
