"""File system watcher for Shot Merge.

Uses the watchdog library to monitor the work folder for new
screenshots, waits until they stop changing, then asks for a batch run.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class _StabilityTracker:
    """Tracks files until they have been stable (unchanged) for a given duration."""

    def __init__(
        self,
        stable_seconds: float,
        on_stable: Callable[[list[Path]], None],
        poll_interval: float = 1.0,
    ):
        self._stable_seconds = stable_seconds
        self._on_stable = on_stable
        self._poll_interval = poll_interval
        # file_path -> (last_change_time, last_size)
        self._pending = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def stable_seconds(self) -> float:
        return self._stable_seconds

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll, daemon=True, name="StabilityTracker"
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def track(self, path: Path) -> None:
        """Register or update a file for stability tracking."""
        try:
            size = path.stat().st_size
        except OSError:
            return
        with self._lock:
            self._pending[path] = (time.time(), size)
        logger.debug("Tracking %s (size=%d)", path, size)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def check(self, now: float | None = None) -> list[Path]:
        """Drop vanished files and return (and forget) the ones now stable."""
        now = time.time() if now is None else now
        stable: list[Path] = []
        with self._lock:
            for path, (last_seen, last_size) in list(self._pending.items()):
                try:
                    current_size = path.stat().st_size
                except OSError:
                    # File vanished, drop it
                    del self._pending[path]
                    continue
                if current_size != last_size:
                    self._pending[path] = (now, current_size)
                elif now - last_seen >= self._stable_seconds:
                    stable.append(path)
            for p in stable:
                del self._pending[p]
        return stable

    def _poll(self) -> None:
        """Periodically check if tracked files have stabilised."""
        while not self._stop.is_set():
            stable = self.check()
            if stable:
                logger.info("%d new file(s) stable", len(stable))
                try:
                    self._on_stable(stable)
                except Exception:
                    logger.exception("Error in on_stable callback")
            self._stop.wait(timeout=self._poll_interval)


class NewFileHandler(FileSystemEventHandler):
    """Watchdog handler that feeds new candidate files into the stability tracker."""

    def __init__(
        self,
        tracker: _StabilityTracker,
        extension: str,
        folder: str | Path | None = None,
    ):
        super().__init__()
        self._tracker = tracker
        self._extension = extension.lower().lstrip(".")
        self._folder = Path(folder) if folder is not None else None

    def _should_track(self, path: str) -> bool:
        # moves into processed/, error/ and done/ are our own
        if self._folder is not None and Path(path).parent != self._folder:
            return False
        ext = os.path.splitext(path)[1].lower().lstrip(".")
        return ext == self._extension

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        if self._should_track(event.src_path):
            self._tracker.track(Path(event.src_path))

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        if self._should_track(event.src_path):
            self._tracker.track(Path(event.src_path))

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """Browsers download to a temp name and rename when done."""
        if event.is_directory:
            return
        if self._should_track(event.dest_path):
            self._tracker.track(Path(event.dest_path))


class FolderWatcher:
    """High-level watcher that combines watchdog + stability tracking.

    Usage:
        watcher = FolderWatcher(work_dir, on_ready, extension="png")
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        folder: str | Path,
        on_files_ready: Callable[[list[Path]], None],
        extension: str = "png",
        stable_seconds: float = 5,
        poll_interval: float = 1.0,
    ):
        self.folder = str(folder)
        self._tracker = _StabilityTracker(stable_seconds, on_files_ready, poll_interval)
        self._handler = NewFileHandler(self._tracker, extension, folder)
        self._observer: Any | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the folder (non-recursive)."""
        if not os.path.isdir(self.folder):
            logger.error("Work folder does not exist: %s", self.folder)
            raise FileNotFoundError(f"Work folder does not exist: {self.folder}")

        observer = Observer()
        self._observer = observer
        observer.schedule(self._handler, self.folder, recursive=False)
        observer.start()
        self._tracker.start()
        logger.info(
            "Watching '%s' (stable=%ss)", self.folder, self._tracker.stable_seconds
        )

    def stop(self) -> None:
        """Stop watching and release resources."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        self._tracker.stop()
        logger.info("Watcher stopped (%d file(s) still settling).", self._tracker.pending_count)

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()
