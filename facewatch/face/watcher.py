"""Polling watcher for the persons database folder.

Change detection is a periodic full-tree scan: the newest modification time of
any regular file below the root. Several edits within one interval collapse
into one callback. Deleting a file does not raise the maximum and is not seen
until something else is written.
"""

from __future__ import annotations

import os
import stat
import threading

from pathlib import Path
from typing import Callable, Optional, Union

from facewatch.utils.log import get_logger

logger = get_logger(__name__)


def _raise(err: OSError) -> None:
    raise err


def latest_mtime(root: Union[str, Path]) -> int:
    """Newest st_mtime_ns over all regular files below `root` (0 when there are none).

    Raises:
        OSError: the tree could not be read.
    """
    latest = 0
    for dirpath, _, filenames in os.walk(root, onerror=_raise):
        for fname in filenames:
            try:
                st = os.stat(os.path.join(dirpath, fname))
            except FileNotFoundError:
                # dangling symlink, or removed since the listing
                continue
            if stat.S_ISREG(st.st_mode) and st.st_mtime_ns > latest:
                latest = st.st_mtime_ns
    return latest


class DirectoryWatcher:
    """Runs `on_change(path)` from a background thread when `path` gets newer files.

    `start`/`stop` are serialized; `stop` joins the thread before returning.
    """

    def __init__(self, on_change: Callable[[Path], None], name: str = "db-watcher"):
        self._on_change = on_change
        self._name = name
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.path: Optional[Path] = None
        self.interval: float = 0.0
        self.last_mtime: int = 0

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _scan(self, path: Path) -> Optional[int]:
        try:
            return latest_mtime(path)
        except OSError as e:
            logger.debug(f"Error accessing directory {path}: {e}")
            return None

    def start(self, path: Union[str, Path], interval: float) -> bool:
        """Begin watching; returns False if already running.

        A `stop` still joining the previous thread is waited out first.
        """
        with self._lifecycle_lock:
            thread = self._thread
            if thread is not None and thread.is_alive():
                if not self._stop_event.is_set() or thread is threading.current_thread():
                    logger.debug("Watcher already running")
                    return False
                # A stop is in progress; let the old loop finish first.
                thread.join()
            self.path = Path(path)
            self.interval = float(interval)
            baseline = self._scan(self.path)
            self.last_mtime = baseline if baseline is not None else 0
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
            logger.debug(f"Started watching database folder: {self.path} (every {self.interval:g}s)")
            return True

    def stop(self) -> None:
        """Stop and join the watcher thread. Safe to call repeatedly."""
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
        if thread is threading.current_thread():
            # Called from on_change; the loop exits once the callback returns.
            return
        thread.join()
        with self._lifecycle_lock:
            if self._thread is thread:
                self._thread = None
        logger.debug("Stopped watching database folder")

    def _run(self) -> None:
        path = self.path
        while not self._stop_event.wait(self.interval):
            current = self._scan(path)
            if current is None or current <= self.last_mtime:
                continue
            logger.debug("Database folder changed, reloading...")
            self.last_mtime = current
            try:
                self._on_change(path)
            except Exception as e:
                logger.error(f"Reload after change failed: {e}")
