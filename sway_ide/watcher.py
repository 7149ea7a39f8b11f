# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
import os
import queue
import threading
from typing import Dict, Iterable, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Signature = Dict[str, Optional[Tuple[int, int]]]


def path_signature(paths: Iterable[str]) -> Signature:
    """``(mtime_ns, size)`` per path; None for paths that do not exist."""
    signature: Signature = {}
    for path in paths:
        try:
            st = os.stat(path)
            signature[path] = (st.st_mtime_ns, st.st_size)
        except OSError:
            signature[path] = None
    return signature


class FsWatcher:
    """
    Polling filesystem watcher for the files open in the editor.

    A daemon thread stats the watched paths every `interval` seconds and
    puts a single ``"changed"`` token on `events` whenever any of them was
    modified, created or removed. Consumers drain the queue from the main
    loop and never see which path changed.
    """

    def __init__(self, interval: float = 0.25):
        self.interval = interval
        self.events: "queue.Queue[str]" = queue.Queue()
        self._paths: Set[str] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last: Signature = {}

    def set_paths(self, paths: Iterable[str]) -> None:
        """Replaces the watched set; the new paths' current state is the baseline."""
        new_paths = {os.path.abspath(p) for p in paths}
        with self._lock:
            added = new_paths - self._paths
            self._paths = new_paths
            self._last = {p: s for p, s in self._last.items() if p in new_paths}
            self._last.update(path_signature(added))

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="FsWatcher", daemon=True)
        self._thread.start()
        logger.debug(f"FsWatcher started (interval {self.interval:.3f}s).")

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None

    def check_once(self) -> bool:
        """Compares the watched paths against the last poll; queues a token on change."""
        with self._lock:
            paths = set(self._paths)
            previous = dict(self._last)
        current = path_signature(paths)
        with self._lock:
            if paths != self._paths:
                # set_paths ran concurrently; its baseline wins this round.
                return False
            self._last = current
        if current != previous:
            logger.debug("FsWatcher: change detected.")
            self.events.put("changed")
            return True
        return False

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.check_once()
            except Exception:
                logger.exception("FsWatcher: unexpected error while polling")

    def drain(self) -> bool:
        """True when at least one change token was waiting."""
        changed = False
        try:
            while True:
                self.events.get_nowait()
                changed = True
        except queue.Empty:
            pass
        return changed
