"""Bookkeeping of the forks opened on a volume."""

from __future__ import annotations

import threading
from typing import Callable, Iterator, List

from .replyblock import FileInfo


class OpenForks:
    """Thread-safe record of open forks, most recently opened first."""

    def __init__(self) -> None:
        self._forks: List[FileInfo] = []
        self._lock = threading.Lock()

    def add(self, fp: FileInfo) -> None:
        """Record a newly opened fork."""
        with self._lock:
            self._forks.insert(0, fp)

    def remove(self, fp: FileInfo) -> None:
        """Forget a fork; forks that are not recorded are ignored."""
        with self._lock:
            for index, candidate in enumerate(self._forks):
                if candidate is fp:
                    del self._forks[index]
                    return

    def close_all(self, flush: Callable[[int], object], close: Callable[[int], object]) -> None:
        """Flush and close every recorded fork, then forget them all."""
        with self._lock:
            while self._forks:
                fp = self._forks.pop(0)
                flush(fp.forkid)
                close(fp.forkid)

    def __iter__(self) -> Iterator[FileInfo]:
        with self._lock:
            return iter(list(self._forks))

    def __len__(self) -> int:
        with self._lock:
            return len(self._forks)