from __future__ import annotations

import contextlib
import threading
from typing import Dict, Iterable, Iterator, List, Tuple


class PathLockTable:
    """Per-path mutexes for the fingerprint-check-then-write critical section.

    Locks are reference counted and dropped when nobody holds or waits on
    them. Multiple paths are taken in sorted order so two invocations
    touching overlapping sets cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._refs[key] = self._refs.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            n = self._refs.get(key, 0) - 1
            if n <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = n

    @contextlib.contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[List[str]]:
        ordered = sorted(set(keys))
        acquired: List[Tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield ordered
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def held_count(self) -> int:
        with self._guard:
            return len(self._locks)
