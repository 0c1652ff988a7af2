# Overview: Process-wide TTL cache for license checks, guarded by a reader/writer lock.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class TTLCache:
    """
    Key/value cache with an explicit TTL per entry.

    Expired entries are dropped lazily: a read that finds one removes it and
    reports a miss. purge_expired() sweeps everything at once.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock.read():
            entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() < expires_at:
            return value
        with self._lock.write():
            current = self._entries.get(key)
            if current is not None and current[0] <= self._clock():
                del self._entries[key]
        return None

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock.write():
            self._entries[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        with self._lock.write():
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock.write():
            self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock.write():
            stale = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def keys(self) -> list[str]:
        with self._lock.read():
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)
