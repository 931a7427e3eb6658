# zm_platform/orchestrator/_lock.py
# single-flight guard for sync cycles and the cooperative abort flag.
from __future__ import annotations

import threading
from contextlib import contextmanager
from collections.abc import Iterator

__all__ = ["SyncLock", "AbortFlag", "SYNC_LOCK", "ABORT"]


class SyncLock:
    """At most one sync cycle at a time. Never blocks: a second caller is told to skip."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        if self._lock.locked():
            self._lock.release()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        got = self.try_acquire()
        try:
            yield got
        finally:
            if got:
                self.release()


class AbortFlag:
    def __init__(self) -> None:
        self._ev = threading.Event()

    def request(self) -> None:
        self._ev.set()

    def is_set(self) -> bool:
        return self._ev.is_set()

    def clear(self) -> None:
        self._ev.clear()


# process-wide defaults owned by the orchestrator
SYNC_LOCK = SyncLock()
ABORT = AbortFlag()
