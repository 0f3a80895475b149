"""Reader/writer lock with re-entrant writers, and a launcher for tagged threads."""

from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

ACQUIRE_TIMEOUT = 10.0

_thread_ids = itertools.count(1)
_local = threading.local()


class LockError(RuntimeError):
    """Raised when a lock is misused or cannot be acquired in time."""


def _assign_thread_id() -> int:
    _local.thread_id = next(_thread_ids)
    return _local.thread_id


def current_thread_id() -> int:
    """Return the small numeric id of the calling thread, assigning one if needed."""
    try:
        return _local.thread_id
    except AttributeError:
        return _assign_thread_id()


class ReadWriteLock:
    """A lock held by one writer or many readers.

    The writing thread may take the write lock again and may also read.
    A thread must release its reads before its last write.
    """

    def __init__(self, timeout: float = ACQUIRE_TIMEOUT) -> None:
        self._timeout = timeout
        self._cond = threading.Condition()
        self._owner = 0
        self._write_count = 0
        self._read_count = 0

    def write_lock(self) -> None:
        me = current_thread_id()
        with self._cond:
            if self._owner == me:
                self._write_count += 1
                return
            free = self._cond.wait_for(
                lambda: self._owner == 0 and self._read_count == 0, self._timeout
            )
            if not free:
                raise LockError("LOCK_TIMEOUT")
            self._owner = me
            self._write_count += 1

    def write_unlock(self) -> None:
        me = current_thread_id()
        with self._cond:
            if self._owner != me:
                raise LockError("write lock is not held by this thread")
            if self._read_count:
                raise LockError("INVALID_UNLOCK_ORDER")
            self._write_count -= 1
            if self._write_count == 0:
                self._owner = 0
                self._cond.notify_all()

    def read_lock(self) -> None:
        me = current_thread_id()
        with self._cond:
            if self._owner == me:
                self._read_count += 1
                return
            if not self._cond.wait_for(lambda: self._owner == 0, self._timeout):
                raise LockError("LOCK_TIMEOUT")
            self._read_count += 1

    def read_unlock(self) -> None:
        with self._cond:
            if self._read_count == 0:
                raise LockError("MULTIPLE_UNLOCK")
            self._read_count -= 1
            if self._read_count == 0:
                self._cond.notify_all()

    @contextmanager
    def reading(self) -> Iterator[None]:
        self.read_lock()
        try:
            yield
        finally:
            self.read_unlock()

    @contextmanager
    def writing(self) -> Iterator[None]:
        self.write_lock()
        try:
            yield
        finally:
            self.write_unlock()


class ThreadManager:
    """Starts threads that each get their own thread id, and joins them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        current_thread_id()

    def launch(self, callback: Callable[[], object]) -> None:
        def run() -> None:
            _assign_thread_id()
            callback()

        thread = threading.Thread(target=run)
        with self._lock:
            self._threads.append(thread)
        thread.start()

    def join(self) -> None:
        with self._lock:
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()

    def __enter__(self) -> "ThreadManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.join()