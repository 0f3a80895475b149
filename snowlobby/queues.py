"""Thread-safe FIFO queue and the timer queue of scheduled game events."""

from __future__ import annotations

import heapq
import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class LockQueue(Generic[T]):
    """A FIFO queue guarded by a lock, with blocking pop."""

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._cond = threading.Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def push(self, value: T) -> None:
        with self._cond:
            self._items.append(value)
            self._cond.notify()

    def try_pop(self) -> Optional[T]:
        """Pop the oldest value, or return None when the queue is empty."""
        with self._cond:
            return self._items.popleft() if self._items else None

    def wait_pop(self, timeout: Optional[float] = None) -> T:
        """Pop the oldest value, waiting for one; TimeoutError if none arrives."""
        with self._cond:
            if not self._cond.wait_for(lambda: bool(self._items), timeout):
                raise TimeoutError("no value arrived in time")
            return self._items.popleft()

    def clear(self) -> None:
        with self._cond:
            self._items.clear()


@dataclass(order=True)
class TimerEvent:
    """A game event due at ``start_time``; events order by that time alone."""

    start_time: float
    this_id: int = field(default=0, compare=False)
    target_id: int = field(default=0, compare=False)
    order: int = field(default=0, compare=False)


class TimerQueue:
    """A thread-safe priority queue handing out the earliest event first."""

    def __init__(self) -> None:
        self._heap: list[tuple[float, int, TimerEvent]] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def push(self, event: TimerEvent) -> None:
        with self._lock:
            heapq.heappush(self._heap, (event.start_time, next(self._sequence), event))

    def try_pop(self) -> Optional[TimerEvent]:
        """Pop the earliest event, or return None when the queue is empty."""
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[2]

    def clear(self) -> None:
        with self._lock:
            self._heap.clear()