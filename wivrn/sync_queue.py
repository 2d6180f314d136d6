"""Blocking FIFO queue shared between threads, which can be closed."""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Generic, TypeVar

__all__ = ["SyncQueueClosed", "SyncQueue"]

T = TypeVar("T")


class SyncQueueClosed(Exception):
    """Raised by waiting operations once the queue is closed."""

    def __init__(self) -> None:
        super().__init__("sync_queue_closed")


class SyncQueue(Generic[T]):
    """Thread-safe queue whose readers block until an item arrives or it is closed."""

    def __init__(self) -> None:
        self._queue: deque[T] = deque()
        self._cv = threading.Condition()
        self._closed = False

    def push(self, item: T) -> None:
        """Append an item and wake one waiting reader."""
        with self._cv:
            self._queue.append(item)
            self._cv.notify()

    def _wait(self) -> None:
        self._cv.wait_for(lambda: bool(self._queue) or self._closed)
        if self._closed:
            raise SyncQueueClosed()

    def pop_if(self, pred: Callable[[T], bool]) -> T | None:
        """Wait for an item; remove and return it if ``pred`` accepts it, else return None."""
        with self._cv:
            self._wait()
            if pred(self._queue[0]):
                return self._queue.popleft()
            return None

    def pop(self) -> T:
        """Wait for an item, then remove and return it."""
        with self._cv:
            self._wait()
            return self._queue.popleft()

    def drop_until(self, pred: Callable[[T], bool]) -> None:
        """Discard items from the front until one satisfies ``pred`` (without waiting)."""
        with self._cv:
            while self._queue and not pred(self._queue[0]):
                self._queue.popleft()

    def peek(self) -> T:
        """Wait for an item and return it without removing it."""
        with self._cv:
            self._wait()
            return self._queue[0]

    def close(self) -> None:
        """Close the queue and wake every waiting reader."""
        with self._cv:
            self._closed = True
            self._cv.notify_all()