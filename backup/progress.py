"""Percent-complete cell shared between a worker and its observers."""
from __future__ import annotations

from threading import Lock
from typing import Callable, List

DONE = 101

ProgressListener = Callable[[int], None]


class Progress:
    """Integer 0..100 written by one worker, read by any number of observers.

    ``DONE`` (101) is published exactly once when the operation ends so the
    observer knows to clear its indicator.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = Lock()
        self._listeners: List[ProgressListener] = []

    def get(self) -> int:
        with self._lock:
            return self._value

    @property
    def done(self) -> bool:
        return self.get() == DONE

    def subscribe(self, listener: ProgressListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _publish(self, value: int) -> None:
        with self._lock:
            if self._value == DONE or value <= self._value:
                return
            self._value = value
            listeners = list(self._listeners)
        for listener in listeners:
            listener(value)

    def set(self, value: int) -> None:
        self._publish(max(0, min(100, int(value))))

    def update(self, processed: int, total: int) -> None:
        if total <= 0:
            self.set(100)
            return
        self.set(processed * 100 // total)

    def finish(self) -> None:
        self._publish(DONE)


__all__ = ["DONE", "Progress", "ProgressListener"]
