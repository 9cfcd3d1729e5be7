from __future__ import annotations

import threading
from typing import NamedTuple


class CounterSnapshot(NamedTuple):
    """The values of both counters at one point in time."""
    sent: int
    received: int


class CounterAggregator:
    """Process-wide request/response counters shared by every connection.

    Each counter has its own lock, so a thread counting a sent request never waits on a
    thread counting a received response. Increments are never lost, but ``snapshot`` is only
    guaranteed to be consistent once every worker thread has been joined."""

    def __init__(self):
        self._sent = 0
        self._received = 0
        self._sent_lock = threading.Lock()
        self._received_lock = threading.Lock()

    def increment_sent(self) -> None:
        with self._sent_lock:
            self._sent += 1

    def increment_received(self) -> None:
        with self._received_lock:
            self._received += 1

    def snapshot(self) -> CounterSnapshot:
        with self._sent_lock, self._received_lock:
            return CounterSnapshot(self._sent, self._received)
