"""Delivery of parsed entries from the tail worker to presentation code.

The worker only ever pushes messages onto a bounded queue; the consumer drains
them on its own thread and applies them in order.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Protocol

from dnsquerylog.ltsv import QueryLogEntry

logger = logging.getLogger("dnsquerylog.sink")

MAX_PENDING = 10_000

ENTRY = "entry"
CLEAR = "clear"


class DeliverySink(Protocol):
    def push(self, entry: QueryLogEntry) -> None: ...

    def clear(self) -> None: ...


@dataclass(frozen=True)
class SinkEvent:
    kind: str
    entry: QueryLogEntry | None = None


class QueueSink:
    """Thread-safe sink backed by a bounded ``queue.Queue``."""

    def __init__(self, maxsize: int = MAX_PENDING) -> None:
        self._queue: queue.Queue[SinkEvent] = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self.dropped = 0

    def push(self, entry: QueryLogEntry) -> None:
        with self._lock:
            try:
                self._queue.put_nowait(SinkEvent(ENTRY, entry))
            except queue.Full:
                self.dropped += 1
                if self.dropped == 1 or self.dropped % 1000 == 0:
                    logger.warning("Consumer is not keeping up, dropped %d entries", self.dropped)

    def clear(self) -> None:
        """Discard anything still pending and tell the consumer to clear."""
        with self._lock:
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
            self._queue.put_nowait(SinkEvent(CLEAR))

    def get(self, timeout: float | None = None) -> SinkEvent | None:
        """Block for the next event; None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[SinkEvent]:
        events: list[SinkEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

