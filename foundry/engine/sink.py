"""
foundry/engine/sink.py

Destinations for stream events.

A sink accepts one event at a time and must push it to the peer before the
next one is produced (write, then flush). Once the peer is gone every write
returns False without raising, so producers can keep draining a process
without caring whether anyone is still listening.

ChannelSink bridges the worker thread that runs a command and the async
response generator that feeds the HTTP connection. CallbackSink hands events
to a plain function (CLI output, tests).
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Optional, Union

from foundry.engine.events import StreamEvent

logger = logging.getLogger(__name__)


class EventSink(ABC):
    @abstractmethod
    def write(self, event: StreamEvent) -> bool:
        """Queue one event. False means the peer is gone."""

    def flush(self) -> None:
        """Block until written events have been handed to the transport."""

    @property
    def closed(self) -> bool:
        return False


class _EndOfStream:
    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


class ChannelSink(EventSink):
    """
    Bounded hand-off between a producer thread and a single consumer.

    Producer side: write()/flush()/finish().
    Consumer side: next_event() returns a StreamEvent, None on timeout, or
    END_OF_STREAM once the producer finished and the buffer is drained.
    close() marks the peer as disconnected.
    """

    def __init__(self, capacity: int = 64, wait_interval: float = 0.5):
        self._events: Deque[StreamEvent] = deque()
        self._capacity = max(1, capacity)
        self._wait_interval = wait_interval
        self._cond = threading.Condition()
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: StreamEvent) -> bool:
        with self._cond:
            while len(self._events) >= self._capacity and not self._closed:
                self._cond.wait(self._wait_interval)
            if self._closed:
                return False
            self._events.append(event)
            self._cond.notify_all()
            return True

    def flush(self) -> None:
        with self._cond:
            while self._events and not self._closed:
                self._cond.wait(self._wait_interval)

    def finish(self) -> None:
        with self._cond:
            self._finished = True
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            if not self._closed:
                logger.debug(f"[Stream] Peer disconnected, dropping {len(self._events)} buffered event(s)")
            self._closed = True
            self._events.clear()
            self._cond.notify_all()

    def next_event(self, timeout: Optional[float] = None) -> Union[StreamEvent, _EndOfStream, None]:
        with self._cond:
            if not self._events and not self._finished and not self._closed:
                self._cond.wait(timeout)
            if self._events:
                event = self._events.popleft()
                self._cond.notify_all()
                return event
            if self._finished or self._closed:
                return END_OF_STREAM
            return None


class CallbackSink(EventSink):
    """Delivers events synchronously to a callable."""

    def __init__(self, callback: Callable[[StreamEvent], None]):
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: StreamEvent) -> bool:
        if self._closed:
            return False
        try:
            self._callback(event)
        except (BrokenPipeError, ConnectionError) as exc:
            logger.debug(f"[Stream] Callback sink closed: {exc}")
            self._closed = True
            return False
        return True


class CollectingSink(EventSink):
    """Keeps every event in memory."""

    def __init__(self):
        self.events = []

    def write(self, event: StreamEvent) -> bool:
        self.events.append(event)
        return True

    @property
    def types(self):
        return [event.type.value for event in self.events]
