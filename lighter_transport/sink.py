"""Optional structured event sink for transport and stream activity.

The core never configures logging or tracing itself. Callers who want
structured events pass an ``EventSink``; without one a ``NullSink`` is used.

Implementations must not block: ``emit`` is called inline from the transport
and stream tasks.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

HTTP_RETRY = "http.retry"
STREAM_STATE = "stream.state"
STREAM_DROPPED = "stream.dropped"
STREAM_DECODE_ERROR = "stream.decode_error"
STREAM_RECONNECT = "stream.reconnect"


@dataclass(frozen=True)
class TransportEvent:
    """One structured event."""

    kind: str
    fields: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class EventSink(ABC):
    """Abstract interface for event emission."""

    @abstractmethod
    def emit(self, event: TransportEvent) -> None:
        """Emit an event."""

    def record(self, kind: str, **fields: Any) -> None:
        self.emit(TransportEvent(kind=kind, fields=fields))


class NullSink(EventSink):
    """No-op sink."""

    def emit(self, event: TransportEvent) -> None:
        """Discard the event."""


class BufferSink(EventSink):
    """Bounded in-memory buffer, oldest events evicted first."""

    def __init__(self, max_size: int = 1000) -> None:
        self._buffer: list[TransportEvent] = []
        self._max_size = max_size

    def emit(self, event: TransportEvent) -> None:
        if len(self._buffer) >= self._max_size:
            self._buffer.pop(0)
        self._buffer.append(event)

    @property
    def events(self) -> list[TransportEvent]:
        return list(self._buffer)

    def of_kind(self, kind: str) -> list[TransportEvent]:
        return [event for event in self._buffer if event.kind == kind]

    def clear(self) -> None:
        self._buffer.clear()


class CallbackSink(EventSink):
    """Sink that forwards every event to a callback."""

    def __init__(self, callback: Callable[[TransportEvent], None]) -> None:
        self._callback = callback

    def emit(self, event: TransportEvent) -> None:
        self._callback(event)
