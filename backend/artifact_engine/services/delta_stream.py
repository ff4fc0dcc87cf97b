"""Typed, ordered event emission to a UI stream consumer."""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from artifact_engine.core.artifact_types import StreamEvent, StreamEventType
from artifact_engine.core.metrics import MetricsCollector
from artifact_engine.services.validation import ArtifactKindPolicy

logger = logging.getLogger(__name__)


class StreamClosed(Exception):
    """Raised by a writer whose consumer has gone away."""


class StreamOrderError(RuntimeError):
    """An event was emitted out of the kind, id, title, clear, delta, terminal order."""


class UIStreamWriter(Protocol):
    """UI stream consumer: receives events in call order, no acknowledgement."""

    def write(self, event: StreamEvent) -> None:
        ...


def compute_delta(previous: str, snapshot: str) -> str:
    """
    Suffix of a cumulative snapshot that was not reported yet.

    Args:
        previous: Last reported cumulative snapshot
        snapshot: New cumulative snapshot (a prefix-extension of previous)

    Returns:
        The newly produced text
    """
    return snapshot[len(previous):]


# Position of each event type in the per-operation order
_ORDER = {
    StreamEventType.KIND: 0,
    StreamEventType.ID: 1,
    StreamEventType.TITLE: 2,
    StreamEventType.CLEAR: 3,
    StreamEventType.CONTENT_DELTA: 4,
    StreamEventType.SUGGESTION: 4,
    StreamEventType.FINISH: 5,
    StreamEventType.ERROR: 5,
}


class DeltaStreamEmitter:
    """
    Forwards typed events for one lifecycle operation to a UI stream writer.

    Events go to the writer synchronously, in call order, with no buffering.
    The emitter rejects calls that break the order
    kind -> id -> title -> (clear) -> content-delta* | suggestion* -> finish | error.
    ``error`` may be emitted at any point before the terminal event.

    When the writer raises StreamClosed the emitter stops forwarding but
    does not raise, so the operation itself can still complete.
    """

    def __init__(self, writer: UIStreamWriter, policy: Optional[ArtifactKindPolicy] = None):
        self.writer = writer
        self.policy = policy
        self.closed = False
        self.terminated = False
        self._position = -1

    def kind(self, policy: Optional[ArtifactKindPolicy] = None) -> None:
        """Emit the kind event; an update only learns its policy here."""
        if policy is not None:
            self.policy = policy
        if self.policy is None:
            raise StreamOrderError("kind emitted without an artifact kind policy")
        self._emit(StreamEventType.KIND, self.policy.kind.value)

    def id(self, artifact_id: str) -> None:
        self._emit(StreamEventType.ID, artifact_id)

    def title(self, title: str) -> None:
        self._emit(StreamEventType.TITLE, title)

    def clear(self) -> None:
        self._emit(StreamEventType.CLEAR, None)

    def content_delta(self, delta: str) -> None:
        if not delta:
            return
        self._emit(StreamEventType.CONTENT_DELTA, delta)

    def suggestion(self, suggestion: Dict[str, Any]) -> None:
        self._emit(StreamEventType.SUGGESTION, suggestion)

    def finish(self) -> None:
        self._emit(StreamEventType.FINISH, None)

    def error(self, message: str) -> None:
        """
        Best-effort error event.

        A failing writer never masks the error being reported: the failure
        is logged and swallowed.
        """
        if self.terminated:
            return
        try:
            self._emit(StreamEventType.ERROR, message)
        except Exception as e:
            self.terminated = True
            logger.error(f"Failed to emit error event to UI stream: {e}", exc_info=True)

    def _emit(self, event_type: StreamEventType, payload: Any) -> None:
        position = _ORDER[event_type]
        if self.terminated:
            raise StreamOrderError(f"{event_type.value} emitted after the terminal event")
        if event_type != StreamEventType.ERROR:
            repeatable = event_type in (StreamEventType.CONTENT_DELTA, StreamEventType.SUGGESTION)
            if position < self._position or (position == self._position and not repeatable):
                raise StreamOrderError(f"{event_type.value} emitted out of order")
        self._position = position
        if position == _ORDER[StreamEventType.FINISH]:
            self.terminated = True

        if self.closed:
            return

        event = StreamEvent(
            event_type=event_type,
            payload=payload,
            delta_event_name=(
                self.policy.delta_event_name
                if event_type == StreamEventType.CONTENT_DELTA and self.policy else None
            )
        )
        try:
            self.writer.write(event)
        except StreamClosed:
            self.closed = True
            logger.info(f"UI stream closed; dropping {event_type.value} and later events")
            return
        MetricsCollector.record_stream_event(event_type.value)


class CollectingStreamWriter:
    """Writer that keeps every event in memory, in order."""

    def __init__(self):
        self.events: List[StreamEvent] = []

    def write(self, event: StreamEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: StreamEventType) -> List[StreamEvent]:
        return [e for e in self.events if e.event_type == event_type]

    @property
    def types(self) -> List[StreamEventType]:
        return [e.event_type for e in self.events]

    @property
    def deltas(self) -> List[str]:
        return [e.payload for e in self.of_type(StreamEventType.CONTENT_DELTA)]


class QueueStreamWriter:
    """
    Writer backed by an asyncio queue, for relaying events to a WebSocket.

    ``write`` never blocks (unbounded queue). After ``close`` further writes
    raise StreamClosed.
    """

    def __init__(self):
        self.queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._closed = False

    def write(self, event: StreamEvent) -> None:
        if self._closed:
            raise StreamClosed("stream consumer disconnected")
        self.queue.put_nowait(event)

    def close(self) -> None:
        self._closed = True

    async def next_event(self, timeout: Optional[float] = None) -> StreamEvent:
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)
