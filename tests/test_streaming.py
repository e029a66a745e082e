from __future__ import annotations

import asyncio
import inspect
from typing import Any, AsyncIterator, Iterator, Optional

import pytest

from liveness.services.errors import TransportError
from liveness.services.events import ProtocolEvent, VideoChunkEvent, build_event_stream
from liveness.services.streaming import StreamSession, StreamStatus


class ScriptedTransport:
    def __init__(
        self,
        *,
        result: Any = None,
        disconnect_after_chunks: Optional[int] = None,
        stop_after_events: Optional[int] = None,
    ) -> None:
        self._result = result if result is not None else {"ok": True}
        self._disconnect_after_chunks = disconnect_after_chunks
        self._stop_after_events = stop_after_events
        self.calls = 0
        self.received: list[ProtocolEvent] = []
        self.session_params: Optional[tuple[str, int, int]] = None

    async def stream(
        self,
        *,
        session_id: str,
        video_width: int,
        video_height: int,
        events: AsyncIterator[ProtocolEvent],
    ) -> Any:
        self.calls += 1
        self.session_params = (session_id, video_width, video_height)
        async for event in events:
            self.received.append(event)
            chunks = sum(isinstance(item, VideoChunkEvent) for item in self.received)
            if self._disconnect_after_chunks is not None and chunks == self._disconnect_after_chunks:
                raise TransportError("Connection reset by peer", diagnostic={"reason": "disconnect"})
            if self._stop_after_events is not None and len(self.received) == self._stop_after_events:
                break
        return self._result


class HangingTransport:
    async def stream(self, **kwargs: Any) -> Any:
        _ = kwargs
        await asyncio.sleep(10)


class RefusingTransport:
    async def stream(self, **kwargs: Any) -> Any:
        _ = kwargs
        raise ConnectionRefusedError("connection refused")


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def _events(chunk_count: int) -> Iterator[ProtocolEvent]:
    _, events = build_event_stream(
        [b"\x00" * (chunk_count * 4)],
        challenge_id="challenge-1",
        initial_face={"BoundingBox": {}},
        target_face={"BoundingBox": {}},
        color_displayed={"CurrentColor": {}},
        video_width=640,
        video_height=480,
        start_ts=0,
        chunk_size=4,
    )
    return events


def _counting(events: Iterator[ProtocolEvent], pulled: list[ProtocolEvent]) -> Iterator[ProtocolEvent]:
    for event in events:
        pulled.append(event)
        yield event


def test_stream_session_returns_raw_result_unmodified() -> None:
    raw = {"SessionId": "session-1", "Anything": [1, 2, 3]}
    transport = ScriptedTransport(result=raw)
    session = StreamSession(transport)

    outcome = _run(session.run("session-1", 640, 480, _events(3)))

    assert outcome.ok
    assert outcome.status == StreamStatus.COMPLETED
    assert outcome.result is raw
    assert outcome.events_sent == 4
    assert transport.session_params == ("session-1", 640, 480)
    assert [getattr(e, "timestamp_millis", None) for e in transport.received[1:]] == [0, 50, 100]


def test_stream_session_stops_after_disconnect_without_retry() -> None:
    pulled: list[ProtocolEvent] = []
    events = _counting(_events(5), pulled)
    transport = ScriptedTransport(disconnect_after_chunks=2)
    session = StreamSession(transport)

    outcome = _run(session.run("session-1", 640, 480, events))

    assert outcome.status == StreamStatus.FAILED
    assert isinstance(outcome.error, TransportError)
    assert outcome.error.diagnostic == {"reason": "disconnect"}
    assert outcome.events_sent == 3
    assert len(pulled) == 3
    assert transport.calls == 1
    assert inspect.getgeneratorstate(events) == inspect.GEN_CLOSED
    with pytest.raises(TransportError):
        outcome.raise_for_error()


def test_stream_session_fails_when_remote_returns_before_draining() -> None:
    transport = ScriptedTransport(result={"partial": True}, stop_after_events=2)
    session = StreamSession(transport)

    outcome = _run(session.run("session-1", 640, 480, _events(5)))

    assert outcome.status == StreamStatus.FAILED
    assert outcome.error is not None
    assert outcome.error.diagnostic == {"partial": True}
    assert outcome.events_sent == 2


def test_stream_session_reports_timeout_as_transport_error() -> None:
    session = StreamSession(HangingTransport(), timeout_seconds=0.05)

    outcome = _run(session.run("session-1", 640, 480, _events(1)))

    assert outcome.status == StreamStatus.FAILED
    assert "timed out" in (outcome.error.message if outcome.error else "")


def test_stream_session_wraps_connection_errors() -> None:
    session = StreamSession(RefusingTransport())

    outcome = _run(session.run("session-1", 640, 480, _events(1)))

    assert outcome.status == StreamStatus.FAILED
    assert outcome.error is not None
    assert outcome.error.diagnostic == "connection refused"


def test_stream_session_cancellation_interrupts_pacing() -> None:
    pulled: list[ProtocolEvent] = []
    events = _counting(_events(5), pulled)
    session = StreamSession(ScriptedTransport(), pace_seconds=10.0)

    async def scenario() -> None:
        task = asyncio.create_task(session.run("session-1", 640, 480, events))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    _run(scenario())

    assert len(pulled) == 1
    assert inspect.getgeneratorstate(events) == inspect.GEN_CLOSED


def test_stream_session_rejects_negative_pace() -> None:
    with pytest.raises(ValueError):
        StreamSession(ScriptedTransport(), pace_seconds=-1)
