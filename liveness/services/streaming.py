from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from liveness.services.errors import TransportError
from liveness.services.events import ProtocolEvent
from liveness.services.transport import LivenessTransport


logger = logging.getLogger(__name__)


class StreamStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(slots=True)
class StreamOutcome:
    """Terminal state of one streaming call.

    `result` is the remote response exactly as received. `events_sent` counts
    the events handed to the transport, header included.
    """

    session_id: str
    status: StreamStatus
    result: Any = None
    error: Optional[TransportError] = None
    events_sent: int = 0

    @property
    def ok(self) -> bool:
        return self.status == StreamStatus.COMPLETED

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class _EventPump:
    """Pull-based async view over a single-pass event iterator.

    An event is taken from the underlying iterator only when the transport asks
    for the next one, so nothing is buffered ahead of the consumer.
    """

    def __init__(self, events: Iterable[ProtocolEvent], *, pace_seconds: float = 0.0) -> None:
        self._events = iter(events)
        self._pace_seconds = pace_seconds
        self._closed = False
        self.sent = 0
        self.exhausted = False

    def __aiter__(self) -> "_EventPump":
        return self

    async def __anext__(self) -> ProtocolEvent:
        if self._closed or self.exhausted:
            raise StopAsyncIteration
        if self._pace_seconds > 0 and self.sent > 0:
            await asyncio.sleep(self._pace_seconds)
            if self._closed:
                raise StopAsyncIteration
        try:
            event = next(self._events)
        except StopIteration:
            self.exhausted = True
            raise StopAsyncIteration from None
        self.sent += 1
        return event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._events, "close", None)
        if close is not None:
            close()


class StreamSession:
    """Drives one framed event sequence into a remote streaming call.

    Streams are not resumable: any early termination is reported once as a
    failed outcome and never retried here.
    """

    def __init__(
        self,
        transport: LivenessTransport,
        *,
        pace_seconds: float = 0.0,
        timeout_seconds: Optional[float] = 120.0,
    ) -> None:
        if pace_seconds < 0:
            raise ValueError("pace_seconds must be >= 0")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._transport = transport
        self._pace_seconds = pace_seconds
        self._timeout_seconds = timeout_seconds

    async def run(
        self,
        session_id: str,
        video_width: int,
        video_height: int,
        events: Iterable[ProtocolEvent],
    ) -> StreamOutcome:
        pump = _EventPump(events, pace_seconds=self._pace_seconds)
        logger.info(
            "Starting liveness stream for session %s (%sx%s)", session_id, video_width, video_height
        )
        try:
            result = await asyncio.wait_for(
                self._transport.stream(
                    session_id=session_id,
                    video_width=video_width,
                    video_height=video_height,
                    events=pump,
                ),
                timeout=self._timeout_seconds,
            )
        except TransportError as exc:
            return self._failed(session_id, exc, pump)
        except asyncio.TimeoutError:
            error = TransportError(
                f"Liveness stream timed out after {self._timeout_seconds}s",
                diagnostic={"events_sent": pump.sent},
            )
            return self._failed(session_id, error, pump)
        except OSError as exc:
            error = TransportError(
                f"Liveness stream connection failed ({type(exc).__name__})",
                diagnostic=str(exc),
            )
            return self._failed(session_id, error, pump)
        except asyncio.CancelledError:
            logger.warning(
                "Liveness stream for session %s cancelled after %d events", session_id, pump.sent
            )
            raise
        finally:
            pump.close()

        if not pump.exhausted:
            error = TransportError(
                "Remote closed the stream before all events were sent",
                diagnostic=result,
            )
            return self._failed(session_id, error, pump)

        logger.info("Liveness stream for session %s completed (%d events)", session_id, pump.sent)
        return StreamOutcome(
            session_id=session_id,
            status=StreamStatus.COMPLETED,
            result=result,
            events_sent=pump.sent,
        )

    @staticmethod
    def _failed(session_id: str, error: TransportError, pump: _EventPump) -> StreamOutcome:
        logger.warning(
            "Liveness stream for session %s failed after %d events: %s",
            session_id,
            pump.sent,
            error.message,
        )
        return StreamOutcome(
            session_id=session_id,
            status=StreamStatus.FAILED,
            error=error,
            events_sent=pump.sent,
        )
