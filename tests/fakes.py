from __future__ import annotations

from typing import Any, AsyncIterator, Optional

from liveness.services.errors import TransportError
from liveness.services.events import ProtocolEvent
from liveness.services.rekognition import LivenessResult


class FakeTransport:
    def __init__(self, *, error: Optional[TransportError] = None) -> None:
        self._error = error
        self.calls = 0
        self.received: list[ProtocolEvent] = []

    async def stream(
        self,
        *,
        session_id: str,
        video_width: int,
        video_height: int,
        events: AsyncIterator[ProtocolEvent],
    ) -> Any:
        _ = video_width, video_height
        self.calls += 1
        async for event in events:
            self.received.append(event)
            if self._error is not None:
                raise self._error
        return {"SessionId": session_id}


class FakeSessionClient:
    def __init__(self, confidence: Any = 0.95, status: Optional[str] = "LIVENESS_CONFIRMED") -> None:
        self._confidence = confidence
        self._status = status

    async def create_session(self, client_request_token: Optional[str] = None) -> dict[str, Any]:
        return {"SessionId": "session-1", "Token": client_request_token}

    async def fetch_result(self, session_id: str) -> LivenessResult:
        return LivenessResult(
            session_id=session_id,
            confidence=self._confidence,
            status=self._status,
            raw={"SessionId": session_id, "Status": self._status},
        )

    async def check_connectivity(self) -> dict[str, Any]:
        return {"sts": {}, "rekognition": {}}
