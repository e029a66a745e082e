from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from liveness.config import settings
from liveness.services.errors import MalformedInputError
from liveness.services.events import build_event_stream
from liveness.services.rekognition import RekognitionSessionClient
from liveness.services.streaming import StreamOutcome, StreamSession
from liveness.services.transport import (
    HttpxStreamingTransport,
    LivenessTransport,
    LivenessTransportConfigError,
)
from liveness.services.verdict import Verdict, decide
from liveness.services.video_utils import decode_segments


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LivenessSubmission:
    """Inbound video submission for one liveness session."""

    session_id: str
    video_chunks: Sequence[str]
    video_width: int
    video_height: int
    challenge_id: str
    initial_face: Mapping[str, Any]
    target_face: Mapping[str, Any]
    color_displayed: Mapping[str, Any]


@dataclass(slots=True)
class LivenessReport:
    session_id: str
    verdict: Verdict
    details: dict[str, Any]


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_submission(submission: LivenessSubmission) -> None:
    """Reject submissions with missing or malformed fields before any decoding."""
    problems: list[str] = []
    if not isinstance(submission.session_id, str) or not submission.session_id.strip():
        problems.append("sessionId is required")
    if not _is_positive_int(submission.video_width):
        problems.append("videoWidth must be a positive integer")
    if not _is_positive_int(submission.video_height):
        problems.append("videoHeight must be a positive integer")
    if not isinstance(submission.challenge_id, str) or not submission.challenge_id.strip():
        problems.append("challengeId is required")
    for name, value in (
        ("initialFace", submission.initial_face),
        ("targetFace", submission.target_face),
        ("colorDisplayed", submission.color_displayed),
    ):
        if not isinstance(value, Mapping) or not value:
            problems.append(f"{name} must be a non-empty object")
    if problems:
        raise MalformedInputError("; ".join(problems), diagnostic=problems)


class LivenessService:
    """Session, streaming and verdict orchestration for face liveness checks.

    Flow:
    1. `create_session` obtains a session id from the remote service
    2. `submit_video` validates, frames and streams the recorded video
    3. `get_results` fetches the analysis result and applies the verdict policy

    Collaborators are built from settings unless injected.
    """

    def __init__(
        self,
        *,
        session_client: Optional[RekognitionSessionClient] = None,
        transport: Optional[LivenessTransport] = None,
        max_video_bytes: Optional[int] = None,
        pace_seconds: Optional[float] = None,
        stream_timeout_seconds: Optional[float] = None,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self._session_client = session_client
        self._transport = transport
        self._max_video_bytes = (
            max_video_bytes if max_video_bytes is not None else settings.max_video_bytes
        )
        self._pace_seconds = max(
            0.0, pace_seconds if pace_seconds is not None else settings.stream_pace_seconds
        )
        self._stream_timeout_seconds = (
            stream_timeout_seconds
            if stream_timeout_seconds is not None
            else settings.stream_timeout_seconds
        )
        self._clock_ms = clock_ms
        self._session_client_lock = asyncio.Lock()

    @staticmethod
    def _build_default_transport() -> HttpxStreamingTransport:
        return HttpxStreamingTransport(
            endpoint_url=settings.liveness_streaming_url or "",
            api_key=settings.liveness_streaming_api_key,
            challenge_versions=settings.liveness_challenge_versions,
            request_timeout_seconds=settings.liveness_request_timeout_seconds,
        )

    @staticmethod
    def _build_default_session_client() -> RekognitionSessionClient:
        return RekognitionSessionClient(
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            endpoint_url=settings.rekognition_endpoint_url,
        )

    async def sessions(self) -> RekognitionSessionClient:
        """Return the session client, building the default one off the event loop.

        boto3 client creation reads config and credential files.
        """
        if self._session_client is None:
            async with self._session_client_lock:
                if self._session_client is None:
                    self._session_client = await asyncio.to_thread(
                        self._build_default_session_client
                    )
        return self._session_client

    @property
    def transport(self) -> LivenessTransport:
        if self._transport is None:
            self._transport = self._build_default_transport()
        return self._transport

    async def create_session(self, client_request_token: Optional[str] = None) -> dict[str, Any]:
        return await (await self.sessions()).create_session(client_request_token)

    async def submit_video(self, submission: LivenessSubmission) -> StreamOutcome:
        """Stream the recorded video of `submission` to the analysis service.

        Validation, decoding and size checks all run before the transport is
        touched; transport failures come back as a failed `StreamOutcome`.
        """
        validate_submission(submission)
        buffers = decode_segments(submission.video_chunks, max_bytes=self._max_video_bytes)
        metadata, events = build_event_stream(
            buffers,
            challenge_id=submission.challenge_id,
            initial_face=submission.initial_face,
            target_face=submission.target_face,
            color_displayed=submission.color_displayed,
            video_width=submission.video_width,
            video_height=submission.video_height,
            start_ts=self._clock_ms() if self._clock_ms is not None else None,
        )
        logger.info(
            "Submitting %d bytes for session %s (challenge %s, window %d-%d)",
            sum(len(buffer) for buffer in buffers),
            submission.session_id,
            metadata.challenge_id,
            metadata.video_start_timestamp,
            metadata.video_end_timestamp,
        )
        try:
            transport = self.transport
        except LivenessTransportConfigError:
            events.close()
            raise
        session = StreamSession(
            transport,
            pace_seconds=self._pace_seconds,
            timeout_seconds=self._stream_timeout_seconds,
        )
        return await session.run(
            submission.session_id,
            submission.video_width,
            submission.video_height,
            events,
        )

    async def get_results(self, session_id: str) -> LivenessReport:
        if not isinstance(session_id, str) or not session_id.strip():
            raise MalformedInputError("sessionId is required")
        result = await (await self.sessions()).fetch_result(session_id)
        verdict = decide(result.confidence, result.status)
        logger.info(
            "Liveness result for session %s: confirmed=%s status=%s",
            session_id,
            verdict.confirmed,
            verdict.raw_status,
        )
        return LivenessReport(session_id=session_id, verdict=verdict, details=result.raw)

    async def check_connectivity(self) -> dict[str, Any]:
        return await (await self.sessions()).check_connectivity()

    async def aclose(self) -> None:
        """Close shared HTTP clients used by the streaming transport."""
        if self._transport is not None and hasattr(self._transport, "aclose"):
            await self._transport.aclose()  # type: ignore[attr-defined]
