from __future__ import annotations

import base64
import json
import logging
from typing import Any, AsyncIterator, Optional, Protocol

import httpx

from liveness.services.errors import LivenessError, TransportError
from liveness.services.events import ProtocolEvent


logger = logging.getLogger(__name__)


class LivenessTransportConfigError(LivenessError):
    """Raised when the streaming endpoint configuration is missing or invalid."""


class LivenessTransport(Protocol):
    """Transport protocol: consume `events` into one remote streaming call.

    Implementations must pull the next event only when they can send it and
    raise `TransportError` when the call fails.
    """

    async def stream(
        self,
        *,
        session_id: str,
        video_width: int,
        video_height: int,
        events: AsyncIterator[ProtocolEvent],
    ) -> Any:
        raise NotImplementedError


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_event(event: ProtocolEvent) -> bytes:
    """Serialize one protocol event as a newline-terminated JSON line."""
    return json.dumps(event.to_wire(), default=_json_default, separators=(",", ":")).encode("utf-8") + b"\n"


def _response_diagnostic(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpxStreamingTransport:
    """HTTP/2 streaming client for the remote liveness endpoint.

    The request body is an async generator, so httpx only pulls the next event
    once the previous frame was written. The session parameters travel as
    headers; the terminal JSON response is returned unmodified.
    """

    def __init__(
        self,
        *,
        endpoint_url: str,
        api_key: Optional[str] = None,
        challenge_versions: str = "1.0",
        request_timeout_seconds: float = 30.0,
    ) -> None:
        url = (endpoint_url or "").strip()
        if not url:
            raise LivenessTransportConfigError("LIVENESS_STREAMING_URL is required")
        self._endpoint_url = url
        self._api_key = (api_key or "").strip() or None
        self._challenge_versions = challenge_versions
        # Keep-alive connections are shared by every session in the process.
        self._http = httpx.AsyncClient(
            timeout=request_timeout_seconds,
            headers=self.headers,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            http2=True,
        )

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/x-ndjson",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def stream(
        self,
        *,
        session_id: str,
        video_width: int,
        video_height: int,
        events: AsyncIterator[ProtocolEvent],
    ) -> Any:
        async def body() -> AsyncIterator[bytes]:
            async for event in events:
                yield encode_event(event)

        session_headers = {
            "X-Liveness-Session-Id": str(session_id),
            "X-Liveness-Video-Width": str(video_width),
            "X-Liveness-Video-Height": str(video_height),
            "X-Liveness-Challenge-Versions": self._challenge_versions,
        }
        try:
            response = await self._http.post(
                self._endpoint_url, content=body(), headers=session_headers
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Liveness stream request failed ({type(exc).__name__})",
                diagnostic=str(exc),
            ) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Liveness stream rejected with status {response.status_code}",
                diagnostic=_response_diagnostic(response),
                status_code=response.status_code,
            ) from exc

        logger.debug("Liveness stream %s answered HTTP %s", session_id, response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                "Liveness stream returned invalid JSON",
                diagnostic=response.text,
                status_code=response.status_code,
            ) from exc

    async def aclose(self) -> None:
        """Close persistent HTTP resources used by this transport."""
        await self._http.aclose()
