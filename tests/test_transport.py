from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, AsyncIterator

import httpx
import pytest

from liveness.services.errors import TransportError
from liveness.services.events import build_event_stream
from liveness.services.streaming import StreamSession, StreamStatus
from liveness.services.transport import (
    HttpxStreamingTransport,
    LivenessTransportConfigError,
    encode_event,
)


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def _events(payload: bytes, chunk_size: int = 4):
    _, events = build_event_stream(
        [payload],
        challenge_id="challenge-1",
        initial_face={"BoundingBox": {"Width": 0.5}},
        target_face={"BoundingBox": {"Width": 0.7}},
        color_displayed={"CurrentColor": {"RGB": [255, 255, 255]}},
        video_width=320,
        video_height=240,
        start_ts=500,
        chunk_size=chunk_size,
    )
    return events


def _fake_client(monkeypatch: pytest.MonkeyPatch, respond) -> dict[str, Any]:  # noqa: ANN001
    captured: dict[str, Any] = {"lines": []}

    class FakeAsyncClient:
        def __init__(self, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
            _ = args
            captured["client_kwargs"] = kwargs

        async def post(self, url: str, content: AsyncIterator[bytes], headers: dict) -> httpx.Response:
            captured["url"] = url
            captured["headers"] = headers
            async for line in content:
                captured["lines"].append(json.loads(line))
            return respond(httpx.Request("POST", url))

        async def aclose(self) -> None:
            captured["closed"] = True

    monkeypatch.setattr("liveness.services.transport.httpx.AsyncClient", FakeAsyncClient)
    return captured


def test_transport_requires_endpoint() -> None:
    with pytest.raises(LivenessTransportConfigError):
        HttpxStreamingTransport(endpoint_url="  ")


def test_encode_event_base64_encodes_video_bytes() -> None:
    events = list(_events(b"\x00\x01\x02"))

    line = encode_event(events[1])

    assert line.endswith(b"\n")
    assert json.loads(line) == {
        "VideoEvent": {
            "VideoChunk": base64.b64encode(b"\x00\x01\x02").decode("ascii"),
            "TimestampMillis": 500,
        }
    }


def test_transport_streams_ndjson_events_with_session_headers(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _fake_client(
        monkeypatch, lambda request: httpx.Response(200, json={"SessionId": "s-1"}, request=request)
    )
    transport = HttpxStreamingTransport(
        endpoint_url="https://liveness.example.com/stream", api_key="secret-token"
    )
    session = StreamSession(transport)

    outcome = _run(session.run("s-1", 320, 240, _events(b"abcdefghij")))

    assert outcome.status == StreamStatus.COMPLETED
    assert outcome.result == {"SessionId": "s-1"}
    assert captured["client_kwargs"]["http2"] is True
    assert captured["client_kwargs"]["headers"]["Authorization"] == "Bearer secret-token"
    assert captured["headers"]["X-Liveness-Session-Id"] == "s-1"
    assert captured["headers"]["X-Liveness-Video-Width"] == "320"
    assert captured["headers"]["X-Liveness-Challenge-Versions"] == "1.0"
    lines = captured["lines"]
    assert "ClientSessionInformationEvent" in lines[0]
    chunks = [base64.b64decode(line["VideoEvent"]["VideoChunk"]) for line in lines[1:]]
    assert b"".join(chunks) == b"abcdefghij"
    assert [line["VideoEvent"]["TimestampMillis"] for line in lines[1:]] == [500, 550, 600]


def test_transport_maps_error_status_to_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_client(
        monkeypatch,
        lambda request: httpx.Response(
            400, json={"Message": "Invalid challenge"}, request=request
        ),
    )
    transport = HttpxStreamingTransport(endpoint_url="https://liveness.example.com/stream")

    with pytest.raises(TransportError) as excinfo:
        _run(
            transport.stream(
                session_id="s-1",
                video_width=320,
                video_height=240,
                events=_AsyncEvents(_events(b"abc")),
            )
        )

    assert excinfo.value.status_code == 400
    assert excinfo.value.diagnostic == {"Message": "Invalid challenge"}


def test_transport_wraps_connection_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _fake_client(monkeypatch, refuse)
    transport = HttpxStreamingTransport(endpoint_url="https://liveness.example.com/stream")

    outcome = _run(StreamSession(transport).run("s-1", 320, 240, _events(b"abc")))

    assert outcome.status == StreamStatus.FAILED
    assert outcome.error is not None
    assert "ConnectError" in outcome.error.message


class _AsyncEvents:
    """Minimal async iterator over a sync event iterator."""

    def __init__(self, events) -> None:  # noqa: ANN001
        self._events = iter(events)

    def __aiter__(self) -> "_AsyncEvents":
        return self

    async def __anext__(self):  # noqa: ANN204
        try:
            return next(self._events)
        except StopIteration:
            raise StopAsyncIteration from None
