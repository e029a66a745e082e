from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from liveness.services.errors import SessionServiceError


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LivenessResult:
    """Normalized liveness analysis result for one session.

    `confidence` is rescaled to [0, 1]; `raw` keeps the remote payload.
    """

    session_id: str
    confidence: Any
    status: Optional[str]
    raw: dict[str, Any]


def _jsonable(value: Any) -> Any:
    """Replace binary blobs (audit images) with base64 text for JSON responses."""
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items() if key != "ResponseMetadata"}
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


def _error_detail(exc: Exception) -> Any:
    if isinstance(exc, ClientError):
        return exc.response.get("Error") or str(exc)
    return str(exc)


class RekognitionSessionClient:
    """One-shot request/response calls around a liveness session.

    The boto3 clients are synchronous, so each call runs in a worker thread.
    """

    def __init__(
        self,
        *,
        region_name: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        confidence_scale: float = 100.0,
        client: Any = None,
        sts_client: Any = None,
    ) -> None:
        if confidence_scale <= 0:
            raise ValueError("confidence_scale must be > 0")
        self._confidence_scale = confidence_scale
        credentials = {
            "region_name": region_name,
            "aws_access_key_id": aws_access_key_id or None,
            "aws_secret_access_key": aws_secret_access_key or None,
        }
        # Injected clients take precedence (e.g. tests/fakes).
        self._client = client or boto3.client(
            "rekognition", endpoint_url=endpoint_url or None, **credentials
        )
        self._sts = sts_client
        self._credentials = credentials

    async def create_session(self, client_request_token: Optional[str] = None) -> dict[str, Any]:
        """Create a liveness session and return the raw response."""
        token = client_request_token or uuid.uuid4().hex
        try:
            response = await asyncio.to_thread(
                self._client.create_face_liveness_session, ClientRequestToken=token
            )
        except (ClientError, BotoCoreError) as exc:
            raise SessionServiceError(
                f"CreateFaceLivenessSession failed: {exc}", diagnostic=_error_detail(exc)
            ) from exc
        result = _jsonable(response)
        logger.info("Created liveness session %s", result.get("SessionId"))
        return result

    async def fetch_result(self, session_id: str) -> LivenessResult:
        """Fetch the analysis result for `session_id`."""
        try:
            response = await asyncio.to_thread(
                self._client.get_face_liveness_session_results, SessionId=session_id
            )
        except (ClientError, BotoCoreError) as exc:
            raise SessionServiceError(
                f"GetFaceLivenessSessionResults failed: {exc}", diagnostic=_error_detail(exc)
            ) from exc
        raw = _jsonable(response)
        confidence = raw.get("Confidence")
        if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
            confidence = confidence / self._confidence_scale
        return LivenessResult(
            session_id=session_id,
            confidence=confidence,
            status=raw.get("Status"),
            raw=raw,
        )

    async def check_connectivity(self) -> dict[str, Any]:
        """Verify credentials and Rekognition reachability."""
        if self._sts is None:
            self._sts = boto3.client("sts", **self._credentials)
        try:
            identity = await asyncio.to_thread(self._sts.get_caller_identity)
            collections = await asyncio.to_thread(self._client.list_collections)
        except (ClientError, BotoCoreError) as exc:
            raise SessionServiceError(
                f"AWS connectivity check failed: {exc}", diagnostic=_error_detail(exc)
            ) from exc
        return {"sts": _jsonable(identity), "rekognition": _jsonable(collections)}
