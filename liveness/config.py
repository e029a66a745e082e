"""Configuration helpers for the liveness streaming service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once at import time. Services take explicit constructor
    arguments and only fall back to these when none are given, so tests can
    inject their own without touching the environment.
    """

    # AWS credentials are optional; boto3 falls back to its own provider chain.
    aws_region: str = os.getenv("AWS_REGION", "us-east-1")
    aws_access_key_id: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
    rekognition_endpoint_url: Optional[str] = os.getenv("REKOGNITION_ENDPOINT_URL")

    # Remote streaming endpoint that receives the framed event stream.
    liveness_streaming_url: Optional[str] = os.getenv("LIVENESS_STREAMING_URL")
    liveness_streaming_api_key: Optional[str] = os.getenv("LIVENESS_STREAMING_API_KEY")
    liveness_challenge_versions: str = os.getenv("LIVENESS_CHALLENGE_VERSIONS", "1.0")
    liveness_request_timeout_seconds: float = float(
        os.getenv("LIVENESS_REQUEST_TIMEOUT_SECONDS", "30")
    )
    # Upper bound for one whole streaming call, including the terminal response.
    stream_timeout_seconds: float = float(os.getenv("STREAM_TIMEOUT_SECONDS", "120"))
    # Optional local delay between chunk events; 0 relies on transport backpressure only.
    stream_pace_seconds: float = float(os.getenv("STREAM_PACE_SECONDS", "0"))

    # Requests whose decoded video exceeds this are rejected before any remote call.
    max_video_bytes: int = int(os.getenv("MAX_VIDEO_BYTES", str(10 * 1024 * 1024)))

    client_url: str = os.getenv("CLIENT_URL", "*")
    cors_allow_credentials: bool = _env_bool("CORS_ALLOW_CREDENTIALS", True)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
