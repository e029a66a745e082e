"""Preflight checks for the liveness streaming backend configuration.

Run this before starting the service to catch common misconfiguration:
  python scripts/preflight.py

Optional network checks:
  python scripts/preflight.py --check-http --check-aws
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx
from dotenv import load_dotenv


DEFAULT_MAX_VIDEO_BYTES = 10 * 1024 * 1024


@dataclass
class Report:
    passed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    def ok(self, message: str) -> None:
        self.passed.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def fail(self, message: str) -> None:
        self.failures.append(message)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def _load_environment() -> None:
    """Load local env files in precedence order without overwriting existing vars."""
    repo_dir = Path(__file__).resolve().parent.parent
    for env_file in (repo_dir / ".env.local", repo_dir / ".env"):
        if env_file.exists():
            load_dotenv(env_file, override=False)


def _is_valid_http_url(value: str) -> bool:
    """Return True when value is an absolute HTTP(S) URL."""
    parsed = urlparse((value or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _env_int(name: str, default: int, report: Report, *, minimum: int = 1) -> int:
    """Parse int env var and emit validation failures into the report."""
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        report.fail(f"{name} must be an integer. Got: {raw!r}")
        return default
    if value < minimum:
        report.fail(f"{name} must be >= {minimum}. Got: {value}")
    return value


def _env_float(name: str, default: float, report: Report, *, minimum: float = 0.0) -> float:
    """Parse float env var and emit validation failures into the report."""
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except ValueError:
        report.fail(f"{name} must be a number. Got: {raw!r}")
        return default
    if value < minimum:
        report.fail(f"{name} must be >= {minimum}. Got: {value}")
    return value


def _mask(value: str) -> str:
    """Mask secret values for safe console output."""
    trimmed = value.strip()
    if len(trimmed) < 8:
        return "***"
    return f"{trimmed[:4]}...{trimmed[-4:]}"


def check_aws_env(report: Report) -> None:
    """Validate AWS region and credential settings used for session calls."""
    region = (os.getenv("AWS_REGION") or "").strip()
    if not region:
        report.warn("AWS_REGION is not set; defaulting to us-east-1.")
    else:
        report.ok(f"AWS_REGION={region}")

    access_key = (os.getenv("AWS_ACCESS_KEY_ID") or "").strip()
    secret_key = (os.getenv("AWS_SECRET_ACCESS_KEY") or "").strip()
    if bool(access_key) != bool(secret_key):
        report.fail("Set both AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY, or neither.")
    elif access_key:
        report.ok(f"AWS_ACCESS_KEY_ID detected ({_mask(access_key)}).")
    else:
        report.warn("No static AWS credentials; boto3 will use its default provider chain.")

    endpoint = (os.getenv("REKOGNITION_ENDPOINT_URL") or "").strip()
    if endpoint and not _is_valid_http_url(endpoint):
        report.fail(f"REKOGNITION_ENDPOINT_URL is not a valid HTTP(S) URL: {endpoint!r}")


def check_streaming_endpoint(report: Report) -> str | None:
    """Validate the remote streaming endpoint configuration."""
    url = (os.getenv("LIVENESS_STREAMING_URL") or "").strip()
    if not url:
        report.fail("LIVENESS_STREAMING_URL is required to stream video.")
        return None
    if not _is_valid_http_url(url):
        report.fail(f"LIVENESS_STREAMING_URL is not a valid HTTP(S) URL: {url!r}")
        return None
    report.ok(f"LIVENESS_STREAMING_URL={url}")

    api_key = (os.getenv("LIVENESS_STREAMING_API_KEY") or "").strip()
    if api_key:
        report.ok(f"LIVENESS_STREAMING_API_KEY detected ({_mask(api_key)}).")
    return url


def check_stream_limits(report: Report) -> None:
    """Validate size, pacing and timeout knobs for the streaming path."""
    max_bytes = _env_int("MAX_VIDEO_BYTES", DEFAULT_MAX_VIDEO_BYTES, report, minimum=64 * 1024)
    if max_bytes > 50 * 1024 * 1024:
        report.warn("MAX_VIDEO_BYTES exceeds 50 MiB; request bodies that large are usually rejected upstream.")

    pace = _env_float("STREAM_PACE_SECONDS", 0, report, minimum=0.0)
    if pace > 0.05:
        report.warn("STREAM_PACE_SECONDS is above the 50 ms frame tick; uploads will lag real time.")

    timeout = _env_float("STREAM_TIMEOUT_SECONDS", 120, report, minimum=1.0)
    _env_float("LIVENESS_REQUEST_TIMEOUT_SECONDS", 30, report, minimum=1.0)
    if pace > 0 and timeout > 0:
        chunks = -(-max_bytes // (64 * 1024))
        if chunks * pace > timeout:
            report.warn(
                "STREAM_TIMEOUT_SECONDS is shorter than a max-size upload at STREAM_PACE_SECONDS."
            )
    report.ok("Streaming limits parsed successfully.")

    client_url = (os.getenv("CLIENT_URL") or "*").strip()
    if client_url == "*":
        report.warn("CLIENT_URL is '*'; any origin may call the API.")
    elif not _is_valid_http_url(client_url):
        report.fail(f"CLIENT_URL is not a valid HTTP(S) origin: {client_url!r}")
    else:
        report.ok(f"CLIENT_URL={client_url}")


def _probe(url: str, *, timeout_seconds: float) -> tuple[bool, str]:
    """Probe URL reachability and return (ok, message)."""
    try:
        with httpx.Client(timeout=timeout_seconds, follow_redirects=True) as client:
            response = client.get(url)
        if response.status_code >= 500:
            return (False, f"{url} responded with HTTP {response.status_code}.")
        return (True, f"{url} reachable (HTTP {response.status_code}).")
    except httpx.HTTPError as exc:
        return (False, f"{url} not reachable ({exc}).")


def check_http_health(report: Report, *, url: str | None, timeout_seconds: float) -> None:
    """Optionally check that the streaming endpoint host answers HTTP."""
    if not url:
        report.warn("Skipping HTTP check; LIVENESS_STREAMING_URL is not usable.")
        return
    ok, message = _probe(url, timeout_seconds=timeout_seconds)
    if ok:
        report.ok(f"Streaming endpoint health check passed: {message}")
    else:
        report.fail(f"Streaming endpoint health check failed: {message}")


def check_aws_connectivity(report: Report) -> None:
    """Call STS and Rekognition with the configured credentials."""
    from liveness.services.errors import SessionServiceError
    from liveness.services.liveness import LivenessService

    service = LivenessService()
    try:
        result = asyncio.run(service.check_connectivity())
    except SessionServiceError as exc:
        report.fail(f"AWS connectivity check failed: {exc.message}")
        return
    account = result.get("sts", {}).get("Account", "unknown")
    report.ok(f"AWS connectivity check passed (account {account}).")


def print_report(report: Report) -> None:
    """Render a human-readable summary report to stdout."""
    for message in report.passed:
        print(f"[PASS] {message}")
    for message in report.warnings:
        print(f"[WARN] {message}")
    for message in report.failures:
        print(f"[FAIL] {message}")
    print(
        f"\nSummary: {len(report.passed)} passed, {len(report.warnings)} warnings, {len(report.failures)} failures."
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for optional network checks and probe timeouts."""
    parser = argparse.ArgumentParser(description="Liveness backend preflight checks")
    parser.add_argument(
        "--check-http",
        action="store_true",
        help="Probe the configured streaming endpoint before booting the backend.",
    )
    parser.add_argument(
        "--check-aws",
        action="store_true",
        help="Verify AWS credentials and Rekognition reachability.",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=3.0,
        help="Timeout (seconds) for preflight HTTP probes (default: 3.0).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run preflight suite and return process exit code."""
    args = parse_args(argv)
    _load_environment()
    report = Report()

    check_aws_env(report)
    streaming_url = check_streaming_endpoint(report)
    check_stream_limits(report)
    if args.check_http:
        check_http_health(report, url=streaming_url, timeout_seconds=max(args.http_timeout, 0.1))
    if args.check_aws:
        check_aws_connectivity(report)

    print_report(report)
    return 1 if report.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
