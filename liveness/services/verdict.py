from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any

from liveness.services.errors import InvalidResultError


CONFIDENCE_THRESHOLD = 0.8
CONFIRMED_STATUS = "LIVENESS_CONFIRMED"


@dataclass(frozen=True, slots=True)
class Verdict:
    confirmed: bool
    confidence: float
    raw_status: str


def decide(confidence: Any, status: Any) -> Verdict:
    """Confirm liveness only when both the score and the status agree.

    Malformed inputs raise `InvalidResultError` instead of yielding a negative
    verdict, so callers can tell a broken result from a real "not live".
    """
    if isinstance(confidence, bool) or not isinstance(confidence, Real):
        raise InvalidResultError(
            f"Confidence must be a number, got {type(confidence).__name__}",
            diagnostic={"confidence": confidence, "status": status},
        )
    score = float(confidence)
    if not math.isfinite(score) or not 0.0 <= score <= 1.0:
        raise InvalidResultError(
            f"Confidence must be within [0, 1], got {confidence!r}",
            diagnostic={"confidence": confidence, "status": status},
        )
    if not isinstance(status, str) or not status.strip():
        raise InvalidResultError(
            "Result status is missing",
            diagnostic={"confidence": confidence, "status": status},
        )
    return Verdict(
        confirmed=score >= CONFIDENCE_THRESHOLD and status == CONFIRMED_STATUS,
        confidence=score,
        raw_status=status,
    )
