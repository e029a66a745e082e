from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _alias(camel: str, pascal: str) -> AliasChoices:
  # The browser client sends camelCase; older clients send the remote API's PascalCase.
  return AliasChoices(camel, pascal)


class StreamRequest(BaseModel):
  model_config = ConfigDict(extra="ignore")

  session_id: str = Field(..., min_length=1, validation_alias=_alias("sessionId", "SessionId"))
  video_chunks: list[str] = Field(..., validation_alias=_alias("videoChunks", "VideoChunks"))
  video_width: int = Field(..., gt=0, validation_alias=_alias("videoWidth", "VideoWidth"))
  video_height: int = Field(..., gt=0, validation_alias=_alias("videoHeight", "VideoHeight"))
  challenge_id: str = Field(..., min_length=1, validation_alias=_alias("challengeId", "ChallengeId"))
  initial_face: dict[str, Any] = Field(..., validation_alias=_alias("initialFace", "InitialFace"))
  target_face: dict[str, Any] = Field(..., validation_alias=_alias("targetFace", "TargetFace"))
  color_displayed: dict[str, Any] = Field(
    ..., validation_alias=_alias("colorDisplayed", "ColorDisplayed")
  )


class CreateSessionRequest(BaseModel):
  client_request_token: Optional[str] = Field(
    None, validation_alias=_alias("clientRequestToken", "ClientRequestToken")
  )


class MessageResponse(BaseModel):
  message: str
  result: Any = None


class ResultsResponse(BaseModel):
  message: str
  liveness_confirmed: bool = Field(..., serialization_alias="livenessConfirmed")
  confidence: float
  status: str
  details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
  message: str
  error: str
  diagnostic: Any = None
