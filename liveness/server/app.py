from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from liveness.config import settings
from liveness.server.models import (
  CreateSessionRequest,
  ErrorResponse,
  MessageResponse,
  ResultsResponse,
  StreamRequest,
)
from liveness.services.errors import (
  LivenessError,
  MalformedInputError,
  PayloadTooLargeError,
)
from liveness.services.liveness import LivenessService, LivenessSubmission


logger = logging.getLogger(__name__)


def _status_for(exc: LivenessError) -> int:
  if isinstance(exc, (MalformedInputError, PayloadTooLargeError)):
    return 400
  return 500


def _error_response(message: str, exc: LivenessError) -> JSONResponse:
  body = ErrorResponse(message=message, error=exc.message, diagnostic=exc.diagnostic)
  return JSONResponse(status_code=_status_for(exc), content=jsonable_encoder(body))


def create_app(service: Optional[LivenessService] = None) -> FastAPI:
  logging.basicConfig(level=settings.log_level.upper())

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    yield
    await app.state.service.aclose()

  app = FastAPI(title="Liveness Streaming Service", version="0.1.0", lifespan=lifespan)
  app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
  )
  app.state.service = service or LivenessService()

  @app.exception_handler(RequestValidationError)
  async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    _ = request
    return JSONResponse(
      status_code=400,
      content={
        "message": "Invalid request. Provide the required fields.",
        "error": "Request validation failed",
        "diagnostic": jsonable_encoder(exc.errors()),
      },
    )

  @app.get("/health")
  async def health() -> dict[str, Any]:
    return {"service": "liveness-stream", "status": "ok"}

  @app.get("/health/aws")
  async def aws_health() -> Any:
    try:
      checks = await app.state.service.check_connectivity()
    except LivenessError as exc:
      return _error_response("AWS Connectivity Error", exc)
    return {"message": "AWS Connectivity Successful", **checks}

  @app.post("/sessions", response_model=MessageResponse)
  async def create_session(req: Optional[CreateSessionRequest] = None) -> Any:
    token = req.client_request_token if req is not None else None
    try:
      result = await app.state.service.create_session(token)
    except LivenessError as exc:
      return _error_response("Failed to create liveness session", exc)
    return MessageResponse(message="Liveness session created successfully", result=result)

  @app.post("/stream", response_model=MessageResponse)
  async def start_streaming(req: StreamRequest) -> Any:
    submission = LivenessSubmission(
      session_id=req.session_id,
      video_chunks=req.video_chunks,
      video_width=req.video_width,
      video_height=req.video_height,
      challenge_id=req.challenge_id,
      initial_face=req.initial_face,
      target_face=req.target_face,
      color_displayed=req.color_displayed,
    )
    try:
      outcome = await app.state.service.submit_video(submission)
      outcome.raise_for_error()
    except LivenessError as exc:
      logger.warning("Streaming failed for session %s: %s", req.session_id, exc.message)
      return _error_response("Failed to start liveness streaming", exc)
    return MessageResponse(message="Liveness streaming started successfully", result=outcome.result)

  @app.get("/sessions/{session_id}/results", response_model=ResultsResponse, response_model_by_alias=True)
  async def get_results(session_id: str) -> Any:
    try:
      report = await app.state.service.get_results(session_id)
    except LivenessError as exc:
      return _error_response("Failed to fetch liveness results", exc)
    return ResultsResponse(
      message="Liveness results fetched successfully",
      liveness_confirmed=report.verdict.confirmed,
      confidence=report.verdict.confidence,
      status=report.verdict.raw_status,
      details=report.details,
    )

  return app
