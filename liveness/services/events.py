from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from liveness.services.errors import MalformedInputError
from liveness.services.video_utils import (
    CHUNK_SIZE_BYTES,
    FRAME_STEP_MS,
    assign_timestamps,
    count_chunks,
    split_chunks,
    window_end,
)


@dataclass(frozen=True, slots=True)
class ChallengeMetadata:
    """Face movement and light challenge the user performed while recording."""

    challenge_id: str
    initial_face: Mapping[str, Any]
    target_face: Mapping[str, Any]
    color_displayed: Mapping[str, Any]
    video_width: int
    video_height: int
    video_start_timestamp: int
    video_end_timestamp: int


@dataclass(frozen=True, slots=True)
class SessionInfoEvent:
    metadata: ChallengeMetadata

    def to_wire(self) -> dict[str, Any]:
        meta = self.metadata
        return {
            "ClientSessionInformationEvent": {
                "Challenge": {
                    "FaceMovementAndLightChallenge": {
                        "ChallengeId": meta.challenge_id,
                        "VideoStartTimestamp": meta.video_start_timestamp,
                        "VideoEndTimestamp": meta.video_end_timestamp,
                        "InitialFace": dict(meta.initial_face),
                        "TargetFace": dict(meta.target_face),
                        "ColorDisplayed": dict(meta.color_displayed),
                    }
                }
            }
        }


@dataclass(frozen=True, slots=True)
class VideoChunkEvent:
    chunk: bytes
    timestamp_millis: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "VideoEvent": {
                "VideoChunk": self.chunk,
                "TimestampMillis": self.timestamp_millis,
            }
        }


ProtocolEvent = Union[SessionInfoEvent, VideoChunkEvent]


def frame_events(
    metadata: ChallengeMetadata,
    timed_chunks: Iterable[tuple[bytes, int]],
) -> Iterator[ProtocolEvent]:
    """Yield the session header followed by one chunk event per timed chunk.

    The header is always emitted, even for an empty chunk sequence; empty
    video is rejected by `build_event_stream` before framing starts.
    """
    yield SessionInfoEvent(metadata)
    for chunk, timestamp in timed_chunks:
        yield VideoChunkEvent(chunk=chunk, timestamp_millis=timestamp)


def build_event_stream(
    buffers: list[bytes],
    *,
    challenge_id: str,
    initial_face: Mapping[str, Any],
    target_face: Mapping[str, Any],
    color_displayed: Mapping[str, Any],
    video_width: int,
    video_height: int,
    start_ts: Optional[int] = None,
    chunk_size: int = CHUNK_SIZE_BYTES,
    step_ms: int = FRAME_STEP_MS,
) -> tuple[ChallengeMetadata, Iterator[ProtocolEvent]]:
    """Compose splitter, pacer and framer over decoded video buffers.

    The chunk count is derived from buffer lengths so the metadata window can
    be fixed before the single-pass event iterator is handed out.
    """
    chunk_count = count_chunks(buffers, chunk_size)
    if chunk_count == 0:
        raise MalformedInputError("No video data to stream")

    start = int(time.time() * 1000) if start_ts is None else int(start_ts)
    metadata = ChallengeMetadata(
        challenge_id=challenge_id,
        initial_face=initial_face,
        target_face=target_face,
        color_displayed=color_displayed,
        video_width=video_width,
        video_height=video_height,
        video_start_timestamp=start,
        video_end_timestamp=window_end(start, chunk_count, step_ms),
    )
    timed = assign_timestamps(split_chunks(buffers, chunk_size), start, step_ms)
    return metadata, frame_events(metadata, timed)
