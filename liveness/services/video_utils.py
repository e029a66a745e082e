from __future__ import annotations

import base64
import binascii
import re
from typing import Iterable, Iterator, Sequence

from liveness.services.errors import MalformedInputError, PayloadTooLargeError


CHUNK_SIZE_BYTES = 64 * 1024
FRAME_STEP_MS = 50
DEFAULT_MAX_VIDEO_BYTES = 10 * 1024 * 1024

_DATA_URL_PREFIX_RE = re.compile(r"^data:[^,;]*(;[^,;]*)*;base64,", re.IGNORECASE)


def _strip_segment(segment: str) -> str:
    # Browsers commonly hand over `FileReader.readAsDataURL` output as-is.
    return _DATA_URL_PREFIX_RE.sub("", segment.strip(), count=1)


def decode_segments(
    segments: Sequence[str],
    *,
    max_bytes: int = DEFAULT_MAX_VIDEO_BYTES,
) -> list[bytes]:
    """Decode ordered base64 video segments into raw byte buffers.

    Every segment is decoded independently and the buffers keep the segment
    order. The running decoded size is checked after each segment so an
    oversized upload is rejected without decoding the rest of it.
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be > 0")
    if isinstance(segments, (str, bytes)) or not isinstance(segments, (list, tuple)):
        raise MalformedInputError("videoChunks must be a list of base64 strings")
    if not segments:
        raise MalformedInputError("videoChunks must not be empty")

    buffers: list[bytes] = []
    total = 0
    for index, segment in enumerate(segments):
        if not isinstance(segment, str):
            raise MalformedInputError(
                f"videoChunks[{index}] must be a base64 string, got {type(segment).__name__}"
            )
        try:
            decoded = base64.b64decode(_strip_segment(segment), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedInputError(
                f"videoChunks[{index}] is not valid base64", diagnostic=str(exc)
            ) from exc
        total += len(decoded)
        if total > max_bytes:
            raise PayloadTooLargeError(total, max_bytes)
        buffers.append(decoded)
    return buffers


def split_chunks(buffers: Iterable[bytes], chunk_size: int = CHUNK_SIZE_BYTES) -> Iterator[bytes]:
    """Lazily slice each buffer into transport chunks of at most `chunk_size` bytes.

    Segment boundaries are never merged: the tail of one buffer is yielded as a
    short chunk before the next buffer starts.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    for buffer in buffers:
        view = memoryview(buffer)
        for offset in range(0, len(view), chunk_size):
            yield bytes(view[offset : offset + chunk_size])


def count_chunks(buffers: Iterable[bytes], chunk_size: int = CHUNK_SIZE_BYTES) -> int:
    """Return how many chunks `split_chunks` will yield for the same buffers."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    return sum(-(-len(buffer) // chunk_size) for buffer in buffers)


def assign_timestamps(
    chunks: Iterable[bytes],
    start_ts: int,
    step_ms: int = FRAME_STEP_MS,
) -> Iterator[tuple[bytes, int]]:
    """Pair the k-th chunk with `start_ts + k * step_ms`.

    The pacing is a fixed per-chunk tick, independent of chunk size and of wall
    clock time once `start_ts` is chosen.
    """
    if step_ms <= 0:
        raise ValueError("step_ms must be > 0")
    timestamp = start_ts
    for chunk in chunks:
        yield chunk, timestamp
        timestamp += step_ms


def window_end(start_ts: int, chunk_count: int, step_ms: int = FRAME_STEP_MS) -> int:
    return start_ts + chunk_count * step_ms
