from __future__ import annotations

from dataclasses import dataclass
from typing import Any


def compact_error(value: Any, *, limit: int = 320) -> str:
    text = str(value or "").replace("\n", " ").strip()
    if not text and isinstance(value, BaseException):
        text = type(value).__name__
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass
class GenerationServiceError(Exception):
    """Non-2xx answer from the generation service."""

    status: int
    code: str
    message: str
    details: Any = None
    request_id: str = "unknown"

    def __str__(self) -> str:
        return f"[{self.status}] {self.code}: {self.message}"

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class SessionInitError(Exception):
    """Session initialization failed; the run cannot dispatch any chunk."""


class InvalidChunkResponse(Exception):
    """The service answered 2xx with a body that does not match the chunk contract."""


class ChunkTimeoutError(Exception):
    def __init__(self, chunk_id: int, timeout_seconds: float):
        super().__init__(f"Chunk {chunk_id} request timed out after {timeout_seconds:g}s")
        self.chunk_id = chunk_id
        self.timeout_seconds = timeout_seconds


class StreamEndedUnexpectedly(Exception):
    def __init__(self, chunk_id: int):
        super().__init__(f"Chunk {chunk_id} stream ended unexpectedly")
        self.chunk_id = chunk_id


class StreamReportedError(Exception):
    """The stream delivered an explicit `error` event for the chunk."""

    def __init__(self, chunk_id: int, message: str):
        super().__init__(message or "Unknown streaming error")
        self.chunk_id = chunk_id
