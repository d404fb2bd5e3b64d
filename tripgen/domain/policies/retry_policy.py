from __future__ import annotations

import asyncio

import httpx

from tripgen.domain.exceptions import (
    ChunkTimeoutError,
    GenerationServiceError,
    InvalidChunkResponse,
    StreamEndedUnexpectedly,
)

RETRYABLE_STATUS_CODES = frozenset({429})


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUS_CODES


def is_retryable(exc: BaseException) -> bool:
    """
    Transient failures (timeouts, transport errors, 5xx, 429, truncated streams,
    garbled bodies) are retried. Other 4xx answers and explicit stream errors
    are definitive. Cancellation is never retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, GenerationServiceError):
        return is_retryable_status(exc.status)
    if isinstance(exc, (ChunkTimeoutError, asyncio.TimeoutError, StreamEndedUnexpectedly, InvalidChunkResponse)):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    return False
