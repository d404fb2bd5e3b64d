"""
Per-chunk attempt path.

Each chunk runs as its own task: one request (or one stream) per attempt,
bounded by a timeout and retried with exponential backoff on transient
failures. Every observable change goes through the store as a reducer action
tagged with the run id, so a superseded run can never write into a new one.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Literal, Optional

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from tripgen.core.observability.timing import Stopwatch
from tripgen.core.settings import settings
from tripgen.domain.chunk_plan import ChunkDefinition
from tripgen.domain.exceptions import (
    ChunkTimeoutError,
    InvalidChunkResponse,
    StreamEndedUnexpectedly,
    StreamReportedError,
    compact_error,
)
from tripgen.domain.interfaces import IGenerationService
from tripgen.domain.policies.retry_policy import is_retryable
from tripgen.domain.reducer import (
    ChunkAttemptStarted,
    ChunkCompleted,
    ChunkDeltaReceived,
    ChunkFailed,
    ChunkPartialPayload,
    ChunkStreamStarted,
)
from tripgen.domain.schemas import PlanningRequest, StreamEvent, StreamEventType
from tripgen.domain.state import Session
from tripgen.services.state_store import OrchestrationStore
from tripgen.services.stream_parser import StreamDeltaParser

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ChunkDispatcher:
    def __init__(
        self,
        client: IGenerationService,
        store: OrchestrationStore,
        *,
        mode: Literal["chunked", "streaming"] = "chunked",
        request_timeout_seconds: Optional[float] = None,
        stream_timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_multiplier_seconds: Optional[float] = None,
        max_delay_seconds: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.mode = mode
        self.request_timeout_seconds = float(
            request_timeout_seconds
            if request_timeout_seconds is not None
            else settings.CHUNK_REQUEST_TIMEOUT_SECONDS
        )
        self.stream_timeout_seconds = float(
            stream_timeout_seconds if stream_timeout_seconds is not None else settings.STREAM_CHUNK_TIMEOUT_SECONDS
        )
        self.max_retries = int(max_retries if max_retries is not None else settings.CHUNK_MAX_RETRIES)
        self.backoff_multiplier_seconds = float(
            backoff_multiplier_seconds
            if backoff_multiplier_seconds is not None
            else settings.CHUNK_RETRY_BACKOFF_MULTIPLIER_SECONDS
        )
        self.max_delay_seconds = float(
            max_delay_seconds if max_delay_seconds is not None else settings.CHUNK_RETRY_MAX_DELAY_SECONDS
        )
        self._sleep = sleep

    @property
    def timeout_seconds(self) -> float:
        return self.stream_timeout_seconds if self.mode == "streaming" else self.request_timeout_seconds

    def _retrying(self, chunk_id: int) -> AsyncRetrying:
        # attempt n waits multiplier * 2^(n-1): 2s, 4s with the defaults.
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_multiplier_seconds, exp_base=2, max=self.max_delay_seconds),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._log_retry(chunk_id, retry_state),
            reraise=True,
        )

    def _log_retry(self, chunk_id: int, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "chunk_retry_scheduled",
            chunk_id=chunk_id,
            attempt=retry_state.attempt_number,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=compact_error(error),
        )

    async def run_chunk(
        self,
        run_id: str,
        session: Session,
        chunk: ChunkDefinition,
        request: PlanningRequest,
    ) -> bool:
        """
        Drives one chunk to a terminal status. Returns True when the chunk
        completed. Failures end up in the store, never raised; cancellation
        propagates.
        """
        stopwatch = Stopwatch()
        attempts = 0
        payload: dict[str, Any] = {}
        try:
            async for attempt in self._retrying(chunk.id):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self.store.dispatch(ChunkAttemptStarted(run_id=run_id, chunk_id=chunk.id, attempt=attempts))
                    payload = await self._run_attempt(run_id, session, chunk, request)
        except asyncio.CancelledError:
            logger.info("chunk_cancelled", chunk_id=chunk.id, attempts=attempts)
            raise
        except Exception as exc:
            message = compact_error(exc)
            logger.warning(
                "chunk_failed",
                chunk_id=chunk.id,
                section=chunk.section,
                attempts=attempts,
                retryable=is_retryable(exc),
                error=message,
                duration_ms=stopwatch.elapsed_ms,
            )
            self.store.dispatch(ChunkFailed(run_id=run_id, chunk_id=chunk.id, message=message))
            return False

        self.store.dispatch(ChunkCompleted(run_id=run_id, chunk_id=chunk.id, payload=payload))
        logger.info(
            "chunk_completed",
            chunk_id=chunk.id,
            section=chunk.section,
            attempts=attempts,
            keys=sorted(payload.keys()),
            duration_ms=stopwatch.elapsed_ms,
        )
        return True

    async def _run_attempt(
        self,
        run_id: str,
        session: Session,
        chunk: ChunkDefinition,
        request: PlanningRequest,
    ) -> dict[str, Any]:
        if self.mode == "streaming":
            attempt = self._stream_attempt(run_id, session, chunk.id, request)
        else:
            attempt = self._fetch_attempt(session, chunk.id, request)
        try:
            return await asyncio.wait_for(attempt, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ChunkTimeoutError(chunk.id, self.timeout_seconds) from exc

    async def _fetch_attempt(self, session: Session, chunk_id: int, request: PlanningRequest) -> dict[str, Any]:
        response = await self.client.fetch_chunk(chunk_id, session.session_id, request)
        if response.chunk.chunk_id != chunk_id:
            logger.warning("chunk_id_mismatch", requested=chunk_id, received=response.chunk.chunk_id)
        return dict(response.data)

    async def _stream_attempt(
        self,
        run_id: str,
        session: Session,
        chunk_id: int,
        request: PlanningRequest,
    ) -> dict[str, Any]:
        parser = StreamDeltaParser(chunk_id=chunk_id)
        accumulated = ""
        async with self.client.open_chunk_stream(chunk_id, session.session_id, request) as byte_stream:
            async for data in byte_stream:
                parser.feed(data)
                accumulated, payload = self._apply_events(run_id, chunk_id, parser.drain(), accumulated)
                if payload is not None:
                    return payload
                if parser.finished:
                    break
            parser.close()
            accumulated, payload = self._apply_events(run_id, chunk_id, parser.drain(), accumulated)
            if payload is not None:
                return payload

        if parser.skipped_lines:
            logger.warning("stream_closed_with_skipped_records", chunk_id=chunk_id, skipped=parser.skipped_lines)
        raise StreamEndedUnexpectedly(chunk_id)

    def _apply_events(
        self,
        run_id: str,
        chunk_id: int,
        events: Iterable[StreamEvent],
        accumulated: str,
    ) -> tuple[str, Optional[dict[str, Any]]]:
        """Forwards stream events to the store. The payload is set once `complete` arrives."""
        for event in events:
            if event.chunk_id is not None and event.chunk_id != chunk_id:
                logger.debug("stream_event_foreign_chunk", chunk_id=chunk_id, event_chunk_id=event.chunk_id)
                continue

            if event.type == StreamEventType.START:
                self.store.dispatch(ChunkStreamStarted(run_id=run_id, chunk_id=chunk_id))
            elif event.type == StreamEventType.CONTENT_DELTA:
                if event.accumulated_text is not None:
                    accumulated = event.accumulated_text
                else:
                    accumulated += event.delta or ""
                self.store.dispatch(ChunkDeltaReceived(run_id=run_id, chunk_id=chunk_id, accumulated_text=accumulated))
            elif event.type == StreamEventType.PARTIAL_JSON:
                if event.payload is not None:
                    self.store.dispatch(ChunkPartialPayload(run_id=run_id, chunk_id=chunk_id, payload=event.payload))
            elif event.type == StreamEventType.COMPLETE:
                if event.payload is None:
                    raise InvalidChunkResponse(f"Chunk {chunk_id} completed without data")
                return accumulated, dict(event.payload)
            elif event.type == StreamEventType.ERROR:
                raise StreamReportedError(chunk_id, event.error_message or "Unknown streaming error")
        return accumulated, None
