"""
Pure state transitions for a plan run.

`reduce(state, action, config)` never awaits and never mutates its inputs, so
applying it from the single-threaded event loop is atomic with respect to
every other transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional, Union

from tripgen.domain.chunk_plan import CHUNK_PLAN, ChunkDefinition
from tripgen.domain.combiner import DEFAULT_MIN_VIABLE_CHUNKS, is_settled, try_combine
from tripgen.domain.progress import (
    DEFAULT_EXPECTED_STREAM_CHARS,
    DEFAULT_MANIFEST_WEIGHT,
    DEFAULT_STREAM_CAP_PERCENT,
    compute_progress,
    stream_progress_percent,
)
from tripgen.domain.state import ChunkState, ChunkStatus, OrchestrationState, Session

NO_CHUNKS_SUCCEEDED = "No chunks loaded successfully. Please check your connection and try again."


@dataclass(frozen=True)
class ReducerConfig:
    plan: tuple[ChunkDefinition, ...] = CHUNK_PLAN
    manifest_weight: float = DEFAULT_MANIFEST_WEIGHT
    expected_stream_chars: int = DEFAULT_EXPECTED_STREAM_CHARS
    stream_cap_percent: float = DEFAULT_STREAM_CAP_PERCENT
    min_viable_chunks: int = DEFAULT_MIN_VIABLE_CHUNKS

    @classmethod
    def from_settings(cls, settings: Any, plan: tuple[ChunkDefinition, ...] = CHUNK_PLAN) -> "ReducerConfig":
        return cls(
            plan=plan,
            manifest_weight=float(settings.PROGRESS_MANIFEST_WEIGHT),
            expected_stream_chars=int(settings.STREAM_PROGRESS_EXPECTED_CHARS),
            stream_cap_percent=float(settings.STREAM_PROGRESS_CAP_PERCENT),
            min_viable_chunks=int(settings.MIN_VIABLE_CHUNKS),
        )


# =============================================================================
# ACTIONS
# =============================================================================


@dataclass(frozen=True)
class RunStarted:
    run_id: str
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionReady:
    run_id: str
    session: Session


@dataclass(frozen=True)
class SessionFailed:
    run_id: str
    message: str


@dataclass(frozen=True)
class ChunkAttemptStarted:
    run_id: str
    chunk_id: int
    attempt: int


@dataclass(frozen=True)
class ChunkStreamStarted:
    run_id: str
    chunk_id: int


@dataclass(frozen=True)
class ChunkDeltaReceived:
    run_id: str
    chunk_id: int
    accumulated_text: str


@dataclass(frozen=True)
class ChunkPartialPayload:
    run_id: str
    chunk_id: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class ChunkCompleted:
    run_id: str
    chunk_id: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class ChunkFailed:
    run_id: str
    chunk_id: int
    message: str


@dataclass(frozen=True)
class ChunkReset:
    """Explicit caller retry: the chunk restarts as a brand new lifecycle."""

    run_id: str
    chunk_id: int


@dataclass(frozen=True)
class RunSettled:
    """Every dispatched chunk reached a terminal status."""

    run_id: str


Action = Union[
    RunStarted,
    SessionReady,
    SessionFailed,
    ChunkAttemptStarted,
    ChunkStreamStarted,
    ChunkDeltaReceived,
    ChunkPartialPayload,
    ChunkCompleted,
    ChunkFailed,
    ChunkReset,
    RunSettled,
]


# =============================================================================
# HANDLERS
# =============================================================================


def _with_chunk(state: OrchestrationState, chunk_id: int, chunk: ChunkState) -> OrchestrationState:
    chunks = dict(state.chunks)
    chunks[chunk_id] = chunk
    return replace(state, chunks=chunks)


def _loading_chunk(state: OrchestrationState, chunk_id: int) -> Optional[ChunkState]:
    chunk = state.chunks.get(chunk_id)
    if chunk is None or chunk.status != ChunkStatus.LOADING:
        return None
    return chunk


def _on_run_started(state: OrchestrationState, action: RunStarted, config: ReducerConfig) -> OrchestrationState:
    return OrchestrationState(
        is_loading=True,
        chunks={chunk.id: ChunkState() for chunk in config.plan},
        total_chunks=len(config.plan),
        run_id=action.run_id,
        context=dict(action.context),
    )


def _on_session_ready(state: OrchestrationState, action: SessionReady, config: ReducerConfig) -> OrchestrationState:
    return replace(state, session=action.session, error=None)


def _on_session_failed(state: OrchestrationState, action: SessionFailed, config: ReducerConfig) -> OrchestrationState:
    return replace(state, is_loading=False, error=action.message or "Failed to initialize session")


def _on_attempt_started(
    state: OrchestrationState, action: ChunkAttemptStarted, config: ReducerConfig
) -> OrchestrationState:
    chunk = state.chunks.get(action.chunk_id)
    if chunk is None or chunk.is_terminal:
        return state
    if action.attempt > 1:
        # A new attempt restreams from scratch.
        chunk = replace(
            chunk,
            accumulated_text="",
            partial_payload=None,
            stream_progress_percent=0.0,
            is_streaming=False,
            error_message=None,
        )
    return _with_chunk(state, action.chunk_id, replace(chunk, status=ChunkStatus.LOADING, attempts=action.attempt))


def _on_stream_started(
    state: OrchestrationState, action: ChunkStreamStarted, config: ReducerConfig
) -> OrchestrationState:
    chunk = _loading_chunk(state, action.chunk_id)
    if chunk is None:
        return state
    return _with_chunk(state, action.chunk_id, replace(chunk, is_streaming=True))


def _on_delta(state: OrchestrationState, action: ChunkDeltaReceived, config: ReducerConfig) -> OrchestrationState:
    chunk = _loading_chunk(state, action.chunk_id)
    if chunk is None:
        return state
    percent = stream_progress_percent(
        len(action.accumulated_text),
        expected_chars=config.expected_stream_chars,
        cap_percent=config.stream_cap_percent,
    )
    return _with_chunk(
        state,
        action.chunk_id,
        replace(
            chunk,
            accumulated_text=action.accumulated_text,
            is_streaming=True,
            stream_progress_percent=max(chunk.stream_progress_percent, percent),
        ),
    )


def _on_partial(state: OrchestrationState, action: ChunkPartialPayload, config: ReducerConfig) -> OrchestrationState:
    chunk = _loading_chunk(state, action.chunk_id)
    if chunk is None:
        return state
    return _with_chunk(state, action.chunk_id, replace(chunk, partial_payload=dict(action.payload)))


def _on_completed(state: OrchestrationState, action: ChunkCompleted, config: ReducerConfig) -> OrchestrationState:
    chunk = _loading_chunk(state, action.chunk_id)
    if chunk is None:
        return state
    return _with_chunk(
        state,
        action.chunk_id,
        replace(
            chunk,
            status=ChunkStatus.COMPLETED,
            final_payload=dict(action.payload),
            error_message=None,
            is_streaming=False,
            stream_progress_percent=100.0,
        ),
    )


def _on_failed(state: OrchestrationState, action: ChunkFailed, config: ReducerConfig) -> OrchestrationState:
    chunk = _loading_chunk(state, action.chunk_id)
    if chunk is None:
        return state
    # Streamed text and partial payload stay visible for display.
    return _with_chunk(
        state,
        action.chunk_id,
        replace(chunk, status=ChunkStatus.ERROR, error_message=action.message, is_streaming=False),
    )


def _on_chunk_reset(state: OrchestrationState, action: ChunkReset, config: ReducerConfig) -> OrchestrationState:
    if action.chunk_id not in state.chunks:
        return state
    state = _with_chunk(state, action.chunk_id, ChunkState())
    return replace(state, is_loading=True, error=None)


def _on_run_settled(state: OrchestrationState, action: RunSettled, config: ReducerConfig) -> OrchestrationState:
    if state.session is None or not is_settled(state):
        # A manual retry may still be running after the main join returned.
        return state
    completed = len(state.chunks_with_status(ChunkStatus.COMPLETED))
    if completed == 0:
        return replace(state, is_loading=False, error=NO_CHUNKS_SUCCEEDED, combined_result=None)
    combined = try_combine(state, min_viable_chunks=config.min_viable_chunks)
    return replace(
        state,
        is_loading=False,
        error=None,
        combined_result=combined if combined is not None else state.combined_result,
    )


_HANDLERS: dict[type, Callable[[OrchestrationState, Any, ReducerConfig], OrchestrationState]] = {
    RunStarted: _on_run_started,
    SessionReady: _on_session_ready,
    SessionFailed: _on_session_failed,
    ChunkAttemptStarted: _on_attempt_started,
    ChunkStreamStarted: _on_stream_started,
    ChunkDeltaReceived: _on_delta,
    ChunkPartialPayload: _on_partial,
    ChunkCompleted: _on_completed,
    ChunkFailed: _on_failed,
    ChunkReset: _on_chunk_reset,
    RunSettled: _on_run_settled,
}

# Events that may produce the combined document.
_COMBINE_TRIGGERS = (ChunkCompleted, ChunkFailed)


def reduce(state: OrchestrationState, action: Action, config: ReducerConfig = ReducerConfig()) -> OrchestrationState:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unsupported action: {type(action).__name__}")

    new_state = handler(state, action, config)
    if new_state is state:
        return state

    completed_count = len(new_state.chunks_with_status(ChunkStatus.COMPLETED))
    progress = compute_progress(new_state, plan=config.plan, manifest_weight=config.manifest_weight)
    if not isinstance(action, (RunStarted, ChunkReset)):
        progress = max(state.overall_progress_percent, progress)
    new_state = replace(new_state, completed_count=completed_count, overall_progress_percent=progress)

    if isinstance(action, _COMBINE_TRIGGERS):
        combined = try_combine(new_state, min_viable_chunks=config.min_viable_chunks)
        if combined is not None:
            new_state = replace(new_state, combined_result=combined, is_loading=False, error=None)

    return new_state
