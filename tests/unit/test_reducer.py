import pytest

from tripgen.domain.reducer import (
    NO_CHUNKS_SUCCEEDED,
    ChunkAttemptStarted,
    ChunkCompleted,
    ChunkDeltaReceived,
    ChunkFailed,
    ChunkPartialPayload,
    ChunkReset,
    ChunkStreamStarted,
    ReducerConfig,
    RunSettled,
    RunStarted,
    SessionFailed,
    SessionReady,
    reduce,
)
from tripgen.domain.state import ChunkStatus, OrchestrationState, Session

RUN = "run-1"
CONFIG = ReducerConfig()


def _ready_state() -> OrchestrationState:
    state = reduce(OrchestrationState(), RunStarted(run_id=RUN, context={"destination": {"name": "Lisbon"}}), CONFIG)
    return reduce(state, SessionReady(run_id=RUN, session=Session(session_id="session-1")), CONFIG)


def _apply(state: OrchestrationState, *actions) -> OrchestrationState:
    for action in actions:
        state = reduce(state, action, CONFIG)
    return state


def test_run_started_builds_pending_chunks() -> None:
    state = reduce(OrchestrationState(), RunStarted(run_id=RUN, context={}), CONFIG)

    assert state.is_loading is True
    assert state.total_chunks == 4
    assert set(state.chunks) == {1, 2, 3, 4}
    assert all(chunk.status == ChunkStatus.PENDING for chunk in state.chunks.values())
    assert state.combined_result is None
    assert state.overall_progress_percent == 0


def test_session_failure_is_fatal_for_the_run() -> None:
    state = reduce(OrchestrationState(), RunStarted(run_id=RUN, context={}), CONFIG)
    state = reduce(state, SessionFailed(run_id=RUN, message="Failed to initialize session: [500] boom"), CONFIG)

    assert state.is_loading is False
    assert state.error == "Failed to initialize session: [500] boom"
    assert all(chunk.status == ChunkStatus.PENDING for chunk in state.chunks.values())


def test_streaming_transitions_accumulate_text_and_progress() -> None:
    state = _apply(
        _ready_state(),
        ChunkAttemptStarted(run_id=RUN, chunk_id=2, attempt=1),
        ChunkStreamStarted(run_id=RUN, chunk_id=2),
        ChunkDeltaReceived(run_id=RUN, chunk_id=2, accumulated_text="x" * 2000),
        ChunkPartialPayload(run_id=RUN, chunk_id=2, payload={"attractions": []}),
    )

    chunk = state.chunks[2]
    assert chunk.status == ChunkStatus.LOADING
    assert chunk.is_streaming is True
    assert chunk.stream_progress_percent == 50.0
    assert chunk.partial_payload == {"attractions": []}
    assert chunk.final_payload is None
    assert state.overall_progress_percent == 21


def test_completion_sets_payload_and_counts() -> None:
    state = _apply(
        _ready_state(),
        ChunkAttemptStarted(run_id=RUN, chunk_id=1, attempt=1),
        ChunkCompleted(run_id=RUN, chunk_id=1, payload={"locations": ["Alfama"]}),
    )

    assert state.chunks[1].status == ChunkStatus.COMPLETED
    assert state.chunks[1].final_payload == {"locations": ["Alfama"]}
    assert state.completed_count == 1
    assert state.overall_progress_percent == 37
    assert state.combined_result is None


def test_new_attempt_clears_streamed_text_but_progress_never_drops() -> None:
    state = _apply(
        _ready_state(),
        ChunkAttemptStarted(run_id=RUN, chunk_id=2, attempt=1),
        ChunkDeltaReceived(run_id=RUN, chunk_id=2, accumulated_text="x" * 2000),
    )
    before = state.overall_progress_percent

    state = reduce(state, ChunkAttemptStarted(run_id=RUN, chunk_id=2, attempt=2), CONFIG)

    assert state.chunks[2].accumulated_text == ""
    assert state.chunks[2].attempts == 2
    assert state.overall_progress_percent == before


def test_failure_keeps_partial_text_for_display() -> None:
    state = _apply(
        _ready_state(),
        ChunkAttemptStarted(run_id=RUN, chunk_id=3, attempt=1),
        ChunkDeltaReceived(run_id=RUN, chunk_id=3, accumulated_text='{"practical": {"wea'),
        ChunkFailed(run_id=RUN, chunk_id=3, message="Chunk 3 stream ended unexpectedly"),
    )

    chunk = state.chunks[3]
    assert chunk.status == ChunkStatus.ERROR
    assert chunk.error_message == "Chunk 3 stream ended unexpectedly"
    assert chunk.accumulated_text == '{"practical": {"wea'
    assert chunk.final_payload is None


def test_terminal_chunks_ignore_late_events() -> None:
    state = _apply(
        _ready_state(),
        ChunkAttemptStarted(run_id=RUN, chunk_id=1, attempt=1),
        ChunkCompleted(run_id=RUN, chunk_id=1, payload={"a": 1}),
    )

    assert reduce(state, ChunkFailed(run_id=RUN, chunk_id=1, message="late"), CONFIG) is state
    assert reduce(state, ChunkDeltaReceived(run_id=RUN, chunk_id=1, accumulated_text="x"), CONFIG) is state
    assert reduce(state, ChunkAttemptStarted(run_id=RUN, chunk_id=1, attempt=2), CONFIG) is state


def test_minimum_viable_result_appears_once_settled() -> None:
    state = _apply(
        _ready_state(),
        *[ChunkAttemptStarted(run_id=RUN, chunk_id=chunk_id, attempt=1) for chunk_id in (1, 2, 3, 4)],
        ChunkCompleted(run_id=RUN, chunk_id=1, payload={"a": 1}),
        ChunkFailed(run_id=RUN, chunk_id=2, message="[500] GENERATION_FAILED: boom"),
        ChunkCompleted(run_id=RUN, chunk_id=3, payload={"c": 3}),
    )
    assert state.combined_result is None
    assert state.is_loading is True

    state = reduce(state, ChunkFailed(run_id=RUN, chunk_id=4, message="timeout"), CONFIG)

    assert state.combined_result == {"destination": {"name": "Lisbon"}, "a": 1, "c": 3}
    assert state.is_loading is False
    assert state.error is None
    assert state.completed_count == 2


def test_run_settled_without_successes_sets_run_error() -> None:
    state = _apply(
        _ready_state(),
        *[ChunkAttemptStarted(run_id=RUN, chunk_id=chunk_id, attempt=1) for chunk_id in (1, 2, 3, 4)],
        *[ChunkFailed(run_id=RUN, chunk_id=chunk_id, message="down") for chunk_id in (1, 2, 3, 4)],
        RunSettled(run_id=RUN),
    )

    assert state.is_loading is False
    assert state.error == NO_CHUNKS_SUCCEEDED
    assert state.combined_result is None
    assert state.completed_count == 0


def test_run_settled_with_single_success_has_no_result_and_no_error() -> None:
    state = _apply(
        _ready_state(),
        *[ChunkAttemptStarted(run_id=RUN, chunk_id=chunk_id, attempt=1) for chunk_id in (1, 2, 3, 4)],
        ChunkCompleted(run_id=RUN, chunk_id=1, payload={"a": 1}),
        *[ChunkFailed(run_id=RUN, chunk_id=chunk_id, message="down") for chunk_id in (2, 3, 4)],
        RunSettled(run_id=RUN),
    )

    assert state.is_loading is False
    assert state.error is None
    assert state.combined_result is None


def test_run_settled_is_ignored_while_a_chunk_is_loading() -> None:
    state = _apply(
        _ready_state(),
        ChunkAttemptStarted(run_id=RUN, chunk_id=1, attempt=1),
    )

    assert reduce(state, RunSettled(run_id=RUN), CONFIG) is state


def test_chunk_reset_starts_a_fresh_lifecycle_and_may_lower_progress() -> None:
    state = _apply(
        _ready_state(),
        *[ChunkAttemptStarted(run_id=RUN, chunk_id=chunk_id, attempt=1) for chunk_id in (1, 2, 3, 4)],
        *[ChunkFailed(run_id=RUN, chunk_id=chunk_id, message="down") for chunk_id in (1, 2, 3, 4)],
        RunSettled(run_id=RUN),
    )

    state = reduce(state, ChunkReset(run_id=RUN, chunk_id=2), CONFIG)

    assert state.chunks[2].status == ChunkStatus.PENDING
    assert state.chunks[2].error_message is None
    assert state.is_loading is True
    assert state.error is None


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(TypeError):
        reduce(OrchestrationState(), object(), CONFIG)  # type: ignore[arg-type]
