import asyncio

import httpx
import pytest

from tests.fakes import HANG, FakeGenerationService, RecordingSleep, make_request, sse
from tripgen.domain.chunk_plan import get_chunk_definition
from tripgen.domain.exceptions import GenerationServiceError
from tripgen.domain.reducer import ReducerConfig, SessionReady
from tripgen.domain.state import ChunkStatus, Session
from tripgen.services.chunk_dispatcher import ChunkDispatcher
from tripgen.services.state_store import OrchestrationStore

RUN = "run-1"
SESSION = Session(session_id="session-1")


def _server_error(status: int = 500) -> GenerationServiceError:
    return GenerationServiceError(status=status, code="GENERATION_FAILED", message="boom")


def _ready_store() -> OrchestrationStore:
    store = OrchestrationStore(ReducerConfig())
    store.start_run(RUN, {"destination": {"name": "Lisbon"}})
    store.dispatch(SessionReady(run_id=RUN, session=SESSION))
    return store


def _dispatcher(client, store, sleep, **overrides) -> ChunkDispatcher:
    options = {
        "request_timeout_seconds": 5.0,
        "stream_timeout_seconds": 5.0,
        "max_retries": 2,
        "backoff_multiplier_seconds": 2.0,
        "max_delay_seconds": 30.0,
    }
    options.update(overrides)
    return ChunkDispatcher(client, store, sleep=sleep, **options)


@pytest.mark.asyncio
async def test_transient_failures_retry_with_exponential_backoff() -> None:
    client = FakeGenerationService(chunk_outcomes={1: [_server_error(), _server_error(503), {"locations": ["Alfama"]}]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep).run_chunk(RUN, SESSION, get_chunk_definition(1), make_request())

    assert ok is True
    assert client.calls_for(1) == 3
    assert sleep.delays == [2.0, 4.0]
    chunk = store.state.chunks[1]
    assert chunk.status == ChunkStatus.COMPLETED
    assert chunk.final_payload == {"locations": ["Alfama"]}
    assert chunk.attempts == 3


@pytest.mark.asyncio
async def test_retries_are_bounded_to_three_attempts() -> None:
    client = FakeGenerationService(chunk_outcomes={2: [_server_error()]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep).run_chunk(RUN, SESSION, get_chunk_definition(2), make_request())

    assert ok is False
    assert client.calls_for(2) == 3
    assert sleep.delays == [2.0, 4.0]
    chunk = store.state.chunks[2]
    assert chunk.status == ChunkStatus.ERROR
    assert chunk.error_message == "[500] GENERATION_FAILED: boom"


@pytest.mark.asyncio
async def test_rate_limited_requests_are_retried() -> None:
    client = FakeGenerationService(chunk_outcomes={3: [_server_error(429), {"practical": {}}]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep).run_chunk(RUN, SESSION, get_chunk_definition(3), make_request())

    assert ok is True
    assert client.calls_for(3) == 2
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_client_errors_fail_immediately() -> None:
    rejected = GenerationServiceError(status=400, code="REQUEST_REJECTED", message="Invalid chunk number")
    client = FakeGenerationService(chunk_outcomes={4: [rejected]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep).run_chunk(RUN, SESSION, get_chunk_definition(4), make_request())

    assert ok is False
    assert client.calls_for(4) == 1
    assert sleep.delays == []
    assert store.state.chunks[4].error_message == "[400] REQUEST_REJECTED: Invalid chunk number"


@pytest.mark.asyncio
async def test_network_errors_are_retried() -> None:
    client = FakeGenerationService(chunk_outcomes={1: [httpx.ConnectError("refused"), {"locations": []}]})
    store = _ready_store()

    ok = await _dispatcher(client, store, RecordingSleep()).run_chunk(
        RUN, SESSION, get_chunk_definition(1), make_request()
    )

    assert ok is True
    assert client.calls_for(1) == 2


@pytest.mark.asyncio
async def test_attempt_timeout_is_enforced_and_retried() -> None:
    client = FakeGenerationService(chunk_outcomes={1: [HANG]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep, request_timeout_seconds=0.01).run_chunk(
        RUN, SESSION, get_chunk_definition(1), make_request()
    )

    assert ok is False
    assert client.calls_for(1) == 3
    assert sleep.delays == [2.0, 4.0]
    assert store.state.chunks[1].error_message == "Chunk 1 request timed out after 0.01s"


@pytest.mark.asyncio
async def test_streamed_chunk_accumulates_deltas_then_completes() -> None:
    stream = sse(
        {"type": "start", "chunkId": 2},
        {"type": "content_delta", "chunkId": 2, "delta": '{"attr'},
        {"type": "content_delta", "chunkId": 2, "delta": 'actions": []}'},
        {"type": "complete", "chunkId": 2, "data": {"attractions": []}},
    )
    client = FakeGenerationService(stream_outcomes={2: [stream]})
    store = _ready_store()
    texts: list[str] = []
    store.subscribe(lambda state: texts.append(state.chunks[2].accumulated_text))

    ok = await _dispatcher(client, store, RecordingSleep(), mode="streaming").run_chunk(
        RUN, SESSION, get_chunk_definition(2), make_request()
    )

    assert ok is True
    assert '{"attr' in texts
    chunk = store.state.chunks[2]
    assert chunk.accumulated_text == '{"attractions": []}'
    assert chunk.final_payload == {"attractions": []}
    assert chunk.stream_progress_percent == 100.0


@pytest.mark.asyncio
async def test_stream_without_terminal_event_is_retried_then_fails() -> None:
    truncated = sse({"type": "start"}, {"type": "content_delta", "accumulated": '{"cult'})
    client = FakeGenerationService(stream_outcomes={4: [truncated]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep, mode="streaming").run_chunk(
        RUN, SESSION, get_chunk_definition(4), make_request()
    )

    assert ok is False
    assert client.calls_for(4) == 3
    assert sleep.delays == [2.0, 4.0]
    chunk = store.state.chunks[4]
    assert chunk.status == ChunkStatus.ERROR
    assert chunk.error_message == "Chunk 4 stream ended unexpectedly"
    assert chunk.accumulated_text == '{"cult'


@pytest.mark.asyncio
async def test_stream_retry_restarts_text_from_scratch() -> None:
    truncated = sse({"type": "content_delta", "accumulated": "stale partial"}, done=False)
    complete = sse(
        {"type": "content_delta", "delta": "fresh"},
        {"type": "complete", "data": {"practical": {"currency": "EUR"}}},
    )
    client = FakeGenerationService(stream_outcomes={3: [truncated, complete]})
    store = _ready_store()

    ok = await _dispatcher(client, store, RecordingSleep(), mode="streaming").run_chunk(
        RUN, SESSION, get_chunk_definition(3), make_request()
    )

    assert ok is True
    assert store.state.chunks[3].accumulated_text == "fresh"


@pytest.mark.asyncio
async def test_stream_error_event_fails_without_retry() -> None:
    stream = sse({"type": "start"}, {"type": "error", "error": "Content policy violation"})
    client = FakeGenerationService(stream_outcomes={1: [stream]})
    store = _ready_store()
    sleep = RecordingSleep()

    ok = await _dispatcher(client, store, sleep, mode="streaming").run_chunk(
        RUN, SESSION, get_chunk_definition(1), make_request()
    )

    assert ok is False
    assert client.calls_for(1) == 1
    assert sleep.delays == []
    assert store.state.chunks[1].error_message == "Content policy violation"


@pytest.mark.asyncio
async def test_cancellation_propagates_and_leaves_chunk_loading() -> None:
    client = FakeGenerationService(chunk_outcomes={2: [HANG]})
    store = _ready_store()
    dispatcher = _dispatcher(client, store, RecordingSleep())

    task = asyncio.create_task(dispatcher.run_chunk(RUN, SESSION, get_chunk_definition(2), make_request()))
    for _ in range(100):
        if client.calls_for(2):
            break
        await asyncio.sleep(0)
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert client.calls_for(2) == 1
    assert store.state.chunks[2].status == ChunkStatus.LOADING
