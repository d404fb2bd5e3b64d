from tripgen.domain.reducer import ChunkAttemptStarted, ChunkCompleted, SessionReady
from tripgen.domain.state import ChunkStatus, OrchestrationState, Session
from tripgen.services.state_store import OrchestrationStore


def test_store_notifies_listeners_on_each_transition() -> None:
    store = OrchestrationStore()
    seen: list[OrchestrationState] = []
    store.subscribe(seen.append)

    store.start_run("run-1", {})
    store.dispatch(SessionReady(run_id="run-1", session=Session(session_id="session-1")))

    assert [state.run_id for state in seen] == ["run-1", "run-1"]
    assert seen[-1].session is not None
    assert seen[-1] is store.state


def test_store_drops_actions_from_superseded_runs() -> None:
    store = OrchestrationStore()
    store.start_run("run-1", {})
    store.dispatch(SessionReady(run_id="run-1", session=Session(session_id="session-1")))
    store.start_run("run-2", {})

    before = store.state
    store.dispatch(ChunkAttemptStarted(run_id="run-1", chunk_id=1, attempt=1))
    store.dispatch(ChunkCompleted(run_id="run-1", chunk_id=1, payload={"a": 1}))

    assert store.state is before
    assert store.state.chunks[1].status == ChunkStatus.PENDING


def test_clear_returns_to_idle_and_drops_everything_after() -> None:
    store = OrchestrationStore()
    store.start_run("run-1", {})
    store.clear()

    store.dispatch(SessionReady(run_id="run-1", session=Session(session_id="session-1")))

    assert store.state == OrchestrationState()


def test_failing_listener_does_not_break_other_listeners() -> None:
    store = OrchestrationStore()
    received: list[str] = []

    def _broken(_state: OrchestrationState) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(_broken)
    store.subscribe(lambda state: received.append(state.run_id))

    store.start_run("run-1", {})

    assert received == ["run-1"]


def test_unsubscribe_stops_notifications() -> None:
    store = OrchestrationStore()
    received: list[str] = []
    unsubscribe = store.subscribe(lambda state: received.append(state.run_id))

    store.start_run("run-1", {})
    unsubscribe()
    store.start_run("run-2", {})

    assert received == ["run-1"]
