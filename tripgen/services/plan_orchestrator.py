from __future__ import annotations

import asyncio
from typing import Any, Literal, Optional
from uuid import uuid4

import structlog

from tripgen.core.observability.context_vars import bind_run_context, unbind_run_context
from tripgen.core.observability.timing import Stopwatch
from tripgen.core.settings import settings as default_settings
from tripgen.domain.chunk_plan import CHUNK_PLAN, ChunkDefinition, get_chunk_definition, validate_chunk_plan
from tripgen.domain.exceptions import SessionInitError
from tripgen.domain.interfaces import IGenerationService
from tripgen.domain.reducer import ChunkReset, ReducerConfig, RunSettled, SessionFailed, SessionReady
from tripgen.domain.schemas import PlanningRequest
from tripgen.domain.state import OrchestrationState, Session
from tripgen.services.cancellation import CancellationRegistry
from tripgen.services.chunk_dispatcher import ChunkDispatcher, SleepFn
from tripgen.services.session_initializer import SessionInitializer
from tripgen.services.state_store import OrchestrationStore, StateListener

logger = structlog.get_logger(__name__)


class PlanOrchestrator:
    """
    Control surface for chunked plan generation.

    One instance drives at most one run at a time: starting a new run or
    calling `reset()` cancels the pending session request and every in-flight
    chunk of the previous one, and late results of a superseded run are
    dropped by the store.
    """

    def __init__(
        self,
        client: IGenerationService,
        *,
        mode: Optional[Literal["chunked", "streaming"]] = None,
        plan: tuple[ChunkDefinition, ...] = CHUNK_PLAN,
        settings: Any = None,
        sleep: SleepFn = asyncio.sleep,
        **dispatcher_options: Any,
    ):
        settings = settings or default_settings
        self.mode = mode or settings.ORCHESTRATION_MODE
        self.plan = validate_chunk_plan(plan)
        self.store = OrchestrationStore(ReducerConfig.from_settings(settings, plan=self.plan))
        self._initializer = SessionInitializer(
            client,
            mode=self.mode,
            timeout_seconds=settings.SESSION_INIT_TIMEOUT_SECONDS,
        )
        dispatcher_defaults = {
            "request_timeout_seconds": settings.CHUNK_REQUEST_TIMEOUT_SECONDS,
            "stream_timeout_seconds": settings.STREAM_CHUNK_TIMEOUT_SECONDS,
            "max_retries": settings.CHUNK_MAX_RETRIES,
            "backoff_multiplier_seconds": settings.CHUNK_RETRY_BACKOFF_MULTIPLIER_SECONDS,
            "max_delay_seconds": settings.CHUNK_RETRY_MAX_DELAY_SECONDS,
        }
        dispatcher_defaults.update(dispatcher_options)
        self._dispatcher = ChunkDispatcher(client, self.store, mode=self.mode, sleep=sleep, **dispatcher_defaults)
        self._registry = CancellationRegistry()
        self._session_task: Optional[asyncio.Task] = None
        self._request: Optional[PlanningRequest] = None

    @property
    def state(self) -> OrchestrationState:
        return self.store.state

    def subscribe(self, listener: StateListener):
        """Registers a synchronous state listener. Returns the unsubscribe callable."""
        return self.store.subscribe(listener)

    async def generate_plan(self, request: PlanningRequest) -> OrchestrationState:
        run_id = self.begin_run(request)
        return await self.execute_run(run_id, request)

    def begin_run(self, request: PlanningRequest, run_id: Optional[str] = None) -> str:
        """Cancels the previous run and publishes the loading state of a new one."""
        self._registry.cancel_all()
        self._cancel_session_init()
        run_id = run_id or str(uuid4())
        self._request = request
        self.store.start_run(run_id, request.combiner_seed())
        return run_id

    async def execute_run(self, run_id: str, request: PlanningRequest) -> OrchestrationState:
        if self.state.run_id != run_id:
            logger.info("plan_run_superseded_before_start", run_id=run_id)
            return self.state

        bind_run_context(run_id=run_id)
        stopwatch = Stopwatch()
        logger.info(
            "plan_run_started",
            mode=self.mode,
            destination=request.destination.name,
            total_chunks=len(self.plan),
        )

        session_task = asyncio.create_task(
            self._initializer.init_session(request),
            name=f"session-init-{run_id[:8]}",
        )
        self._session_task = session_task
        try:
            try:
                session = await session_task
            except asyncio.CancelledError:
                if self.state.run_id == run_id:
                    session_task.cancel()
                    raise
                logger.info("plan_run_superseded_during_session_init")
                return self.state
            except SessionInitError as exc:
                self.store.dispatch(SessionFailed(run_id=run_id, message=str(exc)))
                return self.state

            if self.state.run_id != run_id:
                logger.info("plan_run_superseded_during_session_init")
                return self.state

            self.store.dispatch(SessionReady(run_id=run_id, session=session))
            bind_run_context(session_id=session.session_id)

            tasks = [self._launch(run_id, session, chunk, request) for chunk in self.plan]
            await asyncio.gather(*tasks, return_exceptions=True)
            self._settle(run_id, stopwatch)
        finally:
            if self._session_task is session_task:
                self._session_task = None
            unbind_run_context("run_id", "session_id")
        return self.state

    async def retry_chunk(self, chunk_id: int, request: Optional[PlanningRequest] = None) -> OrchestrationState:
        """Re-runs a single chunk of the current run from a fresh state."""
        state = self.state
        if state.run_id is None or state.session is None:
            logger.warning("chunk_retry_without_session", chunk_id=chunk_id)
            return state
        try:
            chunk = get_chunk_definition(chunk_id, self.plan)
        except KeyError:
            logger.warning("chunk_retry_unknown_chunk", chunk_id=chunk_id)
            return state

        request = request or self._request
        if request is None:
            logger.warning("chunk_retry_without_request", chunk_id=chunk_id)
            return state

        run_id = state.run_id
        session = state.session
        self._registry.cancel(chunk_id)
        self.store.dispatch(ChunkReset(run_id=run_id, chunk_id=chunk_id))
        bind_run_context(run_id=run_id, session_id=session.session_id)
        stopwatch = Stopwatch()
        logger.info("chunk_retry_requested", chunk_id=chunk_id)

        try:
            task = self._launch(run_id, session, chunk, request)
            await asyncio.gather(task, return_exceptions=True)
            self._settle(run_id, stopwatch)
        finally:
            unbind_run_context("run_id", "session_id")
        return self.state

    def reset(self) -> OrchestrationState:
        cancelled = self._registry.cancel_all()
        self._cancel_session_init()
        previous_run = self.state.run_id
        self._request = None
        self.store.clear()
        logger.info("plan_run_reset", previous_run_id=previous_run, cancelled_chunks=cancelled)
        return self.state

    def active_chunk_ids(self) -> list[int]:
        return self._registry.active_chunk_ids()

    def _cancel_session_init(self) -> None:
        task, self._session_task = self._session_task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("session_init_cancelled")

    def _launch(
        self,
        run_id: str,
        session: Session,
        chunk: ChunkDefinition,
        request: PlanningRequest,
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._dispatcher.run_chunk(run_id, session, chunk, request),
            name=f"chunk-{chunk.id}-{run_id[:8]}",
        )
        self._registry.register(chunk.id, task)
        return task

    def _settle(self, run_id: str, stopwatch: Stopwatch) -> None:
        state = self.store.dispatch(RunSettled(run_id=run_id))
        if state.run_id != run_id or state.is_loading:
            return
        logger.info(
            "plan_run_settled",
            completed=state.completed_count,
            total=state.total_chunks,
            progress=state.overall_progress_percent,
            combined=state.combined_result is not None,
            error=state.error,
            duration_ms=stopwatch.elapsed_ms,
        )
