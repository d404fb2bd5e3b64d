from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import structlog

from tripgen.core.settings import settings
from tripgen.domain.schemas import PlanningRequest
from tripgen.services.plan_orchestrator import PlanOrchestrator

logger = structlog.get_logger(__name__)

OrchestratorFactory = Callable[[], PlanOrchestrator]


@dataclass
class PlanRun:
    run_id: str
    orchestrator: PlanOrchestrator
    request: PlanningRequest
    created_at: float = 0.0
    tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def is_settled(self) -> bool:
        return not self.tasks and not self.orchestrator.state.is_loading

    def track(self, task: asyncio.Task) -> asyncio.Task:
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task


class PlanRunRegistry:
    """
    Runs started through the HTTP API. Each run owns its orchestrator, so
    runs never share state or cancellation handles.

    Settled runs are evicted once they are older than `retention_seconds`,
    and the oldest settled runs go first whenever more than `max_runs` are
    held. Runs with work in flight are never evicted.
    """

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        *,
        retention_seconds: Optional[float] = None,
        max_runs: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = orchestrator_factory
        self._runs: Dict[str, PlanRun] = {}
        self.retention_seconds = float(
            retention_seconds if retention_seconds is not None else settings.PLAN_RUN_RETENTION_SECONDS
        )
        self.max_runs = max(1, int(max_runs if max_runs is not None else settings.MAX_RETAINED_PLAN_RUNS))
        self._clock = clock

    def __len__(self) -> int:
        return len(self._runs)

    def start(self, request: PlanningRequest) -> PlanRun:
        self.evict_settled()
        orchestrator = self._factory()
        run = PlanRun(
            run_id=orchestrator.begin_run(request),
            orchestrator=orchestrator,
            request=request,
            created_at=self._clock(),
        )
        self._runs[run.run_id] = run
        run.track(
            asyncio.create_task(
                orchestrator.execute_run(run.run_id, request),
                name=f"plan-{run.run_id[:8]}",
            )
        )
        logger.info("plan_run_registered", run_id=run.run_id, active_runs=len(self._runs))
        return run

    def get(self, run_id: str) -> Optional[PlanRun]:
        return self._runs.get(run_id)

    def retry_chunk(self, run_id: str, chunk_id: int) -> Optional[PlanRun]:
        run = self._runs.get(run_id)
        if run is None:
            return None
        run.track(
            asyncio.create_task(
                run.orchestrator.retry_chunk(chunk_id, run.request),
                name=f"retry-{chunk_id}-{run_id[:8]}",
            )
        )
        return run

    def discard(self, run_id: str) -> bool:
        run = self._runs.pop(run_id, None)
        if run is None:
            return False
        run.orchestrator.reset()
        for task in list(run.tasks):
            task.cancel()
        logger.info("plan_run_discarded", run_id=run_id, active_runs=len(self._runs))
        return True

    def evict_settled(self) -> list[str]:
        """Drops expired settled runs, then the oldest settled ones above `max_runs`."""
        now = self._clock()
        settled = sorted(
            (run for run in self._runs.values() if run.is_settled),
            key=lambda run: run.created_at,
        )
        evicted = [run.run_id for run in settled if now - run.created_at >= self.retention_seconds]
        remaining = [run for run in settled if run.run_id not in evicted]
        overflow = len(self._runs) - len(evicted) - (self.max_runs - 1)
        if overflow > 0:
            evicted.extend(run.run_id for run in remaining[:overflow])

        for run_id in evicted:
            self._runs.pop(run_id, None)
        if evicted:
            logger.info("plan_runs_evicted", count=len(evicted), active_runs=len(self._runs))
        return evicted

    async def shutdown(self) -> None:
        tasks = [task for run in self._runs.values() for task in run.tasks]
        for run_id in list(self._runs):
            self.discard(run_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
