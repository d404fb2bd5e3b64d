import asyncio
from typing import Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CancellationRegistry:
    """
    In-flight chunk attempts of one orchestrator, keyed by chunk id.
    Owned by a single orchestrator instance so concurrent runs never share handles.
    """

    def __init__(self):
        self._tasks: Dict[int, asyncio.Task] = {}

    def register(self, chunk_id: int, task: asyncio.Task) -> None:
        previous = self._tasks.get(chunk_id)
        if previous is not None and previous is not task and not previous.done():
            previous.cancel()
        self._tasks[chunk_id] = task
        task.add_done_callback(lambda done, cid=chunk_id: self._discard(cid, done))

    def get(self, chunk_id: int) -> Optional[asyncio.Task]:
        return self._tasks.get(chunk_id)

    def cancel(self, chunk_id: int) -> bool:
        task = self._tasks.pop(chunk_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("chunk_attempt_cancelled", chunk_id=chunk_id)
        return True

    def cancel_all(self) -> int:
        tasks, self._tasks = self._tasks, {}
        cancelled = 0
        for task in tasks.values():
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info("chunk_attempts_cancelled", count=cancelled)
        return cancelled

    def active_chunk_ids(self) -> list[int]:
        return sorted(chunk_id for chunk_id, task in self._tasks.items() if not task.done())

    def _discard(self, chunk_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(chunk_id) is task:
            self._tasks.pop(chunk_id, None)
