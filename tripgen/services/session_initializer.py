from __future__ import annotations

import asyncio
import random
import string
import time
from typing import Literal, Optional

import structlog

from tripgen.core.observability.timing import Stopwatch
from tripgen.core.settings import settings
from tripgen.domain.exceptions import SessionInitError, compact_error
from tripgen.domain.interfaces import IGenerationService
from tripgen.domain.schemas import PlanningRequest
from tripgen.domain.state import Session

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def generate_session_id(now_ms: Optional[int] = None) -> str:
    """Client-side id in the `session-<epoch ms>-<random>` shape."""
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"session-{stamp}-{suffix}"


class SessionInitializer:
    """Creates the per-run Session. Any failure here is fatal for the run."""

    def __init__(
        self,
        client: IGenerationService,
        mode: Literal["chunked", "streaming"] = "chunked",
        timeout_seconds: Optional[float] = None,
    ):
        self.client = client
        self.mode = mode
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else settings.SESSION_INIT_TIMEOUT_SECONDS
        )

    async def init_session(self, request: PlanningRequest) -> Session:
        stopwatch = Stopwatch()
        try:
            session = await asyncio.wait_for(self._init(request), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error("session_init_timeout", mode=self.mode, timeout_seconds=self.timeout_seconds)
            raise SessionInitError(f"Session initialization timed out after {self.timeout_seconds:g}s") from exc
        except SessionInitError:
            raise
        except Exception as exc:
            logger.error("session_init_failed", mode=self.mode, error=compact_error(exc))
            raise SessionInitError(f"Failed to initialize session: {compact_error(exc)}") from exc

        logger.info(
            "session_initialized",
            mode=self.mode,
            session_id=session.session_id,
            has_manifest=session.manifest is not None,
            duration_ms=stopwatch.elapsed_ms,
        )
        return session

    async def _init(self, request: PlanningRequest) -> Session:
        if self.mode == "streaming":
            session_id, manifest = await self.client.fetch_manifest(request)
            return Session(session_id=session_id or generate_session_id(), manifest=manifest)

        response = await self.client.init_session(request)
        if response.total_chunks is not None and response.total_chunks <= 0:
            raise SessionInitError("Session initialization returned no chunks")
        return Session(session_id=response.session_id or generate_session_id())
