from __future__ import annotations

from typing import Any

from structlog.contextvars import bind_contextvars, unbind_contextvars


def bind_run_context(**kwargs: Any) -> None:
    """
    Binds run scoped identifiers (run_id, session_id) to the structlog context
    of the current task. Child tasks created afterwards inherit a copy.
    """
    bind_contextvars(**{key: value for key, value in kwargs.items() if value is not None})


def unbind_run_context(*keys: str) -> None:
    unbind_contextvars(*keys)
