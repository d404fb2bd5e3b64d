import logging

import structlog
from structlog.contextvars import merge_contextvars

from tripgen.core.observability.correlation import CorrelationLogFilter, get_correlation_id
from tripgen.core.settings import settings


def add_context_vars(_, __, event_dict):
    """
    Processor that injects the correlation id and renames `event` to the canonical `message`.
    """
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid

    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")

    return event_dict


def configure_structlog(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Configures structlog on top of standard logging.
    """
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationLogFilter())
    handler.setFormatter(
        logging.Formatter(" [%(asctime)s] [%(levelname)s] [trace_id=%(correlation_id)s] %(name)s: %(message)s")
    )

    resolved_level = str(level or settings.LOG_LEVEL or "INFO").upper()
    log_level = getattr(logging, resolved_level, logging.INFO)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[handler], force=True)

    use_json = settings.LOG_JSON if json_logs is None else json_logs
    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()

    processors = [
        merge_contextvars,
        add_context_vars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
