"""structlog setup shared by the API, the rq worker and the maintenance scripts."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from src.core.config import get_settings

# Render retries and worker polling would otherwise flood INFO output
_QUIET_LOGGERS = ("httpx", "httpcore", "rq.worker")

_CONFIGURED = False


def _service_context(service: str, environment: str) -> structlog.types.Processor:
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def setup_logging(level: int | str | None = None, *, json_logs: bool | None = None) -> None:
    """Configure structlog once per process.

    Level and renderer default to ``LOG_LEVEL`` and ``LOG_JSON``. Every event
    carries the service name and environment so API and worker output can be
    told apart in one stream.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    settings = get_settings()
    resolved = _resolve_level(settings.log_level if level is None else level)
    use_json = settings.log_json if json_logs is None else json_logs

    logging.basicConfig(level=resolved, format="%(message)s", stream=sys.stdout)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    renderer: Any = (
        structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_context(settings.app_name, settings.environment),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(resolved),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True
