from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any

import structlog

# Transport libraries log every frame and request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "websockets", "uvicorn.access")

_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        return

    level = level.upper()
    logging.basicConfig(format="%(message)s", level=level)
    if level != "DEBUG":
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def turn_context(turn_id: int, from_voice: bool) -> AbstractContextManager[None]:
    """Tag every event logged inside the block with the turn it belongs to."""
    return structlog.contextvars.bound_contextvars(turn_id=turn_id, from_voice=from_voice)


__all__ = ["configure_logging", "get_logger", "turn_context"]
