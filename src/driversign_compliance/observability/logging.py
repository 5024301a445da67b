"""
driversign_compliance.observability.logging

Structured logging configuration shared by the CLI and the API.

Responsibilities:
- Configure `structlog` for JSON logs suitable for CI log collectors and ELK/Splunk.
- Bind per-artifact context so every event of one evaluation carries the artifact id.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog


def configure_logging(*, service_name: str, level: str, stream: TextIO | None = None) -> None:
    """
    Structured JSON logs. The CLI passes `sys.stderr` so stdout stays a clean JSON report.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


@contextmanager
def artifact_context(*, path: str, artifact_id: str | None = None) -> Iterator[None]:
    # Scoped to one artifact of a batch; nested request context (request_id) is preserved.
    bound: dict[str, Any] = {"artifact_path": path}
    if artifact_id is not None:
        bound["artifact_id"] = artifact_id
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Request-scoped metadata is bound via contextvars in `observability.middleware`.
