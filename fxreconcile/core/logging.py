"""Logging for reconciliation runs — structlog events over stdlib handlers.

Console events go to stderr, rendered for people or as JSON. A run over the
whole catalog can also keep a JSON-lines log file, which is what operators
grep afterwards for ``reconciler.package_failed`` and ``applier.failed``.

Environment:
    FXRECONCILE_LOG_LEVEL  — level for fxreconcile loggers (default: INFO)
    FXRECONCILE_LOG_FORMAT — console | json (default: console)
    FXRECONCILE_LOG_FILE   — optional path of a JSON-lines run log
"""

from __future__ import annotations

import logging
import logging.config
import os
import uuid
from pathlib import Path
from typing import Any

import structlog

from fxreconcile.exceptions import ConfigurationError

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncpg", "httpx", "httpcore")


def _event_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(renderer: structlog.types.Processor, pre_chain: list) -> dict[str, Any]:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "foreign_pre_chain": pre_chain,
        "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    }


def setup_logging(level: str | None = None, *, log_file: Path | str | None = None) -> None:
    """Route structlog events through stdlib logging to stderr and, optionally, a file.

    *level* and *log_file* win over ``FXRECONCILE_LOG_LEVEL`` and
    ``FXRECONCILE_LOG_FILE``. Raises ``ConfigurationError`` for an unknown
    level or format.
    """
    log_level = (level or os.environ.get("FXRECONCILE_LOG_LEVEL") or "INFO").upper()
    if log_level not in _LEVELS:
        raise ConfigurationError(f"unknown log level {log_level!r}")
    log_format = os.environ.get("FXRECONCILE_LOG_FORMAT", "console").lower()
    if log_format not in ("console", "json"):
        raise ConfigurationError(
            f"FXRECONCILE_LOG_FORMAT must be console or json, not {log_format!r}"
        )
    log_file = log_file or os.environ.get("FXRECONCILE_LOG_FILE") or None

    pre_chain = _event_processors()
    console: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    formatters = {"console": _formatter(console, pre_chain)}
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "console",
        },
    }
    if log_file:
        formatters["jsonl"] = _formatter(structlog.processors.JSONRenderer(), pre_chain)
        handlers["run_log"] = {
            "class": "logging.FileHandler",
            "filename": str(log_file),
            "encoding": "utf-8",
            "delay": True,
            "formatter": "jsonl",
        }

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": formatters,
            "handlers": handlers,
            "root": {"handlers": list(handlers), "level": "WARNING"},
            "loggers": {
                "fxreconcile": {"level": log_level},
                **{name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            },
        }
    )


def bind_run(**fields: Any) -> str:
    """Start a fresh log context for one run and return its id.

    Every event logged afterwards in this context, including from worker
    tasks spawned later, carries ``run_id`` plus *fields*.
    """
    run_id = uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_id=run_id, **fields)
    return run_id
