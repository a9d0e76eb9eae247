"""Structured logging for engine operations.

Each engine operation (an import batch, a query, a snapshot build, a
hierarchy rebuild) runs inside ``operation()``. Its identifying fields
(scope, year, request id) are bound to structlog's context variables, so
every event emitted underneath carries them, and a single closing event
reports the elapsed time.

Output goes through stdlib logging with one handler per configured output.
Console handlers go quiet while a rich live display owns the terminal; file
handlers keep everything.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from structlog.contextvars import bound_contextvars, get_contextvars

from saaqengine.core.errors import EngineError

if TYPE_CHECKING:
    from saaqengine.config.models import LoggingConfig

logger = structlog.get_logger()

REQUEST_ID_KEY = "request_id"


def new_request_id() -> str:
    return uuid4().hex[:12]


def get_request_id() -> str | None:
    return get_contextvars().get(REQUEST_ID_KEY)


@contextmanager
def request_scope(request_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    An id already bound by an enclosing scope is reused, so a CLI command
    and the queries it runs share one id.
    """
    current = get_request_id()
    if current is not None and request_id is None:
        yield current
        return
    rid = request_id or new_request_id()
    with bound_contextvars(**{REQUEST_ID_KEY: rid}):
        yield rid


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


@contextmanager
def operation(
    name: str,
    *,
    stopped_by: tuple[type[Exception], ...] = (),
    **fields: Any,
) -> Iterator[dict[str, Any]]:
    """Bind fields for an engine operation and log its outcome.

    Logs ``{name}_completed`` with elapsed_ms, or ``{name}_failed`` at
    warning level before re-raising. Exceptions listed in stopped_by are
    ordinary early exits and log ``{name}_stopped`` instead. Keys the body
    adds to the yielded dict are merged into the closing event.
    """
    outcome: dict[str, Any] = {}
    started = time.perf_counter()
    with bound_contextvars(**fields):
        try:
            yield outcome
        except stopped_by:
            logger.info(f"{name}_stopped", elapsed_ms=_elapsed_ms(started), **outcome)
            raise
        except Exception as e:
            if isinstance(e, EngineError):
                outcome["error_code"] = e.error_name
            logger.warning(f"{name}_failed", elapsed_ms=_elapsed_ms(started), error=str(e), **outcome)
            raise
        logger.info(f"{name}_completed", elapsed_ms=_elapsed_ms(started), **outcome)


def _plain_values(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Render enums, year sets and stamp dataclasses as JSON values."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (set, frozenset)):
            event_dict[key] = sorted(value)
        elif is_dataclass(value) and not isinstance(value, type):
            event_dict[key] = asdict(value)
    return event_dict


def _level(name: str) -> int:
    name = name.upper()
    if name == "WARN":
        name = "WARNING"
    return logging.getLevelNamesMapping().get(name, logging.INFO)


class ConsoleSuppressingFilter(logging.Filter):
    """Blocks console records while a rich live display is active."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        from saaqengine.core.progress import is_console_suppressed

        return not is_console_suppressed()


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog. Pass config for multi-output, or use simple params.

    Args:
        config: Logging configuration with outputs
        json_format: Use JSON format for simple setup
        level: Default log level
    """
    from saaqengine.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level,  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )

    default_level = _level(config.level)
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _plain_values,  # type: ignore[list-item]
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(default_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Don't cache - allows reconfiguration and respects level changes
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(default_level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    for output in config.outputs:
        is_console = output.destination in ("stderr", "stdout")
        if output.format == "json":
            renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(
                colors=is_console and sys.stderr.isatty(),
                pad_event_to=0,
                pad_level=False,
            )
        handler = _create_handler(output.destination)
        if is_console:
            handler.addFilter(ConsoleSuppressingFilter())
        handler.setLevel(_level(output.level or config.level))
        handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain))
        root_logger.addHandler(handler)


def _create_handler(destination: str) -> logging.Handler:
    if destination == "stderr":
        return logging.StreamHandler(sys.stderr)
    if destination == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a")
