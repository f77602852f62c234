"""
Audit trail / trace logging for OPM calculations.

Calculation components accept any object satisfying the TraceLogger
protocol. NullTraceLogger is the zero-cost default; AuditTrailLogger
forwards to structlog and keeps an in-memory, human-readable audit trail
of every step so a valuation can be reviewed after the fact.

Tracing is a side channel only: swapping one logger for another must not
change any number the core produces.
"""

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class TraceLogger(Protocol):
    """Minimal contract every calculation component logs through."""

    def step(self, message: str, **data: Any) -> None: ...

    def debug(self, category: str, message: str, **data: Any) -> None: ...

    def info(self, category: str, message: str, **data: Any) -> None: ...

    def warning(self, category: str, message: str, **data: Any) -> None: ...

    def error(self, category: str, message: str, **data: Any) -> None: ...


class NullTraceLogger:
    """Discards everything."""

    def step(self, message: str, **data: Any) -> None:
        pass

    def debug(self, category: str, message: str, **data: Any) -> None:
        pass

    def info(self, category: str, message: str, **data: Any) -> None:
        pass

    def warning(self, category: str, message: str, **data: Any) -> None:
        pass

    def error(self, category: str, message: str, **data: Any) -> None:
        pass


@dataclass
class TraceEntry:
    """
    One audit trail record.

    Attributes:
        level: "step", "debug", "info", "warning" or "error"
        category: Component or phase that emitted the entry
        message: Human-readable description
        data: Structured key/value payload
    """
    level: str
    category: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class AuditTrailLogger:
    """
    Request-scoped audit trail backed by structlog.

    Each call is emitted as a structlog event (snake_case event name plus
    key/value data) and recorded in ``entries``. Create one instance per
    request; instances are not shared across threads.
    """

    def __init__(self, name: str = "opm", record: bool = True) -> None:
        self._log = logger.bind(trail=name)
        self._record = record
        self._step = 0
        self.entries: list[TraceEntry] = []

    def step(self, message: str, **data: Any) -> None:
        self._step += 1
        self._emit("step", "Step", f"Step {self._step}: {message}", data)

    def debug(self, category: str, message: str, **data: Any) -> None:
        self._emit("debug", category, message, data)

    def info(self, category: str, message: str, **data: Any) -> None:
        self._emit("info", category, message, data)

    def warning(self, category: str, message: str, **data: Any) -> None:
        self._emit("warning", category, message, data)

    def error(self, category: str, message: str, **data: Any) -> None:
        self._emit("error", category, message, data)

    @property
    def steps_taken(self) -> int:
        return self._step

    def summary(self) -> dict[str, int]:
        """Count recorded entries per level."""
        counts: dict[str, int] = {}
        for entry in self.entries:
            counts[entry.level] = counts.get(entry.level, 0) + 1
        return counts

    def _emit(self, level: str, category: str, message: str, data: dict[str, Any]) -> None:
        if self._record:
            self.entries.append(TraceEntry(level, category, message, dict(data)))

        method = "info" if level == "step" else level
        getattr(self._log, method)(_event_name(category), detail=message, **data)


def _event_name(category: str) -> str:
    """'Newton-Raphson' -> 'newton_raphson'"""
    return "_".join(category.lower().replace("-", " ").split())


def configure_logging(level: str = "WARNING", json: bool = False) -> None:
    """
    Configure structlog for command-line use.

    Args:
        level: Minimum level name ("DEBUG", "INFO", "WARNING", ...)
        json: Render JSON lines instead of the console renderer
    """
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Resolve sys.stderr per logger so redirected streams are honored
    return structlog.PrintLogger(sys.stderr)
