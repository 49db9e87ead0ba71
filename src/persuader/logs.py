"""structlog helpers.

Components never reach for a process-wide logger; they take a ``logger``
argument and fall back to :data:`NULL_LOGGER`, which discards everything.
Applications that want output call :func:`configure_logging` once and pass
``get_logger()`` into :func:`persuader.run`.
"""
from __future__ import annotations

from typing import Any

import structlog

_LEVELS = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
    "critical": 50,
}

NULL_LOGGER = structlog.wrap_logger(structlog.ReturnLogger(), processors=[])


def resolve_logger(logger: Any | None) -> Any:
    """Return *logger*, or the no-op logger when none was injected."""
    return NULL_LOGGER if logger is None else logger


def get_logger(name: str = "persuader", **initial_values: Any) -> Any:
    """Return a structlog logger bound to *initial_values*."""
    return structlog.get_logger(name, **initial_values)


def configure_logging(level: str = "info", json_output: bool = False) -> None:
    """Configure structlog for applications embedding the pipeline.

    Args:
        level: Minimum level to emit (``debug``, ``info``, ``warning``,
            ``error`` or ``critical``).
        json_output: Render one JSON object per line instead of key=value.

    Raises:
        ValueError: If *level* is not a known level name.
    """
    try:
        min_level = _LEVELS[level.lower()]
    except KeyError as exc:
        raise ValueError(
            f"Unknown log level {level!r}; expected one of {', '.join(_LEVELS)}"
        ) from exc

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.processors.KeyValueRenderer(key_order=["event"])
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        cache_logger_on_first_use=False,
    )
