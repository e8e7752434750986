"""Structured logging for engarde-wizard.

Operator-facing output goes through click and rich. Log events are
structlog records on stderr (human-readable, or JSON with ``--json-logs``),
optionally mirrored at debug level into ``--log-file``. Key material and
web manager passwords are masked before rendering.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

# Event keys whose values are masked before rendering
SECRET_FIELDS = frozenset({"private_key", "password", "client_private_key"})

VERBOSITY_LEVELS = ["warning", "info", "debug"]


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """structlog processor masking secret fields."""
    for key in SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def level_for_verbosity(verbose: int) -> str:
    """Map a ``-v`` count to a level name."""
    return VERBOSITY_LEVELS[min(verbose, len(VERBOSITY_LEVELS) - 1)]


def _build_handlers(level: int, log_file: str | Path | None) -> list[logging.Handler]:
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if not log_file:
        return [console_handler]

    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path)
    file_handler.setLevel(logging.DEBUG)
    return [console_handler, file_handler]


def configure_logging(
    level: str = "warning",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Set up stdlib logging and structlog for one wizard run.

    Args:
        level: Level name for stderr (debug, info, warning, error)
        log_file: Extra destination that always receives debug records
        json_output: Render JSON lines instead of the console format
    """
    stderr_level = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=logging.DEBUG if log_file else stderr_level,
        handlers=_build_handlers(stderr_level, log_file),
        format="%(message)s",
        force=True,
    )

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
