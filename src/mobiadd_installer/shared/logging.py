"""Logging configuration for mobiadd-installer.

Log events go to stderr, rendered for a terminal, so they interleave with the
step progress on stdout. With --log-file they go to that file as JSON lines
instead. Events logged while a provisioning step runs carry a `step` key
bound through structlog's context variables.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

VERBOSITY_LEVELS = {0: "warning", 1: "info"}

# Chatty libraries kept at WARNING unless -vv
QUIET_LOGGERS = ("httpx", "httpcore")


def level_for_verbosity(verbose: int) -> str:
    """Map a -v count to a log level name."""
    return VERBOSITY_LEVELS.get(verbose, "debug")


def _handler(log_file: str | Path | None) -> logging.Handler:
    if log_file is None:
        return logging.StreamHandler(sys.stderr)
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def _processors(json_output: bool) -> list[structlog.types.Processor]:
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(level: str = "warning", log_file: str | Path | None = None) -> None:
    """Configure stdlib logging and structlog for one installer run.

    Args:
        level: Log level name (debug, info, warning, error)
        log_file: Write JSON lines here instead of rendering to stderr
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    handler = _handler(log_file)
    handler.setLevel(log_level)
    logging.basicConfig(level=log_level, handlers=[handler], format="%(message)s", force=True)

    if log_level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=_processors(json_output=log_file is not None),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def step_context(step: str) -> Iterator[None]:
    """Bind `step` on every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(step=step):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
