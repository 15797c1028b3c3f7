"""
observability/logger.py — turnpipe Structured Logger

structlog routed through stdlib logging, configured from the `logging`
section of config.yaml:

  - turnpipe.log: always JSON, rotated by size
  - stderr (logging.console_output): JSON or coloured dev output,
    chosen by logging.json_format; stdout belongs to the console runner
  - every line carries timestamp, level, logger, event, and the turn_id /
    conversation_id of the turn that emitted it

Prompt text and raw completion output are logged clipped; see _CLIPPED.

Usage:
    from turnpipe.observability.logger import get_logger, setup_logging, turn_context

    setup_logging(settings.logging)                 # once, at startup
    log = get_logger(__name__)

    with turn_context(turn_id, state.conversation_id):
        log.info("orchestrator.turn_start", user_input=state.input)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Optional

import structlog

if TYPE_CHECKING:
    from turnpipe.config.settings import LoggingConfig

LOG_FILE_NAME = "turnpipe.log"

# Event fields that can hold a whole prompt or completion, and their limit
_CLIPPED: dict[str, int] = {
    "user_input": 120,
    "raw": 200,
}

# Both SDKs log every HTTP request at INFO
_SDK_LOGGERS = ("httpx", "openai")


def _clip_payloads(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key, limit in _CLIPPED.items():
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > limit:
            event_dict[key] = value[:limit] + "…"
    return event_dict


_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    _clip_payloads,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: Any) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )


def setup_logging(config: "LoggingConfig", level: Optional[str] = None) -> Path:
    """
    Configure structlog and the root logger from a LoggingConfig.

    `level` overrides config.level (the CLI's --log-level). Returns the path
    of the log file. Safe to call again; earlier handlers are replaced.
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    numeric_level = logging.getLevelName((level or config.level).upper())

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handlers: list[logging.Handler] = [file_handler]

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_renderer = (
            structlog.processors.JSONRenderer()
            if config.json_format
            else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        )
        console_handler.setFormatter(_formatter(console_renderer))
        handlers.append(console_handler)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    for name in _SDK_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return log_file


def get_logger(name: str = "turnpipe") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def turn_context(turn_id: str, conversation_id: str) -> Iterator[None]:
    """
    Attach turn_id and conversation_id to every log line emitted inside the
    block, including from coroutines it awaits. Values bound by an enclosing
    turn are restored on exit.
    """
    with structlog.contextvars.bound_contextvars(turn_id=turn_id, conversation_id=conversation_id):
        yield
