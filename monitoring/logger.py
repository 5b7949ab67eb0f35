"""
Structured logging setup for pygpasswd.

Uses structlog over the stdlib logging module. Every mutation, denial and
lock/commit event is emitted as a structured audit event; the renderer is
JSON for machine consumption or console text for humans.

Output goes to stderr so it never interleaves with password prompts.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog


def setup_logging(log_level: str = "WARNING", log_format: str = "text",
                  log_file: Optional[str] = None) -> None:
    """
    Configure structured logging for the command.

    Args:
        log_level: Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        log_format: Format (json or text)
        log_file: Optional audit log path, written in addition to stderr
    """
    level = getattr(logging, log_level.upper(), logging.WARNING)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)
    root.setLevel(level)

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # 1MB, 5 backups
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(file_handler)


def bind_audit_context(prog: str, group: str, caller: Optional[str] = None) -> None:
    """Attach program, group and caller to every subsequent event."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(prog=prog, group=group)
    if caller is not None:
        structlog.contextvars.bind_contextvars(caller=caller)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)
