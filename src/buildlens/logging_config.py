"""
Logging setup for BuildLens.

Console output is split by level (INFO/DEBUG to stdout, WARNING and above
to stderr) and a size-rotating file handler writes one log file per
process context (``api``, ``cli``, ...). With ``LOG_FORMAT=json`` every
handler renders single-line JSON through structlog.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

import structlog

from buildlens.config import settings

STANDARD_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured_contexts: set[str] = set()


class _MaxLevelFilter(logging.Filter):
    """Pass only records strictly below a level."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def _build_formatter() -> logging.Formatter:
    if settings.log_format == "json":
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        )
    return logging.Formatter(STANDARD_FORMAT)


def setup_logging(context: str = "app", level: Optional[str] = None) -> None:
    """
    Configure root logging for a process context.

    Calling this more than once for the same context is a no-op.

    Args:
        context: Name of the running component, used for the log file name
        level: Override for the configured log level

    Raises:
        PermissionError: If the log directory cannot be created
    """
    if context in _configured_contexts:
        return

    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    formatter = _build_formatter()

    if settings.log_console_enabled:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(logging.DEBUG)
        stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
        stdout_handler.setFormatter(formatter)
        root.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    if settings.log_file_enabled:
        log_dir = settings.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Quiet chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured_contexts.add(context)
