"""
Logging setup module.

Console logging to stdout plus an optional rotating log file, in either
plain text or JSON. JSON records carry any fields bound with LogContext
(for example the currency and batch size of a price resolution).
"""

import logging
import logging.handlers
import os
import sys
import threading
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from pricecore.errors import ConfigurationError
from pricecore.utils.config_loader import AppConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SERVICE_NAME = "pricecore"

# Third-party loggers kept at WARNING
NOISY_LOGGERS = ("urllib3", "requests")

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class JSONFormatter(JsonFormatter):
    """JSON formatter adding source location, service name and bound context."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        context = getattr(record, "context_fields", None)
        if context:
            for key, value in context.items():
                log_record.setdefault(key, value)


def parse_level(level: str) -> int:
    """
    Turn a level name into a logging level.

    Raises:
        ConfigurationError: If the name is not a standard level.
    """
    name = str(level).strip().upper()
    if name not in LEVELS:
        raise ConfigurationError(f"Unknown log level {level!r}. Expected one of: {', '.join(LEVELS)}")
    return getattr(logging, name)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the root logger.

    Existing root handlers are replaced. Setting LOG_FORMAT=json in the
    environment forces JSON output.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "text" or "json".
        log_file: Optional rotating log file.
        max_bytes: Log file size that triggers rotation.
        backup_count: Rotated files to keep.

    Returns:
        logging.Logger: The root logger.

    Raises:
        ConfigurationError: If the level or format is unknown.
    """
    numeric_level = parse_level(level)

    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        log_format = "json"
    log_format = log_format.lower()

    if log_format == "json":
        formatter: logging.Formatter = JSONFormatter(JSON_FORMAT)
    elif log_format == "text":
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)
    else:
        raise ConfigurationError(f"Unknown log format {log_format!r}. Expected 'text' or 'json'")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(f"Logging configured: level={level}, format={log_format}, file={log_file or '-'}")
    return root_logger


def configure_logging(config: AppConfig, verbose: bool = False) -> logging.Logger:
    """
    Configure logging from the application config.

    The log file, when configured, is placed under paths.logs_dir.

    Args:
        config: Application configuration.
        verbose: Force DEBUG level.
    """
    log_file = None
    if config.logging.file:
        log_file = Path(config.paths.logs_dir) / config.logging.file
    return setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_format=config.logging.format,
        log_file=log_file,
    )


_context_fields: ContextVar[Optional[Dict[str, Any]]] = ContextVar("pricecore_log_context", default=None)
_factory_lock = threading.Lock()
_factory_installed = False


def _install_record_factory() -> None:
    """Wrap the record factory once so records pick up the current context fields."""
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        previous = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            fields = _context_fields.get()
            if fields:
                record.context_fields = dict(fields)
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


def current_log_context() -> Dict[str, Any]:
    """Fields bound in the calling thread or task."""
    return dict(_context_fields.get() or {})


class LogContext:
    """
    Bind structured fields to every record created inside a with block.

    Fields live in a context variable, so each thread or asyncio task only
    sees its own. Contexts nest; inner fields win over outer ones with the
    same name. Fields appear in JSON output only.
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        _install_record_factory()
        merged = current_log_context()
        merged.update(self.fields)
        self._token = _context_fields.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        _context_fields.reset(self._token)
        self._token = None
        return False
