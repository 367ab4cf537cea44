"""
Application Logger

This module configures logging for the ledger service:
1. A text or JSON handler on the ``questledger`` root logger
2. Module loggers derived with ``app_logger.getChild(...)``
3. A LoggerAdapter that tags records with learner and event context
4. A decorator timing the ledger's units of work
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Dict, Any, Optional, Union, Callable, TypeVar

# Default log format
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "questledger"

# Type variable for the decorator
F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'LoggerAdapter',
    'ContextFormatter',
    'JsonFormatter',
    'app_logger',
    'log_execution_time'
]


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    context = getattr(record, 'context', None)
    return context if isinstance(context, dict) else {}


class ContextFormatter(logging.Formatter):
    """Text formatter that appends adapter context as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _record_context(record)
        if context:
            pairs = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} [{pairs}]"
        return line


class JsonFormatter(logging.Formatter):
    """
    Formatter that renders each log record as a single JSON object.

    Adapter context (learner id, event id, source unit, origin) is merged
    into the top-level object so log pipelines can filter on it.
    """

    def __init__(self, *, indent: Optional[int] = None):
        super().__init__()
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno
        }

        if record.exc_info:
            log_object["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        log_object.update(_record_context(record))
        return json.dumps(log_object, indent=self.indent, default=str)


def configure_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure a logger with a console handler and an optional file handler.

    Args:
        name: Logger name
        level: Log level
        format_string: Text log format; ignored for JSON output
        use_json: Render records as JSON instead of text
        log_file: Path to log file (if None, no file handler is created)
        console_output: Whether to output logs to stdout

    Returns:
        Configured logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = ContextFormatter(format_string, DEFAULT_DATE_FORMAT)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"Could not create log file {log_file}: {e}")

    return logger


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that attaches a context dict to every record.

    The ledger builds one per unit of work so every line it logs carries
    the learner, event and origin it belongs to.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get('extra') or {})
        context = dict(self.extra)
        context.update(extra.get('context') or {})
        extra['context'] = context
        kwargs['extra'] = extra
        return msg, kwargs

    def bind(self, **context) -> 'LoggerAdapter':
        """Return an adapter with additional context."""
        merged = dict(self.extra)
        merged.update(context)
        return LoggerAdapter(self.logger, merged)


def get_app_logger() -> logging.Logger:
    """
    Get or create the application logger.

    Honors the LOG_LEVEL, LOG_JSON and LOG_FILE environment variables until
    the application reconfigures it from its settings.

    Returns:
        The configured application logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    if not logger.handlers:
        return configure_logger(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            use_json=os.environ.get("LOG_JSON", "false").lower() == "true",
            log_file=os.environ.get("LOG_FILE"),
        )

    return logger


# Initialize the app logger
app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator to log how long a coroutine function took.

    Successful calls are logged at debug level, failures at error level
    before the exception propagates.

    Args:
        logger: Logger to use; app_logger when omitted

    Returns:
        Decorator for async functions
    """
    log = logger or app_logger

    def decorator(func: F) -> F:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"log_execution_time expects a coroutine function, got {func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.error(f"{func.__name__} failed after {time.perf_counter() - start_time:.3f}s: {e}")
                raise
            log.debug(f"{func.__name__} executed in {time.perf_counter() - start_time:.3f}s")
            return result

        return wrapper
    return decorator
