"""
Unified logging configuration for the completion cache project.
Features:
- Unified configuration across all modules
- Category-based log organization (cache, client, generation, system)
- Structured JSON logging format for log files
- Thread-local logging context
- Performance logging decorator
- Memory handler for testing
- Runtime log level adjustment
"""
import os
import sys
import json
import time
import uuid
import socket
import logging
import threading
import traceback
from typing import Dict, Any, Optional, Callable
from datetime import datetime, timezone
from pathlib import Path
from functools import wraps

# Log files are only written when a directory is configured
LOG_DIR_ENV = "COMPLETION_CACHE_LOG_DIR"

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_CONSOLE_LEVEL = logging.WARNING
DEFAULT_FILE_LEVEL = logging.DEBUG

DEFAULT_LOG_FILENAME_FORMAT = "%Y-%m-%d_%H-%M-%S.log"

# Performance monitoring constants
SLOW_EXECUTION_THRESHOLD = 0.5  # seconds

# Define log categories and their subdirectories
LOG_CATEGORIES = {
    "cache": "cache",
    "client": "client",
    "generation": "generation",
    "system": "system"
}

DEFAULT_FORMATTERS = {
    'detailed': {
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
        'datefmt': '%Y-%m-%d %H:%M:%S'
    },
    'simple': {
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'datefmt': '%Y-%m-%d %H:%M:%S'
    }
}

# Standard LogRecord attributes, never copied into JSON as extras
_RECORD_ATTRIBUTES = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class MemoryHandler(logging.Handler):
    """Custom handler that keeps log records in memory for testing."""
    def __init__(self):
        super().__init__()
        self.records = []
        self._records_lock = threading.Lock()

    def emit(self, record):
        with self._records_lock:
            self.records.append(record)

    def get_records(self):
        with self._records_lock:
            return [self.format(record) for record in self.records]

    def get_messages(self):
        with self._records_lock:
            return [record.getMessage() for record in self.records]

    def clear(self):
        with self._records_lock:
            self.records = []


# Global memory handler for tests
memory_handler = MemoryHandler()


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings for structured logging.
    """
    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields
        self.hostname = socket.gethostname()
        self.pid = os.getpid()

    def format(self, record):
        log_object = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'logger': record.name,
            'level': record.levelname,
            'message': record.getMessage(),
            'path': record.pathname,
            'line': record.lineno,
            'function': record.funcName,
            'process': self.pid,
            'thread_name': record.threadName,
            'hostname': self.hostname,
        }

        if record.exc_info:
            log_object['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': ''.join(traceback.format_exception(*record.exc_info))
            }

        if self.include_extra_fields:
            for key, value in record.__dict__.items():
                if key in _RECORD_ATTRIBUTES or key in log_object or key.startswith('_'):
                    continue
                if isinstance(value, (str, int, float, bool)) or value is None:
                    log_object[key] = value
                else:
                    log_object[key] = str(value)

        return json.dumps(log_object)


class ContextFilter(logging.Filter):
    """Copies the active logging context and run id onto every record."""
    def __init__(self, logger_config):
        super().__init__()
        self.logger_config = logger_config

    def filter(self, record):
        for key, value in self.logger_config.get_context().items():
            setattr(record, key, value)
        record.run_id = self.logger_config.run_id
        return True


class LoggerConfig:
    """
    Unified logging configuration manager for the completion cache project.

    A single instance configures the root logger once; later instantiations
    return the same object. File handlers are only created when a log
    directory is given (argument or ``COMPLETION_CACHE_LOG_DIR``).
    """

    _instance = None
    _initialized = False
    _context_stack = threading.local()

    def __new__(cls, *args, **kwargs):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super(LoggerConfig, cls).__new__(cls)
        return cls._instance

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: int = DEFAULT_LOG_LEVEL,
        console_level: int = DEFAULT_CONSOLE_LEVEL,
        file_level: int = DEFAULT_FILE_LEVEL,
        enable_console: bool = True,
        enable_json: bool = True
    ):
        """
        Initialize the logging configuration.

        Args:
            log_dir: Directory for log files (default: $COMPLETION_CACHE_LOG_DIR, or none)
            log_level: Level applied to project loggers (default: logging.INFO)
            console_level: Console logging level (default: logging.WARNING)
            file_level: File logging level (default: logging.DEBUG)
            enable_console: Whether to enable console logging (default: True)
            enable_json: Whether to use JSON format for file logs (default: True)
        """
        if LoggerConfig._initialized:
            return

        log_dir = log_dir or os.environ.get(LOG_DIR_ENV)
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_level = log_level
        self.console_level = console_level
        self.file_level = file_level
        self.enable_console = enable_console
        self.enable_json = enable_json

        self.handlers = []
        self.run_id = str(uuid.uuid4())
        self.start_time = datetime.now()
        self.context_filter = ContextFilter(self)

        if self.log_dir is not None:
            for category in LOG_CATEGORIES.values():
                (self.log_dir / category).mkdir(parents=True, exist_ok=True)

        self._configure_default_logging()
        LoggerConfig._initialized = True

        self.get_logger("completion.logging", "system").debug(
            f"Logging initialized: run_id={self.run_id}, "
            f"session_start={self.start_time.isoformat()}, pid={os.getpid()}"
        )

    def _file_formatter(self) -> logging.Formatter:
        if self.enable_json:
            return JsonFormatter()
        detailed = DEFAULT_FORMATTERS['detailed']
        return logging.Formatter(detailed['format'], detailed['datefmt'])

    def _configure_default_logging(self) -> None:
        """Attach the project handlers to the root logger."""
        root_logger = logging.getLogger()

        if self.enable_console:
            simple = DEFAULT_FORMATTERS['simple']
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(self.console_level)
            console_handler.setFormatter(logging.Formatter(simple['format'], simple['datefmt']))
            self.handlers.append(console_handler)

        if self.log_dir is not None:
            timestamp = datetime.now().strftime(DEFAULT_LOG_FILENAME_FORMAT)
            file_handler = logging.FileHandler(self.log_dir / LOG_CATEGORIES['system'] / f"system_{timestamp}")
            file_handler.setLevel(self.file_level)
            file_handler.setFormatter(self._file_formatter())
            self.handlers.append(file_handler)

        detailed = DEFAULT_FORMATTERS['detailed']
        memory_handler.setLevel(logging.DEBUG)
        memory_handler.setFormatter(logging.Formatter(detailed['format'], detailed['datefmt']))
        self.handlers.append(memory_handler)

        for handler in self.handlers:
            handler.addFilter(self.context_filter)
            if handler not in root_logger.handlers:
                root_logger.addHandler(handler)

        logging.captureWarnings(True)

    def get_logger(self, name: str, category: Optional[str] = None) -> logging.Logger:
        """
        Get a logger with the specified name and category.

        Args:
            name: Name of the logger
            category: Optional category; with a log directory configured the
                logger also writes to that category's file

        Returns:
            Configured Logger instance
        """
        logger = logging.getLogger(name)

        if logger.level == logging.NOTSET:
            logger.setLevel(self.log_level)

        if category in LOG_CATEGORIES and self.log_dir is not None:
            if not any(getattr(h, '_category', None) == category for h in logger.handlers):
                category_dir = self.log_dir / LOG_CATEGORIES[category]
                timestamp = datetime.now().strftime(DEFAULT_LOG_FILENAME_FORMAT)
                file_handler = logging.FileHandler(category_dir / f"{name.split('.')[-1]}_{timestamp}")
                file_handler.setLevel(self.file_level)
                file_handler.setFormatter(self._file_formatter())
                file_handler.addFilter(self.context_filter)
                file_handler._category = category
                logger.addHandler(file_handler)

        return logger

    def update_levels(
        self,
        log_level: Optional[int] = None,
        console_level: Optional[int] = None
    ) -> None:
        """
        Update logging levels at runtime.

        Args:
            log_level: New level for project loggers (or None to leave unchanged)
            console_level: New console logging level (or None to leave unchanged)
        """
        if log_level is not None:
            self.log_level = log_level
            for name in list(logging.root.manager.loggerDict):
                if name.startswith("completion"):
                    logging.getLogger(name).setLevel(log_level)

        if console_level is not None:
            self.console_level = console_level
            for handler in self.handlers:
                if type(handler) is logging.StreamHandler:
                    handler.setLevel(console_level)

    def add_context(self, **kwargs) -> None:
        """
        Add context values that will be included in all log records
        emitted from the current thread.
        """
        if not hasattr(self._context_stack, 'stack'):
            self._context_stack.stack = []
        self._context_stack.stack.append(kwargs)

    def remove_context(self) -> None:
        """Remove the most recently added context from the stack."""
        if getattr(self._context_stack, 'stack', None):
            self._context_stack.stack.pop()

    def get_context(self) -> Dict[str, Any]:
        """Combined context of the current thread; newer entries win."""
        context = {}
        for ctx in getattr(self._context_stack, 'stack', []):
            context.update(ctx)
        return context

    def performance_log(self, logger: logging.Logger, level: int = logging.DEBUG) -> Callable:
        """
        Decorator to log function execution time.

        Calls slower than ``SLOW_EXECUTION_THRESHOLD`` are logged at WARNING.
        Exceptions are logged with timing and re-raised.
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    execution_time = time.perf_counter() - start_time
                    logger.error(
                        f"Exception in {func.__module__}.{func.__qualname__}: {e}",
                        exc_info=True,
                        extra={
                            "execution_time_ms": execution_time * 1000,
                            "exception_type": type(e).__name__,
                        }
                    )
                    raise

                execution_time = time.perf_counter() - start_time
                log_level = logging.WARNING if execution_time > SLOW_EXECUTION_THRESHOLD else level
                logger.log(
                    log_level,
                    f"Performance: {func.__module__}.{func.__qualname__} executed in {execution_time:.4f}s",
                    extra={
                        "execution_time_ms": execution_time * 1000,
                        "exceeds_threshold": execution_time > SLOW_EXECUTION_THRESHOLD,
                    }
                )
                return result
            return wrapper
        return decorator


_default_logger_config: Optional[LoggerConfig] = None
_default_lock = threading.Lock()


def get_logger_config() -> LoggerConfig:
    """Return the process-wide logging configuration, creating it on first use."""
    global _default_logger_config
    with _default_lock:
        if _default_logger_config is None:
            _default_logger_config = LoggerConfig()
    return _default_logger_config


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Convenience function to get a logger with the project configuration.

    Args:
        name: Name of the logger
        category: Optional category for specialized logging

    Returns:
        Configured Logger instance
    """
    return get_logger_config().get_logger(name, category)


def log_performance(level: int = logging.DEBUG) -> Callable:
    """
    Decorator to log function performance metrics.

    Args:
        level: Logging level for calls under the slow threshold
    """
    def decorator(func):
        logger = get_logger(f"completion.performance.{func.__module__}")
        return get_logger_config().performance_log(logger, level)(func)
    return decorator


class LogContext:
    """Context manager for adding context to logs."""

    def __init__(self, **kwargs):
        self.context = kwargs

    def __enter__(self):
        get_logger_config().add_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        get_logger_config().remove_context()
