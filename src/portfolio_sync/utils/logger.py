"""
Logging system for the portfolio sync service.

This module provides structured logging with category tagging and
correlation IDs, so every log line emitted during one pipeline run can be
tied together.

Example Usage:
    from portfolio_sync.utils import get_logger, setup_logging

    setup_logging({'logging': {'level': 'INFO', 'console': True}})

    logger = get_logger('portfolio_sync.sync')

    with logger.correlation_context():
        logger.log_sync_event({'event_type': 'refresh_started'})
        logger.info("Fetching portfolio", extra={'category': 'API'})
"""

import logging
import sys
import threading
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .log_formatter import CategoryFilter, ColoredFormatter, JsonFormatter
from .log_handlers import ColoredConsoleHandler, SizeRotatingFileHandler

# Shared by every adapter, scoped to the running task
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class LogCategory(Enum):
    """Log categories for organizing log output."""
    SYNC = "SYNC"
    API = "API"
    CACHE = "CACHE"
    COLORS = "COLORS"
    SYSTEM = "SYSTEM"
    GENERAL = "GENERAL"


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds correlation ID and category support.

    Provides category-specific helpers so call sites do not have to build
    the `extra` dictionary by hand.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """
        Process log message and kwargs.

        Args:
            msg: Log message
            kwargs: Keyword arguments

        Returns:
            Tuple of (message, kwargs)
        """
        if 'extra' not in kwargs:
            kwargs['extra'] = {}

        correlation_id = _correlation_id.get()
        if correlation_id and 'correlation_id' not in kwargs['extra']:
            kwargs['extra']['correlation_id'] = correlation_id

        for key, value in self.extra.items():
            if key not in kwargs['extra']:
                kwargs['extra'][key] = value

        return msg, kwargs

    @property
    def correlation_id(self) -> Optional[str]:
        return _correlation_id.get()

    def set_correlation_id(self, correlation_id: str) -> None:
        _correlation_id.set(correlation_id)

    def clear_correlation_id(self) -> None:
        _correlation_id.set(None)

    @contextmanager
    def correlation_context(self, correlation_id: Optional[str] = None):
        """
        Context manager for correlation ID scope.

        The ID applies to every logger in the current task, including
        tasks it spawns, and is restored on exit.

        Args:
            correlation_id: Correlation ID (generates UUID if None)

        Example:
            with logger.correlation_context():
                logger.info("Refreshing portfolio")
                # All logs in this block share the same correlation ID
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        token = _correlation_id.set(correlation_id)
        try:
            yield correlation_id
        finally:
            _correlation_id.reset(token)

    def log_sync_event(self, event_data: Dict[str, Any], msg: str = "", level: int = logging.INFO) -> None:
        """
        Log a pipeline lifecycle event.

        Args:
            event_data: Event data dictionary
            msg: Optional message
            level: Log level
        """
        if not msg:
            msg = f"Sync: {event_data.get('event_type', 'unknown')}"

        self.log(level, msg, extra={
            'category': LogCategory.SYNC.value,
            'sync_data': event_data
        })

    def log_api_event(self, event_data: Dict[str, Any], msg: str = "", level: int = logging.DEBUG) -> None:
        """
        Log an upstream request event.

        Args:
            event_data: Request data dictionary (never contains credentials)
            msg: Optional message
            level: Log level
        """
        if not msg:
            msg = f"API: {event_data.get('method', 'GET')} {event_data.get('path', 'unknown')}"

        self.log(level, msg, extra={
            'category': LogCategory.API.value,
            'api_data': event_data
        })

    def log_cache_event(self, event_data: Dict[str, Any], msg: str = "", level: int = logging.DEBUG) -> None:
        """
        Log a local cache event.

        Args:
            event_data: Cache event data dictionary
            msg: Optional message
            level: Log level
        """
        if not msg:
            msg = f"Cache: {event_data.get('event_type', 'unknown')}"

        self.log(level, msg, extra={
            'category': LogCategory.CACHE.value,
            'cache_data': event_data
        })


class LoggerManager:
    """
    Manager for the logging system.

    Handles initialization, configuration, and lifecycle of loggers.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Singleton pattern for LoggerManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._loggers: Dict[str, LoggerAdapter] = {}
        self._config: Dict[str, Any] = {}
        self._handlers: List[logging.Handler] = []
        self._setup_done = False

    def setup_logging(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Setup the logging system with configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self._setup_done:
            return

        self._config = config or {}
        log_config = self._config.get('logging', {})

        root_level = self._get_log_level(log_config.get('level', 'INFO'))
        logging.getLogger().setLevel(root_level)

        for handler in self._handlers:
            logging.getLogger().removeHandler(handler)
        self._handlers = []

        if log_config.get('console', True):
            self._setup_console_handler(log_config.get('console_config', {}))

        if log_config.get('file', False):
            self._setup_file_handler(log_config.get('file_config', {}))

        self._setup_done = True

        logger = self.get_logger('portfolio_sync.system')
        logger.debug("Logging system initialized", extra={
            'category': LogCategory.SYSTEM.value,
            'config': {
                'level': log_config.get('level', 'INFO'),
                'console': log_config.get('console', True),
                'file': log_config.get('file', False),
            }
        })

    def _get_log_level(self, level: Union[str, int]) -> int:
        if isinstance(level, int):
            return level

        levels = {
            'DEBUG': logging.DEBUG,
            'INFO': logging.INFO,
            'WARNING': logging.WARNING,
            'ERROR': logging.ERROR,
            'CRITICAL': logging.CRITICAL
        }
        return levels.get(str(level).upper(), logging.INFO)

    def _setup_console_handler(self, config: Dict[str, Any]) -> None:
        handler = ColoredConsoleHandler(sys.stderr)
        handler.setLevel(self._get_log_level(config.get('level', 'DEBUG')))
        handler.setFormatter(ColoredFormatter(use_colors=config.get('colors', True)))

        categories = config.get('categories')
        if categories:
            handler.addFilter(CategoryFilter(include_categories=categories))

        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def _setup_file_handler(self, config: Dict[str, Any]) -> None:
        log_dir = config.get('directory', 'logs')
        filename = config.get('filename', 'portfolio_sync.log')
        filepath = Path(log_dir).expanduser() / filename

        handler = SizeRotatingFileHandler(
            filename=str(filepath),
            maxBytes=config.get('max_bytes', 5*1024*1024),
            backupCount=config.get('backup_count', 5)
        )
        handler.setLevel(self._get_log_level(config.get('level', 'INFO')))
        handler.setFormatter(JsonFormatter())

        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def get_logger(self, name: str) -> LoggerAdapter:
        """
        Get a logger instance.

        Args:
            name: Logger name

        Returns:
            LoggerAdapter instance
        """
        if name not in self._loggers:
            self._loggers[name] = LoggerAdapter(logging.getLogger(name))

        return self._loggers[name]

    def shutdown(self) -> None:
        """Detach and close every handler installed by setup_logging."""
        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()

        self._handlers = []
        self._setup_done = False


_logger_manager = LoggerManager()


def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Setup the logging system.

    Args:
        config: Logging configuration dictionary

    Example:
        setup_logging({
            'logging': {
                'level': 'INFO',
                'console': True,
                'file': True,
                'file_config': {
                    'directory': 'logs',
                    'filename': 'portfolio_sync.log'
                }
            }
        })
    """
    _logger_manager.setup_logging(config)


def get_logger(name: str) -> LoggerAdapter:
    """
    Get a logger instance.

    Example:
        logger = get_logger('portfolio_sync.cache')
        logger.info("Snapshot written")
    """
    return _logger_manager.get_logger(name)


def shutdown_logging() -> None:
    """Shutdown the logging system."""
    _logger_manager.shutdown()
