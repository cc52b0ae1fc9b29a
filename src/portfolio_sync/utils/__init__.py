"""
Utilities package for the portfolio sync service.

This package provides:
- Logging system with categories and correlation IDs
- Log formatters (JSON, colored)
- Custom log handlers (rotating files, console)

Example Usage:
    from portfolio_sync.utils import get_logger, setup_logging

    setup_logging({'logging': {'level': 'DEBUG'}})
    logger = get_logger('portfolio_sync.api')
    logger.info("Request sent", extra={'category': 'API'})
"""

from .logger import (
    setup_logging,
    get_logger,
    shutdown_logging,
    LoggerAdapter,
    LoggerManager,
    LogCategory,
)

from .log_formatter import (
    JsonFormatter,
    ColoredFormatter,
    CategoryFilter,
)

from .log_handlers import (
    SizeRotatingFileHandler,
    ColoredConsoleHandler,
)

__all__ = [
    'setup_logging',
    'get_logger',
    'shutdown_logging',
    'LoggerAdapter',
    'LoggerManager',
    'LogCategory',
    'JsonFormatter',
    'ColoredFormatter',
    'CategoryFilter',
    'SizeRotatingFileHandler',
    'ColoredConsoleHandler',
]
