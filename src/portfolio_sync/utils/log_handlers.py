"""
Custom log handlers for the portfolio sync service.

Provides a console handler and a size-rotating file handler that creates
its directory on demand.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional


class SizeRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """
    Size-based rotating file handler.

    Rotates log files when they reach a specified size.

    Example:
        handler = SizeRotatingFileHandler(
            'logs/portfolio_sync.log',
            maxBytes=5*1024*1024,  # 5MB
            backupCount=5
        )
    """

    def __init__(
        self,
        filename: str,
        mode: str = 'a',
        maxBytes: int = 5*1024*1024,
        backupCount: int = 5,
        encoding: Optional[str] = 'utf-8',
        delay: bool = False
    ):
        """
        Initialize size rotating file handler.

        Args:
            filename: Log file path
            mode: File mode
            maxBytes: Maximum file size before rotation
            backupCount: Number of backup files to keep
            encoding: File encoding
            delay: Delay file opening
        """
        directory = os.path.dirname(filename)
        if directory:
            Path(directory).mkdir(parents=True, exist_ok=True)

        super().__init__(
            filename=filename,
            mode=mode,
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
            delay=delay
        )


class ColoredConsoleHandler(logging.StreamHandler):
    """
    Console handler that only keeps colors when writing to a TTY.

    Example:
        handler = ColoredConsoleHandler()
        handler.setFormatter(ColoredFormatter())
        logger.addHandler(handler)
    """

    def __init__(self, stream=None):
        super().__init__(stream)
        self.is_tty = hasattr(self.stream, 'isatty') and self.stream.isatty()

    def setFormatter(self, fmt: Optional[logging.Formatter]) -> None:
        if fmt is not None and hasattr(fmt, 'use_colors') and not self.is_tty:
            fmt.use_colors = False
        super().setFormatter(fmt)
