"""Log handlers for DBPulse.

Classes:
    ConsoleHandler: Console output with errors routed to stderr
    RotatingFileHandler: Size-rotated file output that creates its directory
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Union


class ConsoleHandler(logging.StreamHandler):
    """Console handler that sends ERROR and CRITICAL records to stderr."""

    def __init__(self, *, use_stderr_for_errors: bool = True) -> None:
        super().__init__(sys.stdout)
        self.use_stderr_for_errors = use_stderr_for_errors

    @staticmethod
    def supports_color() -> bool:
        """Whether stdout is a terminal that accepts ANSI colors."""
        if not (hasattr(sys.stdout, 'isatty') and sys.stdout.isatty()):
            return False
        if os.environ.get('NO_COLOR'):
            return False
        if os.environ.get('FORCE_COLOR'):
            return True
        term = os.environ.get('TERM', '')
        return 'color' in term or term in ('xterm', 'screen')

    def emit(self, record: logging.LogRecord) -> None:
        if self.use_stderr_for_errors and record.levelno >= logging.ERROR:
            original_stream = self.stream
            self.stream = sys.stderr
            try:
                super().emit(record)
            finally:
                self.stream = original_stream
        else:
            super().emit(record)


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotating file handler that creates missing parent directories."""

    def __init__(
        self,
        filename: Union[str, Path],
        *,
        maxBytes: int = 10485760,
        backupCount: int = 5,
        encoding: str = 'utf-8',
        delay: bool = False,
    ) -> None:
        """Initialize rotating file handler.

        Args:
            filename: Log file path
            maxBytes: Maximum file size before rotation
            backupCount: Number of backup files to keep
            encoding: File encoding
            delay: Delay file opening until first emit
        """
        filename_path = Path(filename)
        filename_path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            str(filename_path),
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
            delay=delay,
        )
