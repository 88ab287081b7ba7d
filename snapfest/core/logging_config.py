"""
Structured logging configuration
"""
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional


class RedactingFilter(logging.Filter):
    """Mask session tokens and gateway signatures before a record is emitted"""

    PATTERNS = (
        (re.compile(r"(Bearer\s+)[^\s'\"]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"((?:razorpay_)?signature['\"]?\s*[:=]\s*['\"]?)[^\s'\",}]+", re.IGNORECASE), r"\1***"),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern, replacement in self.PATTERNS:
            redacted = pattern.sub(replacement, redacted)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None
) -> None:
    """
    Setup structured logging for the application

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        log_format: Optional custom log format
    """
    if log_format is None:
        log_format = (
            "%(asctime)s - %(name)s - %(levelname)s - "
            "%(filename)s:%(lineno)d - %(message)s"
        )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.addFilter(RedactingFilter())
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=log_format,
        handlers=[stream_handler]
    )

    if log_file:
        try:
            log_path = Path(log_file)
            log_dir = log_path.parent
            if not log_dir.is_absolute():
                # This file is at snapfest/core/logging_config.py, project root is 3 levels up
                project_root = Path(__file__).parent.parent.parent
                log_path = project_root / log_file
                log_dir = log_path.parent

            # Read-only filesystems (Render) log to stdout only
            if os.getenv("RENDER") is None:
                log_dir.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(str(log_path))
                file_handler.setLevel(getattr(logging, log_level.upper()))
                file_handler.setFormatter(logging.Formatter(log_format))
                file_handler.addFilter(RedactingFilter())
                logging.getLogger().addHandler(file_handler)
        except OSError as e:
            logging.getLogger(__name__).warning(
                f"Failed to setup file logging: {e}. Falling back to stdout."
            )

    # Set log levels for specific libraries
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


# Create main application logger
logger = get_logger("snapfest")
