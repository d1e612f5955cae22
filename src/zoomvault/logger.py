"""
Logging configuration for zoomvault
"""

import logging
import re
import sys


class RedactingFilter(logging.Filter):
    """Mask bearer tokens and access tokens in log records"""

    PATTERNS = [
        (re.compile(r"(bearer\s+)([^\s,}'\"]+)", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(access_token=)([^&\s'\"]+)", re.IGNORECASE), r"\1[REDACTED]"),
        (
            re.compile(r"(['\"]?download_access_token['\"]?\s*[:=]\s*['\"]?)([^'\"}\s,]+)"),
            r"\1[REDACTED]",
        ),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(arg) for arg in record.args)
        return True

    def _mask(self, value: object) -> object:
        if not isinstance(value, str):
            return value
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """
    Configure logging for the application

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        verbose: Enable verbose logging (DEBUG level)
    """
    # Use DEBUG if verbose flag is set
    if verbose:
        level = "DEBUG"

    # Convert string to logging level
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RedactingFilter())

    # Configure root logger
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )

    # Reduce noise from HTTP and Google client libraries
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
