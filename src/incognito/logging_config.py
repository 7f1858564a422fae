"""
Structured Logging for Incognito

JSON logging to file with rotation.
Keeps driver and routing chatter out of user output.
"""

import logging
import logging.handlers
import json
from pathlib import Path
import sys


# Extra attributes copied into the JSON record when present
_EXTRA_FIELDS = ("context_id", "event", "url")


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_dir: Path | None = None):
    """
    Setup structured logging for Incognito.

    Args:
        verbose: If True, also log to console (for --verbose flag)
        log_dir: Directory for incognito.log (default ~/.incognito/logs)

    Returns:
        Logger instance
    """
    log_dir = log_dir or Path.home() / ".incognito" / "logs"
    root_logger = logging.getLogger("incognito")
    root_logger.handlers.clear()

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except (OSError, PermissionError) as e:
        # If we can't create logs dir, log to stderr only
        root_logger.setLevel(logging.WARNING if not verbose else logging.INFO)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        root_logger.addHandler(console_handler)

        if verbose:
            root_logger.warning(f"Could not create log directory: {e}")

        return root_logger

    log_file = log_dir / "incognito.log"
    root_logger.setLevel(logging.DEBUG)

    # File handler with rotation (10MB max, keep last 5 files)
    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)
    except (OSError, PermissionError) as e:
        if verbose:
            print(f"Warning: Could not create log file: {e}", file=sys.stderr)

    # Console handler (only if verbose)
    if verbose:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        root_logger.addHandler(console_handler)

    root_logger.info("Incognito logging initialized")

    return root_logger
