"""Logging setup for the workflow supervisor.

Console output is human readable; the log file is JSON Lines with every
`extra={...}` field attached to the record carried through as a JSON key.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

PACKAGE_LOGGER = "workflow_supervision"
LOG_FILE_NAME = "supervisor.log"

# Attributes every LogRecord has; anything else came from `extra`
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    """Format records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES:
                continue
            try:
                json.dumps(value)  # Ensure serializable
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = str(value)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def configure_logging(
    log_dir: str | Path | None = None, log_level: str = "INFO"
) -> logging.Logger:
    """Install console and rotating JSON file handlers on the package logger.

    Safe to call more than once; existing handlers are replaced.

    Args:
        log_dir: Directory for the JSON log file (console only if None)
        log_level: Console log level name

    Returns:
        The configured package logger
    """
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)  # Handlers filter
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / LOG_FILE_NAME,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)  # Capture everything to file
        file_handler.setFormatter(JsonLineFormatter())
        logger.addHandler(file_handler)

    return logger
