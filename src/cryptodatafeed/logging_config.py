import json
import logging
import sys
from pathlib import Path
from typing import Any, cast

from loguru import logger
from loguru._defaults import LOGURU_FORMAT

SENSITIVE_KEYS = frozenset({"api_key", "apikey", "secret", "password", "token"})
REDACTED = "***REDACTED***"


class InterceptHandler(logging.Handler):
    """Redirects standard logging records (httpx, websockets) to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = cast(Any, frame.f_back)
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _sensitive_data_filter(record: dict[str, Any]) -> bool:
    """Replaces sensitive values bound through `extra` with a placeholder.

    Always returns True; this filter sanitizes rather than drops.
    """
    for key, value in record["extra"].items():
        if key.lower() in SENSITIVE_KEYS and isinstance(value, str):
            record["extra"][key] = REDACTED
    return True


def _to_json(record: dict[str, Any]) -> str:
    """Structures a log record as a single JSON line."""
    log_object = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "source": {
            "name": record["name"],
            "file": f"{record['file'].name}:{record['line']}",
            "function": record["function"],
        },
        "extra": {k: v for k, v in record["extra"].items() if k != "_json"},
    }
    return json.dumps(log_object, default=str)


def _json_file_filter(record: dict[str, Any]) -> bool:
    _sensitive_data_filter(record)
    record["extra"]["_json"] = _to_json(record)
    return True


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_dir: Path | None = None,
) -> None:
    """Configures the application-wide Loguru logger.

    Replaces the default handler with a readable console sink and, when
    `log_dir` is given, a daily-rotated file sink with one JSON object per
    line. Standard library logging is routed through Loguru as well.

    Args:
        console_level: The minimum log level for console output.
        file_level: The minimum log level for file output.
        log_dir: Directory to store log files. If None, file logging is disabled.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level.upper(),
        format=LOGURU_FORMAT,
        colorize=True,
        filter=_sensitive_data_filter,
    )

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "cryptodatafeed_{time:YYYY-MM-DD}.log",
            level=file_level.upper(),
            format="{extra[_json]}\n",
            filter=_json_file_filter,
            rotation="00:00",  # New file at midnight
            retention="7 days",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logger.info("Logging configured successfully.")
