"""
Logging setup for the options decision pipeline.

Every module logs through ``logging.getLogger(__name__)`` and prefixes its
messages with a ``LogCategory`` tag so a replay log can be filtered by
pipeline stage:

    >>> from config.logging_config import LogCategory, setup_logging
    >>> setup_logging(level="INFO", script_name="replay")
    >>> logger.info(f"{LogCategory.DECISION} SPY EXECUTE", extra={"ticker": "SPY"})

Console output is colored text unless ``json_format`` is set; log files
are always JSON lines. Webhook secrets never reach either sink.
"""

import json
import logging
import re
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from config.constants import ENGINE_VERSION


class LogCategory:
    """Message prefixes, one per pipeline stage."""

    INGEST = "[INGEST]"
    SIGNAL = "[SIGNAL]"
    PHASE = "[PHASE]"
    TREND = "[TREND]"
    DECISION = "[DECISION]"
    TRADE = "[TRADE]"
    LEDGER = "[LEDGER]"
    EVENTS = "[EVENTS]"


SENSITIVE_KEYS = frozenset({
    "webhook_secret", "secret", "signature", "authorization",
    "api_key", "apikey", "token", "password",
})

_CATEGORY_RE = re.compile(r"^\[([A-Z]+)\]")

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: "***" if str(k).lower() in SENSITIVE_KEYS else _mask(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_mask(v) for v in value]
    return value


class TokenSanitizer(logging.Filter):
    """
    Masks webhook secrets in log records.

    Raw payloads are logged on validation failures, so both quoted
    ``"key": "value"`` fragments in the message and dicts passed through
    ``extra`` are scrubbed.
    """

    _FRAGMENT = re.compile(
        r'("(?:' + "|".join(sorted(SENSITIVE_KEYS)) + r')"\s*:\s*)"[^"]*"',
        re.IGNORECASE,
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._FRAGMENT.sub(r'\1"***"', record.msg)

        for key, value in list(record.__dict__.items()):
            if key in _RECORD_ATTRS:
                continue
            record.__dict__[key] = "***" if key.lower() in SENSITIVE_KEYS else _mask(value)

        return True


def _category(message: str) -> str | None:
    match = _CATEGORY_RE.match(message)
    return match.group(1) if match else None


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Example output:
        {"timestamp": "2024-01-10T15:00:00+00:00", "level": "INFO",
         "logger": "execution.pipeline", "category": "DECISION",
         "message": "[DECISION] SPY EXECUTE", "engine_version": "1.0.0",
         "ticker": "SPY"}
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "category": _category(message),
            "message": message,
            "engine_version": ENGINE_VERSION,
        }
        log_data.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RECORD_ATTRS
        )

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Enums, datetimes and pydantic models in extra fields fall back to str()
        return json.dumps(log_data, default=str)


class ColorFormatter(logging.Formatter):
    """Console formatter that colors the level name and the category tag."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[92m",
        logging.WARNING: "\033[93m",
        logging.ERROR: "\033[91m",
        logging.CRITICAL: "\033[1;91m",
    }
    CATEGORY_COLOR = "\033[96m"
    RESET = "\033[0m"

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno, "")
        line = line.replace(record.levelname, f"{color}{record.levelname:8}{self.RESET}", 1)
        category = _category(record.getMessage())
        if category:
            tag = f"[{category}]"
            line = line.replace(tag, f"{self.CATEGORY_COLOR}{tag}{self.RESET}", 1)
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | str | None = None,
    script_name: str | None = None,
    log_dir: Path | str | None = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> Path | None:
    """
    Configure the root logger for a pipeline run.

    Args:
        level: Log level name
        json_format: JSON instead of colored text on the console
        log_file: Explicit log file path
        script_name: Write ``{log_dir}/{script_name}_{timestamp}.log`` instead
        log_dir: Directory for generated log files (default: ./logs)
        max_bytes: Rotation size
        backup_count: Rotated files kept

    Returns:
        The log file path, or None when logging to the console only
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if isinstance(handler, RotatingFileHandler):
            handler.close()
    root.setLevel(getattr(logging, level.upper()))

    sanitizer = TokenSanitizer()

    console = logging.StreamHandler(sys.stdout)
    console.addFilter(sanitizer)
    console.setFormatter(JsonFormatter() if json_format else ColorFormatter())
    root.addHandler(console)

    path: Path | None = None
    if log_file:
        path = Path(log_file)
    elif script_name:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = Path(log_dir or Path.cwd() / "logs") / f"{script_name}_{stamp}.log"

    if path is None:
        return None

    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    file_handler.addFilter(sanitizer)
    file_handler.setFormatter(JsonFormatter())
    root.addHandler(file_handler)

    root.info(f"Logging to {path}")
    return path


def cleanup_logs(log_dir: Path | str, retention_days: int = 7) -> int:
    """Delete ``*.log*`` files older than ``retention_days``. Returns the count removed."""
    log_path = Path(log_dir)
    if not log_path.is_dir():
        return 0

    cutoff = time.time() - retention_days * 86400
    removed = 0
    for candidate in sorted(log_path.glob("*.log*")):
        try:
            if candidate.is_file() and candidate.stat().st_mtime < cutoff:
                candidate.unlink()
                removed += 1
        except OSError as e:
            logging.getLogger(__name__).warning(f"Could not remove old log {candidate}: {e}")

    return removed
