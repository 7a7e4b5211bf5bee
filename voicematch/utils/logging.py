"""
Logging setup for VoiceMatch.

The API server writes one JSON object per line so request ids and clip ids
can be searched; the command line prints short colored lines instead.
Log files are JSON whatever the console uses.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Tuple

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10485760  # 10 MB

# Keys every LogRecord has; the rest arrived through ``extra``
_RECORD_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_KEYS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    Renders a record as one line of JSON.

    Fields added with ``extra=`` (request_id, clip_id, stage) are grouped
    under ``context``; the key is left out when there are none.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        context = _extra_fields(record)
        if context:
            entry["context"] = context

        return json.dumps(entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Text formatter that tints the level name with an ANSI color."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Other handlers see the same record, so the plain name is put back
        plain = record.levelname
        record.levelname = f"{self.COLORS.get(plain, '')}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _console_formatter(log_format: str, colored: bool) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    if colored:
        return ColoredFormatter(TEXT_FORMAT, TEXT_DATEFMT)
    return logging.Formatter(TEXT_FORMAT, TEXT_DATEFMT)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = 5,
    console_enabled: bool = True,
    colored: bool = True,
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Root level name, e.g. "DEBUG" or "WARNING"
        log_format: "json" for the server, "text" for humans
        log_file: Also append JSON lines here, rotating at max_bytes
        max_bytes: Rotation size for log_file
        backup_count: Rotated files kept next to log_file
        console_enabled: Write to stdout
        colored: Color level names in text console output
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers = []

    if console_enabled:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_console_formatter(log_format, colored))
        root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        rotating.setFormatter(JSONFormatter())
        root.addHandler(rotating)


def setup_logging_from_config(
    config: Dict[str, Any], level_override: Optional[str] = None, log_format: Optional[str] = None
) -> None:
    """Apply the ``logging`` section of the loaded config."""
    section = config.get("logging", {})
    setup_logging(
        level=level_override or section.get("level", "INFO"),
        log_format=log_format or section.get("format", "json"),
        log_file=section.get("file"),
        max_bytes=section.get("max_bytes", DEFAULT_MAX_BYTES),
        backup_count=section.get("backup_count", 5),
        colored=section.get("colored", True),
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class ContextAdapter(logging.LoggerAdapter):
    """Stamps fixed fields (a request id, say) onto every record it emits."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> Tuple[str, MutableMapping[str, Any]]:
        # Per-call extra wins over the fixed fields
        fields = dict(self.extra or {})
        fields.update(kwargs.get("extra") or {})
        kwargs["extra"] = fields
        return msg, kwargs


def create_logger_with_context(name: str, context: Dict[str, Any]) -> ContextAdapter:
    """
    Logger that carries ``context`` on every line.

    The API builds one per request:
        log = create_logger_with_context("api", {"request_id": "abc123"})
        log.info("Scoring clip_001")
    """
    return ContextAdapter(get_logger(name), context)
