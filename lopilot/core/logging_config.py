"""
Logging setup for Lopilot.

Console output is colored and shows the chat context (session, model) that
the orchestrator attaches through `LoggerAdapter`. The log file gets one JSON
object per line with the same context as fields. Prompts and replies can be
large, so anything echoed into the log goes through `truncate_large_data`.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s%(chat_context)s"
PLAIN_FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log once per HTTP request; a streamed reply is one request
# but title generation and availability probes add more.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "multipart")


def _chat_context(record: logging.LogRecord) -> str:
    fields: Dict[str, Any] = getattr(record, "extra_fields", None) or {}
    parts = []
    if fields.get("session_id"):
        parts.append(f"session={str(fields['session_id'])[:8]}")
    if fields.get("model"):
        parts.append(f"model={fields['model']}")
    return f" [{' '.join(parts)}]" if parts else ""


class ColoredFormatter(logging.Formatter):
    """Console formatter: colored level name plus a short chat context suffix."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str = CONSOLE_FORMAT, datefmt: str = DATE_FORMAT, use_color: bool = True):
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        # Format a copy; the file handler sees the same record afterwards
        record = logging.makeLogRecord(record.__dict__)
        record.chat_context = _chat_context(record)
        if self.use_color and record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname:8s}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """File formatter: one JSON object per record, extra fields merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ColoredFormatter(use_color=sys.stdout.isatty()))
    return handler


def _file_handler(path: str, level: int, json_format: bool) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    # 10 MB per file, keep 5 backups
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(config: Any) -> None:
    """
    Install the console and file handlers on the root logger.

    Args:
        config: Settings object with the `log_*` fields; `debug` forces DEBUG level
    """
    level_name = "DEBUG" if getattr(config, "debug", False) else config.log_level.upper()
    log_level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    if config.log_console_enabled:
        root_logger.addHandler(_console_handler(log_level))
    if config.log_file_enabled:
        root_logger.addHandler(_file_handler(config.log_file_path, log_level, config.log_json_format))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(
        f"Logging initialized: level={level_name}, "
        f"console={config.log_console_enabled}, "
        f"file={config.log_file_path if config.log_file_enabled else 'off'}"
    )


class LoggerAdapter(logging.LoggerAdapter):
    """
    Attaches chat context to every record.

    Usage:
        log = LoggerAdapter(logger, {"session_id": str(session.id), "model": model})
        log.info("Generation started")
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.setdefault('extra', {})
        extra['extra_fields'] = {**self.extra, **extra.get('extra_fields', {})}
        return msg, kwargs


def truncate_large_data(data: Optional[str], max_length: int = 5000) -> str:
    """
    Shorten `data` for logging.

    Returns:
        The text itself when short enough, else its head with the original length appended
    """
    if not data:
        return ""
    if len(data) <= max_length:
        return data
    return data[:max_length] + f"... (truncated, total length: {len(data)})"
