"""
Structured logging for CryptoEscrow.

Two output formats:
- JSON (``LOG_FORMAT=json``), one object per line, for log aggregation
- Console, colored and compact, for development

Per-operation context (request id, caller, escrow id, operation) is kept in
thread-local storage and attached to every record emitted inside a
LoggingContext. Key material and secrets are redacted before output;
addresses are shortened so logs stay readable.
"""

import json
import logging
import os
import re
import sys
import threading
from datetime import UTC, datetime
from typing import Any

# ============================================================
# Redaction
# ============================================================

SENSITIVE_PATTERNS = [
    # key=value style secrets
    (re.compile(r"(api[_-]?key|private[_-]?key|secret|password|mnemonic|seed)([\"']?\s*[:=]\s*[\"']?)([^\s\"',}{]+)",
                re.IGNORECASE), r"\1\2[REDACTED]"),
    (re.compile(r"(Bearer\s+)([^\s]+)", re.IGNORECASE), r"\1[REDACTED]"),
    # 32-byte hex private keys
    (re.compile(r"\b0x[a-fA-F0-9]{64}\b"), "[REDACTED_KEY]"),
    # 20-byte addresses, first and last 4 hex chars kept
    (re.compile(r"\b(0x)([a-fA-F0-9]{4})([a-fA-F0-9]{32})([a-fA-F0-9]{4})\b"), r"\1\2...\4"),
]

REDACTED_FIELDS = {
    "password",
    "secret",
    "api_key",
    "token_secret",
    "private_key",
    "mnemonic",
    "seed",
    "authorization",
}

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def redact_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """Recursively redact secrets from dicts, lists and strings."""
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        return {
            key: "[REDACTED]" if str(key).lower().replace("-", "_") in REDACTED_FIELDS
            else redact_sensitive_data(value, depth + 1, max_depth)
            for key, value in data.items()
        }
    if isinstance(data, list | tuple):
        return [redact_sensitive_data(item, depth + 1, max_depth) for item in data]
    if isinstance(data, str):
        return redact_string(data)
    return data


def redact_string(text: str) -> str:
    if not isinstance(text, str):
        return text
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


# ============================================================
# Thread-local Context
# ============================================================

_context = threading.local()


def set_request_context(**kwargs) -> None:
    """Add values to the current thread's log context (None values are dropped)."""
    if not hasattr(_context, "data"):
        _context.data = {}
    _context.data.update({k: v for k, v in kwargs.items() if v is not None})


def clear_request_context() -> None:
    _context.data = {}


def get_request_context() -> dict[str, Any]:
    return getattr(_context, "data", {})


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRIBUTES}


# ============================================================
# Formatters
# ============================================================

class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

    {"timestamp": "...", "level": "INFO", "logger": "escrow_ledger",
     "message": "Escrow 3 created", "context": {"operation": "create_escrow", ...}}
    """

    def __init__(self, include_stack_info: bool = True, redact_sensitive: bool = True):
        super().__init__()
        self.include_stack_info = include_stack_info
        self.redact_sensitive = redact_sensitive

    def _clean(self, value: Any) -> Any:
        return redact_sensitive_data(value) if self.redact_sensitive else value

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clean(record.getMessage()),
        }

        if record.levelno >= logging.WARNING:
            entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info and self.include_stack_info:
            entry["exception"] = self.formatException(record.exc_info)

        context = get_request_context()
        if context:
            entry["context"] = self._clean(context)

        for key, value in _extra_fields(record).items():
            entry[key] = self._clean(value)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        msg = f"{color}{timestamp} {record.levelname[0]} [{record.name}]{self.RESET} {record.getMessage()}"

        context = get_request_context()
        if context:
            msg += f" {color}(" + " ".join(f"{k}={v}" for k, v in context.items()) + f"){self.RESET}"

        extras = _extra_fields(record)
        if extras:
            msg += " [" + ", ".join(f"{k}={v}" for k, v in extras.items()) + "]"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        return msg


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name
        json_output: Force JSON output; defaults to ``LOG_FORMAT=json``
        log_file: Optional file that always receives JSON records
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggingContext:
    """
    Temporarily add fields to every record logged on this thread.

    Usage:
        with LoggingContext(operation="release_funds", escrow_id=7):
            logger.info("Releasing")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self.previous_context: dict[str, Any] = {}

    def __enter__(self):
        self.previous_context = get_request_context().copy()
        set_request_context(**self.context)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        clear_request_context()
        if self.previous_context:
            set_request_context(**self.previous_context)
        return False
