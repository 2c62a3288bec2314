"""
Logging setup for the alert service and the device-side client.

    • JSON lines in production, coloured console lines elsewhere
    • Request-scoped context (request_id, client_ip, endpoint, method)
      copied onto every record emitted while a request is in flight
    • Phone numbers masked to their last 4 digits, both through
      mask_phone() at call sites and a handler-level filter that catches
      anything that slipped through

Usage:
    from rapidsafe.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert created", extra={"alert_id": alert_id})

PINs are never passed to a logger.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rapidsafe.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# E.164: leading +, 8-15 digits, spaces or dashes allowed between groups
_PHONE_RE = re.compile(r"\+\d[\d \-]{6,17}\d")

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "asyncio")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request context; call with no arguments to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def mask_phone(phone: str) -> str:
    """'+2348012345678' → '*********5678'."""
    digits = [c for c in phone if c.isdigit()]
    if len(digits) <= 4:
        return "****"
    return "*" * (len(digits) - 4) + "".join(digits[-4:])


class PhoneMaskingFilter(logging.Filter):
    """Rewrites phone-number-looking runs in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _PHONE_RE.sub(lambda m: mask_phone(m.group(0)), message)
        if masked != message:
            record.msg, record.args = masked, None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shipping."""

    EXTRA_FIELDS = (
        "alert_id", "user_id", "trigger_method", "recipient_count",
        "duration_ms", "status_code", "endpoint", "error_code",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["context"] = dict(ctx)

        entry.update(
            {key: getattr(record, key) for key in self.EXTRA_FIELDS if hasattr(record, key)}
        )

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": str(exc)}

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Coloured single-line console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        tags = []
        request_id = get_request_context().get("request_id")
        if request_id:
            tags.append(str(request_id)[:8])
        alert_id = getattr(record, "alert_id", None)
        if alert_id:
            tags.append(f"alert={str(alert_id)[:8]}")
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{tag_str} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1] is not None:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging(level: Optional[str] = None, *, json_output: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    ``level`` and ``json_output`` default to LOG_LEVEL and to whether the
    environment is production.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    use_json = settings.is_production if json_output is None else json_output
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())
    handler.addFilter(PhoneMaskingFilter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
