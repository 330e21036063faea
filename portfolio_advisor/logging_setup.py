"""Logging configuration with secret redaction."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any, Callable, Optional, TextIO

REDACTED = "***REDACTED***"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_SENSITIVE_KEYS = (
    r"x-mbx-apikey",
    r"api[_-]?key",
    r"api[_-]?secret",
    r"secret(?:[_-]?key)?",
    r"signature",
    r"password",
    r"passphrase",
    r"private[_-]?key",
    r"access[_-]?token",
    r"authorization",
    r"[a-z]+_api_key",
)
_KEY_GROUP = "|".join(_SENSITIVE_KEYS)

# 'apiKey': 'value' and "apiKey": "value" as rendered by dict reprs or JSON.
_QUOTED_PAIR = re.compile(
    rf"""(?P<prefix>(?P<q>['"])(?:{_KEY_GROUP})(?P=q)\s*:\s*)(?P<vq>['"])(?P<value>.*?)(?P=vq)""",
    re.IGNORECASE,
)
# signature=value in query strings and key=value log fragments.
_ASSIGNMENT = re.compile(rf"(?P<prefix>\b(?:{_KEY_GROUP})=)(?P<value>[^&\s'\",]+)", re.IGNORECASE)


def redact(text: str) -> str:
    text = _QUOTED_PAIR.sub(lambda match: f"{match.group('prefix')}{match.group('vq')}{REDACTED}{match.group('vq')}", text)
    return _ASSIGNMENT.sub(lambda match: f"{match.group('prefix')}{REDACTED}", text)


class RedactingFilter(logging.Filter):
    """Render the record message once and mask credentials in it."""

    def filter(self, record: logging.LogRecord) -> bool:
        _redact_record(record)
        return True


def _redact_record(record: logging.LogRecord) -> None:
    if getattr(record, "_redacted", False):
        return
    try:
        message = record.getMessage()
    except (TypeError, ValueError):
        message = str(record.msg)
    record.msg = redact(message)
    record.args = None
    record._redacted = True


_installed_factory: Optional[Callable[..., logging.LogRecord]] = None


def _install_record_factory() -> None:
    """Redact every record at creation so handlers configured elsewhere are covered too."""

    global _installed_factory
    current = logging.getLogRecordFactory()
    if current is _installed_factory:
        return

    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = current(*args, **kwargs)
        _redact_record(record)
        return record

    _installed_factory = factory
    logging.setLogRecordFactory(factory)


def debug_to_logging_level(debug_level: int) -> int:
    """Map a debug verbosity integer to a logging level."""

    if debug_level <= 0:
        return logging.WARNING
    if debug_level == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(debug: int = 1, *, stream_target: Optional[TextIO] = None) -> logging.Handler:
    """Install a redacting stream handler on the root logger.

    Repeated calls replace the handler installed by a previous call.
    """

    level = debug_to_logging_level(debug)
    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_portfolio_advisor", False):
            root.removeHandler(existing)
            existing.close()

    handler = logging.StreamHandler(stream_target or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RedactingFilter())
    handler._portfolio_advisor = True  # type: ignore[attr-defined]
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)
    _install_record_factory()

    # ccxt and uvicorn log request details at DEBUG.
    for noisy in ("ccxt", "urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))
    return handler


__all__ = ["REDACTED", "RedactingFilter", "configure_logging", "debug_to_logging_level", "redact"]
