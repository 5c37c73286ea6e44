"""
Structured logging for the session and stream core.

Records are rendered as single-line JSON so log collectors can index the
account and connection context attached to them. Credentials never
reach the output: known secret fields are masked by the formatter and
``redact_token`` is used wherever a token is mentioned in a message.
"""

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from typing import Any, TextIO

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

SECRET_FIELDS = frozenset({"access_token", "refresh_token", "password", "authorization"})


def redact_token(token: str | None, visible: int = 6) -> str:
    """Return a log-safe rendering of a credential."""
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "***"
    return f"{token[:visible]}***"


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Fields: ``timestamp`` (UTC, ISO 8601, taken from the record), ``level``,
    ``logger``, ``message``, ``exception`` when present, plus every
    ``extra`` field. Values that are not JSON-serializable are rendered
    with ``str``. Fields named in ``SECRET_FIELDS`` are redacted.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            payload[key] = redact_token(str(value)) if key in SECRET_FIELDS else value

        return json.dumps(payload, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Send a logger's records through the JSON formatter.

    Existing handlers on that logger are replaced, so calling this twice
    does not duplicate output.

    Args:
        level: Minimum level to emit
        logger_name: Logger to configure (root logger by default)
        stream: Destination (stdout by default)
    """
    target = logging.getLogger(logger_name)
    target.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    target.addHandler(handler)
    target.setLevel(level)
    return target


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Tags every record with the account it concerns.

    Fields passed in a call's own ``extra`` win over the adapter's.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
