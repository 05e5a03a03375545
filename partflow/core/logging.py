"""
JSON logging for the API and the worker.

Ledger and price-list mutations also emit an audit record through `audit()`:
one INFO line on the "partflow.audit" logger whose details travel as a
structured field, never inside the message text.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from partflow.core.config import settings

AUDIT_LOGGER = "partflow.audit"
REDACTED = "***"

_SECRET_KEYS = frozenset({"password", "secret_key", "token", "access_token", "authorization"})

# key=value or "key": "value" pairs whose value must not reach the log stream
_SECRET_IN_TEXT = re.compile(
    r'(password|secret_key|access_token|token|authorization)["\']?\s*[:=]\s*["\']?[^\s,;"\'}{]+',
    re.IGNORECASE,
)

# Context carried by `extra=`; anything else on the record is ignored
_CONTEXT_FIELDS = ("user_id", "action", "entity_type", "entity_id", "details")


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: REDACTED if str(k).lower() in _SECRET_KEYS else redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    if isinstance(value, str):
        return _SECRET_IN_TEXT.sub(rf"\1={REDACTED}", value)
    return value


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = redact(value)
        if record.exc_info:
            entry["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def setup_logging(stream=None):
    """Install the JSON handler on the root logger once per process."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "rq.worker"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def audit(
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    user_id: Optional[int] = None,
    **details: Any,
) -> None:
    """Record a ledger or price-list mutation, e.g. ``audit("price_list.deleted", "supplier_price_list", 4)``."""
    get_logger(AUDIT_LOGGER).info(
        "%s %s:%s",
        action,
        entity_type,
        entity_id,
        extra={
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or None,
        },
    )
