"""Logging setup for fleet-rbac.

Every module logs through ``logging.getLogger(__name__)``. ``configure_logging``
installs one root handler whose records carry the tenant and user of the
current request, taken from :mod:`fleet_rbac.infra.tenant`.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from fleet_rbac.infra.tenant import get_tenant_id, get_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [tenant=%(tenant_id)s user=%(user_id)s] %(message)s"

_HANDLER_NAME = "fleet_rbac"


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = get_tenant_id() or "-"
        record.user_id = get_user_id() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "tenant_id": getattr(record, "tenant_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, fmt: str | None = None) -> logging.Handler:
    """Install the root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())

    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.addFilter(RequestContextFilter())
    if (fmt or LOG_FORMAT).lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    return handler
