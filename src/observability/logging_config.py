from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from flask import Flask, g, has_request_context, request

from src.config import Config

CONTEXT_FIELDS = ("request_id", "path", "method", "cart_items")


def _request_context() -> Dict[str, Optional[Any]]:
    if not has_request_context():
        return dict.fromkeys(CONTEXT_FIELDS)
    return {
        "request_id": g.get("request_id"),
        "path": request.path,
        "method": request.method,
        "cart_items": g.get("cart_item_count"),
    }


class RequestContextFilter(logging.Filter):
    """Attach the current request id, route and cart size to every record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for name, value in _request_context().items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({name: getattr(record, name, None) for name in CONTEXT_FIELDS})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(app: Flask) -> None:
    """Install JSON logging on stdout, or plain logging when STRUCTURED_LOGS_ENABLED is off."""
    if not Config.STRUCTURED_LOGS_ENABLED:
        logging.basicConfig(level=Config.LOG_LEVEL)
        app.logger.setLevel(Config.LOG_LEVEL)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(Config.LOG_LEVEL)
    # replace rather than append so app reloads do not duplicate lines
    root_logger.handlers = [handler]
    app.logger.handlers = [handler]
    app.logger.debug("Structured logging configured for %s", Config.APP_NAME)


def ensure_request_id() -> str:
    """Reuse the caller's request id header or mint one for this request."""
    if not g.get("request_id"):
        g.request_id = request.headers.get(Config.REQUEST_ID_HEADER) or str(uuid4())
    return g.request_id
