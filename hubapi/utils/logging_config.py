"""
Logging setup for hub-api.

Two output modes share one set of fields:
- plain text for local runs, with the request id in every line
- one JSON object per line for production log shipping

Booking and webhook code logs through StructuredLogger so the entity it
acted on (booking id, webhook event id) travels as separate fields.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"

# Fields copied from a record into the JSON line when present
CONTEXT_FIELDS = ("entity_type", "entity_id", "duration_ms", "brand", "event_type")

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "apscheduler")


class RequestIdFilter(logging.Filter):
    """Stamp the current request id onto every record ('-' outside a request)"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            line["request_id"] = request_id
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                line[field] = value
        details = getattr(record, "details", None)
        if details:
            line["details"] = details
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """LoggerAdapter with one helper per domain event worth searching for."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        brand: Optional[str] = None,
        event_type: Optional[str] = None,
        **details
    ):
        extra = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
            "brand": brand,
            "event_type": event_type,
            "details": details or None,
        }
        self.log(level, msg, extra=extra)

    def booking_created(self, booking_id: str, brand: str, unit_id: str, total_price: float,
                        duration_ms: Optional[float] = None):
        self.log_with_context(
            logging.INFO,
            f"Booking {booking_id} created for {brand} unit {unit_id}",
            entity_type="booking",
            entity_id=booking_id,
            duration_ms=duration_ms,
            brand=brand,
            unit_id=unit_id,
            total_price=total_price,
        )

    def forward_failed(self, booking_id: str, target: str, error: str):
        """The booking is kept; webhook reconciliation fills the external id later."""
        self.log_with_context(
            logging.WARNING,
            f"Booking {booking_id} saved locally but push to {target} failed: {error}",
            entity_type="booking",
            entity_id=booking_id,
            target=target,
            error=error,
        )

    def webhook_transition(self, event_id: str, event_type: str, old_status: str, new_status: str,
                           attempts: int, error: Optional[str] = None):
        if new_status == "DEAD_LETTER":
            level = logging.ERROR
        elif new_status == "FAILED":
            level = logging.WARNING
        else:
            level = logging.INFO
        suffix = f": {error}" if error else ""
        self.log_with_context(
            level,
            f"Webhook {event_id} {old_status} -> {new_status} (attempt {attempts}){suffix}",
            entity_type="webhook_event",
            entity_id=event_id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            attempts=attempts,
        )


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Route the root logger and uvicorn's loggers through one stdout handler."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set("")
