"""
Webhook Receiver (fast path)

1. Persist the raw event as PENDING with its retry budget
2. Deduplicate on event_id through the unique constraint
3. Return immediately; the worker pool does the processing
"""

import json
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..utils.db_helpers import insert_ignore_conflict
from ..utils.metrics import record_webhook_transition
from .webhook_events import normalize_event_type

logger = logging.getLogger(__name__)


@dataclass
class WebhookReceiveResult:
    """Result of receiving a webhook (fast path)"""
    event_id: str
    event_type: str
    deduplicated: bool = False


def job_id_for(event_id: str) -> str:
    """Queue job id for the first delivery of an event"""
    return f"webhook-{event_id}"


class WebhookReceiver:
    def __init__(
        self,
        db: Session,
        max_retries_for: Callable[[str], int],
        source: str = "channel"
    ):
        self.db = db
        self.max_retries_for = max_retries_for
        self.source = source

    def receive(self, event_id: str, event_type: str, payload: Dict[str, Any]) -> WebhookReceiveResult:
        kind = normalize_event_type(event_type)
        inserted = insert_ignore_conflict(
            self.db,
            WebhookEvent,
            {
                "id": str(uuid.uuid4()),
                "source": self.source,
                "event_id": event_id,
                "event_type": kind,
                "payload_json": json.dumps(payload, default=str),
                "status": WebhookEventStatus.PENDING.value,
                "attempts": 0,
                "max_retries": self.max_retries_for(kind),
                "received_at": datetime.utcnow(),
            },
            conflict_columns=["event_id"],
        )
        self.db.commit()

        if not inserted:
            logger.info(f"Duplicate webhook {event_id} ({kind}), skipping")
            return WebhookReceiveResult(event_id=event_id, event_type=kind, deduplicated=True)

        record_webhook_transition(kind, WebhookEventStatus.PENDING.value)
        logger.info(f"Received webhook {kind} event_id={event_id}")
        return WebhookReceiveResult(event_id=event_id, event_type=kind)
