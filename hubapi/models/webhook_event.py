"""
Webhook Event Model

Stores inbound channel-manager events for async processing.
Ingestion inserts a PENDING row and acks; the worker pool advances it:

    PENDING -> PROCESSING -> COMPLETED
                          -> FAILED -> (retry poller) -> PROCESSING ...
                          -> DEAD_LETTER

COMPLETED and DEAD_LETTER are terminal.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Index, Integer, UniqueConstraint
from ..database import Base
import enum


class WebhookEventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DEAD_LETTER = "DEAD_LETTER"


TERMINAL_STATUSES = (WebhookEventStatus.COMPLETED.value, WebhookEventStatus.DEAD_LETTER.value)


class ErrorCode(str, enum.Enum):
    """Error classification for retry logic"""
    TRANSIENT = "transient"  # Retry-able (timeout, db hiccup, 5xx)
    PERMANENT = "permanent"  # Don't retry (malformed event)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Provider identification
    source = Column(String(50), default="channel", nullable=False)

    # External identifiers for idempotency
    event_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)

    # Raw payload
    payload_json = Column(Text, nullable=False)

    # Processing status
    status = Column(String(20), nullable=False, default=WebhookEventStatus.PENDING.value)

    # Retry logic
    attempts = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=5)
    next_retry_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    error_code = Column(String(20), nullable=True)

    # Processing result
    result_action = Column(String(50), nullable=True)  # reconciled, cancelled, ignored, ...

    # Timestamps
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processing_started_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_webhook_event_event_id"),
        Index("ix_webhook_event_retry", "status", "next_retry_at"),
        Index("ix_webhook_event_received", "status", "received_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} {self.event_type} status={self.status} attempts={self.attempts}>"
