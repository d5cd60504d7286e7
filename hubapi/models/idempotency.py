"""
Idempotency Record Model

Binds a client-supplied Idempotency-Key to the hash of the request it
was first used with, plus the response that request produced. Rows are
written once through insert-ignore and never updated.
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, Index
from ..database import Base

# Width of every column holding an Idempotency-Key
KEY_MAX_LENGTH = 128


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    key = Column(String(KEY_MAX_LENGTH), primary_key=True)
    request_hash = Column(String(64), nullable=False)
    response_status = Column(Integer, nullable=False)
    response_body = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_idempotency_expires", "expires_at"),
    )

    def is_expired(self, now: datetime = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<IdempotencyRecord {self.key} status={self.response_status}>"
