"""
Follow-up tickets derived from channel events (e.g. checkout cleaning).
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, UniqueConstraint
import enum
from ..database import Base


class TicketType(str, enum.Enum):
    CHECKOUT_CLEAN = "CHECKOUT_CLEAN"


class TicketStatus(str, enum.Enum):
    OPEN = "OPEN"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_type = Column(String(30), nullable=False)
    status = Column(String(20), default=TicketStatus.OPEN.value)

    external_booking_id = Column(String(255), nullable=False)
    unit_id = Column(String(64), nullable=True)
    due_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        # One ticket of each type per external booking, so redelivered events are no-ops
        UniqueConstraint("external_booking_id", "ticket_type", name="uq_ticket_booking_type"),
    )

    def __repr__(self):
        return f"<Ticket {self.ticket_type} {self.external_booking_id} - {self.status}>"
