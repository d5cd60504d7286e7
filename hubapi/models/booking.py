import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Date, Numeric, Text, ForeignKey, DateTime, Index, Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base
from .idempotency import KEY_MAX_LENGTH
import enum


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses that no longer hold the unit
RELEASED_STATUSES = (BookingStatus.CANCELLED.value, BookingStatus.NO_SHOW.value)


class PaymentMethod(str, enum.Enum):
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"


class PaymentStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    PENDING_BANK_TRANSFER = "PENDING_BANK_TRANSFER"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    brand = Column(String(30), nullable=False)
    unit_id = Column(String(64), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)

    guest_name = Column(String(200), nullable=False)
    guest_email = Column(String(255), nullable=False)
    guest_phone = Column(String(20), nullable=False)
    guests = Column(Integer, nullable=False, default=1)

    # [check_in_date, check_out_date) - check-out day is free
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    nights = Column(Integer, nullable=False)

    price_per_night = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="SAR")

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(30), nullable=False)
    notes = Column(Text, nullable=True)

    # Idempotency
    idempotency_key = Column(String(KEY_MAX_LENGTH), nullable=False)
    idempotency_hash = Column(String(64), nullable=False)

    # Channel manager id, filled in later by webhook reconciliation
    external_booking_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    unit = relationship("Unit", back_populates="bookings")
    nights_claimed = relationship(
        "BookingNight",
        back_populates="booking",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_booking_idempotency_key"),
        Index("ix_booking_unit_dates", "unit_id", "check_in_date", "check_out_date"),
        Index("ix_booking_external_id", "external_booking_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status not in RELEASED_STATUSES

    def __repr__(self):
        return f"<Booking {self.id} {self.unit_id} {self.check_in_date}->{self.check_out_date} {self.status}>"


class BookingNight(Base):
    """
    One row per occupied night of a booking that still holds its unit.

    The unique (unit_id, night) constraint is what stops two racing
    inserts for overlapping stays: whichever commits second fails.
    """
    __tablename__ = "booking_nights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(String(64), nullable=False)
    night = Column(Date, nullable=False)

    booking = relationship("Booking", back_populates="nights_claimed")

    __table_args__ = (
        UniqueConstraint("unit_id", "night", name="uq_booking_night_unit_night"),
    )

    def __repr__(self):
        return f"<BookingNight {self.unit_id} {self.night}>"
