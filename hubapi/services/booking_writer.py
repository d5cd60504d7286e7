"""
Booking Writer

Idempotent, race-safe booking creation. Gates run in a fixed order and
each one either passes or raises a typed ServiceError:

1. Writer lock (no I/O before this), then the payments switch
2. Brand night bounds
3. Idempotency-Key present and long enough
4. Idempotency replay / key-reuse detection
5. Availability re-check under the unit row lock
6. Price
7. Insert booking + night claims (unique per unit/night)
8. Best-effort push to the channel manager
9. Cache the response under the key
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from ..models.idempotency import KEY_MAX_LENGTH
from ..models.unit import Unit
from ..schemas.booking import BookingCreate, BookingResponse
from ..utils.db_helpers import acquire_row_lock
from ..utils.logging_config import get_logger
from ..utils.metrics import Timer, record_booking_outcome, record_channel_forward
from .availability import AvailabilityChecker, claim_nights
from .brand_registry import BrandRegistry, LOCAL_WRITER
from .channel_client import ChannelManagerClient, TARGET_SYSTEM
from .errors import (
    AvailabilityConflict,
    IdempotencyKeyRequired,
    IdempotencyKeyReused,
    PaymentsDisabled,
    UnitNotFound,
    WriterLockViolation,
)
from .idempotency_store import IdempotencyStore, hash_request
from .pricing import count_nights, price_per_night

logger = get_logger(__name__)

CREATED_STATUS = 201


@dataclass
class BookingResult:
    status_code: int
    body: Dict[str, Any]
    replayed: bool = False


def payment_status_for(method: str) -> str:
    if method == PaymentMethod.BANK_TRANSFER.value:
        return PaymentStatus.PENDING_BANK_TRANSFER.value
    return PaymentStatus.INITIATED.value


class BookingWriter:
    def __init__(
        self,
        db: Session,
        registry: BrandRegistry,
        channel_client: Optional[ChannelManagerClient] = None,
        forward_enabled: bool = False,
        payments_enabled: bool = True,
        idempotency_ttl_hours: int = 24,
        key_min_length: int = 8,
        amortization_days: int = 30,
        availability: Optional[AvailabilityChecker] = None,
    ):
        self.db = db
        self.registry = registry
        self.channel_client = channel_client
        self.forward_enabled = forward_enabled
        self.payments_enabled = payments_enabled
        self.key_min_length = key_min_length
        self.amortization_days = amortization_days
        self.idempotency = IdempotencyStore(db, ttl_hours=idempotency_ttl_hours)
        self.availability = availability or AvailabilityChecker(db)

    @classmethod
    def from_settings(cls, db: Session, registry: BrandRegistry, settings, channel_client=None) -> "BookingWriter":
        return cls(
            db,
            registry,
            channel_client=channel_client,
            forward_enabled=settings.enable_channel_sync,
            payments_enabled=settings.enable_payments,
            idempotency_ttl_hours=settings.idempotency_ttl_hours,
            key_min_length=settings.idempotency_key_min_length,
            amortization_days=settings.monthly_amortization_days,
        )

    def check_writer_lock(self, brand: str) -> None:
        if self.registry.is_local_write_allowed(brand):
            return
        config = self.registry.config_for(brand)
        logger.warning(
            f"Writer lock violation: {brand} is {config.mode.value}, "
            f"designated writer is {config.writer}"
        )
        record_booking_outcome(brand, "writer_lock")
        raise WriterLockViolation(brand, config.mode.value, config.writer, LOCAL_WRITER)

    def create_booking(self, data: BookingCreate, idempotency_key: Optional[str]) -> BookingResult:
        brand = data.brand

        # 1. Writer lock: must precede every other check and all I/O
        self.check_writer_lock(brand)
        if not self.payments_enabled:
            raise PaymentsDisabled()

        # 2. Brand rules
        nights = count_nights(data.check_in, data.check_out)
        self.registry.validate_nights(brand, nights)

        # 3. Key is supplied by the caller, never generated here
        key = (idempotency_key or "").strip()
        if not self.key_min_length <= len(key) <= KEY_MAX_LENGTH:
            raise IdempotencyKeyRequired(self.key_min_length, KEY_MAX_LENGTH)

        # 4. Replay or reject key reuse
        request_hash = hash_request(data.canonical())
        replay = self._replay(key, request_hash)
        if replay is not None:
            record_booking_outcome(brand, "replayed")
            return replay

        with Timer() as timer:
            # 5. Availability, as late as possible and under the unit lock
            unit = acquire_row_lock(self.db, Unit, Unit.id == data.unit_id)
            if unit is None or not unit.is_active:
                self.db.rollback()
                raise UnitNotFound(data.unit_id)

            if self.availability.find_conflicting_booking(data.unit_id, data.check_in, data.check_out):
                self.db.rollback()
                record_booking_outcome(brand, "conflict")
                raise AvailabilityConflict(data.unit_id, data.check_in, data.check_out)

            # 6. Price
            nightly = price_per_night(unit, self.registry.config_for(brand), self.amortization_days)

            # 7. Persist; the night claims close the check-then-insert gap
            booking = Booking(
                id=str(uuid.uuid4()),
                brand=brand,
                unit_id=data.unit_id,
                guest_name=data.guest_name,
                guest_email=str(data.guest_email),
                guest_phone=data.guest_phone,
                guests=data.guests,
                check_in_date=data.check_in,
                check_out_date=data.check_out,
                nights=nights,
                price_per_night=nightly,
                total_price=nightly * nights,
                currency=unit.currency,
                status=BookingStatus.PENDING.value,
                payment_method=data.payment_method.value,
                payment_status=payment_status_for(data.payment_method.value),
                notes=data.notes,
                idempotency_key=key,
                idempotency_hash=request_hash,
            )
            claim_nights(booking)
            self.db.add(booking)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                # Same key racing with itself: the winner's row is the answer
                replay = self._replay_from_booking(key, request_hash)
                if replay is not None:
                    record_booking_outcome(brand, "replayed")
                    return replay
                record_booking_outcome(brand, "conflict")
                raise AvailabilityConflict(data.unit_id, data.check_in, data.check_out, changed=True)

            self.db.refresh(booking)
            body = BookingResponse.from_booking(booking).body()

        logger.booking_created(booking.id, brand, booking.unit_id, float(booking.total_price), timer.elapsed_ms)
        record_booking_outcome(brand, "created")

        # 8. External forward never fails the local write
        if self.forward_enabled and self.channel_client is not None:
            self._forward(body)

        # 9. Cache for replays
        self.idempotency.store(key, request_hash, CREATED_STATUS, body)
        return BookingResult(CREATED_STATUS, body)

    def _replay(self, key: str, request_hash: str) -> Optional[BookingResult]:
        cached = self.idempotency.lookup(key)
        if cached is not None:
            if cached.request_hash != request_hash:
                raise IdempotencyKeyReused(key)
            return BookingResult(cached.status_code, cached.body, replayed=True)
        return self._replay_from_booking(key, request_hash)

    def _replay_from_booking(self, key: str, request_hash: str) -> Optional[BookingResult]:
        """
        Fall back to the booking row itself.

        Covers a crash between commit and caching, a cache entry past its
        TTL, and a concurrent request with the same key that won the insert.
        """
        booking = self.db.query(Booking).filter(Booking.idempotency_key == key).first()
        if booking is None:
            return None
        if booking.idempotency_hash != request_hash:
            raise IdempotencyKeyReused(key)
        body = BookingResponse.from_booking(booking).body()
        self.idempotency.store(key, request_hash, CREATED_STATUS, body)
        return BookingResult(CREATED_STATUS, body, replayed=True)

    def _forward(self, body: Dict[str, Any]) -> None:
        try:
            response = self.channel_client.push_booking(body)
        except Exception as e:
            logger.forward_failed(body["id"], TARGET_SYSTEM, f"{type(e).__name__}: {e}")
            record_channel_forward(False)
            return
        record_channel_forward(response.success)
        if not response.success:
            logger.forward_failed(body["id"], TARGET_SYSTEM, response.error or f"HTTP {response.status_code}")
