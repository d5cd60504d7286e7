"""
Availability Checker

Stays are half-open ranges [check_in, check_out): the check-out day is
free for the next guest. Two stays conflict iff

    existing.check_in < new.check_out AND existing.check_out > new.check_in

The query below and the per-night claims in booking_nights implement the
same definition, so the pre-write check and the storage constraint
always agree at the boundaries.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import and_, event
from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingNight, RELEASED_STATUSES

logger = logging.getLogger(__name__)


def nights_between(check_in: date, check_out: date) -> List[date]:
    """Every occupied night of [check_in, check_out)"""
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def ranges_overlap(a_in: date, a_out: date, b_in: date, b_out: date) -> bool:
    return a_in < b_out and a_out > b_in


class AvailabilityChecker:
    def __init__(self, db: Session):
        self.db = db

    def find_conflicting_booking(
        self,
        unit_id: str,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[str] = None
    ) -> Optional[Booking]:
        """
        Return a booking still holding the unit that overlaps the range.

        Date overlap logic:
        - existing_check_in < new_check_out AND existing_check_out > new_check_in
        """
        query = self.db.query(Booking).filter(
            and_(
                Booking.unit_id == unit_id,
                Booking.status.notin_(RELEASED_STATUSES),
                Booking.check_in_date < check_out,
                Booking.check_out_date > check_in,
            )
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.first()

    def is_available(self, unit_id: str, check_in: date, check_out: date) -> bool:
        return self.find_conflicting_booking(unit_id, check_in, check_out) is None


def claim_nights(booking: Booking) -> None:
    """Attach one BookingNight per occupied night to a new booking"""
    booking.nights_claimed = [
        BookingNight(unit_id=booking.unit_id, night=night)
        for night in nights_between(booking.check_in_date, booking.check_out_date)
    ]


def release_nights(booking: Booking) -> None:
    """Drop the night claims of a booking that no longer holds its unit"""
    if booking.nights_claimed:
        logger.info(f"Releasing {len(booking.nights_claimed)} nights of booking {booking.id}")
        booking.nights_claimed = []


@event.listens_for(Session, "before_flush")
def _release_nights_on_cancel(session, flush_context, instances):
    """
    Keep night claims in step with status changes made anywhere.

    A booking moved to CANCELLED or NO_SHOW frees its dates; the
    delete-orphan cascade removes the claim rows in the same flush.
    """
    for obj in list(session.dirty):
        if isinstance(obj, Booking) and obj.status in RELEASED_STATUSES:
            release_nights(obj)
