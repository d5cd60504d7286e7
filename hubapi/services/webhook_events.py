"""
Typed channel events.

Raw payloads are parsed once into one of a closed set of dataclasses.
UnknownEvent covers every type we do not handle, so dispatch tables can
be checked for completeness at import time.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Union

from .errors import PermanentEventError

# Provider spellings -> canonical type
EVENT_TYPE_ALIASES = {
    "booking.created": "booking.created",
    "booking.new": "booking.created",
    "booking_created": "booking.created",
    "booking_new": "booking.created",
    "booking.modified": "booking.modified",
    "booking.modification": "booking.modified",
    "booking_modified": "booking.modified",
    "booking_updated": "booking.modified",
    "booking.cancelled": "booking.cancelled",
    "booking.canceled": "booking.cancelled",
    "booking.cancellation": "booking.cancelled",
    "booking_cancelled": "booking.cancelled",
    "property.updated": "property.updated",
    "property_updated": "property.updated",
}


def normalize_event_type(raw: Optional[str]) -> str:
    if not raw:
        return "unknown"
    raw = raw.strip().lower()
    return EVENT_TYPE_ALIASES.get(raw, raw)


@dataclass(frozen=True)
class BookingEvent:
    event_id: str
    booking_id: str
    reference: Optional[str] = None
    property_id: Optional[str] = None
    room_id: Optional[str] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None


@dataclass(frozen=True)
class BookingCreated(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingModified(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingCancelled(BookingEvent):
    pass


@dataclass(frozen=True)
class PropertyUpdated:
    event_id: str
    property_id: Optional[str] = None


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)


ChannelEvent = Union[BookingCreated, BookingModified, BookingCancelled, PropertyUpdated, UnknownEvent]

EVENT_CLASSES = {
    "booking.created": BookingCreated,
    "booking.modified": BookingModified,
    "booking.cancelled": BookingCancelled,
    "property.updated": PropertyUpdated,
}

ALL_EVENT_CLASSES = (BookingCreated, BookingModified, BookingCancelled, PropertyUpdated, UnknownEvent)


def _parse_date(value: Any, name: str) -> Optional[date]:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise PermanentEventError(f"Invalid {name}: {value!r}")


def _opt_str(value: Any) -> Optional[str]:
    return None if value in (None, "") else str(value)


def parse_event(event_id: str, event_type: str, payload: Dict[str, Any]) -> ChannelEvent:
    """
    Build the typed event for a stored payload.

    Raises PermanentEventError when a known event type is missing the
    fields it cannot do without; retrying would never fix that.
    """
    kind = normalize_event_type(event_type)
    cls = EVENT_CLASSES.get(kind)
    if cls is None:
        return UnknownEvent(event_id=event_id, event_type=kind, payload=payload)

    if cls is PropertyUpdated:
        return PropertyUpdated(event_id=event_id, property_id=_opt_str(payload.get("propertyId")))

    booking_id = _opt_str(payload.get("bookingId"))
    if booking_id is None:
        raise PermanentEventError(f"{kind} event {event_id} has no bookingId")

    check_in = _parse_date(payload.get("checkIn"), "checkIn")
    check_out = _parse_date(payload.get("checkOut"), "checkOut")
    if check_in and check_out and check_out <= check_in:
        raise PermanentEventError(f"{kind} event {event_id}: checkOut {check_out} is not after checkIn {check_in}")

    return cls(
        event_id=event_id,
        booking_id=booking_id,
        reference=_opt_str(payload.get("reference")),
        property_id=_opt_str(payload.get("propertyId")),
        room_id=_opt_str(payload.get("roomId")),
        check_in=check_in,
        check_out=check_out,
    )
