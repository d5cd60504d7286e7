# Models package
from .unit import Unit
from .booking import (
    Booking,
    BookingNight,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    RELEASED_STATUSES,
)
from .idempotency import IdempotencyRecord
from .webhook_event import WebhookEvent, WebhookEventStatus, ErrorCode, TERMINAL_STATUSES
from .ticket import Ticket, TicketType, TicketStatus
