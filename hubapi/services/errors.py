"""
Service Error Taxonomy

Every gate in the booking path raises one of these typed errors. The
API layer renders them as {"code", "message", ...details} with the
attached HTTP status, so clients can branch on a machine-readable code.
"""

from typing import Any, Dict, Optional


class ConfigurationError(Exception):
    """Invalid brand/mode configuration. Raised at startup only."""


class ServiceError(Exception):
    status_code: int = 500
    code: str = "INTERNAL"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        body.update(self.details)
        return body


class WriterLockViolation(ServiceError):
    """The brand is not written by this service. Names the system that is."""
    status_code = 409
    code = "WRITER_LOCK_VIOLATION"

    def __init__(self, brand: str, mode: str, designated_writer: str, rejected_by: str):
        super().__init__(
            f"Brand {brand} is in {mode} mode; bookings must be created by {designated_writer}",
            {
                "brand": brand,
                "mode": mode,
                "designatedWriter": designated_writer,
                "rejectedBy": rejected_by,
            },
        )
        self.brand = brand
        self.mode = mode
        self.designated_writer = designated_writer


class PaymentsDisabled(ServiceError):
    status_code = 503
    code = "PAYMENTS_DISABLED"

    def __init__(self):
        super().__init__("Payments are currently disabled", {"retryable": True})


class ValidationFailed(ServiceError):
    status_code = 400
    code = "VALIDATION"


class BrandRuleViolation(ServiceError):
    status_code = 400
    code = "BRAND_RULE_VIOLATION"

    def __init__(self, brand: str, nights: int, min_nights: int, max_nights: int):
        super().__init__(
            f"{brand} bookings must be between {min_nights} and {max_nights} nights, got {nights}",
            {"brand": brand, "nights": nights, "minNights": min_nights, "maxNights": max_nights},
        )


class IdempotencyKeyRequired(ServiceError):
    status_code = 400
    code = "IDEMPOTENCY_KEY_REQUIRED"

    def __init__(self, min_length: int, max_length: int):
        super().__init__(
            f"Idempotency-Key header is required and must be {min_length} to {max_length} characters",
            {"minLength": min_length, "maxLength": max_length},
        )


class IdempotencyKeyReused(ServiceError):
    status_code = 422
    code = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, key: str):
        super().__init__(
            "Idempotency-Key was already used with a different request body",
            {"idempotencyKey": key},
        )


class AvailabilityConflict(ServiceError):
    """
    The unit is taken for (part of) the requested range.

    NOT_AVAILABLE comes from the pre-write check; AVAILABILITY_CHANGED
    means the storage constraint rejected a racing insert after the
    check had passed.
    """
    status_code = 409
    code = "NOT_AVAILABLE"

    def __init__(self, unit_id: str, check_in, check_out, changed: bool = False):
        if changed:
            self.code = "AVAILABILITY_CHANGED"
            message = "Unit was booked by another request while this one was being processed"
        else:
            message = "Unit is not available for the requested dates"
        super().__init__(
            message,
            {"unitId": unit_id, "checkIn": str(check_in), "checkOut": str(check_out)},
        )


class UnitNotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, unit_id: str):
        super().__init__(f"Unit {unit_id} not found", {"unitId": unit_id})


class BookingNotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, booking_id: str):
        super().__init__(f"Booking {booking_id} not found", {"bookingId": booking_id})


class PermanentEventError(Exception):
    """A webhook event that can never succeed; dead-letter it without retrying."""
