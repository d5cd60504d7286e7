"""
Channel Manager API Client

Pushes locally created bookings to the external channel manager.

- Authentication via user-api-key header
- Bounded timeout on every request; a timeout is a failure, never success
- Error handling with structured mapping
- Never raises: callers get a ChannelResponse and decide what to log
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

TARGET_SYSTEM = "channel-manager"


@dataclass
class ChannelResponse:
    """Wrapper for channel manager responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Dict] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    should_retry: bool = False
    duration_ms: int = 0

    @property
    def external_id(self) -> Optional[str]:
        if not self.data:
            return None
        value = self.data.get("id") or self.data.get("bookingId")
        return str(value) if value is not None else None


@dataclass
class ChannelError:
    """Structured error from the channel manager"""
    code: str
    message: str
    status_code: int
    retryable: bool = False


# Error mapping for channel manager responses
ERROR_MAP = {
    401: ChannelError("unauthorized", "Invalid or missing API key", 401, False),
    403: ChannelError("forbidden", "Access denied to this resource", 403, False),
    404: ChannelError("not_found", "Resource not found", 404, False),
    409: ChannelError("conflict", "Booking conflicts with channel inventory", 409, False),
    422: ChannelError("validation_error", "Invalid request data", 422, False),
    429: ChannelError("rate_limited", "Too many requests", 429, True),
    500: ChannelError("server_error", "Channel manager server error", 500, True),
    502: ChannelError("bad_gateway", "Channel manager gateway error", 502, True),
    503: ChannelError("service_unavailable", "Channel manager unavailable", 503, True),
}


class ChannelManagerClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "user-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _map_error(self, status_code: int, data: Optional[Dict]) -> ChannelError:
        error = ERROR_MAP.get(status_code)
        if error is None:
            error = ChannelError("unknown_error", f"Unexpected status {status_code}", status_code, status_code >= 500)
        if data and isinstance(data.get("errors"), dict):
            detail = data["errors"].get("title") or data["errors"].get("details")
            if detail:
                return ChannelError(error.code, f"{error.message}: {detail}", status_code, error.retryable)
        return error

    def _request(self, method: str, endpoint: str, payload: Optional[Dict] = None) -> ChannelResponse:
        url = f"{self.base_url}{endpoint}"
        start_time = time.time()
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(method, url, headers=self._get_headers(), json=payload)
        except httpx.TimeoutException as e:
            return ChannelResponse(
                success=False,
                status_code=0,
                error=f"Timed out after {self.timeout}s: {e}",
                error_code="timeout",
                should_retry=True,
                duration_ms=int((time.time() - start_time) * 1000),
            )
        except httpx.HTTPError as e:
            return ChannelResponse(
                success=False,
                status_code=0,
                error=str(e),
                error_code="transport_error",
                should_retry=True,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        duration_ms = int((time.time() - start_time) * 1000)
        try:
            data = response.json()
        except ValueError:
            data = None

        if 200 <= response.status_code < 300:
            return ChannelResponse(
                success=True,
                status_code=response.status_code,
                data=data.get("data", data) if isinstance(data, dict) else None,
                duration_ms=duration_ms,
            )

        error = self._map_error(response.status_code, data if isinstance(data, dict) else None)
        return ChannelResponse(
            success=False,
            status_code=response.status_code,
            data=data if isinstance(data, dict) else None,
            error=error.message,
            error_code=error.code,
            should_retry=error.retryable,
            duration_ms=duration_ms,
        )

    def push_booking(self, booking: Dict[str, Any]) -> ChannelResponse:
        """
        Create the booking on the channel manager.

        The local booking id travels as `reference`, which the channel
        echoes back on its booking.created webhook for reconciliation.
        """
        if not self.is_configured:
            return ChannelResponse(
                success=False,
                status_code=0,
                error="Channel manager is not configured",
                error_code="not_configured",
            )
        payload = {
            "booking": {
                "reference": booking["id"],
                "brand": booking["brand"],
                "unit_id": booking["unitId"],
                "arrival_date": booking["checkIn"],
                "departure_date": booking["checkOut"],
                "amount": booking["totalPrice"],
                "currency": booking["currency"],
                "customer": {
                    "name": booking["guestName"],
                    "mail": booking["guestEmail"],
                    "phone": booking["guestPhone"],
                },
                "occupancy": {"adults": booking["guests"]},
            }
        }
        response = self._request("POST", "/bookings", payload)
        logger.info(
            f"Channel push for booking {booking['id']}: "
            f"status={response.status_code} success={response.success} ({response.duration_ms}ms)"
        )
        return response
