from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional

from ..config import Settings
from ..database import get_db
from ..models.booking import Booking
from ..schemas.booking import BookingCreate, BookingResponse, QuoteRequest, QuoteResponse
from ..services.booking_writer import BookingWriter
from ..services.brand_registry import BrandRegistry
from ..services.errors import BookingNotFound
from ..services.pricing import quote_stay
from ..utils.dependencies import get_app_settings, get_booking_writer, get_registry
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.post("/quote", response_model=QuoteResponse, response_model_by_alias=True)
@limiter.limit(get_rate_limit("quote"))
def quote_booking(
    request: Request,
    payload: QuoteRequest,
    db: Session = Depends(get_db),
    registry: BrandRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
):
    """Price and availability for a stay. Read-only; no writer lock applies."""
    quote = quote_stay(
        db,
        registry,
        payload.brand,
        payload.unit_id,
        payload.check_in,
        payload.check_out,
        settings.monthly_amortization_days,
    )
    return QuoteResponse(
        unit_id=quote.unit_id,
        check_in=quote.check_in,
        check_out=quote.check_out,
        nights=quote.nights,
        price_per_night=float(quote.price_per_night),
        total=float(quote.total),
        currency=quote.currency,
        available=bool(quote.available),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("booking_create"))
def create_booking(
    request: Request,
    payload: BookingCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    writer: BookingWriter = Depends(get_booking_writer),
):
    """
    Create a booking for an integrated brand.

    A replay with the same Idempotency-Key and body returns the original
    response unchanged; X-Idempotent-Replay marks it.
    """
    result = writer.create_booking(payload, idempotency_key)
    headers = {"X-Idempotent-Replay": "true"} if result.replayed else None
    return JSONResponse(status_code=result.status_code, content=result.body, headers=headers)


@router.get("/{booking_id}", response_model=BookingResponse, response_model_by_alias=True)
@limiter.limit(get_rate_limit("booking_get"))
def get_booking(
    request: Request,
    booking_id: str,
    db: Session = Depends(get_db),
):
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None:
        raise BookingNotFound(booking_id)
    return BookingResponse.from_booking(booking)
