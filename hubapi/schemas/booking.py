from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime, date
import re

from ..models.booking import PaymentMethod


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingCreate(CamelModel):
    brand: str = Field(..., min_length=1, max_length=30)
    unit_id: str = Field(..., min_length=1, max_length=64)
    guest_name: str = Field(..., min_length=2, max_length=200)
    guest_email: EmailStr
    guest_phone: str = Field(..., min_length=8, max_length=20)
    guests: int = Field(1, ge=1, le=50)
    check_in: date
    check_out: date
    payment_method: PaymentMethod = PaymentMethod.CARD
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('brand', mode='before')
    @classmethod
    def normalize_brand(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('guest_name', 'notes', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        """Strip script tags and inline event handlers"""
        if isinstance(v, str):
            v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
            v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
            return v.strip()
        return v

    @model_validator(mode='after')
    def validate_dates(self):
        if self.check_out <= self.check_in:
            raise ValueError("checkOut must be after checkIn")
        return self

    def canonical(self) -> dict:
        """JSON-safe form used for the idempotency request hash"""
        return self.model_dump(mode="json", by_alias=True)


class QuoteRequest(CamelModel):
    brand: str = Field(..., min_length=1, max_length=30)
    unit_id: str = Field(..., min_length=1, max_length=64)
    check_in: date
    check_out: date

    @field_validator('brand', mode='before')
    @classmethod
    def normalize_brand(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode='after')
    def validate_dates(self):
        if self.check_out <= self.check_in:
            raise ValueError("checkOut must be after checkIn")
        return self


class QuoteResponse(CamelModel):
    unit_id: str
    check_in: date
    check_out: date
    nights: int
    price_per_night: float
    total: float
    currency: str
    available: bool


class BookingResponse(CamelModel):
    id: str
    brand: str
    unit_id: str
    guest_name: str
    guest_email: str
    guest_phone: str
    guests: int
    check_in: date
    check_out: date
    nights: int
    price_per_night: float
    total_price: float
    currency: str
    status: str
    payment_method: str
    payment_status: str
    notes: Optional[str] = None
    external_booking_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            brand=booking.brand,
            unit_id=booking.unit_id,
            guest_name=booking.guest_name,
            guest_email=booking.guest_email,
            guest_phone=booking.guest_phone,
            guests=booking.guests,
            check_in=booking.check_in_date,
            check_out=booking.check_out_date,
            nights=booking.nights,
            price_per_night=float(booking.price_per_night),
            total_price=float(booking.total_price),
            currency=booking.currency,
            status=booking.status,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
            notes=booking.notes,
            external_booking_id=booking.external_booking_id,
            created_at=booking.created_at,
        )

    def body(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
