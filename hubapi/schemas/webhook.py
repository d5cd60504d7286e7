from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Union, List, Dict
from datetime import datetime


class ChannelWebhookPayload(BaseModel):
    """Inbound channel-manager event. Unknown fields are kept in the stored payload."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Union[str, int]
    type: str = Field(..., min_length=1, max_length=100)
    booking_id: Optional[Union[str, int]] = Field(None, alias="bookingId")
    property_id: Optional[Union[str, int]] = Field(None, alias="propertyId")
    room_id: Optional[Union[str, int]] = Field(None, alias="roomId")
    check_in: Optional[str] = Field(None, alias="checkIn")
    check_out: Optional[str] = Field(None, alias="checkOut")
    reference: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("id", "booking_id", "property_id", "room_id")
    @classmethod
    def coerce_str(cls, v):
        if v is None:
            return v
        v = str(v).strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @property
    def event_id(self) -> str:
        return str(self.id)


class WebhookEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    event_type: str
    status: str
    attempts: int
    max_retries: int
    last_error: Optional[str] = None
    error_code: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    received_at: datetime
    processed_at: Optional[datetime] = None


class WebhookStatusResponse(BaseModel):
    enabled: bool
    counts: Dict[str, int]
    queue_size: int = 0
    features: Dict[str, bool]


class DeadLetterList(BaseModel):
    total: int
    items: List[WebhookEventResponse]
