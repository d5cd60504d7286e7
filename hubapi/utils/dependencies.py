from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..services.booking_writer import BookingWriter
from ..services.brand_registry import BrandRegistry


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> BrandRegistry:
    return request.app.state.registry


def get_booking_writer(
    request: Request,
    db: Session = Depends(get_db),
) -> BookingWriter:
    state = request.app.state
    return BookingWriter.from_settings(db, state.registry, state.settings, channel_client=state.channel_client)


def get_worker_pool(request: Request):
    """None when the worker runs in a separate process"""
    return getattr(request.app.state, "worker_pool", None)
