"""
Shared fixtures.

Storage tests run against a real SQLite file per test so unique
constraints and cross-connection races behave as they would in production.
"""

import os
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hubapi.config import Settings
from hubapi.database import Database
from hubapi.models.unit import Unit
from hubapi.schemas.booking import BookingCreate
from hubapi.services.brand_registry import BrandConfig, BrandRegistry, OperationMode, PricingBasis
from hubapi.utils import metrics


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset_all()
    yield


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'hub.db'}")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture
def registry():
    return BrandRegistry([
        BrandConfig("A", OperationMode.INTEGRATED, min_nights=1, max_nights=2),
        BrandConfig("B", OperationMode.STANDALONE, min_nights=1, max_nights=27),
        BrandConfig("MONTHLYKEY", OperationMode.INTEGRATED, min_nights=28, max_nights=365,
                    pricing_basis=PricingBasis.MONTHLY),
    ])


@pytest.fixture
def make_unit(session):
    def _make(unit_id="U1", daily_price="500.00", monthly_price="9000.00", currency="SAR", is_active=True):
        unit = Unit(
            id=unit_id,
            name=f"Unit {unit_id}",
            daily_price=Decimal(daily_price) if daily_price is not None else None,
            monthly_price=Decimal(monthly_price) if monthly_price is not None else None,
            currency=currency,
            is_active=is_active,
        )
        session.add(unit)
        session.commit()
        return unit
    return _make


DAY = date(2030, 1, 1)


def day(n: int) -> date:
    """Day n of the test calendar"""
    return DAY + timedelta(days=n - 1)


@pytest.fixture
def booking_payload():
    def _payload(**overrides):
        data = {
            "brand": "A",
            "unitId": "U1",
            "guestName": "Sara Ahmed",
            "guestEmail": "sara@example.com",
            "guestPhone": "+966500000000",
            "guests": 2,
            "checkIn": day(10).isoformat(),
            "checkOut": day(11).isoformat(),
            "paymentMethod": "CARD",
        }
        data.update(overrides)
        return BookingCreate.model_validate(data)
    return _payload


class FakeClock:
    """Manually advanced replacement for datetime.utcnow"""

    def __init__(self, start: Optional[datetime] = None):
        # Starts at real time so rows stamped by datetime.utcnow line up
        self.now = start or datetime.utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api_settings(tmp_path):
    def _settings(**overrides):
        values = dict(
            database_url=f"sqlite:///{tmp_path / 'api.db'}",
            enable_payments=True,
            enable_webhooks=True,
            run_worker_in_process=False,
            rate_limit_enabled=False,
            log_json=False,
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _settings


@pytest.fixture
def client_factory(api_settings, registry):
    from fastapi.testclient import TestClient
    from hubapi.main import create_app

    clients = []

    def _client(**overrides):
        settings = api_settings(**overrides)
        database = Database(settings.database_url)
        database.create_tables()
        with database.session() as s:
            if s.get(Unit, "U1") is None:
                s.add(Unit(id="U1", name="Unit U1", daily_price=Decimal("500.00"),
                           monthly_price=Decimal("9000.00"), currency="SAR"))
                s.commit()
        client = TestClient(create_app(settings, database=database, registry=registry))
        client.__enter__()
        clients.append(client)
        return client

    yield _client

    for c in clients:
        c.__exit__(None, None, None)
