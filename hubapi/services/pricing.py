"""
Brand pricing rules.

CoBnB charges the unit's daily rate. MonthlyKey spreads the monthly
rate over a nominal month and rounds half-up to a whole currency unit.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .brand_registry import BrandConfig, PricingBasis
from .availability import AvailabilityChecker
from .errors import UnitNotFound, ValidationFailed
from ..models.unit import Unit

DEFAULT_AMORTIZATION_DAYS = 30


def count_nights(check_in: date, check_out: date) -> int:
    """ceil((check_out - check_in) / 1 day); plain dates give whole days"""
    delta = datetime.combine(check_out, time.min) - datetime.combine(check_in, time.min)
    return math.ceil(delta.total_seconds() / 86400)


def price_per_night(
    unit: Unit,
    brand: BrandConfig,
    amortization_days: int = DEFAULT_AMORTIZATION_DAYS
) -> Decimal:
    if brand.pricing_basis == PricingBasis.MONTHLY:
        if unit.monthly_price is None:
            raise ValidationFailed(
                f"Unit {unit.id} has no monthly price for {brand.name}",
                {"unitId": unit.id, "brand": brand.name},
            )
        nightly = Decimal(unit.monthly_price) / Decimal(amortization_days)
        return nightly.quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    if unit.daily_price is None:
        raise ValidationFailed(
            f"Unit {unit.id} has no daily price for {brand.name}",
            {"unitId": unit.id, "brand": brand.name},
        )
    return Decimal(unit.daily_price)


@dataclass
class Quote:
    unit_id: str
    check_in: date
    check_out: date
    nights: int
    price_per_night: Decimal
    total: Decimal
    currency: str
    available: Optional[bool] = None


def build_quote(
    unit: Unit,
    brand: BrandConfig,
    check_in: date,
    check_out: date,
    amortization_days: int = DEFAULT_AMORTIZATION_DAYS
) -> Quote:
    nights = count_nights(check_in, check_out)
    nightly = price_per_night(unit, brand, amortization_days)
    return Quote(
        unit_id=unit.id,
        check_in=check_in,
        check_out=check_out,
        nights=nights,
        price_per_night=nightly,
        total=nightly * nights,
        currency=unit.currency,
    )


def quote_stay(
    db,
    registry,
    brand: str,
    unit_id: str,
    check_in: date,
    check_out: date,
    amortization_days: int = DEFAULT_AMORTIZATION_DAYS
) -> Quote:
    """
    Read-only quote: brand rules, price and current availability.

    No writer lock applies; standalone brands can still be quoted.
    """
    config = registry.config_for(brand)
    unit = db.query(Unit).filter(Unit.id == unit_id, Unit.is_active.is_(True)).first()
    if unit is None:
        raise UnitNotFound(unit_id)

    quote = build_quote(unit, config, check_in, check_out, amortization_days)
    registry.validate_nights(brand, quote.nights)
    quote.available = AvailabilityChecker(db).is_available(unit_id, check_in, check_out)
    return quote
