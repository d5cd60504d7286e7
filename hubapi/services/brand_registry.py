"""
Brand Mode Registry

Static lookup of each brand's operation mode and designated writer.

- integrated: this service (hub-api) owns booking writes
- standalone: the brand's external adapter owns booking writes

Built once from settings at startup and never mutated, so it is safe to
share across threads. Unknown brands or modes fail construction.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError, ValidationFailed, BrandRuleViolation

logger = logging.getLogger(__name__)

LOCAL_WRITER = "hub-api"


class OperationMode(str, enum.Enum):
    INTEGRATED = "integrated"
    STANDALONE = "standalone"


class PricingBasis(str, enum.Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


# Who may write bookings in each mode
WRITER_LOCK: Dict[OperationMode, str] = {
    OperationMode.STANDALONE: "adapter",
    OperationMode.INTEGRATED: LOCAL_WRITER,
}


@dataclass(frozen=True)
class BrandConfig:
    name: str
    mode: OperationMode
    min_nights: int
    max_nights: int
    pricing_basis: PricingBasis = PricingBasis.DAILY

    @property
    def writer(self) -> str:
        return WRITER_LOCK[self.mode]


class BrandRegistry:
    def __init__(self, brands: Iterable[BrandConfig]):
        self._brands: Dict[str, BrandConfig] = {}
        for config in brands:
            self._validate(config)
            if config.name in self._brands:
                raise ConfigurationError(f"Brand {config.name} configured twice")
            self._brands[config.name] = config
        if not self._brands:
            raise ConfigurationError("No brands configured")

    @staticmethod
    def _validate(config: BrandConfig) -> None:
        if not isinstance(config.mode, OperationMode):
            raise ConfigurationError(f"Brand {config.name}: unknown mode {config.mode!r}")
        if config.min_nights < 1 or config.max_nights < config.min_nights:
            raise ConfigurationError(
                f"Brand {config.name}: invalid night bounds "
                f"[{config.min_nights}, {config.max_nights}]"
            )

    @classmethod
    def from_settings(cls, settings) -> "BrandRegistry":
        """Build the registry for the two known brands from environment settings."""
        try:
            return cls([
                BrandConfig(
                    name="COBNB",
                    mode=OperationMode(settings.mode_cobnb),
                    min_nights=settings.cobnb_min_nights,
                    max_nights=settings.cobnb_max_nights,
                    pricing_basis=PricingBasis.DAILY,
                ),
                BrandConfig(
                    name="MONTHLYKEY",
                    mode=OperationMode(settings.mode_monthlykey),
                    min_nights=settings.monthlykey_min_nights,
                    max_nights=settings.monthlykey_max_nights,
                    pricing_basis=PricingBasis.MONTHLY,
                ),
            ])
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    @property
    def brands(self) -> List[str]:
        return list(self._brands)

    def config_for(self, brand: str) -> BrandConfig:
        """
        Look up a brand's configuration.

        Brands are validated at startup, so an unknown name here comes
        from the request, not from config: it is a validation error.
        """
        config = self._brands.get(brand)
        if config is None:
            raise ValidationFailed(f"Unknown brand {brand!r}", {"brand": brand})
        return config

    def mode_of(self, brand: str) -> OperationMode:
        return self.config_for(brand).mode

    def writer_of(self, brand: str) -> str:
        return self.config_for(brand).writer

    def is_local_write_allowed(self, brand: str) -> bool:
        return self.mode_of(brand) == OperationMode.INTEGRATED

    def validate_nights(self, brand: str, nights: int) -> None:
        config = self.config_for(brand)
        if nights < config.min_nights or nights > config.max_nights:
            raise BrandRuleViolation(brand, nights, config.min_nights, config.max_nights)

    def summary(self, feature_flags: Optional[Dict[str, bool]] = None) -> Dict:
        """Per-brand mode/writer summary for health and debug endpoints"""
        summary = {
            "brands": {
                name: {
                    "mode": config.mode.value,
                    "writer": config.writer,
                    "hubWrites": config.mode == OperationMode.INTEGRATED,
                    "minNights": config.min_nights,
                    "maxNights": config.max_nights,
                }
                for name, config in self._brands.items()
            }
        }
        if feature_flags is not None:
            summary["features"] = dict(feature_flags)
        return summary
