"""
Tests for the Brand Mode Registry

Tests cover:
- Mode and designated writer lookup
- Night bounds per brand
- Startup validation of brand configuration
"""

import pytest
from pydantic import ValidationError

from hubapi.config import Settings
from hubapi.services.brand_registry import (
    BrandConfig,
    BrandRegistry,
    LOCAL_WRITER,
    OperationMode,
    PricingBasis,
)
from hubapi.services.errors import BrandRuleViolation, ConfigurationError, ValidationFailed


class TestWriterLookup:
    """Each brand has exactly one designated writer"""

    def test_integrated_brand_is_written_locally(self, registry):
        """Integrated brands are written by this service"""
        assert registry.mode_of("A") == OperationMode.INTEGRATED
        assert registry.writer_of("A") == LOCAL_WRITER
        assert registry.is_local_write_allowed("A") is True

    def test_standalone_brand_is_written_by_adapter(self, registry):
        """Standalone brands belong to the external adapter"""
        assert registry.mode_of("B") == OperationMode.STANDALONE
        assert registry.writer_of("B") == "adapter"
        assert registry.is_local_write_allowed("B") is False

    def test_unknown_brand_is_validation_error(self, registry):
        """A brand name from a request that is not configured is rejected"""
        with pytest.raises(ValidationFailed) as exc:
            registry.config_for("NOPE")
        assert exc.value.details == {"brand": "NOPE"}

    def test_summary_lists_every_brand(self, registry):
        """The summary exposes mode, writer and bounds per brand"""
        summary = registry.summary({"payments": True})
        assert set(summary["brands"]) == {"A", "B", "MONTHLYKEY"}
        assert summary["brands"]["B"] == {
            "mode": "standalone",
            "writer": "adapter",
            "hubWrites": False,
            "minNights": 1,
            "maxNights": 27,
        }
        assert summary["features"] == {"payments": True}


class TestNightBounds:
    """Bounds are inclusive on both ends"""

    @pytest.mark.parametrize("nights", [1, 2])
    def test_within_bounds(self, registry, nights):
        """min and max themselves are accepted"""
        registry.validate_nights("A", nights)

    @pytest.mark.parametrize("nights", [0, 3])
    def test_outside_bounds(self, registry, nights):
        """One below min or one above max is rejected with the bounds attached"""
        with pytest.raises(BrandRuleViolation) as exc:
            registry.validate_nights("A", nights)
        assert exc.value.details["minNights"] == 1
        assert exc.value.details["maxNights"] == 2
        assert exc.value.status_code == 400


class TestConfiguration:
    """Bad configuration fails at construction, never per request"""

    def test_defaults_are_standalone(self):
        """Both brands default to standalone so nothing is written by accident"""
        registry = BrandRegistry.from_settings(Settings(_env_file=None))
        assert registry.mode_of("COBNB") == OperationMode.STANDALONE
        assert registry.mode_of("MONTHLYKEY") == OperationMode.STANDALONE
        assert registry.config_for("MONTHLYKEY").pricing_basis == PricingBasis.MONTHLY

    def test_modes_from_settings(self):
        """Modes are case-insensitive in the environment"""
        settings = Settings(_env_file=None, mode_cobnb="INTEGRATED", mode_monthlykey="standalone")
        registry = BrandRegistry.from_settings(settings)
        assert registry.is_local_write_allowed("COBNB") is True
        assert registry.is_local_write_allowed("MONTHLYKEY") is False

    def test_invalid_mode_in_settings(self):
        """An unknown mode string is rejected when settings load"""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, mode_cobnb="hybrid")

    def test_invalid_bounds(self):
        """max below min is a configuration error"""
        with pytest.raises(ConfigurationError):
            BrandRegistry([BrandConfig("X", OperationMode.INTEGRATED, min_nights=5, max_nights=2)])

    def test_duplicate_brand(self):
        """A brand can only be configured once"""
        config = BrandConfig("X", OperationMode.INTEGRATED, min_nights=1, max_nights=2)
        with pytest.raises(ConfigurationError):
            BrandRegistry([config, config])

    def test_non_enum_mode(self):
        """Modes must be OperationMode members"""
        with pytest.raises(ConfigurationError):
            BrandRegistry([BrandConfig("X", "integrated", min_nights=1, max_nights=2)])
