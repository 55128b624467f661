"""Tests for the usage calculator and unit price resolution."""

from decimal import Decimal

import pytest

from app.core.errors import InvalidReadingError
from app.models.enums import MeterType, PriceSource
from app.services.billing_config import BillingConfig
from app.services.usage import compute_usage, resolve_unit_price, round_money


class TestComputeUsage:
    """Tests for compute_usage."""

    def test_electricity_example(self) -> None:
        """100 -> 150 at 0.6 is 50 units for 30.00."""
        result = compute_usage(Decimal("100"), Decimal("150"), Decimal("0.6"))
        assert result.usage == Decimal("50")
        assert result.amount == Decimal("30.00")

    def test_zero_usage_is_valid(self) -> None:
        result = compute_usage(Decimal("42"), Decimal("42"), Decimal("3.5"))
        assert result.usage == Decimal("0")
        assert result.amount == Decimal("0.00")

    def test_amount_rounds_half_up(self) -> None:
        """0.125 rounds to 0.13, not banker's 0.12."""
        result = compute_usage(Decimal("0"), Decimal("0.25"), Decimal("0.5"))
        assert result.amount == Decimal("0.13")

    def test_usage_keeps_full_precision(self) -> None:
        result = compute_usage(Decimal("10.125"), Decimal("12.5"), Decimal("1"))
        assert result.usage == Decimal("2.375")
        assert result.amount == Decimal("2.38")

    def test_decreasing_reading_rejected(self) -> None:
        with pytest.raises(InvalidReadingError):
            compute_usage(Decimal("150"), Decimal("100"), Decimal("0.6"))

    def test_negative_reading_rejected(self) -> None:
        with pytest.raises(InvalidReadingError):
            compute_usage(Decimal("-1"), Decimal("5"), Decimal("0.6"))

    @pytest.mark.parametrize("price", ["0", "-0.6"])
    def test_non_positive_price_rejected(self, price: str) -> None:
        with pytest.raises(InvalidReadingError):
            compute_usage(Decimal("1"), Decimal("5"), Decimal(price))


class TestRoundMoney:
    def test_round_money(self) -> None:
        assert round_money(Decimal("2.005")) == Decimal("2.01")
        assert round_money("7") == Decimal("7.00")


class TestResolveUnitPrice:
    """Tests for unit price resolution order."""

    def test_override_wins(self, make_meter) -> None:
        meter = make_meter(unit_price="0.6")
        price, source = resolve_unit_price(meter, BillingConfig(), override=Decimal("0.9"))
        assert price == Decimal("0.9")
        assert source == PriceSource.MANUAL_OVERRIDE

    def test_meter_price_used(self, make_meter) -> None:
        meter = make_meter(unit_price="0.75")
        price, source = resolve_unit_price(meter, BillingConfig())
        assert price == Decimal("0.75")
        assert source == PriceSource.METER_CONFIG

    def test_config_default_used_without_meter_price(self, make_meter) -> None:
        """Prices come from the config passed in, not global settings."""
        meter = make_meter(MeterType.GAS, "Gas-101", unit_price=None, unit="m³")
        config = BillingConfig(default_prices={MeterType.GAS: Decimal("4.2")})
        price, _ = resolve_unit_price(meter, config)
        assert price == Decimal("4.2")

    def test_missing_price_rejected(self, make_meter) -> None:
        meter = make_meter(MeterType.GAS, "Gas-101", unit_price=None, unit="m³")
        with pytest.raises(InvalidReadingError):
            resolve_unit_price(meter, BillingConfig(default_prices={}))

    def test_stored_zero_price_is_not_replaced_by_default(self, make_meter) -> None:
        """A zero price is a bad price, not a missing one."""
        meter = make_meter(unit_price="0")
        price, _ = resolve_unit_price(meter, BillingConfig())
        assert price == Decimal("0")
        with pytest.raises(InvalidReadingError):
            compute_usage(Decimal("100"), Decimal("150"), price)
