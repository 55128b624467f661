"""Tests for the bill detail builder."""

from decimal import Decimal

import pytest

from app.core.errors import EmptyReadingSetError
from app.models.enums import MeterType, PriceSource
from app.services.bill_details import build_details, summarize_breakdown, total_amount


@pytest.fixture
def electricity(make_meter):
    return make_meter()


@pytest.fixture
def water(make_meter):
    return make_meter(MeterType.COLD_WATER, "Water-101", unit_price="3.5", unit="m³")


class TestBuildDetails:
    """Tests for build_details."""

    def test_one_detail_per_reading(self, config, electricity, water, make_reading) -> None:
        readings = [
            make_reading(electricity, "100", "150"),
            make_reading(water, "20", "22"),
        ]
        drafts = build_details(readings, config)

        assert [d.meter_reading_id for d in drafts] == [r.id for r in readings]
        assert drafts[0].meter_name == "Electricity-101"
        assert drafts[0].amount == Decimal("30.00")
        assert drafts[1].meter_type == MeterType.COLD_WATER
        assert drafts[1].amount == Decimal("7.00")
        assert total_amount(drafts) == Decimal("37.00")

    def test_billed_readings_skipped(self, config, electricity, make_reading) -> None:
        billed = make_reading(electricity, "100", "150", is_billed=True)
        assert build_details([billed], config) == []

    def test_empty_set_raises_when_required(self, config) -> None:
        with pytest.raises(EmptyReadingSetError):
            build_details([], config, require_readings=True)

    def test_zero_usage_excluded_on_request(self, config, electricity, make_reading) -> None:
        reading = make_reading(electricity, "150", "150")
        assert len(build_details([reading], config)) == 1
        assert build_details([reading], config, include_zero_usage=False) == []

    def test_price_override_marks_source(self, config, electricity, make_reading) -> None:
        reading = make_reading(electricity, "100", "150")
        drafts = build_details([reading], config, price_overrides={reading.id: Decimal("1")})
        assert drafts[0].amount == Decimal("50.00")
        assert drafts[0].price_source == PriceSource.MANUAL_OVERRIDE


class TestSummarizeBreakdown:
    """Tests for per-category subtotals."""

    def test_hot_and_cold_water_share_a_bucket(
        self, config, make_meter, make_reading, electricity
    ) -> None:
        cold = make_meter(MeterType.COLD_WATER, "Cold-101", unit_price="3.5", unit="m³")
        hot = make_meter(MeterType.HOT_WATER, "Hot-101", unit_price="3.5", unit="m³")
        drafts = build_details(
            [
                make_reading(electricity, "100", "150"),
                make_reading(cold, "10", "12"),
                make_reading(hot, "5", "6"),
            ],
            config,
        )
        breakdown = summarize_breakdown(drafts)

        assert breakdown.electricity.amount == Decimal("30.00")
        assert breakdown.water.usage == Decimal("3")
        assert breakdown.water.unit_price == Decimal("3.5")
        assert breakdown.water.amount == Decimal("10.50")
        assert breakdown.gas is None

    def test_mixed_prices_use_effective_price(self, config, make_meter, make_reading) -> None:
        a = make_meter(MeterType.ELECTRICITY, "E-A", unit_price="0.5")
        b = make_meter(MeterType.ELECTRICITY, "E-B", unit_price="1.0")
        drafts = build_details(
            [make_reading(a, "0", "10"), make_reading(b, "0", "10")],
            config,
        )
        charge = summarize_breakdown(drafts).electricity
        assert charge.amount == Decimal("15.00")
        assert charge.unit_price == Decimal("0.7500")
