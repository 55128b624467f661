"""Tests for the bill details read path and its legacy fallbacks."""

import json
from decimal import Decimal

import pytest

from app.core.errors import BillNotFoundError
from app.models.enums import MeterType
from app.schemas.bill import BillGenerationRequest
from app.services.aggregation import generate_utility_bills
from app.services.bill_query import find_bills_for_reading, get_bill_details, is_legacy_bill


@pytest.fixture
def electricity(make_meter):
    return make_meter()


@pytest.fixture
def water(make_meter):
    return make_meter(MeterType.COLD_WATER, "Water-101", unit_price="3.5", unit="m³")


def _metadata(reading_ids: list[int]) -> str:
    return json.dumps(
        {"triggerType": "UTILITY_READING", "utilityDetails": {"meterReadingIds": reading_ids}}
    )


class TestGetBillDetails:
    """Tests for the resolver chain."""

    def test_detail_rows(self, test_db, contract, config, electricity, make_reading) -> None:
        reading = make_reading(electricity, "100", "150")
        result = generate_utility_bills(
            test_db,
            BillGenerationRequest(contract_id=contract.id, reading_ids=[reading.id]),
            config,
        )
        bill_id = result.created_bills[0].id

        response = get_bill_details(test_db, bill_id)
        assert response.metadata.source == "bill_details"
        assert response.metadata.is_legacy is False
        assert response.metadata.total_amount == Decimal("30.00")
        assert [d.meter_reading_id for d in response.data] == [reading.id]

    def test_legacy_direct_reading(self, test_db, make_bill, electricity, make_reading) -> None:
        reading = make_reading(electricity, "100", "150", is_billed=True)
        bill = make_bill("30.00", meter_reading_id=reading.id)

        response = get_bill_details(test_db, bill.id)
        assert response.metadata.source == "meter_reading"
        assert response.metadata.is_legacy is True
        assert response.data[0].id == f"legacy-{reading.id}"
        assert response.data[0].amount == Decimal("30.00")
        assert is_legacy_bill(test_db, bill)

    def test_single_metadata_reading_is_legacy(
        self, test_db, make_bill, electricity, make_reading
    ) -> None:
        """One reading id in metadata resolves like a direct reading link."""
        reading = make_reading(electricity, "100", "150", is_billed=True)
        bill = make_bill("30.00", metadata_json=_metadata([reading.id]))

        response = get_bill_details(test_db, bill.id)
        assert response.metadata.source == "meter_reading"
        assert response.metadata.is_legacy is True
        assert [d.id for d in response.data] == [f"legacy-{reading.id}"]
        assert is_legacy_bill(test_db, bill)

    def test_single_metadata_reading_gone_is_not_legacy(self, test_db, make_bill) -> None:
        bill = make_bill("30.00", metadata_json=_metadata([404]))

        response = get_bill_details(test_db, bill.id)
        assert response.metadata.source == "empty"
        assert response.metadata.is_legacy is False
        assert not is_legacy_bill(test_db, bill)

    def test_related_readings_returns_every_reading(
        self, test_db, make_bill, electricity, water, make_reading
    ) -> None:
        """A legacy bill listing several readings resolves all of them."""
        readings = [
            make_reading(electricity, "100", "150", is_billed=True),
            make_reading(water, "20", "22", is_billed=True),
        ]
        bill = make_bill("37.00", metadata_json=_metadata([r.id for r in readings]))

        response = get_bill_details(test_db, bill.id)
        assert response.metadata.source == "related_readings"
        assert [d.meter_reading_id for d in response.data] == [r.id for r in readings]
        assert response.metadata.total_amount == Decimal("37.00")

    def test_nothing_resolvable(self, test_db, make_bill) -> None:
        bill = make_bill("30.00", metadata_json="{not json")

        response = get_bill_details(test_db, bill.id)
        assert response.metadata.source == "empty"
        assert response.data == []
        assert response.metadata.bill_info.bill_number == bill.bill_number

    def test_missing_bill(self, test_db) -> None:
        with pytest.raises(BillNotFoundError):
            get_bill_details(test_db, 404)


class TestFindBillsForReading:
    def test_finds_by_detail_link_and_metadata(
        self, test_db, make_bill, electricity, make_reading
    ) -> None:
        reading = make_reading(electricity, "100", "150", is_billed=True)
        by_detail = make_bill("30.00", details=[(reading, "30.00")])
        by_metadata = make_bill("30.00", period="2024-02", metadata_json=_metadata([reading.id]))
        make_bill("30.00", period="2024-03", metadata_json=_metadata([reading.id + 100]))

        found = find_bills_for_reading(test_db, reading.id)
        assert [b.id for b in found] == [by_detail.id, by_metadata.id]
