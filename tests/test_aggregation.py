"""Tests for bill composition strategies and utility bill generation."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.errors import ContractNotFoundError, EmptyReadingSetError
from app.models.bill import AGGREGATED_KEY, Bill, itemized_key
from app.models.contract import Contract
from app.models.enums import AggregationMode, BillStatus, BillType, MeterType
from app.schemas.bill import BILL_NUMBER_PATTERN, BillGenerationRequest
from app.services import aggregation
from app.services.aggregation import (
    AggregatedStrategy,
    ItemizedStrategy,
    calculate_due_date,
    generate_bill_number,
    generate_utility_bills,
    get_strategy,
    select_aggregation_mode,
)
from app.services.bill_details import build_details
from app.services.billing_config import BillingConfig


@pytest.fixture
def electricity(make_meter):
    return make_meter()


@pytest.fixture
def water(make_meter):
    return make_meter(MeterType.COLD_WATER, "Water-101", unit_price="3.5", unit="m³")


def _generate(db, contract, readings, config, mode=None):
    return generate_utility_bills(
        db,
        BillGenerationRequest(
            contract_id=contract.id,
            reading_ids=[r.id for r in readings],
            aggregation_mode=mode,
        ),
        config,
    )


class TestHelpers:
    def test_bill_number_format(self) -> None:
        for bill_type in BillType:
            assert BILL_NUMBER_PATTERN.match(generate_bill_number(bill_type))

    def test_bill_numbers_are_unique(self) -> None:
        numbers = {generate_bill_number(BillType.UTILITIES) for _ in range(200)}
        assert len(numbers) == 200

    def test_due_date_follows_config(self) -> None:
        assert calculate_due_date(date(2024, 1, 31), BillingConfig()) == date(2024, 2, 10)
        assert calculate_due_date(date(2024, 1, 31), BillingConfig(due_days=3)) == date(2024, 2, 3)

    def test_mode_selection(self) -> None:
        config = BillingConfig(default_aggregation_mode=AggregationMode.ITEMIZED)
        assert select_aggregation_mode(None, config) == AggregationMode.ITEMIZED
        assert select_aggregation_mode("AGGREGATED", config) == AggregationMode.AGGREGATED

    def test_get_strategy(self) -> None:
        assert isinstance(get_strategy(AggregationMode.AGGREGATED), AggregatedStrategy)
        assert isinstance(get_strategy("ITEMIZED"), ItemizedStrategy)


class TestStrategies:
    """Tests for compose()."""

    def test_aggregated_groups_by_period(self, config, electricity, water, make_reading) -> None:
        drafts = build_details(
            [
                make_reading(electricity, "100", "150", period="2024-01"),
                make_reading(water, "20", "22", period="2024-01"),
                make_reading(electricity, "150", "170", period="2024-02"),
            ],
            config,
        )
        bills = AggregatedStrategy().compose(drafts)

        assert [(b.period, len(b.details)) for b in bills] == [("2024-01", 2), ("2024-02", 1)]
        assert all(b.aggregation_key == AGGREGATED_KEY for b in bills)
        assert bills[0].amount == Decimal("37.00")

    def test_aggregated_rejects_empty(self) -> None:
        with pytest.raises(EmptyReadingSetError):
            AggregatedStrategy().compose([])

    def test_itemized_one_bill_per_reading(self, config, electricity, water, make_reading) -> None:
        readings = [make_reading(electricity, "100", "150"), make_reading(water, "20", "22")]
        bills = ItemizedStrategy().compose(build_details(readings, config))

        assert [b.aggregation_key for b in bills] == [itemized_key(r.id) for r in readings]
        assert ItemizedStrategy().compose([]) == []

    def test_round_trip_total_independent_of_mode(
        self, config, electricity, water, make_reading
    ) -> None:
        """Aggregated and itemized composition reproduce the same total."""
        drafts = build_details(
            [
                make_reading(electricity, "100", "150"),
                make_reading(water, "20", "22.5"),
                make_reading(electricity, "150", "153.3"),
            ],
            config,
        )
        aggregated = sum(b.amount for b in AggregatedStrategy().compose(drafts))
        itemized = sum(b.amount for b in ItemizedStrategy().compose(drafts))
        assert aggregated == itemized == sum(d.amount for d in drafts)


class TestGenerateUtilityBills:
    """Tests for generate_utility_bills."""

    def test_single_electricity_reading(
        self, test_db, contract, config, electricity, make_reading
    ) -> None:
        """A 100 -> 150 reading at 0.6 creates an aggregated bill with its breakdown."""
        reading = make_reading(electricity, "100", "150")
        result = _generate(test_db, contract, [reading], config)

        assert len(result.created_bills) == 1
        assert result.summary.success == 1
        bill = test_db.query(Bill).one()
        assert bill.period == "2024-01"
        assert bill.type == BillType.UTILITIES
        assert bill.status == BillStatus.PENDING
        assert bill.amount == Decimal("30.00")
        assert bill.pending_amount == Decimal("30.00")
        assert bill.received_amount == Decimal("0")
        assert bill.due_date == date(2024, 2, 10)
        assert BILL_NUMBER_PATTERN.match(bill.bill_number)

        metadata = bill.get_metadata()
        charge = metadata.utility_details.breakdown.electricity
        assert charge.usage == Decimal("50")
        assert charge.unit_price == Decimal("0.6")
        assert charge.amount == Decimal("30.00")
        assert metadata.reading_ids == [reading.id]

        test_db.refresh(reading)
        assert reading.is_billed is True

    def test_later_reading_appends_to_existing_bill(
        self, test_db, contract, config, electricity, water, make_reading
    ) -> None:
        """A water reading for the same period is appended, not billed separately."""
        first = make_reading(electricity, "100", "150")
        _generate(test_db, contract, [first], config)

        second = make_reading(water, "20", "22")
        result = _generate(test_db, contract, [second], config)

        assert result.created_bills == []
        assert len(result.updated_bills) == 1
        bills = test_db.query(Bill).filter(Bill.type == BillType.UTILITIES).all()
        assert len(bills) == 1
        bill = bills[0]
        test_db.refresh(bill)
        assert bill.amount == Decimal("37.00")
        assert bill.pending_amount == Decimal("37.00")
        assert len(bill.details) == 2
        metadata = bill.get_metadata()
        assert metadata.reading_ids == sorted([first.id, second.id])
        assert metadata.utility_details.breakdown.water.amount == Decimal("7.00")

    def test_append_keeps_received_amount(
        self, test_db, contract, config, electricity, water, make_reading
    ) -> None:
        _generate(test_db, contract, [make_reading(electricity, "100", "150")], config)
        bill = test_db.query(Bill).one()
        bill.received_amount = Decimal("10.00")
        bill.pending_amount = Decimal("20.00")
        bill.status = BillStatus.PAID
        test_db.commit()

        _generate(test_db, contract, [make_reading(water, "20", "22")], config)
        test_db.refresh(bill)
        assert bill.amount == Decimal("37.00")
        assert bill.received_amount == Decimal("10.00")
        assert bill.pending_amount == Decimal("27.00")

    def test_regenerating_billed_readings_is_idempotent(
        self, test_db, contract, config, electricity, water, make_reading
    ) -> None:
        readings = [make_reading(electricity, "100", "150"), make_reading(water, "20", "22")]
        _generate(test_db, contract, readings, config)

        second = _generate(test_db, contract, readings, config)
        assert second.created_bills == []
        assert second.updated_bills == []
        assert second.summary.success == 0
        assert second.summary.warnings == 2
        assert second.errors == []
        assert test_db.query(Bill).count() == 1
        assert len(test_db.query(Bill).one().details) == 2

    def test_itemized_creates_bill_per_reading(
        self, test_db, contract, config, electricity, water, make_reading
    ) -> None:
        readings = [make_reading(electricity, "100", "150"), make_reading(water, "20", "22")]
        result = _generate(test_db, contract, readings, config, AggregationMode.ITEMIZED)

        assert len(result.created_bills) == 2
        bills = test_db.query(Bill).order_by(Bill.id).all()
        assert [b.meter_reading_id for b in bills] == [r.id for r in readings]
        assert [b.amount for b in bills] == [Decimal("30.00"), Decimal("7.00")]

    def test_separate_periods_get_separate_bills(
        self, test_db, contract, config, electricity, make_reading
    ) -> None:
        readings = [
            make_reading(electricity, "100", "150", period="2024-01"),
            make_reading(electricity, "150", "160", period="2024-02"),
        ]
        result = _generate(test_db, contract, readings, config)
        assert sorted(b.period for b in result.created_bills) == ["2024-01", "2024-02"]

    def test_bad_items_do_not_fail_the_batch(
        self, test_db, room, contract, config, electricity, make_reading
    ) -> None:
        other = Contract(contract_number="CT-OTHER", renter_name="Sam Roe", room_id=room.id)
        test_db.add(other)
        test_db.commit()
        foreign = make_reading(electricity, "0", "10", contract_id=other.id)
        good = make_reading(electricity, "100", "150")

        result = generate_utility_bills(
            test_db,
            BillGenerationRequest(contract_id=contract.id, reading_ids=[foreign.id, good.id, 9999]),
            config,
        )

        assert len(result.created_bills) == 1
        assert {e.reading_id for e in result.errors} == {foreign.id, 9999}
        assert result.summary.success == 1
        assert result.summary.errors == 2

    def test_completed_bill_is_not_appended_to(
        self, test_db, contract, config, electricity, water, make_reading
    ) -> None:
        _generate(test_db, contract, [make_reading(electricity, "100", "150")], config)
        bill = test_db.query(Bill).one()
        bill.status = BillStatus.COMPLETED
        test_db.commit()

        late = make_reading(water, "20", "22")
        result = _generate(test_db, contract, [late], config)

        assert [e.reading_id for e in result.errors] == [late.id]
        test_db.refresh(late)
        assert late.is_billed is False
        test_db.refresh(bill)
        assert bill.amount == Decimal("30.00")

    def test_unknown_contract(self, test_db, config) -> None:
        with pytest.raises(ContractNotFoundError):
            generate_utility_bills(
                test_db, BillGenerationRequest(contract_id=404, reading_ids=[1]), config
            )

    def test_empty_aggregated_request(self, test_db, contract, config) -> None:
        with pytest.raises(EmptyReadingSetError):
            generate_utility_bills(
                test_db, BillGenerationRequest(contract_id=contract.id, reading_ids=[]), config
            )


class TestConcurrentCreation:
    """Two sessions on one file database racing to create the same bill."""

    @pytest.fixture
    def session_factory(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'billing.db'}")
        Base.metadata.create_all(bind=engine)
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
        engine.dispose()

    @pytest.fixture
    def test_db(self, session_factory):
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def test_collision_appends_to_competing_bill(
        self, test_db, session_factory, contract, config, electricity, make_reading, monkeypatch
    ) -> None:
        reading = make_reading(electricity, "100", "150")
        contract_id = contract.id
        competing_ids: list[int] = []

        def number_after_competing_insert(bill_type):
            # Runs after this session found no bill; the other one wins the insert
            if not competing_ids:
                with session_factory() as other:
                    competing = Bill(
                        bill_number=generate_bill_number(bill_type),
                        contract_id=contract_id,
                        type=BillType.UTILITIES,
                        status=BillStatus.PENDING,
                        period="2024-01",
                        aggregation_key=AGGREGATED_KEY,
                        amount=Decimal("0"),
                        received_amount=Decimal("0"),
                        pending_amount=Decimal("0"),
                        overpaid_amount=Decimal("0"),
                        due_date=date(2024, 2, 10),
                    )
                    other.add(competing)
                    other.commit()
                    competing_ids.append(competing.id)
            return generate_bill_number(bill_type)

        monkeypatch.setattr(aggregation, "generate_bill_number", number_after_competing_insert)

        result = _generate(test_db, contract, [reading], config)

        assert result.errors == []
        assert result.created_bills == []
        assert [b.id for b in result.updated_bills] == competing_ids
        bill = test_db.query(Bill).one()
        assert bill.amount == Decimal("30.00")
        assert bill.pending_amount == Decimal("30.00")
        assert [d.meter_reading_id for d in bill.details] == [reading.id]
        test_db.refresh(reading)
        assert reading.is_billed is True
