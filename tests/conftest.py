"""Shared fixtures: in-memory database, API client and model factories."""

from collections.abc import Callable
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.main import app
from app.models.bill import AGGREGATED_KEY, Bill
from app.models.bill_detail import BillDetail
from app.models.contract import Contract
from app.models.enums import BillStatus, BillType, MeterType
from app.models.meter import Meter
from app.models.meter_reading import MeterReading
from app.models.room import Room
from app.services.aggregation import generate_bill_number
from app.services.billing_config import BillingConfig
from app.services.usage import compute_usage


@pytest.fixture
def test_db():
    """Create an in-memory test database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(test_db):
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def config() -> BillingConfig:
    """Billing config with the stock default prices."""
    return BillingConfig()


@pytest.fixture
def room(test_db: Session) -> Room:
    room = Room(room_number="101", building_name="Sunrise Apartments")
    test_db.add(room)
    test_db.commit()
    test_db.refresh(room)
    return room


@pytest.fixture
def contract(test_db: Session, room: Room) -> Contract:
    contract = Contract(contract_number="CT-0101", renter_name="Alex Doe", room_id=room.id)
    test_db.add(contract)
    test_db.commit()
    test_db.refresh(contract)
    return contract


@pytest.fixture
def make_meter(test_db: Session, room: Room) -> Callable[..., Meter]:
    """Factory for meters in the shared room."""

    def _make(
        meter_type: MeterType = MeterType.ELECTRICITY,
        display_name: str = "Electricity-101",
        unit_price: str | None = "0.6",
        unit: str = "kWh",
    ) -> Meter:
        meter = Meter(
            room_id=room.id,
            meter_number=display_name.upper(),
            display_name=display_name,
            meter_type=meter_type,
            unit=unit,
            unit_price=Decimal(unit_price) if unit_price else None,
        )
        test_db.add(meter)
        test_db.commit()
        test_db.refresh(meter)
        return meter

    return _make


@pytest.fixture
def make_reading(test_db: Session, contract: Contract) -> Callable[..., MeterReading]:
    """Factory for readings; usage and amount are computed from the meter price."""

    def _make(
        meter: Meter,
        previous: str,
        current: str,
        period: str = "2024-01",
        reading_date: date = date(2024, 1, 31),
        is_billed: bool = False,
        contract_id: int | None = -1,
    ) -> MeterReading:
        unit_price = meter.unit_price or Decimal("0.6")
        result = compute_usage(Decimal(previous), Decimal(current), unit_price)
        reading = MeterReading(
            meter_id=meter.id,
            contract_id=contract.id if contract_id == -1 else contract_id,
            previous_reading=Decimal(previous),
            current_reading=Decimal(current),
            usage=result.usage,
            unit_price=unit_price,
            amount=result.amount,
            reading_date=reading_date,
            period=period,
            is_billed=is_billed,
        )
        test_db.add(reading)
        test_db.commit()
        test_db.refresh(reading)
        return reading

    return _make


@pytest.fixture
def make_bill(test_db: Session, contract: Contract) -> Callable[..., Bill]:
    """Factory for utility bills with hand-written money fields and details.

    Used to set up drifted data that the billing path would never produce.
    """

    def _make(
        amount: str,
        received: str = "0",
        pending: str | None = None,
        status: BillStatus = BillStatus.PENDING,
        details: list[tuple[MeterReading | None, str]] | None = None,
        period: str = "2024-01",
        aggregation_key: str = AGGREGATED_KEY,
        meter_reading_id: int | None = None,
        metadata_json: str | None = None,
    ) -> Bill:
        pending_value = Decimal(amount) - Decimal(received) if pending is None else Decimal(pending)
        bill = Bill(
            bill_number=generate_bill_number(BillType.UTILITIES),
            contract_id=contract.id,
            type=BillType.UTILITIES,
            status=status,
            period=period,
            aggregation_key=aggregation_key,
            amount=Decimal(amount),
            received_amount=Decimal(received),
            pending_amount=pending_value,
            overpaid_amount=Decimal("0"),
            due_date=date(2024, 2, 10),
            meter_reading_id=meter_reading_id,
            metadata_json=metadata_json,
        )
        for reading, detail_amount in details or []:
            bill.details.append(
                BillDetail(
                    meter_reading_id=reading.id if reading else None,
                    meter_id=reading.meter_id if reading else None,
                    meter_type=reading.meter.meter_type if reading else MeterType.ELECTRICITY,
                    meter_name=reading.meter.display_name if reading else "Electricity",
                    unit=reading.meter.unit if reading else "kWh",
                    usage=reading.usage if reading else Decimal("0"),
                    unit_price=reading.unit_price if reading else Decimal("0.6"),
                    amount=Decimal(detail_amount),
                    previous_reading=reading.previous_reading if reading else None,
                    current_reading=reading.current_reading if reading else None,
                    reading_date=reading.reading_date if reading else None,
                )
            )
        test_db.add(bill)
        test_db.commit()
        test_db.refresh(bill)
        return bill

    return _make
