"""Seed script to populate the database with sample data."""

from datetime import date
from decimal import Decimal

from app.core.database import Base, SessionLocal, engine
from app.main import app  # noqa: F401  (registers every model)
from app.models.contract import Contract
from app.models.enums import AggregationMode, MeterType
from app.models.meter import Meter
from app.models.meter_reading import MeterReading
from app.models.room import Room
from app.schemas.bill import BillGenerationRequest
from app.services.aggregation import generate_utility_bills
from app.services.billing_config import BillingConfig
from app.services.usage import compute_usage


def seed_database() -> None:
    """Seed the database with sample data."""
    Base.metadata.create_all(bind=engine)
    config = BillingConfig.from_settings()

    with SessionLocal() as db:
        # Check if data already exists
        if db.query(Room).first():
            print("Database already has data. Skipping seed.")
            return

        print("Seeding database...")

        room = Room(room_number="101", building_name="Sunrise Apartments")
        db.add(room)
        db.flush()

        contract = Contract(
            contract_number="CT-2024-0101",
            renter_name="Alex Doe",
            room_id=room.id,
        )
        db.add(contract)
        db.flush()

        print(f"Created room {room.building_name}-{room.room_number} and contract {contract.id}")

        electricity = Meter(
            room_id=room.id,
            meter_number="E-101",
            display_name="Electricity-101",
            meter_type=MeterType.ELECTRICITY,
            unit="kWh",
            unit_price=Decimal("0.6"),
        )
        water = Meter(
            room_id=room.id,
            meter_number="W-101",
            display_name="Water-101",
            meter_type=MeterType.COLD_WATER,
            unit="m³",
            unit_price=Decimal("3.5"),
        )
        db.add_all([electricity, water])
        db.flush()

        print("Created 2 meters: Electricity-101, Water-101")

        reading_ids = []
        for meter, previous, current in (
            (electricity, Decimal("100"), Decimal("150")),
            (water, Decimal("20"), Decimal("22")),
        ):
            result = compute_usage(previous, current, meter.unit_price)
            reading = MeterReading(
                meter_id=meter.id,
                contract_id=contract.id,
                previous_reading=previous,
                current_reading=current,
                usage=result.usage,
                unit_price=meter.unit_price,
                amount=result.amount,
                reading_date=date(2024, 1, 31),
                period="2024-01",
            )
            db.add(reading)
            db.flush()
            reading_ids.append(reading.id)

        db.commit()
        print(f"Created {len(reading_ids)} readings for period 2024-01")

        generation = generate_utility_bills(
            db,
            BillGenerationRequest(
                contract_id=contract.id,
                reading_ids=reading_ids,
                aggregation_mode=AggregationMode.AGGREGATED,
            ),
            config,
        )
        print(generation.message)
        for bill in generation.created_bills:
            print(f"Bill {bill.bill_number}: {bill.amount} due {bill.due_date}")

        print("\nSeed data created successfully!")


if __name__ == "__main__":
    seed_database()
