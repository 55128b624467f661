"""MeterReading service for business logic - the source of every utility charge.

Recording a reading and billing it are two phases: the reading is
committed first, and a failure while generating its bill is logged and
reported without losing the reading.
"""

import logging

from sqlalchemy.orm import Session

from app.core.errors import (
    AppError,
    BusinessRuleViolation,
    ContractNotFoundError,
    MeterReadingNotFoundError,
    ReadingAlreadyBilledError,
)
from app.models.bill import Bill
from app.models.contract import Contract
from app.models.meter_reading import MeterReading
from app.schemas.bill import BillGenerationRequest
from app.schemas.meter_reading import (
    MeterReadingCreate,
    MeterReadingCreateResult,
    MeterReadingResponse,
    MeterReadingUpdate,
)
from app.services.aggregation import generate_utility_bills
from app.services.bill_query import find_bills_for_reading
from app.services.billing_config import BillingConfig
from app.services.meter import get_meter
from app.services.usage import compute_usage, resolve_unit_price

logger = logging.getLogger(__name__)


def _apply_values(reading: MeterReading, config: BillingConfig) -> None:
    """Recompute usage and amount from the reading's own values."""
    unit_price, _ = resolve_unit_price(reading.meter, config, reading=reading)
    result = compute_usage(reading.previous_reading, reading.current_reading, unit_price)
    reading.unit_price = unit_price
    reading.usage = result.usage
    reading.amount = result.amount


def create_reading(
    db: Session,
    reading_data: MeterReadingCreate,
    config: BillingConfig,
) -> MeterReadingCreateResult:
    """Record a reading, then optionally bill it."""
    meter = get_meter(db, reading_data.meter_id)
    if not meter.is_active:
        raise BusinessRuleViolation(
            f"Meter {meter.id} has been removed",
            "meter_inactive",
            suggested_fix="Record readings on the replacement meter",
        )
    if reading_data.contract_id is not None:
        contract = db.query(Contract).filter(Contract.id == reading_data.contract_id).first()
        if not contract:
            raise ContractNotFoundError(reading_data.contract_id)

    db_reading = MeterReading(
        meter=meter,
        contract_id=reading_data.contract_id,
        previous_reading=reading_data.previous_reading,
        current_reading=reading_data.current_reading,
        unit_price=reading_data.unit_price,
        reading_date=reading_data.reading_date,
        period=reading_data.period or reading_data.reading_date.strftime("%Y-%m"),
        is_billed=False,
    )
    _apply_values(db_reading, config)
    db.add(db_reading)
    db.commit()
    db.refresh(db_reading)
    logger.info(
        "Recorded reading %s for meter %s: usage=%s amount=%s",
        db_reading.id,
        meter.id,
        db_reading.usage,
        db_reading.amount,
    )

    result = MeterReadingCreateResult(reading=MeterReadingResponse.model_validate(db_reading))
    if not reading_data.generate_bill:
        return result

    try:
        result.billing = generate_utility_bills(
            db,
            BillGenerationRequest(
                contract_id=reading_data.contract_id,
                reading_ids=[db_reading.id],
            ),
            config,
        )
    except AppError as exc:
        db.rollback()
        logger.warning("Bill generation for reading %s failed: %s", db_reading.id, exc.message)
        result.warnings.append(f"Reading saved, but bill generation failed: {exc.message}")
        return result

    db.refresh(db_reading)
    result.reading = MeterReadingResponse.model_validate(db_reading)
    result.warnings.extend(e.message for e in result.billing.errors)
    return result


def get_reading(db: Session, reading_id: int) -> MeterReading:
    """Get a reading by ID."""
    reading = db.query(MeterReading).filter(MeterReading.id == reading_id).first()
    if not reading:
        raise MeterReadingNotFoundError(reading_id)
    return reading


def _get_unbilled_for_update(db: Session, reading_id: int) -> MeterReading:
    reading = (
        db.query(MeterReading).filter(MeterReading.id == reading_id).with_for_update().first()
    )
    if not reading:
        raise MeterReadingNotFoundError(reading_id)
    if reading.is_billed:
        raise ReadingAlreadyBilledError(reading_id)
    return reading


def update_reading(
    db: Session,
    reading_id: int,
    reading_data: MeterReadingUpdate,
    config: BillingConfig,
) -> MeterReading:
    """Correct an unbilled reading and recompute its usage and amount."""
    reading = _get_unbilled_for_update(db, reading_id)

    update_data = reading_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(reading, field, value)
    _apply_values(reading, config)

    db.commit()
    db.refresh(reading)
    return reading


def delete_reading(db: Session, reading_id: int) -> None:
    """Delete an unbilled reading."""
    reading = _get_unbilled_for_update(db, reading_id)
    if find_bills_for_reading(db, reading_id):
        raise ReadingAlreadyBilledError(reading_id)
    db.delete(reading)
    db.commit()
    logger.info("Deleted reading %s", reading_id)


def get_related_bills(db: Session, reading_id: int) -> list[Bill]:
    """Bills that reference a reading."""
    get_reading(db, reading_id)
    return find_bills_for_reading(db, reading_id)


def get_readings_history(
    db: Session,
    meter_id: int,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[MeterReading], int]:
    """Get reading history for a specific meter with pagination."""
    query = db.query(MeterReading).filter(MeterReading.meter_id == meter_id)

    total = query.count()
    readings = query.order_by(MeterReading.reading_date.desc()).offset(offset).limit(limit).all()

    return readings, total
