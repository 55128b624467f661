"""Meter reading API routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.schemas.bill import BillResponse
from app.schemas.meter_reading import (
    MeterReadingCreate,
    MeterReadingCreateResult,
    MeterReadingResponse,
    MeterReadingUpdate,
)
from app.services import meter_reading as reading_service
from app.services.billing_config import BillingConfig, get_billing_config

router = APIRouter(prefix="/meter-readings", tags=["readings"])


@router.post(
    "/",
    response_model=MeterReadingCreateResult,
    status_code=status.HTTP_201_CREATED,
)
def create_reading(
    data: MeterReadingCreate,
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> MeterReadingCreateResult:
    """Record a meter reading.

    With ``generate_bill`` the reading is billed right after it is saved.
    A billing failure is returned as a warning; the reading is kept.
    """
    return reading_service.create_reading(db, data, config)


@router.get(
    "/{reading_id}",
    response_model=MeterReadingResponse,
)
def get_reading(
    reading_id: int,
    db: Session = Depends(get_db),
) -> MeterReadingResponse:
    """Get a meter reading by ID."""
    reading = reading_service.get_reading(db, reading_id)
    return MeterReadingResponse.model_validate(reading)


@router.patch(
    "/{reading_id}",
    response_model=MeterReadingResponse,
)
def update_reading(
    reading_id: int,
    data: MeterReadingUpdate,
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> MeterReadingResponse:
    """Correct an unbilled meter reading."""
    reading = reading_service.update_reading(db, reading_id, data, config)
    return MeterReadingResponse.model_validate(reading)


@router.delete(
    "/{reading_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_reading(
    reading_id: int,
    db: Session = Depends(get_db),
) -> None:
    """Delete an unbilled meter reading."""
    reading_service.delete_reading(db, reading_id)


@router.get(
    "/{reading_id}/related-bills",
    response_model=list[BillResponse],
)
def get_related_bills(
    reading_id: int,
    db: Session = Depends(get_db),
) -> list[BillResponse]:
    """Bills that reference this reading."""
    bills = reading_service.get_related_bills(db, reading_id)
    return [BillResponse.model_validate(b) for b in bills]
