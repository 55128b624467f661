"""Meter API routes."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.enums import MeterType
from app.schemas.meter import (
    MeterCreate,
    MeterHistoryStats,
    MeterIntegrityReport,
    MeterRemovalResult,
    MeterResponse,
    MeterTypeSummary,
)
from app.schemas.meter_reading import MeterReadingResponse
from app.services import meter as meter_service
from app.services import meter_reading as reading_service

router = APIRouter(prefix="/meters", tags=["meters"])


@router.post(
    "/",
    response_model=MeterResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_meter(
    data: MeterCreate,
    db: Session = Depends(get_db),
) -> MeterResponse:
    """Install a meter in a room."""
    meter = meter_service.create_meter(db, data)
    return MeterResponse.model_validate(meter)


@router.get(
    "/history-stats",
    response_model=list[MeterHistoryStats],
)
def get_history_stats(
    include_inactive: bool = Query(True, description="Include removed meters"),
    meter_type: MeterType | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    db: Session = Depends(get_db),
) -> list[MeterHistoryStats]:
    """Per-meter reading totals, removed meters included."""
    return meter_service.get_meter_history_stats(
        db,
        include_inactive=include_inactive,
        meter_type=meter_type,
        start_date=start_date,
        end_date=end_date,
    )


@router.get(
    "/history-summary",
    response_model=dict[MeterType, MeterTypeSummary],
)
def get_history_summary(
    include_inactive: bool = Query(True, description="Include removed meters"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    db: Session = Depends(get_db),
) -> dict[MeterType, MeterTypeSummary]:
    """Reading totals per meter type."""
    return meter_service.get_meter_type_summary(
        db,
        include_inactive=include_inactive,
        start_date=start_date,
        end_date=end_date,
    )


@router.get(
    "/{meter_id}",
    response_model=MeterResponse,
)
def get_meter(
    meter_id: int,
    db: Session = Depends(get_db),
) -> MeterResponse:
    """Get a meter by ID."""
    meter = meter_service.get_meter(db, meter_id)
    return MeterResponse.model_validate(meter)


@router.get(
    "/{meter_id}/readings",
    response_model=list[MeterReadingResponse],
)
def get_meter_readings(
    meter_id: int,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list[MeterReadingResponse]:
    """Reading history of a meter, newest first."""
    meter_service.get_meter(db, meter_id)
    readings, _ = reading_service.get_readings_history(db, meter_id, limit, offset)
    return [MeterReadingResponse.model_validate(r) for r in readings]


@router.get(
    "/{meter_id}/integrity",
    response_model=MeterIntegrityReport,
)
def check_meter_integrity(
    meter_id: int,
    db: Session = Depends(get_db),
) -> MeterIntegrityReport:
    """Check that a meter's history is still reachable."""
    return meter_service.validate_meter_data_integrity(db, meter_id)


@router.delete(
    "/{meter_id}",
    response_model=MeterRemovalResult,
)
def remove_meter(
    meter_id: int,
    db: Session = Depends(get_db),
) -> MeterRemovalResult:
    """Remove a meter.

    A meter with readings is deactivated so its history is kept; a meter
    without readings is deleted. The response says which happened.
    """
    return meter_service.remove_meter(db, meter_id)
