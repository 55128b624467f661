"""Meter Pydantic schemas for request/response validation."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.enums import MeterType, RemovalOutcome


class MeterCreate(BaseModel):
    """Schema for installing a meter in a room."""

    room_id: int
    meter_number: str = Field(..., min_length=1, max_length=50)
    display_name: str = Field(..., min_length=1, max_length=100)
    meter_type: MeterType
    unit: str | None = None
    unit_price: Decimal | None = None

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v: Decimal | None) -> Decimal | None:
        """Unit price, when set, must be positive."""
        if v is not None and v <= 0:
            raise ValueError("Unit price must be positive")
        return v


class MeterResponse(BaseModel):
    """Schema for meter response."""

    id: int
    room_id: int
    meter_number: str
    display_name: str
    meter_type: MeterType
    unit: str
    unit_price: Decimal | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MeterRemovalResult(BaseModel):
    """Which removal path was taken for a meter."""

    meter_id: int
    outcome: RemovalOutcome
    reading_count: int
    message: str


class RoomInfo(BaseModel):
    room_number: str
    building_name: str


class MeterHistoryStats(BaseModel):
    """Reading totals for one meter, active or removed."""

    meter_id: int
    meter_number: str
    display_name: str
    meter_type: MeterType
    is_active: bool
    total_readings: int
    total_usage: Decimal
    total_amount: Decimal
    first_reading_date: date | None
    last_reading_date: date | None
    average_monthly_usage: Decimal
    room_info: RoomInfo


class MeterTypeSummary(BaseModel):
    """Reading totals for one meter type."""

    total_meters: int = 0
    active_meters: int = 0
    removed_meters: int = 0
    total_usage: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    average_usage_per_meter: Decimal = Decimal("0")


class MeterIntegrityReport(BaseModel):
    """Whether a meter's history is still reachable."""

    meter_id: int
    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
