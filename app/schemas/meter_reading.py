"""MeterReading Pydantic schemas for request/response validation."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.bill import BillGenerationResult

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class MeterReadingCreate(BaseModel):
    """Schema for recording a meter reading."""

    meter_id: int
    contract_id: int | None = None
    previous_reading: Decimal = Field(..., ge=0)
    current_reading: Decimal = Field(..., ge=0)
    unit_price: Decimal | None = Field(default=None, description="Defaults to the meter price")
    reading_date: date
    period: str | None = Field(default=None, pattern=PERIOD_PATTERN)
    generate_bill: bool = False

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v: Decimal | None) -> Decimal | None:
        """Unit price, when set, must be positive."""
        if v is not None and v <= 0:
            raise ValueError("Unit price must be positive")
        return v

    @model_validator(mode="after")
    def validate_readings(self) -> "MeterReadingCreate":
        """Meters do not roll over, so current must not be below previous."""
        if self.current_reading < self.previous_reading:
            raise ValueError("Current reading must not be lower than previous reading")
        if self.generate_bill and self.contract_id is None:
            raise ValueError("A contract is required to generate a bill")
        return self


class MeterReadingUpdate(BaseModel):
    """Schema for correcting an unbilled reading."""

    previous_reading: Decimal | None = Field(default=None, ge=0)
    current_reading: Decimal | None = Field(default=None, ge=0)
    unit_price: Decimal | None = None
    reading_date: date | None = None
    period: str | None = Field(default=None, pattern=PERIOD_PATTERN)

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v <= 0:
            raise ValueError("Unit price must be positive")
        return v


class MeterReadingResponse(BaseModel):
    """Schema for meter reading response."""

    id: int
    meter_id: int
    contract_id: int | None
    previous_reading: Decimal
    current_reading: Decimal
    usage: Decimal
    unit_price: Decimal
    amount: Decimal
    reading_date: date
    period: str
    is_billed: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MeterReadingCreateResult(BaseModel):
    """The stored reading plus the outcome of the optional billing phase."""

    reading: MeterReadingResponse
    billing: BillGenerationResult | None = None
    warnings: list[str] = Field(default_factory=list)
