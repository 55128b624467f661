"""Bill Pydantic schemas for request/response validation."""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from app.models.enums import AggregationMode, BillStatus, BillType, MeterType, PriceSource

BILL_NUMBER_PATTERN = re.compile(r"^BILL[A-Z0-9]{6,12}$")


class BillDetailResponse(BaseModel):
    """Schema for a persisted bill line item."""

    id: int
    bill_id: int
    meter_reading_id: int | None
    meter_type: MeterType
    meter_name: str
    unit: str
    usage: Decimal
    unit_price: Decimal
    amount: Decimal
    previous_reading: Decimal | None
    current_reading: Decimal | None
    reading_date: date | None
    price_source: PriceSource
    created_at: datetime

    model_config = {"from_attributes": True}


class BillResponse(BaseModel):
    """Schema for bill response."""

    id: int
    bill_number: str
    contract_id: int
    type: BillType
    status: BillStatus
    period: str
    amount: Decimal
    received_amount: Decimal
    pending_amount: Decimal
    overpaid_amount: Decimal
    due_date: date | None
    paid_date: date | None
    payment_method: str | None
    completed_at: datetime | None
    remarks: str | None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("bill_number")
    @classmethod
    def validate_bill_number(cls, v: str) -> str:
        """Bill numbers follow BILL + 6-12 uppercase alphanumerics."""
        if not BILL_NUMBER_PATTERN.match(v):
            raise ValueError(f"Malformed bill number: {v}")
        return v


class PaymentCreate(BaseModel):
    """Schema for recording a payment against a bill."""

    received_amount_delta: Decimal = Field(..., description="Amount received in this payment")
    payment_method: str | None = None
    paid_date: date | None = None
    allow_overpayment: bool = False


class BillGenerationRequest(BaseModel):
    """Schema for generating utility bills from meter readings."""

    contract_id: int
    reading_ids: list[int]
    aggregation_mode: AggregationMode | None = None
    price_overrides: dict[int, Decimal] = Field(
        default_factory=dict,
        description="Manual unit price per reading id",
    )
    include_zero_usage: bool = True

    @field_validator("price_overrides")
    @classmethod
    def validate_overrides(cls, v: dict[int, Decimal]) -> dict[int, Decimal]:
        """Override prices must be positive."""
        for reading_id, price in v.items():
            if price <= 0:
                raise ValueError(f"Override price for reading {reading_id} must be positive")
        return v


class GenerationMessage(BaseModel):
    """A per-item warning or error from bill generation."""

    reading_id: int | None = None
    period: str | None = None
    message: str


class GenerationSummary(BaseModel):
    """Counts for a bill generation batch."""

    success: int = 0
    warnings: int = 0
    errors: int = 0


class BillGenerationResult(BaseModel):
    """Result of a bill generation batch."""

    created_bills: list[BillResponse] = Field(default_factory=list)
    updated_bills: list[BillResponse] = Field(default_factory=list)
    warnings: list[GenerationMessage] = Field(default_factory=list)
    errors: list[GenerationMessage] = Field(default_factory=list)
    summary: GenerationSummary = Field(default_factory=GenerationSummary)
    message: str = ""


class BillDetailItem(BaseModel):
    """Normalized line item returned by the bill details read path."""

    id: str
    bill_id: int
    meter_reading_id: int | None
    meter_type: MeterType
    meter_name: str
    unit: str
    usage: Decimal
    unit_price: Decimal
    amount: Decimal
    previous_reading: Decimal | None
    current_reading: Decimal | None
    reading_date: date | None
    price_source: PriceSource


DetailSource = Literal["bill_details", "meter_reading", "related_readings", "empty"]


class BillInfo(BaseModel):
    """Short bill summary attached to a details response."""

    id: int
    bill_number: str
    type: BillType
    amount: Decimal
    status: BillStatus


class BillDetailsMetadata(BaseModel):
    """Describes where the returned details came from."""

    source: DetailSource
    is_legacy: bool
    total_amount: Decimal
    bill_info: BillInfo


class BillDetailsResponse(BaseModel):
    """Bill details in a single shape for modern and legacy bills."""

    data: list[BillDetailItem]
    metadata: BillDetailsMetadata


class OverdueRefreshResult(BaseModel):
    """Counts from the time-driven status refresh."""

    marked_overdue: int
    restored_pending: int
    message: str
