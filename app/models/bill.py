"""Bill database model."""

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.errors import MetadataParseError
from app.models.enums import BillStatus, BillType
from app.schemas.billing import BillMetadata

if TYPE_CHECKING:
    from app.models.bill_detail import BillDetail
    from app.models.contract import Contract
    from app.models.meter_reading import MeterReading

AGGREGATED_KEY = "AGGREGATED"
DEFAULT_KEY = "DEFAULT"


def itemized_key(reading_id: int) -> str:
    """Aggregation key of the itemized bill for one reading."""
    return f"READING:{reading_id}"


class Bill(Base):
    """Bill owed under a contract.

    Money invariant: ``amount == received_amount + pending_amount``. Payment
    beyond the amount due is held in ``overpaid_amount``.

    ``(contract_id, period, type, aggregation_key)`` is unique so that
    concurrent generators create at most one aggregated bill per period.
    """

    __tablename__ = "bills"
    __table_args__ = (
        UniqueConstraint(
            "contract_id",
            "period",
            "type",
            "aggregation_key",
            name="uq_bill_contract_period_type_key",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    bill_number: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    type: Mapped[BillType] = mapped_column(String(20), index=True)
    status: Mapped[BillStatus] = mapped_column(String(20), default=BillStatus.PENDING, index=True)
    period: Mapped[str] = mapped_column(String(20), index=True)
    aggregation_key: Mapped[str] = mapped_column(String(40), default=DEFAULT_KEY)

    # Money
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    received_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0")
    )
    pending_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0")
    )
    overpaid_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0")
    )

    # Payment bookkeeping
    due_date: Mapped[date | None] = mapped_column(nullable=True, index=True)
    paid_date: Mapped[date | None] = mapped_column(nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # JSON: utility breakdown and contributing reading ids (see BillMetadata)
    metadata_json: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)

    # Foreign keys
    contract_id: Mapped[int] = mapped_column(ForeignKey("contracts.id"), index=True)
    meter_reading_id: Mapped[int | None] = mapped_column(
        ForeignKey("meter_readings.id"),
        nullable=True,
    )  # Direct link used by bills created before bill details existed

    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    # Relationships
    contract: Mapped["Contract"] = relationship(back_populates="bills")
    meter_reading: Mapped["MeterReading | None"] = relationship()
    details: Mapped[list["BillDetail"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillDetail.id",
    )

    def get_metadata(self) -> BillMetadata | None:
        """Parse the stored metadata JSON.

        Raises MetadataParseError when the blob is not valid JSON or does
        not match the expected shape.
        """
        if not self.metadata_json:
            return None
        try:
            raw = json.loads(self.metadata_json)
            return BillMetadata.model_validate(raw)
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            raise MetadataParseError(
                f"Metadata of bill {self.bill_number} cannot be parsed: {exc}"
            ) from exc

    def set_metadata(self, metadata: BillMetadata) -> None:
        """Serialize metadata to JSON for storage."""
        self.metadata_json = metadata.model_dump_json(by_alias=True, exclude_none=True)
