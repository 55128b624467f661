"""MeterReading database model - the source of every utility charge."""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.bill_detail import BillDetail
    from app.models.contract import Contract
    from app.models.meter import Meter


class MeterReading(Base):
    """One measurement event for a meter over a billing period.

    Once ``is_billed`` is set the reading is immutable and undeletable.
    """

    __tablename__ = "meter_readings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Reading values (Decimal for precision)
    previous_reading: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3))
    current_reading: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3))
    usage: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(precision=10, scale=4))
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))

    reading_date: Mapped[date] = mapped_column(index=True)
    period: Mapped[str] = mapped_column(String(20), index=True)  # e.g. "2024-01"
    is_billed: Mapped[bool] = mapped_column(default=False, index=True)

    # Foreign keys
    meter_id: Mapped[int] = mapped_column(ForeignKey("meters.id"), index=True)
    contract_id: Mapped[int | None] = mapped_column(
        ForeignKey("contracts.id"),
        nullable=True,
        index=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    # Relationships
    meter: Mapped["Meter"] = relationship(back_populates="readings")
    contract: Mapped["Contract | None"] = relationship(back_populates="readings")
    bill_details: Mapped[list["BillDetail"]] = relationship(back_populates="meter_reading")
