"""BillDetail database model - one line item per meter reading."""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.enums import MeterType, PriceSource

if TYPE_CHECKING:
    from app.models.bill import Bill
    from app.models.meter_reading import MeterReading


class BillDetail(Base):
    """Bill line item mirroring the reading it was built from."""

    __tablename__ = "bill_details"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    meter_type: Mapped[MeterType] = mapped_column(String(20))
    meter_name: Mapped[str] = mapped_column(String(100))
    unit: Mapped[str] = mapped_column(String(20), default="kWh")
    usage: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(precision=10, scale=4))
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    previous_reading: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=3), nullable=True
    )
    current_reading: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=3), nullable=True
    )
    reading_date: Mapped[date | None] = mapped_column(nullable=True)
    price_source: Mapped[PriceSource] = mapped_column(
        String(20), default=PriceSource.METER_CONFIG
    )

    # Foreign keys
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id"), index=True)
    meter_reading_id: Mapped[int | None] = mapped_column(
        ForeignKey("meter_readings.id"),
        nullable=True,
        index=True,
    )  # Null only for details rebuilt from a metadata breakdown
    meter_id: Mapped[int | None] = mapped_column(ForeignKey("meters.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))

    # Relationships
    bill: Mapped["Bill"] = relationship(back_populates="details")
    meter_reading: Mapped["MeterReading | None"] = relationship(back_populates="bill_details")
