"""Contract database model."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.bill import Bill
    from app.models.meter_reading import MeterReading
    from app.models.room import Room


class Contract(Base):
    """Rental contract binding a renter to a room; bills belong to it."""

    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    contract_number: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    renter_name: Mapped[str] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))

    # Foreign keys
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), index=True)

    # Relationships
    room: Mapped["Room"] = relationship(back_populates="contracts")
    bills: Mapped[list["Bill"]] = relationship(back_populates="contract")
    readings: Mapped[list["MeterReading"]] = relationship(back_populates="contract")
