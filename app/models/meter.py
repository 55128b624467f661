"""Meter database model."""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.enums import MeterType

if TYPE_CHECKING:
    from app.models.meter_reading import MeterReading
    from app.models.room import Room


class Meter(Base):
    """Utility meter installed in a room.

    A meter with readings is never hard-deleted; removal flips ``is_active``
    so readings and bill details stay resolvable by join.
    """

    __tablename__ = "meters"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    meter_number: Mapped[str] = mapped_column(String(50), index=True)
    display_name: Mapped[str] = mapped_column(String(100))
    meter_type: Mapped[MeterType] = mapped_column(String(20), index=True)
    unit: Mapped[str] = mapped_column(String(20), default="kWh")
    unit_price: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=10, scale=4),
        nullable=True,
    )  # Falls back to the configured default when unset

    # Foreign keys
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), index=True)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    # Relationships
    room: Mapped["Room"] = relationship(back_populates="meters")
    readings: Mapped[list["MeterReading"]] = relationship(back_populates="meter")
