"""Room database model."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.contract import Contract
    from app.models.meter import Meter


class Room(Base):
    """Rentable room that meters are installed in."""

    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    room_number: Mapped[str] = mapped_column(String(20), index=True)
    building_name: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))

    # Relationships
    meters: Mapped[list["Meter"]] = relationship(back_populates="room")
    contracts: Mapped[list["Contract"]] = relationship(back_populates="room")
