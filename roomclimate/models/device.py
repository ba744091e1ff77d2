"""
Device model - a LoRaWAN sensor node identified by its DevEUI
"""

from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from roomclimate.core.database import Base
from roomclimate.core.timeutils import utc_now


class Device(Base):
    """Physical device, created on its first uplink."""

    __tablename__ = "devices"

    dev_eui: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Rooms are deleted without touching their devices
    room_id: Mapped[int | None] = mapped_column(
        ForeignKey("rooms.room_id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Status
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now
    )

    def __repr__(self) -> str:
        return f"<Device {self.dev_eui} ({self.name or 'unnamed'})>"
