"""
Room model - a physical space that devices can be assigned to
"""

from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from roomclimate.core.database import Base
from roomclimate.core.timeutils import utc_now


class Room(Base):
    """Room on the dashboard (e.g. "Lokaal 2.14")."""

    __tablename__ = "rooms"

    room_id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now
    )

    def __repr__(self) -> str:
        return f"<Room {self.room_id} ({self.name})>"
