"""
Measurement model - a single reading of one sensor channel
"""

from datetime import datetime
from sqlalchemy import String, Integer, Float, DateTime, ForeignKeyConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from roomclimate.core.database import Base


class Measurement(Base):
    """Append-only time series row, pruned after the retention window."""

    __tablename__ = "measurements"
    __table_args__ = (
        ForeignKeyConstraint(
            ["dev_eui", "channel"],
            ["sensors.dev_eui", "sensors.channel"],
        ),
        Index("ix_measurements_dev_eui_channel_measured_at", "dev_eui", "channel", "measured_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    dev_eui: Mapped[str] = mapped_column(String(32))
    channel: Mapped[int] = mapped_column(Integer)

    value: Mapped[float] = mapped_column(Float)

    measured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    def __repr__(self) -> str:
        return f"<Measurement {self.dev_eui}/{self.channel}={self.value} @ {self.measured_at}>"
