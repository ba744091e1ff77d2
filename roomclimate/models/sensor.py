"""
Sensor model - one payload channel of a device
"""

from enum import Enum
from sqlalchemy import String, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from roomclimate.core.database import Base


class SensorType(str, Enum):
    """What a channel measures."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESENCE = "presence"
    CO2 = "co2"
    LIGHT = "light"
    NOISE = "noise"
    UNKNOWN = "unknown"


class Sensor(Base):
    """Channel of a device. Type and unit follow the latest decoded uplink."""

    __tablename__ = "sensors"
    __table_args__ = (
        UniqueConstraint("dev_eui", "channel", name="uq_sensors_dev_eui_channel"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    dev_eui: Mapped[str] = mapped_column(String(32), ForeignKey("devices.dev_eui"), index=True)
    channel: Mapped[int] = mapped_column(Integer)

    type: Mapped[str] = mapped_column(String(20), default=SensorType.UNKNOWN.value)
    unit: Mapped[str] = mapped_column(String(16), default="")

    def __repr__(self) -> str:
        return f"<Sensor {self.dev_eui}/{self.channel} {self.type} [{self.unit}]>"
