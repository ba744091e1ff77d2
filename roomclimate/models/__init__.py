# Database models
from roomclimate.models.device import Device
from roomclimate.models.measurement import Measurement
from roomclimate.models.room import Room
from roomclimate.models.sensor import Sensor, SensorType

__all__ = ["Device", "Measurement", "Room", "Sensor", "SensorType"]
