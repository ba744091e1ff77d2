"""
Devices Service - device listing, room assignment and sensor types in use
"""

import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roomclimate.core.errors import NotFoundError
from roomclimate.core.timeutils import isoformat, utc_now
from roomclimate.models.device import Device
from roomclimate.models.room import Room
from roomclimate.models.sensor import Sensor, SensorType
from roomclimate.services.rooms import is_online

logger = logging.getLogger(__name__)


async def list_devices(session: AsyncSession, liveness: timedelta, unassigned: bool = False) -> list[dict]:
    """All devices with their room name; only room-less ones when ``unassigned``."""
    query = (
        select(Device, Room.name)
        .outerjoin(Room, Device.room_id == Room.room_id)
        .order_by(Device.name, Device.dev_eui)
    )
    if unassigned:
        query = query.where(Device.room_id.is_(None))

    now = utc_now()
    result = await session.execute(query)
    return [
        {
            "dev_eui": device.dev_eui,
            "name": device.name,
            "room_id": device.room_id,
            "room_name": room_name,
            "last_seen_at": isoformat(device.last_seen_at),
            "is_online": is_online(device.last_seen_at, now, liveness),
        }
        for device, room_name in result.all()
    ]


async def assign_device_room(session: AsyncSession, dev_eui: str, room_id: int | None) -> Device:
    """
    Move a device into a room, or out of any room when ``room_id`` is None.

    Raises:
        NotFoundError: device or room does not exist
    """
    device = await session.get(Device, dev_eui)
    if device is None:
        raise NotFoundError("Device not found")

    if room_id is not None and await session.get(Room, room_id) is None:
        raise NotFoundError("Room not found")

    device.room_id = room_id
    await session.commit()

    if room_id is None:
        logger.info(f"📤 Device {dev_eui} unassigned")
    else:
        logger.info(f"📥 Device {dev_eui} assigned to room {room_id}")
    return device


async def list_sensor_types(session: AsyncSession) -> list[dict]:
    """Distinct (type, unit) pairs currently known, without 'unknown'."""
    result = await session.execute(
        select(Sensor.type, Sensor.unit)
        .distinct()
        .where(Sensor.type.is_not(None), Sensor.type != SensorType.UNKNOWN.value)
        .order_by(Sensor.type, Sensor.unit)
    )
    return [{"type": s_type, "unit": unit} for s_type, unit in result.all()]
