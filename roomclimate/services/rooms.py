"""
Rooms Service - room CRUD and the nested room/device/sensor views
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roomclimate.core.errors import ConflictError, NotFoundError, ValidationError
from roomclimate.core.timeutils import as_utc, isoformat, utc_now
from roomclimate.models.device import Device
from roomclimate.models.measurement import Measurement
from roomclimate.models.room import Room
from roomclimate.models.sensor import Sensor, SensorType

logger = logging.getLogger(__name__)

# Shown on the room cards of the overview
OVERVIEW_TYPES = (SensorType.TEMPERATURE, SensorType.HUMIDITY)


def is_online(last_seen_at: datetime | None, now: datetime, window: timedelta) -> bool:
    """A device is online if it was heard from less than ``window`` ago."""
    if last_seen_at is None:
        return False
    return now - as_utc(last_seen_at) < window


def _clean_name(name: str | None) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Room name is required")
    return name.strip()


async def _get_room(session: AsyncSession, room_id: int) -> Room:
    room = await session.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found")
    return room


# ==================== CRUD ====================

async def create_room(session: AsyncSession, name: str | None) -> Room:
    """Create a room with a unique, non-empty name."""
    room = Room(name=_clean_name(name), created_at=utc_now())
    session.add(room)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Room name already exists")

    logger.info(f"🏠 Created room {room.room_id}: {room.name}")
    return room


async def rename_room(session: AsyncSession, room_id: int, name: str | None) -> Room:
    new_name = _clean_name(name)
    room = await _get_room(session, room_id)
    room.name = new_name
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Room name already exists")
    return room


async def delete_room(session: AsyncSession, room_id: int):
    """Delete a room. Its devices stay, with their room cleared."""
    room = await _get_room(session, room_id)

    await session.execute(
        update(Device).where(Device.room_id == room_id).values(room_id=None)
    )
    await session.delete(room)
    await session.commit()
    logger.info(f"🗑️ Deleted room {room_id}")


# ==================== READ MODEL ====================

async def _latest_for_room(session: AsyncSession, room_id: int, sensor_type: SensorType) -> dict | None:
    """Newest reading of one type across all devices in the room."""
    result = await session.execute(
        select(Measurement.value, Measurement.measured_at)
        .join(Sensor, (Measurement.dev_eui == Sensor.dev_eui) & (Measurement.channel == Sensor.channel))
        .join(Device, Measurement.dev_eui == Device.dev_eui)
        .where(Device.room_id == room_id, Sensor.type == sensor_type.value)
        .order_by(Measurement.measured_at.desc(), Measurement.id.desc())
        .limit(1)
    )
    row = result.first()
    if row is None:
        return None
    return {"value": row.value, "measured_at": isoformat(row.measured_at)}


async def get_rooms_overview(session: AsyncSession, liveness: timedelta) -> list[dict]:
    """All rooms with device count, latest temperature/humidity and online status."""
    result = await session.execute(
        select(
            Room,
            func.count(Device.dev_eui),
            func.max(Device.last_seen_at),
        )
        .outerjoin(Device, Device.room_id == Room.room_id)
        .group_by(Room.room_id)
        .order_by(Room.name)
    )

    now = utc_now()
    rooms = []
    for room, device_count, last_seen in result.all():
        latest = {}
        for sensor_type in OVERVIEW_TYPES:
            reading = await _latest_for_room(session, room.room_id, sensor_type)
            if reading is not None:
                latest[sensor_type.value] = reading

        rooms.append({
            "room_id": room.room_id,
            "name": room.name,
            "created_at": isoformat(room.created_at),
            "device_count": device_count,
            "latest": latest,
            # Any device heard from recently keeps the room online
            "is_online": device_count > 0 and is_online(last_seen, now, liveness),
        })

    return rooms


async def _sensors_with_latest(session: AsyncSession, dev_eui: str) -> list[dict]:
    sensors = (await session.execute(
        select(Sensor).where(Sensor.dev_eui == dev_eui).order_by(Sensor.channel)
    )).scalars().all()

    items = []
    for sensor in sensors:
        latest = (await session.execute(
            select(Measurement.value, Measurement.measured_at)
            .where(Measurement.dev_eui == sensor.dev_eui, Measurement.channel == sensor.channel)
            .order_by(Measurement.measured_at.desc(), Measurement.id.desc())
            .limit(1)
        )).first()

        items.append({
            "id": sensor.id,
            "dev_eui": sensor.dev_eui,
            "channel": sensor.channel,
            "type": sensor.type,
            "unit": sensor.unit,
            "latest_value": latest.value if latest else None,
            "latest_measured_at": isoformat(latest.measured_at) if latest else None,
        })
    return items


async def get_room_detail(session: AsyncSession, room_id: int, liveness: timedelta) -> dict:
    """
    Room with its devices, each with sensors and their latest reading.

    Raises:
        NotFoundError: room does not exist
    """
    room = await _get_room(session, room_id)

    devices = (await session.execute(
        select(Device).where(Device.room_id == room_id).order_by(Device.name, Device.dev_eui)
    )).scalars().all()

    now = utc_now()
    device_items = []
    for device in devices:
        device_items.append({
            "dev_eui": device.dev_eui,
            "name": device.name,
            "room_id": device.room_id,
            "last_seen_at": isoformat(device.last_seen_at),
            "is_online": is_online(device.last_seen_at, now, liveness),
            "sensors": await _sensors_with_latest(session, device.dev_eui),
        })

    return {
        "room_id": room.room_id,
        "name": room.name,
        "created_at": isoformat(room.created_at),
        "devices": device_items,
    }
