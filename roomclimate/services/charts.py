"""
Charts Service - time-bucketed aggregates and raw readings for the dashboard

Every query is limited to the retention window, the same horizon the
Retention Enforcer keeps.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roomclimate.core.timeutils import as_utc, isoformat, utc_now
from roomclimate.models.device import Device
from roomclimate.models.measurement import Measurement
from roomclimate.models.room import Room
from roomclimate.models.sensor import Sensor

BUCKET_FORMAT = "%Y-%m-%d %H:%M:%S"


class ChartReading(NamedTuple):
    device_name: str | None
    dev_eui: str
    sensor_type: str
    unit: str
    value: float
    measured_at: datetime


def is_plausible(sensor_type: str, value: float, outlier_ceilings: Mapping[str, float]) -> bool:
    """False for readings above the ceiling configured for their type (sensor fault codes)."""
    ceiling = outlier_ceilings.get(sensor_type)
    return ceiling is None or value <= ceiling


def bucket_start(ts: datetime, bucket_minutes: int) -> datetime:
    """Floor a timestamp to its bucket. 60 minutes gives the calendar hour (UTC)."""
    ts = as_utc(ts)
    size = bucket_minutes * 60
    epoch = int(ts.timestamp())
    return datetime.fromtimestamp(epoch - epoch % size, tz=timezone.utc)


def aggregate(
    readings: Iterable[ChartReading],
    bucket_minutes: int = 60,
    outlier_ceilings: Mapping[str, float] | None = None,
) -> list[dict]:
    """
    Group readings per (device, sensor type, bucket) and summarize each group.

    Implausible readings are dropped before grouping. Rows come back ordered
    by bucket, then device name.
    """
    outlier_ceilings = outlier_ceilings or {}
    groups: dict[tuple, dict] = {}

    for r in readings:
        if not is_plausible(r.sensor_type, r.value, outlier_ceilings):
            continue

        hour = bucket_start(r.measured_at, bucket_minutes)
        key = (r.dev_eui, r.sensor_type, hour)
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                "device_name": r.device_name,
                "dev_eui": r.dev_eui,
                "sensor_type": r.sensor_type,
                "unit": r.unit,
                "hour": hour,
                "values": [],
            }
        group["values"].append(r.value)

    rows = []
    for group in groups.values():
        values = group.pop("values")
        rows.append({
            **group,
            "avg_value": sum(values) / len(values),
            "min_value": min(values),
            "max_value": max(values),
            "count": len(values),
        })

    rows.sort(key=lambda row: (row["hour"], row["device_name"] or "", row["dev_eui"], row["sensor_type"]))
    for row in rows:
        row["hour"] = row["hour"].strftime(BUCKET_FORMAT)
    return rows


async def chart(
    session: AsyncSession,
    retention: timedelta,
    room_id: int | None = None,
    sensor_type: str | None = None,
    bucket_minutes: int = 60,
    outlier_ceilings: Mapping[str, float] | None = None,
) -> list[dict]:
    """Aggregated chart series for the dashboard, optionally per room and/or sensor type."""
    since = utc_now() - retention

    query = (
        select(
            Device.name,
            Device.dev_eui,
            Sensor.type,
            Sensor.unit,
            Measurement.value,
            Measurement.measured_at,
        )
        .join(Sensor, (Measurement.dev_eui == Sensor.dev_eui) & (Measurement.channel == Sensor.channel))
        .join(Device, Measurement.dev_eui == Device.dev_eui)
        .where(Measurement.measured_at >= since)
    )
    if room_id is not None:
        query = query.where(Device.room_id == room_id)
    if sensor_type:
        query = query.where(Sensor.type == sensor_type)

    result = await session.execute(query)
    readings = (ChartReading(*row) for row in result.all())
    return aggregate(readings, bucket_minutes, outlier_ceilings)


async def list_measurements(
    session: AsyncSession,
    retention: timedelta,
    room_id: int | None = None,
    sensor_type: str | None = None,
    limit: int = 100,
) -> list[dict]:
    """Raw readings, newest first."""
    since = utc_now() - retention

    query = (
        select(
            Measurement.id,
            Measurement.value,
            Measurement.measured_at,
            Sensor.type,
            Sensor.unit,
            Device.dev_eui,
            Device.name,
            Room.name,
            Room.room_id,
        )
        .join(Sensor, (Measurement.dev_eui == Sensor.dev_eui) & (Measurement.channel == Sensor.channel))
        .join(Device, Measurement.dev_eui == Device.dev_eui)
        .outerjoin(Room, Device.room_id == Room.room_id)
        .where(Measurement.measured_at >= since)
    )
    if room_id is not None:
        query = query.where(Room.room_id == room_id)
    if sensor_type:
        query = query.where(Sensor.type == sensor_type)

    query = query.order_by(Measurement.measured_at.desc(), Measurement.id.desc()).limit(limit)

    result = await session.execute(query)
    return [
        {
            "id": m_id,
            "value": value,
            "measured_at": isoformat(measured_at),
            "sensor_type": s_type,
            "unit": unit,
            "dev_eui": dev_eui,
            "device_name": device_name,
            "room_name": room_name,
            "room_id": r_id,
        }
        for m_id, value, measured_at, s_type, unit, dev_eui, device_name, room_name, r_id in result.all()
    ]
