"""
Room Climate Monitor - Telemetry Ingestion
Receives network-server uplinks (webhook) and saves them to the database
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, NamedTuple

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roomclimate.core.errors import ValidationError
from roomclimate.core.timeutils import parse_timestamp, utc_now
from roomclimate.models.device import Device
from roomclimate.models.measurement import Measurement
from roomclimate.models.sensor import Sensor
from roomclimate.services.decoder import DecodedReading, decode_channels
from roomclimate.services.retention import RetentionEnforcer

logger = logging.getLogger(__name__)


class Uplink(NamedTuple):
    """The parts of an uplink payload the pipeline uses."""

    dev_eui: str
    device_id: str | None
    received_at: datetime
    decoded_payload: Mapping[str, Any]


class IngestResult(NamedTuple):
    saved_count: int
    dev_eui: str


def default_device_name(dev_eui: str) -> str:
    """Name for devices that arrive without a device_id."""
    return f"Device {dev_eui[-4:]}"


def parse_uplink(payload: Any) -> Uplink:
    """
    Validate the webhook payload and pull out the fields we need.

    Raises:
        ValidationError: dev_eui or decoded_payload missing, or received_at invalid
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be a JSON object")

    ids = payload.get("end_device_ids")
    ids = ids if isinstance(ids, Mapping) else {}
    dev_eui = ids.get("dev_eui")
    if not isinstance(dev_eui, str) or not dev_eui.strip():
        raise ValidationError("Missing dev_eui")

    uplink_message = payload.get("uplink_message")
    uplink_message = uplink_message if isinstance(uplink_message, Mapping) else {}
    decoded_payload = uplink_message.get("decoded_payload")
    if not isinstance(decoded_payload, Mapping):
        raise ValidationError("Missing decoded_payload")

    device_id = ids.get("device_id")
    if not isinstance(device_id, str) or not device_id.strip():
        device_id = None

    received_at = payload.get("received_at")
    if received_at is None:
        received = utc_now()
    else:
        try:
            received = parse_timestamp(received_at)
        except (TypeError, ValueError, AttributeError):
            raise ValidationError("Invalid received_at")

    return Uplink(dev_eui.strip(), device_id, received, decoded_payload)


def _insert_for(session: AsyncSession, table):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if session.bind.dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


class TelemetryIngester:
    """Processes webhook uplinks from sensor devices."""

    def __init__(self, retention: RetentionEnforcer | None = None):
        self.retention = retention

    async def ingest(self, session: AsyncSession, payload: Any) -> IngestResult:
        """Validate, store device/sensors/measurements. Returns how many readings were saved."""
        uplink = parse_uplink(payload)

        # Keep the table bounded, but never make the network server wait for it
        if self.retention is not None:
            self.retention.launch()

        logger.info(f"📩 Uplink from {uplink.dev_eui}: {dict(uplink.decoded_payload)}")

        await self._upsert_device(session, uplink)
        await session.commit()

        saved_count = 0
        for reading in decode_channels(uplink.decoded_payload):
            try:
                await self._save_reading(session, uplink, reading)
                await session.commit()
            except (IntegrityError, DataError) as e:
                await session.rollback()
                logger.warning(
                    f"⚠️ Skipped {reading.sensor_type.value} on channel {reading.channel} "
                    f"for {uplink.dev_eui}: {e}"
                )
                continue

            saved_count += 1
            logger.debug(f"💾 Saved {reading.sensor_type.value} = {reading.value} {reading.unit}")

        logger.info(f"💾 Saved {saved_count} readings for {uplink.dev_eui}")
        return IngestResult(saved_count, uplink.dev_eui)

    async def _upsert_device(self, session: AsyncSession, uplink: Uplink):
        """Create the device on first contact, then move last_seen_at to this uplink."""
        device = await session.get(Device, uplink.dev_eui)

        if not device:
            # A concurrent uplink may create it first; that one wins
            stmt = _insert_for(session, Device).values(
                dev_eui=uplink.dev_eui,
                name=uplink.device_id or default_device_name(uplink.dev_eui),
                room_id=None,
                created_at=utc_now(),
            ).on_conflict_do_nothing(index_elements=["dev_eui"])
            await session.execute(stmt)
            logger.info(f"🆕 Created new device: {uplink.dev_eui}")

        await session.execute(
            update(Device)
            .where(Device.dev_eui == uplink.dev_eui)
            .values(last_seen_at=uplink.received_at)
        )

    async def _save_reading(self, session: AsyncSession, uplink: Uplink, reading: DecodedReading):
        """Upsert the sensor for this channel, then append the measurement."""
        insert = _insert_for(session, Sensor)
        stmt = insert.values(
            dev_eui=uplink.dev_eui,
            channel=reading.channel,
            type=reading.sensor_type.value,
            unit=reading.unit,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["dev_eui", "channel"],
            set_={"type": stmt.excluded["type"], "unit": stmt.excluded["unit"]},
        )
        await session.execute(stmt)

        session.add(Measurement(
            dev_eui=uplink.dev_eui,
            channel=reading.channel,
            value=float(reading.value),
            measured_at=uplink.received_at,
        ))
        await session.flush()
