"""
Pytest configuration and fixtures for Room Climate Monitor tests.

The PostgreSQL store is replaced by a throwaway SQLite file per test.
"""

import sys
from datetime import timedelta
from pathlib import Path

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from roomclimate.api.main import create_app  # noqa: E402
from roomclimate.core.config import Settings  # noqa: E402
from roomclimate.core.database import Base, build_session_maker  # noqa: E402
from roomclimate.core.timeutils import utc_now  # noqa: E402
from roomclimate.models import Device, Measurement, Room, Sensor  # noqa: E402
from roomclimate.services.retention import RetentionEnforcer  # noqa: E402


@pytest.fixture
def test_settings():
    """Defaults, but never touching a real database."""
    return Settings(database_url="sqlite+aiosqlite://", create_tables=False)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'climate.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def retention(session_maker):
    enforcer = RetentionEnforcer(session_maker, timedelta(days=4))
    yield enforcer
    await enforcer.drain()


@pytest.fixture
async def app(session_maker, test_settings):
    app = create_app(session_maker=session_maker, settings=test_settings)
    yield app
    # Webhook calls leave cleanups running in the background
    await app.state.retention.drain()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_uplink():
    """Build a TTN-style uplink payload."""

    def _make(dev_eui="70B3D57ED0012345", decoded=None, device_id=None, received_at=None):
        ids = {"dev_eui": dev_eui}
        if device_id is not None:
            ids["device_id"] = device_id
        payload = {
            "end_device_ids": ids,
            "uplink_message": {"decoded_payload": decoded if decoded is not None else {"temperature_2": 21.5}},
        }
        if received_at is not None:
            payload["received_at"] = received_at
        return payload

    return _make


@pytest.fixture
def seed(session):
    """Insert rows directly, bypassing the ingestion pipeline."""

    class Seeder:
        async def room(self, name):
            room = Room(name=name, created_at=utc_now())
            session.add(room)
            await session.commit()
            return room

        async def device(self, dev_eui, name=None, room=None, last_seen_at=None):
            device = Device(
                dev_eui=dev_eui,
                name=name or f"Device {dev_eui[-4:]}",
                room_id=room.room_id if room else None,
                last_seen_at=last_seen_at,
                created_at=utc_now(),
            )
            session.add(device)
            await session.commit()
            return device

        async def sensor(self, dev_eui, channel, type, unit):
            sensor = Sensor(dev_eui=dev_eui, channel=channel, type=type, unit=unit)
            session.add(sensor)
            await session.commit()
            return sensor

        async def measurement(self, dev_eui, channel, value, measured_at):
            measurement = Measurement(dev_eui=dev_eui, channel=channel, value=value, measured_at=measured_at)
            session.add(measurement)
            await session.commit()
            return measurement

    return Seeder()
