"""
Room Climate Monitor - API Server

Provides endpoints for:
- Network-server webhook (uplink ingestion)
- Rooms and device assignment for the dashboard
- Raw and aggregated measurements for charts
- Manual retention cleanup and health check
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import Body, Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roomclimate.core.config import Settings, settings as default_settings
from roomclimate.core.database import Base, build_engine, build_session_maker, get_db
from roomclimate.core.errors import RoomClimateError, StoreError
from roomclimate.core.timeutils import utc_now
from roomclimate.services import charts, devices, rooms
from roomclimate.services.ingestion import TelemetryIngester
from roomclimate.services.retention import RetentionEnforcer

# Setup logging
logging.basicConfig(level=default_settings.log_level)
logger = logging.getLogger(__name__)

# rooms.room_id is a 32-bit integer column
MAX_ROOM_ID = 2**31 - 1


# ==================== REQUEST BODIES ====================

class RoomBody(BaseModel):
    name: str | None = None


class DeviceRoomBody(BaseModel):
    room_id: int | None = Field(None, ge=1, le=MAX_ROOM_ID)


# ==================== DEPENDENCIES ====================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_retention(request: Request) -> RetentionEnforcer:
    return request.app.state.retention


def get_ingester(request: Request) -> TelemetryIngester:
    return request.app.state.ingester


# ==================== LIFECYCLE ====================

async def _check_connection(session_maker: async_sessionmaker[AsyncSession]):
    try:
        async with session_maker() as session:
            await session.execute(text("SELECT 1"))
        logger.info("✅ Database connected successfully")
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"❌ Database connection failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.settings
    engine = None

    if app.state.session_maker is None:
        engine = build_engine(config)
        _wire_store(app, build_session_maker(engine))

    logger.info("🚀 Starting Room Climate Monitor API...")
    await _check_connection(app.state.session_maker)

    if config.create_tables:
        try:
            bind = app.state.session_maker.kw["bind"]
            async with bind.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"❌ Could not create tables: {e}")

    retention: RetentionEnforcer = app.state.retention
    retention.launch()

    periodic = None
    if config.cleanup_interval_minutes > 0:
        periodic = asyncio.create_task(
            retention.run_periodic(timedelta(minutes=config.cleanup_interval_minutes))
        )

    try:
        yield
    finally:
        if periodic is not None:
            retention.stop()
            periodic.cancel()
        await retention.drain()
        if engine is not None:
            await engine.dispose()
        logger.info("⏹️ Room Climate Monitor API stopped")


def _wire_store(app: FastAPI, session_maker: async_sessionmaker[AsyncSession]):
    """Hand the session factory to every component that talks to the store."""
    app.state.session_maker = session_maker
    app.state.retention = RetentionEnforcer(session_maker, app.state.settings.retention_window)
    app.state.ingester = TelemetryIngester(app.state.retention)


# ==================== ERROR MAPPING ====================

async def _handle_app_error(request: Request, exc: RoomClimateError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def _handle_store_error(request: Request, exc: Exception):
    logger.exception(f"❌ Database error on {request.method} {request.url.path}", exc_info=exc)
    error = StoreError()
    return JSONResponse({"error": error.message}, status_code=error.status_code)


async def _handle_request_validation(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    return JSONResponse(
        {"error": "Invalid request", "fields": fields},
        status_code=400,
    )


# ==================== APP ====================

def create_app(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Build the API. Pass ``session_maker`` to run against an existing store;
    otherwise the engine is created from settings at startup.
    """
    app = FastAPI(
        title="Room Climate Monitor API",
        description="Sensor telemetry ingestion and room dashboard API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or default_settings
    app.state.session_maker = None
    if session_maker is not None:
        _wire_store(app, session_maker)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RoomClimateError, _handle_app_error)
    app.add_exception_handler(SQLAlchemyError, _handle_store_error)
    # Driver-level connection failures (refused, reset) arrive unwrapped
    app.add_exception_handler(OSError, _handle_store_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI):

    # ==================== ROOMS ====================

    @app.get("/api/rooms")
    async def list_rooms(
        db: AsyncSession = Depends(get_db),
        config: Settings = Depends(get_settings),
    ):
        """All rooms with device count, latest temperature/humidity and online status."""
        return await rooms.get_rooms_overview(db, config.liveness_window)

    @app.get("/api/rooms/{room_id}")
    async def get_room(
        room_id: int = Path(ge=1, le=MAX_ROOM_ID),
        db: AsyncSession = Depends(get_db),
        config: Settings = Depends(get_settings),
    ):
        """Room with its devices, sensors and latest values."""
        return await rooms.get_room_detail(db, room_id, config.liveness_window)

    @app.post("/api/rooms", status_code=201)
    async def create_room(body: RoomBody, db: AsyncSession = Depends(get_db)):
        room = await rooms.create_room(db, body.name)
        return {
            "room_id": room.room_id,
            "name": room.name,
            "message": "Room created successfully",
        }

    @app.put("/api/rooms/{room_id}")
    async def update_room(
        body: RoomBody,
        room_id: int = Path(ge=1, le=MAX_ROOM_ID),
        db: AsyncSession = Depends(get_db),
    ):
        await rooms.rename_room(db, room_id, body.name)
        return {"message": "Room updated successfully"}

    @app.delete("/api/rooms/{room_id}")
    async def delete_room(
        room_id: int = Path(ge=1, le=MAX_ROOM_ID),
        db: AsyncSession = Depends(get_db),
    ):
        """Delete a room; its devices become unassigned."""
        await rooms.delete_room(db, room_id)
        return {"message": "Room deleted successfully"}

    # ==================== DEVICES ====================

    @app.get("/api/devices")
    async def list_devices(
        unassigned: str | None = Query(None),
        db: AsyncSession = Depends(get_db),
        config: Settings = Depends(get_settings),
    ):
        """All devices; ?unassigned=1 for devices without a room."""
        only_unassigned = unassigned in ("1", "true")
        return await devices.list_devices(db, config.liveness_window, unassigned=only_unassigned)

    @app.put("/api/devices/{dev_eui}/room")
    async def assign_device(dev_eui: str, body: DeviceRoomBody, db: AsyncSession = Depends(get_db)):
        """Assign a device to a room, or unassign it with room_id=null."""
        device = await devices.assign_device_room(db, dev_eui, body.room_id)
        return {
            "message": "Device assigned to room" if device.room_id is not None else "Device unassigned from room",
            "dev_eui": device.dev_eui,
            "room_id": device.room_id,
        }

    # ==================== MEASUREMENTS ====================

    @app.get("/api/measurements")
    async def list_measurements(
        room_id: int | None = Query(None, ge=1, le=MAX_ROOM_ID),
        sensor_type: str | None = Query(None),
        limit: int = Query(100, ge=1, le=10000),
        db: AsyncSession = Depends(get_db),
        config: Settings = Depends(get_settings),
    ):
        """Raw readings within the retention window, newest first."""
        return await charts.list_measurements(
            db, config.retention_window, room_id=room_id, sensor_type=sensor_type, limit=limit
        )

    @app.get("/api/measurements/chart")
    async def chart_data(
        room_id: int | None = Query(None, ge=1, le=MAX_ROOM_ID),
        sensor_type: str | None = Query(None),
        bucket_minutes: int | None = Query(None, ge=1, le=1440),
        db: AsyncSession = Depends(get_db),
        config: Settings = Depends(get_settings),
    ):
        """Per-device aggregates per hour (or ``bucket_minutes``) for charts."""
        return await charts.chart(
            db,
            config.retention_window,
            room_id=room_id,
            sensor_type=sensor_type,
            bucket_minutes=bucket_minutes or config.chart_bucket_minutes,
            outlier_ceilings=config.outlier_ceilings,
        )

    @app.delete("/api/measurements/cleanup")
    async def cleanup_measurements(retention: RetentionEnforcer = Depends(get_retention)):
        """Delete readings older than the retention window now."""
        deleted = await retention.cleanup()
        return {
            "success": True,
            "message": "Cleanup completed",
            "deleted_rows": deleted,
        }

    @app.get("/api/sensor-types")
    async def sensor_types(db: AsyncSession = Depends(get_db)):
        return await devices.list_sensor_types(db)

    # ==================== WEBHOOK ====================

    @app.post("/api/webhook/ttn")
    async def ttn_webhook(
        payload: Any = Body(None),
        db: AsyncSession = Depends(get_db),
        ingester: TelemetryIngester = Depends(get_ingester),
    ):
        """Uplink webhook from The Things Network."""
        logger.info("📡 Webhook data received")
        result = await ingester.ingest(db, payload)
        return {
            "success": True,
            "message": f"Processed {result.saved_count} sensor values",
            "dev_eui": result.dev_eui,
            "saved_count": result.saved_count,
        }

    # ==================== HEALTH CHECK ====================

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "timestamp": utc_now().isoformat()}


app = create_app()


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=default_settings.port)
