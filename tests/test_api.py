"""
Tests for API endpoints.
"""

from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from roomclimate.core.timeutils import utc_now


class TestWebhookEndpoint:
    """Tests for POST /api/webhook/ttn."""

    async def test_ingests_uplink(self, client, make_uplink):
        """Test that a valid uplink is stored and acknowledged."""
        payload = make_uplink(decoded={"humidity_1": 55, "foo": "bar", "temperature_2": 21.5, "noise_9": 40})

        response = await client.post("/api/webhook/ttn", json=payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["dev_eui"] == "70B3D57ED0012345"
        assert body["saved_count"] == 2
        assert body["message"] == "Processed 2 sensor values"

    async def test_zero_fields_still_ok(self, client, make_uplink):
        """Test that nothing decodable is not an error."""
        response = await client.post("/api/webhook/ttn", json=make_uplink(decoded={"battery": 3.1}))

        assert response.status_code == 200
        assert response.json()["saved_count"] == 0

    async def test_oversized_integer_field_skipped(self, client, make_uplink):
        """Test that a value too large for a float is dropped and the rest saved."""
        payload = make_uplink(decoded={"humidity_1": 10**400, "temperature_2": 21.5})

        response = await client.post("/api/webhook/ttn", json=payload)

        assert response.status_code == 200
        assert response.json()["saved_count"] == 1

    async def test_missing_dev_eui(self, client, make_uplink):
        payload = make_uplink()
        payload["end_device_ids"] = {}

        response = await client.post("/api/webhook/ttn", json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing dev_eui"}

    async def test_missing_decoded_payload(self, client):
        response = await client.post(
            "/api/webhook/ttn",
            json={"end_device_ids": {"dev_eui": "70B3D57ED0012345"}, "uplink_message": {}},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Missing decoded_payload"}

    async def test_device_shows_up_unassigned(self, client, make_uplink):
        """Test that a new device appears in the unassigned device list."""
        await client.post("/api/webhook/ttn", json=make_uplink())

        response = await client.get("/api/devices", params={"unassigned": "1"})

        assert response.status_code == 200
        devices = response.json()
        assert [d["dev_eui"] for d in devices] == ["70B3D57ED0012345"]
        assert devices[0]["name"] == "Device 2345"
        assert devices[0]["is_online"] is True


class TestRoomEndpoints:
    """Tests for /api/rooms."""

    async def test_create_and_list(self, client):
        response = await client.post("/api/rooms", json={"name": "Kitchen"})

        assert response.status_code == 201
        assert response.json()["name"] == "Kitchen"
        room_id = response.json()["room_id"]

        rooms = (await client.get("/api/rooms")).json()
        assert rooms == [{
            "room_id": room_id,
            "name": "Kitchen",
            "created_at": rooms[0]["created_at"],
            "device_count": 0,
            "latest": {},
            "is_online": False,
        }]

    async def test_create_empty_name(self, client):
        response = await client.post("/api/rooms", json={"name": "  "})

        assert response.status_code == 400
        assert response.json() == {"error": "Room name is required"}

    async def test_create_duplicate(self, client):
        await client.post("/api/rooms", json={"name": "Kitchen"})

        response = await client.post("/api/rooms", json={"name": "Kitchen"})

        assert response.status_code == 400
        assert response.json() == {"error": "Room name already exists"}

    async def test_rename(self, client):
        room_id = (await client.post("/api/rooms", json={"name": "Kitchen"})).json()["room_id"]

        response = await client.put(f"/api/rooms/{room_id}", json={"name": "Dining"})

        assert response.status_code == 200
        assert (await client.get(f"/api/rooms/{room_id}")).json()["name"] == "Dining"

    async def test_rename_missing(self, client):
        response = await client.put("/api/rooms/999", json={"name": "Dining"})

        assert response.status_code == 404

    async def test_detail_missing(self, client):
        response = await client.get("/api/rooms/999")

        assert response.status_code == 404
        assert response.json() == {"error": "Room not found"}

    async def test_non_numeric_id(self, client):
        """Test that malformed path parameters are a 400, not a 422."""
        response = await client.get("/api/rooms/kitchen")

        assert response.status_code == 400

    async def test_delete_detaches_devices(self, client, make_uplink):
        """Test that devices survive their room being deleted."""
        room_id = (await client.post("/api/rooms", json={"name": "Kitchen"})).json()["room_id"]
        for dev_eui in ("70B3D57ED0000001", "70B3D57ED0000002"):
            await client.post("/api/webhook/ttn", json=make_uplink(dev_eui=dev_eui))
            await client.put(f"/api/devices/{dev_eui}/room", json={"room_id": room_id})

        response = await client.delete(f"/api/rooms/{room_id}")

        assert response.status_code == 200
        devices = (await client.get("/api/devices")).json()
        assert len(devices) == 2
        assert all(d["room_id"] is None for d in devices)

    async def test_room_id_out_of_range(self, client):
        """Test that ids beyond the integer column are rejected before the store."""
        too_big = 2**31

        assert (await client.get(f"/api/rooms/{too_big}")).status_code == 400
        assert (await client.put(f"/api/rooms/{too_big}", json={"name": "Dining"})).status_code == 400
        assert (await client.delete(f"/api/rooms/{too_big}")).status_code == 400
        assert (await client.get("/api/measurements", params={"room_id": too_big})).status_code == 400

    async def test_delete_missing(self, client):
        response = await client.delete("/api/rooms/999")

        assert response.status_code == 404


class TestDeviceEndpoints:
    """Tests for /api/devices."""

    async def test_assign_and_detail(self, client, make_uplink):
        """Test assigning a device and reading it back through the room detail."""
        room_id = (await client.post("/api/rooms", json={"name": "Kitchen"})).json()["room_id"]
        await client.post("/api/webhook/ttn", json=make_uplink(decoded={"temperature_2": 21.5, "humidity_1": 40}))

        response = await client.put("/api/devices/70B3D57ED0012345/room", json={"room_id": room_id})

        assert response.status_code == 200
        assert response.json() == {
            "message": "Device assigned to room",
            "dev_eui": "70B3D57ED0012345",
            "room_id": room_id,
        }

        detail = (await client.get(f"/api/rooms/{room_id}")).json()
        sensors = detail["devices"][0]["sensors"]
        assert [(s["type"], s["latest_value"]) for s in sensors] == [("humidity", 40.0), ("temperature", 21.5)]

    async def test_unassign(self, client, make_uplink):
        await client.post("/api/webhook/ttn", json=make_uplink())

        response = await client.put("/api/devices/70B3D57ED0012345/room", json={"room_id": None})

        assert response.status_code == 200
        assert response.json()["message"] == "Device unassigned from room"
        assert response.json()["room_id"] is None

    async def test_unknown_device(self, client):
        response = await client.put("/api/devices/NOPE/room", json={"room_id": None})

        assert response.status_code == 404
        assert response.json() == {"error": "Device not found"}

    async def test_unknown_room(self, client, make_uplink):
        await client.post("/api/webhook/ttn", json=make_uplink())

        response = await client.put("/api/devices/70B3D57ED0012345/room", json={"room_id": 999})

        assert response.status_code == 404
        assert response.json() == {"error": "Room not found"}

    async def test_assign_room_id_out_of_range(self, client, make_uplink):
        await client.post("/api/webhook/ttn", json=make_uplink())

        response = await client.put("/api/devices/70B3D57ED0012345/room", json={"room_id": 2**31})

        assert response.status_code == 400


class TestMeasurementEndpoints:
    """Tests for /api/measurements and friends."""

    async def test_list_and_chart(self, client, make_uplink):
        received = (utc_now() - timedelta(hours=1)).isoformat()
        for value in (10, 20, 30):
            await client.post("/api/webhook/ttn", json=make_uplink(decoded={"temperature_2": value}, received_at=received))

        listed = (await client.get("/api/measurements", params={"limit": 2})).json()
        assert len(listed) == 2

        chart = (await client.get("/api/measurements/chart", params={"sensor_type": "temperature"})).json()
        assert len(chart) == 1
        assert (chart[0]["avg_value"], chart[0]["min_value"], chart[0]["max_value"], chart[0]["count"]) == (20, 10, 30, 3)

    async def test_chart_excludes_co2_fault_values(self, client, make_uplink):
        """Test the default CO2 ceiling is applied by the chart endpoint."""
        received = (utc_now() - timedelta(hours=1)).isoformat()
        await client.post("/api/webhook/ttn", json=make_uplink(decoded={"co2_4": 650}, received_at=received))
        await client.post("/api/webhook/ttn", json=make_uplink(decoded={"co2_4": 32768}, received_at=received))

        chart = (await client.get("/api/measurements/chart", params={"sensor_type": "co2"})).json()

        assert [(r["max_value"], r["count"]) for r in chart] == [(650, 1)]

    async def test_sensor_types(self, client, make_uplink):
        await client.post("/api/webhook/ttn", json=make_uplink(decoded={"temperature_2": 20, "co2_4": 500}))

        response = await client.get("/api/sensor-types")

        assert response.json() == [{"type": "co2", "unit": "ppm"}, {"type": "temperature", "unit": "°C"}]

    async def test_cleanup_endpoint(self, client, seed):
        """Test manual cleanup, and that it is idempotent."""
        await seed.device("70B3D57ED0012345")
        await seed.sensor("70B3D57ED0012345", 2, "temperature", "°C")
        await seed.measurement("70B3D57ED0012345", 2, 18.0, utc_now() - timedelta(days=6))
        await seed.measurement("70B3D57ED0012345", 2, 21.0, utc_now())

        first = (await client.delete("/api/measurements/cleanup")).json()
        second = (await client.delete("/api/measurements/cleanup")).json()

        assert first == {"success": True, "message": "Cleanup completed", "deleted_rows": 1}
        assert second["deleted_rows"] == 0

    async def test_store_error_is_generic(self, client):
        """Test that store failures give a generic 500 without details."""
        with patch(
            "roomclimate.services.devices.list_sensor_types",
            side_effect=OperationalError("SELECT", {}, Exception("password=secret")),
        ):
            response = await client.get("/api/sensor-types")

        assert response.status_code == 500
        assert response.json() == {"error": "Database error"}

    async def test_lost_connection_is_json(self, client):
        """Test that driver connection failures also give the JSON 500 body."""
        with patch(
            "roomclimate.services.devices.list_sensor_types",
            side_effect=ConnectionRefusedError(111, "Connect call failed"),
        ):
            response = await client.get("/api/sensor-types")

        assert response.status_code == 500
        assert response.json() == {"error": "Database error"}


class TestHealthEndpoint:
    """Tests for /api/health."""

    async def test_health_response_structure(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "timestamp" in response.json()
