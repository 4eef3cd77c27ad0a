"""
Tests for the local HTTP API

The app is built with a fake backend transport and without opening the
serial port.
"""
import pytest
from fastapi.testclient import TestClient

from bzpark.config import Settings
from bzpark.main import create_app


def make_settings(**overrides) -> Settings:
    values = {
        "backend_url": "http://backend.test",
        "sensor_id1": 5,
        "sensor_id2": 6,
        "auto_detect_sensors": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def api(transport):
    app = create_app(make_settings(), transport=transport, start_serial=False)
    with TestClient(app) as test_client:
        yield test_client


# ============================================================
# Health & diagnostics
# ============================================================

class TestDiagnostics:

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["serial"] == "stopped"
        assert body["checks"]["routing"] == {"mode": "legacy", "sensor1Id": 5, "sensor2Id": 6}

    def test_latest_readings_start_empty(self, api):
        assert api.get("/api/sensor").json() == {"sensor1In": None, "sensor2In": None}

    def test_latest_readings_and_status(self, api):
        latest = api.app.state.processor.latest
        latest.sensor1_in = 3
        latest.sensor2_in = 48

        assert api.get("/api/sensor").json() == {"sensor1In": 3, "sensor2In": 48}

        status = api.get("/api/sensor/status").json()
        assert status["mode"] == "legacy"
        assert status["sensor1"] == {"sensorId": 5, "rangeIn": 3, "slotStatus": "occupied"}
        assert status["sensor2"] == {"sensorId": 6, "rangeIn": 48, "slotStatus": "available"}

    def test_refresh_mapping(self, api, backend):
        backend.add_device(1, "192.168.1.10", [(11, "ultrasonic"), (12, "ultrasonic")], location="Gate")

        assert api.get("/api/sensor/mapping").json() == {}

        response = api.get("/api/refresh-mapping")

        assert response.status_code == 200
        expected = {
            "192.168.1.10": {"arduinoId": 1, "location": "Gate", "sensor1Id": 11, "sensor2Id": 12}
        }
        assert response.json() == expected
        assert api.get("/api/sensor/mapping").json() == expected

    def test_refresh_mapping_backend_down_returns_empty(self, api, backend):
        backend.devices_status = 500
        response = api.get("/api/refresh-mapping")

        assert response.status_code == 200
        assert response.json() == {}

    def test_auto_detect_switches_to_mapped_mode(self, backend, transport):
        backend.add_device(1, "192.168.1.10", [(11, "ultrasonic")])
        app = create_app(make_settings(auto_detect_sensors=True), transport=transport, start_serial=False)

        with TestClient(app) as mapped_api:
            mapped_api.get("/api/refresh-mapping")
            routing = mapped_api.get("/health").json()["checks"]["routing"]

        assert routing == {"mode": "mapped", "sensor1Id": 11, "sensor2Id": None}


# ============================================================
# Reservations
# ============================================================

class TestReservationsApi:

    def test_availability(self, api):
        response = api.get("/api/reservations/availability")

        assert response.status_code == 200
        body = response.json()
        assert body["availableSlots"] == 3
        assert body["pendingHolds"] == 2
        assert body["availableForHolding"] == 1

    def test_create_reservation(self, api, backend):
        response = api.post(
            "/api/reservations",
            json={"plate_number": "abc123", "payment_method": "gcash", "vehicle_type": "car"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["user_id"] == 100
        assert body["service_id"] == 3
        assert body["hold_payment"]["payment_method"] == "gcash"
        assert body["availability"]["availableForHolding"] == 0
        assert backend.hold_payments[0]["amount"] == 30.0

    def test_full_lot_is_conflict(self, api, backend):
        backend.availability.update({"availableSlots": 1, "pendingHolds": 1})

        response = api.post("/api/reservations", json={"plate_number": "abc123"})

        assert response.status_code == 409
        assert response.json()["error"] == "NO_SLOTS_AVAILABLE"
        assert backend.hold_payments == []

    def test_blank_plate_is_validation_error(self, api, backend):
        response = api.post("/api/reservations", json={"plate_number": "   "})

        assert response.status_code == 422
        assert response.json()["message"] == "Please enter a valid plate number"
        assert backend.requests == []

    def test_unknown_payment_method_is_validation_error(self, api):
        response = api.post("/api/reservations", json={"plate_number": "ABC123", "payment_method": "cash"})
        assert response.status_code == 422

    def test_backend_failure_is_bad_gateway(self, api, backend):
        backend.hold_status = 400
        backend.hold_error = "User already has a pending hold payment"

        response = api.post("/api/reservations", json={"plate_number": "ABC123"})

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "HOLD_PAYMENT_ERROR"
        assert body["message"] == "User already has a pending hold payment"
