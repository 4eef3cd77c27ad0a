"""
Shared fixtures

FakeBackend answers the parking backend's REST routes from in-memory
tables through httpx.MockTransport, so no network is involved.
"""
import json
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest

from bzpark.backend_client import BackendClient


# ============================================================
# Fakes
# ============================================================

class FakeClock:
    """Manually advanced millisecond clock"""

    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class RecordingSink:
    """ReadingSink that accepts everything and remembers it"""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.calls: List[tuple] = []

    def maybe_send(self, sensor_id, value) -> bool:
        self.calls.append((sensor_id, value))
        return self.accept


def envelope(data: Any = None, message: str = "OK", success: bool = True, **extra) -> Dict[str, Any]:
    body = {"success": success, "message": message, "data": data}
    body.update(extra)
    return body


class FakeBackend:
    """In-memory stand-in for the parking backend"""

    def __init__(self):
        self.devices: List[Dict[str, Any]] = []
        self.sensors: Dict[int, List[Dict[str, Any]]] = {}
        self.failing_devices: set = set()
        self.devices_status: int = 200
        self.availability: Dict[str, Any] = {
            "totalSlots": 10,
            "availableSlots": 3,
            "occupiedSlots": 6,
            "maintenanceSlots": 1,
            "pendingHolds": 2,
            "completedHolds": 4,
            "availableForHolding": 1,
        }
        self.availability_status: int = 200
        self.availability_down_after_hold: bool = False
        self.services: Dict[str, List[Dict[str, Any]]] = {"car": [{"service_id": 3, "vehicle_type": "car"}]}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.user_status: int = 201
        self.user_error: Optional[str] = None
        self.plate_lookup_status: int = 200
        self.service_unreachable: bool = False
        self.hold_payments: List[Dict[str, Any]] = []
        self.hold_status: int = 201
        self.hold_error: Optional[str] = None
        self.hold_snapshot: Optional[Dict[str, Any]] = None
        self.sensor_put_status: int = 200
        self.sensor_puts: List[tuple] = []
        self.requests: List[httpx.Request] = []

    def add_device(self, arduino_id: int, ip: Optional[str], sensors: List[tuple], location: str = "Lot A"):
        self.devices.append(
            {"arduino_id": arduino_id, "ip_address": ip, "location": location, "status": "online"}
        )
        self.sensors[arduino_id] = [
            {"sensor_id": sid, "arduino_id": arduino_id, "sensor_type": stype, "status": "working"}
            for sid, stype in sensors
        ]

    def paths(self) -> List[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]

    # ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method = request.method
        path = unquote(request.url.path)
        parts = [p for p in path.split("/") if p]

        if method == "GET" and path == "/api/arduino":
            if self.devices_status != 200:
                return httpx.Response(self.devices_status, json=envelope(None, "Database error", False))
            return httpx.Response(200, json=envelope(self.devices, count=len(self.devices)))

        if method == "GET" and parts[:2] == ["api", "arduino"] and parts[-1] == "sensors":
            arduino_id = int(parts[2])
            if arduino_id in self.failing_devices:
                return httpx.Response(500, json=envelope(None, "Sensor lookup failed", False))
            return httpx.Response(200, json=envelope(self.sensors.get(arduino_id, [])))

        if method == "PUT" and parts[:2] == ["api", "sensor"]:
            body = json.loads(request.content)
            self.sensor_puts.append((int(parts[2]), body["sensor_range"], body["status"]))
            return httpx.Response(self.sensor_put_status, json=envelope(None, "Sensor updated"))

        if method == "GET" and path == "/api/hold-payment/availability":
            if self.availability_down_after_hold and self.hold_payments:
                return httpx.Response(503, json=envelope(None, "Availability down", False))
            if self.availability_status != 200:
                return httpx.Response(self.availability_status, json=envelope(None, "Availability down", False))
            return httpx.Response(200, json=envelope(self.availability))

        if method == "GET" and parts[:3] == ["api", "service", "vehicle"]:
            if self.service_unreachable:
                raise httpx.ConnectError("Connection refused", request=request)
            services = self.services.get(parts[3])
            if not services:
                return httpx.Response(404, json=envelope(None, "No services found", False))
            return httpx.Response(200, json=envelope(services))

        if method == "POST" and path == "/api/user":
            body = json.loads(request.content)
            plate = body["plate_number"]
            if self.user_error:
                return httpx.Response(self.user_status, json=envelope(None, self.user_error, False))
            if plate in self.users:
                return httpx.Response(409, json=envelope(None, "Plate number already exists", False))
            user = {"user_id": 100 + len(self.users), "plate_number": plate, "service_id": body["service_id"]}
            self.users[plate] = user
            return httpx.Response(201, json=envelope(user, "User created"))

        if method == "GET" and parts[:3] == ["api", "user", "plate"]:
            if self.plate_lookup_status != 200:
                return httpx.Response(self.plate_lookup_status, json=envelope(None, "User lookup failed", False))
            user = self.users.get(parts[3])
            if user is None:
                return httpx.Response(404, json=envelope(None, "User not found", False))
            return httpx.Response(200, json=envelope(user))

        if method == "POST" and path == "/api/hold-payment":
            body = json.loads(request.content)
            if self.hold_error:
                return httpx.Response(self.hold_status, json=envelope(None, self.hold_error, False))
            hold = {
                "hold_payment_id": 500 + len(self.hold_payments),
                "user_id": body["user_id"],
                "amount": body["amount"],
                "payment_method": body["payment_method"],
            }
            self.hold_payments.append(hold)
            self.availability["pendingHolds"] += 1
            self.availability["availableForHolding"] = max(
                0, self.availability["availableSlots"] - self.availability["pendingHolds"]
            )
            extra = {"availability": self.hold_snapshot} if self.hold_snapshot else {}
            return httpx.Response(201, json=envelope(hold, "Hold payment created", **extra))

        return httpx.Response(404, json=envelope(None, f"No route {method} {path}", False))


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def transport(backend):
    return httpx.MockTransport(backend.handler)


@pytest.fixture
async def client(transport):
    """BackendClient wired to the fake backend"""
    client = BackendClient("http://backend.test", transport=transport)
    yield client
    await client.close()
