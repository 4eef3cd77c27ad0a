"""
Backend REST client
One pooled keep-alive connection set shared by the sensor forwarder,
the mapping resolver and the reservation flow.

Every backend response is wrapped as {success, message, data, count};
helpers here unwrap it and turn failures into DataStoreError carrying the
backend's own message.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .exceptions import DataStoreError
from .models import ArduinoDevice, Sensor, SensorStatus, PaymentMethod

logger = logging.getLogger(__name__)


@dataclass
class SensorUpdateResponse:
    """What the backend said about one sensor range update"""
    status_code: int
    message: str
    duration_ms: float

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class BackendClient:
    """
    Async client for the parking backend

    Timeouts are per call family: mapping lookups, sensor updates and the
    reservation flow each get their own bound. Nothing here retries; callers
    decide whether a failure is logged or surfaced.
    """

    def __init__(
        self,
        base_url: str,
        mapping_timeout: float = 5.0,
        sensor_timeout: float = 1.5,
        reservation_timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.mapping_timeout = mapping_timeout
        self.sensor_timeout = sensor_timeout
        self.reservation_timeout = reservation_timeout

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=10,
                keepalive_expiry=10.0,
            ),
            headers={"Connection": "keep-alive"},
            transport=transport,
        )

    async def close(self):
        """Close pooled connections"""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    # ============================================================
    # Transport helpers
    # ============================================================

    async def _send(self, method: str, path: str, timeout: float, json: Any = None) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=json, timeout=timeout)
        except httpx.TimeoutException as e:
            raise DataStoreError(f"Request timed out: {method} {path}", path=path) from e
        except httpx.HTTPError as e:
            raise DataStoreError(f"Backend request failed: {e}", path=path) from e

    async def _request(self, method: str, path: str, timeout: float, json: Any = None) -> Dict[str, Any]:
        """Send a request and return the decoded envelope, raising on failure"""
        response = await self._send(method, path, timeout, json=json)

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            raise DataStoreError(
                message or f"Backend returned HTTP {response.status_code}",
                status_code=response.status_code,
                path=path,
            )

        if body is None:
            raise DataStoreError("Malformed JSON from backend", status_code=response.status_code, path=path)

        if not isinstance(body, dict):
            # Bare list/object responses from older controllers
            return {"success": True, "data": body}

        if body.get("success") is False:
            raise DataStoreError(
                body.get("message") or body.get("error") or "Backend reported failure",
                status_code=response.status_code,
                path=path,
            )

        return body

    @staticmethod
    def _rows(body: Dict[str, Any]) -> List[Dict[str, Any]]:
        data = body.get("data")
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return list(data)

    # ============================================================
    # Devices & sensors
    # ============================================================

    async def list_devices(self) -> List[ArduinoDevice]:
        """GET /api/arduino"""
        body = await self._request("GET", "/api/arduino", self.mapping_timeout)
        devices = []
        for row in self._rows(body):
            try:
                devices.append(ArduinoDevice.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed device row {row!r}: {e.error_count()} errors")
        return devices

    async def list_device_sensors(self, arduino_id: int) -> List[Sensor]:
        """GET /api/arduino/{id}/sensors"""
        body = await self._request("GET", f"/api/arduino/{arduino_id}/sensors", self.mapping_timeout)
        return [Sensor.model_validate(row) for row in self._rows(body)]

    async def update_sensor_range(self, sensor_id: int, sensor_range: int) -> SensorUpdateResponse:
        """
        PUT /api/sensor/{id}

        HTTP error statuses are returned, not raised; only transport
        failures raise DataStoreError.
        """
        started = time.monotonic()
        response = await self._send(
            "PUT",
            f"/api/sensor/{sensor_id}",
            self.sensor_timeout,
            json={"sensor_range": sensor_range, "status": SensorStatus.WORKING.value},
        )
        duration_ms = (time.monotonic() - started) * 1000.0

        message = response.text or str(response.status_code)
        try:
            body = response.json()
            if isinstance(body, dict) and body.get("message"):
                message = body["message"]
        except ValueError:
            pass

        return SensorUpdateResponse(
            status_code=response.status_code,
            message=message,
            duration_ms=duration_ms,
        )

    # ============================================================
    # Reservations
    # ============================================================

    async def get_hold_availability(self) -> Dict[str, Any]:
        """GET /api/hold-payment/availability"""
        body = await self._request("GET", "/api/hold-payment/availability", self.reservation_timeout)
        data = body.get("data")
        if not isinstance(data, dict):
            raise DataStoreError("Availability response has no data", path="/api/hold-payment/availability")
        return data

    async def find_services_by_vehicle(self, vehicle_type: str) -> List[Dict[str, Any]]:
        """GET /api/service/vehicle/{vehicleType}"""
        path = f"/api/service/vehicle/{quote(vehicle_type, safe='')}"
        body = await self._request("GET", path, self.reservation_timeout)
        return self._rows(body)

    async def create_user(self, plate_number: str, service_id: Optional[int]) -> Dict[str, Any]:
        """POST /api/user, returns the created user record"""
        body = await self._request(
            "POST",
            "/api/user",
            self.reservation_timeout,
            json={"plate_number": plate_number, "service_id": service_id},
        )
        return body.get("data") or {}

    async def get_user_by_plate(self, plate_number: str) -> Dict[str, Any]:
        """GET /api/user/plate/{plate}"""
        path = f"/api/user/plate/{quote(plate_number, safe='')}"
        body = await self._request("GET", path, self.reservation_timeout)
        rows = self._rows(body)
        if not rows:
            raise DataStoreError(f"User not found: {plate_number}", status_code=404, path=path)
        return rows[0]

    async def create_hold_payment(
        self,
        user_id: int,
        amount: float,
        payment_method: PaymentMethod,
    ) -> Dict[str, Any]:
        """
        POST /api/hold-payment

        Returns the whole envelope since newer backends attach an
        availability snapshot next to data.
        """
        return await self._request(
            "POST",
            "/api/hold-payment",
            self.reservation_timeout,
            json={
                "user_id": user_id,
                "amount": round(amount, 2),
                "payment_method": PaymentMethod(payment_method).value,
            },
        )
