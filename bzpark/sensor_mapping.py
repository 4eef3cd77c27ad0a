"""
Sensor mapping resolver
Builds IP -> {arduinoId, location, sensor1Id, sensor2Id} from the backend
device registry so serial readings can be routed without hard-coded IDs.
"""
import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .backend_client import BackendClient
from .exceptions import DataStoreError, MappingError
from .models import ArduinoDevice, DeviceSensorMapping, Sensor

logger = structlog.get_logger(__name__)


def select_ultrasonic_pair(sensors: Iterable[Sensor]) -> Tuple[Optional[int], Optional[int]]:
    """
    Pick the first two distinct ultrasonic sensors in listing order

    Other sensor types have no channel on the bridge and are skipped.
    """
    sensor1_id = None
    sensor2_id = None
    for sensor in sensors:
        if not sensor.is_ultrasonic:
            continue
        if sensor1_id is None:
            sensor1_id = sensor.sensor_id
        elif sensor2_id is None and sensor.sensor_id != sensor1_id:
            sensor2_id = sensor.sensor_id
            break
    return sensor1_id, sensor2_id


class SensorMappingResolver:
    """
    Owns the process-wide sensor mapping

    The mapping is replaced by a single assignment after every successful
    resolution, so readers always see either the old or the new map.
    """

    def __init__(
        self,
        client: BackendClient,
        refresh_interval: float = 300.0,
        device_ip: Optional[str] = None,
    ):
        self.client = client
        self.refresh_interval = refresh_interval
        self.device_ip = device_ip
        self.mapping: Dict[str, DeviceSensorMapping] = {}
        self.last_refreshed: Optional[datetime] = None
        self.running = False
        self._refresh_task: Optional[asyncio.Task] = None

    # ============================================================
    # Resolution
    # ============================================================

    async def _resolve_device(self, device: ArduinoDevice) -> DeviceSensorMapping:
        sensors = await self.client.list_device_sensors(device.arduino_id)
        sensor1_id, sensor2_id = select_ultrasonic_pair(sensors)
        return DeviceSensorMapping(
            arduino_id=device.arduino_id,
            location=device.location,
            sensor1_id=sensor1_id,
            sensor2_id=sensor2_id,
        )

    async def _build_mapping(self) -> Dict[str, DeviceSensorMapping]:
        """
        Fetch devices, then every device's sensors concurrently

        Raises MappingError only when the device list itself is unavailable;
        a device whose sensor lookup fails is left out of the result.
        """
        try:
            devices = await self.client.list_devices()
        except DataStoreError as e:
            raise MappingError(f"Device list unavailable: {e.message}") from e

        addressed: List[ArduinoDevice] = []
        for device in devices:
            if device.ip_address:
                addressed.append(device)
            else:
                logger.debug("mapping_device_without_ip", arduino_id=device.arduino_id)

        results = await asyncio.gather(
            *(self._resolve_device(device) for device in addressed),
            return_exceptions=True,
        )

        mapping: Dict[str, DeviceSensorMapping] = {}
        for device, result in zip(addressed, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "mapping_device_skipped",
                    arduino_id=device.arduino_id,
                    ip_address=device.ip_address,
                    error=str(result),
                )
                continue
            mapping[device.ip_address] = result

        return mapping

    async def resolve(self) -> Dict[str, DeviceSensorMapping]:
        """Resolve a fresh mapping without publishing it; empty on failure"""
        try:
            return await self._build_mapping()
        except MappingError as e:
            logger.warning("mapping_resolution_failed", error=e.message)
            return {}

    async def refresh(self) -> Dict[str, DeviceSensorMapping]:
        """
        Resolve and publish a new mapping

        If the device list cannot be fetched the previous mapping stays in
        place and is returned unchanged.
        """
        try:
            mapping = await self._build_mapping()
        except MappingError as e:
            logger.warning("mapping_refresh_failed", error=e.message, kept_devices=len(self.mapping))
            return self.mapping

        self.mapping = mapping
        self.last_refreshed = datetime.utcnow()

        logger.info(
            "mapping_refreshed",
            devices=len(mapping),
            mapping={ip: m.to_public() for ip, m in mapping.items()},
        )
        return mapping

    # ============================================================
    # Lookup
    # ============================================================

    def active_device(self) -> Optional[DeviceSensorMapping]:
        """
        Device that owns unlabeled serial readings

        Serial lines carry no device identity, so this is the pinned
        device_ip when configured and mapped, otherwise the first listed
        device with at least one ultrasonic sensor.
        """
        mapping = self.mapping
        if self.device_ip:
            pinned = mapping.get(self.device_ip)
            if pinned is not None:
                return pinned
        for entry in mapping.values():
            if entry.sensor1_id is not None:
                return entry
        return None

    def to_public(self) -> Dict[str, dict]:
        return {ip: entry.to_public() for ip, entry in self.mapping.items()}

    # ============================================================
    # Periodic refresh
    # ============================================================

    async def start(self):
        """Resolve now and then every refresh_interval seconds"""
        if self.running:
            return

        self.running = True
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info("mapping_refresh_started", interval_seconds=self.refresh_interval)

    async def stop(self):
        if not self.running:
            return

        self.running = False
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
        logger.info("mapping_refresh_stopped")

    async def _refresh_loop(self):
        while self.running:
            try:
                await self.refresh()
                await asyncio.sleep(self.refresh_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("mapping_refresh_loop_error", error=str(e), exc_info=True)
                await asyncio.sleep(self.refresh_interval)
