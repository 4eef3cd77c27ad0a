"""
Per-sensor change filter and rate limiter

Ultrasonic sensors jitter by an inch or so and the Arduino reports several
times a second. A reading is only written to the backend when it moved by
at least MIN_CHANGE inches and the sensor has not been written within the
last MIN_INTERVAL_MS milliseconds.

Writes are fire-and-forget: the serial loop never waits on the backend.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

import structlog

from .backend_client import BackendClient
from .exceptions import DataStoreError
from .utils import monotonic_ms

logger = structlog.get_logger(__name__)

MIN_INTERVAL_MS = 300
MIN_CHANGE = 1


@dataclass
class SensorSendState:
    """Last value written for one sensor"""
    last_sent_value: int
    last_sent_at: float


class SensorRateLimiter:
    """
    Decides whether a reading warrants a backend write

    State is per sensor ID and lives for the whole process.
    """

    def __init__(
        self,
        min_interval_ms: float = MIN_INTERVAL_MS,
        min_change: float = MIN_CHANGE,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.min_interval_ms = min_interval_ms
        self.min_change = min_change
        self.clock = clock
        self.state: Dict[int, SensorSendState] = {}

    def should_send(self, sensor_id: Optional[int], value: int) -> bool:
        """
        Check a reading and record it as sent when accepted

        The state is updated before the write goes out so a duplicate that
        arrives while the PUT is in flight is suppressed.
        """
        if not sensor_id:
            return False
        if not isinstance(value, int) or isinstance(value, bool):
            return False

        now = self.clock()
        previous = self.state.get(sensor_id)

        if previous is not None:
            if abs(value - previous.last_sent_value) < self.min_change:
                return False
            if now - previous.last_sent_at < self.min_interval_ms:
                return False

        self.state[sensor_id] = SensorSendState(last_sent_value=value, last_sent_at=now)
        return True

    def last_sent(self, sensor_id: int) -> Optional[int]:
        state = self.state.get(sensor_id)
        return state.last_sent_value if state else None


class SensorUpdateForwarder:
    """
    Pushes accepted readings to PUT /api/sensor/{id}

    Each accepted reading becomes its own task; results are logged and
    never retried.
    """

    def __init__(self, client: BackendClient, limiter: SensorRateLimiter):
        self.client = client
        self.limiter = limiter
        self.sent_count = 0
        self.suppressed_count = 0
        self.failed_count = 0
        self._pending: Set[asyncio.Task] = set()

    def maybe_send(self, sensor_id: Optional[int], value: int) -> bool:
        """Schedule a write if the limiter allows it; must run on the event loop"""
        if not self.limiter.should_send(sensor_id, value):
            self.suppressed_count += 1
            return False

        self.sent_count += 1
        task = asyncio.create_task(self._put(sensor_id, value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _put(self, sensor_id: int, value: int):
        try:
            result = await self.client.update_sensor_range(sensor_id, value)
        except DataStoreError as e:
            self.failed_count += 1
            logger.error("sensor_update_failed", sensor_id=sensor_id, sensor_range=value, error=e.message)
            return

        if not result.ok:
            self.failed_count += 1
        log = logger.info if result.ok else logger.warning
        log(
            "sensor_update_forwarded",
            sensor_id=sensor_id,
            sensor_range=value,
            status_code=result.status_code,
            duration_ms=round(result.duration_ms),
            backend_message=result.message,
        )

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for in-flight writes, used on shutdown and in tests"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
