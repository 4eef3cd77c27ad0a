"""
Serial line ingestion
Classifies each line the Arduino/ESP8266 prints and routes the distance
readings it carries to backend sensor IDs.

Supported line shapes, checked in this order:
    Arduino Ready / Waiting for ... / Error: ...   status noise, dropped
    S1: <payload>, S2: <payload>                   explicit channel prefix
    25  or  25.4                                   plain reading, alternates 1/2
    DISTANCE1: 25 IN                               one labeled channel
    DISTANCES: S1=25 IN, S2=40 IN                  both channels
    {"d1": 25, "d2": 40}  or  [25, 40]             JSON, each value alternates
Anything else is ignored without logging.
"""
import json
import re
from typing import Any, Callable, Iterable, List, NamedTuple, Optional, Protocol, Tuple

import structlog

from .models import LatestReadings
from .sensor_mapping import SensorMappingResolver
from .utils import monotonic_ms, parse_reading

logger = structlog.get_logger(__name__)

SEQ_RESET_MS = 2000

STATUS_LINE = re.compile(r"^(arduino ready|waiting for|received command|error:)", re.IGNORECASE)
CHANNEL_PREFIX = re.compile(r"^\s*S([12])\s*:\s*(.+)$", re.IGNORECASE)
PLAIN_NUMBER = re.compile(r"^\d+(\.\d+)?$")
SINGLE_DISTANCE = re.compile(r"^DISTANCE([12])\s*:\s*([-\d.]+)", re.IGNORECASE)
DUAL_DISTANCE = re.compile(r"^DISTANCES\s*:\s*S1\s*=\s*([-\d.]+).*S2\s*=\s*([-\d.]+)", re.IGNORECASE)


class ReadingSink(Protocol):
    """Anything that accepts routed readings (normally SensorUpdateForwarder)"""

    def maybe_send(self, sensor_id: Optional[int], value: int) -> bool:
        ...


class RoutedReading(NamedTuple):
    """A reading assigned to a backend sensor"""
    sensor_id: int
    value: int
    forwarded: bool


class SerialLineProcessor:
    """
    Stateful router for serial lines

    Holds the alternation cursor and the latest readings. All methods are
    synchronous and must be called from one thread (the event loop).
    """

    def __init__(
        self,
        sink: ReadingSink,
        resolver: Optional[SensorMappingResolver] = None,
        legacy_sensor_ids: Tuple[Optional[int], Optional[int]] = (None, None),
        seq_reset_ms: float = SEQ_RESET_MS,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.sink = sink
        self.resolver = resolver
        self.legacy_sensor1_id, self.legacy_sensor2_id = legacy_sensor_ids
        self.seq_reset_ms = seq_reset_ms
        self.clock = clock

        self.latest = LatestReadings()
        self.expect_next = 1
        self.last_plain_at: Optional[float] = None
        self.lines_seen = 0

    # ============================================================
    # Routing
    # ============================================================

    def channel_ids(self) -> Tuple[Optional[int], Optional[int]]:
        """Current (sensor1, sensor2) IDs: mapped device first, legacy config otherwise"""
        if self.resolver is not None:
            device = self.resolver.active_device()
            if device is not None:
                return device.sensor1_id, device.sensor2_id
        return self.legacy_sensor1_id, self.legacy_sensor2_id

    @property
    def mode(self) -> str:
        if self.resolver is not None and self.resolver.active_device() is not None:
            return "mapped"
        return "legacy"

    def _advance_sequence(self):
        """Restart alternation at channel 1 after a quiet gap"""
        now = self.clock()
        if self.last_plain_at is None or now - self.last_plain_at > self.seq_reset_ms:
            self.expect_next = 1
        self.last_plain_at = now

    def _next_alternating_target(self, sensor1_id: Optional[int], sensor2_id: Optional[int]) -> Optional[int]:
        if self.expect_next == 1 or sensor2_id is None:
            target = sensor1_id
        else:
            target = sensor2_id
        self.expect_next = 2 if self.expect_next == 1 and sensor2_id is not None else 1
        return target

    def _record_latest(self, sensor_id: int, value: int, sensor1_id: Optional[int], sensor2_id: Optional[int]):
        if sensor_id == sensor1_id:
            self.latest.sensor1_in = value
        elif sensor_id == sensor2_id:
            self.latest.sensor2_in = value

    def _emit(self, sensor_id: Optional[int], value: int, ids: Tuple[Optional[int], Optional[int]]) -> Optional[RoutedReading]:
        if not sensor_id:
            return None
        self._record_latest(sensor_id, value, *ids)
        logger.debug("ultrasonic_reading", sensor_id=sensor_id, value_in=value)
        forwarded = self.sink.maybe_send(sensor_id, value)
        return RoutedReading(sensor_id=sensor_id, value=value, forwarded=forwarded)

    def _route_sequenced(self, value: int, override: Optional[int], ids) -> Optional[RoutedReading]:
        self._advance_sequence()
        target = override if override else self._next_alternating_target(*ids)
        return self._emit(target, value, ids)

    # ============================================================
    # Line handling
    # ============================================================

    def handle_line(self, raw: Any) -> List[RoutedReading]:
        """
        Process one serial line

        Returns the readings that were routed (forwarded or rate limited).
        Errors are logged and swallowed so one bad line never stops the port.
        """
        self.lines_seen += 1
        try:
            return self._handle(str(raw if raw is not None else "").strip())
        except Exception as e:
            logger.error("serial_line_error", line=str(raw)[:200], error=str(e), exc_info=True)
            return []

    def _handle(self, line: str) -> List[RoutedReading]:
        if not line:
            return []

        ids = self.channel_ids()
        sensor1_id, sensor2_id = ids

        override = None
        payload = line
        prefix = CHANNEL_PREFIX.match(line)
        if prefix:
            payload = prefix.group(2).strip()
            override = sensor1_id if prefix.group(1) == "1" else sensor2_id

        if STATUS_LINE.match(payload):
            return []

        if PLAIN_NUMBER.match(payload):
            value = parse_reading(payload)
            if value is None:
                return []
            return self._collect([self._route_sequenced(value, override, ids)])

        match = SINGLE_DISTANCE.match(payload)
        if match:
            value = parse_reading(match.group(2))
            if value is None:
                return []
            target = sensor1_id if match.group(1) == "1" else sensor2_id
            return self._collect([self._emit(target, value, ids)])

        match = DUAL_DISTANCE.match(payload)
        if match:
            routed = []
            for target, raw_value in ((sensor1_id, match.group(1)), (sensor2_id, match.group(2))):
                value = parse_reading(raw_value)
                if value is not None:
                    routed.append(self._emit(target, value, ids))
            return self._collect(routed)

        if payload[0] in "[{":
            return self._handle_json(payload, override, ids)

        return []

    def _handle_json(self, payload: str, override: Optional[int], ids) -> List[RoutedReading]:
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("serial_parse_error", line=payload[:200], error=str(e))
            return []

        if isinstance(parsed, dict):
            values: Iterable[Any] = parsed.values()
        elif isinstance(parsed, list):
            values = parsed
        else:
            return []

        routed = []
        for raw_value in values:
            value = parse_reading(raw_value)
            if value is None:
                continue
            routed.append(self._route_sequenced(value, override, ids))
        return self._collect(routed)

    @staticmethod
    def _collect(readings: Iterable[Optional[RoutedReading]]) -> List[RoutedReading]:
        return [r for r in readings if r is not None]
