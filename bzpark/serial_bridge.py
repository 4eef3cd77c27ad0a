"""
Serial port reader
Feeds newline-delimited lines from the Arduino/ESP8266 into the
SerialLineProcessor.

pyserial is blocking, so readline() runs in a worker thread and every line
is handled back on the event loop. The port is re-opened with exponential
backoff after hardware errors (USB unplugged, board reset).
"""
import asyncio
from typing import Callable, List, Optional

import serial
import structlog
from serial.tools import list_ports

from .exceptions import SerialPortError
from .ingestion import SerialLineProcessor

logger = structlog.get_logger(__name__)

READ_TIMEOUT_SECONDS = 1.0
INITIAL_BACKOFF_SECONDS = 1.0


def list_serial_ports() -> List[str]:
    """Device paths of the serial ports on this machine"""
    return [port.device for port in list_ports.comports()]


class SerialBridge:
    """
    Owns the serial connection and its read loop
    """

    def __init__(
        self,
        processor: SerialLineProcessor,
        port: str,
        baud_rate: int = 9600,
        reconnect: bool = True,
        reconnect_max_seconds: float = 60.0,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        connection_factory: Optional[Callable[[], serial.Serial]] = None,
    ):
        self.processor = processor
        self.port = port
        self.baud_rate = baud_rate
        self.reconnect = reconnect
        self.reconnect_max_seconds = reconnect_max_seconds
        self.initial_backoff = initial_backoff
        self._connection_factory = connection_factory or self._default_connection

        self.connection: Optional[serial.Serial] = None
        self.connected = False
        self.running = False
        self.open_attempts = 0
        self._task: Optional[asyncio.Task] = None

    def _default_connection(self) -> serial.Serial:
        return serial.Serial(self.port, self.baud_rate, timeout=READ_TIMEOUT_SECONDS)

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self):
        """Open the port and start reading in the background"""
        if self.running:
            return

        self.running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if not self.running:
            return

        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._close()
        logger.info("serial_bridge_stopped", port=self.port)

    # ============================================================
    # Blocking helpers (worker thread)
    # ============================================================

    def _open(self) -> serial.Serial:
        self.open_attempts += 1
        try:
            return self._connection_factory()
        except (serial.SerialException, OSError, ValueError) as e:
            # ValueError: bad port name or baud rate
            raise SerialPortError(self.port, f"open failed: {e}") from e

    def _read_line(self, connection: serial.Serial) -> Optional[str]:
        try:
            raw = connection.readline()
        except (serial.SerialException, OSError) as e:
            raise SerialPortError(self.port, f"read failed: {e}") from e
        if not raw:
            return None
        return raw.decode("utf-8", errors="ignore")

    def _close(self):
        connection, self.connection = self.connection, None
        self.connected = False
        if connection is not None:
            try:
                connection.close()
            except (serial.SerialException, OSError) as e:
                logger.warning("serial_close_failed", port=self.port, error=str(e))

    # ============================================================
    # Read loop
    # ============================================================

    async def _read_lines(self, connection: serial.Serial):
        while self.running:
            line = await asyncio.to_thread(self._read_line, connection)
            if line is None:
                continue
            self.processor.handle_line(line)

    async def _run(self):
        backoff = self.initial_backoff

        while self.running:
            try:
                self.connection = await asyncio.to_thread(self._open)
                self.connected = True
                backoff = self.initial_backoff
                logger.info("serial_port_opened", port=self.port, baud_rate=self.baud_rate)

                await self._read_lines(self.connection)

            except asyncio.CancelledError:
                break
            except SerialPortError as e:
                logger.error("serial_port_error", port=self.port, error=e.message)
            finally:
                self._close()

            if not self.running or not self.reconnect:
                break

            logger.info("serial_reconnect_scheduled", port=self.port, delay_seconds=backoff)
            try:
                await asyncio.sleep(backoff)
            except asyncio.CancelledError:
                break
            backoff = min(backoff * 2, self.reconnect_max_seconds)

        self.running = False
