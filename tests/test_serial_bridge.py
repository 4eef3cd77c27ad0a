"""
Tests for the serial reader

Uses an in-memory connection so no port is needed.
"""
import asyncio

import pytest
import serial

from bzpark.ingestion import SerialLineProcessor
from bzpark.serial_bridge import SerialBridge


class FakeConnection:
    """Replays lines, then either idles or fails"""

    def __init__(self, lines, fail_after=False):
        self.lines = list(lines)
        self.fail_after = fail_after
        self.closed = False

    def readline(self):
        if self.lines:
            return self.lines.pop(0)
        if self.fail_after:
            raise serial.SerialException("device disconnected")
        # pyserial returns b"" when the read timeout expires
        return b""

    def close(self):
        self.closed = True


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def processor(sink, clock):
    return SerialLineProcessor(sink, legacy_sensor_ids=(5, 6), clock=clock)


class TestSerialBridge:

    @pytest.mark.asyncio
    async def test_lines_reach_processor(self, processor, sink):
        connection = FakeConnection([b"Arduino ready\r\n", b"25\r\n", b"30\r\n"])
        bridge = SerialBridge(processor, "COM5", connection_factory=lambda: connection)

        await bridge.start()
        try:
            await wait_for(lambda: len(sink.calls) == 2)
            assert bridge.connected is True
        finally:
            await bridge.stop()

        assert sink.calls == [(5, 25), (6, 30)]
        assert connection.closed is True
        assert bridge.running is False

    @pytest.mark.asyncio
    async def test_undecodable_bytes_are_ignored(self, processor, sink):
        connection = FakeConnection([b"\xff\xfe25\r\n"])
        bridge = SerialBridge(processor, "COM5", connection_factory=lambda: connection)

        await bridge.start()
        try:
            await wait_for(lambda: sink.calls)
        finally:
            await bridge.stop()

        assert sink.calls == [(5, 25)]

    @pytest.mark.asyncio
    async def test_reopens_after_read_failure(self, processor, sink):
        connections = [
            FakeConnection([b"25\r\n"], fail_after=True),
            FakeConnection([b"30\r\n"]),
        ]
        bridge = SerialBridge(
            processor,
            "COM5",
            initial_backoff=0.01,
            connection_factory=lambda: connections.pop(0),
        )

        await bridge.start()
        try:
            await wait_for(lambda: len(sink.calls) == 2)
        finally:
            await bridge.stop()

        assert bridge.open_attempts == 2
        assert sink.calls == [(5, 25), (6, 30)]

    @pytest.mark.asyncio
    async def test_open_failure_without_reconnect_stops(self, processor):
        def refuse():
            raise serial.SerialException("could not open port COM9")

        bridge = SerialBridge(processor, "COM9", reconnect=False, connection_factory=refuse)

        await bridge.start()
        await wait_for(lambda: not bridge.running)

        assert bridge.open_attempts == 1
        assert bridge.connected is False
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_bad_port_parameters_stop_cleanly(self, processor):
        def bad_baud():
            raise ValueError("Not a valid baudrate: -1")

        bridge = SerialBridge(processor, "COM5", baud_rate=-1, reconnect=False, connection_factory=bad_baud)

        await bridge.start()
        await wait_for(lambda: not bridge.running)

        assert bridge.open_attempts == 1
        assert bridge._task.done()
        assert bridge._task.exception() is None
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, processor, monkeypatch):
        delays = []
        real_sleep = asyncio.sleep

        async def fake_sleep(seconds):
            delays.append(seconds)
            await real_sleep(0)

        def refuse():
            raise serial.SerialException("busy")

        bridge = SerialBridge(
            processor,
            "COM5",
            initial_backoff=1.0,
            reconnect_max_seconds=4.0,
            connection_factory=refuse,
        )

        monkeypatch.setattr("bzpark.serial_bridge.asyncio.sleep", fake_sleep)
        await bridge.start()
        try:
            while len(delays) < 5:
                await real_sleep(0.01)
        finally:
            await bridge.stop()

        assert delays[:5] == [1.0, 2.0, 4.0, 4.0, 4.0]
