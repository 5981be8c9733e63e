"""Test doubles shared by the test modules."""

import asyncio
import threading

import serial


class FakePort:
    """In-memory stand-in for an open pyserial port.

    Bytes passed to feed() are what the device "sends"; everything the
    bridge writes ends up in ``written``.
    """

    def __init__(self, port: str = "COM-TEST"):
        self.port = port
        self.is_open = True
        self.written = bytearray()
        self.read_error = None
        self.write_error = None
        self.eof = False
        self._rx = bytearray()
        self._lock = threading.Lock()

    def feed(self, data: bytes) -> None:
        with self._lock:
            self._rx += data

    @property
    def in_waiting(self) -> int:
        if self.read_error is not None:
            raise self.read_error
        if not self.is_open:
            raise serial.PortNotOpenError()
        with self._lock:
            if not self._rx and self.eof:
                return 1
            return len(self._rx)

    def read(self, size: int = 1) -> bytes:
        with self._lock:
            data = bytes(self._rx[:size])
            del self._rx[:size]
            return data

    def write(self, data: bytes) -> int:
        if self.write_error is not None:
            raise self.write_error
        self.written += data
        return len(data)

    def close(self) -> None:
        self.is_open = False


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within %.1fs" % timeout)
        await asyncio.sleep(interval)
