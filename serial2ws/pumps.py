"""Background tasks moving bytes between the serial device and the clients."""

import asyncio
import logging

import serial

from serial2ws.errors import OutboundQueueClosed
from serial2ws.fanout import FanOutChannel
from serial2ws.scrollback import ScrollbackBuffer

logger = logging.getLogger("serial2ws.pumps")

READ_CHUNK_SIZE = 1024
POLL_INTERVAL = 0.01
DEFAULT_QUEUE_SIZE = 256


async def inbound_pump(
    port: serial.SerialBase,
    scrollback: ScrollbackBuffer,
    fanout: FanOutChannel,
    chunk_size: int = READ_CHUNK_SIZE,
):
    """Read from serial into scrollback and fan-out until EOF or a read error.

    Reads are only issued for bytes already waiting, so the task can be
    cancelled at the idle sleep without leaving a read stuck in a thread.
    """
    port_name = getattr(port, "port", None) or "?"
    try:
        while True:
            n = port.in_waiting
            if n > 0:
                data = await asyncio.to_thread(port.read, min(n, chunk_size))
                if not data:
                    logger.info("Serial reader for %s: EOF", port_name)
                    return
                scrollback.extend(data)
                fanout.publish(data)
            else:
                await asyncio.sleep(POLL_INTERVAL)
    except (serial.SerialException, OSError) as e:
        logger.error("Serial read error on %s: %s", port_name, e)


class OutboundQueue:
    """Bounded FIFO of chunks waiting to be written to the device.

    Any number of client sessions put, a single outbound pump gets. Once
    closed, every put fails with OutboundQueueClosed.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, data: bytes) -> None:
        """Enqueue a chunk, waiting while the queue is full."""
        if self._closed:
            raise OutboundQueueClosed("outbound queue is closed")
        await self._queue.put(data)
        # closed while we were waiting for room
        if self._closed:
            self._drain()
            raise OutboundQueueClosed("outbound queue is closed")

    async def get(self) -> bytes:
        return await self._queue.get()

    def close(self) -> None:
        """Refuse further data and discard what is pending."""
        self._closed = True
        self._drain()

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return


async def outbound_pump(port: serial.SerialBase, queue: OutboundQueue):
    """Write queued chunks to serial, one full write at a time, in FIFO order."""
    port_name = getattr(port, "port", None) or "?"
    try:
        while True:
            data = await queue.get()
            await asyncio.to_thread(port.write, data)
    except (serial.SerialException, OSError) as e:
        logger.error("Serial write error on %s: %s", port_name, e)
        queue.close()
    finally:
        logger.info("Serial writer for %s ended", port_name)
