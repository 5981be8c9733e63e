"""Ownership of the single open serial connection."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Set

import serial

from serial2ws.device import DeviceConfig, open_serial
from serial2ws.errors import ConflictError
from serial2ws.fanout import FanOutChannel
from serial2ws.pumps import DEFAULT_QUEUE_SIZE, OutboundQueue, inbound_pump, outbound_pump
from serial2ws.scrollback import ScrollbackBuffer

logger = logging.getLogger("serial2ws.manager")


@dataclass
class Connection:
    """An open device and the two pumps serving it."""

    config: DeviceConfig
    port: serial.SerialBase
    queue: OutboundQueue
    reader_task: asyncio.Task
    writer_task: asyncio.Task

    @property
    def port_name(self) -> str:
        return self.config.port


@dataclass(frozen=True)
class Status:
    connected: bool
    port: Optional[str] = None
    config: Optional[DeviceConfig] = None

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "port": self.port,
            "config": self.config.to_dict() if self.config else None,
        }


class ConnectionManager:
    """The one authority over whether a device is currently open.

    The connection slot is guarded by an asyncio lock held only for the
    short sections that inspect or swap it; opening and closing the port
    itself happen outside the lock while the slot is reserved.
    """

    def __init__(
        self,
        fanout: FanOutChannel,
        scrollback: ScrollbackBuffer,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        opener: Callable[[DeviceConfig], serial.SerialBase] = open_serial,
        close_on_pump_exit: bool = True,
    ):
        self.fanout = fanout
        self.scrollback = scrollback
        self.queue_size = queue_size
        self._opener = opener
        self._close_on_pump_exit = close_on_pump_exit
        self._connection: Optional[Connection] = None
        self._opening = False
        self._closing: Optional[asyncio.Event] = None
        self._lock = asyncio.Lock()
        self._watchers: Set[asyncio.Future] = set()

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    async def open(self, config: DeviceConfig) -> Connection:
        """Open the device and start both pumps.

        Raises ConflictError if a device is already open, DeviceIOError if
        the port cannot be opened. Neither failure changes any state. An
        open issued while a close is still tearing down waits for it.
        """
        while True:
            async with self._lock:
                if self._connection is not None or self._opening:
                    raise ConflictError("Already connected. Disconnect first.")
                closing = self._closing
                if closing is None:
                    self._opening = True
                    break
            await closing.wait()

        try:
            self.scrollback.clear()
            opening = asyncio.ensure_future(asyncio.to_thread(self._opener, config))
            try:
                port = await asyncio.shield(opening)
            except asyncio.CancelledError:
                # the worker thread may still hand back an open port
                opening.add_done_callback(self._discard_opened)
                raise

            try:
                async with self._lock:
                    queue = OutboundQueue(self.queue_size)
                    conn = Connection(
                        config=config,
                        port=port,
                        queue=queue,
                        reader_task=asyncio.create_task(
                            inbound_pump(port, self.scrollback, self.fanout)
                        ),
                        writer_task=asyncio.create_task(outbound_pump(port, queue)),
                    )
                    self._connection = conn
            except BaseException:
                self._close_later(port)
                raise
        finally:
            self._opening = False

        logger.info("Opened serial port %s at %s baud", config.port, config.baud_rate)
        conn.reader_task.add_done_callback(lambda _: self._on_reader_exit(conn))
        return conn

    async def close(self) -> Optional[str]:
        """Close the open device; return its name, or None if nothing was open."""
        async with self._lock:
            conn = self._connection
            if conn is None:
                return None
            self._connection = None
            self._closing = asyncio.Event()
        logger.info("Disconnecting from %s", conn.port_name)
        await self._teardown(conn)
        return conn.port_name

    async def status(self) -> Status:
        async with self._lock:
            conn = self._connection
        if conn is None:
            return Status(connected=False)
        return Status(connected=True, port=conn.port_name, config=conn.config)

    async def outbound(self) -> Optional[OutboundQueue]:
        """Resolve the current outbound queue, or None when no device is open."""
        async with self._lock:
            conn = self._connection
        return conn.queue if conn is not None else None

    async def shutdown(self) -> None:
        await self.close()
        self.fanout.close()

    async def _teardown(self, conn: Connection) -> None:
        """Stop the pumps and release the port; the slot stays reserved until done."""
        try:
            conn.reader_task.cancel()
            conn.writer_task.cancel()
            conn.queue.close()
            await asyncio.gather(conn.reader_task, conn.writer_task, return_exceptions=True)
            try:
                await asyncio.to_thread(conn.port.close)
            except (serial.SerialException, OSError) as e:
                logger.warning("Error closing %s: %s", conn.port_name, e)
            self.scrollback.clear()
            self.fanout.close_subscribers()
            logger.info("Serial port %s closed", conn.port_name)
        finally:
            closing, self._closing = self._closing, None
            if closing is not None:
                closing.set()

    def _discard_opened(self, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        self._close_later(opening.result())

    def _close_later(self, port: serial.SerialBase) -> None:
        logger.info("Closing %s, its open was cancelled", getattr(port, "port", "?"))
        self._track(asyncio.ensure_future(asyncio.to_thread(port.close)))

    def _track(self, future: asyncio.Future) -> None:
        self._watchers.add(future)
        future.add_done_callback(self._watchers.discard)

    def _on_reader_exit(self, conn: Connection) -> None:
        task = conn.reader_task
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("Serial reader for %s crashed: %r", conn.port_name, task.exception())
        else:
            logger.warning("Serial reader for %s stopped", conn.port_name)
        if self._close_on_pump_exit:
            self._track(asyncio.ensure_future(self._close_if_current(conn)))

    async def _close_if_current(self, conn: Connection) -> None:
        async with self._lock:
            if self._connection is not conn:
                return
            self._connection = None
            self._closing = asyncio.Event()
        logger.info("Treating stopped reader as disconnect from %s", conn.port_name)
        await self._teardown(conn)
