"""Per-client bridge between a WebSocket and the shared serial connection."""

import asyncio
import logging

from aiohttp import WSMsgType, web

from serial2ws.errors import ClientProtocolError, OutboundQueueClosed
from serial2ws.fanout import ChannelClosed, FanOutChannel, Lagged, Subscription
from serial2ws.manager import ConnectionManager
from serial2ws.scrollback import ScrollbackBuffer

logger = logging.getLogger("serial2ws.session")


class ClientSession:
    """Relay device output to one client and the client's input to the device.

    The session ends as soon as either direction stops.
    """

    def __init__(
        self,
        ws: web.WebSocketResponse,
        manager: ConnectionManager,
        scrollback: ScrollbackBuffer,
        fanout: FanOutChannel,
        peer: str = "?",
    ):
        self.ws = ws
        self.manager = manager
        self.scrollback = scrollback
        self.fanout = fanout
        self.peer = peer

    async def run(self) -> None:
        # Snapshot and subscribe back to back so the replayed history and the
        # live stream meet without a gap or an overlap.
        history = self.scrollback.snapshot()
        sub = self.fanout.subscribe()
        logger.info("Client connected: %s", self.peer)
        try:
            if history:
                await self.ws.send_bytes(history)
            await self._relay(sub)
        except (ConnectionResetError, RuntimeError) as e:
            logger.info("Client %s went away: %s", self.peer, e)
        finally:
            sub.close()
            logger.info("Client disconnected: %s", self.peer)

    async def _relay(self, sub: Subscription) -> None:
        task_a = asyncio.create_task(self.device_to_client(sub))
        task_b = asyncio.create_task(self.client_to_device())
        try:
            await asyncio.wait({task_a, task_b}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            task_a.cancel()
            task_b.cancel()
            await asyncio.gather(task_a, task_b, return_exceptions=True)

    async def device_to_client(self, sub: Subscription) -> None:
        """Forward fan-out chunks to the client until the subscription closes."""
        while True:
            try:
                data = await sub.recv()
            except Lagged as e:
                logger.warning("Client %s lagged, skipped %d messages", self.peer, e.count)
                continue
            except ChannelClosed:
                return
            try:
                await self.ws.send_bytes(data)
            except (ConnectionResetError, RuntimeError) as e:
                logger.info("Send to client %s failed: %s", self.peer, e)
                return

    async def client_to_device(self) -> None:
        """Queue every client frame for the device until the client closes."""
        try:
            async for msg in self.ws:
                if msg.type == WSMsgType.BINARY:
                    await self.send_to_device(msg.data)
                elif msg.type == WSMsgType.TEXT:
                    await self.send_to_device(msg.data.encode("utf-8"))
                elif msg.type == WSMsgType.ERROR:
                    raise ClientProtocolError(str(self.ws.exception()))
        except ClientProtocolError as e:
            logger.warning("Protocol error from client %s: %s", self.peer, e)

    async def send_to_device(self, data: bytes) -> bool:
        """Queue data for the device; return False if it was dropped."""
        queue = await self.manager.outbound()
        if queue is None:
            return False
        try:
            await queue.put(data)
        except OutboundQueueClosed:
            logger.error("Failed to send %d bytes from client %s to serial writer", len(data), self.peer)
            return False
        return True
