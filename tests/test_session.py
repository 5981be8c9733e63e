"""Tests for the per-client session bridge."""

import asyncio
import logging
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType

from serial2ws.device import DeviceConfig
from serial2ws.session import ClientSession
from tests.helpers import wait_until


class FakeWebSocket:
    """Yields the given frames, then stays open until closed by the test."""

    def __init__(self, messages, error=None):
        self._messages = list(messages)
        self._error = error
        self.sent = []
        self.done = asyncio.Event()

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for msg in self._messages:
            yield msg
        await self.done.wait()

    async def send_bytes(self, data):
        self.sent.append(data)

    def exception(self):
        return self._error


def frame(kind, data=None):
    return SimpleNamespace(type=kind, data=data, extra=None)


class TestClientSession:
    @pytest.mark.asyncio
    async def test_error_frame_ends_only_this_session(self, manager, fake_port, fanout, caplog):
        await manager.open(DeviceConfig("COM-TEST"))
        bad = FakeWebSocket(
            [frame(WSMsgType.BINARY, b"AT\r\n"), frame(WSMsgType.ERROR)],
            error=ValueError("Invalid frame header"),
        )
        good = FakeWebSocket([])
        good_session = asyncio.create_task(ClientSession(good, manager, manager.scrollback, fanout).run())
        await wait_until(lambda: fanout.subscriber_count == 1)

        with caplog.at_level(logging.WARNING, logger="serial2ws.session"):
            await asyncio.wait_for(ClientSession(bad, manager, manager.scrollback, fanout, peer="10.0.0.7").run(), 1)
        assert "Protocol error from client 10.0.0.7: Invalid frame header" in caplog.text
        await wait_until(lambda: fake_port.written == b"AT\r\n")

        assert not good_session.done()
        assert fanout.subscriber_count == 1
        fake_port.feed(b"OK")
        await wait_until(lambda: good.sent == [b"OK"])

        good.done.set()
        await asyncio.wait_for(good_session, 1)
        assert fanout.subscriber_count == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_replays_history_before_live_data(self, manager, fake_port, fanout, scrollback):
        await manager.open(DeviceConfig("COM-TEST"))
        fake_port.feed(b"boot log")
        await wait_until(lambda: scrollback.snapshot() == b"boot log")

        ws = FakeWebSocket([])
        task = asyncio.create_task(ClientSession(ws, manager, scrollback, fanout).run())
        await wait_until(lambda: fanout.subscriber_count == 1)
        fake_port.feed(b"$ ")
        await wait_until(lambda: len(ws.sent) == 2)
        assert ws.sent == [b"boot log", b"$ "]

        await manager.close()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_text_frames_and_no_device(self, manager, fake_port, fanout):
        ws = FakeWebSocket([])
        session = ClientSession(ws, manager, manager.scrollback, fanout)
        assert await session.send_to_device(b"dropped") is False

        await manager.open(DeviceConfig("COM-TEST"))
        ws = FakeWebSocket([frame(WSMsgType.TEXT, "ATZ\r\n")])
        task = asyncio.create_task(ClientSession(ws, manager, manager.scrollback, fanout).run())
        await wait_until(lambda: fake_port.written == b"ATZ\r\n")
        await manager.close()
        await asyncio.wait_for(task, 1)
