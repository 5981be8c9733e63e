"""Pytest configuration and shared fixtures."""

import pytest

from serial2ws.fanout import FanOutChannel
from serial2ws.manager import ConnectionManager
from serial2ws.scrollback import ScrollbackBuffer
from tests.helpers import FakePort


@pytest.fixture
def fake_port():
    return FakePort()


@pytest.fixture
def scrollback():
    return ScrollbackBuffer(max_size=64)


@pytest.fixture
def fanout():
    return FanOutChannel(capacity=16)


@pytest.fixture
def manager(fanout, scrollback, fake_port):
    """Manager whose opener always hands out ``fake_port``."""
    return ConnectionManager(fanout, scrollback, queue_size=8, opener=lambda config: fake_port)
