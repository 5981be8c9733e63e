"""Serial-to-WebSocket bridge: share one serial port with many remote clients."""

from serial2ws.bridge import create_app, run_bridge
from serial2ws.manager import ConnectionManager

__all__ = ["ConnectionManager", "create_app", "run_bridge"]
