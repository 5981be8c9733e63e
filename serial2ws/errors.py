"""Exceptions raised by the serial bridge."""


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ConflictError(BridgeError):
    """A device is already open (or being opened)."""


class DeviceIOError(BridgeError):
    """Opening, reading from or writing to the serial device failed."""


class ClientProtocolError(BridgeError):
    """A streaming client sent a frame the session cannot handle."""


class OutboundQueueClosed(BridgeError):
    """The outbound queue no longer accepts data; the write is lost."""
