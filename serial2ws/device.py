"""Serial device settings, opening and enumeration."""

from dataclasses import asdict, dataclass
from typing import List

import serial
from serial.tools import list_ports

from serial2ws.errors import DeviceIOError

DEFAULT_BAUD = 115200
DEFAULT_DATA_BITS = 8
DEFAULT_STOP_BITS = 1
DEFAULT_PARITY = "none"

DATA_BITS = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}
STOP_BITS = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}
PARITIES = {
    "none": serial.PARITY_NONE,
    "odd": serial.PARITY_ODD,
    "even": serial.PARITY_EVEN,
}


def _as_int(value, field: str) -> int:
    # bool is an int subclass; "data_bits": true is not a setting
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field} must be an integer")
    return value


@dataclass(frozen=True)
class DeviceConfig:
    """Settings used to open a serial device.

    ``port`` is a device path (``/dev/ttyUSB0``, ``COM7``) or any URL
    understood by :func:`serial.serial_for_url` (``loop://``, ``socket://``).
    """

    port: str
    baud_rate: int = DEFAULT_BAUD
    data_bits: int = DEFAULT_DATA_BITS
    stop_bits: int = DEFAULT_STOP_BITS
    parity: str = DEFAULT_PARITY

    def __post_init__(self):
        if not isinstance(self.port, str) or not self.port.strip():
            raise ValueError("port must be a non-empty string")
        if _as_int(self.baud_rate, "baud_rate") <= 0:
            raise ValueError("baud_rate must be positive")
        if _as_int(self.data_bits, "data_bits") not in DATA_BITS:
            raise ValueError("data_bits must be one of 5, 6, 7, 8")
        if _as_int(self.stop_bits, "stop_bits") not in STOP_BITS:
            raise ValueError("stop_bits must be 1 or 2")
        if self.parity not in PARITIES:
            raise ValueError("parity must be one of none, odd, even")

    @classmethod
    def from_dict(cls, data) -> "DeviceConfig":
        """Build a config from a decoded JSON body; raise ValueError if invalid."""
        if not isinstance(data, dict):
            raise ValueError("config must be a JSON object")
        if "port" not in data:
            raise ValueError("port is required")
        return cls(
            port=data["port"],
            baud_rate=data.get("baud_rate", DEFAULT_BAUD),
            data_bits=data.get("data_bits", DEFAULT_DATA_BITS),
            stop_bits=data.get("stop_bits", DEFAULT_STOP_BITS),
            parity=data.get("parity", DEFAULT_PARITY),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DeviceInfo:
    """An available serial device."""

    name: str
    port_type: str

    def to_dict(self) -> dict:
        return asdict(self)


def open_serial(config: DeviceConfig) -> serial.SerialBase:
    """Open the serial port with the given settings."""
    try:
        return serial.serial_for_url(
            config.port,
            baudrate=config.baud_rate,
            bytesize=DATA_BITS[config.data_bits],
            stopbits=STOP_BITS[config.stop_bits],
            parity=PARITIES[config.parity],
        )
    except (serial.SerialException, OSError, ValueError) as e:
        raise DeviceIOError(str(e)) from e


def port_type(info) -> str:
    """Describe the kind of device behind a ``ListPortInfo``."""
    if info.vid is not None and info.pid is not None:
        return f"USB (VID:{info.vid:04x} PID:{info.pid:04x})"
    hwid = (info.hwid or "").upper()
    if "BTHENUM" in hwid or "BLUETOOTH" in hwid:
        return "Bluetooth"
    if "PCI" in hwid:
        return "PCI"
    return "Unknown"


def list_devices() -> List[DeviceInfo]:
    """Enumerate the serial devices present on this machine."""
    try:
        ports = list_ports.comports()
    except OSError as e:
        raise DeviceIOError(str(e)) from e
    return [DeviceInfo(name=p.device, port_type=port_type(p)) for p in ports]
