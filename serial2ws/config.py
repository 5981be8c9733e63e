"""Configuration and command-line argument parsing for the serial-to-WebSocket bridge."""

import argparse
import os

from serial2ws.device import (
    DEFAULT_BAUD,
    DEFAULT_DATA_BITS,
    DEFAULT_PARITY,
    DEFAULT_STOP_BITS,
    PARITIES,
    DeviceConfig,
)
from serial2ws.pumps import DEFAULT_QUEUE_SIZE
from serial2ws.scrollback import DEFAULT_SCROLLBACK_SIZE

DEFAULT_LISTEN = "0.0.0.0"
DEFAULT_HTTP_PORT = 3000


def parse_args(argv=None):
    """Parse command-line arguments and return a validated namespace."""
    parser = argparse.ArgumentParser(
        description="Share one serial port with any number of WebSocket clients."
    )
    parser.add_argument(
        "--listen",
        default=DEFAULT_LISTEN,
        help=f"HTTP listen address (default: {DEFAULT_LISTEN})",
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=DEFAULT_HTTP_PORT,
        help=f"HTTP listen port (default: {DEFAULT_HTTP_PORT})",
    )
    parser.add_argument(
        "--scrollback-size",
        type=int,
        default=DEFAULT_SCROLLBACK_SIZE,
        help=f"Bytes of device output replayed to new clients (default: {DEFAULT_SCROLLBACK_SIZE})",
    )
    parser.add_argument(
        "--queue-size",
        type=int,
        default=DEFAULT_QUEUE_SIZE,
        help=f"Messages buffered on the way to the device (default: {DEFAULT_QUEUE_SIZE})",
    )
    parser.add_argument(
        "--static-dir",
        default=None,
        help="Directory with the web frontend to serve at / (default: none)",
    )
    parser.add_argument(
        "--cors",
        action="store_true",
        help="Send permissive CORS headers on API responses",
    )
    parser.add_argument(
        "--port",
        default=None,
        help="Serial port to open at startup (default: wait for /api/connect)",
    )
    parser.add_argument(
        "--baud",
        type=int,
        default=DEFAULT_BAUD,
        help=f"Baud rate for --port (default: {DEFAULT_BAUD})",
    )
    parser.add_argument(
        "--data-bits",
        type=int,
        default=DEFAULT_DATA_BITS,
        help=f"Data bits for --port (default: {DEFAULT_DATA_BITS})",
    )
    parser.add_argument(
        "--stop-bits",
        type=int,
        default=DEFAULT_STOP_BITS,
        help=f"Stop bits for --port (default: {DEFAULT_STOP_BITS})",
    )
    parser.add_argument(
        "--parity",
        default=DEFAULT_PARITY,
        choices=sorted(PARITIES),
        help=f"Parity for --port (default: {DEFAULT_PARITY})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (connection events, errors)",
    )
    args = parser.parse_args(argv)
    _validate(args)
    return args


def _validate(args):
    """Validate parsed arguments; raise ValueError on invalid values."""
    if not (1 <= args.http_port <= 65535):
        raise ValueError("HTTP port (--http-port) must be between 1 and 65535")
    if args.scrollback_size <= 0:
        raise ValueError("Scrollback size (--scrollback-size) must be positive")
    if args.queue_size <= 0:
        raise ValueError("Queue size (--queue-size) must be positive")
    if args.static_dir is not None and not os.path.isdir(args.static_dir):
        raise ValueError(f"Static directory (--static-dir) not found: {args.static_dir}")
    args.device = None
    if args.port is not None:
        args.device = DeviceConfig(
            port=args.port,
            baud_rate=args.baud,
            data_bits=args.data_bits,
            stop_bits=args.stop_bits,
            parity=args.parity,
        )
