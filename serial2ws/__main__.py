"""Entry point: parse config and run the serial-to-WebSocket bridge with graceful shutdown."""

import sys

from serial2ws.bridge import run_bridge
from serial2ws.config import parse_args
from serial2ws.errors import DeviceIOError


def main():
    try:
        args = parse_args()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        run_bridge(
            listen=args.listen,
            http_port=args.http_port,
            scrollback_size=args.scrollback_size,
            queue_size=args.queue_size,
            static_dir=args.static_dir,
            cors=args.cors,
            device=args.device,
            verbose=args.verbose,
        )
    except DeviceIOError as e:
        print(f"Error: failed to open {args.port}: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
