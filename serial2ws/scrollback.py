"""Bounded history of recent device output, replayed to late-joining clients."""

from threading import Lock

DEFAULT_SCROLLBACK_SIZE = 128 * 1024


class ScrollbackBuffer:
    """Thread-safe FIFO byte store holding the most recent ``max_size`` bytes.

    Eviction is byte-granular: a chunk larger than the remaining room keeps
    only its tail.
    """

    def __init__(self, max_size: int = DEFAULT_SCROLLBACK_SIZE):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._data = bytearray()
        self._lock = Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    def extend(self, data: bytes) -> None:
        """Append data, dropping the oldest bytes beyond the cap."""
        if not data:
            return
        with self._lock:
            if len(data) >= self._max_size:
                self._data[:] = data[-self._max_size:]
                return
            self._data += data
            overflow = len(self._data) - self._max_size
            if overflow > 0:
                del self._data[:overflow]

    def snapshot(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
