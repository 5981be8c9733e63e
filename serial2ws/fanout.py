"""Broadcast of device output to every attached client.

The channel keeps a bounded ring of recently published chunks. Each
subscription is a cursor into that ring, so a slow subscriber never blocks
the publisher: once it falls behind the ring it is told how many chunks it
missed and skips ahead to the oldest chunk still retained.
"""

import asyncio
from collections import deque
from typing import Optional, Set

DEFAULT_CAPACITY = 1024


class ChannelClosed(Exception):
    """The subscription (or the whole channel) has been closed."""


class Lagged(Exception):
    """The subscriber fell behind and ``count`` chunks were dropped for it."""

    def __init__(self, count: int):
        super().__init__(f"lagged behind by {count} chunks")
        self.count = count


class Subscription:
    """One consumer's position in a :class:`FanOutChannel`."""

    def __init__(self, channel: "FanOutChannel", cursor: int):
        self._channel = channel
        self._cursor = cursor
        self._end: Optional[int] = None
        self._wakeup = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._end is not None

    async def recv(self) -> bytes:
        """Return the next chunk, in publish order.

        Raises Lagged when chunks were dropped for this subscriber, and
        ChannelClosed once closed and everything before the close was read.
        """
        channel = self._channel
        while True:
            oldest = channel._next_seq - len(channel._ring)
            if self._cursor < oldest:
                missed = oldest - self._cursor
                self._cursor = oldest
                raise Lagged(missed)
            limit = channel._next_seq if self._end is None else self._end
            if self._cursor < limit:
                data = channel._ring[self._cursor - oldest]
                self._cursor += 1
                return data
            if self._end is not None:
                raise ChannelClosed()
            self._wakeup.clear()
            await self._wakeup.wait()

    def close(self) -> None:
        """Detach from the channel; pending chunks are discarded."""
        self._close(self._cursor)
        self._channel._subscribers.discard(self)

    def _close(self, end: int) -> None:
        if self._end is None:
            self._end = end
        self._wakeup.set()

    def _notify(self) -> None:
        self._wakeup.set()


class FanOutChannel:
    """Multi-producer, multi-consumer broadcast of byte chunks."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._ring = deque(maxlen=capacity)
        self._next_seq = 0
        self._subscribers: Set[Subscription] = set()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._ring.maxlen

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, data: bytes) -> int:
        """Publish a chunk; return how many subscribers will see it."""
        if self._closed:
            return 0
        self._ring.append(data)
        self._next_seq += 1
        for sub in self._subscribers:
            sub._notify()
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Subscribe to chunks published from now on."""
        sub = Subscription(self, self._next_seq)
        if self._closed:
            sub._close(self._next_seq)
        else:
            self._subscribers.add(sub)
        return sub

    def close_subscribers(self) -> int:
        """Close every current subscription; the channel stays usable."""
        subs = list(self._subscribers)
        self._subscribers.clear()
        for sub in subs:
            sub._close(self._next_seq)
        return len(subs)

    def close(self) -> None:
        self._closed = True
        self.close_subscribers()
