"""In-process publish/subscribe channel, latest-value watch and one-slot signal."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ChannelError(Exception):
    """No more publishers, subscribers or receivers may be attached."""


class _Notifier:
    """Wakes every coroutine waiting for a state change."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def notify(self) -> None:
        event, self._event = self._event, asyncio.Event()
        event.set()

    async def wait(self) -> None:
        await self._event.wait()


class PubSubChannel(Generic[T]):
    """Bounded channel in which every subscriber sees every message published
    after it subscribed.

    A message stays queued until all subscribers have read it. With no
    subscribers attached, published messages are dropped.
    """

    def __init__(self, capacity: int, max_subscribers: int, max_publishers: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._max_subscribers = max_subscribers
        self._max_publishers = max_publishers
        self._buffer: Deque[Any] = deque()
        self._base = 0
        self._subscribers: List[Subscriber[T]] = []
        self._publisher_count = 0
        self._notifier = _Notifier()

    @property
    def _end(self) -> int:
        return self._base + len(self._buffer)

    @property
    def _full(self) -> bool:
        return len(self._buffer) >= self._capacity

    def publisher(self) -> Publisher[T]:
        """Attach a new publisher."""
        if self._publisher_count >= self._max_publishers:
            raise ChannelError("maximum number of publishers reached")
        self._publisher_count += 1
        return Publisher(self)

    def subscriber(self) -> Subscriber[T]:
        """Attach a new subscriber that sees messages published from now on."""
        if len(self._subscribers) >= self._max_subscribers:
            raise ChannelError("maximum number of subscribers reached")
        sub: Subscriber[T] = Subscriber(self)
        self._subscribers.append(sub)
        return sub

    def _push(self, message: T) -> None:
        if not self._subscribers:
            return
        self._buffer.append(message)
        self._notifier.notify()

    def _drop_oldest(self) -> None:
        self._buffer.popleft()
        self._base += 1

    def _purge(self) -> None:
        purged = False
        while self._buffer and all(s._next > self._base for s in self._subscribers):
            self._drop_oldest()
            purged = True
        if purged:
            self._notifier.notify()


class Publisher(Generic[T]):
    """Sending end of a :class:`PubSubChannel`."""

    def __init__(self, channel: PubSubChannel[T]) -> None:
        self._channel = channel

    async def publish(self, message: T) -> None:
        """Publish, waiting while the channel is full."""
        channel = self._channel
        while channel._full:
            await channel._notifier.wait()
        channel._push(message)

    def publish_immediate(self, message: T) -> None:
        """Publish now, dropping the oldest queued message if the channel is full."""
        channel = self._channel
        if channel._full:
            channel._drop_oldest()
        channel._push(message)


class Subscriber(Generic[T]):
    """Receiving end of a :class:`PubSubChannel`. Lag is skipped silently."""

    def __init__(self, channel: PubSubChannel[T]) -> None:
        self._channel = channel
        self._next = channel._end

    def _available(self) -> bool:
        channel = self._channel
        if self._next < channel._base:
            self._next = channel._base
        return self._next < channel._end

    def _take(self) -> T:
        channel = self._channel
        message = channel._buffer[self._next - channel._base]
        self._next += 1
        channel._purge()
        return message

    async def next_message(self) -> T:
        """Wait for and return the next message."""
        while not self._available():
            await self._channel._notifier.wait()
        return self._take()

    def try_next_message(self) -> Optional[T]:
        """Return the next message, or ``None`` if none is waiting."""
        if not self._available():
            return None
        return self._take()


class Watch(Generic[T]):
    """Holds the latest value and tells receivers when it changes."""

    def __init__(self, max_receivers: int) -> None:
        self._max_receivers = max_receivers
        self._receiver_count = 0
        self._value: Optional[T] = None
        self._version = 0
        self._notifier = _Notifier()

    def send(self, value: T) -> None:
        """Replace the current value and wake receivers."""
        self._value = value
        self._version += 1
        self._notifier.notify()

    def receiver(self) -> WatchReceiver[T]:
        """Attach a new receiver."""
        if self._receiver_count >= self._max_receivers:
            raise ChannelError("maximum number of watch receivers reached")
        self._receiver_count += 1
        return WatchReceiver(self)


class WatchReceiver(Generic[T]):
    """Reads values from a :class:`Watch`."""

    def __init__(self, watch: Watch[T]) -> None:
        self._watch = watch
        self._seen = 0

    async def changed(self) -> T:
        """Wait for a value this receiver has not yet seen and return it."""
        watch = self._watch
        while watch._version == self._seen:
            await watch._notifier.wait()
        self._seen = watch._version
        return watch._value  # type: ignore[return-value]

    def try_get(self) -> Optional[T]:
        """Return the current value, or ``None`` if nothing was ever sent."""
        watch = self._watch
        if watch._version == 0:
            return None
        self._seen = watch._version
        return watch._value


class Signal(Generic[T]):
    """A single slot: the latest signalled value waits until it is taken."""

    def __init__(self) -> None:
        self._pending = False
        self._value: Optional[T] = None
        self._notifier = _Notifier()

    def signal(self, value: T) -> None:
        """Store ``value``, replacing any value not yet taken."""
        self._value = value
        self._pending = True
        self._notifier.notify()

    def _take(self) -> T:
        value = self._value
        self._value = None
        self._pending = False
        return value  # type: ignore[return-value]

    def try_take(self) -> Optional[T]:
        """Take the pending value, or return ``None`` if there is none."""
        if not self._pending:
            return None
        return self._take()

    async def wait(self) -> T:
        """Wait for a value and take it."""
        while not self._pending:
            await self._notifier.wait()
        return self._take()