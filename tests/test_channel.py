import asyncio

import pytest

from smartcoaster.channel import ChannelError, PubSubChannel, Signal, Watch


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        PubSubChannel(0, 1, 1)


def test_messages_delivered_in_order():
    channel = PubSubChannel(4, 1, 1)
    sub = channel.subscriber()
    pub = channel.publisher()
    for item in ("a", "b", "c"):
        pub.publish_immediate(item)
    assert [sub.try_next_message() for _ in range(4)] == ["a", "b", "c", None]


def test_messages_without_subscribers_are_dropped():
    channel = PubSubChannel(4, 1, 1)
    pub = channel.publisher()
    pub.publish_immediate("lost")
    sub = channel.subscriber()
    assert sub.try_next_message() is None
    pub.publish_immediate("kept")
    assert sub.try_next_message() == "kept"


def test_late_subscriber_misses_earlier_messages():
    channel = PubSubChannel(4, 2, 1)
    first = channel.subscriber()
    pub = channel.publisher()
    pub.publish_immediate(1)
    second = channel.subscriber()
    pub.publish_immediate(2)
    assert first.try_next_message() == 1
    assert first.try_next_message() == 2
    assert second.try_next_message() == 2
    assert second.try_next_message() is None


def test_every_subscriber_sees_every_message():
    channel = PubSubChannel(3, 2, 1)
    subs = [channel.subscriber(), channel.subscriber()]
    pub = channel.publisher()
    pub.publish_immediate("x")
    pub.publish_immediate("y")
    for sub in subs:
        assert [sub.try_next_message(), sub.try_next_message()] == ["x", "y"]


def test_publish_immediate_drops_oldest_when_full():
    channel = PubSubChannel(2, 1, 1)
    sub = channel.subscriber()
    pub = channel.publisher()
    for item in (1, 2, 3):
        pub.publish_immediate(item)
    assert [sub.try_next_message(), sub.try_next_message()] == [2, 3]
    assert sub.try_next_message() is None


def test_subscriber_limit():
    channel = PubSubChannel(1, 1, 1)
    channel.subscriber()
    with pytest.raises(ChannelError):
        channel.subscriber()


def test_publisher_limit():
    channel = PubSubChannel(1, 1, 2)
    channel.publisher()
    channel.publisher()
    with pytest.raises(ChannelError):
        channel.publisher()


def test_none_messages_are_delivered():
    channel = PubSubChannel(2, 1, 1)
    sub = channel.subscriber()
    channel.publisher().publish_immediate(None)
    channel.publisher  # attribute access only
    assert sub._available() is True
    assert sub.try_next_message() is None
    assert sub._available() is False


@pytest.mark.asyncio
async def test_next_message_waits_for_publication():
    channel = PubSubChannel(2, 1, 1)
    sub = channel.subscriber()
    pub = channel.publisher()
    task = asyncio.create_task(sub.next_message())
    await asyncio.sleep(0)
    assert not task.done()
    await pub.publish("hello")
    assert await asyncio.wait_for(task, 1) == "hello"


@pytest.mark.asyncio
async def test_publish_waits_while_full():
    channel = PubSubChannel(1, 1, 1)
    sub = channel.subscriber()
    pub = channel.publisher()
    await pub.publish("a")
    task = asyncio.create_task(pub.publish("b"))
    await asyncio.sleep(0)
    assert not task.done()
    assert sub.try_next_message() == "a"
    await asyncio.wait_for(task, 1)
    assert await asyncio.wait_for(sub.next_message(), 1) == "b"


def test_watch_try_get_before_send():
    watch = Watch(2)
    receiver = watch.receiver()
    assert receiver.try_get() is None
    watch.send(5)
    assert receiver.try_get() == 5


def test_watch_receiver_limit():
    watch = Watch(1)
    watch.receiver()
    with pytest.raises(ChannelError):
        watch.receiver()


@pytest.mark.asyncio
async def test_watch_changed_returns_existing_value_first():
    watch = Watch(1)
    watch.send("first")
    receiver = watch.receiver()
    assert await asyncio.wait_for(receiver.changed(), 1) == "first"


@pytest.mark.asyncio
async def test_watch_changed_waits_for_new_value():
    watch = Watch(1)
    receiver = watch.receiver()
    watch.send(1)
    assert receiver.try_get() == 1
    task = asyncio.create_task(receiver.changed())
    await asyncio.sleep(0)
    assert not task.done()
    watch.send(2)
    assert await asyncio.wait_for(task, 1) == 2


def test_signal_take_clears():
    signal = Signal()
    assert signal.try_take() is None
    signal.signal("now")
    assert signal.try_take() == "now"
    assert signal.try_take() is None


def test_signal_keeps_latest():
    signal = Signal()
    signal.signal(1)
    signal.signal(2)
    assert signal.try_take() == 2


@pytest.mark.asyncio
async def test_signal_wait():
    signal = Signal()
    task = asyncio.create_task(signal.wait())
    await asyncio.sleep(0)
    assert not task.done()
    signal.signal("go")
    assert await asyncio.wait_for(task, 1) == "go"
    assert signal.try_take() is None