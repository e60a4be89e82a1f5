import asyncio
import datetime as dt

import pytest

from smartcoaster.channel import PubSubChannel, Watch
from smartcoaster.historical import (
    SETTINGS_NVM_FLASH_OFFSET_RANGE,
    FLASH_SIZE,
    NVM_PAGE_SIZE,
    Logs,
    SimpleLogEntry,
)
from smartcoaster.log_manager import (
    HistoricalLogAccessor,
    HistoricalLogManager,
    HistoricalLogMessage,
    HistoricalLogMessageKind,
    RetrievedLogEntry,
    encode_timestamp,
    process_log_queues,
)
from smartcoaster.rtc import RtcAccessor
from smartcoaster.settings import StorageError, StorageErrorKind
from smartcoaster.storage_manager import MemoryFlash, StorageManager, StoredLogConfig
from smartcoaster.values import StoredDataValue, ValueKind

LOG_CONFIG = StoredLogConfig(storage_range=range(0, 2048), allow_overwrite_old=True)
BASE = dt.datetime(2025, 3, 14, 15, 9, 26)


async def make_storage():
    storage = StorageManager()
    await storage.initialise(MemoryFlash(4096, 256), range(2048, 4096), 256)
    return storage


def drain(subscriber):
    messages = []
    while True:
        message = subscriber.try_next_message()
        if message is None:
            return messages
        messages.append(message)


def test_encode_timestamp_layout():
    assert encode_timestamp(BASE) == bytes([0xE9, 0x07, 3, 14, 15, 9, 26, 0, 0, 0])


def test_from_buffer_round_trip():
    stamp = BASE.replace(microsecond=5000)
    entry = RetrievedLogEntry.from_buffer(encode_timestamp(stamp) + b"payload")
    assert entry.timestamp == stamp
    assert entry.data == b"payload"


def test_from_buffer_rejects_invalid_date():
    raw = bytearray(encode_timestamp(BASE))
    raw[2] = 13
    with pytest.raises(StorageError) as info:
        RetrievedLogEntry.from_buffer(bytes(raw))
    assert info.value.kind is StorageErrorKind.DECODE_ERROR


def test_from_buffer_rejects_short_buffer():
    with pytest.raises(StorageError) as info:
        RetrievedLogEntry.from_buffer(b"\x01\x02")
    assert info.value.kind is StorageErrorKind.DECODE_ERROR


@pytest.mark.asyncio
async def test_write_queue_stores_entry():
    storage = await make_storage()
    manager = HistoricalLogManager(storage)
    entry = SimpleLogEntry(StoredDataValue(ValueKind.UINT, 330))
    manager.queue_write(LOG_CONFIG, BASE, entry, False)
    await manager.process_write_queue()
    items = await storage.get_log_items(LOG_CONFIG, 0, 10)
    assert items == [encode_timestamp(BASE) + entry.encode()]
    decoded = RetrievedLogEntry.from_buffer(items[0])
    assert SimpleLogEntry.from_bytes(decoded.data) == entry


@pytest.mark.asyncio
async def test_write_queue_full():
    manager = HistoricalLogManager(await make_storage())
    for _ in range(8):
        manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), False)
    with pytest.raises(StorageError) as info:
        manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), False)
    assert info.value.kind is StorageErrorKind.SAVE_ERROR


@pytest.mark.asyncio
async def test_clear_request_erases_log():
    storage = await make_storage()
    manager = HistoricalLogManager(storage)
    manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), False)
    manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), False)
    await manager.process_write_queue()
    assert len(await storage.get_log_items(LOG_CONFIG, 0, 10)) == 2
    manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), True)
    await manager.process_write_queue()
    assert await storage.get_log_items(LOG_CONFIG, 0, 10) == []


async def filled_manager(count):
    storage = await make_storage()
    manager = HistoricalLogManager(storage)
    stamps = [BASE + dt.timedelta(minutes=i) for i in range(count)]
    for stamp in stamps:
        entry = SimpleLogEntry(StoredDataValue(ValueKind.SMALL_UINT, stamps.index(stamp)))
        manager.queue_write(LOG_CONFIG, stamp, entry, False)
        await manager.process_write_queue()
    return manager, stamps


@pytest.mark.asyncio
@pytest.mark.parametrize("start_index", [0, 1, 3, 4, 5, 6, 9, 10, 12])
async def test_read_after_timestamp(start_index):
    manager, stamps = await filled_manager(12)
    channel = PubSubChannel(30, 1, 1)
    subscriber = channel.subscriber()
    target = BASE + dt.timedelta(minutes=start_index)
    manager.queue_read(LOG_CONFIG, target, channel)
    await manager.process_read_queue()
    messages = drain(subscriber)
    assert messages[-1] == HistoricalLogMessage(HistoricalLogMessageKind.END_OF_READ)
    records = messages[:-1]
    assert all(m.kind is HistoricalLogMessageKind.RECORD for m in records)
    assert [m.entry.timestamp for m in records] == stamps[start_index:]


@pytest.mark.asyncio
async def test_read_between_entries_starts_at_next():
    manager, stamps = await filled_manager(7)
    channel = PubSubChannel(30, 1, 1)
    subscriber = channel.subscriber()
    manager.queue_read(LOG_CONFIG, stamps[2] + dt.timedelta(seconds=30), channel)
    await manager.process_read_queue()
    records = drain(subscriber)[:-1]
    assert [m.entry.timestamp for m in records] == stamps[3:]


@pytest.mark.asyncio
async def test_repeated_reads_on_same_channel():
    manager, stamps = await filled_manager(3)
    channel = PubSubChannel(30, 1, 1)
    subscriber = channel.subscriber()
    manager.queue_read(LOG_CONFIG, stamps[0], channel)
    manager.queue_read(LOG_CONFIG, stamps[2], channel)
    await manager.process_read_queue()
    kinds = [m.kind for m in drain(subscriber)]
    assert kinds.count(HistoricalLogMessageKind.END_OF_READ) == 2
    assert kinds.count(HistoricalLogMessageKind.RECORD) == 4


@pytest.mark.asyncio
async def test_read_through_single_slot_channel():
    manager, stamps = await filled_manager(8)
    channel = PubSubChannel(1, 1, 1)
    subscriber = channel.subscriber()
    manager.queue_read(LOG_CONFIG, stamps[0], channel)

    async def consume():
        received = []
        while True:
            message = await subscriber.next_message()
            if message.kind is HistoricalLogMessageKind.END_OF_READ:
                return received
            received.append(message.entry.timestamp)

    _, received = await asyncio.wait_for(
        asyncio.gather(manager.process_read_queue(), consume()), timeout=5
    )
    assert received == stamps


@pytest.mark.asyncio
async def test_read_queue_full():
    manager = HistoricalLogManager(await make_storage())
    channel = PubSubChannel(10, 1, 1)
    for _ in range(4):
        manager.queue_read(LOG_CONFIG, BASE, channel)
    with pytest.raises(StorageError) as info:
        manager.queue_read(LOG_CONFIG, BASE, channel)
    assert info.value.kind is StorageErrorKind.RETRIEVE_ERROR


@pytest.mark.asyncio
async def test_process_log_queues_swallows_errors():
    manager = HistoricalLogManager(StorageManager())
    channel = PubSubChannel(10, 1, 1)
    subscriber = channel.subscriber()
    manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), False)
    manager.queue_read(LOG_CONFIG, BASE, channel)
    with pytest.raises(StorageError):
        await manager.process_write_queue()
    manager.queue_write(LOG_CONFIG, BASE, SimpleLogEntry(), False)
    await process_log_queues(manager)
    assert drain(subscriber) == [
        HistoricalLogMessage(HistoricalLogMessageKind.END_OF_READ)
    ]


@pytest.mark.asyncio
async def test_accessor_logs_and_reads_back():
    storage = StorageManager()
    flash = MemoryFlash(FLASH_SIZE, NVM_PAGE_SIZE)
    await storage.initialise(flash, SETTINGS_NVM_FLASH_OFFSET_RANGE, NVM_PAGE_SIZE)
    manager = HistoricalLogManager(storage)
    watch = Watch(5)
    rtc = RtcAccessor(watch)
    watch.send(BASE)
    accessor = HistoricalLogAccessor(Logs.CONSUMPTION_LOG, manager, rtc)

    value = StoredDataValue(ValueKind.FLOAT, 42.5)
    await accessor.log_simple_data(value)
    await process_log_queues(manager)

    channel = PubSubChannel(10, 1, 1)
    subscriber = channel.subscriber()
    await accessor.get_log_data_after_timestamp(dt.datetime(2000, 1, 1), channel)
    await process_log_queues(manager)
    messages = drain(subscriber)
    assert len(messages) == 2
    record = messages[0].entry
    assert record.timestamp == BASE
    assert SimpleLogEntry.from_bytes(record.data).data == value

    await accessor.clear_log()
    await accessor.get_log_data_after_timestamp(dt.datetime(2000, 1, 1), channel)
    await process_log_queues(manager)
    assert [m.kind for m in drain(subscriber)] == [HistoricalLogMessageKind.END_OF_READ]