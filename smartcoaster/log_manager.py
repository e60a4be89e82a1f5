"""Queued writing and reading of timestamped log entries kept in flash."""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import weakref
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Deque, List, Optional, Protocol

from .channel import PubSubChannel, Publisher
from .historical import LOG_TIMESTAMP_SIZE, LogEncodeDecodeError, Logs, SimpleLogEntry
from .rtc import DEFAULT_DATE_TIME, RtcAccessor
from .settings import StorageError, StorageErrorKind
from .storage_manager import DATA_BUFFER_SIZE, StorageManager, StoredLogConfig
from .values import StoredDataValue

log = logging.getLogger(__name__)

MAX_READ_CHUNK_SIZE = 5
WRITE_QUEUE_CAPACITY = 8
READ_QUEUE_CAPACITY = 4

HISTORICAL_LOG_CHANNEL_DEPTH = 1
HISTORICAL_LOG_CHANNEL_SUBSCRIBERS = 1
HISTORICAL_LOG_CHANNEL_PUBLISHERS = 1

_NANOS_PER_MICROSECOND = 1000
_NANO_BYTES = 3


class LogEntry(Protocol):
    """Anything that can be written to a log."""

    def encode(self) -> bytes: ...


def encode_timestamp(timestamp: _dt.datetime) -> bytes:
    """The 10-byte timestamp that starts every log entry."""
    year = timestamp.year
    nanos = timestamp.microsecond * _NANOS_PER_MICROSECOND
    return (
        bytes(
            [
                year & 0xFF,
                (year >> 8) & 0xFF,
                timestamp.month,
                timestamp.day,
                timestamp.hour,
                timestamp.minute,
                timestamp.second,
            ]
        )
        + nanos.to_bytes(4, "little")[:_NANO_BYTES]
    )


@dataclass(frozen=True)
class RetrievedLogEntry:
    """A log entry read back from flash: its timestamp and the bytes after it."""

    timestamp: _dt.datetime = DEFAULT_DATE_TIME
    data: bytes = b""

    @classmethod
    def from_buffer(cls, buffer: bytes) -> RetrievedLogEntry:
        """Decode a stored entry; raises :class:`StorageError` if it is malformed."""
        raw = bytes(buffer)
        if len(raw) < LOG_TIMESTAMP_SIZE:
            raise StorageError(StorageErrorKind.DECODE_ERROR, "entry shorter than its timestamp")
        year = raw[0] | (raw[1] << 8)
        nanos = int.from_bytes(raw[7:LOG_TIMESTAMP_SIZE], "little")
        try:
            timestamp = _dt.datetime(
                year,
                raw[2],
                raw[3],
                raw[4],
                raw[5],
                raw[6],
                nanos // _NANOS_PER_MICROSECOND,
            )
        except ValueError as exc:
            raise StorageError(StorageErrorKind.DECODE_ERROR, str(exc)) from exc
        return cls(timestamp, raw[LOG_TIMESTAMP_SIZE:])


class HistoricalLogMessageKind(Enum):
    ERROR = auto()
    END_OF_READ = auto()
    RECORD = auto()


@dataclass(frozen=True)
class HistoricalLogMessage:
    """One message of a log read; RECORD messages carry the entry."""

    kind: HistoricalLogMessageKind
    entry: Optional[RetrievedLogEntry] = None


@dataclass(frozen=True)
class _WriteRequest:
    config: StoredLogConfig
    data: bytes
    clear: bool


@dataclass(frozen=True)
class _ReadRequest:
    config: StoredLogConfig
    start_timestamp: _dt.datetime
    publisher: Publisher[HistoricalLogMessage]


class HistoricalLogManager:
    """Queues log writes and reads and carries them out against storage.

    Callers share one instance and hold :attr:`lock` around each use.
    """

    def __init__(self, storage: StorageManager) -> None:
        self.lock = asyncio.Lock()
        self._storage = storage
        self._write_queue: Deque[_WriteRequest] = deque()
        self._read_queue: Deque[_ReadRequest] = deque()
        self._publishers: "weakref.WeakKeyDictionary[PubSubChannel[HistoricalLogMessage], Publisher[HistoricalLogMessage]]" = (
            weakref.WeakKeyDictionary()
        )

    def queue_write(
        self,
        config: StoredLogConfig,
        timestamp: _dt.datetime,
        entry: LogEntry,
        clear: bool,
    ) -> None:
        """Queue an entry for writing, or a clear of the whole log if ``clear``."""
        try:
            body = entry.encode()
        except LogEncodeDecodeError as exc:
            log.error("Failed to encode.")
            raise StorageError(StorageErrorKind.SAVE_ERROR, str(exc)) from exc
        data = encode_timestamp(timestamp) + body
        if len(data) > DATA_BUFFER_SIZE:
            log.error("Failed to encode.")
            raise StorageError(StorageErrorKind.SAVE_ERROR, "log entry too large")
        if len(self._write_queue) >= WRITE_QUEUE_CAPACITY:
            log.error("Error writing log queue entry: queue full")
            raise StorageError(StorageErrorKind.SAVE_ERROR, "write queue full")
        self._write_queue.append(_WriteRequest(config, data, clear))

    def _publisher_for(
        self, channel: PubSubChannel[HistoricalLogMessage]
    ) -> Publisher[HistoricalLogMessage]:
        publisher = self._publishers.get(channel)
        if publisher is None:
            publisher = channel.publisher()
            self._publishers[channel] = publisher
        return publisher

    def queue_read(
        self,
        config: StoredLogConfig,
        start_timestamp: _dt.datetime,
        channel: PubSubChannel[HistoricalLogMessage],
    ) -> None:
        """Queue a read of every entry at or after ``start_timestamp`` to ``channel``."""
        if len(self._read_queue) >= READ_QUEUE_CAPACITY:
            log.error("Error writing read log queue request entry")
            raise StorageError(StorageErrorKind.RETRIEVE_ERROR, "read queue full")
        log.debug("Queueing storage read")
        self._read_queue.append(
            _ReadRequest(config, start_timestamp, self._publisher_for(channel))
        )

    async def process_write_queue(self) -> None:
        """Carry out every queued write, oldest first."""
        while self._write_queue:
            request = self._write_queue.popleft()
            if request.clear:
                log.info("Clearing log data")
                async with self._storage.lock:
                    await self._storage.clear_log_data(request.config)
            else:
                try:
                    await self._write_entry(request.config, request.data)
                except StorageError as exc:
                    log.error("Error while processing log queue entry %s", exc)
                    raise StorageError(StorageErrorKind.SAVE_ERROR, str(exc)) from exc

    async def process_read_queue(self) -> None:
        """Carry out every queued read, oldest first."""
        while self._read_queue:
            request = self._read_queue.popleft()
            await self._entries_after_timestamp_to_channel(
                request.config, request.start_timestamp, request.publisher
            )

    async def _write_entry(self, config: StoredLogConfig, data: bytes) -> None:
        log.debug("Writing log entry - %d bytes", len(data))
        async with self._storage.lock:
            await self._storage.write_log_data(config, data)
            log.debug(
                "Remaining capacity - %d of %d bytes",
                await self._storage.get_space_remaining(config),
                len(config.storage_range),
            )

    async def _fetch(self, config: StoredLogConfig, start: int) -> List[bytes]:
        try:
            return await self._storage.get_log_items(config, start, MAX_READ_CHUNK_SIZE)
        except StorageError:
            return []

    async def _find_start(self, config: StoredLogConfig, target: _dt.datetime) -> int:
        chunk_start = 0
        while True:
            items = await self._fetch(config, chunk_start)
            if not items:
                return chunk_start
            chunk_start += len(items)
            found_after_start = False
            # Searching backwards allows an early move to the next chunk.
            for item in reversed(items):
                if RetrievedLogEntry.from_buffer(item).timestamp < target:
                    if found_after_start:
                        return chunk_start
                    break
                found_after_start = True
                chunk_start -= 1
            else:
                return chunk_start

    async def _entries_after_timestamp_to_channel(
        self,
        config: StoredLogConfig,
        target: _dt.datetime,
        publisher: Publisher[HistoricalLogMessage],
    ) -> int:
        log.debug("Getting log entries after %s", target)
        total = 0
        async with self._storage.lock:
            chunk_start = await self._find_start(config, target)
            log.debug("Found start point - skipped %d entries", chunk_start)
            failed = False
            while not failed:
                items = await self._fetch(config, chunk_start)
                total += len(items)
                if not items:
                    break
                for item in items:
                    try:
                        entry = RetrievedLogEntry.from_buffer(item)
                    except StorageError as exc:
                        log.error("Error parsing record: %s", exc)
                        await publisher.publish(
                            HistoricalLogMessage(HistoricalLogMessageKind.ERROR)
                        )
                        failed = True
                        break
                    await publisher.publish(
                        HistoricalLogMessage(HistoricalLogMessageKind.RECORD, entry)
                    )
                chunk_start += len(items)
            log.debug("Signalling end of data read")
            await publisher.publish(
                HistoricalLogMessage(HistoricalLogMessageKind.END_OF_READ)
            )
        return total


async def process_log_queues(manager: HistoricalLogManager) -> None:
    """Process queued writes and reads; failures are logged, not raised."""
    async with manager.lock:
        try:
            await manager.process_write_queue()
        except StorageError as exc:
            log.error("Error processing write log queue: %s", exc)
        try:
            await manager.process_read_queue()
        except StorageError as exc:
            log.error("Error processing read log queue: %s", exc)


class HistoricalLogAccessor:
    """Writes to and reads from one log, stamping entries with the clock time."""

    def __init__(
        self, log: Logs, manager: HistoricalLogManager, rtc_accessor: RtcAccessor
    ) -> None:
        self._config = log.config()
        self._manager = manager
        self._rtc = rtc_accessor

    async def _queue(self, entry: LogEntry, clear: bool) -> None:
        async with self._manager.lock:
            try:
                self._manager.queue_write(
                    self._config, self._rtc.get_date_time(), entry, clear
                )
            except StorageError as exc:
                log.warning("Unable to write to log queue: %s", exc)

    async def log_simple_data(self, data: StoredDataValue) -> None:
        """Queue a single value for logging."""
        await self._queue(SimpleLogEntry(data), False)

    async def log_data(self, data: LogEntry) -> None:
        """Queue an entry for logging."""
        await self._queue(data, False)

    async def get_log_data_after_timestamp(
        self,
        start_timestamp: _dt.datetime,
        channel: PubSubChannel[HistoricalLogMessage],
    ) -> None:
        """Queue a read of entries at or after ``start_timestamp`` to ``channel``."""
        async with self._manager.lock:
            try:
                self._manager.queue_read(self._config, start_timestamp, channel)
            except StorageError as exc:
                log.warning("Unable to queue log read: %s", exc)

    async def clear_log(self) -> None:
        """Queue a clear of the whole log."""
        await self._queue(SimpleLogEntry(), True)