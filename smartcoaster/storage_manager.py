"""Non-volatile storage: a key/value map and append-only logs on NOR flash."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .settings import StorageError, StorageErrorKind
from .values import SerializationError, StoredDataValue

log = logging.getLogger(__name__)

DATA_BUFFER_SIZE = 64
"""Largest item, in bytes, that the map or a log accepts."""

_HEADER_SIZE = 2
_KEY_SIZE = 2
_ERASED_LENGTH = 0xFFFF
_MAX_KEY = 0xFFFF


class MemoryFlash:
    """NOR flash held in memory.

    Erased bytes read as 0xFF. Writing can only clear bits, so a location
    must be erased before it is written with different data. Erasing works
    on whole pages.
    """

    ERASED_BYTE = 0xFF

    def __init__(self, capacity: int, page_size: int) -> None:
        if page_size <= 0:
            raise ValueError("page size must be positive")
        if capacity <= 0 or capacity % page_size:
            raise ValueError("capacity must be a positive multiple of the page size")
        self.capacity = capacity
        self.page_size = page_size
        self._data = bytearray([self.ERASED_BYTE]) * capacity

    def _check_bounds(self, offset: int, length: int) -> None:
        if offset < 0 or length < 0 or offset + length > self.capacity:
            raise ValueError(
                f"access of {length} bytes at 0x{offset:x} is outside the flash"
            )

    def read(self, offset: int, length: int) -> bytes:
        """Return ``length`` bytes starting at ``offset``."""
        self._check_bounds(offset, length)
        return bytes(self._data[offset : offset + length])

    def write(self, offset: int, data: bytes) -> None:
        """Program ``data`` at ``offset``; fails if a bit would have to be set."""
        self._check_bounds(offset, len(data))
        current = self._data[offset : offset + len(data)]
        if any(old & new != new for old, new in zip(current, data)):
            raise ValueError(f"flash at 0x{offset:x} is not erased")
        self._data[offset : offset + len(data)] = data

    def erase(self, start: int, end: int) -> None:
        """Erase the pages from ``start`` up to ``end``."""
        if start % self.page_size or end % self.page_size:
            raise ValueError("erase range must be aligned to pages")
        if end < start:
            raise ValueError("erase range ends before it starts")
        self._check_bounds(start, end - start)
        self._data[start:end] = bytes([self.ERASED_BYTE]) * (end - start)


@dataclass(frozen=True)
class StoredLogConfig:
    """Where a log lives in flash and whether old entries may be overwritten."""

    storage_range: range
    allow_overwrite_old: bool


def _scan(flash: MemoryFlash, region: range) -> Tuple[List[bytes], int]:
    """Return the records in ``region`` and the offset of the first free byte."""
    items: List[bytes] = []
    offset = region.start
    while offset + _HEADER_SIZE <= region.stop:
        length = int.from_bytes(flash.read(offset, _HEADER_SIZE), "little")
        if length == _ERASED_LENGTH:
            break
        if offset + _HEADER_SIZE + length > region.stop:
            raise ValueError(f"corrupt record at 0x{offset:x}")
        items.append(flash.read(offset + _HEADER_SIZE, length))
        offset += _HEADER_SIZE + length
    return items, offset


def _record_size(payload: bytes) -> int:
    return _HEADER_SIZE + len(payload)


def _append(flash: MemoryFlash, offset: int, payload: bytes) -> int:
    flash.write(offset, len(payload).to_bytes(_HEADER_SIZE, "little") + payload)
    return offset + _record_size(payload)


def _rewrite(flash: MemoryFlash, region: range, payloads: List[bytes]) -> None:
    flash.erase(region.start, region.stop)
    offset = region.start
    for payload in payloads:
        offset = _append(flash, offset, payload)


def _check_key(key: int) -> None:
    if isinstance(key, bool) or not isinstance(key, int) or not 0 <= key <= _MAX_KEY:
        raise ValueError(f"key {key!r} is not a 16-bit unsigned integer")


class StorageManager:
    """Key/value and log storage on a flash device.

    Callers share one instance and hold :attr:`lock` around each use.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self._flash: Optional[MemoryFlash] = None
        self._key_value_range: Optional[range] = None
        self._page_size: Optional[int] = None
        self._initialised = False

    async def initialise(
        self, flash: MemoryFlash, storage_range: range, page_size: int
    ) -> None:
        """Attach the flash and the range that holds the key/value map."""
        if (
            len(storage_range) == 0
            or storage_range.start < 0
            or storage_range.stop > flash.capacity
        ):
            raise ValueError("storage range is empty or outside the flash")
        self._flash = flash
        self._key_value_range = storage_range
        self._page_size = page_size
        log.debug(
            "Storage initialising. KeyValue flash address range: 0x%x to 0x%x, "
            "flash size: %d",
            storage_range.start,
            storage_range.stop,
            flash.capacity,
        )
        self._initialised = True
        log.debug("Storage initialised")

    def _configured(self) -> bool:
        return self._flash is not None and self._key_value_range is not None

    def is_initialized(self) -> bool:
        """True once :meth:`initialise` has run."""
        return self._configured() and self._initialised

    def _require_flash(self) -> MemoryFlash:
        if self._flash is None:
            log.error("Trying to use storage before initialisation")
            raise StorageError(StorageErrorKind.NOT_INITIALIZED)
        return self._flash

    async def clear_data(self) -> None:
        """Erase the whole key/value map."""
        if not self._configured():
            log.warning("Trying to clear data before storage is configured")
            raise StorageError(StorageErrorKind.NOT_INITIALIZED)
        region = self._key_value_range
        try:
            self._flash.erase(region.start, region.stop)
        except ValueError as exc:
            log.warning("Unable to erase storage. Error: %s", exc)
            raise StorageError(StorageErrorKind.ERASE_ERROR, str(exc)) from exc

    async def save_key_value_pair(self, key: int, value: StoredDataValue) -> None:
        """Store ``value`` under ``key``, replacing any earlier value."""
        if not self.is_initialized():
            log.error("Trying to save to storage before initialisation")
            raise StorageError(StorageErrorKind.NOT_INITIALIZED)
        _check_key(key)
        payload = key.to_bytes(_KEY_SIZE, "little") + value.serialize()
        if len(payload) > DATA_BUFFER_SIZE:
            raise StorageError(StorageErrorKind.SAVE_ERROR, "value too large")

        flash, region = self._flash, self._key_value_range
        try:
            items, free = _scan(flash, region)
            if free + _record_size(payload) <= region.stop:
                _append(flash, free, payload)
                return
            latest: Dict[bytes, bytes] = {}
            for item in items:
                item_key = item[:_KEY_SIZE]
                latest.pop(item_key, None)
                latest[item_key] = item
            latest.pop(payload[:_KEY_SIZE], None)
            latest[payload[:_KEY_SIZE]] = payload
            kept = list(latest.values())
            if sum(map(_record_size, kept)) > len(region):
                raise StorageError(StorageErrorKind.SAVE_ERROR, "storage full")
            _rewrite(flash, region, kept)
        except ValueError as exc:
            log.warning("Unable to save key/value. Error %s", exc)
            raise StorageError(StorageErrorKind.SAVE_ERROR, str(exc)) from exc

    async def read_key_value_pair(self, key: int) -> Optional[StoredDataValue]:
        """Return the value stored under ``key``, or ``None`` if there is none."""
        if not self._configured():
            log.error("Trying to load from storage before initialisation")
            raise StorageError(StorageErrorKind.NOT_INITIALIZED)
        _check_key(key)
        wanted = key.to_bytes(_KEY_SIZE, "little")
        try:
            items, _ = _scan(self._flash, self._key_value_range)
            found = None
            for item in items:
                if item[:_KEY_SIZE] == wanted:
                    found = item
            if found is None:
                return None
            return StoredDataValue.deserialize(found[_KEY_SIZE:])
        except (ValueError, SerializationError) as exc:
            log.warning("Unable to read key value pair data. Error: %s", exc)
            raise StorageError(StorageErrorKind.RETRIEVE_ERROR, str(exc)) from exc

    async def write_log_data(self, config: StoredLogConfig, data: bytes) -> None:
        """Append an entry to a log, dropping the oldest ones if allowed."""
        flash = self._require_flash()
        payload = bytes(data)
        region = config.storage_range
        if len(payload) > DATA_BUFFER_SIZE:
            raise StorageError(StorageErrorKind.SAVE_ERROR, "log entry too large")
        try:
            items, free = _scan(flash, region)
            if free + _record_size(payload) <= region.stop:
                _append(flash, free, payload)
                return
            if not config.allow_overwrite_old:
                raise StorageError(StorageErrorKind.SAVE_ERROR, "log full")
            needed = _record_size(payload)
            used = sum(map(_record_size, items))
            while items and used + needed > len(region):
                used -= _record_size(items.pop(0))
            if used + needed > len(region):
                raise StorageError(StorageErrorKind.SAVE_ERROR, "log entry too large")
            _rewrite(flash, region, items + [payload])
        except ValueError as exc:
            log.warning("Unable to write log data. Error: %s", exc)
            raise StorageError(StorageErrorKind.SAVE_ERROR, str(exc)) from exc

    async def clear_log_data(self, config: StoredLogConfig) -> None:
        """Erase every entry of a log."""
        flash = self._require_flash()
        region = config.storage_range
        try:
            flash.erase(region.start, region.stop)
        except ValueError as exc:
            log.error("Unable to erase data. Error: %s", exc)
            raise StorageError(StorageErrorKind.ERASE_ERROR, str(exc)) from exc

    async def get_space_remaining(self, config: StoredLogConfig) -> int:
        """Free bytes left in a log."""
        flash = self._require_flash()
        try:
            _, free = _scan(flash, config.storage_range)
        except ValueError as exc:
            log.warning("Unable to get remaining space. Error: %s", exc)
            raise StorageError(
                StorageErrorKind.CAPACITY_CHECK_ERROR, str(exc)
            ) from exc
        return config.storage_range.stop - free

    async def get_log_items(
        self, config: StoredLogConfig, start: int, count: int
    ) -> List[bytes]:
        """Return up to ``count`` log entries, oldest first, skipping ``start``."""
        if start < 0 or count < 0:
            raise ValueError("start and count must not be negative")
        flash = self._require_flash()
        try:
            items, _ = _scan(flash, config.storage_range)
        except ValueError as exc:
            log.error("Unable to read log entries - %s", exc)
            raise StorageError(StorageErrorKind.RETRIEVE_ERROR, str(exc)) from exc
        retrieved = items[start : start + count]
        log.debug("Retrieved %d entries", len(retrieved))
        return retrieved


async def wait_for_storage_initialisation(
    storage: StorageManager, poll_interval: float = 0.2
) -> None:
    """Wait until ``storage`` has been initialised."""
    while True:
        async with storage.lock:
            if storage.is_initialized():
                return
        await asyncio.sleep(poll_interval)