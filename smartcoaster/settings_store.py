"""Cached settings backed by the key/value store, with a queue of pending saves."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import IntEnum
from typing import Deque, Dict, Optional, Tuple

from .channel import PubSubChannel, Publisher
from .settings import (
    SettingError,
    SettingErrorKind,
    SettingsAccessorId,
    SettingsMessage,
    StorageError,
)
from .storage_manager import StorageManager
from .values import StoredDataValue

log = logging.getLogger(__name__)

SAVE_QUEUE_CAPACITY = 5


class StoredSetting(IntEnum):
    """Settings kept in storage; the number is the storage key."""

    WEIGHING_SYSTEM_TARE_OFFSET = 0
    WEIGHING_SYSTEM_CALIBRATION_GRADIENT = 1
    SYSTEM_LED_BRIGHTNESS = 2
    SYSTEM_DISPLAY_BRIGHTNESS = 3
    WEIGHING_SYSTEM_BITS_TO_DISCARD = 4
    MONITORING_TARGET_TYPE = 5
    MONITORING_TARGET_DAILY = 6
    DISPLAY_TIMEOUT_MINUTES = 7
    MONITORING_DAILY_TARGET_TIME = 8
    MONITORING_TARGET_HOURLY = 9
    MONITORING_DISPLAY_INDEX = 10

    @classmethod
    def from_accessor_id(cls, setting_id: SettingsAccessorId) -> StoredSetting:
        """The stored setting behind an accessor identifier."""
        return cls[setting_id.name]


class SettingsManager:
    """Holds every setting in memory and writes queued changes to storage.

    Callers share one instance and hold :attr:`lock` around each use.
    """

    def __init__(
        self, storage: StorageManager, channel: PubSubChannel[SettingsMessage]
    ) -> None:
        self.lock = asyncio.Lock()
        self._storage = storage
        self._channel = channel
        self._cache: Dict[int, Optional[StoredDataValue]] = {}
        self._initialised = False
        self._save_queue: Deque[Tuple[StoredSetting, StoredDataValue]] = deque()
        self._publisher: Optional[Publisher[SettingsMessage]] = None

    async def initialise(self) -> None:
        """Load every setting from storage into the cache."""
        self._publisher = self._channel.publisher()
        for setting in StoredSetting:
            try:
                self._cache[setting] = await self._load_setting_from_flash(setting)
            except SettingError:
                self._cache[setting] = None
        self._initialised = True
        log.debug("Settings initialised")

    def is_initialized(self) -> bool:
        """True once :meth:`initialise` has run."""
        return self._publisher is not None and self._initialised

    async def _save_setting(self, setting: StoredSetting, value: StoredDataValue) -> None:
        if not self.is_initialized():
            log.warning("Trying to save settings before initialisation")
            raise SettingError(SettingErrorKind.NOT_INITIALIZED)
        async with self._storage.lock:
            try:
                await self._storage.save_key_value_pair(int(setting), value)
            except StorageError as exc:
                log.warning("Unable to save setting. Error: %s", exc)
                raise SettingError(SettingErrorKind.SAVE_ERROR, str(exc)) from exc
        self._cache[setting] = value
        log.debug("Setting saved - %s = %r", setting.name, value)

    async def process_queued_saves(self) -> None:
        """Write every queued change to storage, oldest first."""
        while self._save_queue:
            setting, value = self._save_queue.popleft()
            await self._save_setting(setting, value)

    async def _load_setting_from_flash(
        self, setting: StoredSetting
    ) -> Optional[StoredDataValue]:
        async with self._storage.lock:
            if not self._storage.is_initialized():
                log.warning("Called load setting prior to storage being initialised.")
                raise SettingError(SettingErrorKind.NOT_INITIALIZED)
            try:
                return await self._storage.read_key_value_pair(int(setting))
            except StorageError as exc:
                log.warning("Unable to load setting. Error: %s", exc)
                raise SettingError(SettingErrorKind.RETRIEVE_ERROR, str(exc)) from exc

    def get_setting(self, key: int) -> Optional[StoredDataValue]:
        """Cached value for a storage key, or ``None`` if it has none."""
        return self._cache.get(int(key))

    def queue_settings_save(self, setting: StoredSetting, value: StoredDataValue) -> None:
        """Queue a change to be written by :meth:`process_queued_saves`."""
        if len(self._save_queue) >= SAVE_QUEUE_CAPACITY:
            raise SettingError(SettingErrorKind.SAVE_QUEUE_FULL)
        self._save_queue.append((StoredSetting(setting), value))

    def alert_system(self, message: SettingsMessage) -> None:
        """Announce a change on the settings channel once initialised."""
        if self._publisher is not None:
            self._publisher.publish_immediate(message)