"""Settings access through the shared settings manager."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .settings import (
    SettingData,
    SettingError,
    SettingsAccessor,
    SettingsAccessorId,
    SettingsMessage,
)
from .settings_store import SettingsManager, StoredSetting
from .storage_manager import StorageManager, wait_for_storage_initialisation
from .values import StoredDataValue

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2


def _storage_of(manager: SettingsManager) -> StorageManager:
    return manager._storage  # the manager is built on this store


class FlashSettingsAccessor(SettingsAccessor):
    """Reads settings from the manager's cache and queues changes for saving."""

    def __init__(self, manager: SettingsManager) -> None:
        self._manager = manager

    async def get_setting(self, setting_id: SettingsAccessorId) -> Optional[StoredDataValue]:
        """Return the cached value, waiting until settings are initialised."""
        await wait_for_settings_initialisation(self._manager)
        async with self._manager.lock:
            return self._manager.get_setting(StoredSetting.from_accessor_id(setting_id))

    async def save_setting(self, setting_id: SettingsAccessorId, value: StoredDataValue) -> None:
        """Queue the value for saving and announce the change."""
        setting = StoredSetting.from_accessor_id(setting_id)
        manager = self._manager
        async with manager.lock:
            manager.queue_settings_save(setting, value)
            manager.alert_system(SettingsMessage(SettingData(setting_id, value)))


async def initialise_settings(manager: SettingsManager) -> None:
    """Wait for storage, then load every setting into the manager."""
    await wait_for_storage_initialisation(_storage_of(manager), DEFAULT_POLL_INTERVAL)
    async with manager.lock:
        await manager.initialise()


async def wait_for_settings_initialisation(
    manager: SettingsManager, poll_interval: float = DEFAULT_POLL_INTERVAL
) -> None:
    """Wait until storage and then the settings manager are initialised."""
    await wait_for_storage_initialisation(_storage_of(manager), poll_interval)
    while True:
        async with manager.lock:
            if manager.is_initialized():
                log.debug("Settings available")
                return
        await asyncio.sleep(poll_interval)


async def process_save_queue(manager: SettingsManager) -> None:
    """Write queued setting changes; failures are logged, not raised."""
    async with manager.lock:
        try:
            await manager.process_queued_saves()
        except SettingError as exc:
            log.error("Unable to process queued settings saves - %s", exc)