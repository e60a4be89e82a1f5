import pytest

from smartcoaster.settings import (
    SettingData,
    SettingError,
    SettingErrorKind,
    SettingsAccessorId,
    SettingsMessage,
    new_settings_channel,
)
from smartcoaster.settings_store import SettingsManager, StoredSetting
from smartcoaster.storage_manager import MemoryFlash, StorageManager
from smartcoaster.values import StoredDataValue, ValueKind

KV_RANGE = range(512, 1024)


async def _storage():
    storage = StorageManager()
    await storage.initialise(MemoryFlash(1024, 256), KV_RANGE, 256)
    return storage


@pytest.mark.parametrize(
    "setting_id, key",
    [
        (SettingsAccessorId.WEIGHING_SYSTEM_TARE_OFFSET, 0),
        (SettingsAccessorId.WEIGHING_SYSTEM_CALIBRATION_GRADIENT, 1),
        (SettingsAccessorId.SYSTEM_LED_BRIGHTNESS, 2),
        (SettingsAccessorId.MONITORING_DISPLAY_INDEX, 10),
    ],
)
def test_storage_keys_fixed_by_source(setting_id, key):
    assert int(StoredSetting.from_accessor_id(setting_id)) == key


def test_from_accessor_id_covers_every_id():
    for setting_id in SettingsAccessorId:
        assert StoredSetting.from_accessor_id(setting_id).name == setting_id.name
    assert (
        StoredSetting.from_accessor_id(SettingsAccessorId.WEIGHING_SYSTEM_BITS_TO_DISCARD)
        is StoredSetting.WEIGHING_SYSTEM_BITS_TO_DISCARD
    )


def test_uninitialised_manager_has_no_values():
    manager = SettingsManager(StorageManager(), new_settings_channel())
    assert manager.is_initialized() is False
    assert manager.get_setting(StoredSetting.SYSTEM_LED_BRIGHTNESS) is None


@pytest.mark.asyncio
async def test_initialise_loads_stored_values():
    storage = await _storage()
    value = StoredDataValue(ValueKind.SMALL_UINT, 77)
    await storage.save_key_value_pair(int(StoredSetting.SYSTEM_LED_BRIGHTNESS), value)
    manager = SettingsManager(storage, new_settings_channel())
    await manager.initialise()
    assert manager.is_initialized() is True
    assert manager.get_setting(2) == value
    assert manager.get_setting(StoredSetting.MONITORING_TARGET_DAILY) is None


@pytest.mark.asyncio
async def test_initialise_with_unready_storage_caches_nothing():
    manager = SettingsManager(StorageManager(), new_settings_channel())
    await manager.initialise()
    assert manager.is_initialized() is True
    assert manager.get_setting(StoredSetting.WEIGHING_SYSTEM_TARE_OFFSET) is None


@pytest.mark.asyncio
async def test_queued_saves_reach_cache_and_storage():
    storage = await _storage()
    manager = SettingsManager(storage, new_settings_channel())
    await manager.initialise()
    value = StoredDataValue(ValueKind.FLOAT, 0.25)
    manager.queue_settings_save(StoredSetting.WEIGHING_SYSTEM_CALIBRATION_GRADIENT, value)
    assert manager.get_setting(StoredSetting.WEIGHING_SYSTEM_CALIBRATION_GRADIENT) is None
    await manager.process_queued_saves()
    assert manager.get_setting(StoredSetting.WEIGHING_SYSTEM_CALIBRATION_GRADIENT) == value
    stored = await storage.read_key_value_pair(
        int(StoredSetting.WEIGHING_SYSTEM_CALIBRATION_GRADIENT)
    )
    assert stored == value


@pytest.mark.asyncio
async def test_later_queued_save_wins():
    storage = await _storage()
    manager = SettingsManager(storage, new_settings_channel())
    await manager.initialise()
    manager.queue_settings_save(StoredSetting.DISPLAY_TIMEOUT_MINUTES, StoredDataValue(ValueKind.UINT, 1))
    manager.queue_settings_save(StoredSetting.DISPLAY_TIMEOUT_MINUTES, StoredDataValue(ValueKind.UINT, 9))
    await manager.process_queued_saves()
    assert manager.get_setting(StoredSetting.DISPLAY_TIMEOUT_MINUTES) == StoredDataValue(ValueKind.UINT, 9)


def test_save_queue_is_bounded():
    manager = SettingsManager(StorageManager(), new_settings_channel())
    value = StoredDataValue(ValueKind.SMALL_UINT, 1)
    for _ in range(5):
        manager.queue_settings_save(StoredSetting.SYSTEM_DISPLAY_BRIGHTNESS, value)
    with pytest.raises(SettingError) as info:
        manager.queue_settings_save(StoredSetting.SYSTEM_DISPLAY_BRIGHTNESS, value)
    assert info.value.kind is SettingErrorKind.SAVE_QUEUE_FULL


@pytest.mark.asyncio
async def test_processing_before_initialise_fails():
    manager = SettingsManager(await _storage(), new_settings_channel())
    manager.queue_settings_save(StoredSetting.MONITORING_TARGET_TYPE, StoredDataValue(ValueKind.SMALL_UINT, 1))
    with pytest.raises(SettingError) as info:
        await manager.process_queued_saves()
    assert info.value.kind is SettingErrorKind.NOT_INITIALIZED


@pytest.mark.asyncio
async def test_alert_system_publishes_after_initialise():
    channel = new_settings_channel()
    subscriber = channel.subscriber()
    manager = SettingsManager(await _storage(), channel)
    message = SettingsMessage(
        SettingData(SettingsAccessorId.SYSTEM_LED_BRIGHTNESS, StoredDataValue(ValueKind.SMALL_UINT, 3))
    )
    manager.alert_system(message)
    assert subscriber.try_next_message() is None
    await manager.initialise()
    manager.alert_system(message)
    assert subscriber.try_next_message() == message