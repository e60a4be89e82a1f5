"""Setting identifiers, errors, change messages and the accessor interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .channel import PubSubChannel
from .values import StoredDataValue

SettingValue = StoredDataValue

SETTINGS_CHANNEL_DEPTH = 10
SETTINGS_CHANNEL_SUBSCRIBERS = 2
SETTINGS_CHANNEL_PUBLISHERS = 1


class SettingErrorKind(Enum):
    SAVE_ERROR = "save error"
    RETRIEVE_ERROR = "retrieve error"
    NOT_INITIALIZED = "not initialized"
    ERASE_ERROR = "erase error"
    SAVE_QUEUE_FULL = "save queue full"


class SettingError(Exception):
    """A setting could not be saved or read."""

    def __init__(self, kind: SettingErrorKind, message: Optional[str] = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class StorageErrorKind(Enum):
    SAVE_ERROR = "save error"
    RETRIEVE_ERROR = "retrieve error"
    NOT_INITIALIZED = "not initialized"
    ERASE_ERROR = "erase error"
    CAPACITY_CHECK_ERROR = "capacity check error"
    DECODE_ERROR = "decode error"


class StorageError(Exception):
    """The non-volatile store failed."""

    def __init__(self, kind: StorageErrorKind, message: Optional[str] = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind


@dataclass(frozen=True)
class NumericSettingProperties:
    minimum_value: int
    maximum_value: int


class SettingsAccessorId(Enum):
    SYSTEM_LED_BRIGHTNESS = auto()
    SYSTEM_DISPLAY_BRIGHTNESS = auto()
    WEIGHING_SYSTEM_TARE_OFFSET = auto()
    WEIGHING_SYSTEM_CALIBRATION_GRADIENT = auto()
    WEIGHING_SYSTEM_BITS_TO_DISCARD = auto()
    MONITORING_TARGET_TYPE = auto()
    MONITORING_TARGET_DAILY = auto()
    DISPLAY_TIMEOUT_MINUTES = auto()
    MONITORING_DAILY_TARGET_TIME = auto()
    MONITORING_TARGET_HOURLY = auto()
    MONITORING_DISPLAY_INDEX = auto()

    def numeric_properties(self) -> Optional[NumericSettingProperties]:
        """Allowed range for numeric settings, ``None`` for the others."""
        return _NUMERIC_PROPERTIES.get(self)


_NUMERIC_PROPERTIES = {
    SettingsAccessorId.MONITORING_TARGET_DAILY: NumericSettingProperties(0, 10000),
    SettingsAccessorId.MONITORING_TARGET_HOURLY: NumericSettingProperties(0, 1000),
}


@dataclass(frozen=True)
class SettingData:
    setting_id: SettingsAccessorId
    value: StoredDataValue


@dataclass(frozen=True)
class SettingsMessage:
    """Announces that a setting changed."""

    data: SettingData


class SettingsAccessor(ABC):
    """Reads and writes settings."""

    @abstractmethod
    async def get_setting(self, setting_id: SettingsAccessorId) -> Optional[StoredDataValue]:
        """Return the stored value, or ``None`` if it is not in storage.

        Waits until storage is initialised.
        """

    @abstractmethod
    async def save_setting(self, setting_id: SettingsAccessorId, value: StoredDataValue) -> None:
        """Store a value and announce the change; raises :class:`SettingError`."""


def new_settings_channel() -> PubSubChannel[SettingsMessage]:
    """Create the channel that carries setting change messages."""
    return PubSubChannel(
        SETTINGS_CHANNEL_DEPTH,
        SETTINGS_CHANNEL_SUBSCRIBERS,
        SETTINGS_CHANNEL_PUBLISHERS,
    )


class SettingsMonitor:
    """Listens for setting changes on a settings channel."""

    def __init__(self, channel: PubSubChannel[SettingsMessage]) -> None:
        self._subscriber = channel.subscriber()

    async def listen_for_changes(self) -> SettingsMessage:
        """Wait for the next change message, ignoring any that were missed."""
        return await self._subscriber.next_message()