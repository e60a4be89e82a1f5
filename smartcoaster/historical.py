"""Log entry encoding and the layout of the logs kept in flash."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from .storage_manager import DATA_BUFFER_SIZE, StoredLogConfig
from .values import SerializationError, StoredDataValue

FLASH_SIZE = 2 * 1024 * 1024
NVM_PAGE_SIZE = 256

SETTINGS_SIZE = 0x2000
SETTINGS_NVM_FLASH_OFFSET_RANGE = range(FLASH_SIZE - SETTINGS_SIZE, FLASH_SIZE)

ACTIVITY_LOG_SIZE = 0x8000
ACTIVITY_LOG_NVM_FLASH_OFFSET_RANGE = range(
    SETTINGS_NVM_FLASH_OFFSET_RANGE.start - ACTIVITY_LOG_SIZE,
    SETTINGS_NVM_FLASH_OFFSET_RANGE.start,
)

LOG_TIMESTAMP_SIZE = 10
"""Bytes taken by the timestamp at the start of every log entry."""

MAX_ENTRY_DATA_SIZE = DATA_BUFFER_SIZE - LOG_TIMESTAMP_SIZE


class LogEncodeDecodeError(Exception):
    """A log entry could not be encoded or decoded."""

    ENCODE_FAILED = "encode failed"
    DECODE_FAILED = "decode failed"
    BUFFER_TOO_SMALL = "buffer too small"

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


@dataclass(frozen=True)
class SimpleLogEntry:
    """A log entry holding a single stored value."""

    data: StoredDataValue = field(default_factory=StoredDataValue)

    def encode(self) -> bytes:
        """Return the entry's bytes as they follow the timestamp."""
        encoded = self.data.serialize()
        if len(encoded) > MAX_ENTRY_DATA_SIZE:
            raise LogEncodeDecodeError(
                LogEncodeDecodeError.BUFFER_TOO_SMALL,
                f"entry needs {len(encoded)} bytes, {MAX_ENTRY_DATA_SIZE} available",
            )
        return encoded

    @classmethod
    def from_bytes(cls, buf: bytes) -> SimpleLogEntry:
        """Decode an entry; trailing bytes are ignored."""
        try:
            return cls(StoredDataValue.deserialize(buf))
        except SerializationError as exc:
            raise LogEncodeDecodeError(
                LogEncodeDecodeError.DECODE_FAILED, str(exc)
            ) from exc


class Logs(Enum):
    """The logs kept in flash."""

    CONSUMPTION_LOG = auto()
    ERROR_LOG = auto()

    def config(self) -> StoredLogConfig:
        """Where this log lives and whether it may overwrite old entries."""
        if self is Logs.CONSUMPTION_LOG:
            return StoredLogConfig(
                storage_range=ACTIVITY_LOG_NVM_FLASH_OFFSET_RANGE,
                allow_overwrite_old=True,
            )
        raise ValueError(f"{self.name} has no storage configured")