# smartcoaster

This package holds the core logic of a smart drinks coaster. It covers these jobs:

- weighing a cup through a load cell
- storing settings and a timestamped activity log in flash
- keeping time from a real-time clock
- animating a ring of RGB LEDs

Everything is asyncio-based. Hardware is reached through small abstract interfaces, so the same
code can run against real devices or against in-memory stand-ins.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

### Storage and settings

- `smartcoaster.values`
  - `StoredDataValue` is a value tagged with a `ValueKind`. The kinds are `DEFAULT`, `FLOAT`,
    `SMALL_UINT`, `UINT`, `TIME` and `DATETIME`.
  - The value has a compact binary encoding: use `serialize`, `serialize_into`,
    `serialized_size` and `StoredDataValue.deserialize`.
  - Decoding errors raise `BufferTooSmallError` or `InvalidFormatError`. Both are subclasses
    of `SerializationError`.
- `smartcoaster.storage_manager`
  - `StorageManager` keeps a key/value map with 16-bit keys in one flash range. It also keeps
    append-only logs in other ranges, each described by a `StoredLogConfig`.
  - `MemoryFlash` is an in-memory NOR flash. Writes can only clear bits, and erases work on
    whole pages.
  - `wait_for_storage_initialisation` polls until a manager has been initialised.
- `smartcoaster.settings` defines these:
  - `SettingsAccessorId`, the setting identifiers, with `numeric_properties()` giving the
    allowed range
  - the `SettingError` and `StorageError` exceptions
  - the `SettingsMessage` change message
  - the abstract `SettingsAccessor`
  - `SettingsMonitor`, which waits for change messages on a channel made by
    `new_settings_channel()`
- `smartcoaster.settings_store`: `SettingsManager` caches every `StoredSetting` in memory and
  queues changes. `process_queued_saves` writes them to storage.
- `smartcoaster.settings_accessor`
  - `FlashSettingsAccessor` reads from the cache. It queues saves and announces each change
    on the settings channel.
  - `initialise_settings`, `wait_for_settings_initialisation` and `process_save_queue` drive
    the manager.

### Activity logs

- `smartcoaster.historical` provides:
  - `SimpleLogEntry`, a log entry holding one `StoredDataValue`
  - `Logs`, the logs kept in flash, with their flash layout constants
  - `LogEncodeDecodeError`

  Only `Logs.CONSUMPTION_LOG` has storage configured. Asking `Logs.ERROR_LOG` for its config
  raises `ValueError`.
- `smartcoaster.log_manager`
  - `HistoricalLogManager` queues log writes, clears and reads, and carries them out against a
    `StorageManager`.
  - A read publishes each entry at or after a given timestamp to a channel. Each entry goes
    out as a `HistoricalLogMessage` of kind `RECORD`, and an `END_OF_READ` message follows
    the last one.
  - `process_log_queues` runs both queues.
  - `HistoricalLogAccessor` stamps each entry with the time from an `RtcAccessor`.

### Clock

- `smartcoaster.channel` provides asyncio messaging primitives:
  - `PubSubChannel` is bounded, and limits its publishers and subscribers.
  - `Watch` holds the latest value and wakes its receivers when it changes.
  - `Signal` is a one-slot mailbox.
- `smartcoaster.rtc`
  - `RtcControl` reads an `RtcDevice` every second and sends the time on a `Watch`.
  - `RtcAccessor` reads that time.
  - `set_date_time` asks the controller to set a new time on its next tick.

### Weighing

- `smartcoaster.hx711`: `Hx711` is a driver for the HX711 24-bit load-cell ADC. It works over
  abstract `OutputPin` and `InputPin` objects, with gains chosen by `Hx711Gain`.
- `smartcoaster.weighing`
  - `WeightScale` turns raw readings into grams. It handles noise stabilisation, tare and
    calibration, and keeps its calibration in settings.
  - `StrainGauge` and `WeighingSystem` are the abstract interfaces it uses and implements.
- `smartcoaster.weight_messaging`: `WeighingSystemOverChannel` drives a weighing task through
  two channels. It publishes `WeightRequest` messages and waits for the replies:
  `WeightUpdate`, `RequestCompleted` or `RequestFailed`.

### LEDs

`smartcoaster.led_control` provides `LedController`. It renders one of these `LedPattern`s:

- off
- rainbow wheel
- single-colour wheel
- pulse
- static colour
- test

Brightness scaling and gamma correction are applied to every frame before it is written out.
The controller stores the brightness as a setting.

## Example

```python
import asyncio

from smartcoaster.storage_manager import MemoryFlash, StorageManager
from smartcoaster.values import StoredDataValue, ValueKind


async def main():
    storage = StorageManager()
    await storage.initialise(MemoryFlash(0x4000, 256), range(0x2000, 0x4000), 256)
    await storage.save_key_value_pair(2, StoredDataValue(ValueKind.SMALL_UINT, 128))
    print(await storage.read_key_value_pair(2))


asyncio.run(main())
```

## What this package does not do

This is a library of building blocks. It has no command and no application loop that wires
the tasks together.

It does not include:

- drink-consumption tracking
- display or menu screens
- button or rotary-encoder input handling

It does not talk to real hardware either. Real pins, a real clock chip, a real LED chain and
real flash must be supplied by implementing `OutputPin`, `InputPin`, `RtcDevice` and
`LedWriter`. Only the in-memory `MemoryFlash` is provided for storage.