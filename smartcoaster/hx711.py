"""Driver for the HX711 load-cell amplifier and 24-bit ADC."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, TypeVar

VALID_DATA_BITS = 24
POWER_MODE_CHANGE_DELAY = 60e-6
CLK_HALF_PERIOD = 1e-6

_T = TypeVar("_T")


class OutputPin(ABC):
    """A digital output. Methods raise :class:`OSError` on failure."""

    @abstractmethod
    def set_high(self) -> None:
        """Drive the pin high."""

    @abstractmethod
    def set_low(self) -> None:
        """Drive the pin low."""


class InputPin(ABC):
    """A digital input. Methods raise :class:`OSError` on failure."""

    @abstractmethod
    def is_high(self) -> bool:
        """Whether the pin reads high."""

    @abstractmethod
    async def wait_for_low(self) -> None:
        """Wait until the pin reads low."""


class Hx711Gain(Enum):
    """Gain and channel; the value is the number of clock pulses per reading."""

    GAIN_128 = 25
    GAIN_64 = 27
    GAIN_32_CHANNEL_B = 26

    @property
    def tick_count(self) -> int:
        return self.value


class Hx711Error(Exception):
    """A pin failed; ``pin`` is ``"clock"`` or ``"data"``."""

    def __init__(self, pin: str, cause: Exception) -> None:
        super().__init__(f"{pin} pin error: {cause}")
        self.pin = pin
        self.cause = cause


def _on_pin(pin: str, action: Callable[[], _T]) -> _T:
    try:
        return action()
    except OSError as exc:
        raise Hx711Error(pin, exc) from exc


class Hx711:
    """Reads signed 24-bit conversions from an HX711 over its clock and data lines."""

    def __init__(self, clock_pin: OutputPin, data_pin: InputPin, gain: Hx711Gain) -> None:
        self._clock = clock_pin
        self._data = data_pin
        self._gain_clocks = gain.tick_count
        self.powered_up = False
        self.clock_half_period = CLK_HALF_PERIOD
        self.power_mode_change_delay = POWER_MODE_CHANGE_DELAY

    def set_gain(self, gain: Hx711Gain) -> None:
        """Select the gain used from the next reading on."""
        self._gain_clocks = gain.tick_count

    async def initialize(self) -> None:
        """Power the device up ready for readings."""
        await self.power_up()

    async def get_next_reading(self) -> int:
        """Wait for a conversion and return it as a signed 24-bit value."""
        if not self.powered_up:
            await self.power_up()

        try:
            await self._data.wait_for_low()  # DOUT goes low when a conversion is ready
        except OSError as exc:
            raise Hx711Error("data", exc) from exc

        data = 0
        await asyncio.sleep(self.clock_half_period)
        for _ in range(self._gain_clocks):
            data <<= 1
            _on_pin("clock", self._clock.set_high)
            await asyncio.sleep(self.clock_half_period)
            _on_pin("clock", self._clock.set_low)
            if _on_pin("data", self._data.is_high):
                data |= 1
            await asyncio.sleep(self.clock_half_period)

        data >>= self._gain_clocks - VALID_DATA_BITS
        data &= (1 << VALID_DATA_BITS) - 1
        if data >> (VALID_DATA_BITS - 1) & 1:
            data -= 1 << VALID_DATA_BITS
        return data

    async def power_down(self) -> None:
        """Hold the clock high to put the device to sleep."""
        _on_pin("clock", self._clock.set_high)
        await asyncio.sleep(self.power_mode_change_delay)
        self.powered_up = False

    async def power_up(self) -> None:
        """Pull the clock low to wake the device."""
        _on_pin("clock", self._clock.set_low)
        await asyncio.sleep(self.power_mode_change_delay)
        self.powered_up = True

    def adc_bit_count(self) -> int:
        """Resolution of the converter in bits."""
        return VALID_DATA_BITS