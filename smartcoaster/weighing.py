"""Strain-gauge interface, the weighing-system interface and a calibrated scale."""

from __future__ import annotations

import logging
import math
import statistics
from abc import ABC, abstractmethod
from typing import List

from .settings import SettingError, SettingsAccessor, SettingsAccessorId
from .values import StoredDataValue, ValueKind

log = logging.getLogger(__name__)

STABILISATION_MEASUREMENTS = 20
_MAX_SMALL_UINT = 0xFF


class StrainGauge(ABC):
    """An ADC reading a load cell."""

    @abstractmethod
    async def initialize(self) -> None:
        """Make the gauge ready for readings, leaving it powered up."""

    @abstractmethod
    async def get_next_reading(self) -> int:
        """Return the next raw reading, powering the device up if needed."""

    @abstractmethod
    async def power_down(self) -> None:
        """Put the gauge to sleep."""

    @abstractmethod
    async def power_up(self) -> None:
        """Wake the gauge."""

    @abstractmethod
    def adc_bit_count(self) -> int:
        """Resolution of the converter in bits."""


class WeighingSystem(ABC):
    """Something that can be tared, calibrated and asked for a weight."""

    @abstractmethod
    async def stabilize_measurements(self) -> None:
        """Measure the noise and adjust filtering to suppress it."""

    @abstractmethod
    async def tare(self) -> None:
        """Take the current load as zero."""

    @abstractmethod
    async def calibrate(self, calibration_mass: float) -> None:
        """Calibrate with a known mass, in grams, on the scale."""

    @abstractmethod
    async def get_instantaneous_weight_grams(self) -> float:
        """Return the current weight in grams."""

    @abstractmethod
    async def get_reading(self) -> float:
        """Return the next weight reading in grams."""


class WeightScaleError(Exception):
    """The strain gauge failed; the original error is in ``cause``."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"strain gauge reading error: {cause}")
        self.cause = cause


def _ieee_divide(numerator: float, denominator: float) -> float:
    try:
        return numerator / denominator
    except ZeroDivisionError:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


class WeightScale(WeighingSystem):
    """Turns raw strain-gauge readings into grams using stored calibration."""

    def __init__(self, strain_gauge: StrainGauge, settings: SettingsAccessor) -> None:
        self._gauge = strain_gauge
        self._settings = settings
        self._tare_offset = 0.0
        self._calibration_gradient = 0.0
        self._bits_to_discard = 0
        self._is_stabilized = False

    @classmethod
    async def create(
        cls, strain_gauge: StrainGauge, settings: SettingsAccessor
    ) -> WeightScale:
        """Initialise the gauge and load the stored calibration."""
        try:
            await strain_gauge.initialize()
        except Exception as exc:
            raise WeightScaleError(exc) from exc

        scale = cls(strain_gauge, settings)
        scale._tare_offset = await scale._stored(
            SettingsAccessorId.WEIGHING_SYSTEM_TARE_OFFSET, ValueKind.FLOAT, 0.0
        )
        scale._calibration_gradient = await scale._stored(
            SettingsAccessorId.WEIGHING_SYSTEM_CALIBRATION_GRADIENT, ValueKind.FLOAT, 0.0
        )
        scale._bits_to_discard = await scale._stored(
            SettingsAccessorId.WEIGHING_SYSTEM_BITS_TO_DISCARD, ValueKind.SMALL_UINT, 0
        )
        log.debug(
            "Loaded calibration: tare = %s, gradient = %s, bits to discard = %d",
            scale._tare_offset,
            scale._calibration_gradient,
            scale._bits_to_discard,
        )
        if scale._bits_to_discard > 0:
            scale._is_stabilized = True
        return scale

    @property
    def tare_offset(self) -> float:
        return self._tare_offset

    @property
    def calibration_gradient(self) -> float:
        return self._calibration_gradient

    @property
    def bits_to_discard(self) -> int:
        return self._bits_to_discard

    def is_stabilized(self) -> bool:
        """True once noise filtering has been set up."""
        return self._is_stabilized

    async def _stored(self, setting_id: SettingsAccessorId, kind: ValueKind, default):
        stored = await self._settings.get_setting(setting_id)
        if stored is None or stored.kind is not kind:
            log.warning("Unable to get stored %s", setting_id.name)
            return default
        return stored.value

    async def _save(self, setting_id: SettingsAccessorId, value: StoredDataValue) -> None:
        try:
            await self._settings.save_setting(setting_id, value)
        except SettingError as exc:
            log.warning("Unable to store %s: %s", setting_id.name, exc)

    async def _read_raw(self) -> int:
        try:
            return await self._gauge.get_next_reading()
        except Exception as exc:
            raise WeightScaleError(exc) from exc

    async def _read_filtered(self) -> float:
        return float(await self._read_raw() >> self._bits_to_discard)

    async def _filtered_batch(self) -> List[float]:
        return [await self._read_filtered() for _ in range(STABILISATION_MEASUREMENTS)]

    async def stabilize_measurements(self) -> None:
        readings = [
            float(await self._read_raw()) for _ in range(STABILISATION_MEASUREMENTS)
        ]
        deviation = statistics.stdev(readings)
        bit_count = self._gauge.adc_bit_count()
        full_scale_range = float(1 << bit_count)
        if deviation > 0:
            noise_bits = bit_count - math.ceil(math.log2(full_scale_range / deviation))
        else:
            noise_bits = 0
        bits = min(max(noise_bits, 0, self._bits_to_discard), _MAX_SMALL_UINT)
        self._bits_to_discard = bits
        await self._save(
            SettingsAccessorId.WEIGHING_SYSTEM_BITS_TO_DISCARD,
            StoredDataValue(ValueKind.SMALL_UINT, bits),
        )
        log.debug("Stabilize measurements calculated %d bits to discard", bits)
        self._is_stabilized = True

    async def tare(self) -> None:
        value = StoredDataValue(ValueKind.FLOAT, statistics.fmean(await self._filtered_batch()))
        self._tare_offset = value.value
        await self._save(SettingsAccessorId.WEIGHING_SYSTEM_TARE_OFFSET, value)
        log.debug("Tare offset = %s", self._tare_offset)

    async def calibrate(self, calibration_mass: float) -> None:
        tared_mean = statistics.fmean(await self._filtered_batch()) - self._tare_offset
        value = StoredDataValue(
            ValueKind.FLOAT, _ieee_divide(float(calibration_mass), tared_mean)
        )
        self._calibration_gradient = value.value
        await self._save(SettingsAccessorId.WEIGHING_SYSTEM_CALIBRATION_GRADIENT, value)
        log.debug("Calibration mass per count = %s", self._calibration_gradient)

    async def get_instantaneous_weight_grams(self) -> float:
        if not self._is_stabilized:
            await self.stabilize_measurements()
        reading = await self._read_filtered()
        return (reading - self._tare_offset) * self._calibration_gradient

    async def get_reading(self) -> float:
        return await self.get_instantaneous_weight_grams()