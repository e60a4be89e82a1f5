"""Animated colour patterns for a ring of addressable RGB LEDs."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Iterable, List, Protocol, Sequence, Tuple

from .settings import SettingError, SettingsAccessor, SettingsAccessorId
from .values import StoredDataValue, ValueKind

log = logging.getLogger(__name__)

Colour = Tuple[int, int, int]

BLACK: Colour = (0, 0, 0)
DEFAULT_BRIGHTNESS = 128
LED_SINGLE_ROTATION_STEPS = 360.0
TEST_MODE_SPEED = 0.1

_THIRD = 0.3333333
_TWO_THIRDS = 0.6666666
_BLUE_SEGMENT_START = 0.666666

GAMMA8: Tuple[int, ...] = tuple(
    int(math.pow(i / 255, 2.8) * 255 + 0.5) for i in range(256)
)
"""Gamma correction table (gamma 2.8) applied to every channel."""


class LedPattern(Enum):
    """The animations the LED array can show."""

    OFF = auto()
    RAINBOW_WHEEL = auto()
    SINGLE_COLOUR_WHEEL = auto()
    PULSE = auto()
    STATIC_COLOUR = auto()
    TEST = auto()


def _check_colour(colour: Iterable[int]) -> Colour:
    channels = tuple(colour)
    if len(channels) != 3:
        raise ValueError("a colour has exactly three channels")
    for channel in channels:
        if isinstance(channel, bool) or not isinstance(channel, int):
            raise TypeError("colour channels must be integers")
        if not 0 <= channel <= 0xFF:
            raise ValueError(f"colour channel {channel} is outside 0..255")
    return channels  # type: ignore[return-value]


@dataclass(frozen=True)
class LedArrayMode:
    """A pattern and its parameters.

    ``speed`` is in rotations per second. Which fields matter depends on the
    pattern: wheels use speed and repetitions, the wheel of one colour, pulse
    and static colour use ``colour``, and pulse uses speed.
    """

    pattern: LedPattern = LedPattern.OFF
    colour: Colour = BLACK
    speed: float = 1.0
    repetitions: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", LedPattern(self.pattern))
        object.__setattr__(self, "colour", _check_colour(self.colour))


class LedWriter(Protocol):
    """Sends a frame of colours to the LED chain."""

    async def write(self, colours: Sequence[Colour]) -> None: ...


def _round_half_away(value: float) -> float:
    if math.isnan(value):
        return 0.0
    if value >= 0:
        return math.floor(value + 0.5)
    return -math.floor(-value + 0.5)


def _saturate(value: float, upper: int) -> int:
    """Convert a float to an int clamped to ``0..upper``, NaN becoming 0."""
    if math.isnan(value):
        return 0
    if value <= 0:
        return 0
    if value >= upper:
        return upper
    return int(value)


def hsv_to_rgb(hue: int, sat: int, val: int) -> Colour:
    """Convert an 8-bit hue, saturation and value to an RGB colour."""
    _check_colour((hue, sat, val))
    v, s = val, sat
    f = (hue * 2 % 85) * 3
    p = v * (255 - s) // 255
    q = v * (255 * 255 - s * f) // (255 * 255)
    t = v * (255 * 255 - s * (255 - f)) // (255 * 255)
    if hue <= 42:
        return (v, t, p)
    if hue <= 84:
        return (q, v, p)
    if hue <= 127:
        return (p, v, t)
    if hue <= 169:
        return (p, q, v)
    if hue <= 212:
        return (t, p, v)
    if hue <= 254:
        return (v, p, q)
    return (v, t, p)


def rainbow_wheel(wheel_pos: int) -> Colour:
    """The colour at position 0..255 around a fully saturated hue wheel."""
    return hsv_to_rgb(wheel_pos, 255, 255)


def single_colour_wheel(colour: Colour, wheel_pos: int) -> Colour:
    """``colour`` dimmed by position 0..255: full at 0, dark at 128, rising again."""
    if not 0 <= wheel_pos <= 0xFF:
        raise ValueError(f"wheel position {wheel_pos} is outside 0..255")
    if wheel_pos < 128:
        intensity = 255 - wheel_pos * 2
    else:
        intensity = (wheel_pos - 128) * 2
    r, g, b = _check_colour(colour)
    return (intensity * r // 255, intensity * g // 255, intensity * b // 255)


def scale_brightness(colours: Iterable[Colour], brightness: int) -> List[Colour]:
    """Scale every channel by ``brightness`` (0..255)."""
    if not 0 <= brightness <= 0xFF:
        raise ValueError(f"brightness {brightness} is outside 0..255")
    factor = brightness + 1
    return [
        tuple(channel * factor // 256 for channel in colour)  # type: ignore[misc]
        for colour in colours
    ]


def gamma_correct(colours: Iterable[Colour]) -> List[Colour]:
    """Apply the gamma table to every channel."""
    return [
        tuple(GAMMA8[channel] for channel in colour)  # type: ignore[misc]
        for colour in colours
    ]


class LedController:
    """Renders the current pattern and writes frames to the LEDs."""

    def __init__(
        self,
        writer: LedWriter,
        led_count: int,
        settings: SettingsAccessor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if led_count < 1:
            raise ValueError("there must be at least one LED")
        self._writer = writer
        self._settings = settings
        self.led_count = led_count
        self.led_state: List[Colour] = [BLACK] * led_count
        self.mode = LedArrayMode()
        self.animation_position = 0.0
        self.speed_factor = 1.0
        self.repetition_factor = 1.0
        self.base_colour: Colour = BLACK
        self.brightness = DEFAULT_BRIGHTNESS
        self.clock = clock
        self.last_update = clock()

    @classmethod
    async def create(
        cls, writer: LedWriter, led_count: int, settings: SettingsAccessor
    ) -> LedController:
        """Build a controller using the stored LED brightness."""
        controller = cls(writer, led_count, settings)
        controller.brightness = await controller._stored_brightness()
        return controller

    async def _stored_brightness(self) -> int:
        stored = await self._settings.get_setting(SettingsAccessorId.SYSTEM_LED_BRIGHTNESS)
        if stored is None or stored.kind is not ValueKind.SMALL_UINT:
            return DEFAULT_BRIGHTNESS
        return stored.value

    def set_mode(self, mode: LedArrayMode) -> None:
        """Switch pattern, taking over the parameters it uses."""
        self.mode = mode
        pattern = mode.pattern
        if pattern is LedPattern.RAINBOW_WHEEL:
            self.set_speed_factor(mode.speed)
            self.set_repetition_factor(mode.repetitions)
        elif pattern is LedPattern.SINGLE_COLOUR_WHEEL:
            self.set_speed_factor(mode.speed)
            self.set_repetition_factor(mode.repetitions)
            self.base_colour = mode.colour
        elif pattern is LedPattern.PULSE:
            self.set_speed_factor(mode.speed)
            self.base_colour = mode.colour
        elif pattern is LedPattern.STATIC_COLOUR:
            self.base_colour = mode.colour
        elif pattern is LedPattern.OFF:
            self.base_colour = BLACK
        elif pattern is LedPattern.TEST:
            self.set_speed_factor(TEST_MODE_SPEED)

    def set_speed_factor(self, speed: float) -> None:
        """Set the animation speed in rotations per second."""
        self.speed_factor = float(speed)

    def set_repetition_factor(self, repetition_factor: float) -> None:
        """Set how many times a wheel pattern repeats around the ring."""
        self.repetition_factor = float(repetition_factor)

    async def set_brightness(self, brightness: int) -> None:
        """Set and store the brightness; a failed save is logged."""
        value = StoredDataValue(ValueKind.SMALL_UINT, brightness)
        self.brightness = brightness
        try:
            await self._settings.save_setting(SettingsAccessorId.SYSTEM_LED_BRIGHTNESS, value)
        except SettingError as exc:
            log.warning("Failed to store LED brightness: %s", exc)

    def _position_u8(self) -> int:
        return _saturate(self.animation_position * 255 / LED_SINGLE_ROTATION_STEPS, 0xFF)

    def _render_rainbow_wheel(self) -> None:
        n = self.led_count
        if n < 2:
            raise ValueError("the rainbow wheel needs at least two LEDs")
        position = self._position_u8()
        self.led_state = [
            rainbow_wheel(
                (
                    _saturate(
                        _round_half_away((i * 256) // (n - 1) * self.repetition_factor),
                        0xFFFF,
                    )
                    + position
                )
                & 0xFF
            )
            for i in range(n)
        ]

    def _render_single_colour_wheel(self) -> None:
        n = self.led_count
        position = self._position_u8()
        self.led_state = [
            single_colour_wheel(
                self.base_colour,
                (
                    _saturate(
                        _round_half_away((i * 255) // n * self.repetition_factor),
                        0xFFFF_FFFF,
                    )
                    + position
                )
                & 0xFF,
            )
            for i in range(n)
        ]

    def _render_pulse(self) -> None:
        normalised = self.animation_position / LED_SINGLE_ROTATION_STEPS
        factor = (normalised if normalised < 0.5 else 1.0 - normalised) * 2.0
        colour = tuple(
            _saturate(_round_half_away(factor * channel), 0xFF)
            for channel in self.base_colour
        )
        self.led_state = [colour] * self.led_count  # type: ignore[list-item]

    def _render_test(self) -> None:
        normalised = self.animation_position / LED_SINGLE_ROTATION_STEPS
        last = self.led_count - 1
        if 0.0 <= normalised < _THIRD:
            colour, offset = (255, 0, 0), normalised
        elif _THIRD <= normalised < _TWO_THIRDS:
            colour, offset = (0, 255, 0), normalised - _THIRD
        elif _TWO_THIRDS <= normalised < 1.0:
            colour, offset = (0, 0, 255), normalised - _BLUE_SEGMENT_START
        else:
            return
        index = min(_saturate(_round_half_away(last * offset / _THIRD), last), last)
        state = [BLACK] * self.led_count
        state[index] = colour
        self.led_state = state

    def render(self) -> List[Colour]:
        """Update the LED state for the current pattern and return the final frame."""
        pattern = self.mode.pattern
        if pattern is LedPattern.OFF:
            self.led_state = [BLACK] * self.led_count
        elif pattern is LedPattern.RAINBOW_WHEEL:
            self._render_rainbow_wheel()
        elif pattern is LedPattern.SINGLE_COLOUR_WHEEL:
            self._render_single_colour_wheel()
        elif pattern is LedPattern.PULSE:
            self._render_pulse()
        elif pattern is LedPattern.STATIC_COLOUR:
            self.led_state = [self.base_colour] * self.led_count
        elif pattern is LedPattern.TEST:
            self._render_test()
        return gamma_correct(scale_brightness(self.led_state, self.brightness))

    async def led_update(self) -> List[Colour]:
        """Render, write the frame and advance the animation; returns the frame."""
        frame = self.render()
        await self._writer.write(frame)

        now = self.clock()
        elapsed_ms = int((now - self.last_update) * 1000)
        self.last_update = now
        degrees_per_second = self.speed_factor * 360.0
        if 0.0 <= self.animation_position < 360.0:
            self.animation_position += elapsed_ms / 1000.0 * degrees_per_second
        else:
            self.animation_position = 0.0
        return frame