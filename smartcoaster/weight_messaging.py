"""Weighing requests and events, and a weighing system driven over channels."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Union

from .channel import Publisher, Subscriber
from .weighing import WeighingSystem

CHANNEL_DEPTH = 10
CHANNEL_SUBSCRIBERS = 2
CHANNEL_PUBLISHERS = 2


class WeighingErrorKind(Enum):
    STABILISATION_FAILED = auto()
    TARE_FAILED = auto()
    CALIBRATION_FAILED = auto()
    MEASUREMENT_FAILED = auto()


class WeighingError(Exception):
    """A weighing request failed."""

    def __init__(self, kind: WeighingErrorKind) -> None:
        super().__init__(kind.name.lower().replace("_", " "))
        self.kind = kind


class WeightRequestKind(Enum):
    STABILISATION = auto()
    TARE = auto()
    CALIBRATION_AT_MASS = auto()
    WEIGHT = auto()


@dataclass(frozen=True)
class WeightRequest:
    """A request to the weighing task; calibration carries the mass in grams."""

    kind: WeightRequestKind
    calibration_mass: Optional[float] = None


@dataclass(frozen=True)
class WeightUpdate:
    weight: float


@dataclass(frozen=True)
class RequestFailed:
    error: WeighingErrorKind


@dataclass(frozen=True)
class RequestCompleted:
    request: WeightRequest


WeightEvent = Union[WeightUpdate, RequestFailed, RequestCompleted]


class WeighingSystemOverChannel(WeighingSystem):
    """Sends requests to the weighing task and waits for its answers."""

    def __init__(
        self, events: Subscriber[WeightEvent], requests: Publisher[WeightRequest]
    ) -> None:
        self._events = events
        self._requests = requests

    async def _result(self) -> None:
        while True:
            event = await self._events.next_message()
            if isinstance(event, RequestCompleted):
                return
            if isinstance(event, RequestFailed):
                raise WeighingError(event.error)

    async def _weight(self) -> float:
        while True:
            event = await self._events.next_message()
            if isinstance(event, WeightUpdate):
                return event.weight
            if isinstance(event, RequestFailed):
                raise WeighingError(event.error)

    async def stabilize_measurements(self) -> None:
        self._requests.publish_immediate(WeightRequest(WeightRequestKind.STABILISATION))
        await self._result()

    async def tare(self) -> None:
        self._requests.publish_immediate(WeightRequest(WeightRequestKind.TARE))
        await self._result()

    async def calibrate(self, calibration_mass: float) -> None:
        self._requests.publish_immediate(
            WeightRequest(WeightRequestKind.CALIBRATION_AT_MASS, calibration_mass)
        )
        await self._result()

    async def get_instantaneous_weight_grams(self) -> float:
        self._requests.publish_immediate(WeightRequest(WeightRequestKind.WEIGHT))
        return await self._weight()

    async def get_reading(self) -> float:
        """Wait for the next weight update without sending a request."""
        return await self._weight()