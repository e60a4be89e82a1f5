"""Real-time clock control and access to the current date and time."""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
from abc import ABC, abstractmethod
from typing import Optional

from .channel import ChannelError, Signal, Watch

log = logging.getLogger(__name__)

RTC_WATCH_RECEIVER_COUNT = 5
DEFAULT_DATE_TIME = _dt.datetime(1970, 1, 1)


class RtcDevice(ABC):
    """A battery-backed clock chip. Methods raise :class:`OSError` on bus failure."""

    @abstractmethod
    def datetime(self) -> _dt.datetime:
        """Read the current date and time."""

    @abstractmethod
    def set_datetime(self, dt: _dt.datetime) -> None:
        """Set the date and time."""

    @abstractmethod
    def use_int_sqw_output_as_interrupt(self) -> None:
        """Configure the INT/SQW output as an interrupt line."""


class RtcAccessorError(Exception):
    """No watch receiver slots are left for another accessor."""


class RtcControl:
    """Reads the clock every second and publishes the time on a watch."""

    TICK_INTERVAL = 1.0

    def __init__(
        self,
        rtc: RtcDevice,
        time_update: Watch[_dt.datetime],
        set_time: Signal[_dt.datetime],
    ) -> None:
        self._rtc = rtc
        self._time_update = time_update
        self._set_time = set_time
        self.tick_interval = self.TICK_INTERVAL
        try:
            rtc.use_int_sqw_output_as_interrupt()
        except OSError as exc:
            log.error("unable to set RTC interrupt signal: %s", exc)
        try:
            self.latest = rtc.datetime()
        except OSError:
            self.latest = DEFAULT_DATE_TIME

    def tick(self) -> Optional[_dt.datetime]:
        """Apply any requested time change, then read and publish the time."""
        new_time = self._set_time.try_take()
        if new_time is not None:
            try:
                self._rtc.set_datetime(new_time)
                log.debug("Time set to %s", new_time)
            except OSError as exc:
                log.error("unable to set RTC time: %s", exc)
        try:
            now = self._rtc.datetime()
        except OSError:
            return None
        self.latest = now
        self._time_update.send(now)
        return now

    async def run(self) -> None:
        """Tick once per interval until cancelled."""
        while True:
            await asyncio.sleep(self.tick_interval)
            self.tick()


class RtcAccessor:
    """Reads the time published by :class:`RtcControl`."""

    def __init__(self, time_update: Watch[_dt.datetime]) -> None:
        try:
            self._receiver = time_update.receiver()
        except ChannelError as exc:
            log.warning("Unable to obtain RTC timer update receiver")
            raise RtcAccessorError("no watch slots available") from exc
        self._recent = DEFAULT_DATE_TIME

    async def wait_for_next_second(self) -> _dt.datetime:
        """Wait for the next published time and return it."""
        self._recent = await self._receiver.changed()
        return self._recent

    def get_date_time(self) -> _dt.datetime:
        """The latest published time, or the last one seen."""
        current = self._receiver.try_get()
        if current is not None:
            self._recent = current
        return self._recent


def set_date_time(set_time: Signal[_dt.datetime], dt: _dt.datetime) -> None:
    """Ask the clock controller to set the time on its next tick."""
    set_time.signal(dt)