"""Sensor and actuator collaborators of the feed scheduler.

Real hardware only has to provide read_level() and an async pulse(duration).
GuardedSensor applies the failure policy (any failure reads as level 0) and
SimulatedLily stands in for the comparator + dispenser pair when no hardware
is attached (lily-node --simulate, integration tests).
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Protocol

from constants import MAX_LEVEL, UNIT_SECONDS
from errors import SensorUnavailable


class Sensor(Protocol):
    def read_level(self) -> int: ...


class Actuator(Protocol):
    async def pulse(self, duration: float) -> None: ...


class GuardedSensor:
    """Wraps a sensor so that reads never raise and stay in [0, MAX_LEVEL]."""

    def __init__(self, sensor: Sensor, log: Optional[Callable] = None):
        self.sensor = sensor
        self._log = log
        self._failing = False  # Log once per failure streak
        self.failures = 0

    def read_level(self) -> int:
        try:
            level = self.sensor.read_level()
            if level is None:
                raise SensorUnavailable("sensor returned no reading")
            level = int(level)
        except Exception as e:
            self.failures += 1
            if not self._failing and self._log:
                self._log(f"[SENSOR] Read failed ({e}), using level 0", style="yellow")
            self._failing = True
            return 0
        if self._failing and self._log:
            self._log("[SENSOR] Readings back", style="green")
        self._failing = False
        return max(0, min(MAX_LEVEL, level))


class SimulatedLily:
    """Comparator + dispenser model of one lily.

    Cycle, as seen on the comparator:
      - PRODUCING: level 0 for production_seconds after a successful feed
      - COOLDOWN:  level L for L*unit_seconds
      - READY:     still level L, waiting for a pulse
    A pulse only starts production when the lily is READY; a pulse during
    cooldown or production is wasted.
    """

    def __init__(self, level: int = 5, unit_seconds: float = UNIT_SECONDS,
                 production_seconds: float = 30.0,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep,
                 producing: bool = False):
        self.level = max(1, min(MAX_LEVEL, level))
        self.unit_seconds = unit_seconds
        self.production_seconds = production_seconds
        self.clock = clock
        self.sleep = sleep
        self.output_high = False
        self.pulses = 0
        self.feeds = 0           # Pulses that actually started production
        now = clock()
        if producing:
            self._production_until = now + production_seconds
            self._cooldown_until = self._production_until + self.cooldown_seconds
        else:
            # Boot into READY: production and cooldown already behind us
            self._production_until = now - self.cooldown_seconds
            self._cooldown_until = now

    @property
    def cooldown_seconds(self) -> float:
        return self.level * self.unit_seconds

    def phase(self, now: Optional[float] = None) -> str:
        now = self.clock() if now is None else now
        if now < self._production_until:
            return "producing"
        if now < self._cooldown_until:
            return "cooldown"
        return "ready"

    # ---- Sensor ----

    def read_level(self) -> int:
        return 0 if self.phase() == "producing" else self.level

    # ---- Actuator ----

    async def pulse(self, duration: float) -> None:
        self.output_high = True
        self.pulses += 1
        try:
            if self.phase() == "ready":
                now = self.clock()
                self.feeds += 1
                self._production_until = now + self.production_seconds
                self._cooldown_until = self._production_until + self.cooldown_seconds
            await self.sleep(duration)
        finally:
            self.output_high = False
