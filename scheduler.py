"""Feed scheduler for a single lily.

Timing comes from the comparator alone:
  * During PRODUCTION the comparator reads 0.
  * When production ends it jumps 0 -> L (>0); L*UNIT_SECONDS is the cooldown.
  * The next feed is scheduled at now + L*UNIT_SECONDS + EXTRA_DELAY.
  * At ready time we pulse the actuator, then confirm by seeing L>0 -> 0
    (new production) within CONFIRM_WINDOW.
  * If not confirmed, retry RETRY_AFTER seconds after the pulse.

The schedule is persisted on every change so a restart resumes it. All
blocking happens in the injected sleep(), which tests replace with a
simulated clock.
"""

import asyncio
import time
import traceback
from dataclasses import replace
from datetime import datetime
from typing import Awaitable, Callable, Optional

from constants import (
    CONFIRM_POLL_SECONDS,
    CONFIRM_WINDOW_SECONDS,
    EXTRA_BUFFER_SECONDS,
    PULSE_SECONDS,
    RETRY_DELAY_SECONDS,
    STATUS_CHANNEL,
    STATUS_PERIOD,
    TICK_SECONDS,
    UNIT_SECONDS,
)
from errors import ActuatorFault, PersistenceError
from hardware import Actuator, GuardedSensor, Sensor
from schedule_state import ScheduleState
from status import EventKind, build_status, controller_label


class FeedScheduler:
    """Edge-triggered feed scheduler with confirm/retry.

    Conceptual states (derived from ScheduleState, never stored):
      - Idle:            ready_at absent, last level 0
      - Cooldown-armed:  ready_at in the future
      - Feed-due:        now >= ready_at -> pulse
      - Confirming:      inside feed(), for at most CONFIRM_WINDOW
      - Retry-armed:     ready_at = fired_at + RETRY_AFTER

    The actuator is pulsed at most once per ready_at instance: a new pulse
    needs either a fresh 0 -> L edge or a retry re-arm.
    """

    TICK_SECONDS = TICK_SECONDS
    PULSE_SECONDS = PULSE_SECONDS
    EXTRA_DELAY = EXTRA_BUFFER_SECONDS
    RETRY_AFTER = RETRY_DELAY_SECONDS
    STATUS_PERIOD = STATUS_PERIOD
    CONFIRM_WINDOW = CONFIRM_WINDOW_SECONDS
    CONFIRM_POLL = CONFIRM_POLL_SECONDS

    def __init__(self, sensor: Sensor, actuator: Actuator, store=None,
                 transport=None, label: Optional[str] = None, source_id: int = 0,
                 unit_seconds: float = UNIT_SECONDS,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep,
                 debug: bool = False):
        self.sensor = GuardedSensor(sensor, log=self.log)
        self.actuator = actuator
        self.store = store          # StateStore or None (in-memory only)
        self.transport = transport  # Broadcast transport or None (no status)
        self.source_id = source_id
        self.label = controller_label(label, source_id)
        self.unit_seconds = unit_seconds
        self.clock = clock
        self.sleep = sleep
        self.debug = debug
        self.running = True
        self.state = ScheduleState()
        self._last_status: Optional[float] = None  # Last level heartbeat
        self._persist_failing = False
        self.pulses = 0      # actuator.pulse() invocations
        self.feeds_due = 0   # feed_due events

    def log(self, text: str, style: str = "", _debug: bool = False):
        """Print a timestamped log line (style is ignored outside a TUI)."""
        if _debug and not self.debug:
            return
        timestamp = datetime.now().strftime("%H:%M:%S")
        print(f"  [{timestamp}] {self.label}: {text}")

    def ready_time(self, level: int, now: float) -> float:
        """Absolute time a cooldown observed at level `level` ends (plus buffer)."""
        return now + level * self.unit_seconds + self.EXTRA_DELAY

    # ---- Persistence / broadcast (never fatal) ----

    def persist(self):
        if self.store is None:
            return
        try:
            self.store.save(self.state)
        except PersistenceError as e:
            if not self._persist_failing:
                self.log(f"[STATE] {e}; continuing in memory", style="yellow")
            self._persist_failing = True
            return
        if self._persist_failing:
            self.log("[STATE] Store writable again", style="green")
        self._persist_failing = False

    def emit(self, event: EventKind, level: int, extra: Optional[dict] = None):
        """Broadcast a status message. A failed send disables broadcasting."""
        if self.transport is None:
            return
        msg = build_status(self.state, level, event, extra,
                           label=self.label, source_id=self.source_id,
                           now=self.clock())
        try:
            self.transport.send(msg.to_wire(), STATUS_CHANNEL)
        except Exception as e:
            self.log(f"[STATUS] Broadcast failed ({e}), status disabled", style="yellow")
            self.transport = None
            return
        self.log(f"-> {event.value} L={level} readyAt={self.state.ready_at}", _debug=True)

    def _heartbeat_due(self, upcoming: float) -> bool:
        """True if the next chance to send, `upcoming` seconds away, would be too late."""
        if self._last_status is None:
            return True
        return self.clock() + upcoming - self._last_status > self.STATUS_PERIOD

    def _heartbeat(self, old: int, new: int):
        self.emit(EventKind.LEVEL, new, {"old": old, "new": new})
        self._last_status = self.clock()

    # ---- Boot ----

    def boot(self):
        """Restore persisted state and apply the boot policy.

        If we boot with L>0 we are somewhere in cooldown but don't know when
        it started, so wait L*UNIT_SECONDS + buffer from *now* (late, never
        early). If we boot with 0, wait for the next 0 -> L edge.
        """
        if self.store is not None:
            loaded = self.store.load()
            if loaded is not None:
                self.state = loaded
                self.log(f"[STATE] Restored: readyAt={loaded.ready_at} firedAt={loaded.fired_at}")

        level = self.sensor.read_level()
        now = self.clock()
        if level > 0:
            self.state = replace(self.state, last_level=level, cooldown_level=level,
                                 cooldown_started_at=None,
                                 ready_at=self.ready_time(level, now))
            reason = "level>0"
        else:
            self.state = replace(self.state, last_level=0, ready_at=None)
            reason = "level==0"
        self.persist()
        self.emit(EventKind.BOOT_ARM, level, {"reason": reason})
        self.log(f"[BOOT] L={level} ({reason}), readyAt={self.state.ready_at}")

    # ---- Main loop ----

    async def tick(self):
        level = self.sensor.read_level()
        now = self.clock()
        prev = self.state.last_level

        # PRODUCTION -> COOLDOWN (0 -> L>0): schedule from *now*
        if prev == 0 and level > 0:
            self.state = replace(self.state, cooldown_level=level,
                                 cooldown_started_at=now,
                                 ready_at=self.ready_time(level, now))
            self.persist()
            self.emit(EventKind.COOLDOWN_START, level, {"level": level})
            self.log(f"[COOLDOWN] L={level}, feed at +{self.state.ready_at - now:.1f}s")

        # Status on change or as heartbeat
        if level != prev or self._heartbeat_due(self.TICK_SECONDS):
            self._heartbeat(prev, level)

        if self.state.ready_at is not None and now >= self.state.ready_at:
            await self.feed(level, now)

        self.state = replace(self.state, last_level=level)
        self.persist()

    async def feed(self, level: int, now: float):
        """Pulse, then watch for L>0 -> 0 to confirm; re-arm a retry if absent."""
        self.feeds_due += 1
        self.emit(EventKind.FEED_DUE, level, {"at": self.state.ready_at})
        if self._heartbeat_due(self.PULSE_SECONDS):
            self._heartbeat(level, level)
        try:
            self.pulses += 1
            await self.actuator.pulse(self.PULSE_SECONDS)
        except Exception as e:
            # No success signal either way; the confirm window decides
            self.log(f"[FEED] {ActuatorFault(e)!r}", style="bold red")
        self.state = replace(self.state, fired_at=now)
        self.persist()
        self.emit(EventKind.FIRED, level)

        if await self._confirm(level):
            # Rescheduled when 0 -> L happens at the end of production
            self.state = replace(self.state, ready_at=None)
            self.persist()
            self.emit(EventKind.CONFIRM, level)
            self.log("[FEED] Confirmed", style="bold green")
        else:
            self.state = replace(self.state, ready_at=now + self.RETRY_AFTER)
            self.persist()
            self.emit(EventKind.RETRY, level, {"after": self.RETRY_AFTER})
            self.log(f"[FEED] Not confirmed, retry in {self.RETRY_AFTER:.0f}s", style="yellow")

    async def _confirm(self, prev: int) -> bool:
        deadline = self.clock() + self.CONFIRM_WINDOW
        while self.clock() <= deadline:
            cur = self.sensor.read_level()
            if prev > 0 and cur == 0:
                return True
            # Keep the heartbeat going; the window may end just before a tick sleep
            if self._heartbeat_due(self.CONFIRM_POLL + self.TICK_SECONDS):
                self._heartbeat(prev, cur)
            prev = cur
            await self.sleep(self.CONFIRM_POLL)
        return False

    async def run(self, max_ticks: Optional[int] = None):
        """Boot, then tick every TICK_SECONDS until stopped (or max_ticks)."""
        self.boot()
        ticks = 0
        while self.running and (max_ticks is None or ticks < max_ticks):
            try:
                await self.tick()
            except Exception as e:
                # Collaborators are guarded; anything left must not stop feeding
                tb = ''.join(traceback.format_exception(type(e), e, e.__traceback__))
                self.log(f"[LOOP ERROR] {e}\n{tb}", style="bold red")
            ticks += 1
            await self.sleep(self.TICK_SECONDS)
