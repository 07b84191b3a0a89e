"""Test configuration: import path and simulated-time collaborators."""
import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from errors import PersistenceError  # noqa: E402
from schedule_state import ScheduleState  # noqa: E402


class FakeClock:
    """Epoch-seconds clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.now += seconds


class TimelineSensor:
    """Level is the last (t, level) entry whose t <= now."""

    def __init__(self, clock, timeline):
        self.clock = clock
        self.timeline = sorted(timeline)

    def at(self, t: float, level: int):
        self.timeline = sorted(self.timeline + [(t, level)])

    def read_level(self) -> int:
        level = 0
        for t, lvl in self.timeline:
            if t <= self.clock():
                level = lvl
        return level


class RecordingActuator:
    def __init__(self, clock, on_pulse=None, fail: bool = False):
        self.clock = clock
        self.on_pulse = on_pulse
        self.fail = fail
        self.pulse_times: list[float] = []

    async def pulse(self, duration: float):
        self.pulse_times.append(self.clock())
        if self.on_pulse:
            self.on_pulse(self.clock())
        if self.fail:
            raise OSError("output driver not responding")
        await self.clock.sleep(duration)


class RecordingTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[dict, str]] = []
        self.closed = False

    def send(self, message: dict, channel: str):
        if self.fail:
            raise OSError("network unreachable")
        self.sent.append((message, channel))

    def close(self):
        self.closed = True

    @property
    def events(self) -> list[str]:
        return [m["event"] for m, _ in self.sent]

    def of(self, event: str) -> list[dict]:
        return [m for m, _ in self.sent if m["event"] == event]


class MemoryStore:
    def __init__(self, state: ScheduleState = None):
        self.state = state
        self.saves = 0
        self.fail = False

    def load(self):
        return self.state

    def save(self, state: ScheduleState):
        if self.fail:
            raise PersistenceError("disk full")
        self.saves += 1
        self.state = ScheduleState(**vars(state))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def store():
    return MemoryStore()
