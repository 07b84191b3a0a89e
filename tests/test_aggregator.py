"""Tests for the status aggregator and the display loop."""
import asyncio

import pytest

from aggregator import DisplayRecord, StatusAggregator, run_display_loop
from conftest import FakeClock, RecordingActuator, TimelineSensor
from constants import STATUS_CHANNEL
from scheduler import FeedScheduler
from transport import LoopbackHub


def status(**fields):
    msg = {"kind": "lily_status"}
    msg.update(fields)
    return msg


class TestHandle:
    def test_fired_sets_last_fired_at(self):
        agg = StatusAggregator()
        agg.handle(1, status(label="A", level=3, event="level"), STATUS_CHANNEL, now=10.0)
        rec = agg.handle(1, status(label="A", level=3, event="fired", time=1234.5),
                         STATUS_CHANNEL, now=11.0)
        assert rec.level == 3
        assert rec.last_fired_at == 1234.5
        assert rec.last_event == "fired"
        assert rec.updated_at == 11.0
        assert list(agg.records) == ["A"]

    def test_last_fired_at_only_changes_on_fired(self):
        agg = StatusAggregator()
        agg.handle(1, status(label="A", level=2, event="fired", time=50.0), STATUS_CHANNEL)
        rec = agg.handle(1, status(label="A", level=0, event="confirm", time=53.0),
                         STATUS_CHANNEL)
        assert rec.last_fired_at == 50.0
        assert rec.level == 0

    def test_ready_at_kept_when_absent(self):
        agg = StatusAggregator()
        agg.handle(1, status(label="A", level=4, event="cooldown_start", readyAt=500.0),
                   STATUS_CHANNEL)
        rec = agg.handle(1, status(label="A", level=4, event="level"), STATUS_CHANNEL)
        assert rec.ready_at == 500.0

    def test_null_ready_at_clears_schedule(self):
        agg = StatusAggregator()
        agg.handle(1, status(label="A", level=4, event="cooldown_start", readyAt=500.0),
                   STATUS_CHANNEL)
        rec = agg.handle(1, status(label="A", level=0, event="confirm", readyAt=None),
                         STATUS_CHANNEL)
        assert rec.ready_at is None

    def test_label_falls_back_to_source_id(self):
        agg = StatusAggregator()
        rec = agg.handle(99, status(sourceId=12, level=1, event="level"), STATUS_CHANNEL)
        assert rec.label == "id_12"
        assert rec.source_id == 12
        assert rec.sender_id == 99

    def test_label_falls_back_to_sender(self):
        agg = StatusAggregator()
        rec = agg.handle(42, status(event="boot_arm"), STATUS_CHANNEL)
        assert rec.label == "id_42"

    def test_ignores_foreign_channel_and_kind(self):
        agg = StatusAggregator()
        assert agg.handle(1, status(label="A", event="level"), "other-channel") is None
        assert agg.handle(1, {"kind": "thermostat", "label": "A", "event": "level"},
                          STATUS_CHANNEL) is None
        assert agg.records == {}
        assert agg.rejected == 0

    def test_rejects_unknown_event(self):
        agg = StatusAggregator()
        assert agg.handle(1, status(label="A", event="exploded"), STATUS_CHANNEL) is None
        assert agg.handle(1, status(label="A", level="high", event="level"),
                          STATUS_CHANNEL) is None
        assert agg.rejected == 2
        assert agg.records == {}

    def test_records_are_never_removed(self):
        clock = FakeClock(start=0.0)
        agg = StatusAggregator(clock=clock)
        agg.handle(1, status(label="old", event="level"), STATUS_CHANNEL)
        clock.now = 1_000_000.0
        agg.handle(2, status(label="new", event="level"), STATUS_CHANNEL)
        assert sorted(agg.records) == ["new", "old"]
        assert agg.records["old"].is_stale(clock.now)
        assert not agg.records["new"].is_stale(clock.now)


class TestSnapshot:
    def test_sorted_by_label(self):
        agg = StatusAggregator()
        for label in ["charlie", "alpha", "bravo"]:
            agg.handle(1, status(label=label, event="level"), STATUS_CHANNEL)
        assert [r.label for r in agg.snapshot()] == ["alpha", "bravo", "charlie"]

    def test_snapshot_is_a_copy(self):
        agg = StatusAggregator()
        agg.handle(1, status(label="A", level=2, event="level"), STATUS_CHANNEL)
        snap = agg.snapshot()
        snap[0].level = 9
        assert agg.records["A"].level == 2
        assert isinstance(snap[0], DisplayRecord)


class TestDisplayLoop:
    def test_drains_and_repaints(self):
        clock = FakeClock(start=0.0)
        hub = LoopbackHub(sleep=clock.sleep)
        controller = hub.endpoint(1)
        display = hub.endpoint(2)
        controller.send(status(label="B", level=2, event="level"), STATUS_CHANNEL)
        controller.send(status(label="A", level=0, event="confirm"), STATUS_CHANNEL)
        controller.send(status(label="A", event="level"), "noise")

        frames = []
        seen = []
        agg = StatusAggregator(clock=clock)
        asyncio.run(run_display_loop(
            agg, display, frames.append,
            on_record=lambda rec, msg: seen.append(rec.label),
            receive_timeout=0.5, redraw_interval=0.5, clock=clock,
            max_iterations=6))

        assert seen == ["B", "A"]
        assert [r.label for r in frames[-1]] == ["A", "B"]
        # First paint immediately, then at most one per redraw interval
        assert 2 <= len(frames) <= 4

    def test_scheduler_to_display_end_to_end(self):
        clock = FakeClock(start=0.0)
        hub = LoopbackHub(sleep=clock.sleep)
        sensor = TimelineSensor(clock, [(0.0, 0), (1.0, 3)])
        actuator = RecordingActuator(clock, on_pulse=lambda t: sensor.at(t + 0.5, 0))
        sched = FeedScheduler(sensor, actuator, transport=hub.endpoint(7),
                              label="north", source_id=7,
                              clock=clock, sleep=clock.sleep)
        sched.TICK_SECONDS = 1.0
        display = hub.endpoint(100)
        asyncio.run(sched.run(max_ticks=70))

        agg = StatusAggregator(clock=clock)
        while display.inbox:
            agg.handle(*display.inbox.pop(0))

        rec = agg.records["north"]
        assert rec.source_id == 7
        assert rec.level == 0
        assert rec.last_fired_at == pytest.approx(62.4)  # fired is sent after the 0.4s pulse
        assert rec.ready_at is None  # Cleared by the confirm
        assert sched.state.ready_at is None

    def test_lossy_delivery_does_not_affect_scheduling(self):
        clock = FakeClock(start=0.0)
        hub = LoopbackHub(drop=lambda sender, msg: True, sleep=clock.sleep)
        sensor = TimelineSensor(clock, [(0.0, 0), (1.0, 3)])
        actuator = RecordingActuator(clock, on_pulse=lambda t: sensor.at(t + 0.5, 0))
        sched = FeedScheduler(sensor, actuator, transport=hub.endpoint(7),
                              clock=clock, sleep=clock.sleep)
        sched.TICK_SECONDS = 1.0
        display = hub.endpoint(100)
        asyncio.run(sched.run(max_ticks=70))

        assert display.inbox == []
        assert len(hub.sent) > 0
        assert actuator.pulse_times == [62.0]
        assert sched.state.ready_at is None
