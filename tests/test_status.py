"""Tests for the status wire schema and the persisted schedule state."""
import pytest
from pydantic import ValidationError

from schedule_state import ScheduleState
from status import EventKind, StatusMessage, build_status, controller_label


class TestStatusMessage:
    def test_wire_fields_are_fixed(self):
        state = ScheduleState(last_level=0, ready_at=161.0)
        msg = build_status(state, 7, EventKind.COOLDOWN_START, {"level": 7},
                           label="north", source_id=12, now=60.0)
        wire = msg.to_wire()
        assert set(wire) == {"kind", "label", "sourceId", "time", "level",
                             "readyAt", "event", "extra"}
        assert wire == {
            "kind": "lily_status", "label": "north", "sourceId": 12, "time": 60.0,
            "level": 7, "readyAt": 161.0, "event": "cooldown_start",
            "extra": {"level": 7},
        }

    def test_absent_schedule_is_null_on_the_wire(self):
        msg = build_status(ScheduleState(), 0, EventKind.BOOT_ARM,
                           label="north", source_id=1, now=0.0)
        wire = msg.to_wire()
        assert wire["readyAt"] is None
        assert wire["extra"] is None

    def test_build_status_does_not_touch_state(self):
        state = ScheduleState(last_level=3, ready_at=10.0)
        build_status(state, 0, EventKind.CONFIRM, label="x", source_id=1, now=5.0)
        assert state == ScheduleState(last_level=3, ready_at=10.0)

    def test_event_vocabulary(self):
        assert {e.value for e in EventKind} == {
            "level", "cooldown_start", "feed_due", "fired", "confirm", "retry", "boot_arm"}

    def test_rejects_other_kind(self):
        with pytest.raises(ValidationError):
            StatusMessage.model_validate({"kind": "other", "event": "level"})

    def test_accepts_partial_message(self):
        msg = StatusMessage.model_validate({"kind": "lily_status", "label": "A",
                                            "level": 3, "event": "level"})
        assert msg.event is EventKind.LEVEL
        assert msg.time is None
        assert msg.ready_at is None

    def test_controller_label(self):
        assert controller_label("north", 4) == "north"
        assert controller_label(None, 4) == "id_4"
        assert controller_label("", 4) == "id_4"


class TestScheduleState:
    def test_dict_uses_persisted_keys(self):
        state = ScheduleState(last_level=5, cooldown_level=5, cooldown_started_at=2.0,
                              ready_at=103.0, fired_at=None)
        assert state.to_dict() == {"lastLevel": 5, "cooldownLevel": 5,
                                   "cooldownStartedAt": 2.0, "readyAt": 103.0,
                                   "firedAt": None}
        assert ScheduleState.from_dict(state.to_dict()) == state

    def test_from_dict_ignores_unknown_and_missing_keys(self):
        state = ScheduleState.from_dict({"readyAt": 9, "color": "red"})
        assert state == ScheduleState(ready_at=9.0)

    @pytest.mark.parametrize("blob", [
        [1, 2, 3],
        "readyAt",
        {"readyAt": "soon"},
        {"lastLevel": True},
    ])
    def test_from_dict_rejects_malformed(self, blob):
        with pytest.raises(ValueError):
            ScheduleState.from_dict(blob)

    def test_phase(self):
        assert ScheduleState(last_level=0).phase(10.0) == "idle"
        assert ScheduleState(last_level=4).phase(10.0) == "waiting"
        assert ScheduleState(last_level=4, ready_at=20.0).phase(10.0) == "cooldown_armed"
        assert ScheduleState(last_level=4, ready_at=20.0).phase(20.0) == "feed_due"
