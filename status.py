"""Status broadcast schema shared by controllers and displays.

Every controller emits a StatusMessage on each scheduling event. Field names
and the event vocabulary are the cross-process contract:

    {kind: "lily_status", label, sourceId, time, level, readyAt, event, extra}

Delivery is best-effort (at most once, unordered). Nothing in the scheduler
may depend on a message arriving.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from constants import STATUS_KIND
from schedule_state import ScheduleState


class EventKind(str, Enum):
    LEVEL = "level"
    COOLDOWN_START = "cooldown_start"
    FEED_DUE = "feed_due"
    FIRED = "fired"
    CONFIRM = "confirm"
    RETRY = "retry"
    BOOT_ARM = "boot_arm"


class StatusMessage(BaseModel):
    """One status broadcast.

    Controllers always fill every field. Displays accept partial messages
    (kind and event must be valid) and merge what is there.
    """
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["lily_status"] = STATUS_KIND
    label: Optional[str] = None
    source_id: Optional[int] = Field(default=None, alias="sourceId")
    time: Optional[float] = None
    level: Optional[int] = None
    ready_at: Optional[float] = Field(default=None, alias="readyAt")
    event: EventKind
    extra: Optional[dict[str, Any]] = None

    def to_wire(self) -> dict:
        """JSON-safe dict with the wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True)


def build_status(state: ScheduleState, level: int, event: EventKind,
                 extra: Optional[dict] = None, *, label: str,
                 source_id: int, now: float) -> StatusMessage:
    """Build the status message for an event. Pure: no I/O, no mutation."""
    return StatusMessage(
        label=label,
        source_id=source_id,
        time=now,
        level=level,
        ready_at=state.ready_at,
        event=event,
        extra=extra,
    )


def controller_label(label: Optional[str], source_id: int) -> str:
    """Configured label, or the synthesized id_<sourceId> fallback."""
    return label or f"id_{source_id}"
