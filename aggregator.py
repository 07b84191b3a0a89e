"""Status aggregator: merges lily status broadcasts into display records.

One DisplayRecord per label, created on the first message and never
removed. Liveness is read from updated_at (controllers send a heartbeat at
least every STATUS_PERIOD), not from the presence of a record.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from pydantic import ValidationError

from constants import (
    RECEIVE_TIMEOUT,
    REDRAW_INTERVAL,
    STALE_AFTER_SECONDS,
    STATUS_CHANNEL,
    STATUS_KIND,
)
from status import EventKind, StatusMessage, controller_label


@dataclass
class DisplayRecord:
    """Last known state of a single lily controller."""
    label: str
    source_id: Optional[int] = None
    sender_id: Optional[int] = None    # Transport-level sender
    level: int = 0
    ready_at: Optional[float] = None
    last_event: Optional[str] = None
    last_fired_at: Optional[float] = None
    updated_at: float = field(default_factory=time.time)

    def is_stale(self, now: float, after: float = STALE_AFTER_SECONDS) -> bool:
        return now - self.updated_at > after


class StatusAggregator:
    """Label -> DisplayRecord table fed by received status messages."""

    def __init__(self, channel: str = STATUS_CHANNEL,
                 clock: Callable[[], float] = time.time):
        self.channel = channel
        self.clock = clock
        self.records: dict[str, DisplayRecord] = {}
        self.received = 0
        self.rejected = 0

    def handle(self, sender_id: int, message: dict, channel: str,
               now: Optional[float] = None) -> Optional[DisplayRecord]:
        """Merge one message. Returns the updated record, or None if ignored."""
        if channel != self.channel or not isinstance(message, dict) \
                or message.get("kind") != STATUS_KIND:
            return None
        try:
            msg = StatusMessage.model_validate(message)
        except ValidationError:
            self.rejected += 1
            return None

        now = self.clock() if now is None else now
        source_id = msg.source_id if msg.source_id is not None else sender_id
        label = controller_label(msg.label, source_id)

        rec = self.records.get(label)
        if rec is None:
            rec = DisplayRecord(label=label, updated_at=now)
            self.records[label] = rec
        rec.source_id = source_id
        rec.sender_id = sender_id
        if msg.level is not None:
            rec.level = msg.level
        # An explicit null clears the schedule; a missing key keeps it
        if "ready_at" in msg.model_fields_set:
            rec.ready_at = msg.ready_at
        rec.last_event = msg.event.value
        if msg.event == EventKind.FIRED:
            rec.last_fired_at = msg.time
        rec.updated_at = now
        self.received += 1
        return rec

    def snapshot(self) -> list[DisplayRecord]:
        """Stable copy of all records, sorted by label."""
        return [replace(self.records[label]) for label in sorted(self.records)]


async def run_display_loop(aggregator: StatusAggregator, transport,
                           render: Callable[[list[DisplayRecord]], None],
                           on_record: Optional[Callable] = None,
                           receive_timeout: float = RECEIVE_TIMEOUT,
                           redraw_interval: float = REDRAW_INTERVAL,
                           clock: Callable[[], float] = time.monotonic,
                           should_run: Callable[[], bool] = lambda: True,
                           max_iterations: Optional[int] = None):
    """Receive + refresh loop.

    Each iteration drains at most one message (bounded wait), merges it,
    then repaints if redraw_interval has elapsed since the last paint.
    on_record(record, message) is called for every merged message.
    """
    last_draw: Optional[float] = None
    iterations = 0
    while should_run() and (max_iterations is None or iterations < max_iterations):
        received = await transport.receive(receive_timeout)
        if received is not None:
            sender_id, message, channel = received
            rec = aggregator.handle(sender_id, message, channel)
            if rec is not None and on_record is not None:
                on_record(rec, message)

        if last_draw is None or clock() - last_draw > redraw_interval:
            render(aggregator.snapshot())
            last_draw = clock()
        iterations += 1
