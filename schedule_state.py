"""Data class holding the persisted feed schedule of a single controller."""

from dataclasses import dataclass
from typing import Optional

# Persisted blob keys (camelCase, shared with the status protocol)
_FIELDS = {
    "last_level": "lastLevel",
    "cooldown_level": "cooldownLevel",
    "cooldown_started_at": "cooldownStartedAt",
    "ready_at": "readyAt",
    "fired_at": "firedAt",
}
_INT_FIELDS = ("last_level", "cooldown_level")


@dataclass
class ScheduleState:
    """Last known schedule of one controller. Timestamps are epoch seconds."""
    last_level: Optional[int] = None             # For edge detection
    cooldown_level: Optional[int] = None         # Level seen when cooldown began
    cooldown_started_at: Optional[float] = None  # None if unknown (armed at boot)
    ready_at: Optional[float] = None             # Next pulse time, None = nothing pending
    fired_at: Optional[float] = None             # Last pulse actually issued

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in _FIELDS.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduleState":
        """Rebuild a state from a persisted blob.

        Raises ValueError if the blob is not a mapping or holds values of the
        wrong type. Unknown keys are ignored.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping, got {type(data).__name__}")
        kwargs = {}
        for attr, key in _FIELDS.items():
            value = data.get(key)
            if value is None:
                kwargs[attr] = None
            elif isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key}: expected a number, got {value!r}")
            elif attr in _INT_FIELDS:
                kwargs[attr] = int(value)
            else:
                kwargs[attr] = float(value)
        return cls(**kwargs)

    def phase(self, now: float) -> str:
        """Conceptual scheduler state derived from the fields."""
        if self.ready_at is None:
            return "idle" if self.last_level == 0 else "waiting"
        if now >= self.ready_at:
            return "feed_due"
        return "cooldown_armed"
