"""Formatting helpers shared by the plain, TUI and web renderers."""

import time
from datetime import datetime
from typing import Iterable, Optional

from aggregator import DisplayRecord
from constants import STALE_AFTER_SECONDS, UNIT_SECONDS

COLUMNS = ("Label", "Lvl", "Time", "LastEvt", "Since", "Status")


def fmt_seconds(s: float) -> str:
    """MM:SS, clamped at zero."""
    s = max(0, int(s))
    return f"{s // 60:02d}:{s % 60:02d}"


def remaining_seconds(rec: DisplayRecord, now: float) -> float:
    """Seconds until the next feed, or the nominal cooldown if none is scheduled."""
    if rec.ready_at is not None:
        return max(0.0, rec.ready_at - now)
    return rec.level * UNIT_SECONDS


def level_style(level: int) -> str:
    """green if producing, red for a long cooldown, yellow in between."""
    if level == 0:
        return "green"
    if level >= 10:
        return "red"
    return "yellow"


def record_row(rec: DisplayRecord, now: Optional[float] = None,
               stale_after: float = STALE_AFTER_SECONDS) -> tuple:
    now = time.time() if now is None else now
    since = fmt_seconds(now - rec.last_fired_at) if rec.last_fired_at else "-"
    return (
        rec.label,
        str(rec.level),
        fmt_seconds(remaining_seconds(rec, now)),
        rec.last_event or "-",
        since,
        "STALE" if rec.is_stale(now, stale_after) else "ok",
    )


def render_text(records: Iterable[DisplayRecord], now: Optional[float] = None) -> str:
    """Plain-terminal table of the records, in the order given."""
    now = time.time() if now is None else now
    fmt = "%-16s %-5s %-8s %-14s %-6s %-6s"
    lines = [
        "Lily Cooldowns",
        f"Updated: {datetime.fromtimestamp(now).strftime('%H:%M:%S')}",
        "",
        fmt % COLUMNS,
    ]
    for rec in records:
        lines.append(fmt % record_row(rec, now))
    return "\n".join(lines)
