"""FastAPI web server with WebSocket support for live lily status.

Embedded in the display process. Pushes every merged status message to
connected browsers the instant it is received.
"""

import json
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

import db
from aggregator import DisplayRecord, StatusAggregator
from display import remaining_seconds


# --- WebSocket Manager ---

class ConnectionManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        """Send JSON message to all connected WebSocket clients."""
        if not self.active_connections:
            return
        data = json.dumps(message)
        disconnected = []
        for conn in self.active_connections:
            try:
                await conn.send_text(data)
            except Exception:
                disconnected.append(conn)
        for conn in disconnected:
            if conn in self.active_connections:
                self.active_connections.remove(conn)


# --- FastAPI App ---

app = FastAPI(title="Lily Status Dashboard")
manager = ConnectionManager()

# Reference to the aggregator (set by lily_display.py at startup)
_aggregator: Optional[StatusAggregator] = None
_history_db: Optional[Path] = None  # Set when status history is recorded


def set_aggregator(aggregator: StatusAggregator, history_db: Optional[Path] = None):
    """Called by lily_display.py to inject the StatusAggregator reference."""
    global _aggregator, _history_db
    _aggregator = aggregator
    _history_db = history_db


@app.get("/")
async def index():
    return {
        "message": "Lily Status Dashboard API",
        "docs": "/docs",
        "endpoints": {
            "state": "GET /api/state",
            "history": "GET /api/history?minutes=30",
            "websocket": "ws://<host>/ws",
        },
    }


# --- WebSocket Endpoint ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        # Send initial state on connect
        await websocket.send_text(json.dumps({
            "type": "state",
            "data": _build_state()
        }))
        # Keep the socket open; browsers have nothing to send
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception:
        manager.disconnect(websocket)


# --- REST API ---

class RecordOut(BaseModel):
    label: str
    source_id: Optional[int]
    level: int
    ready_at: Optional[float]
    remaining_s: float
    last_event: Optional[str]
    last_fired_at: Optional[float]
    updated_at: float
    stale: bool


@app.get("/api/state")
async def get_state():
    """Return current lily records, sorted by label."""
    return _build_state()


@app.get("/api/history")
async def get_history(label: str = None, minutes: int = 30, limit: int = 500):
    """Return historical status events."""
    if _history_db is None:
        return []
    return db.get_history(label=label, minutes=minutes, limit=limit,
                          db_path=_history_db)


# --- State Builder ---

def _record_out(rec: DisplayRecord, now: float) -> dict:
    return RecordOut(
        label=rec.label,
        source_id=rec.source_id,
        level=rec.level,
        ready_at=rec.ready_at,
        remaining_s=remaining_seconds(rec, now),
        last_event=rec.last_event,
        last_fired_at=rec.last_fired_at,
        updated_at=rec.updated_at,
        stale=rec.is_stale(now),
    ).model_dump()


def _build_state() -> dict:
    """Build current display state dict from the aggregator."""
    if _aggregator is None:
        return {"error": "Aggregator not initialized"}
    now = time.time()
    return {
        "timestamp": now,
        "received": _aggregator.received,
        "rejected": _aggregator.rejected,
        "lilies": [_record_out(rec, now) for rec in _aggregator.snapshot()],
    }


# --- Broadcast Helpers (called by the display loop) ---

async def broadcast_status(rec: DisplayRecord, message: dict):
    """Push one merged status message to all browsers."""
    await manager.broadcast({
        "type": "status",
        "label": rec.label,
        "data": _record_out(rec, time.time()),
        "message": message,
        "timestamp": time.time(),
    })

