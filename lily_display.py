#!/usr/bin/env python3
"""
Lily status display.

Shows every lily heard on the "lily-status" broadcast channel.

Usage:
    python lily_display.py                  # TUI (default)
    python lily_display.py --no-tui         # Plain terminal table
    python lily_display.py --web            # Web dashboard + status history
    python lily_display.py --web --web-port 8080

A usable broadcast endpoint is required; the display exits if none can be
opened.
"""

import argparse
import asyncio
import sys
from pathlib import Path

import db
from aggregator import StatusAggregator, run_display_loop
from constants import BROADCAST_PORT, RECEIVE_TIMEOUT
from display import render_text
from errors import TransportUnavailable
from transport import UdpBroadcastTransport
from tui_app import LilyDisplayApp

# Display ids live above the 16-bit controller range
DISPLAY_SOURCE_ID = 0x10000


def main():
    """Entry point: decides between TUI, plain and web mode."""
    parser = argparse.ArgumentParser(description="Lily status display")
    parser.add_argument("--port", type=int, default=BROADCAST_PORT, help="Status UDP port")
    parser.add_argument("--timeout", type=float, default=RECEIVE_TIMEOUT,
                        help="Receive wait per loop iteration (seconds)")
    parser.add_argument("--no-tui", action="store_true",
                        help="Use a plain terminal table instead of the TUI")
    parser.add_argument("--web", action="store_true",
                        help="Serve the web dashboard (records status history)")
    parser.add_argument("--web-port", type=int, default=8000,
                        help="Web dashboard port (default 8000)")
    parser.add_argument("--db", type=Path, default=db.DB_PATH,
                        help="Status history database (web mode)")
    args = parser.parse_args()

    aggregator = StatusAggregator()

    if args.web:
        asyncio.run(_run_web(args, aggregator))
        return

    # Textual's app.run() manages its own event loop, so call it directly
    if not args.no_tui:
        transport = UdpBroadcastTransport(DISPLAY_SOURCE_ID, port=args.port)
        app = LilyDisplayApp(aggregator, transport, receive_timeout=args.timeout)
        app.run()
        sys.exit(app.return_code or 0)

    asyncio.run(_run_plain(args, aggregator))


async def _open_transport(args) -> UdpBroadcastTransport:
    try:
        return await UdpBroadcastTransport(DISPLAY_SOURCE_ID, port=args.port).open()
    except TransportUnavailable as e:
        print(f"  [ERROR] {e}")
        print("  A broadcast endpoint is required.")
        sys.exit(1)


async def _run_plain(args, aggregator: StatusAggregator):
    """Receive + refresh loop drawing a plain table."""
    transport = await _open_transport(args)

    def render(records):
        # Clear screen, home cursor
        print("\033[2J\033[H" + render_text(records), flush=True)

    try:
        await run_display_loop(aggregator, transport, render,
                               receive_timeout=args.timeout)
    finally:
        transport.close()


def _history_recorder(db_path: Path, push, pending: set):
    """on_record hook for web mode: store the event, then push it to browsers.

    Push tasks stay in `pending` until done so they are not collected early.
    """
    def on_push_done(task):
        pending.discard(task)
        if task.cancelled():
            return
        try:
            task.result()
        except Exception as e:
            print(f"  [WEB] Status push failed: {e}")

    def on_record(rec, message):
        db.insert_event(rec.label, rec.last_event, level=rec.level,
                        ready_at=rec.ready_at, source_id=rec.source_id,
                        db_path=db_path)
        task = asyncio.ensure_future(push(rec, message))
        pending.add(task)
        task.add_done_callback(on_push_done)

    return on_record


async def _run_web(args, aggregator: StatusAggregator):
    """Display loop next to the web dashboard, recording status history."""
    import uvicorn
    import web_server

    db.init_db(args.db)
    purged = db.purge_old_events(days=7, db_path=args.db)
    web_server.set_aggregator(aggregator, history_db=args.db)
    transport = await _open_transport(args)

    on_record = _history_recorder(args.db, web_server.broadcast_status, set())

    config = uvicorn.Config(
        web_server.app, host="0.0.0.0", port=args.web_port,
        log_level="info")
    server = uvicorn.Server(config)

    print("\n" + "=" * 50)
    print("  Lily Status Display: Web Mode")
    print("=" * 50)
    print(f"  Dashboard: http://0.0.0.0:{args.web_port}")
    print(f"  API:       http://0.0.0.0:{args.web_port}/api/state")
    print(f"  WebSocket: ws://0.0.0.0:{args.web_port}/ws")
    if purged:
        print(f"  Purged {purged} event(s) older than 7 days")
    print()

    try:
        await asyncio.gather(
            server.serve(),
            run_display_loop(aggregator, transport, lambda records: None,
                             on_record=on_record, receive_timeout=args.timeout,
                             should_run=lambda: not server.should_exit),
        )
    finally:
        transport.close()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nGoodbye!")
