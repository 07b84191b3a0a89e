#!/usr/bin/env python3
"""
Lily feed controller.

Watches the comparator level, pulses the feeder when the cooldown ends,
confirms the feed and retries if needed. Broadcasts status on the
"lily-status" channel and persists its schedule across restarts.

Usage:
    python lily_node.py --simulate                        # Simulated lily, real timing
    python lily_node.py --simulate --unit-seconds 1       # Fast demo cycle
    python lily_node.py --simulate --label north --no-broadcast
    python lily_node.py --simulate --ticks 200            # Stop after 200 ticks

Only the simulated lily ships with the CLI; hardware adapters implement
read_level() / async pulse(duration) and are handed to FeedScheduler.
"""

import argparse
import asyncio
import uuid
from pathlib import Path

import db
from constants import BROADCAST_ADDRESS, BROADCAST_PORT, MAX_LEVEL, UNIT_SECONDS
from errors import TransportUnavailable
from hardware import SimulatedLily
from scheduler import FeedScheduler
from status import controller_label
from transport import UdpBroadcastTransport


def default_source_id() -> int:
    """Host-derived controller id (MAC folded to 16 bits)."""
    return uuid.getnode() & 0xFFFF


def main():
    parser = argparse.ArgumentParser(description="Lily feed controller")
    parser.add_argument("--label", type=str, help="Controller label (default: id_<id>)")
    parser.add_argument("--id", type=int, default=None, help="Source id (default: host-derived)")
    parser.add_argument("--db", type=Path, default=db.DB_PATH, help="State database path")
    parser.add_argument("--port", type=int, default=BROADCAST_PORT, help="Status UDP port")
    parser.add_argument("--broadcast-address", type=str, default=BROADCAST_ADDRESS,
                        help="Status broadcast address")
    parser.add_argument("--no-broadcast", action="store_true",
                        help="Do not send status messages")
    parser.add_argument("--simulate", action="store_true",
                        help="Drive a simulated lily instead of hardware")
    parser.add_argument("--unit-seconds", type=float, default=UNIT_SECONDS,
                        help="Cooldown seconds per level (default 20)")
    parser.add_argument("--level", type=int, default=5,
                        help=f"Simulated cooldown level (1-{MAX_LEVEL})")
    parser.add_argument("--production-seconds", type=float, default=30.0,
                        help="Simulated production time")
    parser.add_argument("--ticks", type=int, default=None, help="Stop after N ticks")
    parser.add_argument("--debug", action="store_true", help="Log every status message")
    args = parser.parse_args()

    if not args.simulate:
        parser.error("no hardware adapter available on the command line; use --simulate")
    if not 1 <= args.level <= MAX_LEVEL:
        parser.error(f"--level must be 1-{MAX_LEVEL}")

    asyncio.run(_run(args))


async def _run(args):
    source_id = args.id if args.id is not None else default_source_id()
    label = controller_label(args.label, source_id)

    lily = SimulatedLily(level=args.level, unit_seconds=args.unit_seconds,
                         production_seconds=args.production_seconds)

    transport = None
    if not args.no_broadcast:
        try:
            transport = await UdpBroadcastTransport(
                source_id, port=args.port,
                broadcast_address=args.broadcast_address, listen=False).open()
        except TransportUnavailable as e:
            print(f"  [WARN] {e}; running without status broadcasts")

    store = db.StateStore(label, db_path=args.db)
    scheduler = FeedScheduler(lily, lily, store=store, transport=transport,
                              label=label, source_id=source_id,
                              unit_seconds=args.unit_seconds, debug=args.debug)
    store.set_logger(scheduler.log)

    print("\n" + "=" * 50)
    print(f"  Lily {label} (id {source_id})")
    print("=" * 50)
    print(f"  Timing: L*{args.unit_seconds:g}s + {scheduler.EXTRA_DELAY:.1f}s buffer")
    print(f"  Status: {'port %d' % args.port if transport else 'off'}")
    print(f"  State:  {args.db}")
    print()

    try:
        await scheduler.run(max_ticks=args.ticks)
    finally:
        if transport:
            transport.close()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nGoodbye!")
