"""Headless tests for the Textual display."""
import asyncio

from textual.widgets import DataTable

from aggregator import StatusAggregator
from constants import STATUS_CHANNEL
from errors import TransportUnavailable
from transport import LoopbackHub
from tui_app import LilyDisplayApp


class UnavailableTransport:
    async def open(self):
        raise TransportUnavailable("no broadcast interface")

    def close(self):
        pass


def test_table_lists_lilies_sorted():
    hub = LoopbackHub()
    controller = hub.endpoint(1)
    display = hub.endpoint(2)
    for label, level in [("south", 9), ("north", 0), ("east", 3)]:
        controller.send({"kind": "lily_status", "label": label, "level": level,
                         "event": "level"}, STATUS_CHANNEL)

    app = LilyDisplayApp(StatusAggregator(), display,
                         receive_timeout=0.05, redraw_interval=0.0)

    async def scenario():
        async with app.run_test() as pilot:
            await pilot.pause(0.5)
            table = app.query_one("#lily-table", DataTable)
            return table.row_count, [table.get_row_at(i)[0].plain for i in range(table.row_count)]

    count, labels = asyncio.run(scenario())
    assert count == 3
    assert labels == ["east", "north", "south"]
    assert display.closed


def test_exits_without_transport():
    app = LilyDisplayApp(StatusAggregator(), UnavailableTransport())

    async def scenario():
        async with app.run_test() as pilot:
            await pilot.pause(0.2)

    asyncio.run(scenario())
    assert app.return_code == 1
