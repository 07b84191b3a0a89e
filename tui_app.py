"""Textual TUI for the lily status display."""

import time

from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.css.query import NoMatches
from textual.message import Message
from textual.widgets import DataTable, Footer, Header, RichLog, Static

from aggregator import DisplayRecord, StatusAggregator, run_display_loop
from constants import RECEIVE_TIMEOUT, REDRAW_INTERVAL
from display import COLUMNS, level_style, record_row
from errors import TransportUnavailable


class LilyDisplayApp(App):
    """Textual TUI showing every lily heard on the status channel."""

    TITLE = "Lily Cooldowns"

    CSS = """
    #sidebar {
        width: 26;
        dock: left;
        border-right: solid $accent;
        padding: 1;
        background: $surface;
    }
    #log {
        height: 1fr;
        border: solid $primary;
    }
    #lily-table {
        height: auto;
        max-height: 20;
        border: solid $primary;
    }
    """

    BINDINGS = [
        ("f2", "toggle_debug", "Debug"),
        ("f3", "clear_log", "Clear"),
        ("q", "quit", "Quit"),
    ]

    # ---- Custom Messages ----

    class LogMsg(Message):
        """Generic log line for the RichLog panel."""
        def __init__(self, text: str, style: str = ""):
            super().__init__()
            self.text = text
            self.style = style

    # ---- Init ----

    def __init__(self, aggregator: StatusAggregator, transport,
                 receive_timeout: float = RECEIVE_TIMEOUT,
                 redraw_interval: float = REDRAW_INTERVAL):
        super().__init__()
        self.aggregator = aggregator
        self.transport = transport
        self.receive_timeout = receive_timeout
        self.redraw_interval = redraw_interval
        self.debug_mode = False
        self._labels: list[str] = []  # Row order currently in the table

    # ---- Layout ----

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield Static("Listening...", id="sidebar")
            yield RichLog(id="log", wrap=True, highlight=True, markup=True)
        yield DataTable(id="lily-table")
        yield Footer()

    def on_mount(self) -> None:
        """Initialize table and start the receive loop."""
        table = self.query_one("#lily-table", DataTable)
        for col in COLUMNS:
            table.add_column(col, key=col)
        table.cursor_type = "none"
        self.receive_loop()

    # ---- Receive Worker ----

    @work(exclusive=True, group="receive")
    async def receive_loop(self) -> None:
        """Open the transport, then drain status messages and repaint."""
        try:
            await self.transport.open()
        except TransportUnavailable as e:
            self.exit(return_code=1, message=f"{e}\nA broadcast endpoint is required.")
            return
        self.log_message("Listening for lily status...", style="bold green")
        await run_display_loop(
            self.aggregator, self.transport, self.render_records,
            on_record=self._on_record,
            receive_timeout=self.receive_timeout,
            redraw_interval=self.redraw_interval,
        )

    def _on_record(self, rec: DisplayRecord, message: dict) -> None:
        # Heartbeats only show up in debug mode
        if rec.last_event == "level" and not self.debug_mode:
            return
        ts = time.strftime("%H:%M:%S")
        style = "bold green" if rec.last_event == "confirm" else \
            "yellow" if rec.last_event == "retry" else ""
        self.log_message(f"[{ts}] {rec.label} >> {rec.last_event} L={rec.level}", style)

    # ---- Message Handlers ----

    def on_lily_display_app_log_msg(self, msg: LogMsg) -> None:
        """Handle generic log messages."""
        log = self.query_one("#log", RichLog)
        if msg.style:
            log.write(f"[{msg.style}]{msg.text}[/{msg.style}]")
        else:
            log.write(msg.text)

    # ---- UI Updates ----

    def render_records(self, records: list[DisplayRecord]) -> None:
        """Repaint the table from a sorted snapshot."""
        table = self.query_one("#lily-table", DataTable)
        now = time.time()
        labels = [rec.label for rec in records]
        if labels != self._labels:
            # New lily: rebuild so rows stay sorted by label
            table.clear()
            for rec in records:
                table.add_row(*self._cells(rec, now), key=rec.label)
            self._labels = labels
        else:
            for rec in records:
                for col, val in zip(COLUMNS, self._cells(rec, now)):
                    table.update_cell(rec.label, col, val)
        self.update_status(records, now)

    @staticmethod
    def _cells(rec: DisplayRecord, now: float) -> list:
        row = record_row(rec, now)
        style = level_style(rec.level)
        cells = [Text(val, style=style) for val in row[:5]]
        cells.append(Text(row[5], style="bold red" if row[5] == "STALE" else "green"))
        return cells

    def update_status(self, records: list[DisplayRecord], now: float) -> None:
        """Refresh the sidebar summary."""
        lines = ["[bold]Status[/bold]", ""]
        stale = sum(1 for rec in records if rec.is_stale(now))
        due = sum(1 for rec in records if rec.ready_at is not None and rec.ready_at <= now)
        lines.append(f"Lilies:   {len(records)}")
        lines.append(f"Stale:    {stale}")
        lines.append(f"Due now:  {due}")
        lines.append(f"\nMessages: {self.aggregator.received}")
        if self.aggregator.rejected:
            lines.append(f"[yellow]Rejected: {self.aggregator.rejected}[/yellow]")
        if self.debug_mode:
            lines.append("\n[yellow]DEBUG ON[/yellow]")
        try:
            self.query_one("#sidebar", Static).update("\n".join(lines))
        except NoMatches:
            pass  # Sidebar gone during shutdown

    # ---- Actions ----

    def action_toggle_debug(self) -> None:
        """Toggle debug mode (shows heartbeats in the log)."""
        self.debug_mode = not self.debug_mode
        self.notify(f"Debug: {'ON' if self.debug_mode else 'OFF'}")

    def action_clear_log(self) -> None:
        """Clear the log panel."""
        self.query_one("#log", RichLog).clear()

    def log_message(self, text: str, style: str = ""):
        """Convenience: post a LogMsg."""
        self.post_message(self.LogMsg(text, style))

    def on_unmount(self) -> None:
        """Close the transport when the app exits."""
        self.transport.close()
