"""fleettop - Fleet dashboard (Textual application) and command-line entry point."""

import argparse
import logging
import sys
from datetime import datetime
from enum import Enum

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from fleettop.config import Settings, get_settings
from fleettop.logging_config import setup_logging
from fleettop.models import SiteUp, Snapshot, Success, Target, TargetStatus
from fleettop.monitor import FleetMonitor
from fleettop.probe import HttpProbe
from fleettop.registry import RegistryError, load_targets
from fleettop.store import MetricsStore

logger = logging.getLogger(__name__)


class SortKey(Enum):
    """Sort keys for the target table."""

    NAME = "name"
    STATE = "state"
    CPU = "cpu"
    MEM = "mem"


# Failures first when sorting by state
STATE_RANK = {"unreachable": 0, "timeout": 1, "invalid": 2, "pending": 3, "ok": 4}

STATE_LABELS = {
    "ok": "[green]OK[/green]",
    "timeout": "[yellow]TIMEOUT[/yellow]",
    "unreachable": "[red]DOWN[/red]",
    "invalid": "[magenta]INVALID[/magenta]",
    "pending": "[dim]PENDING[/dim]",
}


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_age(observed_at: datetime, now: datetime) -> str:
    """Format the time since an observation, e.g. '12s ago'."""
    seconds = max(0, int((now - observed_at).total_seconds()))
    if seconds == 0:
        return "just now"
    if seconds < 3600:
        return f"{seconds}s ago"
    return f"{seconds // 3600}h{(seconds % 3600) // 60:02d}m ago"


def format_row(target: Target, status: TargetStatus | None, now: datetime) -> dict[str, str]:
    """Render the cells of one table row, keyed by column key."""
    if status is None:
        return {
            "name": escape(target.name),
            "address": escape(target.address),
            "state": STATE_LABELS["pending"],
            "disk": "-",
            "cpu": "-",
            "mem": "-",
            "age": "-",
            "detail": "",
        }

    outcome = status.outcome
    row = {
        "name": escape(target.name),
        "address": escape(target.address),
        "state": STATE_LABELS[outcome.state],
        "disk": "-",
        "cpu": "-",
        "mem": "-",
        "age": format_age(status.observed_at, now),
        "detail": escape(getattr(outcome, "reason", "")),
    }
    if isinstance(outcome, Success):
        row["disk"] = (
            f"{outcome.disk_percent:5.1f}% "
            f"{format_bytes(outcome.disk_used).strip()}/{format_bytes(outcome.disk_total).strip()}"
        )
        row["cpu"] = f"{outcome.cpu_percent:5.1f}%"
        row["mem"] = (
            f"{outcome.mem_percent:5.1f}% "
            f"{format_bytes(outcome.mem_used).strip()}/{format_bytes(outcome.mem_total).strip()}"
        )
    elif isinstance(outcome, SiteUp):
        row["detail"] = f"website, HTTP {outcome.status_code}"
    return row


def sort_targets(
    targets: tuple[Target, ...], snapshot: Snapshot, key: SortKey
) -> list[Target]:
    """Order targets for display according to the sort key."""

    def state_of(target: Target) -> str:
        status = snapshot.get(target.name)
        return status.outcome.state if status is not None else "pending"

    def metric(target: Target, attr: str) -> float:
        status = snapshot.get(target.name)
        if status is None or not isinstance(status.outcome, Success):
            return -1.0
        return getattr(status.outcome, attr)

    if key is SortKey.NAME:
        return sorted(targets, key=lambda t: t.name.lower())
    if key is SortKey.STATE:
        return sorted(targets, key=lambda t: (STATE_RANK[state_of(t)], t.name.lower()))
    if key is SortKey.CPU:
        return sorted(targets, key=lambda t: metric(t, "cpu_percent"), reverse=True)
    return sorted(targets, key=lambda t: metric(t, "mem_percent"), reverse=True)


class FleetSummary(Static):
    """Header widget showing fleet-wide counts."""

    DEFAULT_CSS = """
    FleetSummary {
        height: auto;
        min-height: 3;
        padding: 0 1;
        background: $surface;
    }
    """

    WAITING = "Waiting for first poll round..."

    def __init__(self, **kwargs) -> None:
        """Initialize FleetSummary."""
        super().__init__(self.WAITING, **kwargs)
        self._text = self.WAITING

    @property
    def text(self) -> str:
        return self._text

    def update_summary(self, snapshot: Snapshot, total: int, rounds: int) -> None:
        """Update the counts from a store snapshot."""
        pending = total - len(snapshot)
        self._text = (
            f"Targets: {total}   "
            f"[green]OK: {snapshot.count('ok')}[/green]   "
            f"[yellow]Timeout: {snapshot.count('timeout')}[/yellow]   "
            f"[red]Down: {snapshot.count('unreachable')}[/red]   "
            f"[magenta]Invalid: {snapshot.count('invalid')}[/magenta]   "
            f"[dim]Pending: {pending}[/dim]\n"
            f"Rounds completed: {rounds}   "
            f"Updated: {snapshot.taken_at.astimezone():%H:%M:%S}"
        )
        self.update(self._text)


class TargetTable(Container):
    """Container for the target data table."""

    DEFAULT_CSS = """
    TargetTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    COLUMNS = [
        ("NAME", "name", 16),
        ("ADDRESS", "address", 22),
        ("STATE", "state", 9),
        ("DISK", "disk", 22),
        ("CPU%", "cpu", 8),
        ("MEM", "mem", 22),
        ("SEEN", "age", 10),
        ("DETAIL", "detail", None),
    ]

    def __init__(self, *args, **kwargs) -> None:
        """Initialize TargetTable."""
        super().__init__(*args, **kwargs)
        self._row_order: list[str] = []
        self._sort_key: SortKey = SortKey.NAME

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def row_order(self) -> list[str]:
        return list(self._row_order)

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        self._sort_key = keys[(current_index + 1) % len(keys)]
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the target table."""
        yield DataTable(id="target-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#target-table", DataTable)
        table.cursor_type = "row"
        for label, key, width in self.COLUMNS:
            table.add_column(label, key=key, width=width)

    def update_targets(self, targets: tuple[Target, ...], snapshot: Snapshot) -> None:
        """
        Update the table from a snapshot.

        Cells of existing rows are updated in place; the table is only rebuilt
        when the row order changes.
        """
        table = self.query_one("#target-table", DataTable)
        ordered = sort_targets(targets, snapshot, self._sort_key)
        order = [t.name for t in ordered]
        rows = [format_row(t, snapshot.get(t.name), snapshot.taken_at) for t in ordered]

        if order == self._row_order:
            for name, row in zip(order, rows):
                for _, key, _ in self.COLUMNS:
                    table.update_cell(name, key, row[key])
            return

        table.clear()
        for name, row in zip(order, rows):
            table.add_row(*(row[key] for _, key, _ in self.COLUMNS), key=name)
        self._row_order = order


class FleetApp(App):
    """Main fleettop dashboard."""

    TITLE = "fleettop"
    SUB_TITLE = "Fleet Metrics Dashboard"

    CSS = """
    Screen {
        layout: vertical;
    }

    #fleet-summary {
        dock: top;
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(self, monitor: FleetMonitor, refresh_interval: float = 0.5) -> None:
        """
        Initialize the FleetApp.

        Args:
            monitor: Poller feeding the store this dashboard reads.
            refresh_interval: Seconds between reads of the store.
        """
        super().__init__()
        self._monitor = monitor
        self._refresh_interval = refresh_interval

    @property
    def monitor(self) -> FleetMonitor:
        return self._monitor

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield FleetSummary(id="fleet-summary")
        yield TargetTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the poller when the app is mounted."""
        self._monitor.start()
        self.call_after_refresh(self._refresh_view)
        self.set_interval(self._refresh_interval, self._refresh_view)

    def _refresh_view(self) -> None:
        """Read a snapshot of the store and redraw."""
        snapshot = self._monitor.store.snapshot()
        targets = self._monitor.targets
        self.query_one("#fleet-summary", FleetSummary).update_summary(
            snapshot, len(targets), self._monitor.rounds_completed
        )
        self.query_one(TargetTable).update_targets(targets, snapshot)

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        new_sort_key = self.query_one(TargetTable).cycle_sort()
        self._refresh_view()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_refresh(self) -> None:
        self._refresh_view()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_monitor(settings: Settings, targets: tuple[Target, ...]) -> FleetMonitor:
    """Wire a store and HTTP probe into a monitor using the given settings."""
    store = MetricsStore(targets)
    probe = HttpProbe(timeout=settings.PROBE_TIMEOUT, path=settings.METRICS_PATH)
    return FleetMonitor(
        targets,
        store,
        probe=probe,
        poll_interval=settings.POLL_INTERVAL,
        probe_timeout=settings.PROBE_TIMEOUT,
        concurrency_limit=settings.CONCURRENCY_LIMIT,
    )


def print_snapshot(snapshot: Snapshot, targets: tuple[Target, ...], console: Console) -> None:
    """Print a snapshot as a plain table."""
    table = Table(title="fleettop")
    for label, _, _ in TargetTable.COLUMNS:
        table.add_column(label)
    for target in targets:
        row = format_row(target, snapshot.get(target.name), snapshot.taken_at)
        table.add_row(*(row[key] for _, key, _ in TargetTable.COLUMNS))
    console.print(table)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="fleettop", description="Fleet metrics dashboard")
    parser.add_argument(
        "-t",
        "--targets",
        help="Path to the target registry JSON file (overrides FLEETTOP_TARGETS_FILE)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll every target once, print the results and exit",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for fleettop."""
    args = parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"fleettop: invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)

    log_file = settings.LOG_FILE or None
    if args.once:
        setup_logging("dashboard", level=settings.LOG_LEVEL, log_file=log_file, console=False)
    else:
        setup_logging(
            "dashboard",
            level=settings.LOG_LEVEL,
            log_file=log_file,
            console=False,
            handlers=[TextualHandler()],
        )

    try:
        targets = load_targets(args.targets or settings.TARGETS_FILE)
    except RegistryError as e:
        logger.error("Cannot start: %s", e)
        print(f"fleettop: {e}", file=sys.stderr)
        sys.exit(1)

    monitor = build_monitor(settings, targets)
    if args.once:
        monitor.run_once()
        print_snapshot(monitor.store.snapshot(), targets, Console())
        return

    app = FleetApp(monitor)
    app.run()


if __name__ == "__main__":
    main()
