"""Textual TUI dashboard - open predictions with pools and live lock countdowns."""

from __future__ import annotations

from typing import Any

from textual.app import App, ComposeResult
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static

from predbites.lifecycle import now_ms, remaining
from predbites.serialize import PredictionView
from predbites.service import PredictionService

# Seconds between storage reloads; countdowns tick every second from cached rows.
RELOAD_EVERY = 10


class SummaryPanel(Static):
    """Counts of what is on screen."""

    open_count = reactive(0)
    locked_count = reactive(0)
    total_pool = reactive("0")

    def render(self) -> str:
        return (
            f"[bold]Open[/] {self.open_count}  |  "
            f"Locked {self.locked_count}  |  "
            f"Pool: {self.total_pool} MEDALS"
        )


class PredictionTable(DataTable):
    """Predictions with status, pool, leading outcome and countdown."""

    COLUMNS = ("Prediction", "Status", "Pool", "Leading", "Locks in")

    def on_mount(self) -> None:
        self.add_columns(*self.COLUMNS)

    def refresh_rows(self, views: list[PredictionView], now: int) -> None:
        self.clear()
        for v in views:
            leading = max(v.outcomes, key=lambda o: o.pool, default=None)
            leading_s = f"{leading.label} ({leading.percentage:.0f}%)" if leading and leading.pool > 0 else "-"
            title = v.title[:40] + "..." if len(v.title) > 40 else v.title
            self.add_row(title, v.status.value, str(v.total_pool), leading_s, remaining(v.locks_at, now).label())


class PredictionsTUI(App[None]):
    """Prediction Bites TUI - what is open and how long until it locks."""

    TITLE = "Prediction Bites"
    BINDINGS = [("q", "quit", "Quit"), ("r", "reload", "Reload")]

    def __init__(self, service: PredictionService, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._service = service
        self._views: list[PredictionView] = []
        self._ticks = 0

    def compose(self) -> ComposeResult:
        yield Header()
        yield SummaryPanel(id="summary")
        yield PredictionTable(id="predictions")
        yield Footer()

    def on_mount(self) -> None:
        self.action_reload()
        # One shared tick drives every countdown on screen.
        self.set_interval(1.0, self._tick)

    def action_reload(self) -> None:
        open_views, _ = self._service.list_predictions(status="OPEN", limit=50)
        locked_views, _ = self._service.list_predictions(status="LOCKED", limit=50)
        self._views = open_views + locked_views
        summary = self.query_one(SummaryPanel)
        summary.open_count = len(open_views)
        summary.locked_count = len(locked_views)
        summary.total_pool = str(sum((v.total_pool for v in self._views), 0))
        self._render_rows()

    def _tick(self) -> None:
        self._ticks += 1
        if self._ticks % RELOAD_EVERY == 0:
            self.action_reload()
        else:
            self._render_rows()

    def _render_rows(self) -> None:
        self.query_one(PredictionTable).refresh_rows(self._views, now_ms())

    def on_unmount(self) -> None:
        self._service.close()


def run_tui(settings: Any) -> None:
    """Entry point: open the service and run the TUI."""
    service = PredictionService.from_settings(settings)
    app = PredictionsTUI(service)
    app.run()
