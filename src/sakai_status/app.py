"""sakai-status console - Textual browser for the status reports."""

from queue import Empty, Queue

import structlog
from textual.app import App, ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import DataTable, Footer, Static

from sakai_status.dispatcher import EndpointDispatcher
from sakai_status.poller import RenderedReport, ReportPoller

logger = structlog.get_logger(__name__)


class EndpointTable(DataTable):
    """One row per exact-match report path."""

    DEFAULT_CSS = """
    EndpointTable {
        width: 40;
        border: solid $primary;
    }
    """

    def __init__(self, catalog: tuple[str, ...], **kwargs) -> None:
        super().__init__(**kwargs)
        self._catalog = catalog

    def on_mount(self) -> None:
        self.cursor_type = "row"
        self.add_column("Endpoint", key="path")
        for path in self._catalog:
            self.add_row(path, key=path)


class ReportView(VerticalScroll):
    """Scrollable text of the current report."""

    DEFAULT_CSS = """
    ReportView {
        width: 1fr;
        border: solid $secondary;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._path: str | None = None
        self._body = ""

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def body(self) -> str:
        return self._body

    def compose(self) -> ComposeResult:
        yield Static("Select an endpoint", id="report-body", markup=False)

    def show(self, report: RenderedReport) -> None:
        self._path = report.path
        self._body = report.body
        self.border_title = report.path
        self.query_one("#report-body", Static).update(report.body or "(empty)")


class StatusConsole(App):
    """Terminal browser over the status report catalog."""

    TITLE = "sakai-status"
    SUB_TITLE = "Runtime status reports"

    CSS = """
    Screen {
        layout: vertical;
    }

    Horizontal {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(self, dispatcher: EndpointDispatcher, poll_rate: float = 2.0) -> None:
        super().__init__()
        self._dispatcher = dispatcher
        self._update_queue: Queue[RenderedReport] = Queue()
        self._poller = ReportPoller(dispatcher, self._update_queue, poll_rate=poll_rate)

    def compose(self) -> ComposeResult:
        yield Horizontal(
            EndpointTable(self._dispatcher.catalog, id="endpoints"),
            ReportView(id="report"),
        )
        yield Footer()

    def on_mount(self) -> None:
        self._poller.start()
        self.set_interval(0.5, self._check_for_updates)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key.value is not None:
            self._poller.select(event.row_key.value)

    def _check_for_updates(self) -> None:
        """Show the most recent rendering of the selected report."""
        report = None
        while True:
            try:
                report = self._update_queue.get_nowait()
            except Empty:
                break
        if report is not None and report.path == self._poller.path:
            self.query_one(ReportView).show(report)

    def action_refresh(self) -> None:
        self._poller.refresh()

    def action_quit(self) -> None:
        self._poller.stop()
        self.exit()
