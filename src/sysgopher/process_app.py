"""process-gopher - Textual process monitor."""

import logging
import sys

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, VerticalScroll
from textual.widgets import Button, DataTable, Footer, Header, Input, Static, TabbedContent, TabPane

from sysgopher.config import MONITOR_APP_ID, Settings, prepare_environment, settings
from sysgopher.context import AppContext
from sysgopher.errors import InitFailure
from sysgopher.info_app import CPU_FIELDS, MEMORY_FIELDS
from sysgopher.log import setup_logging
from sysgopher.pipeline import MONITOR_LABEL_KEYS, PROCESS_ROWS, ProcessPipeline, SortKey
from sysgopher.viewmodel import RowList
from sysgopher.widgets import InfoCard, RefreshApp, RowTable, StatusBar

logger = logging.getLogger(__name__)

PROCESS_COLUMNS = (
    ("pid", "PID"),
    ("name", "Name"),
    ("user", "User"),
    ("cpu", "CPU%"),
    ("mem", "Memory"),
    ("threads", "Threads"),
    ("state", "State"),
    ("started", "Started"),
)

_SORTABLE = {key.value: key for key in SortKey}


class ProcessGopherApp(RefreshApp):
    """Process monitor with search, column sorting and End Process."""

    TITLE = "Process Gopher"
    SUB_TITLE = MONITOR_APP_ID
    LABEL_KEYS = MONITOR_LABEL_KEYS

    CSS = """
    #toolbar {
        height: 3;
    }
    #search {
        width: 1fr;
    }
    #process-table {
        height: 1fr;
    }
    #process-count {
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = RefreshApp.BINDINGS + [
        Binding("k", "end_process", "End Process"),
        Binding("f6", "sort", "Sort"),
        Binding("slash", "search", "Search"),
    ]

    def __init__(self, context: AppContext) -> None:
        super().__init__(context)
        self._pipeline: ProcessPipeline | None = None

    @property
    def pipeline(self) -> ProcessPipeline:
        if self._pipeline is None:
            raise RuntimeError("Application is not mounted")
        return self._pipeline

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Header()
        with TabbedContent(id="tabs"):
            with TabPane("Processes", id="processes"):
                yield Horizontal(
                    Input(placeholder="Search by name or PID", id="search"),
                    Button("Refresh", id="refresh"),
                    Button("End Process", id="end-process", variant="error"),
                    id="toolbar",
                )
                yield RowTable(PROCESS_COLUMNS, id="process-table")
                yield Static("0 processes", id="process-count", markup=False)
            with TabPane("Performance", id="performance"):
                with VerticalScroll():
                    yield InfoCard("CPU", CPU_FIELDS, id="cpu-card")
                    yield InfoCard("Memory", MEMORY_FIELDS, id="memory-card")
        yield StatusBar()
        yield Footer()

    def refresh_interval(self) -> float:
        return self._app_context.settings.monitor_refresh_interval

    def build_pipeline(self, status_bar: StatusBar) -> ProcessPipeline:
        context = self._app_context
        count = self.query_one("#process-count", Static)
        self._pipeline = ProcessPipeline(
            context.provider,
            context.pool,
            context.marshaller,
            self._labels,
            {PROCESS_ROWS: RowList(self.query_one("#process-table", RowTable))},
            on_status=status_bar.set_status,
            on_last_updated=status_bar.set_last_updated,
            on_count=count.update,
        )
        return self._pipeline

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "end-process":
            self.action_end_process()
        else:
            super().on_button_pressed(event)

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search":
            self.pipeline.set_filter(event.value)

    def on_data_table_header_selected(self, event: DataTable.HeaderSelected) -> None:
        key = _SORTABLE.get(event.column_key.value)
        if key is not None:
            self.pipeline.sort_by(key)

    def action_end_process(self) -> None:
        self.actions.end_process(self.pipeline.selected_pid())

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        key = self.pipeline.cycle_sort()
        self.notify(f"Sort: {key.value.upper()}")

    def action_search(self) -> None:
        self.query_one("#search", Input).focus()


def run(app_settings: Settings = settings) -> int:
    """Run the monitor and return the process exit code."""
    prepare_environment()
    setup_logging(app_settings.log_level, app_settings.log_file)

    try:
        context = AppContext.create(app_settings)
    except InitFailure as e:
        logger.error("Failed to initialize: %s", e)
        return 1

    ProcessGopherApp(context).run()
    return 0


def main() -> None:
    """Entry point for the process-gopher application."""
    sys.exit(run())


if __name__ == "__main__":
    main()
