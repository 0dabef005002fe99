"""system-info - Textual system information viewer."""

import logging
import sys

from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.widgets import Footer, Header, Static, TabbedContent, TabPane

from sysgopher.config import INFO_APP_ID, Settings, prepare_environment, settings
from sysgopher.context import AppContext
from sysgopher.errors import InitFailure
from sysgopher.log import setup_logging
from sysgopher.pipeline import DISK_ROWS, INFO_LABEL_KEYS, TOP_PROCESS_ROWS, SystemInfoPipeline
from sysgopher.viewmodel import RowList
from sysgopher.widgets import InfoCard, RefreshApp, RowTable, StatusBar

logger = logging.getLogger(__name__)

OS_FIELDS = (
    ("os_name", "OS"),
    ("distribution", "Distribution"),
    ("kernel_version", "Kernel"),
    ("architecture", "Architecture"),
    ("hostname", "Hostname"),
    ("uptime", "Uptime"),
    ("user", "User"),
    ("shell", "Shell"),
)
CPU_FIELDS = (
    ("cpu_model", "Model"),
    ("cpu_cores", "Cores"),
    ("cpu_threads", "Threads"),
    ("cpu_frequency", "Frequency"),
    ("cpu_usage", "Usage"),
)
MEMORY_FIELDS = (
    ("memory_total", "Total"),
    ("memory_used", "Used"),
    ("memory_free", "Free"),
    ("memory_usage", "Usage"),
    ("swap_total", "Swap total"),
    ("swap_used", "Swap used"),
)
GPU_FIELDS = (
    ("gpu_model", "Model"),
    ("gpu_vendor", "Vendor"),
    ("gpu_renderer", "Renderer"),
    ("gpu_driver", "Driver"),
    ("gpu_gl_version", "OpenGL"),
    ("gpu_memory", "Memory"),
    ("gpu_utilization", "Utilization"),
)
DISK_COLUMNS = (
    ("device", "Device"),
    ("size", "Size"),
    ("used", "Used"),
    ("available", "Available"),
    ("percent", "Use%"),
    ("mount", "Mount point"),
)
TOP_PROCESS_COLUMNS = (
    ("pid", "PID"),
    ("name", "Name"),
    ("memory", "Memory"),
    ("cpu", "CPU%"),
)


class SystemInfoApp(RefreshApp):
    """System information viewer."""

    TITLE = "System Information"
    SUB_TITLE = INFO_APP_ID
    LABEL_KEYS = INFO_LABEL_KEYS

    CSS = """
    RowTable {
        height: auto;
        max-height: 20;
        border: round $primary;
    }
    .section-title {
        text-style: bold;
        margin: 1 0 0 0;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Header()
        with TabbedContent(id="sections"):
            with TabPane("System", id="system"):
                with VerticalScroll():
                    yield InfoCard("Operating System", OS_FIELDS, id="os-card")
                    yield Static("Top processes", classes="section-title")
                    yield RowTable(TOP_PROCESS_COLUMNS, id="top-process-table")
            with TabPane("Hardware", id="hardware"):
                with VerticalScroll():
                    yield InfoCard("CPU", CPU_FIELDS, id="cpu-card")
                    yield InfoCard("Memory", MEMORY_FIELDS, id="memory-card")
                    yield InfoCard("GPU", GPU_FIELDS, id="gpu-card")
                    yield Static("Disks", classes="section-title")
                    yield RowTable(DISK_COLUMNS, class_column="percent", id="disk-table")
        yield StatusBar()
        yield Footer()

    def refresh_interval(self) -> float:
        return self._app_context.settings.info_refresh_interval

    def build_pipeline(self, status_bar: StatusBar) -> SystemInfoPipeline:
        context = self._app_context
        return SystemInfoPipeline(
            context.provider,
            context.pool,
            context.marshaller,
            self._labels,
            {
                DISK_ROWS: RowList(self.query_one("#disk-table", RowTable)),
                TOP_PROCESS_ROWS: RowList(self.query_one("#top-process-table", RowTable)),
            },
            on_status=status_bar.set_status,
            on_last_updated=status_bar.set_last_updated,
        )


def run(app_settings: Settings = settings) -> int:
    """Run the viewer and return the process exit code."""
    prepare_environment()
    setup_logging(app_settings.log_level, app_settings.log_file)

    try:
        context = AppContext.create(app_settings)
    except InitFailure as e:
        logger.error("Failed to initialize: %s", e)
        return 1

    SystemInfoApp(context).run()
    return 0


def main() -> None:
    """Entry point for the system-info application."""
    sys.exit(run())


if __name__ == "__main__":
    main()
