"""Tests for the refresh pipelines."""

import threading
from datetime import datetime

import pytest

from fakes import FakeContainer, FakeLabel, FakeProvider, FakeTimer, drain_for, drain_until
from sysgopher.errors import EnumerationFailure, ProbeFailure
from sysgopher.formatting import ELLIPSIS
from sysgopher.models import CPUInfo, DiskRow, GPUInfo, ProcessRow
from sysgopher.pipeline import (
    DISK_ROWS,
    INFO_LABEL_KEYS,
    MONITOR_LABEL_KEYS,
    PROCESS_ROWS,
    TOP_PROCESS_ROWS,
    ProcessPipeline,
    SortKey,
    SystemInfoPipeline,
    cpu_labels,
    disk_row,
    gpu_labels,
    matches_filter,
    process_row,
)
from sysgopher.scheduler import RefreshScheduler
from sysgopher.uithread import Marshaller
from sysgopher.viewmodel import LabelMap, RowList
from sysgopher.worker import WorkerPool

FIXED_TIME = datetime(2024, 5, 1, 15, 4, 5)

PROCESSES = [
    ProcessRow(pid=1, name="systemd", username="root", cpu_percent=0.1, memory_bytes=10 * 1024**2),
    ProcessRow(pid=1234, name="firefox", username="alice", cpu_percent=25.0, memory_bytes=900 * 1024**2),
    ProcessRow(pid=2048, name="Xorg", username="root", cpu_percent=3.0, memory_bytes=200 * 1024**2),
    ProcessRow(pid=123, name="bash", username="alice", cpu_percent=0.0, memory_bytes=5 * 1024**2),
]


class GatedProvider(FakeProvider):
    """Process enumeration that ignores cancellation and waits for the test."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.gate = threading.Event()

    def process_rows(self, token=None):
        self.gate.wait(5.0)
        return super().process_rows()


class Window:
    """Label map, row lists and status sinks standing in for a real window."""

    def __init__(self, keys, row_names) -> None:
        self.marshaller = Marshaller()
        self.marshaller.bind()
        self.pool = WorkerPool(self.marshaller, workers=2)
        self.pool.start()
        self.labels = LabelMap(keys, self.marshaller)
        self.handles = {}
        for key in keys:
            self.handles[key] = FakeLabel()
            self.labels.add(key, self.handles[key])
        self.containers = {name: FakeContainer() for name in row_names}
        self.row_lists = {name: RowList(c) for name, c in self.containers.items()}
        self.statuses: list[str] = []
        self.last_updated: list[str] = []
        self.counts: list[str] = []

    def kwargs(self):
        return dict(
            labels=self.labels,
            row_lists=self.row_lists,
            on_status=self.statuses.append,
            on_last_updated=self.last_updated.append,
            clock=lambda: FIXED_TIME,
        )

    def scheduler(self, pipeline) -> RefreshScheduler:
        return RefreshScheduler(self.marshaller, pipeline.run_cycle, 30.0, timer_factory=FakeTimer)

    def ready(self) -> bool:
        return any(s.startswith("Ready") for s in self.statuses)

    def close(self) -> None:
        self.pool.shutdown(timeout=2.0)


@pytest.fixture
def info_window():
    window = Window(INFO_LABEL_KEYS, (DISK_ROWS, TOP_PROCESS_ROWS))
    yield window
    window.close()


@pytest.fixture
def monitor_window():
    window = Window(MONITOR_LABEL_KEYS, (PROCESS_ROWS,))
    yield window
    window.close()


def info_pipeline(window, provider):
    return SystemInfoPipeline(provider, window.pool, window.marshaller, **window.kwargs())


def monitor_pipeline(window, provider):
    return ProcessPipeline(
        provider, window.pool, window.marshaller, on_count=window.counts.append, **window.kwargs()
    )


class TestLabelBuilders:
    """Tests for the pure label and row builders."""

    def test_cpu_model_is_shortened_with_tooltip(self):
        labels = dict(cpu_labels(CPUInfo(model="Intel(R) Core(TM) i7-9750H CPU @ 2.60GHz", usage=95.0)))

        assert labels["cpu_model"].text == "Intel(R) Core(TM) i7-9750H" + ELLIPSIS
        assert labels["cpu_model"].tooltip == "Intel(R) Core(TM) i7-9750H CPU @ 2.60GHz"
        assert labels["cpu_usage"].text == "95.0%"
        assert labels["cpu_usage"].css_class == "critical"

    def test_missing_gpu_fields_show_unknown_with_reason(self):
        info = GPUInfo(model="", notes={"model": "GPU detection not available (lspci not found)"})
        labels = dict(gpu_labels(info))

        assert labels["gpu_model"].text == "Unknown"
        assert labels["gpu_model"].tooltip == "GPU detection not available (lspci not found)"
        assert labels["gpu_vendor"].text == "Unknown"
        assert labels["gpu_vendor"].tooltip is None

    def test_long_gpu_model_is_truncated(self):
        model = "NVIDIA GeForce RTX 4090 Laptop GPU with Max-Q Design"
        label = dict(gpu_labels(GPUInfo(model=model)))["gpu_model"]

        assert len(label.text) == 33
        assert label.text.endswith(ELLIPSIS)
        assert label.tooltip == model

    @pytest.mark.parametrize(
        ("percent", "css_class"),
        [(92, "critical"), (80, "warning"), (10, "normal"), (None, None)],
    )
    def test_disk_row_classes(self, percent, css_class):
        row = disk_row(DiskRow("/dev/sda1", "100G", "1G", "99G", percent, "/"))
        assert row.css_class == css_class
        assert row.cells[4] == (f"{percent}%" if percent is not None else "?")

    def test_disk_row_truncation_tooltips(self):
        row = disk_row(DiskRow("/dev/disk/by-uuid/1234", "1G", "1G", "0", 100, "/media/alice/External Drive"))

        assert row.cells[0] == "/dev/disk/by-" + ELLIPSIS
        assert row.cells[5] == "/media/alice/Exte" + ELLIPSIS
        assert row.tooltip == "/dev/disk/by-uuid/1234\n/media/alice/External Drive"

    def test_process_row_cells(self):
        row = process_row(ProcessRow(pid=7, name="worker", username="www-data", cpu_percent=1.25, threads=4, state="S"))
        assert row.identity == 7
        assert row.cells[:6] == ("7", "worker", "www-data", "1.2%", "0 B", "4")

    def test_matches_filter(self):
        firefox = PROCESSES[1]
        assert matches_filter(firefox, "FIRE")
        assert matches_filter(firefox, "12")
        assert matches_filter(firefox, "")
        assert not matches_filter(firefox, "chrome")


class TestSystemInfoPipeline:
    """Tests for SystemInfoPipeline cycles."""

    def test_cycle_updates_window(self, info_window):
        provider = FakeProvider(processes=PROCESSES)
        pipeline = info_pipeline(info_window, provider)
        scheduler = info_window.scheduler(pipeline)

        assert scheduler.trigger()
        assert drain_until(info_window.marshaller, info_window.ready)

        assert info_window.statuses[0] == "Refreshing data..."
        assert info_window.statuses[-1] == "Ready - Last updated: 15:04:05"
        assert info_window.last_updated[-1] == "Last updated: 15:04:05"
        assert info_window.handles["hostname"].text == "gopher"
        assert info_window.handles["cpu_usage"].text == "12.5%"
        assert info_window.handles["memory_usage"].text == "75.0%"
        assert info_window.handles["memory_usage"].css_class == "warning"
        assert info_window.handles["gpu_driver"].tooltip == "driver not reported"
        assert not scheduler.in_flight

    def test_disk_and_top_process_rows(self, info_window):
        provider = FakeProvider(processes=PROCESSES)
        info_window.scheduler(info_pipeline(info_window, provider)).trigger()
        assert drain_until(info_window.marshaller, info_window.ready)

        disks = info_window.containers[DISK_ROWS].rows
        assert disks[0].css_class == "critical"
        top = info_window.containers[TOP_PROCESS_ROWS].rows
        assert [row.identity for row in top] == [1234, 2048, 1, 123]

    def test_failed_section_keeps_defaults(self, info_window):
        provider = FakeProvider(processes=PROCESSES)
        provider.fail_cpu = ProbeFailure("sysctl missing")
        info_window.scheduler(info_pipeline(info_window, provider)).trigger()

        assert drain_until(info_window.marshaller, info_window.ready)
        assert info_window.handles["cpu_model"].text == "Unknown"

    def test_enumeration_failure_keeps_previous_view(self, info_window):
        provider = FakeProvider(processes=PROCESSES)
        pipeline = info_pipeline(info_window, provider)
        scheduler = info_window.scheduler(pipeline)
        scheduler.trigger()
        assert drain_until(info_window.marshaller, info_window.ready)
        before = info_window.containers[TOP_PROCESS_ROWS].rows

        provider.fail_processes = EnumerationFailure("failed to get process list: boom")
        info_window.statuses.clear()
        assert scheduler.trigger()
        assert drain_until(info_window.marshaller, lambda: any("Error" in s for s in info_window.statuses))

        assert info_window.statuses[-1] == "Error refreshing data: failed to get process list: boom"
        assert info_window.containers[TOP_PROCESS_ROWS].rows == before
        assert not scheduler.in_flight

    def test_overlapping_refreshes_sample_once(self, info_window):
        provider = FakeProvider(processes=PROCESSES, delay=0.5)
        scheduler = info_window.scheduler(info_pipeline(info_window, provider))

        assert scheduler.trigger()
        results = []
        for _ in range(5):
            drain_for(info_window.marshaller, 0.05)
            results.append(scheduler.trigger())

        assert results == [False] * 5
        assert not info_window.ready()
        assert drain_until(info_window.marshaller, info_window.ready)
        drain_for(info_window.marshaller, 0.2)
        assert provider.samples == 1
        assert sum(s.startswith("Ready") for s in info_window.statuses) == 1

    def test_cancelled_cycle_applies_nothing(self, info_window):
        provider = FakeProvider(processes=PROCESSES, delay=0.5)
        pipeline = info_pipeline(info_window, provider)
        scheduler = info_window.scheduler(pipeline)
        scheduler.trigger()

        scheduler.close()
        drain_for(info_window.marshaller, 0.8)

        assert pipeline.last_snapshot is None
        assert info_window.last_updated == []
        assert not any(s.startswith("Ready - Last updated") for s in info_window.statuses)
        assert info_window.handles["hostname"].text == ""

    def test_toggle_off_restores_status(self, info_window):
        provider = FakeProvider(processes=PROCESSES)
        pipeline = info_pipeline(info_window, provider)
        scheduler = info_window.scheduler(pipeline)
        scheduler.trigger()
        assert drain_until(info_window.marshaller, info_window.ready)

        provider.delay = 0.5
        provider.cache.invalidate()
        info_window.statuses.clear()
        scheduler.trigger()
        drain_for(info_window.marshaller, 0.1)
        assert scheduler.toggle() is False

        assert drain_until(info_window.marshaller, lambda: not scheduler.in_flight)
        drain_for(info_window.marshaller, 0.1)
        assert info_window.statuses[0] == "Refreshing data..."
        assert info_window.statuses[-1] == "Ready - Last updated: 15:04:05"

    def test_toggle_off_holds_flag_until_cycle_stops(self, info_window):
        provider = GatedProvider(processes=PROCESSES)
        scheduler = info_window.scheduler(info_pipeline(info_window, provider))
        scheduler.trigger()
        drain_for(info_window.marshaller, 0.1)

        scheduler.toggle()

        assert scheduler.in_flight
        assert not scheduler.trigger()

        provider.gate.set()
        assert drain_until(info_window.marshaller, lambda: not scheduler.in_flight)
        assert info_window.statuses[-1] == "Ready"
        assert provider.samples == 1
        assert info_window.handles["hostname"].text == ""
        assert scheduler.trigger()


class TestProcessPipeline:
    """Tests for ProcessPipeline filtering and sorting."""

    def run_once(self, window, provider):
        pipeline = monitor_pipeline(window, provider)
        window.scheduler(pipeline).trigger()
        assert drain_until(window.marshaller, window.ready)
        return pipeline

    def identities(self, window):
        return [row.identity for row in window.containers[PROCESS_ROWS].rows]

    def test_cycle_shows_all_processes(self, monitor_window):
        self.run_once(monitor_window, FakeProvider(processes=PROCESSES))

        assert self.identities(monitor_window) == [1, 1234, 2048, 123]
        assert monitor_window.counts[-1] == "4 processes"
        assert monitor_window.handles["cpu_model"].text == "Fake CPU"

    def test_filter_by_name_and_pid(self, monitor_window):
        pipeline = self.run_once(monitor_window, FakeProvider(processes=PROCESSES))

        assert pipeline.set_filter("fire") == 1
        assert monitor_window.statuses[-1] == "Found 1 processes matching 'fire'"
        assert self.identities(monitor_window) == [1234]

        assert pipeline.set_filter("12") == 2
        assert self.identities(monitor_window) == [1234, 123]

        pipeline.set_filter("")
        assert self.identities(monitor_window) == [1, 1234, 2048, 123]
        assert monitor_window.counts[-1] == "4 processes"

    def test_filter_survives_refresh(self, monitor_window):
        provider = FakeProvider(processes=PROCESSES)
        pipeline = monitor_pipeline(monitor_window, provider)
        scheduler = monitor_window.scheduler(pipeline)
        scheduler.trigger()
        assert drain_until(monitor_window.marshaller, monitor_window.ready)
        pipeline.set_filter("bash")

        monitor_window.statuses.clear()
        provider.processes.append(ProcessRow(pid=4000, name="bash", username="bob"))
        provider.cache.invalidate()
        scheduler.trigger()
        assert drain_until(monitor_window.marshaller, monitor_window.ready)

        assert self.identities(monitor_window) == [123, 4000]
        assert monitor_window.counts[-1] == "2 processes"

    def test_sort_by_memory_descending_then_reversed(self, monitor_window):
        pipeline = self.run_once(monitor_window, FakeProvider(processes=PROCESSES))

        pipeline.sort_by(SortKey.MEM)
        assert self.identities(monitor_window) == [1234, 2048, 1, 123]

        pipeline.sort_by(SortKey.MEM)
        assert pipeline.sort_reverse is False
        assert self.identities(monitor_window) == [123, 1, 2048, 1234]

    def test_sort_by_name_ascending(self, monitor_window):
        pipeline = self.run_once(monitor_window, FakeProvider(processes=PROCESSES))
        pipeline.sort_by(SortKey.NAME)
        assert self.identities(monitor_window) == [123, 1234, 1, 2048]

    def test_cycle_sort(self, monitor_window):
        pipeline = self.run_once(monitor_window, FakeProvider(processes=PROCESSES))

        assert pipeline.cycle_sort() is SortKey.PID
        assert self.identities(monitor_window) == [1, 123, 1234, 2048]
        assert pipeline.cycle_sort() is SortKey.NAME

    def test_selection_is_kept_across_refresh(self, monitor_window):
        provider = FakeProvider(processes=PROCESSES)
        pipeline = monitor_pipeline(monitor_window, provider)
        scheduler = monitor_window.scheduler(pipeline)
        scheduler.trigger()
        assert drain_until(monitor_window.marshaller, monitor_window.ready)

        monitor_window.row_lists[PROCESS_ROWS].select_identity(2048)
        assert pipeline.selected_pid() == 2048

        monitor_window.statuses.clear()
        provider.cache.invalidate()
        scheduler.trigger()
        assert drain_until(monitor_window.marshaller, monitor_window.ready)
        assert pipeline.selected_pid() == 2048

    def test_selected_pid_without_rows(self, monitor_window):
        pipeline = monitor_pipeline(monitor_window, FakeProvider())
        assert pipeline.selected_pid() == 0
