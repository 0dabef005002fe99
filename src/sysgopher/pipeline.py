"""
Refresh pipeline: sample on a worker, build a view update, apply on the UI thread.

Each cycle produces one Snapshot and one ViewUpdate. Everything the UI sees
for that cycle is applied by a single closure on the marshaller.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping, Sequence, TypeVar

from sysgopher.config import STATUS_READY, STATUS_REFRESHING
from sysgopher.errors import EnumerationFailure, SysGopherError, TaskCancelled
from sysgopher.formatting import (
    DEVICE_LIMIT,
    GPU_FIELD_LIMIT,
    GPU_MODEL_LIMIT,
    MOUNT_LIMIT,
    PROCESS_NAME_LIMIT,
    USERNAME_LIMIT,
    format_bytes,
    format_clock,
    format_percent,
    shorten_cpu_model,
    tooltip_for,
    truncate,
    usage_class,
)
from sysgopher.models import (
    UNKNOWN,
    CPUInfo,
    DiskRow,
    GPUInfo,
    MemoryInfo,
    OSInfo,
    ProcessRow,
    Snapshot,
    top_by_memory,
)
from sysgopher.provider import Provider
from sysgopher.uithread import Marshaller
from sysgopher.viewmodel import LabelMap, LabelValue, Row, RowList
from sysgopher.worker import CancellationToken, ProgressFn, WorkerPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

TextSink = Callable[[str], None]

TOP_PROCESS_COUNT = 10

OS_LABEL_KEYS = (
    "os_name",
    "kernel_version",
    "distribution",
    "architecture",
    "hostname",
    "uptime",
    "user",
    "shell",
)
CPU_LABEL_KEYS = ("cpu_model", "cpu_cores", "cpu_threads", "cpu_frequency", "cpu_usage")
MEMORY_LABEL_KEYS = (
    "memory_total",
    "memory_used",
    "memory_free",
    "memory_usage",
    "swap_total",
    "swap_used",
)
GPU_LABEL_KEYS = (
    "gpu_model",
    "gpu_vendor",
    "gpu_renderer",
    "gpu_driver",
    "gpu_gl_version",
    "gpu_memory",
    "gpu_utilization",
)

INFO_LABEL_KEYS = OS_LABEL_KEYS + CPU_LABEL_KEYS + MEMORY_LABEL_KEYS + GPU_LABEL_KEYS
MONITOR_LABEL_KEYS = CPU_LABEL_KEYS + MEMORY_LABEL_KEYS

DISK_ROWS = "disks"
TOP_PROCESS_ROWS = "top_processes"
PROCESS_ROWS = "processes"


@dataclass(frozen=True)
class ViewUpdate:
    """Pure data describing what one cycle changes in the window."""

    labels: tuple[tuple[str, LabelValue], ...] = ()
    rows: Mapping[str, tuple[Row, ...]] = field(default_factory=dict)


def _plain(text: str) -> LabelValue:
    return LabelValue(text, tooltip_for(text))


def os_labels(info: OSInfo) -> list[tuple[str, LabelValue]]:
    return [(key, _plain(getattr(info, key))) for key in OS_LABEL_KEYS]


def cpu_labels(info: CPUInfo) -> list[tuple[str, LabelValue]]:
    short = shorten_cpu_model(info.model)
    return [
        ("cpu_model", LabelValue(short, info.model if short != info.model else None)),
        ("cpu_cores", LabelValue(str(info.cores))),
        ("cpu_threads", LabelValue(str(info.threads))),
        ("cpu_frequency", _plain(info.frequency)),
        ("cpu_usage", LabelValue(format_percent(info.usage), css_class=usage_class(int(info.usage)))),
    ]


def memory_labels(info: MemoryInfo) -> list[tuple[str, LabelValue]]:
    percent = info.usage_percent
    return [
        ("memory_total", LabelValue(format_bytes(info.total))),
        ("memory_used", LabelValue(format_bytes(info.used))),
        ("memory_free", LabelValue(format_bytes(info.free))),
        ("memory_usage", LabelValue(format_percent(percent), css_class=usage_class(int(percent)))),
        ("swap_total", LabelValue(format_bytes(info.swap_total))),
        ("swap_used", LabelValue(format_bytes(info.swap_used))),
    ]


def gpu_labels(info: GPUInfo) -> list[tuple[str, LabelValue]]:
    """Missing GPU fields read "Unknown", with the reason as tooltip when known."""
    labels = []
    for key in GPU_LABEL_KEYS:
        field_name = key.removeprefix("gpu_")
        value = getattr(info, field_name)
        if not value:
            labels.append((key, LabelValue(UNKNOWN, info.notes.get(field_name))))
            continue
        limit = GPU_MODEL_LIMIT if field_name == "model" else GPU_FIELD_LIMIT
        text, tooltip = truncate(value, limit)
        labels.append((key, LabelValue(text, tooltip)))
    return labels


def _joined_tooltip(*tooltips: str | None) -> str | None:
    parts = [tip for tip in tooltips if tip]
    return "\n".join(parts) if parts else None


def disk_row(disk: DiskRow) -> Row:
    device, device_tip = truncate(disk.device, DEVICE_LIMIT)
    mount, mount_tip = truncate(disk.mount_point, MOUNT_LIMIT)
    percent = f"{disk.percent}%" if disk.percent is not None else "?"
    return Row(
        identity=disk.identity,
        cells=(device, disk.size, disk.used, disk.available, percent, mount),
        css_class=usage_class(disk.percent),
        tooltip=_joined_tooltip(device_tip, mount_tip),
        item=disk,
    )


def top_process_row(process: ProcessRow) -> Row:
    name, name_tip = truncate(process.name, PROCESS_NAME_LIMIT)
    return Row(
        identity=process.identity,
        cells=(str(process.pid), name, format_bytes(process.memory_bytes), format_percent(process.cpu_percent)),
        tooltip=name_tip,
        item=process,
    )


def process_row(process: ProcessRow) -> Row:
    name, name_tip = truncate(process.name, PROCESS_NAME_LIMIT)
    user, user_tip = truncate(process.username, USERNAME_LIMIT)
    return Row(
        identity=process.identity,
        cells=(
            str(process.pid),
            name,
            user,
            format_percent(process.cpu_percent),
            format_bytes(process.memory_bytes),
            str(process.threads),
            process.state,
            process.start_time,
        ),
        tooltip=_joined_tooltip(name_tip, user_tip),
        item=process,
    )


def matches_filter(process: ProcessRow, text: str) -> bool:
    """Case-insensitive name substring, or pid prefix."""
    needle = text.strip().lower()
    if not needle:
        return True
    return needle in process.name.lower() or str(process.pid).startswith(needle)


class RefreshPipeline(ABC):
    """
    One refresh cycle for a window.

    Subclasses choose which provider sections to sample and how to render
    them; the base class owns the cycle itself and status reporting.
    """

    name = "refresh"

    def __init__(
        self,
        provider: Provider,
        pool: WorkerPool,
        marshaller: Marshaller,
        labels: LabelMap,
        row_lists: Mapping[str, RowList] | None = None,
        on_status: TextSink | None = None,
        on_last_updated: TextSink | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize the RefreshPipeline.

        Args:
            provider: Platform provider sampled by each cycle.
            pool: Worker pool that runs the sampling task.
            marshaller: UI thread queue for status and result closures.
            labels: Label map of the window.
            row_lists: Row lists of the window by name.
            on_status: Receives status bar text.
            on_last_updated: Receives the "Last updated" text.
            clock: Wall clock for ``Snapshot.taken_at``.
        """
        self._provider = provider
        self._pool = pool
        self._marshaller = marshaller
        self._labels = labels
        self._row_lists = dict(row_lists or {})
        self._on_status = on_status
        self._on_last_updated = on_last_updated
        self._clock = clock
        self.last_snapshot: Snapshot | None = None

    @property
    def provider(self) -> Provider:
        return self._provider

    def run_cycle(self, token: CancellationToken, done: Callable[[], None]) -> None:
        """Sample in the background and apply the result; ``done`` runs when finished."""
        self._marshaller.post(lambda: self.set_status(STATUS_REFRESHING))

        def work(task_token: CancellationToken, progress: ProgressFn) -> tuple[Snapshot, ViewUpdate]:
            snapshot = self.sample(task_token, progress)
            task_token.raise_if_cancelled()
            return snapshot, self.build(snapshot)

        def complete(result: tuple[Snapshot, ViewUpdate] | None, error: BaseException | None) -> None:
            try:
                if error is not None:
                    self.show_error(error)
                else:
                    snapshot, update = result
                    self.apply(snapshot, update)
            finally:
                done()

        def cancelled() -> None:
            try:
                self.set_status(self.ready_status())
            finally:
                done()

        self._pool.submit(
            None,
            work,
            on_complete=complete,
            on_progress=self._on_progress,
            channel=self.name,
            token=token,
            on_cancelled=cancelled,
        )

    @abstractmethod
    def sample(self, token: CancellationToken, progress: ProgressFn) -> Snapshot:
        """Worker thread: collect a Snapshot."""

    @abstractmethod
    def build(self, snapshot: Snapshot) -> ViewUpdate:
        """Worker thread: turn a Snapshot into label values and rows."""

    def prepare_rows(self, name: str, rows: Sequence[Row]) -> Sequence[Row]:
        """Hook applied to each row list just before it is rebuilt."""
        return rows

    def apply(self, snapshot: Snapshot, update: ViewUpdate) -> None:
        """UI thread: push a finished cycle into the window."""
        for key, value in update.labels:
            self._labels.apply(key, value)

        for name, rows in update.rows.items():
            row_list = self._row_lists.get(name)
            if row_list is not None:
                row_list.rebuild(self.prepare_rows(name, rows))

        self.last_snapshot = snapshot
        self.set_status(self.ready_status())
        if self._on_last_updated is not None:
            self._on_last_updated(f"Last updated: {format_clock(snapshot.taken_at)}")

    def ready_status(self) -> str:
        """Idle status text, with the time of the last applied snapshot if any."""
        if self.last_snapshot is None:
            return STATUS_READY
        return f"{STATUS_READY} - Last updated: {format_clock(self.last_snapshot.taken_at)}"

    def show_error(self, error: BaseException) -> None:
        logger.error("Refresh failed: %s", error)
        self.set_status(f"Error refreshing data: {error}")

    def set_status(self, text: str) -> None:
        if self._on_status is not None:
            self._on_status(text)

    def _on_progress(self, percent: int, message: str) -> None:
        self.set_status(f"{STATUS_REFRESHING} {message}")

    def _section(self, label: str, fn: Callable[[], T], default: T) -> T:
        """Sample one section; anything but an enumeration failure leaves the default."""
        try:
            return fn()
        except (EnumerationFailure, TaskCancelled):
            raise
        except (SysGopherError, OSError, ValueError) as e:
            logger.debug("Could not sample %s: %s", label, e)
            return default


class SystemInfoPipeline(RefreshPipeline):
    """OS, CPU, memory, GPU, disks and the ten largest processes."""

    name = "system-info"

    def sample(self, token: CancellationToken, progress: ProgressFn) -> Snapshot:
        provider = self._provider

        progress(0, "Reading system information")
        os_info = self._section("OS", provider.os_info, OSInfo())
        token.raise_if_cancelled()

        progress(20, "Reading CPU information")
        cpu = self._section("CPU", provider.cpu_info, CPUInfo())
        token.raise_if_cancelled()

        progress(40, "Reading memory information")
        memory = self._section("memory", provider.memory_info, MemoryInfo())
        token.raise_if_cancelled()

        progress(50, "Reading GPU information")
        gpu = self._section("GPU", provider.gpu_info, GPUInfo())
        token.raise_if_cancelled()

        progress(70, "Reading disk information")
        disks = provider.disk_rows()
        token.raise_if_cancelled()

        progress(80, "Reading processes")
        processes = top_by_memory(provider.process_rows(token), TOP_PROCESS_COUNT)

        return Snapshot(
            taken_at=self._clock(),
            os=os_info,
            cpu=cpu,
            memory=memory,
            gpu=gpu,
            disks=tuple(disks),
            processes=tuple(processes),
        )

    def build(self, snapshot: Snapshot) -> ViewUpdate:
        labels = (
            os_labels(snapshot.os)
            + cpu_labels(snapshot.cpu)
            + memory_labels(snapshot.memory)
            + gpu_labels(snapshot.gpu)
        )
        return ViewUpdate(
            labels=tuple(labels),
            rows={
                DISK_ROWS: tuple(disk_row(disk) for disk in snapshot.disks),
                TOP_PROCESS_ROWS: tuple(top_process_row(p) for p in snapshot.processes),
            },
        )


class SortKey(Enum):
    """Sort keys for the process table."""

    PID = "pid"
    NAME = "name"
    USER = "user"
    CPU = "cpu"
    MEM = "mem"


_SORT_FIELDS: dict[SortKey, Callable[[ProcessRow], object]] = {
    SortKey.PID: lambda p: p.pid,
    SortKey.NAME: lambda p: p.name.lower(),
    SortKey.USER: lambda p: p.username.lower(),
    SortKey.CPU: lambda p: p.cpu_percent,
    SortKey.MEM: lambda p: p.memory_bytes,
}


class ProcessPipeline(RefreshPipeline):
    """
    Full process table plus CPU and memory for the monitor.

    Rows keep enumeration order until the user picks a sort column. The
    search filter is applied on the UI thread, so changing it never samples.
    """

    name = "process-monitor"

    def __init__(self, *args, on_count: TextSink | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._on_count = on_count
        self._all_rows: tuple[Row, ...] = ()
        self._filter = ""
        self._sort_key: SortKey | None = None
        self._sort_reverse = False

    @property
    def filter_text(self) -> str:
        return self._filter

    @property
    def sort_key(self) -> SortKey | None:
        return self._sort_key

    @property
    def sort_reverse(self) -> bool:
        return self._sort_reverse

    def sample(self, token: CancellationToken, progress: ProgressFn) -> Snapshot:
        provider = self._provider

        progress(0, "Fetching processes")
        processes = provider.process_rows(token)
        token.raise_if_cancelled()

        progress(80, "Reading CPU and memory")
        cpu = self._section("CPU", provider.cpu_info, CPUInfo())
        memory = self._section("memory", provider.memory_info, MemoryInfo())

        return Snapshot(
            taken_at=self._clock(),
            cpu=cpu,
            memory=memory,
            processes=tuple(processes),
        )

    def build(self, snapshot: Snapshot) -> ViewUpdate:
        return ViewUpdate(
            labels=tuple(cpu_labels(snapshot.cpu) + memory_labels(snapshot.memory)),
            rows={PROCESS_ROWS: tuple(process_row(p) for p in snapshot.processes)},
        )

    def prepare_rows(self, name: str, rows: Sequence[Row]) -> Sequence[Row]:
        if name != PROCESS_ROWS:
            return rows
        self._all_rows = tuple(rows)
        return self._visible_rows()

    def apply(self, snapshot: Snapshot, update: ViewUpdate) -> None:
        super().apply(snapshot, update)
        self._report_count()

    def set_filter(self, text: str) -> int:
        """
        Re-filter the last sampled rows without sampling again.

        Returns:
            Number of rows shown.
        """
        self._filter = text
        count = self._redisplay()
        if text.strip():
            self.set_status(f"Found {count} processes matching '{text}'")
        return count

    def sort_by(self, key: SortKey) -> None:
        """Sort by ``key``; picking the same key again reverses the order."""
        if key is self._sort_key:
            self._sort_reverse = not self._sort_reverse
        else:
            self._sort_key = key
            self._sort_reverse = key in (SortKey.CPU, SortKey.MEM)
        self._redisplay()

    def cycle_sort(self) -> SortKey:
        """Move to the next sort key and return it."""
        keys = list(SortKey)
        if self._sort_key is None:
            key = keys[0]
        else:
            key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_key = key
        self._sort_reverse = key in (SortKey.CPU, SortKey.MEM)
        self._redisplay()
        return key

    def selected_pid(self) -> int:
        """Pid under the cursor, or 0 when nothing is selected."""
        row_list = self._row_lists.get(PROCESS_ROWS)
        if row_list is None:
            return 0
        identity = row_list.selected_identity()
        return identity if isinstance(identity, int) else 0

    def _visible_rows(self) -> list[Row]:
        rows = [row for row in self._all_rows if matches_filter(row.item, self._filter)]
        if self._sort_key is not None:
            rows.sort(key=lambda row: _SORT_FIELDS[self._sort_key](row.item), reverse=self._sort_reverse)
        return rows

    def _redisplay(self) -> int:
        rows = self._visible_rows()
        row_list = self._row_lists.get(PROCESS_ROWS)
        if row_list is not None:
            row_list.rebuild(rows)
        self._report_count(len(rows))
        return len(rows)

    def _report_count(self, count: int | None = None) -> None:
        if self._on_count is None:
            return
        if count is None:
            row_list = self._row_lists.get(PROCESS_ROWS)
            count = len(row_list) if row_list is not None else len(self._all_rows)
        self._on_count(f"{count} processes")
