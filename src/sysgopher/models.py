"""Data models for sysgopher."""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

UNKNOWN = "Unknown"


@dataclass(slots=True, frozen=True)
class OSInfo:
    """Operating system identification."""

    os_name: str = UNKNOWN
    kernel_version: str = UNKNOWN
    distribution: str = UNKNOWN
    architecture: str = UNKNOWN
    hostname: str = UNKNOWN
    uptime: str = UNKNOWN
    user: str = UNKNOWN
    shell: str = UNKNOWN


@dataclass(slots=True, frozen=True)
class CPUInfo:
    """Processor model and current utilisation."""

    model: str = UNKNOWN
    cores: int = 1  # distinct physical packages
    threads: int = 1  # logical CPUs
    frequency: str = UNKNOWN  # e.g. "3.20 GHz"
    usage: float = 0.0  # 0.0 - 100.0


@dataclass(slots=True, frozen=True)
class MemoryInfo:
    """Physical memory and swap, in bytes."""

    total: int = 0
    used: int = 0
    free: int = 0
    swap_total: int = 0
    swap_used: int = 0

    @property
    def usage_percent(self) -> float:
        """Share of physical memory in use, 0.0 when the total is unknown."""
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100


def _empty_notes() -> Mapping[str, str]:
    return MappingProxyType({})


@dataclass(slots=True, frozen=True)
class GPUInfo:
    """Graphics adapter description. Every field is empty when not detected.

    ``notes`` maps a field name to a human explanation of why it is missing,
    e.g. ``{"model": "GPU detection not available (lspci not found)"}``.
    """

    model: str = ""
    vendor: str = ""
    renderer: str = ""
    driver: str = ""
    gl_version: str = ""
    memory: str = ""
    utilization: str = ""
    notes: Mapping[str, str] = field(default_factory=_empty_notes)


@dataclass(slots=True, frozen=True)
class DiskRow:
    """One mounted filesystem as reported by ``df``."""

    device: str
    size: str = ""
    used: str = ""
    available: str = ""
    percent: int | None = None  # 0 - 100 when parseable
    mount_point: str = ""

    @property
    def identity(self) -> str:
        return self.device


@dataclass(slots=True, frozen=True)
class ProcessRow:
    """Immutable snapshot of a process state."""

    pid: int
    name: str
    username: str = ""
    cpu_percent: float = 0.0
    memory_bytes: int = 0
    threads: int = 0
    state: str = ""  # 'R', 'S', 'Z', 'D', etc.
    start_time: str = ""

    @property
    def identity(self) -> int:
        return self.pid


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Everything one refresh cycle sampled.

    Sections an application does not sample keep their defaults.
    """

    taken_at: datetime
    os: OSInfo = field(default_factory=OSInfo)
    cpu: CPUInfo = field(default_factory=CPUInfo)
    memory: MemoryInfo = field(default_factory=MemoryInfo)
    gpu: GPUInfo = field(default_factory=GPUInfo)
    disks: tuple[DiskRow, ...] = ()
    processes: tuple[ProcessRow, ...] = ()


def dedupe_processes(rows: list[ProcessRow]) -> list[ProcessRow]:
    """Drop repeated pids, keeping the first row seen for each."""
    seen: set[int] = set()
    result: list[ProcessRow] = []
    for row in rows:
        if row.pid in seen:
            continue
        seen.add(row.pid)
        result.append(row)
    return result


def top_by_memory(rows: tuple[ProcessRow, ...] | list[ProcessRow], limit: int) -> list[ProcessRow]:
    """Return the ``limit`` processes using the most memory, largest first."""
    return sorted(rows, key=lambda r: r.memory_bytes, reverse=True)[:limit]
