"""
Platform provider interface.

A provider samples system state for one operating system. Every section
degrades to its defaults when a tool is missing or its output cannot be
parsed; only listing the process or disk table may fail outright.
"""

import logging
import os
import re
import sys
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

import psutil

from sysgopher.cache import SampleCache
from sysgopher.commands import CommandRunner, read_text
from sysgopher.errors import (
    CommandError,
    EnumerationFailure,
    InitFailure,
    TerminationError,
    TerminationKind,
)
from sysgopher.models import (
    UNKNOWN,
    CPUInfo,
    DiskRow,
    GPUInfo,
    MemoryInfo,
    OSInfo,
    ProcessRow,
    dedupe_processes,
)
from sysgopher.worker import CancellationToken, WorkerPool

logger = logging.getLogger(__name__)

FileReader = Callable[[str], str]

PS_START_FORMAT = "%a %b %d %H:%M:%S %Y"

_NUMBER = re.compile(r"[-+]?\d+(?:\.\d+)?")


def parse_float(text: str | None, default: float = 0.0) -> float:
    """Leniently parse a float, ignoring surrounding noise such as ``%``."""
    if not text:
        return default
    match = _NUMBER.search(text.replace(",", "."))
    if match is None:
        return default
    try:
        return float(match.group())
    except ValueError:
        return default


def parse_int(text: str | None, default: int = 0) -> int:
    if not text:
        return default
    try:
        return int(text.strip().rstrip("."))
    except ValueError:
        return int(parse_float(text, default))


def parse_percent(text: str) -> int | None:
    """Parse a ``df`` capacity column such as ``92%`` into 0-100."""
    value = text.strip().rstrip("%")
    if not value.isdigit():
        return None
    return min(100, max(0, int(value)))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def format_start_time(raw: str) -> str:
    """Convert ``ps lstart`` output to ``YYYY-MM-DD HH:MM:SS``; keep raw text otherwise."""
    text = " ".join(raw.split())
    if not text:
        return ""
    try:
        return datetime.strptime(text, PS_START_FORMAT).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return text


def parse_ps_fields(output: str, columns: tuple[str, ...]) -> dict[str, Any]:
    """
    Parse one line of ``ps -o col=,col=,...,lstart=`` output.

    ``columns`` names the leading single-token columns; whatever follows is
    the start time. Missing or malformed fields are left out so the caller's
    defaults apply.
    """
    line = output.strip().splitlines()[0] if output.strip() else ""
    fields = line.split()
    details: dict[str, Any] = {}

    for index, column in enumerate(columns):
        if index >= len(fields):
            break
        value = fields[index]
        if column == "user":
            details["username"] = value
        elif column == "pcpu":
            details["cpu_percent"] = parse_float(value)
        elif column == "rss":
            details["memory_bytes"] = parse_int(value) * 1024
        elif column in ("stat", "state"):
            details["state"] = value
        elif column == "nlwp":
            details["threads"] = parse_int(value)

    if len(fields) > len(columns):
        details["start_time"] = format_start_time(" ".join(fields[len(columns):]))
    return details


def parse_df(output: str, darwin: bool = False) -> list[DiskRow]:
    """
    Parse ``df -h`` output into rows, skipping the header.

    GNU ``--output=source,size,used,avail,pcent,target`` yields six columns.
    BSD ``df -h`` yields five or more, with inode columns before the mount
    point on recent macOS. Rows too short to be meaningful are dropped.
    """
    rows: list[DiskRow] = []
    for index, line in enumerate(output.splitlines()):
        if index == 0 or not line.strip():
            continue
        fields = line.split()

        if darwin:
            if len(fields) < 5:
                continue
            if len(fields) >= 9 and fields[7].endswith("%"):
                mount = " ".join(fields[8:])
            elif len(fields) > 5:
                mount = " ".join(fields[5:])
            else:
                mount = "?"
        else:
            if len(fields) < 6:
                continue
            mount = " ".join(fields[5:])

        rows.append(
            DiskRow(
                device=fields[0],
                size=fields[1],
                used=fields[2],
                available=fields[3],
                percent=parse_percent(fields[4]),
                mount_point=mount,
            )
        )
    return rows


def parse_key_values(text: str, separator: str = ":") -> dict[str, str]:
    """Split ``key: value`` lines into a dict, first occurrence wins."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(separator)
        if not sep:
            continue
        values.setdefault(key.strip(), value.strip())
    return values


class Provider(ABC):
    """
    Samples one operating system.

    Subclasses implement the OS-specific sections. Process enumeration is
    shared: the pid table comes from psutil, each pid is enriched by a
    per-process probe fanned out over the worker pool, and the result is
    kept briefly in the sample cache.
    """

    name = "generic"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        read_file: FileReader = read_text,
        cache: SampleCache | None = None,
        pool: WorkerPool | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """
        Initialize the Provider.

        Args:
            runner: Runs external commands. Default: a CommandRunner.
            read_file: Reads files such as ``/proc/meminfo``.
            cache: Process list cache. Default: a fresh 1 s cache.
            pool: Worker pool used to fan out per-process probes; probes
                run sequentially when omitted.
            environ: Environment to read ``SHELL`` from. Default ``os.environ``.
        """
        self._runner = runner or CommandRunner()
        self._read_file = read_file
        self._cache = cache or SampleCache()
        self._pool = pool
        self._environ = environ if environ is not None else os.environ

    @property
    def cache(self) -> SampleCache:
        return self._cache

    # Helpers

    def _cmd(self, *args: str) -> str | None:
        """Run a command, returning stripped stdout or None on failure."""
        try:
            return self._runner.run(*args).strip()
        except CommandError as e:
            logger.debug("%s", e)
            return None

    def _read(self, path: str) -> str | None:
        try:
            return self._read_file(path)
        except OSError as e:
            logger.debug("Cannot read %s: %s", path, e)
            return None

    def _has(self, tool: str) -> bool:
        return self._runner.exists(tool)

    def _shell(self) -> str:
        return self._environ.get("SHELL") or UNKNOWN

    # Sections

    @abstractmethod
    def os_info(self) -> OSInfo: ...

    @abstractmethod
    def cpu_info(self) -> CPUInfo: ...

    @abstractmethod
    def memory_info(self) -> MemoryInfo: ...

    @abstractmethod
    def gpu_info(self) -> GPUInfo: ...

    @abstractmethod
    def disk_rows(self) -> list[DiskRow]: ...

    @abstractmethod
    def probe_process(self, pid: int) -> dict[str, Any]:
        """Return ProcessRow keyword fields for ``pid``; empty when the probe fails."""

    def process_rows(self, token: CancellationToken | None = None) -> list[ProcessRow]:
        """
        List running processes, served from the sample cache while fresh.

        Raises:
            EnumerationFailure: the process table could not be read.
        """
        return self._cache.get_or_load(lambda: self._enumerate_processes(token))

    def _enumerate_processes(self, token: CancellationToken | None) -> list[ProcessRow]:
        try:
            pids = psutil.pids()
        except (psutil.Error, OSError) as e:
            raise EnumerationFailure(f"failed to get process list: {e}") from e

        unique = list(dict.fromkeys(pids))
        rows = self._fan_out(self._build_row, unique, token)
        logger.debug("Enumerated %d processes", len(rows))
        return dedupe_processes(rows)

    def _fan_out(
        self,
        fn: Callable[[int], ProcessRow | None],
        pids: Iterable[int],
        token: CancellationToken | None,
    ) -> list[ProcessRow]:
        if self._pool is not None and self._pool.is_running:
            return self._pool.fan_out(fn, pids, token)
        rows = []
        for pid in pids:
            if token is not None:
                token.raise_if_cancelled()
            row = fn(pid)
            if row is not None:
                rows.append(row)
        return rows

    def _build_row(self, pid: int) -> ProcessRow | None:
        try:
            name = psutil.Process(pid).name()
        except psutil.NoSuchProcess:
            # Exited between listing and probing
            return None
        except (psutil.AccessDenied, psutil.ZombieProcess):
            name = ""

        details = self.probe_process(pid)
        return ProcessRow(pid=pid, name=name or f"Process {pid}", **details)

    def terminate_process(self, pid: int) -> None:
        """
        Send SIGTERM to ``pid``.

        Raises:
            TerminationError: INVALID for pid <= 0, NOT_FOUND when no such
                process exists, DENIED when the OS refuses the signal.
        """
        if pid <= 0:
            raise TerminationError(pid, TerminationKind.INVALID)
        if not psutil.pid_exists(pid):
            raise TerminationError(pid, TerminationKind.NOT_FOUND)

        try:
            psutil.Process(pid).terminate()
        except psutil.NoSuchProcess as e:
            raise TerminationError(pid, TerminationKind.NOT_FOUND) from e
        except psutil.AccessDenied as e:
            raise TerminationError(pid, TerminationKind.DENIED) from e

        logger.info("Sent SIGTERM to process %d", pid)
        self._cache.invalidate()


def get_provider(
    platform: str | None = None,
    runner: CommandRunner | None = None,
    cache: SampleCache | None = None,
    pool: WorkerPool | None = None,
) -> Provider:
    """
    Pick the provider for ``platform`` (default ``sys.platform``).

    Raises:
        InitFailure: no provider exists for the platform.
    """
    platform = platform or sys.platform
    if platform.startswith("linux"):
        from sysgopher.provider_linux import LinuxProvider

        return LinuxProvider(runner=runner, cache=cache, pool=pool)
    if platform == "darwin":
        from sysgopher.provider_darwin import DarwinProvider

        return DarwinProvider(runner=runner, cache=cache, pool=pool)
    raise InitFailure(f"unsupported platform: {platform}")
