"""macOS provider: sysctl, vm_stat, iostat and system_profiler."""

import re
from typing import Any

import psutil

from sysgopher.errors import CommandError, EnumerationFailure
from sysgopher.models import UNKNOWN, CPUInfo, DiskRow, GPUInfo, MemoryInfo, OSInfo
from sysgopher.provider import Provider, clamp, parse_df, parse_float, parse_int, parse_ps_fields

PS_COLUMNS = ("user", "pcpu", "rss", "state")
DEFAULT_PAGE_SIZE = 4096
GL_VERSION_ARGS = ("defaults", "read", "/Library/Preferences/com.apple.opengl", "GLVersion")

_PAGE_SIZE = re.compile(r"page size of (\d+) bytes")
_SWAP_UNITS = {"K": 1024, "M": 1024**2, "G": 1024**3}
_GPU_VENDORS = ("AMD", "NVIDIA", "Intel", "Apple")


def parse_sw_vers(name: str | None, version: str | None, build: str | None) -> str | None:
    """Join ``sw_vers`` fields as ``Name Version (Build)``."""
    if not name:
        return None
    text = name
    if version:
        text += f" {version}"
    if build:
        text += f" ({build})"
    return text


def parse_darwin_uptime(text: str) -> str | None:
    """
    Take the text between ``up `` and the first comma.

    ``9:45  up 10 days,  2:14, 5 users, load averages: ...`` -> ``10 days``.
    """
    _, sep, rest = text.partition("up ")
    if not sep:
        return None
    value = rest.split(",", 1)[0].strip()
    return value or None


def parse_iostat(text: str) -> float | None:
    """Return user + system CPU from the last data row of ``iostat -c 2``."""
    us_index = sy_index = None
    last_row: list[str] | None = None

    for line in text.splitlines():
        fields = line.split()
        if "us" in fields and "sy" in fields:
            us_index = fields.index("us")
            sy_index = fields.index("sy")
            continue
        if us_index is None or sy_index is None:
            continue
        if len(fields) > max(us_index, sy_index) and all(_is_number(f) for f in fields):
            last_row = fields

    if last_row is None or us_index is None or sy_index is None:
        return None
    return float(last_row[us_index]) + float(last_row[sy_index])


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def parse_top_cpu_usage(text: str) -> float | None:
    """``CPU usage: 7.35% user, 14.39% sys, 78.25% idle`` -> 21.75."""
    for line in text.splitlines():
        if "CPU usage:" not in line:
            continue
        head, sep, _ = line.partition("% idle")
        if not sep:
            continue
        words = head.split()
        if not words:
            continue
        try:
            return 100.0 - float(words[-1])
        except ValueError:
            return None
    return None


def parse_vm_stat(text: str) -> int:
    """Return reclaimable bytes: free + inactive + purgeable pages."""
    page_size = DEFAULT_PAGE_SIZE
    match = _PAGE_SIZE.search(text)
    if match:
        page_size = int(match.group(1))

    pages = 0
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        if key.strip() in ("Pages free", "Pages inactive", "Pages purgeable"):
            pages += parse_int(value)
    return pages * page_size


def parse_swapusage(text: str) -> dict[str, int]:
    """Parse ``total = 2048.00M  used = 1017.75M  free = 1030.25M`` into bytes."""
    values: dict[str, int] = {}
    fields = text.split()
    for index, word in enumerate(fields):
        if word not in ("total", "used", "free") or index + 2 >= len(fields):
            continue
        raw = fields[index + 2]
        multiplier = _SWAP_UNITS.get(raw[-1:].upper(), 1)
        values[word] = int(parse_float(raw.rstrip("KMGkmg")) * multiplier)
    return values


def parse_system_profiler(text: str) -> dict[str, str]:
    """Extract the first graphics adapter from ``system_profiler SPDisplaysDataType``."""
    info: dict[str, str] = {}
    in_graphics = False

    for raw in text.splitlines():
        line = raw.strip()
        if "Graphics" in line and line.endswith(":"):
            in_graphics = True
            continue
        if not in_graphics:
            continue

        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()

        if key == "Chipset Model":
            info.setdefault("model", value)
            for vendor in _GPU_VENDORS:
                if vendor in value:
                    info.setdefault("vendor", vendor)
                    break
        elif key == "Vendor":
            info["vendor"] = value
        elif key == "Device ID":
            info["renderer"] = f"Device ID: {value}"
        elif key.startswith("VRAM"):
            info.setdefault("memory", value)
        elif key == "Metal" or key.startswith("Metal "):
            info["metal"] = value
            info.setdefault("renderer", f"Metal: {value}")
        elif key == "Resolution":
            info.setdefault("renderer", f"Resolution: {value}")
    return info


class DarwinProvider(Provider):
    """Samples a macOS host."""

    name = "darwin"

    def _sysctl(self, name: str) -> str | None:
        return self._cmd("sysctl", "-n", name)

    def os_info(self) -> OSInfo:
        distribution = parse_sw_vers(
            self._cmd("sw_vers", "-productName"),
            self._cmd("sw_vers", "-productVersion"),
            self._cmd("sw_vers", "-buildVersion"),
        )
        uptime_text = self._cmd("uptime")
        uptime = parse_darwin_uptime(uptime_text) if uptime_text else None

        return OSInfo(
            os_name=self._cmd("uname", "-s") or UNKNOWN,
            kernel_version=self._cmd("uname", "-r") or UNKNOWN,
            distribution=distribution or UNKNOWN,
            architecture=self._cmd("uname", "-m") or UNKNOWN,
            hostname=self._cmd("hostname") or UNKNOWN,
            uptime=uptime or UNKNOWN,
            user=self._cmd("whoami") or UNKNOWN,
            shell=self._shell(),
        )

    def cpu_info(self) -> CPUInfo:
        cores = max(1, parse_int(self._sysctl("hw.physicalcpu"), 1))
        threads = parse_int(self._sysctl("hw.logicalcpu")) or psutil.cpu_count(logical=True) or cores

        frequency = UNKNOWN
        hertz = parse_int(self._sysctl("hw.cpufrequency"))
        if hertz > 0:
            frequency = f"{hertz / 1_000_000_000:.2f} GHz"

        usage: float | None = None
        iostat = self._cmd("iostat", "-c", "2")
        if iostat:
            usage = parse_iostat(iostat)
        if usage is None:
            top = self._cmd("top", "-l", "1", "-n", "0")
            if top:
                usage = parse_top_cpu_usage(top)

        return CPUInfo(
            model=self._sysctl("machdep.cpu.brand_string") or UNKNOWN,
            cores=cores,
            threads=threads,
            frequency=frequency,
            usage=clamp(usage or 0.0, 0.0, 100.0),
        )

    def memory_info(self) -> MemoryInfo:
        total = parse_int(self._sysctl("hw.memsize"))

        free = 0
        vm_stat = self._cmd("vm_stat")
        if vm_stat:
            free = int(clamp(parse_vm_stat(vm_stat), 0, total))

        swap: dict[str, int] = {}
        swapusage = self._sysctl("vm.swapusage")
        if swapusage:
            swap = parse_swapusage(swapusage)

        return MemoryInfo(
            total=total,
            used=total - free,
            free=free,
            swap_total=swap.get("total", 0),
            swap_used=swap.get("used", 0),
        )

    def disk_rows(self) -> list[DiskRow]:
        try:
            output = self._runner.run("df", "-h")
        except CommandError as e:
            raise EnumerationFailure(f"Error getting disk information: {e}") from e
        return parse_df(output, darwin=True)

    def probe_process(self, pid: int) -> dict[str, Any]:
        output = self._cmd("ps", "-p", str(pid), "-o", "user=,pcpu=,rss=,state=,lstart=")
        if not output:
            return {}
        details = parse_ps_fields(output, PS_COLUMNS)
        try:
            details["threads"] = psutil.Process(pid).num_threads()
        except psutil.Error:
            pass
        return details

    def gpu_info(self) -> GPUInfo:
        output = self._cmd("system_profiler", "SPDisplaysDataType")
        if output is None:
            return GPUInfo(notes={"model": "Error getting GPU information"})

        found = parse_system_profiler(output)
        notes: dict[str, str] = {}
        if not found.get("model"):
            notes["model"] = "No GPU reported by system_profiler"

        return GPUInfo(
            model=found.get("model", ""),
            vendor=found.get("vendor", ""),
            renderer=found.get("renderer", ""),
            driver="Metal" if "metal" in found else "OpenGL",
            gl_version=self._cmd(*GL_VERSION_ARGS) or "",
            memory=found.get("memory", ""),
            notes=notes,
        )
