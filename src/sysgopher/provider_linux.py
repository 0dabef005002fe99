"""Linux provider: /proc, coreutils, procps and the usual GPU tools."""

import re
from typing import Any

import psutil

from sysgopher.errors import CommandError, EnumerationFailure, ParseFailure
from sysgopher.formatting import format_uptime
from sysgopher.models import UNKNOWN, CPUInfo, DiskRow, GPUInfo, MemoryInfo, OSInfo
from sysgopher.provider import (
    Provider,
    clamp,
    parse_df,
    parse_key_values,
    parse_ps_fields,
)

DF_ARGS = ("df", "-h", "--output=source,size,used,avail,pcent,target")
PS_COLUMNS = ("user", "pcpu", "rss", "stat", "nlwp")
NVIDIA_QUERY = (
    "nvidia-smi",
    "--query-gpu=name,driver_version,memory.total,utilization.gpu",
    "--format=csv,noheader",
)
NO_DISTRIBUTION = "Unknown (distribution information not available)"

_GPU_CLASS = re.compile(r"vga|3d|2d", re.IGNORECASE)
_TOP_IDLE = re.compile(r"([\d.]+)\s*%?\s*id\b")


def parse_os_release(text: str) -> str | None:
    """Return ``PRETTY_NAME`` from ``/etc/os-release``."""
    for line in text.splitlines():
        if line.startswith("PRETTY_NAME="):
            return line.split("=", 1)[1].strip().strip('"').strip("'")
    return None


def parse_uptime(text: str) -> str | None:
    """Turn ``/proc/uptime`` into ``D days, H hours, M minutes``."""
    parts = text.split()
    if not parts:
        return None
    try:
        seconds = float(parts[0])
    except ValueError:
        return None
    return format_uptime(seconds)


def parse_cpuinfo(text: str) -> tuple[str | None, int, float | None]:
    """
    Extract model name, physical package count and clock from ``/proc/cpuinfo``.

    Returns:
        (model, physical_count, mhz); physical_count is at least 1.
    """
    model: str | None = None
    mhz: float | None = None
    physical_ids: set[str] = set()

    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "model name" and model is None:
            model = value
        elif key == "physical id":
            physical_ids.add(value)
        elif key == "cpu MHz" and mhz is None:
            try:
                mhz = float(value)
            except ValueError:
                pass

    return model, max(1, len(physical_ids)), mhz


def parse_lscpu_mhz(text: str) -> float | None:
    for line in text.splitlines():
        if "CPU MHz" in line:
            _, _, value = line.partition(":")
            try:
                return float(value.strip())
            except ValueError:
                continue
    return None


def parse_top_idle(text: str) -> float | None:
    """Return the idle percentage from the ``Cpu(s)`` line of ``top -bn1``."""
    for line in text.splitlines():
        if "Cpu(s)" not in line:
            continue
        match = _TOP_IDLE.search(line)
        if match:
            try:
                return float(match.group(1))
            except ValueError:
                return None
    return None


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse ``/proc/meminfo`` into bytes keyed by field name."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts:
            continue
        try:
            values[key.strip()] = int(parts[0]) * 1024
        except ValueError:
            continue
    return values


def parse_lshw(text: str) -> dict[str, str]:
    """Pull product, vendor, driver, resolution and memory out of ``lshw -C Display``."""
    info: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "product" and "product" not in info:
            info["product"] = value
        elif key == "vendor" and "vendor" not in info:
            info["vendor"] = value
        elif key == "configuration":
            for part in value.split():
                if part.startswith("driver=") and "driver" not in info:
                    info["driver"] = part.removeprefix("driver=")
                elif part.startswith("resolution=") and "resolution" not in info:
                    info["resolution"] = part.removeprefix("resolution=")
        elif key == "memory" and "memory" not in info and value:
            info["memory"] = value.split()[0]
    return info


def parse_lspci_gpu(text: str) -> str | None:
    """Return the description of the first display controller in ``lspci`` output."""
    for line in text.splitlines():
        if not _GPU_CLASS.search(line):
            continue
        _, sep, description = line.partition(": ")
        if sep and description.strip():
            return description.strip()
    return None


def parse_lspci_driver(text: str) -> str | None:
    """Find ``Kernel driver in use`` within a display controller block of ``lspci -v``."""
    in_gpu = False
    for line in text.splitlines():
        if line and not line[0].isspace():
            in_gpu = bool(_GPU_CLASS.search(line))
            continue
        if in_gpu and "Kernel driver in use" in line:
            _, _, value = line.partition(":")
            words = value.split()
            if words:
                return words[0]
    return None


def parse_glxinfo(text: str) -> dict[str, str]:
    """Extract OpenGL vendor, renderer and version strings."""
    info: dict[str, str] = {}
    wanted = {
        "OpenGL vendor string": "vendor",
        "OpenGL renderer string": "renderer",
        "OpenGL version string": "version",
    }
    for key, value in parse_key_values(text).items():
        if key in wanted and value:
            info[wanted[key]] = value
    return info


def parse_nvidia_smi(text: str) -> dict[str, str] | None:
    """Parse the first line of the ``nvidia-smi --format=csv,noheader`` query."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return None
    parts = [part.strip() for part in lines[0].split(",")]
    if len(parts) < 4:
        return None
    return {
        "name": parts[0],
        "driver": parts[1],
        "memory": parts[2],
        "utilization": parts[3],
    }


class LinuxProvider(Provider):
    """Samples a Linux host."""

    name = "linux"

    def os_info(self) -> OSInfo:
        release = self._read("/etc/os-release")
        distribution = parse_os_release(release) if release is not None else None

        uptime_text = self._read("/proc/uptime")
        uptime = parse_uptime(uptime_text) if uptime_text is not None else None

        return OSInfo(
            os_name=self._cmd("uname", "-s") or UNKNOWN,
            kernel_version=self._cmd("uname", "-r") or UNKNOWN,
            distribution=distribution or NO_DISTRIBUTION,
            architecture=self._cmd("uname", "-m") or UNKNOWN,
            hostname=self._cmd("hostname") or UNKNOWN,
            uptime=uptime or UNKNOWN,
            user=self._cmd("whoami") or UNKNOWN,
            shell=self._shell(),
        )

    def cpu_info(self) -> CPUInfo:
        model: str | None = None
        cores = 1
        mhz: float | None = None

        cpuinfo = self._read("/proc/cpuinfo")
        if cpuinfo is not None:
            model, cores, mhz = parse_cpuinfo(cpuinfo)

        if mhz is None:
            lscpu = self._cmd("lscpu")
            if lscpu:
                mhz = parse_lscpu_mhz(lscpu)

        threads = psutil.cpu_count(logical=True) or cores

        usage = 0.0
        top = self._cmd("top", "-bn1")
        if top:
            idle = parse_top_idle(top)
            if idle is not None:
                usage = clamp(100.0 - idle, 0.0, 100.0)

        return CPUInfo(
            model=model or UNKNOWN,
            cores=cores,
            threads=threads,
            frequency=f"{mhz / 1000:.2f} GHz" if mhz else UNKNOWN,
            usage=usage,
        )

    def memory_info(self) -> MemoryInfo:
        text = self._read("/proc/meminfo")
        if text is None:
            return MemoryInfo()

        values = parse_meminfo(text)
        if "MemTotal" not in values:
            raise ParseFailure("MemTotal missing from /proc/meminfo")
        total = values.get("MemTotal", 0)
        free = values.get("MemFree", 0)
        available = values.get("MemAvailable", free)
        swap_total = values.get("SwapTotal", 0)
        swap_free = values.get("SwapFree", swap_total)

        return MemoryInfo(
            total=total,
            used=int(clamp(total - available, 0, total)),
            free=free,
            swap_total=swap_total,
            swap_used=int(clamp(swap_total - swap_free, 0, swap_total)),
        )

    def disk_rows(self) -> list[DiskRow]:
        try:
            output = self._runner.run(*DF_ARGS)
        except CommandError as e:
            raise EnumerationFailure(f"Error getting disk information: {e}") from e
        return parse_df(output)

    def probe_process(self, pid: int) -> dict[str, Any]:
        output = self._cmd("ps", "-p", str(pid), "-o", "user=,pcpu=,rss=,stat=,nlwp=,lstart=")
        if not output:
            return {}
        return parse_ps_fields(output, PS_COLUMNS)

    def gpu_info(self) -> GPUInfo:
        info: dict[str, str] = {}
        notes: dict[str, str] = {}

        if self._has("lshw"):
            lshw = self._cmd("lshw", "-C", "Display")
            if lshw:
                found = parse_lshw(lshw)
                if found.get("product"):
                    info["model"] = found["product"]
                if found.get("vendor"):
                    info["vendor"] = found["vendor"]
                if found.get("driver"):
                    info["driver"] = found["driver"].split()[0]
                if found.get("resolution"):
                    info["renderer"] = f"Resolution: {found['resolution']}"
                if found.get("memory"):
                    info["memory"] = found["memory"]

        has_lspci = self._has("lspci")
        if not info.get("model"):
            if has_lspci:
                lspci = self._cmd("lspci")
                model = parse_lspci_gpu(lspci) if lspci else None
                if model:
                    info["model"] = model
                else:
                    notes["model"] = "No dedicated GPU detected"
            else:
                notes["model"] = "GPU detection not available (lspci not found)"

        if self._has("glxinfo"):
            glx = self._cmd("glxinfo")
            if glx:
                found = parse_glxinfo(glx)
                if found.get("vendor") and not info.get("vendor"):
                    info["vendor"] = found["vendor"]
                if found.get("renderer") and not info.get("renderer"):
                    info["renderer"] = found["renderer"]
                if found.get("version"):
                    info["gl_version"] = found["version"]
        else:
            notes["gl_version"] = "OpenGL info not available (glxinfo not found)"

        if self._has("nvidia-smi"):
            nvidia_output = self._cmd(*NVIDIA_QUERY)
            nvidia = parse_nvidia_smi(nvidia_output) if nvidia_output else None
            if nvidia:
                if not info.get("model") and nvidia["name"]:
                    info["model"] = nvidia["name"]
                    notes.pop("model", None)
                if not info.get("driver"):
                    info["driver"] = f"NVIDIA {nvidia['driver']}"
                if not info.get("memory"):
                    info["memory"] = nvidia["memory"]
                info["utilization"] = nvidia["utilization"]
        elif not info.get("driver") and has_lspci:
            verbose = self._cmd("lspci", "-v")
            driver = parse_lspci_driver(verbose) if verbose else None
            info["driver"] = driver or UNKNOWN

        return GPUInfo(notes=notes, **info)
