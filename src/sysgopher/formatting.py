"""Display policy: byte ladders, percentages, truncation and severity classes."""

from datetime import datetime

ELLIPSIS = "…"

# Column limits for fixed-width labels
DEVICE_LIMIT = 16
MOUNT_LIMIT = 20
GPU_MODEL_LIMIT = 35
GPU_FIELD_LIMIT = 30
PROCESS_NAME_LIMIT = 30
USERNAME_LIMIT = 12
CPU_MODEL_LIMIT = 25
LABEL_TOOLTIP_LIMIT = 20

_UNITS = (("TB", 1024**4), ("GB", 1024**3), ("MB", 1024**2), ("KB", 1024))


def format_bytes(size: int) -> str:
    """Format bytes as a human-readable string on the 1024 ladder."""
    size = max(0, int(size))
    for unit, scale in _UNITS:
        if size >= scale:
            return f"{size / scale:.2f} {unit}"
    return f"{size} B"


def format_percent(value: float) -> str:
    return f"{value:.1f}%"


def format_uptime(seconds: float) -> str:
    """Render an uptime in seconds as days, hours and minutes."""
    seconds = max(0.0, seconds)
    days = int(seconds // 86400)
    hours = int(seconds // 3600) % 24
    minutes = int(seconds // 60) % 60
    if days > 0:
        return f"{days} days, {hours} hours, {minutes} minutes"
    return f"{hours} hours, {minutes} minutes"


def format_clock(moment: datetime) -> str:
    return moment.strftime("%H:%M:%S")


def truncate(text: str, limit: int) -> tuple[str, str | None]:
    """
    Fit ``text`` into ``limit`` characters.

    Returns the display string and a tooltip holding the full text, or None
    when nothing was cut.
    """
    if len(text) <= limit:
        return text, None
    return text[: max(0, limit - 3)] + ELLIPSIS, text


def tooltip_for(text: str, limit: int = LABEL_TOOLTIP_LIMIT) -> str | None:
    """Long values keep their full text but also get it as a tooltip."""
    return text if len(text) > limit else None


def shorten_cpu_model(model: str) -> str:
    """Keep the first three words of a long CPU brand string."""
    if len(model) <= CPU_MODEL_LIMIT:
        return model
    words = model.split()
    if len(words) > 3:
        return " ".join(words[:3]) + ELLIPSIS
    return model[: CPU_MODEL_LIMIT - 3] + ELLIPSIS


def usage_class(percent: int | None) -> str | None:
    """Severity class for a disk usage percentage."""
    if percent is None:
        return None
    if percent >= 90:
        return "critical"
    if percent >= 75:
        return "warning"
    return "normal"
