"""Application settings."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

INFO_APP_ID = "com.example.system-info"
MONITOR_APP_ID = "com.example.process-gopher"

STATUS_REFRESHING = "Refreshing data..."
STATUS_READY = "Ready"

# Software rendering for any GTK helper launched from the session.
RENDERER_ENVIRONMENT = {
    "GSK_RENDERER": "cairo",
    "GDK_GL": "0",
    "GDK_BACKEND": "x11",
}


class Settings(BaseSettings):
    info_refresh_interval: float = Field(30.0, ge=0)
    monitor_refresh_interval: float = Field(2.0, ge=0)
    cache_ttl: float = Field(1.0, ge=0)
    worker_count: int = Field(2, ge=1)
    probe_concurrency: int = Field(10, ge=1)
    shutdown_grace: float = Field(5.0, ge=0)
    command_timeout: float = Field(10.0, gt=0)
    log_level: str = "INFO"
    log_file: Path | None = None

    model_config = {"env_prefix": "SYSGOPHER_"}


def prepare_environment() -> None:
    """Set the renderer variables unless the user already chose otherwise."""
    for key, value in RENDERER_ENVIRONMENT.items():
        os.environ.setdefault(key, value)


settings = Settings()
