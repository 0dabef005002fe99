"""Wrappers for the external tools the providers read from."""

import shutil
import subprocess
from pathlib import Path

from sysgopher.errors import CommandError


class CommandRunner:
    """Runs a command and returns its stdout, raising CommandError on failure."""

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    def run(self, *args: str) -> str:
        try:
            completed = subprocess.run(
                list(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise CommandError(args[0], "not found") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(args[0], f"timed out after {self._timeout}s") from e
        except OSError as e:
            raise CommandError(args[0], str(e)) from e

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise CommandError(args[0], f"exit status {completed.returncode}: {stderr}")
        return completed.stdout.decode("utf-8", errors="replace")

    def exists(self, name: str) -> bool:
        return shutil.which(name) is not None


def read_text(path: str) -> str:
    """Read a small text file such as ``/proc/meminfo``."""
    return Path(path).read_text(encoding="utf-8", errors="replace")
