"""User actions: Refresh, Toggle Auto-Refresh and End Process."""

import logging
from typing import Callable

from sysgopher.context import AppContext
from sysgopher.errors import TerminationError
from sysgopher.worker import CancellationToken, ProgressFn

logger = logging.getLogger(__name__)

TextSink = Callable[[str], None]
# Shows ``message`` with OK/Cancel and calls back with True for OK
Confirmer = Callable[[str, Callable[[bool], None]], None]

AUTO_REFRESH_ON = "Auto-refresh: ON"
AUTO_REFRESH_OFF = "Auto-refresh: OFF"


def toggle_label(enabled: bool) -> str:
    return AUTO_REFRESH_ON if enabled else AUTO_REFRESH_OFF


class Actions:
    """Activation callbacks of one window, bound to its scheduler."""

    def __init__(
        self,
        context: AppContext,
        confirm: Confirmer | None = None,
        on_status: TextSink | None = None,
        on_toggle_label: TextSink | None = None,
        on_notify: TextSink | None = None,
    ) -> None:
        self._context = context
        self._confirm = confirm
        self._on_status = on_status
        self._on_toggle_label = on_toggle_label
        self._on_notify = on_notify

    def refresh(self) -> bool:
        """Start a refresh now; False when one is already running."""
        scheduler = self._context.scheduler
        if scheduler is None:
            return False
        return scheduler.trigger()

    def toggle_auto_refresh(self) -> str:
        scheduler = self._context.scheduler
        enabled = scheduler.toggle() if scheduler is not None else False
        label = toggle_label(enabled)
        if self._on_toggle_label is not None:
            self._on_toggle_label(label)
        return label

    def end_process(self, pid: int) -> None:
        """Ask for confirmation, then send SIGTERM to ``pid`` on a worker."""
        if pid <= 0:
            self._status("No process selected")
            return

        def answered(ok: bool) -> None:
            if ok:
                self._terminate(pid)
            else:
                logger.debug("Termination of %d cancelled", pid)

        message = f"Are you sure you want to terminate process {pid}?"
        if self._confirm is None:
            answered(True)
        else:
            self._confirm(message, answered)

    def _terminate(self, pid: int) -> None:
        provider = self._context.provider

        def work(token: CancellationToken, progress: ProgressFn) -> None:
            provider.terminate_process(pid)

        def complete(result: None, error: BaseException | None) -> None:
            if error is None:
                message = f"Process {pid} terminated successfully"
            else:
                if not isinstance(error, TerminationError):
                    logger.error("Unexpected error terminating %d: %s", pid, error)
                message = f"Error terminating process: {error}"
            self._status(message)
            if self._on_notify is not None:
                self._on_notify(message)
            self.refresh()

        self._context.pool.submit(f"terminate-{pid}", work, on_complete=complete)

    def _status(self, text: str) -> None:
        if self._on_status is not None:
            self._on_status(text)
