"""
Auto-refresh timer and the single in-flight refresh guard.

The timer thread only posts a tick; re-arming and triggering happen on the
UI thread. A refresh that arrives while another is running is dropped, not
queued.
"""

import logging
import threading
from typing import Callable, Protocol

from sysgopher.sync import AtomicFlag
from sysgopher.uithread import Marshaller
from sysgopher.worker import CancellationToken

logger = logging.getLogger(__name__)

DoneFn = Callable[[], None]
CycleFn = Callable[[CancellationToken, DoneFn], None]


class Timer(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...

    def is_alive(self) -> bool: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


class RefreshScheduler:
    """Runs ``run_cycle`` every ``interval`` seconds and on demand, never twice at once."""

    def __init__(
        self,
        marshaller: Marshaller,
        run_cycle: CycleFn,
        interval: float,
        enabled: bool = True,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        """
        Initialize the RefreshScheduler.

        Args:
            marshaller: Ticks are posted here and handled on the UI thread.
            run_cycle: Called as ``run_cycle(token, done)``; must call
                ``done()`` once the cycle finished, successfully or not.
            interval: Seconds between automatic refreshes; 0 disables the timer.
            enabled: Whether auto-refresh starts switched on.
            timer_factory: Builds single-shot timers, replaceable in tests.
        """
        self._marshaller = marshaller
        self._run_cycle = run_cycle
        self._interval = interval
        self._enabled = enabled
        self._timer_factory = timer_factory

        self._flag = AtomicFlag(0)
        self._lock = threading.Lock()
        self._timer: Timer | None = None
        self._timer_seq = 0
        self._generation = 0
        self._token: CancellationToken | None = None
        self._closed = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def in_flight(self) -> bool:
        return self._flag.load() == 1

    @property
    def timer_armed(self) -> bool:
        with self._lock:
            return self._timer is not None and self._timer.is_alive()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._enabled and self._interval > 0:
            self._arm()

    def trigger(self) -> bool:
        """
        Start a refresh cycle unless one is already running.

        Returns:
            False if the request was dropped.
        """
        if self._closed:
            return False
        if not self._flag.compare_and_swap(0, 1):
            logger.debug("Refresh already in progress, dropping request")
            return False

        token = CancellationToken()
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._token = token

        try:
            self._run_cycle(token, lambda: self._release(generation))
        except Exception:
            self._release(generation)
            raise
        return True

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled or self._closed:
            return
        self._enabled = enabled
        if enabled:
            self.start()
        else:
            self._disarm()
            self._cancel_in_flight(release=False)
        logger.info("Auto-refresh %s", "enabled" if enabled else "disabled")

    def toggle(self) -> bool:
        """Flip auto-refresh and return the new state."""
        self.set_enabled(not self._enabled)
        return self._enabled

    def set_interval(self, seconds: float) -> None:
        self._interval = max(0.0, seconds)
        if self._enabled and self._interval > 0:
            self._arm()
        else:
            self._disarm()

    def close(self) -> None:
        """Stop the timer and abandon the running cycle. Later ticks and triggers are ignored."""
        self._closed = True
        self._disarm()
        self._cancel_in_flight(release=True)

    def _arm(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer_seq += 1
            seq = self._timer_seq
            timer = self._timer_factory(self._interval, lambda: self._on_timer(seq))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _disarm(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._timer_seq += 1

    def _on_timer(self, seq: int) -> None:
        # Timer thread: hand over to the UI thread
        self._marshaller.post(lambda: self._tick(seq))

    def _tick(self, seq: int) -> None:
        with self._lock:
            stale = seq != self._timer_seq
        if stale or self._closed or not self._enabled:
            return

        if self._interval > 0:
            self._arm()
        if self._flag.load() == 0:
            self.trigger()
        else:
            logger.debug("Skipping scheduled refresh, previous cycle still running")

    def _release(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._token = None
            self._flag.store(0)

    def _cancel_in_flight(self, release: bool) -> None:
        """
        Cancel the running cycle.

        Without ``release`` the flag stays held until the cycle calls
        ``done``, so no second cycle starts while the abandoned one still
        runs.
        """
        with self._lock:
            token = self._token
            if not release:
                if token is not None:
                    token.cancel()
                return
            self._token = None
            self._generation += 1
            self._flag.store(0)
        if token is not None:
            token.cancel()
