"""UI thread marshaller.

Every mutation of UI state is expressed as a closure posted here. The UI
thread drains the queue; nothing else touches widgets.
"""

import logging
import threading
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class Marshaller:
    """
    Single-threaded cooperative FIFO of closures.

    ``post`` may be called from any thread, including the UI thread itself,
    in which case the closure runs on the next ``drain`` rather than inline.
    """

    def __init__(self) -> None:
        self._queue: deque[Callable[[], None]] = deque()
        self._lock = threading.Lock()
        self._ui_thread_id: int | None = None
        self._closed = False

    def bind(self) -> None:
        """Record the calling thread as the UI thread."""
        self._ui_thread_id = threading.get_ident()

    def is_ui_thread(self) -> bool:
        return self._ui_thread_id is not None and threading.get_ident() == self._ui_thread_id

    def assert_ui_thread(self) -> None:
        if not self.is_ui_thread():
            raise RuntimeError("This function must be called from the UI thread")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, fn: Callable[[], None]) -> None:
        """Queue ``fn`` for execution on the UI thread."""
        with self._lock:
            if self._closed:
                return
            self._queue.append(fn)

    def drain(self) -> int:
        """
        Run the closures queued so far, in order.

        Closures posted while draining wait for the next turn. Returns the
        number of closures executed.
        """
        if self._ui_thread_id is None:
            self.bind()
        self.assert_ui_thread()

        with self._lock:
            batch = list(self._queue)
            self._queue.clear()

        for fn in batch:
            try:
                fn()
            except Exception:
                logger.exception("UI closure %r failed", fn)
        return len(batch)

    def close(self) -> None:
        """Discard queued closures and ignore later posts."""
        with self._lock:
            self._closed = True
            self._queue.clear()
