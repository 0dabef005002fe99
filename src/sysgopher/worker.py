"""Background worker pool for sysgopher.

Sampling runs here, off the UI thread. Progress and completion callbacks are
never invoked on a worker: they are posted to the UI thread marshaller.
"""

import itertools
import logging
import threading
import time
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from queue import Empty, Full, Queue
from typing import Any, Callable, Iterable, TypeVar

from sysgopher.errors import TaskCancelled
from sysgopher.sync import AtomicFlag
from sysgopher.uithread import Marshaller

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressFn = Callable[[int, str], None]
CompleteFn = Callable[[Any, BaseException | None], None]


class TaskStatus(Enum):
    """Lifecycle of a background task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class CancellationToken:
    """Cooperative cancellation signal checked by running tasks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelled()

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds, returning True early if cancelled."""
        return self._event.wait(timeout)


TaskFn = Callable[[CancellationToken, ProgressFn], Any]


@dataclass(eq=False)
class Task:
    """A unit of work queued on the pool."""

    id: str
    fn: TaskFn
    on_complete: CompleteFn | None = None
    on_progress: ProgressFn | None = None
    on_cancelled: Callable[[], None] | None = None
    channel: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: BaseException | None = None
    _last_progress: float = float("-inf")
    _progress_lock: threading.Lock = field(default_factory=threading.Lock)

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def done(self) -> bool:
        return self.status in FINAL_STATUSES


class WorkerPool:
    """
    Fixed set of worker threads consuming a bounded task queue.

    Completions of tasks that share a ``channel`` reach the marshaller in
    submission order even when a later task finishes first.
    """

    def __init__(
        self,
        marshaller: Marshaller,
        workers: int = 2,
        probe_concurrency: int = 10,
        queue_size: int = 100,
        progress_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the WorkerPool.

        Args:
            marshaller: Where completions and progress updates are posted.
            workers: Number of worker threads. Default 2.
            probe_concurrency: Per-task bound for ``fan_out``. Default 10.
            queue_size: Capacity of the pending task queue.
            progress_interval: Minimum seconds between progress posts per task.
            clock: Monotonic time source, replaceable in tests.
        """
        self._marshaller = marshaller
        self._worker_count = max(1, workers)
        self._probe_concurrency = max(1, probe_concurrency)
        self._progress_interval = progress_interval
        self._clock = clock
        self._queue: Queue[Task] = Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._running = AtomicFlag(0)
        self._threads: list[threading.Thread] = []
        self._ids = itertools.count(1)
        self._order_lock = threading.Lock()
        self._channels: defaultdict[str, deque[Task]] = defaultdict(deque)
        self._live: set[Task] = set()
        self._live_lock = threading.Lock()
        self._active = 0
        self._active_lock = threading.Lock()
        self._probe_executor: ThreadPoolExecutor | None = None

    @property
    def is_running(self) -> bool:
        return self._running.load() == 1

    @property
    def active_workers(self) -> int:
        """Number of workers currently executing a task."""
        with self._active_lock:
            return self._active

    @property
    def probe_concurrency(self) -> int:
        return self._probe_concurrency

    def start(self) -> None:
        """Start the worker threads."""
        if not self._running.compare_and_swap(0, 1):
            return

        self._stop_event.clear()
        self._probe_executor = ThreadPoolExecutor(
            max_workers=self._probe_concurrency * self._worker_count,
            thread_name_prefix="Probe",
        )
        self._threads = [
            threading.Thread(target=self._work_loop, daemon=True, name=f"Worker-{i}")
            for i in range(self._worker_count)
        ]
        for thread in self._threads:
            thread.start()

    def submit(
        self,
        task_id: str | None,
        fn: TaskFn,
        on_complete: CompleteFn | None = None,
        on_progress: ProgressFn | None = None,
        channel: str | None = None,
        token: CancellationToken | None = None,
        on_cancelled: Callable[[], None] | None = None,
    ) -> Task:
        """
        Queue ``fn(token, progress)`` for background execution.

        Pass ``token`` to share cancellation with the caller. Returns the
        Task, whose ``cancel`` stops it cooperatively. A cancelled task gets
        ``on_cancelled`` on the UI thread once it has stopped, instead of
        ``on_complete``.
        """
        task = Task(
            id=task_id or f"task-{next(self._ids)}",
            fn=fn,
            on_complete=on_complete,
            on_progress=on_progress,
            on_cancelled=on_cancelled,
            token=token or CancellationToken(),
            channel=channel,
        )

        if not self.is_running:
            self._fail_unqueued(task, RuntimeError("worker is not running"))
            return task

        with self._order_lock:
            if channel is not None:
                self._channels[channel].append(task)
        with self._live_lock:
            self._live.add(task)

        try:
            self._queue.put(task, timeout=0.1)
        except Full:
            logger.warning("Work queue is full, rejecting task %s", task.id)
            task.error = RuntimeError("work queue is full")
            task.status = TaskStatus.FAILED
            self._finish(task)
        return task

    def fan_out(
        self,
        fn: Callable[[T], R | None],
        items: Iterable[T],
        token: CancellationToken | None = None,
    ) -> list[R]:
        """
        Run ``fn`` over ``items`` with at most ``probe_concurrency`` in flight.

        Results keep the order of ``items``; ``None`` results are dropped.
        Raises TaskCancelled if ``token`` is cancelled before all items ran.
        """
        items = list(items)
        executor = self._probe_executor
        if executor is None:
            raise RuntimeError("worker is not running")

        results: list[R | None] = [None] * len(items)
        results_lock = threading.Lock()
        gate = threading.BoundedSemaphore(self._probe_concurrency)

        def run(index: int, item: T) -> None:
            try:
                if token is not None and token.cancelled:
                    return
                value = fn(item)
                with results_lock:
                    results[index] = value
            finally:
                gate.release()

        futures = []
        for index, item in enumerate(items):
            if token is not None and token.cancelled:
                break
            gate.acquire()
            try:
                futures.append(executor.submit(run, index, item))
            except RuntimeError:
                gate.release()
                raise
        wait(futures)

        for future in futures:
            future.result()
        if token is not None:
            token.raise_if_cancelled()
        return [value for value in results if value is not None]

    def shutdown(self, timeout: float = 5.0) -> bool:
        """
        Stop accepting tasks, cancel everything in flight, and wait.

        Args:
            timeout: Grace window for workers to exit (seconds).

        Returns:
            True if every worker exited within ``timeout``.
        """
        if not self._running.compare_and_swap(1, 0):
            return True

        self._stop_event.set()
        with self._live_lock:
            live = list(self._live)
        for task in live:
            task.cancel()

        while True:
            try:
                task = self._queue.get_nowait()
            except Empty:
                break
            task.status = TaskStatus.CANCELLED
            self._finish(task)

        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))

        if self._probe_executor is not None:
            self._probe_executor.shutdown(wait=False, cancel_futures=True)

        if any(thread.is_alive() for thread in self._threads):
            logger.warning("Not all background tasks completed within %.1fs", timeout)
            return False
        self._threads = []
        return True

    def _work_loop(self) -> None:
        """Main loop of each worker thread."""
        while not self._stop_event.is_set():
            try:
                task = self._queue.get(timeout=0.1)
            except Empty:
                continue

            with self._active_lock:
                self._active += 1
            try:
                self._run(task)
            except Exception:
                # Keep the worker alive whatever a callback did
                logger.exception("Worker failed while handling task %s", task.id)
            finally:
                with self._active_lock:
                    self._active -= 1

    def _run(self, task: Task) -> None:
        if task.token.cancelled:
            task.status = TaskStatus.CANCELLED
            self._finish(task)
            return

        task.status = TaskStatus.RUNNING
        logger.debug("Task %s started", task.id)

        def progress(percent: int, message: str) -> None:
            self._report_progress(task, percent, message)

        try:
            result = task.fn(task.token, progress)
        except TaskCancelled:
            task.status = TaskStatus.CANCELLED
        except Exception as exc:
            logger.exception("Task %s failed", task.id)
            task.error = exc
            task.status = TaskStatus.FAILED
        else:
            task.result = result
            task.status = TaskStatus.CANCELLED if task.token.cancelled else TaskStatus.COMPLETED

        logger.debug("Task %s finished: %s", task.id, task.status.value)
        self._finish(task)

    def _report_progress(self, task: Task, percent: int, message: str) -> None:
        if task.on_progress is None or task.token.cancelled:
            return

        now = self._clock()
        with task._progress_lock:
            if now - task._last_progress < self._progress_interval:
                return
            task._last_progress = now

        on_progress = task.on_progress

        def deliver() -> None:
            if not task.token.cancelled:
                on_progress(percent, message)

        self._marshaller.post(deliver)

    def _finish(self, task: Task) -> None:
        with self._live_lock:
            self._live.discard(task)

        # Posting under the lock keeps channel order intact across workers
        with self._order_lock:
            if task.channel is None:
                ready = [task]
            else:
                pending = self._channels[task.channel]
                ready = []
                while pending and pending[0].done:
                    ready.append(pending.popleft())
                if not pending:
                    del self._channels[task.channel]
            for done in ready:
                self._post_completion(done)

    def _fail_unqueued(self, task: Task, error: BaseException) -> None:
        task.error = error
        task.status = TaskStatus.FAILED
        self._post_completion(task)

    def _post_completion(self, task: Task) -> None:
        on_complete, on_cancelled = task.on_complete, task.on_cancelled
        if on_complete is None and on_cancelled is None:
            return

        result, error = task.result, task.error

        def deliver() -> None:
            # The token may be cancelled while this closure is queued
            if task.status is TaskStatus.CANCELLED or task.token.cancelled:
                if on_cancelled is not None:
                    on_cancelled()
            elif on_complete is not None:
                on_complete(result, error)

        self._marshaller.post(deliver)
