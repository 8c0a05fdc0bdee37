"""
=============================================================================
WORKER THREAD POOL
=============================================================================

Every accepted connection becomes one task. Workers pull tasks from a
bounded queue, so handler invocations for distinct connections run in
parallel while the number of threads stays capped.

    accept loop ──submit()──► [ queue (queue_size) ] ──get()──► Worker-0
                                                     ──get()──► Worker-1
                                                     ──get()──► ...

    min_workers threads start with the pool; one more is added whenever a
    task is queued while every worker is busy, up to max_workers.

Shutdown puts one ``None`` (poison pill) per worker on the queue and joins
the threads. The server drains its own connections before calling
shutdown(), so by then workers are normally idle.

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: ``func(*args)`` on some worker thread."""
    func: Callable[..., Any]
    args: tuple = ()
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """
    Worker thread that executes tasks until it receives a poison pill.

    Exceptions raised by a task are logged and swallowed so that one bad
    connection never takes a worker down with it.
    """

    def __init__(self, task_queue: queue.Queue, worker_id: int):
        super().__init__(name=f"wiredhttp-worker-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()
        try:
            task.func(*task.args)
            self.tasks_completed += 1
        except Exception as e:
            elapsed = time.time() - start_time
            logger.exception(f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}")
            self.tasks_failed += 1
        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Bounded thread pool with simple scale-up.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16, queue_size=100)
        pool.start()
        if not pool.submit(process_connection, args=(conn,)):
            ...  # queue full, reject with 503
        pool.shutdown(timeout=5.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_size = queue_size

        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue(maxsize=queue_size)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # Protects _workers
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    def start(self):
        """Start min_workers threads. A no-op if already started."""
        if self._started:
            return

        logger.debug(f"Starting thread pool with {self.min_workers} workers")
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()
        self._started = True

    def _add_worker(self) -> Worker:
        # Caller holds self._lock
        worker = Worker(task_queue=self._task_queue, worker_id=self._next_worker_id)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: tuple = ()) -> bool:
        """
        Queue ``func(*args)`` without blocking.

        Returns:
            True if queued, False if the queue is full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")
        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        try:
            self._task_queue.put(Task(func=func, args=args), block=False)
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """Add a worker when all are busy and work is waiting."""
        with self._lock:
            busy_count = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if busy_count == len(self._workers) and len(self._workers) < self.max_workers:
                if self._task_queue.qsize() > 0:
                    logger.debug(
                        f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                    )
                    self._add_worker()

    def shutdown(self, timeout: Optional[float] = None):
        """
        Stop all workers.

        Args:
            timeout: Total seconds to wait for workers to exit. Workers
                     still running afterwards are daemon threads and are
                     abandoned.
        """
        if not self._started or self._shutdown:
            return

        self._shutdown = True
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._lock:
            workers = list(self._workers)

        for _ in workers:
            # Blocking put: a full queue still drains as workers finish
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                self._task_queue.put(None, timeout=remaining)
            except queue.Full:
                logger.warning("Thread pool queue still full at shutdown deadline")
                break

        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(timeout=remaining)
            if worker.is_alive():
                logger.warning(f"Worker {worker.worker_id} did not exit before deadline")

        with self._lock:
            self._workers.clear()
        logger.debug("Thread pool shutdown complete")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def pending(self) -> int:
        """Tasks waiting for a worker."""
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        return {
            "workers": len(self._workers),
            "busy": self.busy_workers,
            "pending": self.pending,
            "completed": sum(w.tasks_completed for w in self._workers),
            "failed": sum(w.tasks_failed for w in self._workers),
        }
