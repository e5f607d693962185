# pool.py

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

Job = Callable[[], None]

# marks the end of the queue for one worker
_STOP = object()


class PoolClosedError(RuntimeError):
    """Raised when a job is submitted after shutdown has begun."""


class WorkerPool:
    """
    Fixed number of worker threads serving one unbounded FIFO queue.

    Submitting never blocks and never drops a job, so concurrency is bounded
    by the worker count while waiting clients simply queue.
    """

    def __init__(self, size: int, name: str = "worker"):
        if size < 1:
            raise ValueError(f"Pool size must be at least 1, got {size}")

        self._size = size
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._in_flight = 0
        self._max_in_flight = 0

        self._threads: List[threading.Thread] = []
        for i in range(size):
            t = threading.Thread(
                target=self._worker_loop,
                name=f"{name}-{i}",
                daemon=True,
            )
            self._threads.append(t)
            t.start()

    @property
    def size(self) -> int:
        return self._size

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def max_in_flight(self) -> int:
        with self._lock:
            return self._max_in_flight

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, job: Job) -> None:
        with self._lock:
            if self._closed:
                raise PoolClosedError("Worker pool is shut down")
            self._queue.put(job)

    def shutdown(
        self,
        wait: bool = True,
        timeout: Optional[float] = None,
        cancel_pending: bool = False,
    ) -> List[Job]:
        """
        Stop accepting jobs and let the workers finish.

        Queued jobs still run unless ``cancel_pending`` is set, in which case
        they are taken off the queue and returned to the caller. ``timeout``
        bounds the total time spent joining workers.
        """
        abandoned: List[Job] = []
        with self._lock:
            if self._closed:
                return abandoned
            self._closed = True

            if cancel_pending:
                while True:
                    try:
                        job = self._queue.get_nowait()
                    except queue.Empty:
                        break
                    abandoned.append(job)

            for _ in self._threads:
                self._queue.put(_STOP)

        if abandoned:
            logging.warning(f"Abandoned {len(abandoned)} queued job(s)")

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            for t in self._threads:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                t.join(timeout=remaining)

            alive = sum(1 for t in self._threads if t.is_alive())
            if alive:
                logging.warning(f"{alive} worker(s) still busy after {timeout}s drain timeout")

        return abandoned

    def _worker_loop(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                return

            with self._lock:
                self._in_flight += 1
                self._max_in_flight = max(self._max_in_flight, self._in_flight)
            try:
                job()
            except Exception:
                logging.exception(f"Job {job!r} failed in {threading.current_thread().name}")
            finally:
                with self._lock:
                    self._in_flight -= 1
