"""
=============================================================================
DEFERRED CALLBACKS
=============================================================================

The final handler must report errors WITHOUT running the reporter inside
its own call. A reporter that raised, blocked, or touched the response
while we are still deciding what to send would corrupt the response.

So reporting is a task handed to a queue:

    handler(err)                         worker
    ─────────────                        ──────
    resolve status
    scheduler.defer(onerror, ...)  ──►   queue ──► onerror(err, req, res)
    render body                            ▲
    write response                         │
    return                                 └── runs on its own turn,
                                               never inside handler(err)

=============================================================================
TWO MODES
=============================================================================

    threaded=True   A daemon worker thread pulls tasks off a queue.Queue
                    (same producer/consumer shape as a thread pool with
                    one worker). This is the process-wide default.

    threaded=False  Tasks pile up until run_pending() is called. Useful
                    when the caller owns its own loop, and in tests that
                    need to see "not yet called" deterministically.

=============================================================================
"""

import logging
import queue
import threading
from typing import Any, Callable, Optional, Tuple


logger = logging.getLogger(__name__)

Task = Tuple[Callable[..., Any], tuple]


class CallbackScheduler:
    """
    FIFO queue of callbacks that run after the current call returns.

    Example:
        scheduler = CallbackScheduler()
        scheduler.defer(print, "later")
        scheduler.join()            # wait until "later" was printed
    """

    def __init__(self, threaded: bool = True, name: str = "finalhandler-deferred"):
        self.threaded = threaded
        self.name = name
        self._queue: "queue.Queue[Optional[Task]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def defer(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue `callback(*args)` to run on a later turn."""
        self._queue.put((callback, args))

        if self.threaded:
            self._ensure_worker()

    def run_pending(self) -> int:
        """
        Run every callback queued so far on the calling thread.

        Callbacks deferred while draining run in the same call.

        Returns:
            Number of callbacks executed.
        """
        executed = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return executed

            try:
                if task is not None:
                    self._execute(task)
                    executed += 1
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every queued callback has finished."""
        if self.threaded:
            self._queue.join()
        else:
            self.run_pending()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the worker thread after it drains the queue."""
        with self._lock:
            worker = self._worker
            self._worker = None

        if worker is not None:
            self._queue.put(None)
            worker.join(timeout)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._worker_loop,
                name=self.name,
                daemon=True,
            )
            self._worker.start()

    def _worker_loop(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is None:
                    return
                self._execute(task)
            finally:
                self._queue.task_done()

    def _execute(self, task: Task) -> None:
        callback, args = task
        try:
            callback(*args)
        except Exception as e:
            # One failing reporter must not take the queue down with it
            logger.exception(f"Deferred callback {callback!r} failed: {e}")


_default_scheduler: Optional[CallbackScheduler] = None
_default_lock = threading.Lock()


def default_scheduler() -> CallbackScheduler:
    """The process-wide threaded scheduler, created on first use."""
    global _default_scheduler
    with _default_lock:
        if _default_scheduler is None:
            _default_scheduler = CallbackScheduler()
        return _default_scheduler
