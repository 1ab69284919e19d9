from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, asdict
from typing import Any, Callable, Optional


class SchedulerState(enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"


@dataclass
class SchedulerStats:
    submitted: int = 0
    admitted: int = 0
    dropped: int = 0
    completed: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class SingleFlightScheduler:
    """
    Run at most one handler pass at a time and drop whatever arrives meanwhile.

    ``submit`` is called from the producer (e.g. a camera callback) and never
    blocks: it either claims the single slot and hands the work to the worker
    thread, or returns False. ``on_result`` runs on a separate consumer thread
    so slow consumers never hold up the worker.
    """

    def __init__(
        self,
        handler: Callable[..., Any],
        on_result: Optional[Callable[[Any], None]] = None,
        logger: Optional[logging.Logger] = None,
        name: str = "marker",
    ):
        self.handler = handler
        self.on_result = on_result
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._busy = False
        self._idle = threading.Event()
        self._idle.set()
        self._closed = False
        self._stats = SchedulerStats()

        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{name}-worker")
        self._consumer = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{name}-publish")

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return SchedulerState.PROCESSING if self._busy else SchedulerState.IDLE

    @property
    def stats(self) -> SchedulerStats:
        with self._lock:
            return SchedulerStats(**self._stats.as_dict())

    def submit(self, *args: Any, **kwargs: Any) -> bool:
        with self._lock:
            self._stats.submitted += 1
            if self._busy or self._closed:
                self._stats.dropped += 1
                return False
            self._busy = True
            self._idle.clear()
            self._stats.admitted += 1

        try:
            self._worker.submit(self._run, args, kwargs)
        except RuntimeError:
            # executor shut down between the check and the hand-off
            self._release(completed=False)
            return False
        return True

    def run_exclusive(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run ``fn`` on the worker thread, serialized with handler passes."""
        return self._worker.submit(fn, *args).result()

    def _run(self, args: tuple, kwargs: dict) -> None:
        ok = False
        try:
            result = self.handler(*args, **kwargs)
            ok = True
            if self.on_result is not None:
                self._consumer.submit(self._deliver, result)
        except Exception:
            self.logger.exception("worker pass failed")
        finally:
            self._release(completed=ok)

    def _deliver(self, result: Any) -> None:
        try:
            self.on_result(result)
        except Exception:
            self.logger.exception("result delivery failed")

    def _release(self, completed: bool) -> None:
        with self._lock:
            if completed:
                self._stats.completed += 1
            else:
                self._stats.failed += 1
            self._busy = False
            self._idle.set()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current pass (if any) finished and its result was
        delivered. Returns False if that did not happen within ``timeout``.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        if not self._idle.wait(timeout):
            return False
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        # drain the consumer queue behind the last delivery
        try:
            self._consumer.submit(lambda: None).result(remaining)
        except FutureTimeoutError:
            return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._worker.shutdown(wait=wait)
        self._consumer.shutdown(wait=wait)

    def __enter__(self) -> "SingleFlightScheduler":
        return self

    def __exit__(self, *_exc) -> None:
        self.shutdown(wait=True)
