"""Thread worker pool that runs one field extraction task per requested field."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from docconfidence.ai.types import FieldExtractionResult
from docconfidence.logging_config import get_logger

logger = get_logger(__name__)

FieldHandler = Callable[[str], FieldExtractionResult]

_POLL_INTERVAL = 5.0


@dataclass(frozen=True)
class FieldTask:
    idx: int
    field_name: str


def _resolve_worker_count(requested_workers: int, max_cap: Optional[int]) -> int:
    worker_count = requested_workers if requested_workers and requested_workers > 0 else 1
    if max_cap:
        worker_count = min(worker_count, max_cap)
    return max(1, worker_count)


def _worker_entry(handler: FieldHandler, task_queue: queue.Queue, result_queue: queue.Queue) -> None:
    while True:
        task = task_queue.get()
        if task is None:
            break
        try:
            result_queue.put((task.idx, handler(task.field_name), None))
        except Exception as exc:
            result_queue.put((task.idx, FieldExtractionResult.not_found(task.field_name), exc))


class FieldWorkerPool:
    """Fan-out pool; results are returned in submission order, not completion order."""

    def __init__(
        self,
        handler: FieldHandler,
        num_workers: int,
        max_workers: Optional[int] = 10,
        timeout: Optional[float] = None,
        shutdown_grace_period: float = 60,
    ):
        self.handler = handler
        self.num_workers = _resolve_worker_count(int(num_workers or 0), max_workers)
        self.timeout = timeout
        self.shutdown_grace_period = shutdown_grace_period
        self.task_queue: queue.Queue = queue.Queue()
        self.result_queue: queue.Queue = queue.Queue()
        self.workers: List[threading.Thread] = []
        self._start_workers()

    def _start_workers(self) -> None:
        for worker_idx in range(self.num_workers):
            thread = threading.Thread(
                target=_worker_entry,
                args=(self.handler, self.task_queue, self.result_queue),
                name=f"field-worker-{worker_idx}",
                daemon=True,
            )
            thread.start()
            self.workers.append(thread)
        logger.debug("Started %s field worker%s", self.num_workers, "" if self.num_workers == 1 else "s")

    def process(self, tasks: Sequence[FieldTask]) -> List[FieldExtractionResult]:
        if not tasks:
            return []
        for task in tasks:
            self.task_queue.put(task)

        results: Dict[int, FieldExtractionResult] = {}
        errors = 0
        deadline = time.monotonic() + self.timeout if self.timeout else None

        while len(results) < len(tasks):
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(
                        f"Field extraction timed out with {len(tasks) - len(results)} field(s) outstanding."
                    )
                wait = min(remaining, _POLL_INTERVAL)
            try:
                idx, result, error = self.result_queue.get(timeout=wait)
            except queue.Empty:
                continue
            if error is not None:
                errors += 1
                logger.warning("Field task %s (%s) failed: %s", idx, result.field_name, error)
            results[idx] = result

        if errors:
            logger.warning("Completed with %s field task error%s.", errors, "" if errors == 1 else "s")
        return [results[task.idx] for task in tasks]

    def shutdown(self) -> None:
        # Drop tasks that never started, then stop every worker.
        dropped = 0
        while True:
            try:
                self.task_queue.get_nowait()
                dropped += 1
            except queue.Empty:
                break
        if dropped:
            logger.warning("Discarded %s pending field task%s on shutdown.", dropped, "" if dropped == 1 else "s")
        for _ in self.workers:
            self.task_queue.put(None)

        deadline = time.monotonic() + max(0.0, float(self.shutdown_grace_period))
        stragglers = []
        for thread in self.workers:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                stragglers.append(thread.name)
        if stragglers:
            logger.warning(
                "Abandoned %s field worker%s still running after %ss grace period: %s",
                len(stragglers),
                "" if len(stragglers) == 1 else "s",
                self.shutdown_grace_period,
                ", ".join(stragglers),
            )
        self.workers.clear()

    def __enter__(self) -> "FieldWorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


__all__ = ["FieldTask", "FieldWorkerPool"]
