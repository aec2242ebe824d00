"""Supervises a worker pool as one failure unit."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

from fuzz_pool.logsink import LogSink
from fuzz_pool.models import OutcomeKind, OutcomeReason, PoolOutcome, WorkerProcess
from fuzz_pool.termination import terminate_workers

logger = logging.getLogger(__name__)

_LOG_TAIL_BYTES = 2_048


class Supervisor:
    """Waits for the first worker exit or a cancellation request, whichever comes first.

    A single worker exit ends the whole pool: the survivors are terminated and
    exactly one ``failed`` outcome is reported. There is no per-worker respawn.
    """

    def __init__(
        self,
        *,
        poll_interval_seconds: float = 0.1,
        grace_period_seconds: float = 10.0,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        self.poll_interval_seconds = poll_interval_seconds
        self.grace_period_seconds = grace_period_seconds
        self._should_stop = should_stop
        self._cancel = threading.Event()

    def request_cancel(self) -> None:
        """Ask the running supervision loop to stop. Safe from signal handlers and threads."""

        self._cancel.set()

    def cancel_requested(self) -> bool:
        if self._cancel.is_set():
            return True
        return self._should_stop is not None and self._should_stop()

    def run(
        self,
        workers: Sequence[WorkerProcess],
        *,
        run_id: str | None = None,
        attempt: int | None = None,
    ) -> PoolOutcome:
        """Block until the pool ends and return its single terminal outcome."""

        if not workers:
            raise ValueError("Supervisor requires at least one worker.")

        while True:
            if self.cancel_requested():
                logger.info("Cancellation requested, stopping %d workers", len(workers))
                self.shutdown(workers)
                return PoolOutcome(
                    kind=OutcomeKind.CANCELLED,
                    reason=OutcomeReason.CANCELLED_BY_OPERATOR,
                    run_id=run_id,
                    attempt=attempt,
                )

            exited = [worker for worker in workers if worker.poll() is not None]
            if exited:
                first = min(exited, key=lambda worker: worker.index)
                last_line = _last_log_line(first)
                logger.warning(
                    "Worker %d (pid=%d) exited with code %s; failing pool (log: %s, last line: %s)",
                    first.index,
                    first.pid,
                    first.exit_code,
                    first.log_path,
                    last_line or "<empty>",
                )
                self.shutdown(workers)
                return PoolOutcome(
                    kind=OutcomeKind.FAILED,
                    reason=OutcomeReason.WORKER_EXITED,
                    first_exited_index=first.index,
                    exit_code=first.exit_code,
                    run_id=run_id,
                    attempt=attempt,
                    error_summary=last_line,
                )

            self._cancel.wait(self.poll_interval_seconds)

    def shutdown(self, workers: Sequence[WorkerProcess]) -> list[int]:
        """Terminate every live worker. Idempotent."""

        forced = terminate_workers(workers, grace_period_seconds=self.grace_period_seconds)
        if forced:
            logger.warning("Force-killed workers after grace period: %s", forced)
        return forced


def _last_log_line(worker: WorkerProcess) -> str | None:
    tail = LogSink(worker.log_path.parent).tail(worker.index, max_bytes=_LOG_TAIL_BYTES)
    lines = [line.strip() for line in tail.splitlines() if line.strip()]
    return lines[-1] if lines else None
