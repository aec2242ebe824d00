"""One supervised pool run: prepare, launch, mark ready, supervise."""

from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import uuid4

from fuzz_pool.ceiling import CeilingError, NullCeiling, ResourceCeiling
from fuzz_pool.corpus import CorpusPrepareError, CorpusStore
from fuzz_pool.engine import EngineSpec
from fuzz_pool.launcher import LaunchError, WorkerLauncher
from fuzz_pool.models import (
    OutcomeKind,
    OutcomeReason,
    PoolOutcome,
    PoolState,
    WorkerProcess,
)
from fuzz_pool.readiness import ReadinessError, ReadinessSignal
from fuzz_pool.sizing import WorkerPlan
from fuzz_pool.supervisor import Supervisor

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[PoolState | None, frozenset[PoolState]] = {
    None: frozenset({PoolState.PREPARING}),
    PoolState.PREPARING: frozenset(
        {PoolState.LAUNCHING, PoolState.FAILED, PoolState.CANCELLED},
    ),
    PoolState.LAUNCHING: frozenset({PoolState.READY, PoolState.FAILED, PoolState.CANCELLED}),
    PoolState.READY: frozenset({PoolState.FAILED, PoolState.CANCELLED}),
    PoolState.FAILED: frozenset(),
    PoolState.CANCELLED: frozenset(),
}


class PoolRun:
    """A single epoch of the worker pool. Never reused: a restart builds a new one."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        plan: WorkerPlan,
        corpus: CorpusStore,
        engine_spec: EngineSpec,
        launcher: WorkerLauncher,
        supervisor: Supervisor,
        readiness: ReadinessSignal,
        ceiling: ResourceCeiling | None = None,
        attempt: int = 1,
        run_id: str | None = None,
        on_state_change: Callable[[PoolRun, PoolState], None] | None = None,
        on_worker_spawned: Callable[[WorkerProcess], None] | None = None,
    ) -> None:
        self.plan = plan
        self.corpus = corpus
        self.engine_spec = engine_spec
        self.launcher = launcher
        self.supervisor = supervisor
        self.readiness = readiness
        self.ceiling = ceiling or NullCeiling()
        self.attempt = attempt
        self.run_id = run_id or uuid4().hex[:12]
        self.on_state_change = on_state_change
        self.on_worker_spawned = on_worker_spawned
        self.state: PoolState | None = None
        self.history: list[PoolState] = []
        self.workers: list[WorkerProcess] = []
        self.outcome: PoolOutcome | None = None

    def execute(self) -> PoolOutcome:
        """Drive the run to a terminal state and return its outcome."""

        if self.state is not None:
            raise RuntimeError(f"Pool run {self.run_id} was already executed.")

        try:
            outcome = self._execute()
        finally:
            self.supervisor.shutdown(self.workers)
            self.workers = []
            stale_marker = self._clear_readiness()
        if stale_marker is not None and not outcome.failed:
            outcome = self._failure(OutcomeReason.READINESS_ERROR, str(stale_marker))
        self.outcome = outcome
        self._transition(
            PoolState.CANCELLED if outcome.kind is OutcomeKind.CANCELLED else PoolState.FAILED,
        )
        logger.info(
            "Pool run %s attempt %d ended: %s",
            self.run_id,
            self.attempt,
            outcome.describe(),
        )
        return outcome

    def _execute(self) -> PoolOutcome:
        stale_marker = self._clear_readiness()
        self._transition(PoolState.PREPARING)
        if stale_marker is not None:
            return self._failure(OutcomeReason.READINESS_ERROR, str(stale_marker))
        try:
            paths = self.corpus.prepare()
        except CorpusPrepareError as error:
            logger.error("Pool run %s: corpus preparation failed: %s", self.run_id, error)
            return self._failure(OutcomeReason.CORPUS_IO_ERROR, str(error))
        if self.supervisor.cancel_requested():
            return self._cancelled()

        self._transition(PoolState.LAUNCHING)
        try:
            self.workers = self.launcher.launch(
                self.plan,
                paths,
                self.engine_spec,
                on_spawned=self.on_worker_spawned,
                cancel_requested=self.supervisor.cancel_requested,
            )
        except LaunchError as error:
            logger.error("Pool run %s: launch failed: %s", self.run_id, error)
            return self._failure(
                OutcomeReason.LAUNCH_ERROR,
                str(error),
                first_exited_index=error.index,
            )
        if self.supervisor.cancel_requested() or len(self.workers) < self.plan.worker_count:
            self.supervisor.shutdown(self.workers)
            return self._cancelled()

        try:
            self.ceiling.apply(
                memory_ceiling_mb=self.plan.memory_ceiling_mb,
                pids=[worker.pid for worker in self.workers],
            )
        except CeilingError as error:
            logger.error("Pool run %s: %s", self.run_id, error)
            self.supervisor.shutdown(self.workers)
            return self._failure(OutcomeReason.CEILING_ERROR, str(error))

        try:
            self.readiness.mark_ready()
        except ReadinessError as error:
            logger.error("Pool run %s: %s", self.run_id, error)
            self.supervisor.shutdown(self.workers)
            return self._failure(OutcomeReason.READINESS_ERROR, str(error))
        self._transition(PoolState.READY)
        return self.supervisor.run(self.workers, run_id=self.run_id, attempt=self.attempt)

    def _clear_readiness(self) -> ReadinessError | None:
        try:
            self.readiness.clear()
        except ReadinessError as error:
            logger.error("Pool run %s: %s", self.run_id, error)
            return error
        return None

    def _failure(
        self,
        reason: OutcomeReason,
        error_summary: str,
        *,
        first_exited_index: int | None = None,
    ) -> PoolOutcome:
        return PoolOutcome(
            kind=OutcomeKind.FAILED,
            reason=reason,
            first_exited_index=first_exited_index,
            run_id=self.run_id,
            attempt=self.attempt,
            error_summary=error_summary,
        )

    def _cancelled(self) -> PoolOutcome:
        return PoolOutcome(
            kind=OutcomeKind.CANCELLED,
            reason=OutcomeReason.CANCELLED_BY_OPERATOR,
            run_id=self.run_id,
            attempt=self.attempt,
        )

    def _transition(self, new_state: PoolState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid pool state transition {self.state} -> {new_state.value} "
                f"for run {self.run_id}",
            )
        previous = self.state
        self.state = new_state
        self.history.append(new_state)
        logger.info(
            "Pool run %s attempt %d: %s -> %s",
            self.run_id,
            self.attempt,
            previous.value if previous is not None else "new",
            new_state.value,
        )
        if self.on_state_change is not None:
            self.on_state_change(self, new_state)
