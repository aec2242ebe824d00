"""Outer control loop that restarts the whole pool after every failure."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from fuzz_pool.ceiling import ResourceCeiling
from fuzz_pool.corpus import CorpusStore
from fuzz_pool.engine import EngineSpec
from fuzz_pool.launcher import WorkerLauncher
from fuzz_pool.models import PoolOutcome, PoolState
from fuzz_pool.pool import PoolRun
from fuzz_pool.readiness import ReadinessSignal
from fuzz_pool.sizing import WorkerPlan
from fuzz_pool.supervisor import Supervisor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RestartPolicy:
    """Backoff between pool runs. ``max_restarts=0`` restarts forever."""

    backoff_seconds: float = 2.0
    backoff_max_seconds: float = 60.0
    mode: str = "fixed"
    max_restarts: int = 0

    def delay_for(self, consecutive_failures: int) -> float:
        if self.mode == "exponential":
            exponent = max(0, consecutive_failures - 1)
            return min(self.backoff_max_seconds, self.backoff_seconds * (2**exponent))
        return self.backoff_seconds

    def exhausted(self, restarts: int) -> bool:
        return self.max_restarts > 0 and restarts >= self.max_restarts


@dataclass(slots=True)
class RestartSummary:
    """Aggregate counters across all pool runs of one loop."""

    runs: int = 0
    failures: int = 0
    restarts: int = 0
    cancelled: bool = False
    exhausted: bool = False
    outcomes: list[PoolOutcome] = field(default_factory=list)

    @property
    def last_outcome(self) -> PoolOutcome | None:
        return self.outcomes[-1] if self.outcomes else None


class RestartLoop:
    """Owns pool run lifecycles: each failure ends the run, a backoff, then a fresh run."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        plan: WorkerPlan,
        corpus: CorpusStore,
        engine_spec: EngineSpec,
        readiness: ReadinessSignal,
        ceiling: ResourceCeiling,
        policy: RestartPolicy,
        launcher: WorkerLauncher | None = None,
        poll_interval_seconds: float = 0.1,
        grace_period_seconds: float = 10.0,
        on_outcome: Callable[[PoolOutcome], None] | None = None,
    ) -> None:
        self.plan = plan
        self.corpus = corpus
        self.engine_spec = engine_spec
        self.readiness = readiness
        self.ceiling = ceiling
        self.policy = policy
        self.launcher = launcher or WorkerLauncher(grace_period_seconds=grace_period_seconds)
        self.poll_interval_seconds = poll_interval_seconds
        self.grace_period_seconds = grace_period_seconds
        self.on_outcome = on_outcome
        self._stop_requested = False
        self._stop_signal_name: str | None = None
        self._supervisor: Supervisor | None = None

    def run(self) -> RestartSummary:
        """Run pool after pool until cancelled or the restart budget is spent."""

        summary = RestartSummary()
        consecutive_failures = 0
        with self._signal_handlers():
            while not self._stop_requested:
                summary.runs += 1
                outcome, pool_run = self._run_pool(attempt=summary.runs)
                summary.outcomes.append(outcome)
                if self.on_outcome is not None:
                    self.on_outcome(outcome)

                if outcome.cancelled or self._stop_requested:
                    summary.cancelled = True
                    return summary

                summary.failures += 1
                if PoolState.READY in pool_run.history:
                    consecutive_failures = 0
                consecutive_failures += 1
                if self.policy.exhausted(summary.restarts):
                    logger.error(
                        "Pool failed %d time(s); restart budget of %d exhausted",
                        summary.failures,
                        self.policy.max_restarts,
                    )
                    summary.exhausted = True
                    return summary

                delay = self.policy.delay_for(consecutive_failures)
                logger.warning(
                    "Pool run attempt %d failed (%s); restarting in %.1fs",
                    summary.runs,
                    outcome.describe(),
                    delay,
                )
                self._sleep_with_stop(delay)
                if self._stop_requested:
                    summary.cancelled = True
                    return summary
                summary.restarts += 1
        summary.cancelled = True
        return summary

    def request_stop(self, *, signal_name: str = "api") -> None:
        """Cancel the current pool run and stop restarting. Idempotent."""

        if not self._stop_requested:
            logger.info("Stop requested (%s)", signal_name)
        self._stop_requested = True
        self._stop_signal_name = signal_name
        if self._supervisor is not None:
            self._supervisor.request_cancel()

    def _run_pool(self, *, attempt: int) -> tuple[PoolOutcome, PoolRun]:
        supervisor = Supervisor(
            poll_interval_seconds=self.poll_interval_seconds,
            grace_period_seconds=self.grace_period_seconds,
            should_stop=lambda: self._stop_requested,
        )
        self._supervisor = supervisor
        try:
            pool_run = PoolRun(
                plan=self.plan,
                corpus=self.corpus,
                engine_spec=self.engine_spec,
                launcher=self.launcher,
                supervisor=supervisor,
                readiness=self.readiness,
                ceiling=self.ceiling,
                attempt=attempt,
            )
            return pool_run.execute(), pool_run
        finally:
            self._supervisor = None

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return

        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
