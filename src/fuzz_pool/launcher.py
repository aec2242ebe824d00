"""Spawns the worker processes of one pool run."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from datetime import UTC, datetime

from fuzz_pool.corpus import CorpusPaths
from fuzz_pool.engine import EngineSpec, FuzzEngine, LibFuzzerEngine
from fuzz_pool.logsink import LogSink
from fuzz_pool.models import WorkerProcess
from fuzz_pool.sizing import WorkerPlan
from fuzz_pool.termination import terminate_workers

logger = logging.getLogger(__name__)


class LaunchError(RuntimeError):
    """A worker could not be spawned. The whole pool is abandoned."""

    def __init__(self, message: str, *, index: int) -> None:
        super().__init__(message)
        self.index = index
        self.retryable = True


class WorkerLauncher:
    """Start every worker of a plan at once, each logging to its own file."""

    def __init__(
        self,
        *,
        engine: FuzzEngine | None = None,
        grace_period_seconds: float = 2.0,
    ) -> None:
        self.engine = engine or LibFuzzerEngine()
        self.grace_period_seconds = grace_period_seconds

    def launch(
        self,
        plan: WorkerPlan,
        paths: CorpusPaths,
        spec: EngineSpec,
        *,
        on_spawned: Callable[[WorkerProcess], None] | None = None,
        cancel_requested: Callable[[], bool] | None = None,
    ) -> list[WorkerProcess]:
        """Spawn ``plan.worker_count`` workers.

        Raises:
            LaunchError: if any single spawn fails; workers already started are
                terminated before raising.
        """

        sink = LogSink(paths.logs_dir)
        workers: list[WorkerProcess] = []
        logger.info("Starting %d fuzz workers (auto-calculated)", plan.worker_count)

        try:
            for index in range(plan.worker_count):
                if cancel_requested is not None and cancel_requested():
                    logger.info(
                        "Launch interrupted after %d of %d workers",
                        index,
                        plan.worker_count,
                    )
                    break
                worker = self._spawn(index, plan=plan, paths=paths, spec=spec, sink=sink)
                workers.append(worker)
                logger.debug("Worker %d spawned pid=%d log=%s", index, worker.pid, worker.log_path)
                if on_spawned is not None:
                    on_spawned(worker)
        except BaseException:
            terminate_workers(workers, grace_period_seconds=self.grace_period_seconds)
            raise

        if len(workers) == plan.worker_count:
            logger.info("Fuzzers launched: %d workers", len(workers))
        return workers

    def _spawn(
        self,
        index: int,
        *,
        plan: WorkerPlan,
        paths: CorpusPaths,
        spec: EngineSpec,
        sink: LogSink,
    ) -> WorkerProcess:
        try:
            command = self.engine.build_command(spec=spec, plan=plan, paths=paths, index=index)
            with sink.open_for(index) as log_handle:
                process = subprocess.Popen(  # noqa: S603
                    command.argv,
                    cwd=command.cwd,
                    env=command.env,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except (OSError, ValueError) as error:
            raise LaunchError(
                f"Worker {index} failed to start {spec.binary}: {error}",
                index=index,
            ) from error

        return WorkerProcess(
            index=index,
            pid=process.pid,
            log_path=sink.path_for(index),
            started_at=datetime.now(tz=UTC),
            popen=process,
        )
