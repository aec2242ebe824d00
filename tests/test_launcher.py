from __future__ import annotations

from pathlib import Path

import allure
import pytest

from fuzz_pool.corpus import CorpusPaths, CorpusStore
from fuzz_pool.engine import EngineSpec, LibFuzzerEngine, WorkerCommand
from fuzz_pool.launcher import LaunchError, WorkerLauncher
from fuzz_pool.models import WorkerProcess
from fuzz_pool.termination import terminate_workers
from tests.helpers import make_plan, wait_for_log_text

pytestmark = [
    allure.epic("Worker Launch"),
    allure.feature("Pool Spawn"),
]


def test_launch_spawns_one_worker_per_plan_slot(
    corpus_paths: CorpusPaths,
    engine_spec: EngineSpec,
) -> None:
    CorpusStore(corpus_paths).prepare()
    spawned: list[int] = []
    workers = WorkerLauncher().launch(
        make_plan(3, rss_limit_mb=512),
        corpus_paths,
        engine_spec,
        on_spawned=lambda worker: spawned.append(worker.index),
    )
    try:
        assert [worker.index for worker in workers] == [0, 1, 2]
        assert spawned == [0, 1, 2]
        assert len({worker.pid for worker in workers}) == 3
        assert all(worker.alive for worker in workers)

        log_names = sorted(path.name for path in corpus_paths.logs_dir.glob("fuzz-*.log"))
        assert log_names == ["fuzz-0.log", "fuzz-1.log", "fuzz-2.log"]

        for worker in workers:
            content = wait_for_log_text(worker.log_path, "fake engine worker=")
            assert f"worker={worker.index} " in content
            assert "rss_limit_mb=512 env_rss_mb=512" in content
            assert "max_len=64" in content
            assert f"corpus={corpus_paths.corpus_dir}" in content
    finally:
        terminate_workers(workers, grace_period_seconds=2)

    assert all(worker.exit_code is not None for worker in workers)


def test_launch_fails_whole_pool_when_binary_missing(
    corpus_paths: CorpusPaths,
    tmp_path: Path,
) -> None:
    CorpusStore(corpus_paths).prepare()

    with pytest.raises(LaunchError, match="Worker 0 failed to start") as error:
        WorkerLauncher().launch(
            make_plan(2),
            corpus_paths,
            EngineSpec(binary=tmp_path / "does-not-exist"),
        )

    assert error.value.index == 0


def test_launch_fails_for_non_executable_binary(
    corpus_paths: CorpusPaths,
    tmp_path: Path,
) -> None:
    CorpusStore(corpus_paths).prepare()
    binary = tmp_path / "not-executable"
    binary.write_text("#!/bin/sh\nexit 0\n", "utf-8")
    binary.chmod(0o644)

    with pytest.raises(LaunchError):
        WorkerLauncher().launch(make_plan(1), corpus_paths, EngineSpec(binary=binary))


def test_launch_terminates_started_workers_on_later_failure(
    corpus_paths: CorpusPaths,
    engine_spec: EngineSpec,
) -> None:
    CorpusStore(corpus_paths).prepare()
    started: list[WorkerProcess] = []

    def _break_after_first(worker: WorkerProcess) -> None:
        started.append(worker)
        corpus_paths.corpus_dir.rename(corpus_paths.corpus_dir.with_name("moved"))

    with pytest.raises(LaunchError) as error:
        WorkerLauncher(grace_period_seconds=2).launch(
            make_plan(3),
            corpus_paths,
            engine_spec,
            on_spawned=_break_after_first,
        )

    assert error.value.index == 1
    assert len(started) == 1
    assert started[0].alive is False


class _EnvFileVanishesEngine(LibFuzzerEngine):
    def build_command(self, *, spec, plan, paths, index) -> WorkerCommand:
        if index == 1:
            raise PermissionError(f"[Errno 13] Permission denied: {spec.env_file}")
        return super().build_command(spec=spec, plan=plan, paths=paths, index=index)


def test_launch_terminates_started_workers_when_command_cannot_be_built(
    corpus_paths: CorpusPaths,
    engine_spec: EngineSpec,
) -> None:
    CorpusStore(corpus_paths).prepare()
    started: list[WorkerProcess] = []

    with pytest.raises(LaunchError, match="Worker 1 failed to start") as error:
        WorkerLauncher(engine=_EnvFileVanishesEngine(), grace_period_seconds=2).launch(
            make_plan(3),
            corpus_paths,
            engine_spec,
            on_spawned=started.append,
        )

    assert error.value.index == 1
    assert len(started) == 1
    assert started[0].alive is False


def test_launch_terminates_started_workers_when_callback_raises(
    corpus_paths: CorpusPaths,
    engine_spec: EngineSpec,
) -> None:
    CorpusStore(corpus_paths).prepare()
    started: list[WorkerProcess] = []

    def _explode(worker: WorkerProcess) -> None:
        started.append(worker)
        raise RuntimeError("observer failed")

    with pytest.raises(RuntimeError, match="observer failed"):
        WorkerLauncher(grace_period_seconds=2).launch(
            make_plan(2),
            corpus_paths,
            engine_spec,
            on_spawned=_explode,
        )

    assert len(started) == 1
    assert started[0].alive is False


def test_launch_stops_when_cancelled(corpus_paths: CorpusPaths, engine_spec: EngineSpec) -> None:
    CorpusStore(corpus_paths).prepare()
    workers: list[WorkerProcess] = []
    try:
        workers = WorkerLauncher().launch(
            make_plan(4),
            corpus_paths,
            engine_spec,
            cancel_requested=lambda: len(list(corpus_paths.logs_dir.glob("fuzz-*.log"))) >= 2,
        )
        assert [worker.index for worker in workers] == [0, 1]
    finally:
        terminate_workers(workers, grace_period_seconds=2)
