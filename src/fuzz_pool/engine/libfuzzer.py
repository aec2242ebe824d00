"""libFuzzer command-line contract."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values

from fuzz_pool.corpus import CorpusPaths
from fuzz_pool.engine.base import EngineSpec, WorkerCommand
from fuzz_pool.sizing import WorkerPlan

RSS_ENV_VAR = "RSS_MB"
WORKER_INDEX_ENV_VAR = "FUZZ_POOL_WORKER_INDEX"


class LibFuzzerEngine:
    """Builds libFuzzer worker commands sharing one corpus and merge-control file."""

    def build_command(
        self,
        *,
        spec: EngineSpec,
        plan: WorkerPlan,
        paths: CorpusPaths,
        index: int,
    ) -> WorkerCommand:
        return WorkerCommand(
            argv=build_worker_args(spec=spec, plan=plan, paths=paths),
            env=build_worker_env(spec=spec, plan=plan, index=index),
            cwd=paths.corpus_dir,
        )


def build_worker_args(*, spec: EngineSpec, plan: WorkerPlan, paths: CorpusPaths) -> list[str]:
    return [
        str(spec.binary),
        "-use_value_profile=1",
        "-entropic=1",
        "-reload=1",
        f"-merge_control_file={paths.merge_control_file}",
        f"-max_len={spec.max_len}",
        f"-rss_limit_mb={plan.per_worker_rss_limit_mb}",
        f"-artifact_prefix={paths.artifact_prefix}",
        "-print_final_stats=1",
        str(paths.corpus_dir),
    ]


def build_worker_env(
    *,
    spec: EngineSpec,
    plan: WorkerPlan,
    index: int,
    base_env: dict[str, str] | None = None,
) -> dict[str, str]:
    """Layer the toolchain env file, preload libraries and RSS override onto ``base_env``."""

    env = dict(os.environ if base_env is None else base_env)
    if spec.env_file is not None:
        env.update(load_env_file(spec.env_file))
    env.update(spec.extra_env)
    if spec.preload_libraries:
        env["LD_PRELOAD"] = ":".join(str(path) for path in spec.preload_libraries)
    env[RSS_ENV_VAR] = str(plan.per_worker_rss_limit_mb)
    env[WORKER_INDEX_ENV_VAR] = str(index)
    return env


def load_env_file(path: Path) -> dict[str, str]:
    """Read a ``KEY=VALUE`` toolchain environment file, skipping valueless keys."""

    return {key: value for key, value in dotenv_values(path).items() if value is not None}
