"""Controllers for fuzz-pool CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from fuzz_pool.ceiling import build_ceiling
from fuzz_pool.config import Settings
from fuzz_pool.corpus import CorpusPaths, CorpusStore
from fuzz_pool.engine import EngineSpec
from fuzz_pool.logsink import LogSink
from fuzz_pool.models import PoolOutcome
from fuzz_pool.readiness import ReadinessSignal
from fuzz_pool.restart import RestartLoop, RestartPolicy, RestartSummary
from fuzz_pool.sizing import (
    ResourceBudget,
    WorkerPlan,
    compute_plan,
    detect_total_memory_mb,
    swap_percent,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_POOL_FAILED = 1


@dataclass(slots=True)
class PlanCommand:
    """CLI input for plan computation."""

    total_memory_mb: int | None
    os_overhead_mb: int | None
    swap_fraction: float | None
    rss_limit_mb: int | None
    safety_margin_mb: int | None


@dataclass(slots=True)
class PrepareCommand:
    """CLI input for corpus preparation."""

    corpus_dir: Path | None
    logs_dir: Path | None


@dataclass(slots=True)
class RunCommand:
    """CLI input for the supervised restart loop."""

    binary: Path | None
    plan: PlanCommand
    corpus_dir: Path | None
    logs_dir: Path | None
    max_restarts: int | None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for readiness and log inspection."""

    logs_dir: Path | None


@dataclass(slots=True)
class RunResult:
    """Restart loop report to render in CLI."""

    lines: list[str]
    exit_code: int


class FuzzPoolCliController:
    """Coordinates sizing, preparation, supervision and status CLI operations."""

    def plan(self, command: PlanCommand) -> list[str]:
        settings = _settings_with_overrides(command)
        budget = _budget(settings)
        plan = compute_plan(budget)
        return _render_plan(budget=budget, plan=plan)

    def prepare(self, command: PrepareCommand) -> list[str]:
        settings = Settings.from_env()
        _apply_path_overrides(settings, corpus_dir=command.corpus_dir, logs_dir=command.logs_dir)
        settings.validate()
        paths = CorpusStore(_corpus_paths(settings)).prepare()
        return [
            f"Corpus dir: {paths.corpus_dir}",
            f"Logs dir: {paths.logs_dir}",
            f"Merge-control file: {paths.merge_control_file}",
        ]

    def run(self, command: RunCommand) -> RunResult:
        settings = _settings_with_overrides(command.plan, binary=command.binary)
        _apply_path_overrides(settings, corpus_dir=command.corpus_dir, logs_dir=command.logs_dir)
        if command.max_restarts is not None:
            settings.supervisor.max_restarts = command.max_restarts
        settings.validate_for_launch()

        budget = _budget(settings)
        plan = compute_plan(budget)
        lines = _render_plan(budget=budget, plan=plan)

        supervisor_settings = settings.supervisor
        loop = RestartLoop(
            plan=plan,
            corpus=CorpusStore(_corpus_paths(settings)),
            engine_spec=_engine_spec(settings),
            readiness=ReadinessSignal(settings.paths.ready_marker),
            ceiling=build_ceiling(supervisor_settings.cgroup_dir),
            policy=RestartPolicy(
                backoff_seconds=supervisor_settings.restart_backoff_seconds,
                backoff_max_seconds=supervisor_settings.restart_backoff_max_seconds,
                mode=supervisor_settings.restart_backoff_mode,
                max_restarts=supervisor_settings.max_restarts,
            ),
            poll_interval_seconds=supervisor_settings.poll_interval_seconds,
            grace_period_seconds=supervisor_settings.grace_period_seconds,
        )
        summary = loop.run()
        lines.extend(_render_summary(summary))
        exit_code = EXIT_OK if summary.cancelled else EXIT_POOL_FAILED
        return RunResult(lines=lines, exit_code=exit_code)

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env()
        _apply_path_overrides(settings, corpus_dir=None, logs_dir=command.logs_dir)
        readiness = ReadinessSignal(settings.paths.ready_marker)
        corpus = CorpusStore(_corpus_paths(settings))
        logs = LogSink(settings.paths.logs_dir).existing()

        lines = [
            f"Ready: {'yes' if readiness.is_ready() else 'no'} ({settings.paths.ready_marker})",
            f"Corpus entries: {corpus.corpus_size()} ({settings.paths.corpus_dir})",
            f"Worker logs: {len(logs)}",
        ]
        for index, path in logs.items():
            lines.append(f"  fuzz-{index}: {path} ({path.stat().st_size} bytes)")
        return lines


def _settings_with_overrides(command: PlanCommand, *, binary: Path | None = None) -> Settings:
    settings = Settings.from_env(binary=binary)
    resources = settings.resources
    if command.total_memory_mb is not None:
        resources.total_memory_mb = command.total_memory_mb
    if command.os_overhead_mb is not None:
        resources.os_overhead_mb = command.os_overhead_mb
    if command.swap_fraction is not None:
        resources.swap_fraction = command.swap_fraction
    if command.rss_limit_mb is not None:
        resources.per_worker_rss_limit_mb = command.rss_limit_mb
    if command.safety_margin_mb is not None:
        resources.safety_margin_mb = command.safety_margin_mb
    settings.validate()
    return settings


def _apply_path_overrides(
    settings: Settings,
    *,
    corpus_dir: Path | None,
    logs_dir: Path | None,
) -> None:
    if corpus_dir is not None:
        settings.paths.corpus_dir = corpus_dir
    if logs_dir is not None:
        settings.paths.logs_dir = logs_dir


def _budget(settings: Settings) -> ResourceBudget:
    resources = settings.resources
    total_memory_mb = resources.total_memory_mb
    if total_memory_mb is None:
        total_memory_mb = detect_total_memory_mb()
        logger.info("Detected %d MB of memory", total_memory_mb)
    return ResourceBudget(
        total_memory_mb=total_memory_mb,
        os_overhead_mb=resources.os_overhead_mb,
        swap_fraction=resources.swap_fraction,
        per_worker_rss_limit_mb=resources.per_worker_rss_limit_mb,
        safety_margin_mb=resources.safety_margin_mb,
    )


def _corpus_paths(settings: Settings) -> CorpusPaths:
    return CorpusPaths(
        corpus_dir=settings.paths.corpus_dir,
        logs_dir=settings.paths.logs_dir,
        merge_control_file=settings.paths.merge_control_file,
    )


def _engine_spec(settings: Settings) -> EngineSpec:
    engine = settings.engine
    if engine.binary is None:
        raise ValueError("A fuzzer binary is required. Set FUZZ_POOL_BINARY or pass --binary.")
    return EngineSpec(
        binary=engine.binary,
        max_len=engine.max_len,
        env_file=engine.env_file,
        preload_libraries=engine.preload_libraries,
    )


def _render_plan(*, budget: ResourceBudget, plan: WorkerPlan) -> list[str]:
    return [
        "Budget: "
        f"total={budget.total_memory_mb}MB os_overhead={budget.os_overhead_mb}MB "
        f"swap_fraction={budget.swap_fraction} rss_limit={budget.per_worker_rss_limit_mb}MB "
        f"safety_margin={budget.safety_margin_mb}MB",
        "Plan: "
        f"workers={plan.worker_count} memory_ceiling={plan.memory_ceiling} "
        f"swap_reserve={plan.swap_reserve_mb}MB",
        "Environment: "
        f"vcpus={plan.recommended_vcpus} zram_percent={swap_percent(budget.swap_fraction)}",
    ]


def _render_summary(summary: RestartSummary) -> list[str]:
    lines = [
        "Pool summary: "
        f"runs={summary.runs} failures={summary.failures} restarts={summary.restarts} "
        f"cancelled={'yes' if summary.cancelled else 'no'} "
        f"exhausted={'yes' if summary.exhausted else 'no'}",
    ]
    last: PoolOutcome | None = summary.last_outcome
    if last is not None:
        lines.append(f"Last outcome: {last.describe()}")
    return lines
