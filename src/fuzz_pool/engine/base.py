"""Engine interface for spawning fuzzing workers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from fuzz_pool.corpus import CorpusPaths
from fuzz_pool.sizing import WorkerPlan


@dataclass(slots=True)
class EngineSpec:
    """Worker binary and the knobs passed through to its CLI."""

    binary: Path
    max_len: int = 512
    env_file: Path | None = None
    preload_libraries: tuple[Path, ...] = ()
    extra_env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class WorkerCommand:
    """Fully rendered argv and environment for one worker."""

    argv: list[str]
    env: dict[str, str]
    cwd: Path


class FuzzEngine(Protocol):
    """Protocol implemented by engine command builders."""

    def build_command(
        self,
        *,
        spec: EngineSpec,
        plan: WorkerPlan,
        paths: CorpusPaths,
        index: int,
    ) -> WorkerCommand:
        """Render the command that starts worker ``index``."""
