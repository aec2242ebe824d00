"""Pool-level memory ceiling enforcement.

The pool computes one ceiling for all workers together; how it is enforced
depends on the platform, so the capability is injected into the pool run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class CeilingError(RuntimeError):
    """The memory ceiling could not be applied to the worker group."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.retryable = True


class ResourceCeiling(Protocol):
    """Applies one hard memory ceiling to a group of worker processes."""

    def apply(self, *, memory_ceiling_mb: int, pids: Sequence[int]) -> None:
        """Enforce ``memory_ceiling_mb`` across ``pids`` as a whole."""


class NullCeiling:
    """Records the ceiling without enforcing it. Used where the host enforces limits."""

    def __init__(self) -> None:
        self.applied: list[tuple[int, tuple[int, ...]]] = []

    def apply(self, *, memory_ceiling_mb: int, pids: Sequence[int]) -> None:
        self.applied.append((memory_ceiling_mb, tuple(pids)))
        logger.info(
            "Memory ceiling %dM not enforced for %d workers (no ceiling backend)",
            memory_ceiling_mb,
            len(pids),
        )


class CgroupCeiling:
    """cgroup v2 backend: one cgroup holds every worker and kills them as a group on OOM."""

    def __init__(self, cgroup_dir: Path) -> None:
        self.cgroup_dir = cgroup_dir

    def apply(self, *, memory_ceiling_mb: int, pids: Sequence[int]) -> None:
        try:
            self.cgroup_dir.mkdir(parents=True, exist_ok=True)
            _write(self.cgroup_dir / "memory.max", f"{memory_ceiling_mb * 1024 * 1024}")
            _write(self.cgroup_dir / "memory.oom.group", "1")
            procs_file = self.cgroup_dir / "cgroup.procs"
            for pid in pids:
                _write(procs_file, str(pid), append=True)
        except OSError as error:
            raise CeilingError(
                f"Cannot apply memory ceiling via {self.cgroup_dir}: {error}",
            ) from error
        logger.info(
            "Memory ceiling %dM applied to %d workers via %s",
            memory_ceiling_mb,
            len(pids),
            self.cgroup_dir,
        )


def build_ceiling(cgroup_dir: Path | None) -> ResourceCeiling:
    if cgroup_dir is None:
        return NullCeiling()
    return CgroupCeiling(cgroup_dir)


def _write(path: Path, value: str, *, append: bool = False) -> None:
    # cgroupfs accepts one value per write() call.
    with path.open("a" if append else "w", encoding="utf-8") as handle:
        handle.write(value + "\n" if append else value)
