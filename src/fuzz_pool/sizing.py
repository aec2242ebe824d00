"""Worker pool sizing from a memory budget.

Everything here is pure arithmetic except ``detect_total_memory_mb``. All
rounding is floor: the plan never promises more workers or more ceiling
than the budget physically holds.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import psutil

INSUFFICIENT_MEMORY = "insufficient_memory"
INVALID_BUDGET = "invalid_budget"
DEFAULT_SAFETY_MARGIN_MB = 1_024


class ConfigError(ValueError):
    """Budget cannot be turned into a runnable plan. Never retryable."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.retryable = False


@dataclass(frozen=True, slots=True)
class ResourceBudget:
    """Memory budget handed to the pool by its environment."""

    total_memory_mb: int
    os_overhead_mb: int
    swap_fraction: float
    per_worker_rss_limit_mb: int
    safety_margin_mb: int = DEFAULT_SAFETY_MARGIN_MB

    def validate(self) -> None:
        if self.total_memory_mb <= 0:
            raise ConfigError("total_memory_mb must be > 0.", reason=INVALID_BUDGET)
        if self.os_overhead_mb < 0:
            raise ConfigError("os_overhead_mb must be >= 0.", reason=INVALID_BUDGET)
        if not 0.0 <= self.swap_fraction < 1.0:
            raise ConfigError("swap_fraction must be in [0, 1).", reason=INVALID_BUDGET)
        if self.per_worker_rss_limit_mb <= 0:
            raise ConfigError("per_worker_rss_limit_mb must be > 0.", reason=INVALID_BUDGET)
        if self.safety_margin_mb < 0:
            raise ConfigError("safety_margin_mb must be >= 0.", reason=INVALID_BUDGET)


@dataclass(frozen=True, slots=True)
class WorkerPlan:
    """Derived worker count and memory ceiling for one pool."""

    worker_count: int
    memory_ceiling_mb: int
    swap_reserve_mb: int
    per_worker_rss_limit_mb: int

    @property
    def memory_ceiling(self) -> str:
        """Ceiling rendered the way cgroup and systemd memory limits expect it."""

        return f"{self.memory_ceiling_mb}M"

    @property
    def recommended_vcpus(self) -> int:
        return self.worker_count


def compute_plan(budget: ResourceBudget) -> WorkerPlan:
    """Convert a memory budget into a worker plan.

    Raises:
        ConfigError: with ``reason="insufficient_memory"`` when the budget
            cannot host the OS overhead or leaves no room for a ceiling.
    """

    budget.validate()

    usable = budget.total_memory_mb - budget.os_overhead_mb
    if usable <= 0:
        raise ConfigError(
            f"Insufficient memory: total {budget.total_memory_mb} MB does not cover "
            f"OS overhead of {budget.os_overhead_mb} MB.",
            reason=INSUFFICIENT_MEMORY,
        )

    swap_reserve_mb = math.floor(usable * budget.swap_fraction)
    usable_after_swap = usable - swap_reserve_mb

    raw_workers = usable_after_swap / budget.per_worker_rss_limit_mb
    worker_count = max(1, math.floor(raw_workers))

    memory_ceiling_mb = usable_after_swap - budget.safety_margin_mb
    if memory_ceiling_mb <= 0:
        raise ConfigError(
            f"Insufficient memory: {usable_after_swap} MB left after OS overhead and "
            f"swap reserve does not exceed the {budget.safety_margin_mb} MB safety margin.",
            reason=INSUFFICIENT_MEMORY,
        )

    return WorkerPlan(
        worker_count=worker_count,
        memory_ceiling_mb=memory_ceiling_mb,
        swap_reserve_mb=swap_reserve_mb,
        per_worker_rss_limit_mb=budget.per_worker_rss_limit_mb,
    )


def swap_percent(swap_fraction: float) -> int:
    """Swap reserve as the whole percent compressed-swap tooling is configured with."""

    return math.floor(swap_fraction * 100.0)


def detect_total_memory_mb() -> int:
    """Physical memory visible to this environment, in MiB."""

    return psutil.virtual_memory().total // (1024 * 1024)
