"""Test helpers shared across modules."""

from __future__ import annotations

import time
from pathlib import Path

from fuzz_pool.sizing import WorkerPlan


def make_plan(worker_count: int, *, rss_limit_mb: int = 256) -> WorkerPlan:
    return WorkerPlan(
        worker_count=worker_count,
        memory_ceiling_mb=worker_count * rss_limit_mb,
        swap_reserve_mb=0,
        per_worker_rss_limit_mb=rss_limit_mb,
    )


def wait_for_log_text(path: Path, text: str, *, timeout: float = 10.0) -> str:
    deadline = time.monotonic() + timeout
    content = ""
    while time.monotonic() < deadline:
        if path.exists():
            content = path.read_text("utf-8", errors="replace")
            if text in content:
                return content
        time.sleep(0.05)
    raise AssertionError(f"{text!r} not found in {path} within {timeout}s: {content!r}")
