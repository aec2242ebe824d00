"""Graceful-then-forced termination of worker process trees."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import psutil

from fuzz_pool.models import WorkerProcess

logger = logging.getLogger(__name__)

_KILL_WAIT_SECONDS = 5.0


def terminate_workers(
    workers: Iterable[WorkerProcess],
    *,
    grace_period_seconds: float,
) -> list[int]:
    """SIGTERM every live worker tree, SIGKILL what survives the grace period.

    Safe to call repeatedly: workers that already exited are skipped.
    Returns the indexes of workers that had to be force-killed.
    """

    live = [worker for worker in workers if worker.alive]
    if not live:
        return []

    trees = {worker.pid: _process_tree(worker.pid) for worker in live}
    procs = [proc for tree in trees.values() for proc in tree]
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

    gone, alive = psutil.wait_procs(procs, timeout=max(0.0, grace_period_seconds))
    returncodes = {proc.pid: proc.returncode for proc in gone}

    if alive:
        logger.warning(
            "%d process(es) survived %.1fs grace period, killing",
            len(alive),
            grace_period_seconds,
        )
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        killed_gone, _ = psutil.wait_procs(alive, timeout=_KILL_WAIT_SECONDS)
        returncodes.update({proc.pid: proc.returncode for proc in killed_gone})

    alive_pids = {proc.pid for proc in alive}
    forced: list[int] = []
    for worker in live:
        if worker.pid in alive_pids:
            forced.append(worker.index)
        # psutil may already have reaped the child; sync the Popen handle either way.
        popen_code = worker.popen.poll()
        if worker.exit_code is None:
            code = returncodes.get(worker.pid)
            worker.exit_code = code if code is not None else popen_code
    return forced


def _process_tree(pid: int) -> list[psutil.Process]:
    try:
        parent = psutil.Process(pid)
        return [parent, *parent.children(recursive=True)]
    except psutil.NoSuchProcess:
        return []
