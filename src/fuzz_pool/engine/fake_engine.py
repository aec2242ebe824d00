"""Deterministic libFuzzer stand-in for pool integration tests.

Behaviour is driven by environment variables so one binary can play every
worker of a pool:

- ``FAKE_ENGINE_EXIT_AFTER``: seconds to run before exiting (default: forever).
- ``FAKE_ENGINE_EXIT_CODE``: exit code used when leaving on its own (default 1).
- ``FAKE_ENGINE_EXIT_WORKER``: only this worker index exits on its own.
- ``FAKE_ENGINE_IGNORE_SIGTERM``: ``1`` makes the worker survive SIGTERM.
"""

from __future__ import annotations

import os
import signal
import sys
import time
from pathlib import Path


def parse_flags(argv: list[str]) -> tuple[dict[str, str], list[str]]:
    """Split libFuzzer ``-name=value`` flags from positional corpus directories."""

    flags: dict[str, str] = {}
    positional: list[str] = []
    for arg in argv:
        if arg.startswith("-") and "=" in arg:
            name, value = arg[1:].split("=", 1)
            flags[name] = value
        else:
            positional.append(arg)
    return flags, positional


def main(argv: list[str] | None = None) -> int:
    flags, positional = parse_flags(sys.argv[1:] if argv is None else argv)
    index = os.getenv("FUZZ_POOL_WORKER_INDEX", "?")
    if os.getenv("FAKE_ENGINE_IGNORE_SIGTERM") == "1":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    else:
        signal.signal(signal.SIGTERM, _exit_on_term)

    print(
        f"INFO: fake engine worker={index} pid={os.getpid()} "
        f"rss_limit_mb={flags.get('rss_limit_mb')} env_rss_mb={os.getenv('RSS_MB')} "
        f"max_len={flags.get('max_len')} corpus={','.join(positional)}",
        flush=True,
    )
    for corpus_dir in positional:
        seed = Path(corpus_dir) / f"seed-{index}"
        seed.write_bytes(index.encode("utf-8"))

    exit_after = os.getenv("FAKE_ENGINE_EXIT_AFTER")
    exit_worker = os.getenv("FAKE_ENGINE_EXIT_WORKER")
    exits = exit_after is not None and (exit_worker is None or exit_worker == index)
    deadline = time.monotonic() + float(exit_after) if exits and exit_after else None

    while deadline is None or time.monotonic() < deadline:
        time.sleep(0.05)

    print("stat::number_of_executed_units: 0", flush=True)
    return int(os.getenv("FAKE_ENGINE_EXIT_CODE", "1"))


def _exit_on_term(signum: int, _: object | None) -> None:
    print(f"INFO: fake engine received signal {signum}", flush=True)
    sys.exit(0)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
