"""Per-worker output capture."""

from __future__ import annotations

import re
from pathlib import Path
from typing import BinaryIO

_LOG_NAME_RE = re.compile(r"^fuzz-(\d+)\.log$")


class LogSink:
    """Deterministic ``fuzz-<i>.log`` files inside the logs directory."""

    def __init__(self, logs_dir: Path) -> None:
        self.logs_dir = logs_dir

    def path_for(self, index: int) -> Path:
        if index < 0:
            raise ValueError(f"Worker index must be >= 0, got {index}")
        return self.logs_dir / f"fuzz-{index}.log"

    def open_for(self, index: int) -> BinaryIO:
        """Truncate and open the worker's log for combined stdout/stderr."""

        path = self.path_for(index)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.open("wb")

    def existing(self) -> dict[int, Path]:
        """Worker log files currently on disk, keyed by worker index."""

        if not self.logs_dir.is_dir():
            return {}
        found: dict[int, Path] = {}
        for path in self.logs_dir.iterdir():
            match = _LOG_NAME_RE.match(path.name)
            if match is not None:
                found[int(match.group(1))] = path
        return dict(sorted(found.items()))

    def tail(self, index: int, *, max_bytes: int = 4_096) -> str:
        """Last bytes of a worker log, for outcome diagnostics."""

        path = self.path_for(index)
        if not path.exists():
            return ""
        with path.open("rb") as handle:
            handle.seek(0, 2)
            size = handle.tell()
            handle.seek(max(0, size - max_bytes))
            return handle.read().decode("utf-8", errors="replace")
