"""Domain models for supervised worker pool runs."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class PoolState(str, Enum):
    """Lifecycle states of one pool run."""

    PREPARING = "preparing"
    LAUNCHING = "launching"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OutcomeKind(str, Enum):
    """Terminal outcome reported to the restart policy."""

    FAILED = "failed"
    CANCELLED = "cancelled"


class OutcomeReason(str, Enum):
    """Normalized reason attached to a pool outcome."""

    WORKER_EXITED = "worker_exited"
    LAUNCH_ERROR = "launch_error"
    CORPUS_IO_ERROR = "corpus_io_error"
    CEILING_ERROR = "ceiling_error"
    READINESS_ERROR = "readiness_error"
    CANCELLED_BY_OPERATOR = "cancelled_by_operator"


@dataclass(slots=True)
class WorkerProcess:
    """One live fuzzing worker owned by the launcher and then the supervisor."""

    index: int
    pid: int
    log_path: Path
    started_at: datetime
    popen: subprocess.Popen[bytes] = field(repr=False)
    exit_code: int | None = None

    def poll(self) -> int | None:
        """Refresh and return the exit code, ``None`` while still running."""

        if self.exit_code is None:
            self.exit_code = self.popen.poll()
        return self.exit_code

    @property
    def alive(self) -> bool:
        return self.poll() is None


@dataclass(frozen=True, slots=True)
class PoolOutcome:
    """Terminal result of one pool run."""

    kind: OutcomeKind
    reason: OutcomeReason
    first_exited_index: int | None = None
    exit_code: int | None = None
    run_id: str | None = None
    attempt: int | None = None
    error_summary: str | None = None

    @property
    def failed(self) -> bool:
        return self.kind is OutcomeKind.FAILED

    @property
    def cancelled(self) -> bool:
        return self.kind is OutcomeKind.CANCELLED

    def describe(self) -> str:
        parts = [f"outcome={self.kind.value}", f"reason={self.reason.value}"]
        if self.first_exited_index is not None:
            parts.append(f"worker={self.first_exited_index}")
        if self.exit_code is not None:
            parts.append(f"exit_code={self.exit_code}")
        if self.error_summary:
            parts.append(f"error={self.error_summary}")
        return " ".join(parts)
