"""Runtime configuration for the fuzz worker pool."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_STATE_DIR = Path("/var/lib/fuzz-pool")


@dataclass(slots=True)
class ResourceSettings:
    """Resource knobs that drive worker pool sizing."""

    total_memory_mb: int | None = None
    os_overhead_mb: int = 2_048
    swap_fraction: float = 0.15
    per_worker_rss_limit_mb: int = 1_024
    safety_margin_mb: int = 1_024


@dataclass(slots=True)
class PathSettings:
    """Shared filesystem locations used by the pool."""

    corpus_dir: Path = DEFAULT_STATE_DIR / "corpus"
    logs_dir: Path = DEFAULT_STATE_DIR / "logs"
    merge_control_file: Path = DEFAULT_STATE_DIR / "merge.ctl"
    ready_marker: Path = Path("/run/fuzz-ready")


@dataclass(slots=True)
class EngineSettings:
    """Fuzzing engine binary and its launch contract."""

    binary: Path | None = None
    max_len: int = 512
    env_file: Path | None = None
    preload_libraries: tuple[Path, ...] = ()


@dataclass(slots=True)
class SupervisorSettings:
    """Supervision, cancellation and restart policy settings."""

    poll_interval_seconds: float = 0.1
    grace_period_seconds: float = 10.0
    restart_backoff_seconds: float = 2.0
    restart_backoff_max_seconds: float = 60.0
    restart_backoff_mode: str = "fixed"
    max_restarts: int = 0
    cgroup_dir: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    resources: ResourceSettings = field(default_factory=ResourceSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)

    @classmethod
    def from_env(cls, binary: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching a headless fuzz VM."""

        state_dir = Path(os.getenv("FUZZ_POOL_STATE_DIR", str(DEFAULT_STATE_DIR)))
        return cls(
            resources=ResourceSettings(
                total_memory_mb=_env_optional_int("FUZZ_POOL_TOTAL_MEMORY_MB"),
                os_overhead_mb=_env_int("FUZZ_POOL_OS_OVERHEAD_MB", 2_048),
                swap_fraction=_env_float("FUZZ_POOL_SWAP_FRACTION", 0.15),
                per_worker_rss_limit_mb=_env_int("FUZZ_POOL_RSS_LIMIT_MB", 1_024),
                safety_margin_mb=_env_int("FUZZ_POOL_SAFETY_MARGIN_MB", 1_024),
            ),
            paths=PathSettings(
                corpus_dir=_env_path("FUZZ_POOL_CORPUS_DIR", state_dir / "corpus"),
                logs_dir=_env_path("FUZZ_POOL_LOGS_DIR", state_dir / "logs"),
                merge_control_file=_env_path("FUZZ_POOL_MERGE_FILE", state_dir / "merge.ctl"),
                ready_marker=_env_path("FUZZ_POOL_READY_MARKER", Path("/run/fuzz-ready")),
            ),
            engine=EngineSettings(
                binary=binary or _env_optional_path("FUZZ_POOL_BINARY"),
                max_len=_env_int("FUZZ_POOL_MAX_LEN", 512),
                env_file=_env_optional_path("FUZZ_POOL_ENV_FILE"),
                preload_libraries=_collect_preload_libraries(),
            ),
            supervisor=SupervisorSettings(
                poll_interval_seconds=_env_float("FUZZ_POOL_POLL_INTERVAL_SECONDS", 0.1),
                grace_period_seconds=_env_float("FUZZ_POOL_GRACE_PERIOD_SECONDS", 10.0),
                restart_backoff_seconds=_env_float("FUZZ_POOL_RESTART_BACKOFF_SECONDS", 2.0),
                restart_backoff_max_seconds=_env_float(
                    "FUZZ_POOL_RESTART_BACKOFF_MAX_SECONDS",
                    60.0,
                ),
                restart_backoff_mode=os.getenv("FUZZ_POOL_RESTART_BACKOFF_MODE", "fixed")
                .strip()
                .lower(),
                max_restarts=_env_int("FUZZ_POOL_MAX_RESTARTS", 0),
                cgroup_dir=_env_optional_path("FUZZ_POOL_CGROUP_DIR"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        resources = self.resources
        if resources.total_memory_mb is not None and resources.total_memory_mb <= 0:
            raise ValueError("FUZZ_POOL_TOTAL_MEMORY_MB must be > 0.")
        if resources.os_overhead_mb < 0:
            raise ValueError("FUZZ_POOL_OS_OVERHEAD_MB must be >= 0.")
        if not 0.0 <= resources.swap_fraction < 1.0:
            raise ValueError("FUZZ_POOL_SWAP_FRACTION must be in [0, 1).")
        if resources.per_worker_rss_limit_mb <= 0:
            raise ValueError("FUZZ_POOL_RSS_LIMIT_MB must be > 0.")
        if resources.safety_margin_mb < 0:
            raise ValueError("FUZZ_POOL_SAFETY_MARGIN_MB must be >= 0.")
        if self.engine.max_len <= 0:
            raise ValueError("FUZZ_POOL_MAX_LEN must be > 0.")

        supervisor = self.supervisor
        if supervisor.poll_interval_seconds <= 0:
            raise ValueError("FUZZ_POOL_POLL_INTERVAL_SECONDS must be > 0.")
        if supervisor.grace_period_seconds < 0:
            raise ValueError("FUZZ_POOL_GRACE_PERIOD_SECONDS must be >= 0.")
        if supervisor.restart_backoff_seconds < 0:
            raise ValueError("FUZZ_POOL_RESTART_BACKOFF_SECONDS must be >= 0.")
        if supervisor.restart_backoff_max_seconds < supervisor.restart_backoff_seconds:
            raise ValueError(
                "FUZZ_POOL_RESTART_BACKOFF_MAX_SECONDS must be >= "
                "FUZZ_POOL_RESTART_BACKOFF_SECONDS.",
            )
        if supervisor.restart_backoff_mode not in {"fixed", "exponential"}:
            raise ValueError(
                "Invalid FUZZ_POOL_RESTART_BACKOFF_MODE: "
                f"{supervisor.restart_backoff_mode!r}. Expected 'fixed' or 'exponential'.",
            )
        if supervisor.max_restarts < 0:
            raise ValueError("FUZZ_POOL_MAX_RESTARTS must be >= 0.")

    def validate_for_launch(self) -> None:
        """Raise configuration error if the pool cannot be launched as configured."""

        self.validate()
        if self.engine.binary is None:
            raise ValueError(
                "A fuzzer binary is required. Set FUZZ_POOL_BINARY or pass --binary.",
            )
        if self.engine.env_file is not None and not self.engine.env_file.is_file():
            raise ValueError(f"FUZZ_POOL_ENV_FILE does not exist: {self.engine.env_file}")
        marker_dir = _nearest_existing(self.paths.ready_marker.parent)
        if not marker_dir.is_dir() or not os.access(marker_dir, os.W_OK):
            raise ValueError(
                "FUZZ_POOL_READY_MARKER must be creatable: "
                f"{marker_dir} is not a writable directory.",
            )


def _collect_preload_libraries() -> tuple[Path, ...]:
    raw = os.getenv("FUZZ_POOL_PRELOAD", "").strip()
    if not raw:
        return ()
    values: list[Path] = []
    seen: set[str] = set()
    for part in raw.split(":"):
        token = part.strip()
        if not token or token in seen:
            continue
        seen.add(token)
        values.append(Path(token))
    return tuple(values)


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    return Path(value) if value else default


def _env_optional_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {value!r}") from error


def _nearest_existing(path: Path) -> Path:
    while not path.exists() and path != path.parent:
        path = path.parent
    return path
