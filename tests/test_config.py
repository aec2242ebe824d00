from __future__ import annotations

from pathlib import Path

import allure
import pytest

from fuzz_pool.config import (
    EngineSettings,
    PathSettings,
    ResourceSettings,
    Settings,
    SupervisorSettings,
)

pytestmark = [
    allure.epic("Pool Sizing"),
    allure.feature("Configuration"),
]


def test_from_env_defaults_match_headless_vm(monkeypatch) -> None:
    for name in (
        "FUZZ_POOL_STATE_DIR",
        "FUZZ_POOL_TOTAL_MEMORY_MB",
        "FUZZ_POOL_BINARY",
        "FUZZ_POOL_PRELOAD",
        "FUZZ_POOL_CORPUS_DIR",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.resources.total_memory_mb is None
    assert settings.resources.os_overhead_mb == 2_048
    assert settings.resources.swap_fraction == 0.15
    assert settings.resources.per_worker_rss_limit_mb == 1_024
    assert settings.engine.max_len == 512
    assert settings.engine.binary is None
    assert settings.paths.corpus_dir == Path("/var/lib/fuzz-pool/corpus")
    assert settings.paths.ready_marker == Path("/run/fuzz-ready")
    assert settings.supervisor.restart_backoff_seconds == 2.0
    assert settings.supervisor.restart_backoff_mode == "fixed"


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FUZZ_POOL_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("FUZZ_POOL_TOTAL_MEMORY_MB", "16384")
    monkeypatch.setenv("FUZZ_POOL_RSS_LIMIT_MB", "2048")
    monkeypatch.setenv("FUZZ_POOL_BINARY", "/opt/fuzz/bin/fuzzer")
    monkeypatch.setenv("FUZZ_POOL_PRELOAD", "/lib/a.so:/lib/b.so::/lib/a.so")
    monkeypatch.setenv("FUZZ_POOL_RESTART_BACKOFF_MODE", " Exponential ")

    settings = Settings.from_env()

    assert settings.resources.total_memory_mb == 16_384
    assert settings.resources.per_worker_rss_limit_mb == 2_048
    assert settings.paths.corpus_dir == tmp_path / "corpus"
    assert settings.paths.logs_dir == tmp_path / "logs"
    assert settings.paths.merge_control_file == tmp_path / "merge.ctl"
    assert settings.engine.binary == Path("/opt/fuzz/bin/fuzzer")
    assert settings.engine.preload_libraries == (Path("/lib/a.so"), Path("/lib/b.so"))
    assert settings.supervisor.restart_backoff_mode == "exponential"


def test_from_env_binary_argument_wins(monkeypatch) -> None:
    monkeypatch.setenv("FUZZ_POOL_BINARY", "/from/env")

    settings = Settings.from_env(binary=Path("/from/cli"))

    assert settings.engine.binary == Path("/from/cli")


def test_from_env_rejects_non_integer_total_memory(monkeypatch) -> None:
    monkeypatch.setenv("FUZZ_POOL_TOTAL_MEMORY_MB", "lots")

    with pytest.raises(ValueError, match="FUZZ_POOL_TOTAL_MEMORY_MB"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(resources=ResourceSettings(swap_fraction=1.0)), "SWAP_FRACTION"),
        (Settings(resources=ResourceSettings(total_memory_mb=0)), "TOTAL_MEMORY_MB"),
        (Settings(resources=ResourceSettings(per_worker_rss_limit_mb=0)), "RSS_LIMIT_MB"),
        (Settings(engine=EngineSettings(max_len=0)), "MAX_LEN"),
        (Settings(supervisor=SupervisorSettings(grace_period_seconds=-1)), "GRACE_PERIOD"),
        (
            Settings(supervisor=SupervisorSettings(restart_backoff_mode="random")),
            "RESTART_BACKOFF_MODE",
        ),
        (
            Settings(
                supervisor=SupervisorSettings(
                    restart_backoff_seconds=10,
                    restart_backoff_max_seconds=5,
                ),
            ),
            "RESTART_BACKOFF_MAX_SECONDS",
        ),
        (Settings(supervisor=SupervisorSettings(max_restarts=-1)), "MAX_RESTARTS"),
    ],
)
def test_validate_rejects_out_of_range_settings(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_validate_for_launch_requires_binary() -> None:
    with pytest.raises(ValueError, match="fuzzer binary is required"):
        Settings().validate_for_launch()


def test_validate_for_launch_requires_existing_env_file(tmp_path: Path) -> None:
    settings = Settings(
        engine=EngineSettings(binary=Path("/bin/true"), env_file=tmp_path / "missing.env"),
    )

    with pytest.raises(ValueError, match="FUZZ_POOL_ENV_FILE"):
        settings.validate_for_launch()


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("FUZZ_POOL_RSS_LIMIT_MB", "1G", "Invalid integer value for FUZZ_POOL_RSS_LIMIT_MB"),
        ("FUZZ_POOL_MAX_RESTARTS", "forever", "Invalid integer value for FUZZ_POOL_MAX_RESTARTS"),
        ("FUZZ_POOL_SWAP_FRACTION", "15%", "Invalid float value for FUZZ_POOL_SWAP_FRACTION"),
        (
            "FUZZ_POOL_RESTART_BACKOFF_SECONDS",
            "2s",
            "Invalid float value for FUZZ_POOL_RESTART_BACKOFF_SECONDS",
        ),
    ],
)
def test_from_env_names_variable_with_bad_number(
    monkeypatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_validate_for_launch_rejects_marker_under_regular_file(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "run"
    not_a_dir.write_text("x", "utf-8")
    settings = Settings(
        paths=PathSettings(ready_marker=not_a_dir / "fuzz-ready"),
        engine=EngineSettings(binary=Path("/bin/true")),
    )

    with pytest.raises(ValueError, match="FUZZ_POOL_READY_MARKER"):
        settings.validate_for_launch()


def test_validate_for_launch_accepts_marker_in_missing_subdirectory(tmp_path: Path) -> None:
    settings = Settings(
        paths=PathSettings(ready_marker=tmp_path / "run" / "nested" / "fuzz-ready"),
        engine=EngineSettings(binary=Path("/bin/true")),
    )

    settings.validate_for_launch()
