"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from fuzz_pool.corpus import CorpusPaths
from fuzz_pool.engine import EngineSpec


@pytest.fixture()
def fake_engine_binary(tmp_path: Path) -> Path:
    """Executable wrapper that runs the deterministic fake engine."""

    binary = tmp_path / "bin" / "fake-fuzzer"
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" -m fuzz_pool.engine.fake_engine "$@"\n',
        "utf-8",
    )
    binary.chmod(0o755)
    return binary


@pytest.fixture()
def corpus_paths(tmp_path: Path) -> CorpusPaths:
    return CorpusPaths(
        corpus_dir=tmp_path / "state" / "corpus",
        logs_dir=tmp_path / "state" / "logs",
        merge_control_file=tmp_path / "state" / "merge" / "merge.ctl",
    )


@pytest.fixture()
def engine_spec(fake_engine_binary: Path) -> EngineSpec:
    return EngineSpec(binary=fake_engine_binary, max_len=64)
