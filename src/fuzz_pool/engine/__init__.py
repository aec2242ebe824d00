"""Fuzzing engine command builders."""

from fuzz_pool.engine.base import EngineSpec, FuzzEngine, WorkerCommand
from fuzz_pool.engine.libfuzzer import LibFuzzerEngine

__all__ = [
    "EngineSpec",
    "FuzzEngine",
    "LibFuzzerEngine",
    "WorkerCommand",
]
