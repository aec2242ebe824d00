"""Resource-aware supervisor for parallel fuzzing worker pools."""

__version__ = "0.1.0"
