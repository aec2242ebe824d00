"""Readiness marker consumed by external health checks."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class ReadinessError(RuntimeError):
    """The readiness marker could not be removed or created."""

    def __init__(self, message: str, *, path: Path) -> None:
        super().__init__(message)
        self.path = path
        self.retryable = True


class ReadinessSignal:
    """Marker file that exists only while every worker of a pool run is up.

    ``mark_ready`` flips the marker at most once between two ``clear`` calls.
    """

    def __init__(self, marker_path: Path) -> None:
        self.marker_path = marker_path
        self._marked = False

    def clear(self) -> None:
        self._marked = False
        try:
            self.marker_path.unlink(missing_ok=True)
        except OSError as error:
            raise ReadinessError(
                f"Cannot remove readiness marker {self.marker_path}: {error}",
                path=self.marker_path,
            ) from error

    def mark_ready(self) -> bool:
        """Create the marker. Returns ``False`` if it was already set for this run."""

        if self._marked:
            return False
        try:
            self.marker_path.parent.mkdir(parents=True, exist_ok=True)
            self.marker_path.touch()
        except OSError as error:
            raise ReadinessError(
                f"Cannot create readiness marker {self.marker_path}: {error}",
                path=self.marker_path,
            ) from error
        self._marked = True
        logger.info("Readiness marker set: %s", self.marker_path)
        return True

    def is_ready(self) -> bool:
        return self.marker_path.exists()
