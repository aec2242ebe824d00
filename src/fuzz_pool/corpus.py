"""Shared on-disk state prepared before any worker starts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

SHARED_DIR_MODE = 0o777


class CorpusPrepareError(RuntimeError):
    """Corpus or logs directory could not be prepared for workers."""

    def __init__(self, message: str, *, path: Path) -> None:
        super().__init__(message)
        self.path = path
        self.retryable = True


@dataclass(frozen=True, slots=True)
class CorpusPaths:
    """Filesystem locations shared by every worker of a pool."""

    corpus_dir: Path
    logs_dir: Path
    merge_control_file: Path

    @property
    def artifact_prefix(self) -> str:
        return f"{self.corpus_dir}/"


class CorpusStore:
    """Creates the shared corpus layout with permissions any worker user can write."""

    def __init__(self, paths: CorpusPaths) -> None:
        self.paths = paths

    def prepare(self) -> CorpusPaths:
        """Create directories and open their permissions.

        Raises:
            CorpusPrepareError: on any filesystem failure.
        """

        for directory in (self.paths.corpus_dir, self.paths.logs_dir):
            self._make_shared_dir(directory)

        merge_parent = self.paths.merge_control_file.parent
        try:
            merge_parent.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise CorpusPrepareError(
                f"Cannot create merge-control directory {merge_parent}: {error}",
                path=merge_parent,
            ) from error

        logger.info(
            "Prepared corpus=%s logs=%s merge=%s",
            self.paths.corpus_dir,
            self.paths.logs_dir,
            self.paths.merge_control_file,
        )
        return self.paths

    def corpus_size(self) -> int:
        """Number of corpus entries currently on disk."""

        if not self.paths.corpus_dir.is_dir():
            return 0
        return sum(1 for entry in self.paths.corpus_dir.iterdir() if entry.is_file())

    @staticmethod
    def _make_shared_dir(directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            directory.chmod(SHARED_DIR_MODE)
        except OSError as error:
            raise CorpusPrepareError(
                f"Cannot prepare shared directory {directory}: {error}",
                path=directory,
            ) from error
