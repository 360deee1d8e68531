"""Scoped temporary directories for a single gate run."""

import logging
import tempfile
import uuid
from enum import StrEnum
from pathlib import Path
from types import TracebackType
from typing import Self

log = logging.getLogger(__name__)


class ResourceKind(StrEnum):
    """Kinds of scoped directories a run allocates."""

    BUILD_OUTPUT = "build-output"
    RUN_RESULTS = "run-results"
    LOGS = "logs"


class RunContext:
    """Owns the scoped directories of one run.

    Each kind gets exactly one directory per run. Releasing a directory
    deletes its content but keeps the path reserved, so the next call to
    ``scoped_path`` for the same kind re-creates it at the same location.
    """

    def __init__(self, temp_root: Path | None = None, run_id: str | None = None):
        self.run_id = run_id or uuid.uuid4().hex
        self.temp_root = temp_root or Path(tempfile.gettempdir())
        self._paths: dict[ResourceKind, Path] = {}

    def scoped_path(self, kind: ResourceKind) -> Path:
        """Return the directory for ``kind``, creating it on first use."""
        path = self._paths.get(kind)
        if path is None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
            path = Path(
                tempfile.mkdtemp(
                    prefix=f"pushgate-{self.run_id}-{kind}-", dir=self.temp_root
                )
            )
            self._paths[kind] = path
            log.debug("Allocated %s directory %s", kind, path)
        elif not path.exists():
            path.mkdir(parents=True)
        return path

    def release_kind(self, kind: ResourceKind) -> bool:
        """Release the directory of ``kind`` if it was allocated."""
        if (path := self._paths.get(kind)) is None:
            return True
        return release(path)

    def release_all(self) -> bool:
        """Release every allocated directory; returns False on residual content."""
        results = [release(path) for path in self._paths.values()]
        return all(results)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release_all()


def release(path: Path) -> bool:
    """Delete files, then subdirectories, then the directory itself.

    A deletion that fails is logged and leaves residual content behind.
    The directory lives under the temp root, so leftovers are tolerated.

    Returns:
        True when the directory is gone

    """
    if not path.exists():
        return True

    log.debug("Releasing %s", path)
    all_deleted = True

    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            continue
        try:
            entry.unlink()
        except OSError as e:
            all_deleted = False
            log.warning("Unable to delete file %s: %s", entry, e)

    for entry in path.iterdir():
        if not entry.is_dir() or entry.is_symlink():
            continue
        if not release(entry):
            all_deleted = False

    if all_deleted:
        try:
            path.rmdir()
        except OSError as e:
            log.warning("Unable to delete directory %s: %s", path, e)
            return False

    return all_deleted
