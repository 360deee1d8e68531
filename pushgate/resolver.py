"""Resolve which work items a gate run must process."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pushgate.models.config import GateConfiguration, WorkItem
from pushgate.vcs import VersionControlClient

log = logging.getLogger(__name__)

MAX_PARENT_HOPS = 10


@dataclass(frozen=True, kw_only=True)
class WorkItemResolver:
    """Turns configuration and version control state into work items."""

    vcs: VersionControlClient

    async def resolve(
        self, config: GateConfiguration, repo_root: Path
    ) -> Sequence[WorkItem]:
        """Return the ordered work items for the configured strategy."""
        repo_root = repo_root.resolve()
        match config.selection_strategy:
            case "all":
                return find_all_items(repo_root, config.build_file_pattern)
            case "by-change":
                return await self.find_changed_item(
                    repo_root, config.build_file_pattern
                )
            case "explicit":
                return filter_existing_items(repo_root, config.explicit_items)

    async def find_changed_item(
        self, repo_root: Path, pattern: str
    ) -> Sequence[WorkItem]:
        """Find the build definition owning the most recently changed file."""
        changed = await self.vcs.last_changed_file(repo_root)
        if not changed:
            log.info("No changed file found, nothing to gate")
            return []

        log.info("Last changed file: %s", changed)
        item = find_owning_item(repo_root, repo_root / changed, pattern)
        return [item] if item is not None else []


def find_all_items(repo_root: Path, pattern: str) -> Sequence[WorkItem]:
    """Every build definition under the repository, in sorted order."""
    paths = sorted(
        path.relative_to(repo_root).as_posix()
        for path in repo_root.rglob(pattern)
        if path.is_file() and ".git" not in path.relative_to(repo_root).parts
    )
    log.info(
        "Looking for all build definitions in %s. Found: %s",
        repo_root,
        ", ".join(paths) or "none",
    )
    return [WorkItem(path=path) for path in paths]


def find_owning_item(
    repo_root: Path, changed_file: Path, pattern: str
) -> WorkItem | None:
    """Walk up from the changed file to the nearest build definition.

    Stops after ``MAX_PARENT_HOPS`` directories or at the repository root.
    A build definition found at the root itself is not a match.
    """
    repo_root = repo_root.resolve()
    directory = changed_file.parent.resolve()
    if not directory.is_relative_to(repo_root):
        log.warning("Changed file %s is outside of %s", changed_file, repo_root)
        return None

    for _ in range(MAX_PARENT_HOPS):
        if directory == repo_root:
            break
        if directory.is_dir():
            candidates = sorted(p for p in directory.glob(pattern) if p.is_file())
            if candidates:
                relative = candidates[0].relative_to(repo_root).as_posix()
                log.info("Changed file belongs to %s", relative)
                return WorkItem(path=relative)
        directory = directory.parent

    log.info("No build definition owns %s", changed_file)
    return None


def filter_existing_items(
    repo_root: Path, items: Sequence[WorkItem]
) -> Sequence[WorkItem]:
    """Keep the configured items whose build definition exists."""
    log.info(
        "Looking for the following build definitions: %s",
        ", ".join(item.path for item in items),
    )
    existing: list[WorkItem] = []
    for item in items:
        if item.resolve(repo_root).is_file():
            existing.append(item)
        else:
            log.warning("Configured build definition %s does not exist", item.path)
    return existing
