"""Version control queries consumed by work item resolution."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)


class VersionControlClient(ABC):
    """Branch and change queries against a local repository."""

    @abstractmethod
    async def current_branch(self, repo_path: Path) -> str | None:
        """Return the checked out branch name, or None if it can't be determined."""

    @abstractmethod
    async def last_changed_file(self, repo_path: Path) -> str | None:
        """Return the repo-relative path of the most recently changed file.

        Returns None when there is nothing waiting to be pushed.
        """


@dataclass(frozen=True, kw_only=True)
class GitResult:
    """Outcome of a single git invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def lines(self) -> Sequence[str]:
        """Non-empty output lines."""
        return [line for line in self.stdout.splitlines() if line.strip()]


@dataclass(frozen=True, kw_only=True)
class GitClient(VersionControlClient):
    """Version control client backed by the git executable."""

    git: str = "git"

    async def current_branch(self, repo_path: Path) -> str | None:
        """Get the current branch via ``git rev-parse --abbrev-ref HEAD``."""
        result = await self.run_git(repo_path, "rev-parse", "--abbrev-ref", "HEAD")
        if result is None or result.returncode != 0 or not result.lines:
            return None
        return result.lines[0].strip()

    async def last_changed_file(self, repo_path: Path) -> str | None:
        """Get the first file touched by HEAD, if any commit is unpushed."""
        cherry = await self.run_git(repo_path, "cherry", "-v")
        if cherry is None:
            return None

        if cherry.returncode == 0:
            if not cherry.lines:
                log.info("No unpushed commits on the current branch")
                return None
            log.debug("Found an unpushed change: %s", cherry.lines[0])
        else:
            # No upstream yet, so every commit on the branch is unpushed
            log.debug(
                "git cherry failed (%s), assuming unpushed", cherry.stderr.strip()
            )

        show = await self.run_git(
            repo_path, "show", "--name-only", "--format=", "HEAD"
        )
        if show is None or show.returncode != 0 or not show.lines:
            return None
        return show.lines[0].strip()

    async def run_git(self, repo_path: Path, *args: str) -> GitResult | None:
        """Run git in ``repo_path``; returns None if git can't be started."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.git,
                *args,
                cwd=repo_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            log.error("Failed to run git %s: %s", " ".join(args), e)
            return None

        stdout, stderr = await process.communicate()
        result = GitResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if result.returncode != 0:
            log.debug(
                "git %s exited with %d: %s",
                " ".join(args),
                result.returncode,
                result.stderr.strip(),
            )
        return result
