"""Discover test containers inside a disposable worker process."""

import asyncio
import json
import logging
import os
import sys
import tempfile
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

from pushgate.models.result import ContainerRef

log = logging.getLogger(__name__)

WORKER_MODULE = "pushgate.discovery.worker"
PACKAGE_ROOT = Path(__file__).resolve().parents[2]


class DiscoveryError(Exception):
    """Raised when the discovery worker can't be started or speaks garbage."""


@dataclass(kw_only=True)
class ScanOutcome:
    """What a single worker reported before exiting."""

    containers: list[ContainerRef] = field(default_factory=list)
    probed: list[str] = field(default_factory=list)
    completed: bool = False


@dataclass(frozen=True, kw_only=True)
class IsolatedTestDiscoverer:
    """Finds modules holding test classes without loading them in-process.

    Candidates are loaded by a child interpreter working on a shadow copy
    of the build output. A candidate that takes the worker down is
    skipped and the scan resumes in a fresh worker.
    """

    suffixes: Sequence[str] = (".py", ".pyc")
    timeout: float = 300.0
    python: str = sys.executable

    async def discover(self, build_output_dir: Path) -> Sequence[ContainerRef]:
        """Return the test containers directly under ``build_output_dir``.

        Raises:
            DiscoveryError: If the worker can't be started, speaks an invalid
                protocol, or dies before inspecting anything

        """
        if not build_output_dir.is_dir():
            log.warning("Build output %s does not exist", build_output_dir)
            return []

        log.info("Searching for test containers in %s", build_output_dir)
        started = time.monotonic()

        containers: list[ContainerRef] = []
        excluded: list[str] = []
        while True:
            outcome = await self.scan(build_output_dir, excluded)
            containers.extend(outcome.containers)
            if outcome.completed:
                break

            if not outcome.probed:
                raise DiscoveryError(
                    f"Discovery worker exited before inspecting {build_output_dir}"
                )
            culprit = outcome.probed[-1]
            log.error("Discovery worker crashed while loading %s, skipping it", culprit)
            excluded.extend(outcome.probed)

        for container in containers:
            log.info(
                "Found test container %s (%s)",
                container.path.name,
                ", ".join(container.test_classes),
            )
        log.info(
            "Found %d test container(s) in %.2fs",
            len(containers),
            time.monotonic() - started,
        )
        return containers

    async def scan(
        self, build_output_dir: Path, excluded: Sequence[str]
    ) -> ScanOutcome:
        """Run one worker over the directory, skipping ``excluded`` names."""
        args = [self.python, "-m", WORKER_MODULE, str(build_output_dir)]
        for suffix in self.suffixes:
            args.extend(["--suffix", suffix])
        for name in excluded:
            args.extend(["--skip", name])

        # Processes started by inspected modules can hold stderr past the worker.
        with tempfile.TemporaryFile() as stderr:
            try:
                process = await asyncio.create_subprocess_exec(
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=stderr,
                    env=worker_environment(),
                )
            except OSError as e:
                raise DiscoveryError(f"Failed to start discovery worker: {e}") from e

            outcome = ScanOutcome()
            try:
                await asyncio.wait_for(
                    self.read_until_exit(process, build_output_dir, outcome),
                    timeout=self.timeout,
                )
            except TimeoutError:
                if outcome.completed:
                    log.warning(
                        "Discovery worker did not exit within %.0fs after finishing",
                        self.timeout,
                    )
                else:
                    log.error("Discovery worker timed out after %.0fs", self.timeout)
            finally:
                if process.returncode is None:
                    process.kill()
                    await process.wait()
                relay_stderr(stderr)

        if outcome.completed and process.returncode != 0:
            log.warning("Discovery worker exited with code %s", process.returncode)
        return outcome

    async def read_until_exit(
        self,
        process: asyncio.subprocess.Process,
        build_output_dir: Path,
        outcome: ScanOutcome,
    ) -> None:
        """Read events until the worker closes its protocol stream, then reap it."""
        await self.read_events(process, build_output_dir, outcome)
        await process.wait()

    async def read_events(
        self,
        process: asyncio.subprocess.Process,
        build_output_dir: Path,
        outcome: ScanOutcome,
    ) -> None:
        """Consume the worker's JSON line events into ``outcome``.

        Raises:
            DiscoveryError: On a line that isn't a well-formed event

        """
        assert process.stdout is not None
        async for raw_line in process.stdout:
            line = raw_line.decode(errors="replace").strip()
            if not line:
                continue
            try:
                apply_event(json.loads(line), build_output_dir, outcome)
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                raise DiscoveryError(
                    f"Invalid discovery worker output: {line!r}"
                ) from e


def apply_event(
    event: dict[str, Any], build_output_dir: Path, outcome: ScanOutcome
) -> None:
    """Record one worker event in ``outcome``."""
    match event["event"]:
        case "probe":
            outcome.probed.append(str(event["name"]))
        case "container":
            outcome.containers.append(
                ContainerRef(
                    path=build_output_dir / event["name"],
                    test_classes=tuple(event.get("test_classes", ())),
                )
            )
        case "skipped":
            log.warning("Skipping %s: %s", event["name"], event.get("reason"))
        case "done":
            outcome.completed = True
        case kind:
            raise DiscoveryError(f"Unknown discovery event: {kind!r}")


def relay_stderr(stream: IO[bytes]) -> None:
    """Forward what the worker wrote to stderr to the debug log."""
    stream.seek(0)
    for raw_line in stream:
        log.debug("[worker] %s", raw_line.decode(errors="replace").rstrip())


def worker_environment() -> dict[str, str]:
    """Environment for the worker, able to import this package."""
    env = dict(os.environ)
    python_path = env.get("PYTHONPATH")
    env["PYTHONPATH"] = (
        f"{PACKAGE_ROOT}{os.pathsep}{python_path}" if python_path else str(PACKAGE_ROOT)
    )
    env["PYTHONDONTWRITEBYTECODE"] = "1"
    return env
