"""Run test containers through the external test runner."""

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pushgate.models.result import ContainerRef, RawRunOutput
from pushgate.resources import ResourceKind, RunContext

log = logging.getLogger(__name__)

RESULTS_FILE_SUFFIX = ".trx"


@dataclass(frozen=True, kw_only=True)
class TestRunnerClient:
    """Invokes the test runner once per container.

    The runner is expected to write its result document to the path given
    through ``{results_file}`` and to print ``Results file: <path>``.
    """

    __test__ = False

    command: Sequence[str]
    args: Sequence[str]
    max_parallel: int | None = None
    timeout: float | None = None

    async def run_all(
        self, containers: Sequence[ContainerRef], context: RunContext
    ) -> Sequence[RawRunOutput]:
        """Run every container concurrently and wait for all of them."""
        if not containers:
            return []

        limit = self.max_parallel or len(containers)
        semaphore = asyncio.Semaphore(limit)
        log.info(
            "Running %d test container(s), up to %d at a time", len(containers), limit
        )

        async def bounded(container: ContainerRef) -> RawRunOutput:
            async with semaphore:
                return await self.run(container, context)

        return await asyncio.gather(*(bounded(c) for c in containers))

    async def run(self, container: ContainerRef, context: RunContext) -> RawRunOutput:
        """Run one container, returning its console output."""
        results_file = new_results_path(context)
        args = [
            *self.command,
            *(
                arg.format(container=container.path, results_file=results_file)
                for arg in self.args
            ),
        ]
        log.debug("Running tests: %s", " ".join(args))

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            log.error("Failed to start test runner for %s: %s", container.path.name, e)
            return RawRunOutput(container=container.path, text="")

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), self.timeout)
        except TimeoutError:
            log.error(
                "Test runner for %s timed out after %.0fs",
                container.path.name,
                self.timeout,
            )
            process.kill()
            await process.wait()
            return RawRunOutput(
                container=container.path,
                text="",
                exit_code=process.returncode,
                timed_out=True,
            )

        log.debug(
            "Test runner for %s exited with code %s",
            container.path.name,
            process.returncode,
        )
        return RawRunOutput(
            container=container.path,
            text=stdout.decode(errors="replace"),
            exit_code=process.returncode,
        )


def new_results_path(context: RunContext) -> Path:
    """Mint a collision-free result document path for one invocation."""
    results_dir = context.scoped_path(ResourceKind.RUN_RESULTS)
    return results_dir / f"{uuid.uuid4().hex}{RESULTS_FILE_SUFFIX}"
