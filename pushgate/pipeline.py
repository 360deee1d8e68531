"""Gate pipeline: resolve, build, discover, run and aggregate per work item."""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from pushgate.build import BuildTool
from pushgate.discovery import DiscoveryError, IsolatedTestDiscoverer
from pushgate.models.config import GateConfiguration, WorkItem
from pushgate.models.result import AggregateResult, ContainerRef
from pushgate.resolver import WorkItemResolver
from pushgate.resources import ResourceKind, RunContext
from pushgate.results import aggregate, parse_run_output
from pushgate.runner import TestRunnerClient
from pushgate.vcs import VersionControlClient

log = logging.getLogger(__name__)


class PipelineState(StrEnum):
    """States a gate run moves through."""

    INIT = "init"
    CONFIG_LOADED = "config-loaded"
    BRANCH_VALIDATED = "branch-validated"
    NO_WORK_ITEMS = "no-work-items"
    BUILDING = "building"
    BUILD_FAILED = "build-failed"
    DISCOVERING = "discovering"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    ITEM_DONE = "item-done"
    ITEM_FAILED = "item-failed"
    TEARDOWN = "teardown"
    TERMINAL = "terminal"


@dataclass(frozen=True, kw_only=True)
class ItemResult:
    """Outcome of processing one work item."""

    item: WorkItem
    built: bool
    containers: Sequence[ContainerRef] = ()
    aggregate: AggregateResult | None = None
    error: str | None = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        """True when the item built and none of its tests failed."""
        if not self.built or self.error is not None:
            return False
        return self.aggregate is None or self.aggregate.succeeded


@dataclass(frozen=True, kw_only=True)
class GateReport:
    """Overall gate decision with per-item detail."""

    items: Sequence[ItemResult] = ()
    rejected_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        """Logical AND over all items; vacuously true without items."""
        if self.rejected_reason is not None:
            return False
        return all(item.succeeded for item in self.items)


@dataclass(kw_only=True)
class StateTracker:
    """Records state transitions of a run in the trace log."""

    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.INIT])

    @property
    def current(self) -> PipelineState:
        return self.history[-1]

    def enter(self, state: PipelineState, detail: str = "") -> None:
        log.debug("State %s -> %s %s", self.current, state, detail)
        self.history.append(state)


@dataclass(frozen=True, kw_only=True)
class GatePipeline:
    """Composes resolution, build, discovery, execution and aggregation.

    Work items are processed one after another since they share the build
    output directory; the containers of one item run concurrently.
    """

    vcs: VersionControlClient
    build_tool: BuildTool
    discoverer: IsolatedTestDiscoverer
    runner: TestRunnerClient
    strict_results: bool = True

    @classmethod
    def from_config(
        cls, config: GateConfiguration, vcs: VersionControlClient, build_tool: BuildTool
    ) -> "GatePipeline":
        """Create a pipeline with discovery and runner settings from ``config``."""
        return cls(
            vcs=vcs,
            build_tool=build_tool,
            discoverer=IsolatedTestDiscoverer(
                suffixes=config.container_suffixes, timeout=config.discovery_timeout
            ),
            runner=TestRunnerClient(
                command=config.test_runner,
                args=config.test_runner_args,
                max_parallel=config.max_parallel_runners,
                timeout=config.runner_timeout,
            ),
            strict_results=config.strict_results,
        )

    async def run(
        self,
        config: GateConfiguration,
        repo_root: Path,
        context: RunContext | None = None,
        tracker: StateTracker | None = None,
    ) -> GateReport:
        """Run the gate over the repository and release all resources."""
        context = context or RunContext()
        tracker = tracker or StateTracker()
        tracker.enter(PipelineState.CONFIG_LOADED)
        try:
            if (reason := await self.validate_branch(config, repo_root)) is not None:
                log.error(reason)
                return GateReport(rejected_reason=reason)
            tracker.enter(PipelineState.BRANCH_VALIDATED)

            resolver = WorkItemResolver(vcs=self.vcs)
            items = await resolver.resolve(config, repo_root)
            if not items:
                tracker.enter(PipelineState.NO_WORK_ITEMS)
                log.info("No work items found, nothing to gate")
                return GateReport()

            results = [
                await self.handle_item(item, repo_root, context, tracker)
                for item in items
            ]
            return GateReport(items=results)
        finally:
            tracker.enter(PipelineState.TEARDOWN)
            context.release_all()
            tracker.enter(PipelineState.TERMINAL)

    async def validate_branch(
        self, config: GateConfiguration, repo_root: Path
    ) -> str | None:
        """Return a rejection reason, or None when the branch may be gated."""
        branch = await self.vcs.current_branch(repo_root)
        if not branch:
            return (
                "Unable to determine the current branch. "
                "Make sure the working directory is the repository root."
            )

        if config.on_develop_only and branch.lower() != config.gated_branch.lower():
            return (
                f"Current branch {branch} is not {config.gated_branch}; "
                "this repository is gated on that branch only."
            )

        log.info("Current branch is %s. Looking for work items.", branch)
        return None

    async def handle_item(
        self,
        item: WorkItem,
        repo_root: Path,
        context: RunContext,
        tracker: StateTracker,
    ) -> ItemResult:
        """Build one item and run its tests, releasing its directories after."""
        log.info("Starting work on %s", item.name)
        started = time.monotonic()
        try:
            if not item.build:
                log.info("Skipping %s, build disabled", item.name)
                return ItemResult(item=item, built=True)

            tracker.enter(PipelineState.BUILDING, item.path)
            output_dir = context.scoped_path(ResourceKind.BUILD_OUTPUT)
            built = await self.build_tool.build(
                item.resolve(repo_root),
                output_dir,
                context.scoped_path(ResourceKind.LOGS),
            )
            if not built:
                tracker.enter(PipelineState.BUILD_FAILED, item.path)
                log.error("Build for %s failed!", item.path)
                tracker.enter(PipelineState.ITEM_FAILED, item.path)
                return ItemResult(
                    item=item, built=False, duration=time.monotonic() - started
                )
            log.info("Build of %s completed successfully", item.name)

            if not item.run_tests:
                tracker.enter(PipelineState.ITEM_DONE, item.path)
                return ItemResult(
                    item=item, built=True, duration=time.monotonic() - started
                )

            result = await self.test_item(item, output_dir, context, tracker)
            state = (
                PipelineState.ITEM_DONE
                if result.succeeded
                else PipelineState.ITEM_FAILED
            )
            tracker.enter(state, item.path)
            log.info(
                "Done working on %s in %.1f seconds",
                item.name,
                time.monotonic() - started,
            )
            return result
        finally:
            context.release_kind(ResourceKind.BUILD_OUTPUT)
            context.release_kind(ResourceKind.RUN_RESULTS)

    async def test_item(
        self,
        item: WorkItem,
        output_dir: Path,
        context: RunContext,
        tracker: StateTracker,
    ) -> ItemResult:
        """Discover, run and aggregate the tests of a built item."""
        started = time.monotonic()

        tracker.enter(PipelineState.DISCOVERING, item.path)
        try:
            containers = await self.discoverer.discover(output_dir)
        except DiscoveryError as e:
            log.error("Test discovery for %s failed: %s", item.name, e)
            return ItemResult(
                item=item,
                built=True,
                error=f"discovery failed: {e}",
                duration=time.monotonic() - started,
            )

        tracker.enter(PipelineState.RUNNING, item.path)
        outputs = await self.runner.run_all(containers, context)

        tracker.enter(PipelineState.AGGREGATING, item.path)
        result = aggregate(
            [parse_run_output(output) for output in outputs],
            strict=self.strict_results,
        )
        log_aggregate(result)

        return ItemResult(
            item=item,
            built=True,
            containers=containers,
            aggregate=result,
            duration=time.monotonic() - started,
        )


def log_aggregate(result: AggregateResult) -> None:
    """Log the totals of one item and its failing tests."""
    if result.failed:
        log.error("There are failing tests:")
        for name in result.failing_names:
            log.error("  %s", name)
    if result.unparsed:
        log.log(
            logging.ERROR if result.strict else logging.WARNING,
            "%d test container(s) produced no readable results",
            result.unparsed,
        )
    log.info("Number of passed tests: %d", result.passed)
    log.info("Number of failed tests: %d", result.failed)
