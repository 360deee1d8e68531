"""CLI entry point for the pre-push gate."""

import argparse
import asyncio
import json
import logging
import stat
import sys
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from pushgate.build import CommandBuildTool
from pushgate.config_loader import ConfigurationMissingError, load_configuration
from pushgate.pipeline import GatePipeline, GateReport, ItemResult
from pushgate.vcs import GitClient

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TRACE_LOG_NAME_FORMAT = "pushgate-%d.%m.%Y-%H.%M.%S.log"

STATUS_SYMBOLS = {
    "passed": "✓",
    "failed": "✗",
    "build-failed": "!",
}

HOOK_MARKER = "# Installed by pushgate"
HOOK_TEMPLATE = """#!/bin/sh
{marker}: build and test before pushing.
exec "{python}" -m pushgate.cli run --repo "$(git rev-parse --show-toplevel)"
"""


def item_status(item_result: ItemResult) -> str:
    """Summary status key of an item result."""
    if not item_result.built:
        return "build-failed"
    return "passed" if item_result.succeeded else "failed"


def log_results_summary(log: logging.Logger, report: GateReport) -> None:
    """Log a formatted summary of the gate decision."""
    log.info("=" * 80)
    log.info("Gate Results Summary:")
    log.info("=" * 80)

    if report.rejected_reason:
        log.error("Push rejected: %s", report.rejected_reason)
        return

    if not report.items:
        log.info("No work items, nothing to gate")

    for item_result in report.items:
        status = item_status(item_result)
        symbol = STATUS_SYMBOLS[status]
        result = item_result.aggregate
        if result is None:
            log.info("%s %s: %s", symbol, item_result.item.path, status)
        else:
            log.info(
                "%s %s: %s (%d passed, %d failed, %d skipped)",
                symbol,
                item_result.item.path,
                status,
                result.passed,
                result.failed,
                result.skipped,
            )
            for name in result.failing_names:
                log.info("  Failing test: %s", name)
            if result.unparsed:
                log.info("  Containers without results: %d", result.unparsed)
        if item_result.error:
            log.info("  Error: %s", item_result.error)

    log.info("Gate %s", "passed" if report.succeeded else "failed")


def format_output(report: GateReport) -> dict[str, Any]:
    """Format the gate report for JSON output."""
    items: list[dict[str, Any]] = []
    for item_result in report.items:
        result = item_result.aggregate
        items.append(
            {
                "path": item_result.item.path,
                "status": item_status(item_result),
                "containers": [str(c.path) for c in item_result.containers],
                "passed": result.passed if result else 0,
                "failed": result.failed if result else 0,
                "skipped": result.skipped if result else 0,
                "unparsed": result.unparsed if result else 0,
                "failing_tests": list(result.failing_names) if result else [],
                "error": item_result.error,
            }
        )

    return {
        "succeeded": report.succeeded,
        "rejected_reason": report.rejected_reason,
        "passed": sum(i["passed"] for i in items),
        "failed": sum(i["failed"] for i in items),
        "items": items,
    }


@contextmanager
def trace_log(directory: Path | None) -> Iterator[Path]:
    """Attach the durable per-run trace log to the root logger."""
    directory = directory or Path(tempfile.gettempdir()) / "pushgate" / "logs"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / datetime.now().strftime(TRACE_LOG_NAME_FORMAT)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    logging.getLogger("pushgate").info("Trace log: %s", path)
    try:
        yield path
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)
        handler.close()


async def run(
    repo_root: Path,
    config_path: Path | None = None,
    *,
    json_output: bool = False,
) -> int:
    """Run the gate and return the exit code."""
    log = logging.getLogger("pushgate")

    try:
        config = load_configuration(repo_root, config_path)
    except ConfigurationMissingError as e:
        log.error("Can't find the gate configuration: %s", e)
        return EXIT_CONFIG_ERROR
    except ValueError as e:
        log.error("Invalid gate configuration: %s", e)
        return EXIT_CONFIG_ERROR

    trace_dir = config.trace_log_dir
    if trace_dir is not None and not trace_dir.is_absolute():
        trace_dir = repo_root / trace_dir

    with trace_log(trace_dir):
        pipeline = GatePipeline.from_config(
            config, GitClient(), CommandBuildTool(command=config.build_command)
        )
        try:
            report = await pipeline.run(config, repo_root)
        except Exception:
            log.debug("Unexpected failure", exc_info=True)
            log.error("The gate failed unexpectedly, blocking the push")
            return EXIT_FAILED

        log_results_summary(log, report)

    if json_output:
        print(json.dumps(format_output(report), indent=2))

    return EXIT_PASSED if report.succeeded else EXIT_FAILED


def install_hook(repo_root: Path, *, force: bool = False) -> int:
    """Install a pre-push hook running the gate; returns the exit code."""
    log = logging.getLogger("pushgate")
    hooks_dir = repo_root / ".git" / "hooks"
    if not hooks_dir.parent.is_dir():
        log.error("%s is not the root of a git repository", repo_root)
        return EXIT_FAILED

    hook = hooks_dir / "pre-push"
    foreign = hook.exists() and HOOK_MARKER not in hook.read_text(errors="replace")
    if foreign and not force:
        log.error(
            "A pre-push hook already exists at %s, use --force to replace it", hook
        )
        return EXIT_FAILED

    hooks_dir.mkdir(exist_ok=True)
    hook.write_text(HOOK_TEMPLATE.format(marker=HOOK_MARKER, python=sys.executable))
    hook.chmod(hook.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    log.info("Installed pre-push hook at %s", hook)
    return EXIT_PASSED


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Build and test affected work items before pushing"
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "install-hook"],
        default="run",
        help="Run the gate (default) or install it as a git pre-push hook",
    )
    parser.add_argument(
        "--repo",
        type=Path,
        default=Path.cwd(),
        help="Repository root (default: current directory)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: <repo>/pushgate.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a JSON summary on stdout",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing pre-push hook",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug messages on the console",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    # The console keeps its own level while the trace log lowers the root level.
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[console])

    repo_root = args.repo.resolve()
    if args.command == "install-hook":
        sys.exit(install_hook(repo_root, force=args.force))

    try:
        exit_code = asyncio.run(run(repo_root, args.config, json_output=args.json))
    except Exception:
        logging.getLogger("pushgate").exception(
            "The gate failed unexpectedly, blocking the push"
        )
        exit_code = EXIT_FAILED
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
