"""Entry point of the discovery worker process.

The worker shadow-copies the build output into a private directory and
loads candidates from the copy, so the originals are never held open.
Events are written to the original stdout as JSON lines; anything the
inspected modules print is redirected to stderr.

Events:
    {"event": "probe", "name": ...}       before loading a candidate
    {"event": "container", "name": ..., "test_classes": [...]}
    {"event": "skipped", "name": ..., "reason": ...}
    {"event": "done"}
"""

import argparse
import json
import logging
import os
import shutil
import sys
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any, TextIO

from pushgate.discovery.inspection import ModuleLoadError, inspect_module
from pushgate.resources import release

log = logging.getLogger("pushgate.discovery.worker")


def list_candidates(
    build_dir: Path, suffixes: Sequence[str], skip: Sequence[str]
) -> Sequence[str]:
    """Names of candidate files directly under ``build_dir``."""
    return sorted(
        path.name
        for path in build_dir.iterdir()
        if path.is_file() and path.suffix in suffixes and path.name not in skip
    )


def shadow_copy(build_dir: Path, shadow_root: Path) -> Path:
    """Copy the build output into ``shadow_root``; partial copies are tolerated."""
    target = shadow_root / "bin"
    try:
        shutil.copytree(build_dir, target, symlinks=True)
    except shutil.Error as e:
        log.warning("Some files could not be shadow-copied: %s", e)
    return target


class EventWriter:
    """Writes protocol events as JSON lines."""

    def __init__(self, stream: TextIO):
        self.stream = stream

    def emit(self, event: str, **fields: Any) -> None:
        self.stream.write(json.dumps({"event": event, **fields}) + "\n")
        self.stream.flush()


def scan(
    build_dir: Path, suffixes: Sequence[str], skip: Sequence[str], events: EventWriter
) -> None:
    """Inspect every candidate and report the result of each."""
    candidates = list_candidates(build_dir, suffixes, skip)
    shadow_root = Path(tempfile.mkdtemp(prefix="pushgate-shadow-"))
    try:
        shadow_dir = shadow_copy(build_dir, shadow_root)
        sys.path.insert(0, str(shadow_dir))

        for name in candidates:
            events.emit("probe", name=name)
            try:
                inspection = inspect_module(shadow_dir / name)
            except ModuleLoadError as e:
                events.emit("skipped", name=name, reason=f"failed to load: {e}")
                continue

            if inspection.opted_out:
                events.emit("skipped", name=name, reason="opted out")
            elif inspection.is_container:
                events.emit(
                    "container", name=name, test_classes=list(inspection.test_classes)
                )
        events.emit("done")
    finally:
        release(shadow_root)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse worker arguments."""
    parser = argparse.ArgumentParser(description="Test container discovery worker")
    parser.add_argument("build_dir", type=Path, help="Build output directory")
    parser.add_argument(
        "--suffix", action="append", default=[], help="Candidate file suffix"
    )
    parser.add_argument(
        "--skip", action="append", default=[], help="File name to leave out"
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Worker entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    protocol = os.fdopen(os.dup(sys.stdout.fileno()), "w", encoding="utf-8")
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    sys.stdout = sys.stderr

    with protocol:
        suffixes = args.suffix or [".py", ".pyc"]
        scan(args.build_dir, suffixes, args.skip, EventWriter(protocol))


if __name__ == "__main__":  # pragma: no cover
    main()
