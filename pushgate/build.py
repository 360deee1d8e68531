"""Build tool invocation for a single work item."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)


class BuildTool(ABC):
    """Compiles one work item into an output directory."""

    @abstractmethod
    async def build(self, item_path: Path, output_dir: Path, logs_dir: Path) -> bool:
        """Build ``item_path`` into ``output_dir``.

        Args:
            item_path: Absolute path of the build definition
            output_dir: Directory receiving the build output
            logs_dir: Directory receiving build logs

        Returns:
            True if the build succeeded

        """


@dataclass(frozen=True, kw_only=True)
class CommandBuildTool(BuildTool):
    """Build tool running an external command template.

    Placeholders ``{item}``, ``{output_dir}`` and ``{log_file}`` are
    substituted in every argument.
    """

    command: Sequence[str]

    async def build(self, item_path: Path, output_dir: Path, logs_dir: Path) -> bool:
        """Run the build command and record its output in the logs directory."""
        log_file = logs_dir / f"build-{item_path.stem}.log"
        args = [
            arg.format(item=item_path, output_dir=output_dir, log_file=log_file)
            for arg in self.command
        ]
        log.debug("Running build: %s", " ".join(args))

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=item_path.parent,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            log.error("Failed to start build for %s: %s", item_path, e)
            return False

        stdout, _ = await process.communicate()
        output = stdout.decode(errors="replace")

        try:
            with log_file.open("a", encoding="utf-8") as f:
                f.write(output)
        except OSError as e:
            log.warning("Unable to write build log %s: %s", log_file, e)

        if process.returncode != 0:
            log.debug("Build output for %s:\n%s", item_path, output)
            log.error(
                "Build of %s exited with code %s", item_path.name, process.returncode
            )
            return False
        return True
