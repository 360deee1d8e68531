"""Models for the gate configuration loaded from pushgate.yaml."""

from collections.abc import Sequence
from pathlib import Path
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

SelectionStrategy: TypeAlias = Literal["all", "by-change", "explicit"]

DEFAULT_RUNNER_ARGS = ("/testcontainer:{container}", "/resultsfile:{results_file}")
DEFAULT_BUILD_COMMAND = (
    "msbuild",
    "{item}",
    "/t:Build",
    "/p:Configuration=Debug",
    "/p:OutputPath={output_dir}",
    "/nodeReuse:false",
    "/fileLogger",
    "/fileLoggerParameters:logfile={log_file}",
)
RUNNER_PLACEHOLDERS = ("container", "results_file")
BUILD_PLACEHOLDERS = ("item", "output_dir", "log_file")


class ConfigModel(BaseModel):
    """Read-only model rejecting unknown keys."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class WorkItem(ConfigModel):
    """One build unit to build and test."""

    path: str = Field(
        ..., description="Build definition path, relative to the repo root"
    )
    build: bool = Field(default=True, description="Build this item")
    run_tests: bool = Field(
        default=True, description="Run the item's tests (only when it is built)"
    )

    def resolve(self, repo_root: Path) -> Path:
        """Return the absolute build definition path."""
        return (repo_root / self.path).resolve()

    @property
    def name(self) -> str:
        """Short display name of the item."""
        return Path(self.path).stem


class GateConfiguration(ConfigModel):
    """Complete gate configuration, read-only for the duration of a run."""

    test_runner: Sequence[str] = Field(
        ..., min_length=1, description="Runner executable and fixed leading arguments"
    )
    test_runner_args: Sequence[str] = Field(
        default=DEFAULT_RUNNER_ARGS,
        description="Runner arguments; {container} and {results_file} are substituted",
    )
    build_command: Sequence[str] = Field(
        default=DEFAULT_BUILD_COMMAND,
        min_length=1,
        description="Build command with {item}, {output_dir} and {log_file}",
    )
    on_develop_only: bool = Field(
        default=False, description="Only allow gating on the gated branch"
    )
    gated_branch: str = Field(default="develop", description="Branch to gate on")
    selection_strategy: SelectionStrategy = Field(
        default="all", description="How work items are selected"
    )
    explicit_items: Sequence[WorkItem] = Field(
        default_factory=list, description="Items for the explicit strategy"
    )
    build_file_pattern: str = Field(
        default="*.sln", description="Glob identifying build definition files"
    )
    container_suffixes: Sequence[str] = Field(
        default=(".py", ".pyc"), description="Suffixes of candidate test containers"
    )
    max_parallel_runners: int | None = Field(
        default=None, ge=1, description="Concurrent runner cap (None means unbounded)"
    )
    runner_timeout: float | None = Field(
        default=None, gt=0, description="Per-container timeout in seconds"
    )
    discovery_timeout: float = Field(
        default=300.0, gt=0, description="Timeout for one discovery worker in seconds"
    )
    strict_results: bool = Field(
        default=True, description="Fail when a runner result cannot be parsed"
    )
    trace_log_dir: Path | None = Field(
        default=None, description="Directory for the per-run trace log"
    )

    @field_validator("container_suffixes")
    @classmethod
    def _normalize_suffixes(cls, value: Sequence[str]) -> Sequence[str]:
        return tuple(s if s.startswith(".") else f".{s}" for s in value)

    @field_validator("test_runner_args")
    @classmethod
    def _check_runner_args(cls, value: Sequence[str]) -> Sequence[str]:
        return check_template(value, RUNNER_PLACEHOLDERS)

    @field_validator("build_command")
    @classmethod
    def _check_build_command(cls, value: Sequence[str]) -> Sequence[str]:
        return check_template(value, BUILD_PLACEHOLDERS)


def check_template(args: Sequence[str], placeholders: Sequence[str]) -> Sequence[str]:
    """Ensure every argument formats with ``placeholders`` alone.

    Literal braces must be doubled (``{{`` and ``}}``).
    """
    values = dict.fromkeys(placeholders, "")
    for arg in args:
        try:
            arg.format(**values)
        except (KeyError, IndexError, AttributeError, ValueError) as e:
            allowed = ", ".join(f"{{{p}}}" for p in placeholders)
            raise ValueError(
                f"Invalid argument template {arg!r} ({e!r}), "
                f"allowed placeholders: {allowed}"
            ) from e
    return tuple(args)
