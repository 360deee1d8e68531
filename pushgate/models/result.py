"""Models for test discovery, execution and aggregation results."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, TypeAlias

TestOutcome: TypeAlias = Literal["passed", "failed", "skipped"]


@dataclass(frozen=True, kw_only=True)
class ContainerRef:
    """A module identified as holding tests."""

    path: Path
    test_classes: Sequence[str] = ()


@dataclass(frozen=True, kw_only=True)
class RawRunOutput:
    """Console capture of one runner invocation."""

    container: Path
    text: str
    exit_code: int | None = None
    timed_out: bool = False


@dataclass(frozen=True, kw_only=True)
class TestEntry:
    """Outcome of one test case."""

    __test__ = False

    name: str
    outcome: TestOutcome


@dataclass(frozen=True, kw_only=True)
class StructuredRunResult:
    """Per-test outcomes parsed from a result document."""

    results_file: Path
    entries: Sequence[TestEntry] = ()


@dataclass(frozen=True, kw_only=True)
class AggregateResult:
    """Pass/fail totals across all containers of one work item."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    failing_names: Sequence[str] = field(default_factory=tuple)
    unparsed: int = 0
    strict: bool = False

    @property
    def succeeded(self) -> bool:
        """True when nothing failed (and, in strict mode, everything was parsed)."""
        if self.strict and self.unparsed:
            return False
        return self.failed == 0
