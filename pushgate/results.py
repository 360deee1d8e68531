"""Parse runner output into per-test outcomes and aggregate them."""

import logging
import xml.etree.ElementTree as ET
from collections import Counter
from collections.abc import Mapping, Sequence
from pathlib import Path

from pushgate.models.result import (
    AggregateResult,
    RawRunOutput,
    StructuredRunResult,
    TestEntry,
    TestOutcome,
)

log = logging.getLogger(__name__)

RESULTS_MARKER = "Results file:"

TRX_OUTCOMES: Mapping[str, TestOutcome] = {
    "passed": "passed",
    "failed": "failed",
    "error": "failed",
    "timeout": "failed",
    "aborted": "failed",
}


class ResultDocumentError(ValueError):
    """Raised when a result document has an unknown layout."""


def extract_results_path(text: str) -> Path | None:
    """Path following the ``Results file:`` marker, up to the line break."""
    start = text.find(RESULTS_MARKER)
    if start == -1:
        return None
    rest = text[start + len(RESULTS_MARKER) :]
    path = rest.splitlines()[0].strip() if rest else ""
    return Path(path) if path else None


def local_name(tag: str) -> str:
    """Element tag without its namespace."""
    return tag.rsplit("}", 1)[-1]


def children_named(element: ET.Element, name: str) -> Sequence[ET.Element]:
    """Direct children of ``element`` with local tag ``name``."""
    return [child for child in element if local_name(child.tag) == name]


def parse_trx(root: ET.Element) -> Sequence[TestEntry]:
    """Entries of an MSTest/VSTest TRX document.

    Only top-level results count; the inner rows of data-driven tests are
    already summarized by their parent result.
    """
    return [
        TestEntry(
            name=element.get("testName", ""),
            outcome=TRX_OUTCOMES.get(element.get("outcome", "").lower(), "skipped"),
        )
        for results in children_named(root, "Results")
        for element in children_named(results, "UnitTestResult")
    ]


def parse_junit(root: ET.Element) -> Sequence[TestEntry]:
    """Entries of a JUnit XML document."""
    entries: list[TestEntry] = []
    for case in root.iter():
        if local_name(case.tag) != "testcase":
            continue
        children = {local_name(child.tag) for child in case}
        outcome: TestOutcome
        if children & {"failure", "error"}:
            outcome = "failed"
        elif "skipped" in children:
            outcome = "skipped"
        else:
            outcome = "passed"
        classname = case.get("classname")
        name = case.get("name", "")
        entries.append(
            TestEntry(
                name=f"{classname}.{name}" if classname else name, outcome=outcome
            )
        )
    return entries


def parse_document(path: Path) -> Sequence[TestEntry]:
    """Parse a TRX or JUnit XML result document.

    Raises:
        OSError: If the document can't be read
        ET.ParseError: If the document isn't well-formed XML
        ValueError: If the path is not usable (embedded NUL)
        ResultDocumentError: If the root element is neither format

    """
    root = ET.parse(path).getroot()
    match local_name(root.tag):
        case "TestRun":
            return parse_trx(root)
        case "testsuites" | "testsuite":
            return parse_junit(root)
        case other:
            raise ResultDocumentError(f"Unknown result document root <{other}>")


def parse_run_output(raw: RawRunOutput) -> StructuredRunResult | None:
    """Extract the structured result of one runner invocation.

    Returns None, after logging why, when the marker is missing or the
    document can't be read; never raises.
    """
    if raw.timed_out:
        log.error("No results for %s: the test run timed out", raw.container.name)
        return None

    path = extract_results_path(raw.text)
    if path is None:
        log.error(
            "Test container %s failed to run (no results file reported)",
            raw.container.name,
        )
        return None

    try:
        entries = parse_document(path)
    except (OSError, ET.ParseError, ValueError) as e:
        log.error(
            "Unable to read results of %s from %s: %s", raw.container.name, path, e
        )
        return None

    return StructuredRunResult(results_file=path, entries=entries)


def aggregate(
    results: Sequence[StructuredRunResult | None], *, strict: bool = False
) -> AggregateResult:
    """Merge parsed results into totals and failing test names.

    Unparsed results add no entries; they are counted in ``unparsed`` and
    only fail the aggregate when ``strict`` is set.
    """
    entries = [
        entry for result in results if result is not None for entry in result.entries
    ]
    counts = Counter(entry.outcome for entry in entries)
    return AggregateResult(
        passed=counts["passed"],
        failed=counts["failed"],
        skipped=counts["skipped"],
        failing_names=tuple(e.name for e in entries if e.outcome == "failed"),
        unparsed=sum(1 for result in results if result is None),
        strict=strict,
    )
