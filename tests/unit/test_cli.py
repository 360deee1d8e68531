"""Tests for CLI module."""

import json
import logging
import os
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from pushgate.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILED,
    EXIT_PASSED,
    HOOK_MARKER,
    format_output,
    install_hook,
    log_results_summary,
    main,
    parse_args,
    run,
)
from pushgate.models.result import AggregateResult, ContainerRef
from pushgate.pipeline import GateReport, ItemResult
from pushgate.testing.factories import WorkItemFactory


def passing_item(path: str = "A/A.sln") -> ItemResult:
    """Item that built and passed its tests."""
    return ItemResult(
        item=WorkItemFactory.build(path=path),
        built=True,
        containers=[ContainerRef(path=Path("/out/a_tests.py"))],
        aggregate=AggregateResult(passed=3),
    )


def failing_item(path: str = "B/B.sln") -> ItemResult:
    """Item that built but has failing tests."""
    return ItemResult(
        item=WorkItemFactory.build(path=path),
        built=True,
        aggregate=AggregateResult(passed=1, failed=2, failing_names=("t1", "t2")),
    )


def unbuilt_item(path: str = "C/C.sln") -> ItemResult:
    """Item that failed to build."""
    return ItemResult(item=WorkItemFactory.build(path=path), built=False)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """Repository with a configuration file."""
    (tmp_path / "pushgate.yaml").write_text(
        f"test_runner: [runner]\ntrace_log_dir: {tmp_path / 'logs'}\n"
    )
    return tmp_path


def test_log_results_summary_passed(caplog: pytest.LogCaptureFixture) -> None:
    """Logs passed items with checkmark symbol."""
    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), GateReport(items=[passing_item()]))

    assert "Gate Results Summary:" in caplog.text
    assert "✓ A/A.sln: passed (3 passed, 0 failed, 0 skipped)" in caplog.text
    assert "Gate passed" in caplog.text


def test_log_results_summary_failures(caplog: pytest.LogCaptureFixture) -> None:
    """Logs failing tests and build failures."""
    report = GateReport(items=[failing_item(), unbuilt_item()])

    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), report)

    assert "✗ B/B.sln: failed (1 passed, 2 failed, 0 skipped)" in caplog.text
    assert "Failing test: t1" in caplog.text
    assert "Failing test: t2" in caplog.text
    assert "! C/C.sln: build-failed" in caplog.text
    assert "Gate failed" in caplog.text


def test_log_results_summary_rejected(caplog: pytest.LogCaptureFixture) -> None:
    """Logs the rejection reason."""
    with caplog.at_level(logging.INFO):
        log_results_summary(
            logging.getLogger(), GateReport(rejected_reason="wrong branch")
        )

    assert "Push rejected: wrong branch" in caplog.text


def test_log_results_summary_no_items(caplog: pytest.LogCaptureFixture) -> None:
    """Logs that there was nothing to gate."""
    with caplog.at_level(logging.INFO):
        log_results_summary(logging.getLogger(), GateReport())

    assert "nothing to gate" in caplog.text
    assert "Gate passed" in caplog.text


def test_format_output_empty() -> None:
    """Returns empty totals when no items."""
    assert format_output(GateReport()) == {
        "succeeded": True,
        "rejected_reason": None,
        "passed": 0,
        "failed": 0,
        "items": [],
    }


def test_format_output_mixed() -> None:
    """Formats mixed results with correct totals."""
    output = format_output(
        GateReport(items=[passing_item(), failing_item(), unbuilt_item()])
    )

    assert output["succeeded"] is False
    assert output["passed"] == 4
    assert output["failed"] == 2
    assert [i["status"] for i in output["items"]] == [
        "passed",
        "failed",
        "build-failed",
    ]
    assert output["items"][0]["containers"] == ["/out/a_tests.py"]
    assert output["items"][1]["failing_tests"] == ["t1", "t2"]


class TestRun:
    """Tests for run function."""

    async def test_returns_config_error_without_configuration(
        self, tmp_path: Path
    ) -> None:
        """Returns 2 when no configuration file exists."""
        assert await run(tmp_path) == EXIT_CONFIG_ERROR

    async def test_returns_config_error_for_invalid_configuration(
        self, tmp_path: Path
    ) -> None:
        """Returns 2 when the configuration is invalid."""
        (tmp_path / "pushgate.yaml").write_text("selection_strategy: all\n")

        assert await run(tmp_path) == EXIT_CONFIG_ERROR

    async def test_returns_zero_when_gate_passes(
        self, repo: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Returns 0 and prints the JSON summary."""
        with patch("pushgate.cli.GatePipeline") as mock_pipeline_cls:
            mock_pipeline = Mock()
            mock_pipeline.run = AsyncMock(
                return_value=GateReport(items=[passing_item()])
            )
            mock_pipeline_cls.from_config.return_value = mock_pipeline

            exit_code = await run(repo, json_output=True)

        assert exit_code == EXIT_PASSED
        output = json.loads(capsys.readouterr().out)
        assert output["passed"] == 3

    async def test_returns_one_when_gate_fails(self, repo: Path) -> None:
        """Returns 1 when any item fails."""
        with patch("pushgate.cli.GatePipeline") as mock_pipeline_cls:
            mock_pipeline = Mock()
            mock_pipeline.run = AsyncMock(
                return_value=GateReport(items=[passing_item(), unbuilt_item()])
            )
            mock_pipeline_cls.from_config.return_value = mock_pipeline

            exit_code = await run(repo)

        assert exit_code == EXIT_FAILED

    async def test_returns_one_on_unexpected_error(
        self, repo: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Unexpected failures block the push with a generic message."""
        with patch("pushgate.cli.GatePipeline") as mock_pipeline_cls:
            mock_pipeline = Mock()
            mock_pipeline.run = AsyncMock(side_effect=RuntimeError("kaboom"))
            mock_pipeline_cls.from_config.return_value = mock_pipeline

            exit_code = await run(repo)

        assert exit_code == EXIT_FAILED
        assert "failed unexpectedly" in caplog.text

    async def test_writes_trace_log(self, repo: Path) -> None:
        """Writes the per-run trace log into the configured directory."""
        with patch("pushgate.cli.GatePipeline") as mock_pipeline_cls:
            mock_pipeline = Mock()
            mock_pipeline.run = AsyncMock(return_value=GateReport())
            mock_pipeline_cls.from_config.return_value = mock_pipeline

            await run(repo)

        logs = list((repo / "logs").glob("pushgate-*.log"))
        assert len(logs) == 1
        assert "Trace log:" in logs[0].read_text()

    async def test_restores_root_logger(self, repo: Path) -> None:
        """The trace handler is detached after the run."""
        root = logging.getLogger()
        handlers_before = list(root.handlers)
        level_before = root.level

        with patch("pushgate.cli.GatePipeline") as mock_pipeline_cls:
            mock_pipeline = Mock()
            mock_pipeline.run = AsyncMock(return_value=GateReport())
            mock_pipeline_cls.from_config.return_value = mock_pipeline

            await run(repo)

        assert root.handlers == handlers_before
        assert root.level == level_before


class TestInstallHook:
    """Tests for install_hook function."""

    def test_installs_executable_hook(self, tmp_path: Path) -> None:
        """Writes an executable pre-push hook."""
        (tmp_path / ".git").mkdir()

        assert install_hook(tmp_path) == EXIT_PASSED

        hook = tmp_path / ".git" / "hooks" / "pre-push"
        assert HOOK_MARKER in hook.read_text()
        assert "-m pushgate.cli run" in hook.read_text()
        assert os.access(hook, os.X_OK)

    def test_refuses_outside_repository(self, tmp_path: Path) -> None:
        """Fails when the directory isn't a git repository."""
        assert install_hook(tmp_path) == EXIT_FAILED

    def test_keeps_foreign_hook(self, tmp_path: Path) -> None:
        """Doesn't replace someone else's hook without force."""
        hooks = tmp_path / ".git" / "hooks"
        hooks.mkdir(parents=True)
        (hooks / "pre-push").write_text("#!/bin/sh\nexit 0\n")

        assert install_hook(tmp_path) == EXIT_FAILED
        assert (hooks / "pre-push").read_text() == "#!/bin/sh\nexit 0\n"

    def test_replaces_foreign_hook_with_force(self, tmp_path: Path) -> None:
        """Replaces an existing hook when forced."""
        hooks = tmp_path / ".git" / "hooks"
        hooks.mkdir(parents=True)
        (hooks / "pre-push").write_text("#!/bin/sh\nexit 0\n")

        assert install_hook(tmp_path, force=True) == EXIT_PASSED
        assert HOOK_MARKER in (hooks / "pre-push").read_text()

    def test_reinstalls_own_hook(self, tmp_path: Path) -> None:
        """Installing twice is allowed."""
        (tmp_path / ".git").mkdir()

        assert install_hook(tmp_path) == EXIT_PASSED
        assert install_hook(tmp_path) == EXIT_PASSED


class TestMain:
    """Tests for the entry point."""

    def test_parse_args_defaults(self) -> None:
        """The run command is the default."""
        args = parse_args([])

        assert args.command == "run"
        assert args.config is None
        assert args.json is False

    def test_exits_with_run_result(self, tmp_path: Path) -> None:
        """Exits with the code returned by run."""
        with (
            patch("pushgate.cli.run", new_callable=AsyncMock, return_value=EXIT_FAILED),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["run", "--repo", str(tmp_path)])

        assert exc_info.value.code == EXIT_FAILED

    def test_exits_non_zero_on_unexpected_error(self, tmp_path: Path) -> None:
        """Unexpected errors outside the pipeline still block the push."""
        with (
            patch(
                "pushgate.cli.run",
                new_callable=AsyncMock,
                side_effect=OSError("disk full"),
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["--repo", str(tmp_path)])

        assert exc_info.value.code == EXIT_FAILED

    def test_install_hook_command(self, tmp_path: Path) -> None:
        """Dispatches to install_hook."""
        (tmp_path / ".git").mkdir()

        with pytest.raises(SystemExit) as exc_info:
            main(["install-hook", "--repo", str(tmp_path)])

        assert exc_info.value.code == EXIT_PASSED
        assert (tmp_path / ".git" / "hooks" / "pre-push").exists()
