"""Fixtures for integration tests."""

import subprocess
import sys
import textwrap
from pathlib import Path
from typing import Protocol

import pytest

FAKE_BUILD = '''
"""Copies src/*.py next to the build definition into the output directory."""
import shutil
import sys
from pathlib import Path

item, output_dir = Path(sys.argv[1]), Path(sys.argv[2])
if (item.parent / "BROKEN").exists():
    print("error: build failed")
    sys.exit(1)
for source in sorted((item.parent / "src").glob("*.py")):
    shutil.copy(source, output_dir / source.name)
print("Build succeeded")
'''

FAKE_RUNNER = '''
"""Runs a module's unittest cases and writes a TRX document."""
import importlib.util
import sys
import unittest
from pathlib import Path
from xml.sax.saxutils import quoteattr

container, results_file = Path(sys.argv[1]), Path(sys.argv[2])


class Recorder(unittest.TestResult):
    def __init__(self):
        super().__init__()
        self.outcomes = []

    def addSuccess(self, test):
        super().addSuccess(test)
        self.outcomes.append((test.id(), "Passed"))

    def addFailure(self, test, err):
        super().addFailure(test, err)
        self.outcomes.append((test.id(), "Failed"))

    def addError(self, test, err):
        super().addError(test, err)
        self.outcomes.append((test.id(), "Failed"))

    def addSkip(self, test, reason):
        super().addSkip(test, reason)
        self.outcomes.append((test.id(), "NotExecuted"))


sys.path.insert(0, str(container.parent))
spec = importlib.util.spec_from_file_location("container_under_test", container)
module = importlib.util.module_from_spec(spec)
spec.loader.exec_module(module)

recorder = Recorder()
unittest.defaultTestLoader.loadTestsFromModule(module).run(recorder)

rows = "".join(
    f"<UnitTestResult testName={quoteattr(name)} outcome={quoteattr(outcome)} />"
    for name, outcome in recorder.outcomes
)
results_file.write_text(
    '<TestRun xmlns="http://microsoft.com/schemas/VisualStudio/TeamTest/2010">'
    f"<Results>{rows}</Results></TestRun>"
)
print("Starting execution...")
print(f"Results file: {results_file}")
sys.exit(0 if recorder.wasSuccessful() else 1)
'''


class CommitFn(Protocol):
    """Protocol for git commit function."""

    def __call__(self, message: str) -> str:
        """Create a commit and return its SHA."""


def git(repo: Path, *args: str) -> str:
    """Run git in ``repo`` and return its output."""
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create an initialized git repository."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init")
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test")
    git(repo, "config", "commit.gpgsign", "false")
    return repo


@pytest.fixture
def git_commit(git_repo: Path) -> CommitFn:
    """Return a function to create commits in the test repo."""

    def _commit(message: str) -> str:
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "--allow-empty", "-m", message)
        return git(git_repo, "rev-parse", "HEAD")

    return _commit


@pytest.fixture
def tools_dir(tmp_path: Path) -> Path:
    """Directory with the fake build tool and test runner scripts."""
    tools = tmp_path / "tools"
    tools.mkdir()
    (tools / "fake_build.py").write_text(textwrap.dedent(FAKE_BUILD))
    (tools / "fake_runner.py").write_text(textwrap.dedent(FAKE_RUNNER))
    return tools


@pytest.fixture
def runner_command(tools_dir: Path) -> list[str]:
    """Command invoking the fake runner."""
    return [sys.executable, str(tools_dir / "fake_runner.py")]


@pytest.fixture
def build_command(tools_dir: Path) -> list[str]:
    """Command template invoking the fake build tool."""
    return [sys.executable, str(tools_dir / "fake_build.py"), "{item}", "{output_dir}"]
