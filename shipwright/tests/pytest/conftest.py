"""
Shared pytest fixtures for shipwright tests.

Provides an isolated product repository on disk and a fake process
runner that stands in for cmake, git, 7z and built executables.

Test Tier Markers:
  @pytest.mark.evergreen - Tests that always run, never skip (production tests)
  @pytest.mark.dev       - Development/WIP tests, toggle-able
  @pytest.mark.temporary - Tests with explicit discard flag
"""

from __future__ import annotations

import io
import re
from contextlib import redirect_stdout
from pathlib import Path
from typing import Callable, Optional

import pytest

from shipwright.core.process import ProcessResult, ProcessRunner, split_lines
from shipwright.core.utils import RepoLayout, log


# =============================================================================
# Test Data Constants
# =============================================================================

SETTINGS_YAML = """\
variable_prefix: SHIPWRIGHT
archiver: zip
heartbeat_seconds: 30
retry:
  attempts: 3
  backoff_seconds: 0
aliases:
  release:
    toolchain: Clang
    platform: Linux
    architecture: x64
executables:
  - name: App
    dir: Apps
    prebuild: true
    copy_to_included_builds: true
    non_resource_dependencies:
      - Data
    resource_libraries:
      - Core
      - Editor
    vfs_only_package:
      - Data
"""

# Scenario metadata shared by packaging tests
METADATA_VALUES: dict[str, str] = {
    "BRANCH": "main",
    "MAJOR_VERSION": "1",
    "MINOR_VERSION": "2",
    "PATCH_VERSION": "3",
    "REVISION": "450",
    "SHORT_CHANGESET": "abc123def456",
    "CHANGESET": "abc123def4567890abc123def4567890abc123de",
    "CHANGESET_DATE": '"2023-11-14"',
    "MS_SINCE_EPOCH": "1700000000000",
    "CONFIG": "Release",
}


def cache_text(values: dict[str, str], prefix: str = "SHIPWRIGHT") -> str:
    """Render a generator cache holding the given metadata."""
    lines = [
        "# This is the CMakeCache file.",
        "CMAKE_BUILD_TYPE:STRING=Release",
        "CMAKE_GENERATOR:INTERNAL=Ninja",
    ]
    lines += [f"{prefix}_{key}:UNINITIALIZED={value}" for key, value in values.items()]
    return "\n".join(lines) + "\n"


# =============================================================================
# Fake Process Runner
# =============================================================================

Handler = Callable[[list[str], Optional[Path]], ProcessResult]


class FakeRunner(ProcessRunner):
    """ProcessRunner whose commands are Python callables.

    Handlers are looked up by executable basename. Unknown commands
    succeed with no output. Retry and dry-run handling are inherited.
    """

    def __init__(self, handlers: Optional[dict[str, Handler]] = None, dry_run: bool = False):
        super().__init__(dry_run=dry_run)
        self.handlers: dict[str, Handler] = dict(handlers or {})
        self.calls: list[tuple[str, list[str], Optional[Path]]] = []

    def on(self, command: str, handler: Handler) -> "FakeRunner":
        self.handlers[command] = handler
        return self

    def commands(self, name: str) -> list[list[str]]:
        """Argument lists of every call to name."""
        return [args for command, args, _ in self.calls if command == name]

    def _run_once(self, cmd, cwd, on_stdout, on_stderr, input_text):
        name = Path(cmd[0]).name
        args = list(cmd[1:])
        self.calls.append((name, args, cwd))

        handler = self.handlers.get(name)
        result = handler(args, cwd) if handler else ProcessResult(failed=False, returncode=0)

        if on_stdout is not None:
            for line in split_lines(result.stdout):
                on_stdout(line)
        if on_stderr is not None:
            for line in split_lines(result.stderr):
                on_stderr(line)
        return result


def ok(stdout: str = "") -> ProcessResult:
    return ProcessResult(failed=False, returncode=0, stdout=stdout)


def fail(stderr: str = "", returncode: int = 1) -> ProcessResult:
    return ProcessResult(failed=True, returncode=returncode, stderr=stderr)


_DEFINITION = re.compile(r"^-D(?P<name>[A-Za-z0-9_]+)=(?P<value>.*)$")


def fake_cmake(executables: dict[str, str]) -> Handler:
    """cmake stand-in.

    Configuring writes a cache from the -D arguments; building drops an
    executable (and a denylisted byproduct) for every name -> dir given.
    """

    def handler(args: list[str], cwd: Optional[Path]) -> ProcessResult:
        assert cwd is not None
        if args and args[0] == "--build":
            configuration = args[args.index("--config") + 1]
            for name, directory in executables.items():
                out = cwd / "Code" / directory / name / configuration
                out.mkdir(parents=True, exist_ok=True)
                (out / name).write_bytes(b"\x7fELF fake")
                (out / f"{name}.pdb").write_bytes(b"symbols")
            return ok("[1/2] Building CXX object main.cpp.o\n[2/2] Linking CXX executable")

        lines = []
        for arg in args:
            match = _DEFINITION.match(arg)
            if match:
                lines.append(f"{match.group('name')}:UNINITIALIZED={match.group('value')}")
        (cwd / "CMakeCache.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")
        return ok("-- Configuring done\n-- Generating done")

    return handler


def fake_git(args: list[str], cwd: Optional[Path]) -> ProcessResult:
    answers = {
        "rev-parse": "main\n",
        "rev-list": "450\n",
        "describe": "v1.2.3-4-gabc123d\n",
    }
    if args[0] == "log":
        pretty = next(a for a in args if a.startswith("--pretty="))
        return ok({
            "--pretty=%h": "abc123def456\n",
            "--pretty=%H": METADATA_VALUES["CHANGESET"] + "\n",
            "--pretty=%cd": "2023-11-14\n",
        }[pretty])
    return ok(answers[args[0]])


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test tiers."""
    config.addinivalue_line(
        "markers",
        "evergreen: tests that always run, never skip (production tests)"
    )
    config.addinivalue_line(
        "markers",
        "dev: development/WIP tests, toggle-able for active development"
    )
    config.addinivalue_line(
        "markers",
        "temporary: tests with explicit discard flag"
    )


@pytest.fixture(autouse=True)
def quiet_log() -> None:
    """Each test starts with no recorded errors and plain output."""
    log.reset()
    log.set_color(False)


# =============================================================================
# Repository Fixtures
# =============================================================================


@pytest.fixture
def repo(tmp_path: Path) -> RepoLayout:
    """A product repository with one executable and one of its two libraries.

    Resources/Editor is declared in shipwright.yaml but deliberately absent.
    """
    root = tmp_path / "product"
    root.mkdir()
    (root / "shipwright.yaml").write_text(SETTINGS_YAML, encoding="utf-8")
    (root / "Code" / "Apps" / "App").mkdir(parents=True)
    (root / "Code" / "Apps" / "App" / "Main.cpp").write_text("int main() {}\n", encoding="utf-8")

    core = root / "Resources" / "Core"
    core.mkdir(parents=True)
    (core / "Core.meta").write_text("library Core\n", encoding="utf-8")
    (core / "Shaders").mkdir()
    (core / "Shaders" / "basic.glsl").write_text("void main() {}\n", encoding="utf-8")

    data = root / "Data"
    data.mkdir()
    (data / "Fonts.txt").write_text("fonts\n", encoding="utf-8")
    return RepoLayout(root)


@pytest.fixture
def configured_build(repo: RepoLayout) -> Path:
    """Build directory of the 'release' combo with a generator cache."""
    build_dir = repo.build / "Clang-Linux-x64-Release"
    build_dir.mkdir(parents=True)
    (build_dir / "CMakeCache.txt").write_text(cache_text(METADATA_VALUES), encoding="utf-8")
    return build_dir


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


# =============================================================================
# CLI Runner
# =============================================================================


class CLIRunner:
    """Helper class to run CLI commands in-process with captured output."""

    def __init__(self, cwd: Path, monkeypatch: pytest.MonkeyPatch):
        self.cwd = cwd
        self.monkeypatch = monkeypatch
        monkeypatch.chdir(cwd)

    def run(self, args: list[str]) -> "CLIResult":
        """Run CLI with given args and return result.

        Args:
            args: Command line arguments (without 'shipwright' prefix)

        Returns:
            CLIResult with return code and captured output
        """
        from shipwright.cli import main

        stdout_capture = io.StringIO()

        with redirect_stdout(stdout_capture):
            try:
                returncode = main(args)
            except SystemExit as e:
                returncode = e.code if isinstance(e.code, int) else 1

        return CLIResult(
            returncode=returncode or 0,
            stdout=stdout_capture.getvalue(),
        )


class CLIResult:
    """Result of running a CLI command."""

    def __init__(self, returncode: int, stdout: str):
        self.returncode = returncode
        self.stdout = stdout

    def __repr__(self) -> str:
        return f"CLIResult(returncode={self.returncode}, stdout={self.stdout[:100]!r}...)"


@pytest.fixture
def cli_runner(repo: RepoLayout, monkeypatch: pytest.MonkeyPatch) -> CLIRunner:
    """CLI runner whose working directory is the fixture repository."""
    return CLIRunner(repo.repo, monkeypatch)
