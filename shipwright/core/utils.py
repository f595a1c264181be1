"""
Shared utilities for the shipwright CLI.
"""

from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shipwright.core.errors import RepoRootNotFoundError

# =============================================================================
# Constants
# =============================================================================

# Marker file (and configuration) at the root of a product repository
REPO_MARKER = "shipwright.yaml"

ACTIVE_POINTER_NAME = "Active.yaml"


# =============================================================================
# Logging
# =============================================================================


class Logger:
    """Simple colored logger with --no-color support.

    Counts every error it prints so the CLI can turn recorded errors
    into a non-zero exit code without aborting the pipeline.
    """

    COLORS = {
        "reset": "\033[0m",
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "blue": "\033[94m",
        "magenta": "\033[95m",
        "cyan": "\033[96m",
        "bold": "\033[1m",
        "dim": "\033[2m",
    }

    def __init__(self, use_color: Optional[bool] = None):
        if use_color is None:
            self._use_color = sys.stdout.isatty()
        else:
            self._use_color = use_color
        self.error_count = 0

    def set_color(self, use_color: bool) -> None:
        """Set whether to use color output."""
        self._use_color = use_color

    def reset(self) -> None:
        """Forget errors recorded by a previous command."""
        self.error_count = 0

    def _color(self, text: str, color: str) -> str:
        if not self._use_color:
            return text
        return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"

    def header(self, message: str) -> None:
        """Print a section header."""
        print(f"\n{self._color('===', 'cyan')} {self._color(message, 'bold')} {self._color('===', 'cyan')}")

    def info(self, message: str) -> None:
        """Print an info message."""
        print(f"  {message}")

    def success(self, message: str) -> None:
        """Print a success message."""
        print(f"  {self._color('[OK]', 'green')} {message}")

    def warning(self, message: str) -> None:
        """Print a warning message."""
        print(f"  {self._color('[WARN]', 'yellow')} {message}")

    def error(self, message: str) -> None:
        """Print an error message."""
        self.error_count += 1
        print(f"  {self._color('[ERROR]', 'red')} {message}")

    def dim(self, message: str) -> None:
        """Print a dim/secondary message."""
        print(f"  {self._color(message, 'dim')}")

    def line(self, text: str) -> None:
        """Print one line of external process output."""
        print(f"    + {text}")

    def line_error(self, text: str) -> None:
        """Print one line of external process output as an error."""
        self.error_count += 1
        print(f"    {self._color('-', 'red')} {text}")

    def table_row(self, col1: str, col2: str, col1_width: int = 30) -> None:
        """Print a table row with two columns."""
        print(f"  {col1:<{col1_width}} {col2}")


# Global logger instance
log = Logger()


# =============================================================================
# Path Utilities
# =============================================================================


def find_repo_root(start_dir: Optional[Path] = None) -> Path:
    """Find the repository root (directory containing shipwright.yaml).

    Searches from start_dir (or cwd) upward to the filesystem root.
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()
    while True:
        if (current / REPO_MARKER).is_file():
            return current
        if current == current.parent:
            break
        current = current.parent

    raise RepoRootNotFoundError(
        f"Not in a shipwright repository ({REPO_MARKER} not found above {start_dir})"
    )


@dataclass(frozen=True)
class RepoLayout:
    """Fixed directory layout of a product repository."""

    repo: Path

    @property
    def marker(self) -> Path:
        return self.repo / REPO_MARKER

    @property
    def libraries(self) -> Path:
        return self.repo / "Code"

    @property
    def resources(self) -> Path:
        return self.repo / "Resources"

    @property
    def build(self) -> Path:
        return self.repo / "Build"

    @property
    def prebuilt_content(self) -> Path:
        return self.build / "PrebuiltContent"

    @property
    def included_builds(self) -> Path:
        return self.build / "IncludedBuilds"

    @property
    def packages(self) -> Path:
        return self.build / "Packages"

    @property
    def page(self) -> Path:
        return self.build / "Page"

    @property
    def downloads(self) -> Path:
        return self.build / "Downloads"

    @property
    def active_pointer(self) -> Path:
        return self.build / ACTIVE_POINTER_NAME

    def relative(self, path: Path) -> Path:
        """Express a path relative to the repository root."""
        return Path(path).resolve().relative_to(self.repo.resolve())


def get_layout(start_dir: Optional[Path] = None) -> RepoLayout:
    """Locate the repository and return its layout."""
    return RepoLayout(find_repo_root(start_dir))


# =============================================================================
# Filesystem Utilities
# =============================================================================


def try_unlink(path: Path) -> bool:
    """Delete a file if present. Returns True when something was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


def clear_directory(directory: Path, dry_run: bool = False) -> None:
    """Remove a directory tree and recreate it empty."""
    if dry_run:
        log.info(f"[DRY-RUN] Would clear {directory}")
        return
    if directory.exists():
        shutil.rmtree(directory)
    directory.mkdir(parents=True, exist_ok=True)


def remove_tree(directory: Path, dry_run: bool = False) -> None:
    """Remove a directory tree if it exists."""
    if dry_run:
        if directory.exists():
            log.info(f"[DRY-RUN] Would remove {directory}")
        return
    if directory.exists():
        shutil.rmtree(directory)
