"""
Source formatting for shipwright.

Runs clang-format over every C/C++ file under Code/ and normalises the
license header at the top of each file. With --validate nothing is
written; every file that would change is reported as an error instead.
"""

from __future__ import annotations

import argparse
import os
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional, Sequence

from shipwright.core.process import ProcessRunner, ensure_command_exists
from shipwright.core.utils import get_layout, log
from shipwright.build.config import load_settings

SOURCE_EXTENSIONS = (".c", ".cc", ".cxx", ".cpp", ".h", ".hxx", ".hpp", ".inl")

# Files starting with this line are third-party and left alone
EXTERNAL_MARKER = "// External."

_LEADING_COMMENT = re.compile(r"^[ \t]*[/*\-=\\]+.*")
_BAR_COMMENT = re.compile(r"^[ \t]*[/*\-=\\]{40}.*")


# =============================================================================
# File Discovery
# =============================================================================


def gather_source_files(directory: Path, extensions: Sequence[str] = SOURCE_EXTENSIONS) -> list[Path]:
    """Source files under directory, skipping third-party ones."""
    log.info("Gathering Source Files")
    if not directory.is_dir():
        return []

    files = []
    for path in sorted(directory.rglob("*")):
        if path.suffix not in extensions or not path.is_file():
            continue
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            if f.read(len(EXTERNAL_MARKER)) == EXTERNAL_MARKER:
                continue
        files.append(path)
    return files


# =============================================================================
# Header Normalisation
# =============================================================================


def normalize_header(code: str, header: str) -> str:
    """Replace leading comments with header and drop long bar comments.

    The result uses UNIX newlines and ends with one.
    """
    lines = re.split(r"\r?\n", code)

    while lines and _LEADING_COMMENT.match(lines[0]):
        lines.pop(0)

    lines = [line for line in lines if not _BAR_COMMENT.match(line)]
    lines.insert(0, header)

    text = "\n".join(lines)
    return text if text.endswith("\n") else text + "\n"


# =============================================================================
# Formatters
# =============================================================================


def _report_or_write(
    path: Path, old: str, new: str, validate: bool, tool: str, dry_run: bool = False
) -> bool:
    """Returns True when the file was (or would be) changed."""
    if old == new:
        return False
    if validate:
        log.line_error(f"File '{path}' was not {tool}-formatted")
    elif dry_run:
        log.info(f"[DRY-RUN] Would rewrite {path}")
    else:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(new)
    return True


def clang_format_file(path: Path, runner: ProcessRunner, cwd: Path, validate: bool) -> bool:
    result = runner.run("clang-format", [path], cwd=cwd)
    if runner.dry_run:
        # No formatted text came back to compare against
        return False
    if result.failed:
        log.line_error(f"clang-format failed on '{path}' ({result.returncode})")
        return False
    old = path.read_text(encoding="utf-8")
    return _report_or_write(path, old, result.stdout, validate, "clang")


def header_format_file(path: Path, header: str, validate: bool, dry_run: bool = False) -> bool:
    old = path.read_text(encoding="utf-8")
    return _report_or_write(path, old, normalize_header(old, header), validate, "header", dry_run)


def run_clang_format(
    files: list[Path],
    runner: ProcessRunner,
    cwd: Path,
    validate: bool,
    max_workers: Optional[int] = None,
) -> int:
    """Format files in parallel. Returns how many changed."""
    log.info("Running Clang Format")
    if not ensure_command_exists("clang-format"):
        return 0

    max_workers = max_workers or min(32, os.cpu_count() or 4)
    changed = 0
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(clang_format_file, path, runner, cwd, validate): path
            for path in files
        }
        for future in as_completed(futures):
            try:
                changed += future.result()
            except OSError as e:
                log.line_error(f"{futures[future]}: {e}")
    return changed


def run_header_format(files: list[Path], header: str, validate: bool, dry_run: bool = False) -> int:
    log.info("Normalising License Headers")
    changed = 0
    for path in files:
        try:
            changed += header_format_file(path, header, validate, dry_run)
        except OSError as e:
            log.line_error(f"{path}: {e}")
    return changed


# =============================================================================
# CLI Entry Point
# =============================================================================


def cmd_format(args: argparse.Namespace) -> int:
    """Main entry point for the format command."""
    log.header("Formatting")
    layout = get_layout()
    settings = load_settings(layout)
    validate = getattr(args, "validate", False)
    runner = ProcessRunner(dry_run=getattr(args, "dry_run", False))

    files = gather_source_files(layout.libraries)
    log.info(f"{len(files)} source files")

    changed = run_clang_format(files, runner, layout.libraries, validate, getattr(args, "jobs", None))
    if settings.license_header:
        changed += run_header_format(files, settings.license_header, validate, runner.dry_run)

    if validate:
        if log.error_count:
            log.error(f"{changed} file(s) need formatting")
        else:
            log.success("All files formatted")
    else:
        log.success(f"Formatted ({changed} file(s) changed)")
    return 1 if log.error_count else 0
