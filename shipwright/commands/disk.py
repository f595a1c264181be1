"""
Disk usage report for shipwright.

Prints the size of every directory larger than 1 MiB, children before
parents, zero padded so the output sorts numerically.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Callable, Optional

REPORT_THRESHOLD = 1024 * 1024


def directory_sizes(
    directory: Path,
    report: Callable[[int, Path], None],
    threshold: int = REPORT_THRESHOLD,
) -> int:
    """Total size of directory, reporting every subtree above threshold.

    Symbolic links are counted by their own size and never followed.
    Unreadable entries are skipped.
    """
    try:
        entries = list(os.scandir(directory))
    except OSError:
        return 0

    size = 0
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                size += directory_sizes(Path(entry.path), report, threshold)
            else:
                size += entry.stat(follow_symlinks=False).st_size
        except OSError:
            continue

    if size > threshold:
        report(size, directory)
    return size


def format_size_line(size: int, directory: Path) -> str:
    return f"{size:016d} {directory}"


def cmd_disk(args: argparse.Namespace) -> int:
    """Main entry point for the disk command."""
    root: Optional[str] = getattr(args, "path", None)
    start = Path(root) if root else Path.cwd()
    directory_sizes(start, lambda size, path: print(format_size_line(size, path)))
    return 0
