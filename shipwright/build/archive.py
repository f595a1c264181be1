"""
Archive utility adapters.

Both backends share the add-mode contract of `7z a`: relative paths keep
their directory structure inside the archive, absolute paths are stored
under their basename only, and adding to an existing archive replaces
entries of the same name.
"""

from __future__ import annotations

import os
import shutil
import zipfile
from pathlib import Path
from typing import Optional, Sequence

from shipwright.core.errors import ToolNotFoundError
from shipwright.core.process import ProcessResult, ProcessRunner, command_exists
from shipwright.core.utils import log

# Fixed entry timestamp so identical inputs give byte-identical archives
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

_FILE_MODE = 0o100644 << 16
_DIR_MODE = (0o040755 << 16) | 0x10


class Archiver:
    """Add files to, and extract, zip archives."""

    name = ""

    def add(self, cwd: Path, archive: Path, files: Sequence[str | Path]) -> ProcessResult:
        raise NotImplementedError

    def extract(self, archive: Path, out_dir: Path) -> ProcessResult:
        raise NotImplementedError


# =============================================================================
# 7-Zip
# =============================================================================


class SevenZipArchiver(Archiver):
    """Drives the external 7z executable."""

    name = "7z"

    def __init__(self, runner: ProcessRunner, executable: str = "7z"):
        self.runner = runner
        self.executable = executable

    def add(self, cwd: Path, archive: Path, files: Sequence[str | Path]) -> ProcessResult:
        if not files:
            return ProcessResult(failed=False, returncode=0)
        args = ["a", "-tzip", "-mx=9", "-mfb=128", "-mpass=10", str(archive), *(str(f) for f in files)]
        return self.runner.run(
            self.executable, args, cwd=cwd, on_stdout=log.line, on_stderr=log.line_error
        )

    def extract(self, archive: Path, out_dir: Path) -> ProcessResult:
        args = ["x", str(archive), f"-o{out_dir}", "-y"]
        return self.runner.run(
            self.executable, args, on_stdout=log.line, on_stderr=log.line_error
        )


# =============================================================================
# zipfile
# =============================================================================


def _entry_info(arcname: str, is_dir: bool) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(arcname, date_time=ZIP_EPOCH)
    info.create_system = 3
    if is_dir:
        info.external_attr = _DIR_MODE
        info.compress_type = zipfile.ZIP_STORED
    else:
        info.external_attr = _FILE_MODE
        info.compress_type = zipfile.ZIP_DEFLATED
    return info


def collect_entries(cwd: Path, files: Sequence[str | Path]) -> dict[str, Optional[Path]]:
    """Map archive names to source files (None marks a directory entry)."""
    entries: dict[str, Optional[Path]] = {}
    for item in files:
        item_path = Path(item)
        if item_path.is_absolute():
            source = item_path
            base = item_path.name
        else:
            source = cwd / item_path
            base = item_path.as_posix()

        if source.is_dir():
            entries[f"{base}/"] = None
            for child in sorted(source.rglob("*")):
                rel = child.relative_to(source).as_posix()
                if child.is_dir():
                    entries[f"{base}/{rel}/"] = None
                else:
                    entries[f"{base}/{rel}"] = child
        elif source.is_file():
            entries[base] = source
        else:
            raise FileNotFoundError(f"No such file or directory: {source}")
    return entries


class ZipArchiver(Archiver):
    """In-process, deterministic zip writer.

    Entries are sorted and carry a fixed timestamp and mode, so the same
    inputs always produce the same bytes.
    """

    name = "zip"

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def add(self, cwd: Path, archive: Path, files: Sequence[str | Path]) -> ProcessResult:
        if not files:
            return ProcessResult(failed=False, returncode=0)
        if self.dry_run:
            log.info(f"[DRY-RUN] Would add {len(files)} path(s) to {archive.name}")
            return ProcessResult(failed=False, returncode=0)

        try:
            entries = collect_entries(cwd, files)
            self._write(archive, entries)
        except (OSError, zipfile.BadZipFile) as e:
            message = f"{archive.name}: {e}"
            log.line_error(message)
            return ProcessResult(failed=True, returncode=1, stderr=message)

        message = f"Added {len(entries)} entries to {archive.name}"
        log.line(message)
        return ProcessResult(failed=False, returncode=0, stdout=message)

    def _write(self, archive: Path, entries: dict[str, Optional[Path]]) -> None:
        archive.parent.mkdir(parents=True, exist_ok=True)
        staging = archive.with_name(archive.name + ".tmp")

        old = zipfile.ZipFile(archive, "r") if archive.exists() else None
        try:
            # Entries already in the archive survive unless re-added
            carried: dict[str, zipfile.ZipInfo] = {}
            if old is not None:
                carried = {
                    info.filename: info
                    for info in old.infolist()
                    if info.filename not in entries
                }

            with zipfile.ZipFile(staging, "w") as out:
                for arcname in sorted(set(carried) | set(entries)):
                    info = _entry_info(arcname, arcname.endswith("/"))
                    if arcname.endswith("/"):
                        out.writestr(info, b"")
                    elif arcname in carried:
                        info.file_size = carried[arcname].file_size
                        with old.open(carried[arcname]) as src, out.open(info, "w") as dst:
                            shutil.copyfileobj(src, dst)
                    else:
                        source = entries[arcname]
                        info.file_size = source.stat().st_size
                        with open(source, "rb") as src, out.open(info, "w") as dst:
                            shutil.copyfileobj(src, dst)
        except BaseException:
            if staging.exists():
                staging.unlink()
            raise
        finally:
            if old is not None:
                old.close()

        os.replace(staging, archive)

    def extract(self, archive: Path, out_dir: Path) -> ProcessResult:
        if self.dry_run:
            log.info(f"[DRY-RUN] Would extract {archive.name} to {out_dir}")
            return ProcessResult(failed=False, returncode=0)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive, "r") as zf:
                zf.extractall(out_dir)
                count = len(zf.infolist())
        except (OSError, zipfile.BadZipFile) as e:
            message = f"{archive.name}: {e}"
            log.line_error(message)
            return ProcessResult(failed=True, returncode=1, stderr=message)

        message = f"Extracted {count} entries to {out_dir}"
        log.line(message)
        return ProcessResult(failed=False, returncode=0, stdout=message)


def select_archiver(setting: str, runner: ProcessRunner) -> Archiver:
    """Pick the archive backend named in shipwright.yaml.

    Raises:
        ToolNotFoundError: 7z was requested explicitly but is not on PATH.
    """
    if setting == "7z":
        if not runner.dry_run and not command_exists("7z"):
            raise ToolNotFoundError("7z")
        return SevenZipArchiver(runner)
    if setting == "zip":
        return ZipArchiver(dry_run=runner.dry_run)
    if command_exists("7z"):
        return SevenZipArchiver(runner)
    log.dim("7z not found, using the built-in zip writer")
    return ZipArchiver(dry_run=runner.dry_run)
