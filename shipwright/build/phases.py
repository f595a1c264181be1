"""
Build phases for shipwright.

Individual external operations that the orchestrator sequences.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from shipwright.core.process import (
    Heartbeat,
    LineClassifier,
    ProcessResult,
    ProcessRunner,
    RetryPolicy,
    classified_printer,
)
from shipwright.core.utils import RepoLayout, log
from shipwright.build.archive import Archiver
from shipwright.build.combo import BuildContext
from shipwright.build.config import ExecutableSpec, PipelineSettings
from shipwright.build.metadata import SourceMetadata
from shipwright.build.packager import find_executable

# Arguments that make the built application copy its prebuilt content and quit
PREBUILT_CONTENT_ARGS = ["-CopyPrebuiltContent", "-Exit"]


# =============================================================================
# Generator
# =============================================================================


def generator_arguments(
    context: BuildContext,
    settings: PipelineSettings,
    source: SourceMetadata,
) -> list[str]:
    """Arguments for configuring a build directory with CMake."""
    combo = context.combo
    prefix = settings.variable_prefix
    return [
        *source.definitions(prefix, combo.configuration),
        *combo.generator_definitions(prefix),
        f"-G{settings.generator}",
        f"-DCMAKE_BUILD_TYPE={combo.configuration}",
        "-DCMAKE_EXPORT_COMPILE_COMMANDS=1",
        str(context.layout.repo),
    ]


def run_generator(context: BuildContext, args: list[str], runner: ProcessRunner) -> ProcessResult:
    """Run CMake in the build directory."""
    return runner.run(
        "cmake",
        args,
        cwd=context.build_dir,
        on_stdout=log.line,
        on_stderr=log.line_error,
    )


def build_arguments(
    configuration: str,
    target: Optional[str] = None,
    parallel: Optional[int] = None,
) -> list[str]:
    """Arguments for 'cmake --build'."""
    args = ["--build", ".", "--config", configuration]
    if target:
        args += ["--target", target]
    if parallel:
        args += ["--parallel", str(parallel)]
    return args


def run_build(
    context: BuildContext,
    runner: ProcessRunner,
    target: Optional[str] = None,
    parallel: Optional[int] = None,
    heartbeat_seconds: float = 10.0,
    classifier: Optional[LineClassifier] = None,
) -> ProcessResult:
    """Compile the build directory, classifying compiler output."""
    handler = classified_printer(classifier or LineClassifier())
    with Heartbeat(heartbeat_seconds):
        return runner.run(
            "cmake",
            build_arguments(context.combo.configuration, target, parallel),
            cwd=context.build_dir,
            on_stdout=handler,
            on_stderr=log.line_error,
        )


# =============================================================================
# Built Executables
# =============================================================================


def run_built_executable(
    context: BuildContext,
    executable: ExecutableSpec,
    args: list[str],
    runner: ProcessRunner,
    retry: Optional[RetryPolicy] = None,
    before_attempt: Optional[Callable[[], None]] = None,
) -> Optional[ProcessResult]:
    """Run an executable from the build tree. None when it was not built."""
    path = find_executable(context.build_dir, context.combo.configuration, executable)
    if path is None:
        log.error(
            f"Executable does not exist {executable.library_dir(context.build_dir)}"
            f" ({executable.name})"
        )
        return None

    return runner.run(
        path,
        args,
        cwd=context.build_dir,
        on_stdout=log.line,
        on_stderr=log.line,
        retry=retry,
        before_attempt=before_attempt,
    )


def extract_downloads(layout: RepoLayout, archiver: Archiver, dry_run: bool = False) -> list[Path]:
    """Extract archives left in Build/Downloads into the prebuilt content tree."""
    if not layout.downloads.is_dir():
        return []

    extracted = []
    for download in sorted(layout.downloads.glob("*.zip")):
        if dry_run:
            log.info(f"[DRY-RUN] Would extract download {download.name}")
            continue
        log.info(f"Extracting download {download.name}")
        if archiver.extract(download, layout.prebuilt_content).failed:
            log.error(f"Failed to extract {download.name}")
            continue
        extracted.append(download)
    return extracted
