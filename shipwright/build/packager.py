"""
Packaging for shipwright.

Turns a build's output directory into a versioned zip under
Build/Packages, optionally extracts it into Build/IncludedBuilds for
products that ship other products, and mirrors the raw outputs into
Build/Page for static hosting.
"""

from __future__ import annotations

import shutil
from dataclasses import astuple, dataclass
from pathlib import Path
from typing import Optional

from shipwright.core.errors import PipelineError
from shipwright.core.utils import RepoLayout, clear_directory, log, remove_tree, try_unlink
from shipwright.build.archive import Archiver
from shipwright.build.bundler import FILESYSTEM_ARCHIVE, make_resource_archive
from shipwright.build.combo import BuildCombo, BuildContext
from shipwright.build.config import ExecutableSpec, PipelineSettings
from shipwright.build.metadata import MetadataRecord

# Build byproducts never shipped (matched by extension or exact name)
OUTPUT_DENYLIST = frozenset({
    ".pdb",
    ".ilk",
    ".exp",
    ".lib",
    ".wast",
    ".cmake",
    "CMakeFiles",
    FILESYSTEM_ARCHIVE,
})


# =============================================================================
# Package Identity
# =============================================================================


def _filename_safe(value: object) -> str:
    # The field separator and path separators are escaped, so distinct
    # identities never share a filename and none can create subdirectories
    return (
        str(value)
        .replace("%", "%25")
        .replace(".", "%2E")
        .replace("/", "%2F")
        .replace("\\", "%5C")
    )


@dataclass(frozen=True)
class PackageIdentity:
    """Everything that makes one package distinct from another.

    Field order is the filename order. The built application parses its
    own package name, so changing it breaks self-identification.
    Example: Editor.main.1.5.0.1501.fb02756c46a4.1574702096290.x64.Release.zip
    """

    product: str
    branch: str
    major: int
    minor: int
    patch: int
    revision: int
    short_changeset: str
    timestamp: int
    architecture: str
    configuration: str

    @property
    def filename(self) -> str:
        return ".".join(_filename_safe(v) for v in astuple(self)) + ".zip"

    @classmethod
    def from_metadata(
        cls, product: str, metadata: MetadataRecord, combo: BuildCombo
    ) -> "PackageIdentity":
        return cls(
            product=product,
            branch=metadata.branch,
            major=metadata.major,
            minor=metadata.minor,
            patch=metadata.patch,
            revision=metadata.revision,
            short_changeset=metadata.short_changeset,
            timestamp=metadata.timestamp,
            architecture=combo.architecture,
            configuration=metadata.configuration,
        )


# =============================================================================
# Build Outputs
# =============================================================================


def find_output_dir(
    build_dir: Path, configuration: str, executable: ExecutableSpec
) -> Optional[Path]:
    """Output directory of a target.

    Multi-config generators put outputs in a configuration subdirectory;
    single-config generators use the target directory itself.
    """
    base = executable.library_dir(build_dir)
    for candidate in (base / configuration, base):
        if candidate.is_dir():
            return candidate
    return None


def find_executable(
    build_dir: Path, configuration: str, executable: ExecutableSpec
) -> Optional[Path]:
    """Path of the built executable, or None if it was not built."""
    output_dir = find_output_dir(build_dir, configuration, executable)
    if output_dir is None:
        return None
    for name in (executable.name, f"{executable.name}.exe"):
        candidate = output_dir / name
        if candidate.is_file():
            return candidate
    return None


def collect_output_files(output_dir: Path, bundle_id: str) -> list[Path]:
    """Shippable files of an output directory, sorted by name."""
    fragment = f"{bundle_id}.cpp"
    return sorted(
        path for path in output_dir.iterdir()
        if path.suffix not in OUTPUT_DENYLIST
        and path.name not in OUTPUT_DENYLIST
        and path.name != fragment
    )


# =============================================================================
# Staging Trees
# =============================================================================


def prepare_publish_tree(layout: RepoLayout) -> None:
    """Recreate Build/Page empty, ready for static hosting."""
    clear_directory(layout.page)
    # Keep GitHub Pages from running Jekyll over the outputs
    (layout.page / ".nojekyll").write_text("", encoding="utf-8")


def prune_included_builds(layout: RepoLayout, keep: set[str]) -> None:
    """Remove included builds that are not one of the current packages."""
    if not layout.included_builds.is_dir():
        return
    for child in sorted(layout.included_builds.iterdir()):
        if child.name not in keep:
            log.dim(f"Removing stale included build {child.name}")
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()


def _included_build_paths(layout: RepoLayout, own_package: str) -> list[str]:
    if not layout.included_builds.is_dir():
        return []
    return [
        layout.relative(child).as_posix()
        for child in sorted(layout.included_builds.iterdir())
        if child.is_dir() and child.name != own_package
    ]


def publish_outputs(layout: RepoLayout, name: str, files: list[Path]) -> None:
    """Mirror output files into Build/Page/<name>/."""
    page_dir = layout.page / name
    page_dir.mkdir(parents=True, exist_ok=True)
    for path in files:
        if path.is_dir():
            shutil.copytree(path, page_dir / path.name, dirs_exist_ok=True)
        else:
            shutil.copyfile(path, page_dir / path.name)


# =============================================================================
# Packing
# =============================================================================


def pack_executable(
    context: BuildContext,
    executable: ExecutableSpec,
    metadata: MetadataRecord,
    archiver: Archiver,
) -> Optional[Path]:
    """Package one target. Returns the package path, or None on failure.

    Packing the same identity again replaces the previous archive.
    """
    layout = context.layout
    name = executable.name
    log.info(f"Packaging library {name}")

    output_dir = find_output_dir(context.build_dir, context.combo.configuration, executable)
    if output_dir is None:
        log.error(f"Library directory does not exist {executable.library_dir(context.build_dir)}")
        return None

    files = collect_output_files(output_dir, executable.bundle_id)
    identity = PackageIdentity.from_metadata(name, metadata, context.combo)
    package = layout.packages / identity.filename
    try_unlink(package)

    if context.combo.vfs:
        # The full bundle is compiled in; only ship what is needed before it mounts
        seed = []
        for item in executable.vfs_only_package:
            if (layout.repo / item).exists():
                seed.append(item)
            else:
                log.warning(f"Skipping missing VFS-only path {item}")
        result = archiver.add(layout.repo, package, seed)
    else:
        result = make_resource_archive(layout, executable, metadata, package, archiver)

    if not result.failed and executable.embed_included_builds:
        result = archiver.add(layout.repo, package, _included_build_paths(layout, identity.filename))

    if not result.failed:
        # Absolute paths: only file names end up in the archive root
        result = archiver.add(layout.repo, package, [str(path) for path in files])

    if result.failed:
        log.error(f"Failed to create package {identity.filename}")
        try_unlink(package)
        return None

    if not package.is_file():
        log.error(f"Nothing was packaged for {name} (no outputs in {output_dir})")
        return None

    if executable.copy_to_included_builds:
        extract_dir = layout.included_builds / identity.filename
        remove_tree(extract_dir)
        if archiver.extract(package, extract_dir).failed:
            log.error(f"Failed to extract {identity.filename} into included builds")

    publish_outputs(layout, name, files)

    log.success(f"Packaged {identity.filename}")
    return package


def _plan_packages(
    context: BuildContext,
    settings: PipelineSettings,
    metadata: MetadataRecord,
) -> dict[str, Optional[Path]]:
    results: dict[str, Optional[Path]] = {}
    for executable in settings.executables:
        results[executable.name] = None
        if find_output_dir(context.build_dir, context.combo.configuration, executable) is None:
            log.error(f"Library directory does not exist {executable.library_dir(context.build_dir)}")
            continue
        try:
            identity = PackageIdentity.from_metadata(executable.name, metadata, context.combo)
        except PipelineError as e:
            log.error(f"{executable.name}: {e}")
            continue
        package = context.layout.packages / identity.filename
        log.info(f"[DRY-RUN] Would package {executable.name} into {package}")
        results[executable.name] = package
    return results


def pack_all(
    context: BuildContext,
    settings: PipelineSettings,
    metadata: MetadataRecord,
    archiver: Archiver,
    dry_run: bool = False,
) -> dict[str, Optional[Path]]:
    """Package every configured executable.

    A failure in one target is logged and the remaining targets are
    still packaged. Failing to create the output directories is fatal.
    With dry_run nothing on disk changes; the result maps each target
    whose outputs exist to the package it would write.
    """
    layout = context.layout
    if dry_run:
        return _plan_packages(context, settings, metadata)

    layout.packages.mkdir(parents=True, exist_ok=True)
    prepare_publish_tree(layout)

    results: dict[str, Optional[Path]] = {}
    keep: set[str] = set()
    for executable in settings.executables:
        try:
            keep.add(PackageIdentity.from_metadata(executable.name, metadata, context.combo).filename)
        except PipelineError as e:
            log.error(str(e))
    prune_included_builds(layout, keep)

    for executable in settings.executables:
        try:
            results[executable.name] = pack_executable(context, executable, metadata, archiver)
        except PipelineError as e:
            log.error(f"{executable.name}: {e}")
            results[executable.name] = None
    return results
