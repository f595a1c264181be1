"""
Virtual file system bundling for shipwright.

Runtime content (resource libraries, prebuilt content, loose data files)
is zipped and emitted as a C++ byte array that the executable compiles
in and mounts at startup. The generated source is only rewritten when
its contents change, so an unchanged bundle never triggers a relink.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shipwright.core.errors import PipelineError, SubprocessFailure
from shipwright.core.process import ProcessResult
from shipwright.core.utils import RepoLayout, log, try_unlink
from shipwright.build.archive import Archiver
from shipwright.build.combo import BuildContext
from shipwright.build.config import ExecutableSpec, PipelineSettings
from shipwright.build.metadata import MetadataRecord

FILESYSTEM_ARCHIVE = "FileSystem.zip"


# =============================================================================
# Manifest
# =============================================================================


@dataclass(frozen=True)
class ManifestEntry:
    """One path that goes into a bundle."""

    path: Path
    kind: str  # "dependency", "resource" or "prebuilt"
    library: Optional[str] = None


def prebuilt_content_dir(layout: RepoLayout, metadata: MetadataRecord) -> Path:
    """Prebuilt content directory of the build described by metadata."""
    return layout.prebuilt_content / metadata.versioned_content_key


def build_manifest(
    layout: RepoLayout,
    executable: ExecutableSpec,
    metadata: Optional[MetadataRecord] = None,
) -> list[ManifestEntry]:
    """List what goes into an executable's bundle.

    Anything missing on disk is skipped with a warning. Prebuilt content
    is only considered when metadata is given (it is keyed by version).
    """
    entries: list[ManifestEntry] = []

    for dependency in executable.non_resource_dependencies:
        path = layout.repo / dependency
        if path.exists():
            entries.append(ManifestEntry(path, "dependency"))
        else:
            log.warning(f"Skipping missing dependency {dependency}")

    versioned = prebuilt_content_dir(layout, metadata) if metadata is not None else None

    for library in executable.resource_libraries:
        live = layout.resources / library
        if live.is_dir():
            entries.append(ManifestEntry(live, "resource", library))
        else:
            log.warning(f"Skipping resource library for {library}")

        if versioned is not None:
            prebuilt = versioned / library
            if prebuilt.is_dir():
                entries.append(ManifestEntry(prebuilt, "prebuilt", library))
            else:
                log.warning(f"Skipping prebuilt content for {library}")

    return entries


def relative_paths(layout: RepoLayout, entries: list[ManifestEntry]) -> list[str]:
    """Manifest paths relative to the repository root."""
    return [
        Path(os.path.relpath(os.path.normpath(entry.path), layout.repo)).as_posix()
        for entry in entries
    ]


def make_resource_archive(
    layout: RepoLayout,
    executable: ExecutableSpec,
    metadata: Optional[MetadataRecord],
    archive: Path,
    archiver: Archiver,
) -> ProcessResult:
    """(Re)create an archive holding the executable's full manifest."""
    log.info(f"Building zip for {executable.name}")
    try_unlink(archive)
    entries = build_manifest(layout, executable, metadata)
    return archiver.add(layout.repo, archive, relative_paths(layout, entries))


# =============================================================================
# Embedding
# =============================================================================


def render_binary_fragment(bundle_id: str, data: bytes) -> str:
    """C++ source defining <bundle_id>Data and <bundle_id>Size."""
    values = ",".join(str(b) for b in data)
    return (
        f"unsigned char {bundle_id}Data[] = {{{values}}};\n"
        f"unsigned int {bundle_id}Size = {len(data)};\n"
    )


def write_if_changed(path: Path, contents: str) -> bool:
    """Write contents unless the file already holds exactly them."""
    if path.is_file() and path.read_text(encoding="utf-8") == contents:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(contents)
    return True


def fragment_path(library_dir: Path, bundle_id: str) -> Path:
    return library_dir / f"{bundle_id}.cpp"


def bundle_executable(
    context: BuildContext,
    executable: ExecutableSpec,
    metadata: Optional[MetadataRecord],
    archiver: Archiver,
) -> bytes:
    """Bundle an executable's content and refresh its generated fragment.

    Returns the embedded bytes: the archive, or a one byte placeholder
    when bundling is disabled for the combo.
    """
    library_dir = executable.library_dir(context.build_dir)
    library_dir.mkdir(parents=True, exist_ok=True)

    if context.combo.vfs:
        archive = library_dir / FILESYSTEM_ARCHIVE
        result = make_resource_archive(context.layout, executable, metadata, archive, archiver)
        if result.failed:
            raise SubprocessFailure(f"Could not build {FILESYSTEM_ARCHIVE} for {executable.name}", result)
        if archive.is_file():
            data = archive.read_bytes()
        else:
            log.warning(f"Nothing to bundle for {executable.name}, embedding a placeholder")
            data = bytes(1)
    else:
        data = bytes(1)

    fragment = fragment_path(library_dir, executable.bundle_id)
    if write_if_changed(fragment, render_binary_fragment(executable.bundle_id, data)):
        log.line(f"Wrote {fragment.name} ({len(data)} bytes)")
    else:
        log.line(f"{fragment.name} unchanged")
    return data


def build_vfs(
    context: BuildContext,
    settings: PipelineSettings,
    metadata: Optional[MetadataRecord],
    archiver: Archiver,
    dry_run: bool = False,
) -> bool:
    """Bundle every configured executable. Returns False if any failed."""
    if dry_run:
        for executable in settings.executables:
            fragment = fragment_path(executable.library_dir(context.build_dir), executable.bundle_id)
            log.info(f"[DRY-RUN] Would bundle {executable.name} into {fragment}")
        return True

    ok = True
    for executable in settings.executables:
        log.info(f"Building virtual file system for {executable.name}")
        try:
            bundle_executable(context, executable, metadata, archiver)
        except PipelineError as e:
            log.error(str(e))
            ok = False
    return ok
