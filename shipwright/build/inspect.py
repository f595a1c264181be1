"""
Build inspection for shipwright.

Shows the active build, its metadata and the packages on disk.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from shipwright.core.errors import MissingCacheError, PipelineError
from shipwright.core.utils import RepoLayout, get_layout, log
from shipwright.build.combo import BuildContext, load_active
from shipwright.build.config import load_settings
from shipwright.build.metadata import read_metadata


# =============================================================================
# Build State Inspection
# =============================================================================


def list_packages(layout: RepoLayout) -> list[Path]:
    """Packages under Build/Packages, newest name last."""
    if not layout.packages.is_dir():
        return []
    return sorted(layout.packages.glob("*.zip"))


def list_included_builds(layout: RepoLayout) -> list[str]:
    if not layout.included_builds.is_dir():
        return []
    return sorted(p.name for p in layout.included_builds.iterdir() if p.is_dir())


def _show_combo(context: BuildContext) -> None:
    combo = context.combo
    log.header("Active Build")
    log.table_row("Directory:", context.layout.relative(context.build_dir).as_posix())
    log.table_row("Alias:", combo.alias)
    log.table_row("Toolchain:", combo.toolchain)
    log.table_row("Platform:", combo.platform)
    log.table_row("Architecture:", combo.architecture)
    log.table_row("Configuration:", combo.configuration)
    log.table_row("VFS:", "Yes" if combo.vfs else "No")
    for key, value in combo.extra_overrides:
        log.table_row(f"-D{key}:", value)


def _show_metadata(context: BuildContext, prefix: str) -> None:
    log.header("Metadata")
    try:
        metadata = read_metadata(context.build_dir, prefix)
        log.table_row("Branch:", metadata.branch)
        log.table_row("Version:", f"{metadata.major}.{metadata.minor}.{metadata.patch}")
        log.table_row("Revision:", str(metadata.revision))
        log.table_row("Changeset:", metadata.changeset)
        log.table_row("Changeset date:", metadata.changeset_date)
        log.table_row("Configured at:", str(metadata.timestamp))
        log.table_row("Prebuilt content:", metadata.versioned_content_key)
    except MissingCacheError:
        log.warning("Not configured yet (run 'shipwright configure')")
    except PipelineError as e:
        log.error(str(e))


# =============================================================================
# CLI Entry Point
# =============================================================================


def cmd_inspect(args) -> int:
    """Main entry point for the inspect command."""
    log.header("shipwright Build Inspection")

    layout = get_layout()
    settings = load_settings(layout)

    log.info(f"Root: {layout.repo}")
    log.info(f"Executables: {', '.join(e.name for e in settings.executables) or '(none)'}")

    context: Optional[BuildContext] = load_active(layout)
    if context is None:
        log.warning("No build has been activated")
    else:
        _show_combo(context)
        _show_metadata(context, settings.variable_prefix)

    log.header("Packages")
    packages = list_packages(layout)
    if not packages:
        log.dim("No packages")
    for package in packages:
        size_kb = package.stat().st_size // 1024
        log.table_row(package.name, f"{size_kb} KB", col1_width=70)

    included = list_included_builds(layout)
    if included:
        log.header("Included Builds")
        for name in included:
            log.info(name)

    return 1 if log.error_count else 0
