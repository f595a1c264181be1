"""
shipwright.build - Release pipeline for multi-target native products.

Resolves build combos, bundles runtime content, compiles through CMake
and packages versioned distributions.
"""

from shipwright.build.combo import (
    BUILTIN_ALIASES,
    ComboOptions,
    BuildCombo,
    BuildContext,
    resolve,
    build_directory_name,
    activate,
    load_active,
)
from shipwright.build.config import (
    ExecutableSpec,
    PipelineSettings,
    BuildConfig,
    load_settings,
)
from shipwright.build.metadata import (
    MetadataRecord,
    read_metadata,
    query_source_metadata,
)
from shipwright.build.archive import (
    Archiver,
    SevenZipArchiver,
    ZipArchiver,
    select_archiver,
)
from shipwright.build.packager import (
    PackageIdentity,
    pack_all,
)
from shipwright.build.orchestrator import (
    Stage,
    PIPELINE,
    PipelineOrchestrator,
    cmd_pipeline,
)

__all__ = [
    # Combos
    "BUILTIN_ALIASES",
    "ComboOptions",
    "BuildCombo",
    "BuildContext",
    "resolve",
    "build_directory_name",
    "activate",
    "load_active",
    # Settings
    "ExecutableSpec",
    "PipelineSettings",
    "BuildConfig",
    "load_settings",
    # Metadata
    "MetadataRecord",
    "read_metadata",
    "query_source_metadata",
    # Archives
    "Archiver",
    "SevenZipArchiver",
    "ZipArchiver",
    "select_archiver",
    # Packaging
    "PackageIdentity",
    "pack_all",
    # Orchestrator
    "Stage",
    "PIPELINE",
    "PipelineOrchestrator",
    "cmd_pipeline",
]
