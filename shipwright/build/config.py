"""
Build configuration for shipwright.

Settings schema for shipwright.yaml and the per-run BuildConfig.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shipwright.core.errors import ConfigError
from shipwright.core.process import RetryPolicy
from shipwright.core.utils import RepoLayout
from shipwright.build.combo import ComboOptions

__all__ = [
    "DEFAULT_BUNDLE_ID",
    "DEFAULT_VARIABLE_PREFIX",
    "RetrySettings",
    "AliasSpec",
    "ExecutableSpec",
    "PipelineSettings",
    "BuildConfig",
    "load_settings",
]

DEFAULT_VARIABLE_PREFIX = "SHIPWRIGHT"
DEFAULT_BUNDLE_ID = "VirtualFileSystem"


# =============================================================================
# Settings Schema
# =============================================================================


class RetrySettings(BaseModel):
    """Retry policy for flaky external fetches."""

    model_config = ConfigDict(extra="forbid")

    attempts: int = Field(3, ge=1, description="Attempt ceiling")
    backoff_seconds: float = Field(5.0, ge=0, description="Fixed sleep between attempts")

    def policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.attempts, backoff_seconds=self.backoff_seconds)


class AliasSpec(BaseModel):
    """Partial combo that a named alias expands to."""

    model_config = ConfigDict(extra="forbid")

    toolchain: Optional[str] = None
    platform: Optional[str] = None
    architecture: Optional[str] = None
    configuration: Optional[str] = None
    vfs: Optional[bool] = None


class ExecutableSpec(BaseModel):
    """A shipped executable and the content it embeds."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="Target name, also the package product name")
    dir: str = Field(description="Directory under Code/ holding the target")
    prebuild: bool = Field(False, description="Run after the first build to harvest prebuilt content")
    copy_to_included_builds: bool = Field(
        False, description="Extract the package into Build/IncludedBuilds for other products"
    )
    embed_included_builds: bool = Field(
        False, description="Add Build/IncludedBuilds to this product's package"
    )
    non_resource_dependencies: list[str] = Field(
        default_factory=list, description="Repo-relative paths bundled as-is"
    )
    resource_libraries: list[str] = Field(
        default_factory=list, description="Directories under Resources/ (and prebuilt content)"
    )
    vfs_only_package: list[str] = Field(
        default_factory=list, description="Repo-relative paths needed before the VFS is mounted"
    )
    bundle_id: str = Field(
        DEFAULT_BUNDLE_ID,
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
        description="Identifier of the generated byte array",
    )

    def library_dir(self, build_dir: Path) -> Path:
        """Directory of this target inside a build tree."""
        return build_dir / "Code" / self.dir / self.name


class PipelineSettings(BaseModel):
    """Contents of shipwright.yaml."""

    model_config = ConfigDict(extra="forbid")

    variable_prefix: str = Field(
        DEFAULT_VARIABLE_PREFIX,
        pattern=r"^[A-Za-z0-9_]+$",
        description="Prefix of the generator cache variables",
    )
    generator: str = Field("Ninja", description="CMake generator name")
    archiver: Literal["auto", "7z", "zip"] = Field(
        "auto", description="Archive backend (auto picks 7z when on PATH)"
    )
    heartbeat_seconds: float = Field(10.0, gt=0, description="Interval of 'Working...' lines")
    license_header: Optional[str] = Field(
        None, description="First line enforced by 'format' on source files"
    )
    retry: RetrySettings = Field(default_factory=RetrySettings)
    aliases: dict[str, AliasSpec] = Field(default_factory=dict)
    executables: list[ExecutableSpec] = Field(default_factory=list)

    def alias_table(self) -> dict[str, dict[str, Any]]:
        """Aliases as plain dicts, without unset fields."""
        return {
            name: spec.model_dump(exclude_none=True)
            for name, spec in self.aliases.items()
        }


def load_settings(layout: RepoLayout) -> PipelineSettings:
    """Load and validate shipwright.yaml from the repository root."""
    path = layout.marker
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"{path} is not valid YAML: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        return PipelineSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {path.name}:\n{e}") from e


# =============================================================================
# Run Configuration
# =============================================================================


@dataclass
class BuildConfig:
    """Configuration for a pipeline run."""

    layout: RepoLayout
    settings: PipelineSettings
    combo_options: ComboOptions = field(default_factory=ComboOptions)
    dry_run: bool = False
    verbose: bool = False
    target: Optional[str] = None
    parallel: Optional[int] = None
