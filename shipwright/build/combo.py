"""
Build combo resolution and activation.

A combo names one build configuration (toolchain, platform, architecture,
configuration). Each combo owns a build directory under Build/, and the
most recently activated one is recorded in Build/Active.yaml so a later,
separate invocation (a packaging run, an editor looking for
compile_commands.json) can find it without re-resolving.

The pointer assumes one pipeline run per repository at a time.
"""

from __future__ import annotations

import os
import platform as host_platform
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import quote

import yaml

from shipwright.core.errors import ComboError, ConfigError
from shipwright.core.utils import RepoLayout, log, try_unlink

# =============================================================================
# Legal Values
# =============================================================================

TOOLCHAINS = ("MSVC", "Clang", "GCC", "Emscripten")
PLATFORMS = ("Windows", "Linux", "Mac", "Emscripten", "Stub")
ARCHITECTURES = ("x86", "x64", "arm64", "wasm")
CONFIGURATIONS = ("Debug", "RelWithDebInfo", "Release", "MinSizeRel")

LEGAL_VALUES: dict[str, tuple[str, ...]] = {
    "toolchain": TOOLCHAINS,
    "platform": PLATFORMS,
    "architecture": ARCHITECTURES,
    "configuration": CONFIGURATIONS,
}

# Lowest precedence layer
TEMPLATE: dict[str, Any] = {
    "configuration": "Release",
    "vfs": True,
}

BUILTIN_ALIASES: dict[str, dict[str, Any]] = {
    "Windows": {"toolchain": "MSVC", "platform": "Windows", "architecture": "x64"},
    "Linux": {"toolchain": "Clang", "platform": "Linux", "architecture": "x64"},
    "Mac": {"toolchain": "Clang", "platform": "Mac", "architecture": "arm64"},
    "Emscripten": {"toolchain": "Emscripten", "platform": "Emscripten", "architecture": "wasm"},
}

_HOST_ALIASES = {"Windows": "Windows", "Linux": "Linux", "Darwin": "Mac"}


def host_alias() -> str:
    """Alias matching the machine we are running on."""
    return _HOST_ALIASES.get(host_platform.system(), "Linux")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ComboOptions:
    """What the user asked for on the command line."""

    alias: Optional[str] = None
    toolchain: Optional[str] = None
    platform: Optional[str] = None
    architecture: Optional[str] = None
    configuration: Optional[str] = None
    vfs: Optional[bool] = None
    defines: tuple[str, ...] = ()

    def overrides(self) -> dict[str, Any]:
        """Explicitly supplied combo fields."""
        keys = ("toolchain", "platform", "architecture", "configuration", "vfs")
        return {k: getattr(self, k) for k in keys if getattr(self, k) is not None}

    @property
    def is_empty(self) -> bool:
        """True when no combo flag was given at all."""
        return self.alias is None and not self.overrides() and not self.defines


@dataclass(frozen=True)
class BuildCombo:
    """A fully resolved build configuration. Immutable for a pipeline run."""

    alias: str
    toolchain: str
    platform: str
    architecture: str
    configuration: str
    vfs: bool = True
    extra_overrides: tuple[tuple[str, str], ...] = ()

    def as_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["extra_overrides"] = [list(pair) for pair in self.extra_overrides]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BuildCombo":
        extras = tuple(
            (str(k), str(v)) for k, v in data.get("extra_overrides", [])
        )
        return cls(
            alias=str(data["alias"]),
            toolchain=str(data["toolchain"]),
            platform=str(data["platform"]),
            architecture=str(data["architecture"]),
            configuration=str(data["configuration"]),
            vfs=bool(data.get("vfs", True)),
            extra_overrides=extras,
        )

    def generator_definitions(self, prefix: str) -> list[str]:
        """Combo fields as CMake -D arguments."""
        args = [
            f"-D{prefix}_TOOLCHAIN={self.toolchain}",
            f"-D{prefix}_PLATFORM={self.platform}",
            f"-D{prefix}_ARCHITECTURE={self.architecture}",
            f"-D{prefix}_VFS={'ON' if self.vfs else 'OFF'}",
        ]
        args.extend(f"-D{key}={value}" for key, value in self.extra_overrides)
        return args


@dataclass(frozen=True)
class BuildContext:
    """An activated combo and the directory it builds into."""

    layout: RepoLayout
    combo: BuildCombo
    build_dir: Path = field(compare=False)


# =============================================================================
# Resolution
# =============================================================================


def parse_define(text: str) -> tuple[str, str]:
    """Split a KEY=VALUE generator definition."""
    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ComboError(f"Invalid definition '{text}' (expected KEY=VALUE)")
    return key, value


def _validate(values: Mapping[str, Any]) -> None:
    for name, legal in LEGAL_VALUES.items():
        value = values.get(name)
        if value is None:
            raise ComboError(f"Combo is missing '{name}'")
        if value not in legal:
            raise ComboError(
                f"Illegal {name} '{value}' (expected one of: {', '.join(legal)})"
            )


def resolve(
    options: Optional[ComboOptions] = None,
    aliases: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> BuildCombo:
    """Resolve requested options into a BuildCombo.

    Precedence, lowest first: TEMPLATE, the alias (host OS by default),
    explicit overrides. Configured aliases shadow built-in ones.
    """
    options = options or ComboOptions()
    table: dict[str, Mapping[str, Any]] = {**BUILTIN_ALIASES, **(aliases or {})}

    alias = options.alias or host_alias()
    if alias not in table:
        raise ComboError(f"Unknown alias '{alias}' (known: {', '.join(sorted(table))})")

    values: dict[str, Any] = dict(TEMPLATE)
    values.update({k: v for k, v in table[alias].items() if v is not None})
    values.update(options.overrides())
    _validate(values)

    defines: dict[str, str] = {}
    for text in options.defines:
        key, value = parse_define(text)
        defines[key] = value

    return BuildCombo(
        alias=alias,
        toolchain=values["toolchain"],
        platform=values["platform"],
        architecture=values["architecture"],
        configuration=values["configuration"],
        vfs=bool(values["vfs"]),
        extra_overrides=tuple(sorted(defines.items())),
    )


# =============================================================================
# Build Directory Naming
# =============================================================================


def _encode(value: str) -> str:
    # quote() leaves '-' alone; escape it so it only ever separates fields
    return quote(value, safe="").replace("-", "%2D")


def build_directory_name(combo: BuildCombo) -> str:
    """Name of the combo's build directory.

    Injective over the combo fields: every field is percent-encoded so the
    '-' separator never occurs inside one. The alias is not part of the
    name; two aliases expanding to the same fields share a directory.
    """
    parts = [
        _encode(combo.toolchain),
        _encode(combo.platform),
        _encode(combo.architecture),
        _encode(combo.configuration),
    ]
    if not combo.vfs:
        parts.append("NoVfs")
    parts.extend(_encode(f"{key}={value}") for key, value in combo.extra_overrides)
    return "-".join(parts)


# =============================================================================
# Activation
# =============================================================================


def activate(layout: RepoLayout, combo: BuildCombo, dry_run: bool = False) -> BuildContext:
    """Create the combo's build directory and make it the active one.

    Safe to call repeatedly: the directory is created if missing and the
    pointer is rewritten each time.
    """
    name = build_directory_name(combo)
    build_dir = layout.build / name
    if dry_run:
        log.info(f"[DRY-RUN] Would activate {name}")
        return BuildContext(layout=layout, combo=combo, build_dir=build_dir)

    build_dir.mkdir(parents=True, exist_ok=True)

    pointer = layout.active_pointer
    try_unlink(pointer)
    staging = pointer.with_name(pointer.name + ".tmp")
    staging.write_text(
        yaml.safe_dump({"directory": name, "combo": combo.as_dict()}, sort_keys=True),
        encoding="utf-8",
    )
    os.replace(staging, pointer)

    log.line(f"Activated {name}")
    return BuildContext(layout=layout, combo=combo, build_dir=build_dir)


def load_active(layout: RepoLayout) -> Optional[BuildContext]:
    """Return the most recently activated build, or None if nothing was activated."""
    pointer = layout.active_pointer
    if not pointer.exists():
        return None

    try:
        data = yaml.safe_load(pointer.read_text(encoding="utf-8"))
        combo = BuildCombo.from_dict(data["combo"])
        directory = str(data["directory"])
    except (yaml.YAMLError, KeyError, TypeError) as e:
        raise ConfigError(f"Active build pointer {pointer} is corrupt: {e}") from e

    return BuildContext(layout=layout, combo=combo, build_dir=layout.build / directory)
