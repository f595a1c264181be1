"""
Build metadata for shipwright.

Version and changeset information is collected from git at configure
time, handed to CMake as cache variables, and read back out of
CMakeCache.txt by every later stage. Reading it back (instead of asking
git again) keeps build, prebuilt content and package names consistent
with what was compiled into the binary.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Optional

from shipwright.core.errors import MissingArtifactError, MissingCacheError
from shipwright.core.process import ProcessRunner
from shipwright.core.utils import log

CACHE_FILE = "CMakeCache.txt"

DEFAULT_PREFIX = "SHIPWRIGHT"

# Variables passed as -DNAME=value without a type are cached as UNINITIALIZED
_RECORD = re.compile(r"^(?P<name>[A-Za-z0-9_-]+):UNINITIALIZED=(?P<value>[^\r\n]*)", re.MULTILINE)

_VERSION_TAG = re.compile(r"v(?P<major>[0-9]+)\.(?P<minor>[0-9]+)\.(?P<patch>[0-9]+)")


# =============================================================================
# Cache Parsing
# =============================================================================


def parse_cache(text: str) -> dict[str, str]:
    """Extract name -> value for every UNINITIALIZED record."""
    return {m.group("name"): m.group("value") for m in _RECORD.finditer(text)}


class MetadataRecord(Mapping[str, str]):
    """Read-only view of the build metadata stored in a generator cache."""

    def __init__(self, values: Mapping[str, str], prefix: str = DEFAULT_PREFIX):
        self._values = dict(values)
        self.prefix = prefix

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"MetadataRecord(prefix={self.prefix!r}, keys={len(self._values)})"

    def field(self, key: str) -> str:
        name = f"{self.prefix}_{key}"
        if name not in self._values:
            raise MissingArtifactError(f"{name} is missing from the generator cache")
        return self._values[name]

    def _int_field(self, key: str) -> int:
        value = self.field(key)
        try:
            return int(value)
        except ValueError:
            raise MissingArtifactError(
                f"{self.prefix}_{key} is not an integer: {value!r}"
            ) from None

    @property
    def branch(self) -> str:
        return self.field("BRANCH")

    @property
    def revision(self) -> int:
        return self._int_field("REVISION")

    @property
    def short_changeset(self) -> str:
        return self.field("SHORT_CHANGESET")

    @property
    def changeset(self) -> str:
        return self.field("CHANGESET")

    @property
    def changeset_date(self) -> str:
        return self.field("CHANGESET_DATE").strip('"')

    @property
    def major(self) -> int:
        return self._int_field("MAJOR_VERSION")

    @property
    def minor(self) -> int:
        return self._int_field("MINOR_VERSION")

    @property
    def patch(self) -> int:
        return self._int_field("PATCH_VERSION")

    @property
    def configuration(self) -> str:
        return self.field("CONFIG")

    @property
    def timestamp(self) -> int:
        return self._int_field("MS_SINCE_EPOCH")

    @property
    def versioned_content_key(self) -> str:
        """Directory name of this build's prebuilt content.

        The built executable derives the same name when it copies content,
        so the format must not change independently.
        """
        return f"Version-{self.field('REVISION')}-{self.changeset}"


def read_metadata(build_dir: Path, prefix: str = DEFAULT_PREFIX) -> MetadataRecord:
    """Read the metadata of a configured build directory.

    Raises MissingCacheError if the directory was never configured.
    """
    cache_path = build_dir / CACHE_FILE
    if not cache_path.is_file():
        raise MissingCacheError(f"{CACHE_FILE} not found in {build_dir} (run configure first)")
    text = cache_path.read_text(encoding="utf-8", errors="replace")
    return MetadataRecord(parse_cache(text), prefix)


# =============================================================================
# Source Metadata (git)
# =============================================================================


def parse_version_tag(tag: str) -> tuple[int, int, int]:
    """Version triple from a 'git describe' string, 0.0.0 when there is none."""
    match = _VERSION_TAG.search(tag)
    if not match:
        return 0, 0, 0
    return int(match.group("major")), int(match.group("minor")), int(match.group("patch"))


@dataclass(frozen=True)
class SourceMetadata:
    """Metadata gathered from version control before configuring."""

    branch: str
    revision: str
    short_changeset: str
    changeset: str
    changeset_date: str
    major: int
    minor: int
    patch: int
    timestamp: int

    def definitions(self, prefix: str, configuration: str) -> list[str]:
        """Generator -D arguments, read back later by read_metadata."""
        return [
            f"-D{prefix}_MS_SINCE_EPOCH={self.timestamp}",
            f"-D{prefix}_BRANCH={self.branch}",
            f"-D{prefix}_REVISION={self.revision}",
            f"-D{prefix}_SHORT_CHANGESET={self.short_changeset}",
            f"-D{prefix}_CHANGESET={self.changeset}",
            f'-D{prefix}_CHANGESET_DATE="{self.changeset_date}"',
            f"-D{prefix}_MAJOR_VERSION={self.major}",
            f"-D{prefix}_MINOR_VERSION={self.minor}",
            f"-D{prefix}_PATCH_VERSION={self.patch}",
            f"-D{prefix}_CONFIG={configuration}",
        ]


def query_source_metadata(
    runner: ProcessRunner,
    repo: Path,
    now_ms: Optional[int] = None,
) -> SourceMetadata:
    """Ask git for branch, revision count, changesets, date and version tag."""

    def git(*args: str) -> str:
        return runner.run_simple("git", list(args), cwd=repo, on_stderr=log.line_error)

    branch = git("rev-parse", "--abbrev-ref", "HEAD")
    revision = git("rev-list", "--count", "HEAD")
    short_changeset = git("log", "-1", "--pretty=%h", "--abbrev=12")
    changeset = git("log", "-1", "--pretty=%H")
    changeset_date = git("log", "-1", "--pretty=%cd", "--date=format:%Y-%m-%d")
    # No tag yet is normal; describe's complaint is not an error
    tag = runner.run_simple("git", ["describe", "--tags"], cwd=repo)
    major, minor, patch = parse_version_tag(tag)

    return SourceMetadata(
        branch=branch,
        revision=revision,
        short_changeset=short_changeset,
        changeset=changeset,
        changeset_date=changeset_date,
        major=major,
        minor=minor,
        patch=patch,
        timestamp=now_ms if now_ms is not None else int(time.time() * 1000),
    )
