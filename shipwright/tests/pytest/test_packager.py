"""
Tests for package identity, output enumeration and packing.
"""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from shipwright.core.process import ProcessResult
from shipwright.core.utils import RepoLayout, log
from shipwright.build.archive import ZipArchiver
from shipwright.build.combo import BuildCombo, BuildContext, ComboOptions, activate, resolve
from shipwright.build.config import ExecutableSpec, PipelineSettings, load_settings
from shipwright.build.metadata import MetadataRecord, read_metadata
from shipwright.build.packager import (
    PackageIdentity,
    collect_output_files,
    find_executable,
    find_output_dir,
    pack_all,
    pack_executable,
    prepare_publish_tree,
    prune_included_builds,
)
from .conftest import METADATA_VALUES

SCENARIO_FILENAME = "App.main.1.2.3.450.abc123def456.1700000000000.x64.Release.zip"


def _metadata(**changes: str) -> MetadataRecord:
    values = {**METADATA_VALUES, **changes}
    return MetadataRecord({f"SHIPWRIGHT_{k}": v for k, v in values.items()})


def _combo() -> BuildCombo:
    return BuildCombo(
        alias="release", toolchain="Clang", platform="Linux",
        architecture="x64", configuration="Release",
    )


def _populate_outputs(build_dir: Path, name: str, directory: str = "Apps") -> Path:
    out = build_dir / "Code" / directory / name / "Release"
    out.mkdir(parents=True, exist_ok=True)
    (out / name).write_bytes(b"\x7fELF " + name.encode())
    (out / f"{name}.wasm").write_bytes(b"\x00asm")
    (out / f"{name}.pdb").write_bytes(b"symbols")
    (out / "FileSystem.zip").write_bytes(b"PK")
    (out / "VirtualFileSystem.cpp").write_text("unsigned char x[] = {0};\n", encoding="utf-8")
    (out / "CMakeFiles").mkdir(exist_ok=True)
    return out


@pytest.fixture
def context(repo: RepoLayout, configured_build: Path) -> BuildContext:
    settings = load_settings(repo)
    combo = resolve(ComboOptions(alias="release"), settings.alias_table())
    return activate(repo, combo)


# =============================================================================
# Package Identity Tests
# =============================================================================


@pytest.mark.evergreen
class TestPackageIdentity:
    def test_scenario_filename(self) -> None:
        identity = PackageIdentity.from_metadata("App", _metadata(), _combo())
        assert identity.filename == SCENARIO_FILENAME

    def test_deterministic(self) -> None:
        first = PackageIdentity.from_metadata("App", _metadata(), _combo())
        second = PackageIdentity.from_metadata("App", _metadata(), _combo())
        assert first == second
        assert first.filename == second.filename

    def test_every_field_changes_the_name(self) -> None:
        base = PackageIdentity.from_metadata("App", _metadata(), _combo()).filename
        for key, value in [
            ("BRANCH", "dev"), ("REVISION", "451"), ("SHORT_CHANGESET", "fff"),
            ("MS_SINCE_EPOCH", "1"), ("CONFIG", "Debug"), ("PATCH_VERSION", "4"),
        ]:
            other = PackageIdentity.from_metadata("App", _metadata(**{key: value}), _combo())
            assert other.filename != base, key

    def test_branch_with_slash_stays_one_file(self) -> None:
        identity = PackageIdentity.from_metadata("App", _metadata(BRANCH="feature/vfs"), _combo())
        assert identity.filename.startswith("App.feature%2Fvfs.1.2.3.")
        assert "/" not in identity.filename

    def test_dots_inside_fields_cannot_collide(self) -> None:
        dotted_product = PackageIdentity.from_metadata("A.b", _metadata(BRANCH="c"), _combo())
        dotted_branch = PackageIdentity.from_metadata("A", _metadata(BRANCH="b.c"), _combo())
        assert dotted_product.filename != dotted_branch.filename
        assert dotted_branch.filename.startswith("A.b%2Ec.1.2.3.")
        assert dotted_product.filename.count(".") == dotted_branch.filename.count(".") == 10


# =============================================================================
# Output Enumeration Tests
# =============================================================================


@pytest.mark.evergreen
class TestOutputs:
    def test_configuration_subdirectory_preferred(self, tmp_path: Path) -> None:
        app = ExecutableSpec(name="App", dir="Apps")
        out = _populate_outputs(tmp_path, "App")
        assert find_output_dir(tmp_path, "Release", app) == out
        assert find_executable(tmp_path, "Release", app) == out / "App"

    def test_unqualified_directory_fallback(self, tmp_path: Path) -> None:
        app = ExecutableSpec(name="App", dir="Apps")
        base = app.library_dir(tmp_path)
        base.mkdir(parents=True)
        (base / "App.exe").write_bytes(b"MZ")
        assert find_output_dir(tmp_path, "Release", app) == base
        assert find_executable(tmp_path, "Release", app) == base / "App.exe"

    def test_missing(self, tmp_path: Path) -> None:
        app = ExecutableSpec(name="App", dir="Apps")
        assert find_output_dir(tmp_path, "Release", app) is None
        assert find_executable(tmp_path, "Release", app) is None

    def test_denylist(self, tmp_path: Path) -> None:
        out = _populate_outputs(tmp_path, "App")
        assert [p.name for p in collect_output_files(out, "VirtualFileSystem")] == ["App", "App.wasm"]


# =============================================================================
# Staging Tree Tests
# =============================================================================


@pytest.mark.evergreen
class TestStagingTrees:
    def test_publish_tree_is_recreated(self, repo: RepoLayout) -> None:
        stale = repo.page / "Old" / "index.html"
        stale.parent.mkdir(parents=True)
        stale.write_text("old", encoding="utf-8")
        prepare_publish_tree(repo)
        assert sorted(p.name for p in repo.page.iterdir()) == [".nojekyll"]

    def test_prune_keeps_current_identities(self, repo: RepoLayout) -> None:
        (repo.included_builds / "App.old.zip").mkdir(parents=True)
        (repo.included_builds / SCENARIO_FILENAME).mkdir()
        prune_included_builds(repo, {SCENARIO_FILENAME})
        assert [p.name for p in repo.included_builds.iterdir()] == [SCENARIO_FILENAME]


# =============================================================================
# Packing Tests
# =============================================================================


@pytest.mark.evergreen
class TestPackExecutable:
    def test_package_contents(self, context: BuildContext, configured_build: Path) -> None:
        _populate_outputs(configured_build, "App")
        app = load_settings(context.layout).executables[0]
        metadata = read_metadata(configured_build)

        package = pack_executable(context, app, metadata, ZipArchiver())

        assert package == context.layout.packages / SCENARIO_FILENAME
        with zipfile.ZipFile(package) as zf:
            names = sorted(zf.namelist())
        assert names == ["App", "App.wasm", "Data/", "Data/Fonts.txt"]

        layout = context.layout
        extracted = layout.included_builds / SCENARIO_FILENAME
        assert (extracted / "App").read_bytes() == b"\x7fELF App"
        assert (layout.page / "App" / "App.wasm").is_file()
        assert not (layout.page / "App" / "App.pdb").exists()

    def test_repacking_is_byte_identical(self, context: BuildContext, configured_build: Path) -> None:
        _populate_outputs(configured_build, "App")
        app = load_settings(context.layout).executables[0]
        metadata = read_metadata(configured_build)

        first = pack_executable(context, app, metadata, ZipArchiver())
        assert first is not None
        first_bytes = first.read_bytes()
        second = pack_executable(context, app, metadata, ZipArchiver())

        assert second == first
        assert second.read_bytes() == first_bytes
        assert len(list(context.layout.packages.iterdir())) == 1

    def test_missing_outputs(self, context: BuildContext, configured_build: Path) -> None:
        app = load_settings(context.layout).executables[0]
        assert pack_executable(context, app, read_metadata(configured_build), ZipArchiver()) is None
        assert log.error_count == 1


class FailsForArchiver(ZipArchiver):
    """Deterministic zip writer that refuses packages of one product."""

    def __init__(self, product: str):
        super().__init__()
        self.product = product

    def add(self, cwd, archive, files):
        if archive.name.startswith(f"{self.product}."):
            archive.write_bytes(b"partial")
            log.line_error("7z: E_FAIL")
            return ProcessResult(failed=True, returncode=2, stderr="E_FAIL")
        return super().add(cwd, archive, files)


@pytest.mark.evergreen
class TestPackAll:
    def test_failure_in_one_target_does_not_stop_the_next(
        self, context: BuildContext, configured_build: Path
    ) -> None:
        settings = PipelineSettings(executables=[
            ExecutableSpec(name="A", dir="Apps"),
            ExecutableSpec(name="B", dir="Apps"),
        ])
        _populate_outputs(configured_build, "A")
        _populate_outputs(configured_build, "B")
        metadata = read_metadata(configured_build)

        results = pack_all(context, settings, metadata, FailsForArchiver("A"))

        assert results["A"] is None
        assert results["B"] is not None and results["B"].is_file()
        assert not any(p.name.startswith("A.") for p in context.layout.packages.iterdir())
        assert log.error_count > 0

    def test_page_gets_nojekyll(self, context: BuildContext, configured_build: Path) -> None:
        _populate_outputs(configured_build, "App")
        pack_all(context, load_settings(context.layout), read_metadata(configured_build), ZipArchiver())
        assert (context.layout.page / ".nojekyll").is_file()
        assert (context.layout.page / "App" / "App").is_file()
