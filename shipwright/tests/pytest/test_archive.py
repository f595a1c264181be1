"""
Tests for the archive adapters.
"""

from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from shipwright.core.errors import ToolNotFoundError
from shipwright.build import archive as archive_module
from shipwright.build.archive import (
    SevenZipArchiver,
    ZipArchiver,
    collect_entries,
    select_archiver,
)
from .conftest import FakeRunner


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    root = tmp_path / "tree"
    (root / "Lib" / "Sub").mkdir(parents=True)
    (root / "Lib" / "a.txt").write_text("a", encoding="utf-8")
    (root / "Lib" / "Sub" / "b.txt").write_text("b", encoding="utf-8")
    (root / "loose.bin").write_bytes(b"\x00\x01")
    return root


def _names(path: Path) -> list[str]:
    with zipfile.ZipFile(path) as zf:
        return zf.namelist()


@pytest.mark.evergreen
class TestCollectEntries:
    def test_relative_paths_keep_structure(self, tree: Path) -> None:
        entries = collect_entries(tree, ["Lib"])
        assert list(entries) == ["Lib/", "Lib/Sub/", "Lib/Sub/b.txt", "Lib/a.txt"]
        assert entries["Lib/"] is None
        assert entries["Lib/a.txt"] == tree / "Lib" / "a.txt"

    def test_absolute_paths_use_basename(self, tree: Path, tmp_path: Path) -> None:
        entries = collect_entries(tmp_path, [str(tree / "Lib" / "a.txt")])
        assert list(entries) == ["a.txt"]

    def test_missing_path(self, tree: Path) -> None:
        with pytest.raises(FileNotFoundError):
            collect_entries(tree, ["Nope"])


@pytest.mark.evergreen
class TestZipArchiver:
    def test_add_and_extract(self, tree: Path, tmp_path: Path) -> None:
        archive = tmp_path / "out" / "bundle.zip"
        result = ZipArchiver().add(tree, archive, ["Lib", "loose.bin"])
        assert not result.failed
        assert sorted(_names(archive)) == ["Lib/", "Lib/Sub/", "Lib/Sub/b.txt", "Lib/a.txt", "loose.bin"]

        out = tmp_path / "extracted"
        assert not ZipArchiver().extract(archive, out).failed
        assert (out / "Lib" / "Sub" / "b.txt").read_text(encoding="utf-8") == "b"
        assert (out / "loose.bin").read_bytes() == b"\x00\x01"

    def test_adding_again_replaces_and_keeps_other_entries(self, tree: Path, tmp_path: Path) -> None:
        archive = tmp_path / "bundle.zip"
        archiver = ZipArchiver()
        archiver.add(tree, archive, ["Lib", "loose.bin"])
        (tree / "loose.bin").write_bytes(b"changed")
        archiver.add(tree, archive, ["loose.bin"])

        with zipfile.ZipFile(archive) as zf:
            assert zf.read("loose.bin") == b"changed"
            assert zf.read("Lib/a.txt") == b"a"
            assert len(zf.namelist()) == len(set(zf.namelist()))

    def test_deterministic_bytes(self, tree: Path, tmp_path: Path) -> None:
        first = tmp_path / "first.zip"
        second = tmp_path / "second.zip"
        ZipArchiver().add(tree, first, ["loose.bin", "Lib"])
        ZipArchiver().add(tree, second, ["Lib", "loose.bin"])
        assert first.read_bytes() == second.read_bytes()

    def test_empty_file_list_is_a_no_op(self, tmp_path: Path) -> None:
        archive = tmp_path / "none.zip"
        assert not ZipArchiver().add(tmp_path, archive, []).failed
        assert not archive.exists()

    def test_missing_input_fails_without_partial_archive(self, tree: Path, tmp_path: Path) -> None:
        from shipwright.core.utils import log

        archive = tmp_path / "bundle.zip"
        result = ZipArchiver().add(tree, archive, ["Lib", "Missing"])
        assert result.failed
        assert not archive.exists()
        assert not archive.with_name("bundle.zip.tmp").exists()
        assert log.error_count == 1

    def test_extract_corrupt_archive(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.zip"
        bad.write_bytes(b"not a zip")
        assert ZipArchiver().extract(bad, tmp_path / "out").failed

    def test_dry_run_writes_nothing(self, tree: Path, tmp_path: Path) -> None:
        archive = tmp_path / "bundle.zip"
        ZipArchiver().add(tree, archive, ["loose.bin"])
        before = archive.read_bytes()
        archiver = ZipArchiver(dry_run=True)

        assert not archiver.add(tree, archive, ["Lib"]).failed
        assert archive.read_bytes() == before
        assert not archiver.extract(archive, tmp_path / "out").failed
        assert not (tmp_path / "out").exists()


@pytest.mark.evergreen
class TestSevenZipArchiver:
    def test_add_arguments(self, tmp_path: Path) -> None:
        runner = FakeRunner()
        archive = tmp_path / "p.zip"
        SevenZipArchiver(runner).add(tmp_path, archive, ["Resources/Core", "/abs/App"])
        command, args, cwd = runner.calls[0]
        assert command == "7z"
        assert args == ["a", "-tzip", "-mx=9", "-mfb=128", "-mpass=10", str(archive), "Resources/Core", "/abs/App"]
        assert cwd == tmp_path

    def test_extract_arguments(self, tmp_path: Path) -> None:
        runner = FakeRunner()
        SevenZipArchiver(runner).extract(tmp_path / "p.zip", tmp_path / "out")
        assert runner.commands("7z") == [["x", str(tmp_path / "p.zip"), f"-o{tmp_path / 'out'}", "-y"]]

    def test_empty_add_does_not_run(self, tmp_path: Path) -> None:
        runner = FakeRunner()
        assert not SevenZipArchiver(runner).add(tmp_path, tmp_path / "p.zip", []).failed
        assert runner.calls == []


@pytest.mark.evergreen
class TestSelectArchiver:
    def test_explicit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(archive_module, "command_exists", lambda name: True)
        runner = FakeRunner()
        assert isinstance(select_archiver("zip", runner), ZipArchiver)
        assert isinstance(select_archiver("7z", runner), SevenZipArchiver)

    def test_explicit_7z_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(archive_module, "command_exists", lambda name: False)
        with pytest.raises(ToolNotFoundError, match="7z"):
            select_archiver("7z", FakeRunner())
        assert isinstance(select_archiver("7z", FakeRunner(dry_run=True)), SevenZipArchiver)

    def test_auto_prefers_7z(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(archive_module, "command_exists", lambda name: True)
        assert isinstance(select_archiver("auto", FakeRunner()), SevenZipArchiver)

    def test_auto_falls_back_to_zip(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(archive_module, "command_exists", lambda name: False)
        assert isinstance(select_archiver("auto", FakeRunner()), ZipArchiver)

    def test_zip_follows_runner_dry_run(self) -> None:
        archiver = select_archiver("zip", FakeRunner(dry_run=True))
        assert isinstance(archiver, ZipArchiver)
        assert archiver.dry_run is True
