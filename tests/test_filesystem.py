"""Tests for the working-tree file-system adapter."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from gitpress.errors import FileSystemError
from gitpress.versioning.filesystem import LocalFileSystem


@pytest.fixture
def fs(tmp_path):
    return LocalFileSystem(tmp_path)


class TestPaths:
    def test_rejects_absolute_path(self, fs):
        with pytest.raises(ValueError, match="relative"):
            fs.resolve("/etc/passwd")

    def test_rejects_escaping_path(self, fs):
        with pytest.raises(ValueError, match="outside"):
            fs.resolve("db/../../secret")

    def test_resolves_nested_path(self, fs, tmp_path):
        assert fs.resolve("db/posts/A.yml") == tmp_path.resolve() / "db" / "posts" / "A.yml"


class TestReadWrite:
    def test_write_creates_parents(self, fs, tmp_path):
        assert fs.write_file("db/posts/A.yml", b"abc") == 3
        assert (tmp_path / "db" / "posts" / "A.yml").read_bytes() == b"abc"
        assert fs.exists("db/posts/A.yml")

    def test_write_leaves_no_temp_files(self, fs, tmp_path):
        fs.write_file("db/A.yml", b"one")
        fs.write_file("db/A.yml", b"two")
        assert [p.name for p in (tmp_path / "db").iterdir()] == ["A.yml"]

    def test_read_missing_returns_none(self, fs):
        assert fs.read_bytes("nope.yml") is None
        assert fs.read_text("nope.yml") is None

    def test_read_text_utf8(self, fs):
        fs.write_file("a.yml", "title: Příliš\n".encode("utf-8"))
        assert fs.read_text("a.yml") == "title: Příliš\n"

    def test_read_text_detects_legacy_encoding(self, fs):
        text = "title: Příliš žluťoučký kůň úpěl ďábelské ódy\n" * 4
        fs.write_file("a.yml", text.encode("cp1250"))
        assert "title:" in fs.read_text("a.yml")

    def test_read_empty_file(self, fs):
        fs.write_file("empty.yml", b"")
        assert fs.read_text("empty.yml") == ""

    def test_write_failure_is_wrapped(self, fs):
        with patch(
            "gitpress.versioning.filesystem.os.replace",
            side_effect=PermissionError("read-only"),
        ):
            with pytest.raises(FileSystemError, match="read-only"):
                fs.write_file("db/A.yml", b"x")


class TestDelete:
    def test_delete_file(self, fs):
        fs.write_file("db/A.yml", b"x")
        assert fs.delete_file("db/A.yml") is True
        assert fs.delete_file("db/A.yml") is False

    def test_remove_empty_directory_only(self, fs):
        fs.write_file("db/posts/A.yml", b"x")
        assert fs.remove_directory("db/posts") is False
        fs.delete_file("db/posts/A.yml")
        assert fs.remove_directory("db/posts") is True
        assert fs.remove_directory("db/posts") is False

    def test_never_removes_root(self, fs):
        assert fs.remove_directory(".") is False
