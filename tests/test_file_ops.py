#!/usr/bin/env python3
"""
Tests for docx_prefill.file_ops - copying working copies with progress
"""

import os
from pathlib import Path

import pytest

from _prefill_helpers import write_text_docx

from docx_prefill.file_ops import (  # noqa: E402  # type: ignore
    CopyProgress,
    FileCopyError,
    copy_docx_files,
    copy_file,
    copy_file_with_result,
    copy_files,
    ensure_directory_exists,
    get_file_size,
    is_directory_writable,
    is_file_readable,
)


class TestCopyFile:

    def test_copies_content_and_creates_parent(self, tmp_path: Path):
        src = tmp_path / "a.txt"
        src.write_bytes(b"hello")
        dst = copy_file(src, tmp_path / "out" / "nested" / "a.txt")
        assert dst.read_bytes() == b"hello"

    def test_preserves_mtime(self, tmp_path: Path):
        src = tmp_path / "a.txt"
        src.write_bytes(b"x")
        os.utime(src, (1_000_000_000, 1_000_000_000))
        dst = copy_file(src, tmp_path / "b.txt")
        assert int(dst.stat().st_mtime) == 1_000_000_000

    def test_refuses_overwrite_by_default(self, tmp_path: Path):
        src = tmp_path / "a.txt"
        src.write_bytes(b"new")
        dst = tmp_path / "b.txt"
        dst.write_bytes(b"old")
        with pytest.raises(FileCopyError):
            copy_file(src, dst)
        assert dst.read_bytes() == b"old"
        copy_file(src, dst, overwrite=True)
        assert dst.read_bytes() == b"new"

    def test_missing_source(self, tmp_path: Path):
        with pytest.raises(FileCopyError, match="does not exist"):
            copy_file(tmp_path / "nope", tmp_path / "b")

    def test_source_is_directory(self, tmp_path: Path):
        with pytest.raises(FileCopyError, match="not a file"):
            copy_file(tmp_path, tmp_path / "b")

    def test_result_variant(self, tmp_path: Path):
        result = copy_file_with_result(tmp_path / "nope", tmp_path / "b")
        assert not result.success
        assert "does not exist" in result.error


class TestCopyFiles:

    def test_progress_and_partial_failure(self, tmp_path: Path):
        good = tmp_path / "good.txt"
        good.write_bytes(b"12345")
        missing = tmp_path / "missing.txt"
        events = []

        batch = copy_files([good, missing], tmp_path / "out", on_progress=events.append)

        assert not batch.success
        assert (batch.total_files, batch.successful_copies, batch.failed_copies) == (2, 1, 1)
        assert (tmp_path / "out" / "good.txt").read_bytes() == b"12345"
        assert [e.current_file_index for e in events] == [1, 2]
        assert all(isinstance(e, CopyProgress) for e in events)
        assert events[0].percentage == 100
        assert events[-1].total_files == 2

    def test_empty_list(self, tmp_path: Path):
        batch = copy_files([], tmp_path / "out")
        assert batch.success
        assert batch.total_files == 0
        assert not (tmp_path / "out").exists()

    def test_rejects_string(self, tmp_path: Path):
        with pytest.raises(FileCopyError):
            copy_files("a.txt", tmp_path)

    def test_copy_docx_files(self, tmp_path: Path):
        src = tmp_path / "src"
        src.mkdir()
        write_text_docx(src / "b.docx", "x")
        write_text_docx(src / "a.docx", "x")
        write_text_docx(src / "~$a.docx", "x")
        (src / "readme.txt").write_text("x")

        batch = copy_docx_files(src, tmp_path / "dst")
        assert batch.success
        assert sorted(os.listdir(tmp_path / "dst")) == ["a.docx", "b.docx"]
        assert [Path(r.source_path).name for r in batch.results] == ["a.docx", "b.docx"]

    def test_copy_docx_files_missing_source(self, tmp_path: Path):
        with pytest.raises(FileCopyError):
            copy_docx_files(tmp_path / "missing", tmp_path / "dst")


class TestChecks:

    def test_ensure_directory_exists(self, tmp_path: Path):
        target = tmp_path / "a" / "b"
        assert ensure_directory_exists(target) == target
        assert target.is_dir()
        ensure_directory_exists(target)

    def test_ensure_directory_on_file(self, tmp_path: Path):
        path = tmp_path / "file"
        path.write_text("x")
        with pytest.raises(FileCopyError):
            ensure_directory_exists(path)

    def test_readable_writable_size(self, tmp_path: Path):
        path = tmp_path / "file"
        path.write_bytes(b"abc")
        assert is_file_readable(path)
        assert not is_file_readable(tmp_path)
        assert is_directory_writable(tmp_path)
        assert not is_directory_writable(path)
        assert get_file_size(path) == 3
        with pytest.raises(FileCopyError):
            get_file_size(tmp_path)
