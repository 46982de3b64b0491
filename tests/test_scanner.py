#!/usr/bin/env python3
"""
Tests for docx_prefill.scanner - folder enumeration, scanning, merge with saved values
"""

import asyncio
from pathlib import Path

import pytest

from _prefill_helpers import write_docx, write_python_docx, write_text_docx

from docx_prefill.common import (  # noqa: E402  # type: ignore
    MarkerStatus,
    PrefillConfig,
    ReplacementValuesFile,
)
from docx_prefill.scanner import (  # noqa: E402  # type: ignore
    MarkerStatistics,
    ScanError,
    find_docx_files,
    merge_markers_with_values,
    scan_folder,
    scan_folder_async,
)

P = "REPLACEME-"


@pytest.fixture
def template_folder(tmp_path: Path) -> Path:
    write_text_docx(tmp_path / "b_letter.docx", f"Dear {P}NAME,", f"Welcome to {P}CITY.")
    write_python_docx(tmp_path / "a_contract.docx", [f"Party: {P}NAME", f"Date: {P}DATE"])
    return tmp_path


# ============================================================
# find_docx_files
# ============================================================

class TestFindDocxFiles:

    def test_filters_and_sorts(self, tmp_path: Path):
        write_text_docx(tmp_path / "b.docx", "x")
        write_text_docx(tmp_path / "A.DOCX", "x")
        write_text_docx(tmp_path / "~$b.docx", "x")
        (tmp_path / "notes.txt").write_text("x")
        (tmp_path / "old.doc").write_bytes(b"x")
        (tmp_path / "sub.docx").mkdir()
        write_text_docx(tmp_path / "sub.docx" / "nested.docx", "x")

        listing = find_docx_files(tmp_path)
        assert [p.name for p in listing.files] == ["A.DOCX", "b.docx"]
        assert listing.skipped == []
        assert not listing.truncated
        assert listing.total_found == 2

    def test_truncates_above_document_limit(self, tmp_path: Path, capsys):
        for i in range(5):
            write_text_docx(tmp_path / f"doc{i}.docx", "x")
        listing = find_docx_files(tmp_path, PrefillConfig(max_scan_documents=3))
        assert [p.name for p in listing.files] == ["doc0.docx", "doc1.docx", "doc2.docx"]
        assert listing.truncated
        assert listing.total_found == 5
        assert "Too many documents found (5)" in capsys.readouterr().err

    def test_oversize_file_skipped(self, tmp_path: Path, capsys):
        write_text_docx(tmp_path / "small.docx", "x")
        (tmp_path / "big.docx").write_bytes(b"PK" + b"\0" * 200_000)
        listing = find_docx_files(tmp_path, PrefillConfig(max_document_size=100_000))
        assert [p.name for p in listing.files] == ["small.docx"]
        assert len(listing.skipped) == 1
        assert listing.skipped[0].error_type == 'file_too_large'
        assert listing.skipped[0].name == "big.docx"
        assert "Skipping big.docx" in capsys.readouterr().err

    def test_unreadable_folder(self, tmp_path: Path):
        with pytest.raises(ScanError) as exc_info:
            find_docx_files(tmp_path / "missing")
        assert exc_info.value.error_type == 'read_error'


# ============================================================
# scan_folder
# ============================================================

class TestScanFolder:

    def test_collects_markers_across_documents(self, template_folder: Path):
        result = scan_folder(template_folder)
        assert result.documents == ["a_contract.docx", "b_letter.docx"]
        assert [m.identifier for m in result.markers] == ["NAME", "DATE", "CITY"]
        name = result.markers[0]
        assert name.full_marker == f"{P}NAME"
        assert name.documents == ["a_contract.docx", "b_letter.docx"]
        assert all(m.status == MarkerStatus.NEW for m in result.markers)
        assert result.prefix == P
        assert result.timestamp.endswith("Z")
        assert result.errors == []

    def test_markers_at_paragraph_ends_stay_separate(self, tmp_path: Path):
        write_text_docx(tmp_path / "x.docx", f"{P}FIRST", f"{P}SECOND")
        result = scan_folder(tmp_path)
        assert [m.identifier for m in result.markers] == ["FIRST", "SECOND"]

    def test_custom_prefix(self, tmp_path: Path):
        write_text_docx(tmp_path / "x.docx", "Hello {{NAME}} and REPLACEME-OTHER")
        result = scan_folder(tmp_path, prefix="{{")
        assert [m.identifier for m in result.markers] == ["NAME"]
        assert result.markers[0].full_marker == "{{NAME"

    def test_prefix_defaults_to_config(self, tmp_path: Path):
        write_text_docx(tmp_path / "x.docx", "##A REPLACEME-B")
        result = scan_folder(tmp_path, config=PrefillConfig(default_prefix="##"))
        assert [m.identifier for m in result.markers] == ["A"]

    def test_corrupted_document_recorded_and_scan_continues(self, template_folder: Path, capsys):
        (template_folder / "broken.docx").write_bytes(b"this is not a zip archive")
        write_docx(template_folder / "no_body.docx", "<root/>")
        result = scan_folder(template_folder)

        assert "broken.docx" in result.documents
        by_name = {e.name: e.error_type for e in result.errors}
        assert by_name == {"broken.docx": "corrupted_file", "no_body.docx": "invalid_xml"}
        assert [m.identifier for m in result.markers] == ["NAME", "DATE", "CITY"]
        assert "Skipped broken.docx" in capsys.readouterr().err

    def test_unique_marker_cap(self, tmp_path: Path):
        write_text_docx(tmp_path / "x.docx", " ".join(f"{P}M{i}" for i in range(6)))
        result = scan_folder(tmp_path, config=PrefillConfig(max_unique_markers=4))
        assert len(result.markers) == 4
        assert result.markers_truncated
        assert result.total_unique_markers == 6

    def test_folder_not_found(self, tmp_path: Path):
        with pytest.raises(ScanError) as exc_info:
            scan_folder(tmp_path / "missing")
        assert exc_info.value.error_type == 'folder_not_found'

    def test_not_a_folder(self, tmp_path: Path):
        path = write_text_docx(tmp_path / "x.docx", "x")
        with pytest.raises(ScanError) as exc_info:
            scan_folder(path)
        assert exc_info.value.error_type == 'not_a_folder'

    def test_no_documents(self, tmp_path: Path):
        (tmp_path / "readme.txt").write_text("x")
        with pytest.raises(ScanError) as exc_info:
            scan_folder(tmp_path)
        assert exc_info.value.error_type == 'no_documents'

    def test_invalid_prefix(self, template_folder: Path):
        with pytest.raises(ScanError) as exc_info:
            scan_folder(template_folder, prefix="")
        assert exc_info.value.error_type == 'invalid_prefix'

    def test_to_dict(self, template_folder: Path):
        data = scan_folder(template_folder).to_dict()
        assert data["markers"][0]["fullMarker"] == f"{P}NAME"
        assert data["markers"][0]["status"] == "new"
        assert data["totalDocumentsFound"] == 2

    def test_async_wrapper(self, template_folder: Path):
        result = asyncio.run(scan_folder_async(template_folder))
        assert [m.identifier for m in result.markers] == ["NAME", "DATE", "CITY"]


# ============================================================
# merge_markers_with_values
# ============================================================

class TestMerge:

    def test_statuses(self, template_folder: Path):
        scan = scan_folder(template_folder)
        saved = ReplacementValuesFile(values={"NAME": "Jane", "DATE": "", "OLD": "gone"})

        merged = merge_markers_with_values(scan, saved)
        by_id = {m.identifier: m for m in merged}

        assert [m.identifier for m in merged] == ["NAME", "DATE", "CITY", "OLD"]
        assert by_id["NAME"].status == MarkerStatus.ACTIVE
        assert by_id["NAME"].value == "Jane"
        assert by_id["DATE"].status == MarkerStatus.ACTIVE
        assert by_id["DATE"].value == ""
        assert by_id["CITY"].status == MarkerStatus.NEW
        assert by_id["OLD"].status == MarkerStatus.REMOVED
        assert by_id["OLD"].value == "gone"
        assert by_id["OLD"].documents == []
        assert by_id["OLD"].full_marker == f"{P}OLD"

    def test_without_saved_values(self, template_folder: Path):
        scan = scan_folder(template_folder)
        merged = merge_markers_with_values(scan, None)
        assert all(m.status == MarkerStatus.NEW for m in merged)

    def test_scan_result_not_modified(self, template_folder: Path):
        scan = scan_folder(template_folder)
        merge_markers_with_values(scan, ReplacementValuesFile(values={"NAME": "Jane"}))
        assert scan.markers[0].value == ""
        assert scan.markers[0].status == MarkerStatus.NEW

    def test_statistics(self, template_folder: Path):
        scan = scan_folder(template_folder)
        merged = merge_markers_with_values(
            scan, ReplacementValuesFile(values={"NAME": "Jane", "DATE": "", "OLD": "x"})
        )
        stats = MarkerStatistics.from_markers(merged)
        assert (stats.total, stats.active, stats.new, stats.removed) == (4, 2, 1, 1)
        assert (stats.with_values, stats.without_values) == (2, 2)
