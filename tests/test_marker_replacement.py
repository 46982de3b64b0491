#!/usr/bin/env python3
"""
Tests for docx_prefill.replacement - contained and fragmented marker replacement in body XML
"""

from pathlib import Path

import pytest
from lxml import etree

from _prefill_helpers import (
    W_NS,
    document_xml,
    docx_text,
    paragraph,
    run,
    t,
    text_paragraph,
    write_python_docx,
    write_text_docx,
)

from docx_prefill.detection import InvalidPrefixError  # noqa: E402  # type: ignore
from docx_prefill.replacement import (  # noqa: E402  # type: ignore
    ReplacementError,
    replace_markers_in_file,
    replace_markers_in_xml,
    replace_markers_in_xml_detailed,
)

P = "REPLACEME-"


def leaf_texts(xml: str):
    root = etree.fromstring(xml.encode('utf-8'))
    return [el.text or '' for el in root.iter(f'{{{W_NS}}}t')]


def body_text(xml: str) -> str:
    return ''.join(leaf_texts(xml))


# ============================================================
# Contained markers
# ============================================================

class TestContainedMarkers:

    def test_replaces_inside_leaf(self):
        xml = document_xml(text_paragraph(f"Hello {P}NAME!"))
        result = replace_markers_in_xml_detailed(xml, {"NAME": "Jane"}, P)
        assert "<w:t>Hello Jane!</w:t>" in result.xml
        assert result.replacements == 1
        assert result.consolidated_runs == 0

    def test_only_marker_text_changes(self):
        xml = document_xml(
            paragraph(run(t(f"A {P}NAME B"), rpr='<w:rPr><w:b/></w:rPr>')),
            text_paragraph("untouched"),
        )
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, P)
        assert result == xml.replace(f"{P}NAME", "Jane")

    def test_leaf_attributes_untouched(self):
        xml = document_xml(paragraph(run(f'<w:t xml:space="preserve"> {P}NAME </w:t>')))
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, P)
        assert '<w:t xml:space="preserve"> Jane </w:t>' in result

    def test_empty_value_removes_marker_keeps_leaf(self):
        xml = document_xml(paragraph(run(t(f"{P}NAME"))))
        result = replace_markers_in_xml(xml, {"NAME": ""}, P)
        assert "<w:t></w:t>" in result
        assert P not in result

    def test_value_is_escaped(self):
        value = 'Smith & Sons <Ltd> "q" \'a\''
        xml = document_xml(text_paragraph(f"To: {P}NAME"))
        result = replace_markers_in_xml(xml, {"NAME": value}, P)
        assert "Smith &amp; Sons &lt;Ltd&gt; &quot;q&quot; &apos;a&apos;" in result
        assert body_text(result) == f"To: {value}"

    def test_control_characters_dropped_from_value(self):
        xml = document_xml(text_paragraph(f"{P}NAME"))
        result = replace_markers_in_xml(xml, {"NAME": "Ja\x00ne\x0B"}, P)
        assert body_text(result) == "Jane"

    def test_all_occurrences_replaced(self):
        xml = document_xml(
            paragraph(run(t(f"{P}NAME and {P}NAME")), run(t(f" {P}CITY"))),
            text_paragraph(f"{P}NAME"),
        )
        result = replace_markers_in_xml_detailed(xml, {"NAME": "Jane", "CITY": "Oslo"}, P)
        assert body_text(result.xml) == "Jane and Jane OsloJane"
        assert result.replacements == 4

    def test_longer_identifier_not_matched_by_shorter(self):
        xml = document_xml(text_paragraph(f"{P}NAME {P}NAME2"))
        result = replace_markers_in_xml(xml, {"NAME": "x"}, P)
        assert body_text(result) == f"x {P}NAME2"

    def test_tab_between_leaves_kept(self):
        xml = document_xml(paragraph(f'<w:r><w:t>A</w:t><w:tab/><w:t>{P}NAME</w:t></w:r>'))
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, P)
        assert '<w:t>A</w:t><w:tab/><w:t>Jane</w:t>' in result

    def test_prefix_with_markup_characters(self):
        xml = document_xml(text_paragraph("Dear <<NAME>>"))
        assert "&lt;&lt;NAME&gt;&gt;" in xml
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, "<<")
        assert body_text(result) == "Dear Jane>>"


# ============================================================
# Fragmented markers
# ============================================================

class TestFragmentedMarkers:

    def test_marker_split_over_three_leaves_collapses_run(self):
        fragmented = run(t("REPLACE"), t("ME-"), t("NAME"), rpr='<w:rPr><w:b/><w:i/></w:rPr>')
        xml = document_xml(paragraph(fragmented))
        result = replace_markers_in_xml_detailed(xml, {"NAME": "Jane"}, P)

        assert "Jane" in result.xml
        assert f"{P}NAME" not in body_text(result.xml)
        assert result.consolidated_runs == 1
        assert '<w:r><w:rPr><w:b/><w:i/></w:rPr><w:t>Jane</w:t></w:r>' in result.xml
        assert leaf_texts(result.xml) == ["Jane"]

    def test_identifier_with_hyphen_never_matches(self, capsys):
        xml = document_xml(paragraph(run(t("REPLACE"), t("ME-"), t("NAME"))))
        result = replace_markers_in_xml_detailed(xml, {"ME-NAME": "Jane"}, "REPLACE")
        assert result.xml is xml
        assert result.skipped_identifiers == ["ME-NAME"]
        assert "invalid marker identifier" in capsys.readouterr().err

    def test_first_leaf_attributes_survive(self):
        xml = document_xml(paragraph(run(
            '<w:t xml:space="preserve">Dear REPLACE</w:t>', t("ME-NAME,"))))
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, P)
        assert '<w:t xml:space="preserve">Dear Jane,</w:t>' in result
        assert len(leaf_texts(result)) == 1

    def test_preserve_added_when_text_has_edge_whitespace(self):
        xml = document_xml(paragraph(run(t("Dear REPLACE"), t("ME-NAME, hi "))))
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, P)
        assert '<w:t xml:space="preserve">Dear Jane, hi </w:t>' in result

    def test_self_closing_leaves(self):
        xml = document_xml(paragraph('<w:r><w:t/><w:t>REPLACEME-</w:t><w:t/><w:t>NAME</w:t></w:r>'))
        result = replace_markers_in_xml(xml, {"NAME": "Jane"}, P)
        assert '<w:r><w:t>Jane</w:t></w:r>' in result

    def test_consolidated_run_replaces_contained_markers_too(self):
        xml = document_xml(paragraph(run(t(f"{P}A x REPLA"), t("CEME-B"))))
        result = replace_markers_in_xml_detailed(xml, {"A": "1", "B": "2"}, P)
        assert leaf_texts(result.xml) == ["1 x 2"]
        assert result.replacements == 2
        assert result.consolidated_runs == 1

    def test_run_without_crossing_match_keeps_its_leaves(self):
        xml = document_xml(paragraph(run(t(f"{P}A"), t(" rest"))))
        result = replace_markers_in_xml_detailed(xml, {"A": "1"}, P)
        assert leaf_texts(result.xml) == ["1", " rest"]
        assert result.consolidated_runs == 0

    def test_identifier_continuing_into_next_leaf_is_not_a_match(self):
        xml = document_xml(paragraph(run(t(f"{P}NAME"), t("2"))))
        result = replace_markers_in_xml_detailed(xml, {"NAME": "x"}, P)
        assert result.xml is xml
        assert result.replacements == 0

    def test_shorter_identifier_not_replaced_inside_split_marker(self):
        xml = document_xml(paragraph(run(t(f"{P}NA"), t("ME"))))
        result = replace_markers_in_xml_detailed(xml, {"NA": "Bob"}, P)
        assert result.xml is xml
        assert leaf_texts(result.xml) == [f"{P}NA", "ME"]

    def test_word_character_in_previous_leaf_blocks_match(self):
        xml = document_xml(paragraph(run(t("ID"), t(f"{P}NAME"))))
        assert replace_markers_in_xml(xml, {"NAME": "Jane"}, P) is xml

    def test_contained_marker_after_separator_leaf_edited_in_place(self):
        xml = document_xml(paragraph(run(t("Hello "), t(f"{P}NAME"), t("!"))))
        result = replace_markers_in_xml_detailed(xml, {"NAME": "Jane"}, P)
        assert leaf_texts(result.xml) == ["Hello ", "Jane", "!"]
        assert result.replacements == 1
        assert result.consolidated_runs == 0

    def test_markers_split_across_runs_are_not_joined(self):
        xml = document_xml(paragraph(run(t("REPLACE")), run(t("ME-NAME"))))
        assert replace_markers_in_xml(xml, {"NAME": "Jane"}, P) is xml

    def test_nested_run_grouped_separately(self):
        inner = run(t("REPLACEME-"), t("X"))
        outer = (
            '<w:r><w:t>keep</w:t><w:pict><w:txbxContent>'
            f'{paragraph(inner)}'
            '</w:txbxContent></w:pict></w:r>'
        )
        xml = document_xml(paragraph(outer))
        result = replace_markers_in_xml_detailed(xml, {"X": "inner"}, P)
        assert leaf_texts(result.xml) == ["keep", "inner"]
        assert result.consolidated_runs == 1


# ============================================================
# Pass behavior and no-op guarantees
# ============================================================

class TestReplacementGuarantees:

    def test_empty_values_returns_input(self):
        xml = document_xml(text_paragraph(f"{P}NAME"))
        assert replace_markers_in_xml(xml, {}, P) is xml

    def test_no_match_returns_input(self):
        xml = document_xml(text_paragraph(f"{P}NAME"))
        result = replace_markers_in_xml_detailed(xml, {"OTHER": "x"}, P)
        assert result.xml is xml
        assert not result.changed

    def test_inserted_values_not_rescanned(self):
        xml = document_xml(text_paragraph(f"{P}A {P}B"))
        result = replace_markers_in_xml(xml, {"A": f"{P}B", "B": "bee"}, P)
        assert body_text(result) == f"{P}B bee"

    def test_second_pass_is_a_no_op(self):
        xml = document_xml(
            text_paragraph(f"Hello {P}NAME"),
            paragraph(run(t("REPLACE"), t("ME-CITY"))),
        )
        values = {"NAME": "Jane", "CITY": "Oslo"}
        once = replace_markers_in_xml(xml, values, P)
        twice = replace_markers_in_xml_detailed(once, values, P)
        assert twice.xml == once
        assert twice.replacements == 0

    def test_result_is_well_formed(self):
        xml = document_xml(paragraph(run(t("REPLACE"), t("ME-NAME"))), text_paragraph(f"{P}CITY"))
        result = replace_markers_in_xml(xml, {"NAME": "<b>&", "CITY": "'\""}, P)
        assert body_text(result) == "<b>&'\""

    def test_non_string_value_skipped(self):
        xml = document_xml(text_paragraph(f"{P}N"))
        result = replace_markers_in_xml_detailed(xml, {"N": 5}, P)
        assert result.xml is xml
        assert result.skipped_identifiers == ["N"]

    def test_invalid_prefix_raises(self):
        with pytest.raises(InvalidPrefixError):
            replace_markers_in_xml("<w:document/>", {"A": "x"}, "")


# ============================================================
# Files
# ============================================================

class TestReplaceInFile:

    def test_replaces_in_real_document(self, tmp_path: Path):
        path = write_python_docx(tmp_path / "letter.docx", [f"Dear {P}NAME,", f"City: {P}CITY"])
        result = replace_markers_in_file(path, {"NAME": "Jane", "CITY": "Oslo"}, P)
        assert result.replacements == 2
        assert docx_text(path) == "Dear Jane,\nCity: Oslo"

    def test_unchanged_file_not_rewritten(self, tmp_path: Path):
        path = write_text_docx(tmp_path / "plain.docx", "no markers here")
        before = path.read_bytes()
        result = replace_markers_in_file(path, {"NAME": "Jane"}, P)
        assert not result.changed
        assert path.read_bytes() == before

    def test_garbage_file_classified(self, tmp_path: Path):
        path = tmp_path / "garbage.docx"
        path.write_bytes(b"definitely not a zip archive")
        with pytest.raises(ReplacementError) as exc_info:
            replace_markers_in_file(path, {"NAME": "Jane"}, P)
        assert exc_info.value.error_type == 'corrupted_file'

    def test_missing_file_classified(self, tmp_path: Path):
        with pytest.raises(ReplacementError) as exc_info:
            replace_markers_in_file(tmp_path / "missing.docx", {"NAME": "Jane"}, P)
        assert exc_info.value.error_type == 'read_error'

    def test_invalid_prefix_wrapped(self, tmp_path: Path):
        path = write_text_docx(tmp_path / "a.docx", "x")
        with pytest.raises(ReplacementError) as exc_info:
            replace_markers_in_file(path, {"A": "x"}, "")
        assert exc_info.value.error_type == 'invalid_prefix'
