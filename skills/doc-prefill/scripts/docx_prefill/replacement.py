#!/usr/bin/env python3
"""
ABOUTME: Replaces prefix + identifier markers inside a document body XML string
ABOUTME: Handles markers contained in one <w:t> and markers fragmented across a run's <w:t> leaves
"""

import re
import sys
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from xml_utils import escape_xml_text, escape_xml_value

from .archive import DocxAccessError, read_document_xml, write_document_xml
from .common import DEFAULT_PREFIX
from .detection import (
    InvalidPrefixError,
    compile_identifier_pattern,
    is_valid_identifier,
    validate_prefix,
)


class ReplacementError(Exception):
    """Replacement failure. error_type classifies the cause."""

    def __init__(self, message: str, error_type: str = 'unknown',
                 file_path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.error_type = error_type
        self.file_path = file_path
        self.cause = cause


@dataclass
class XmlReplacement:
    """Outcome of one body rewrite"""
    xml: str
    replacements: int = 0
    consolidated_runs: int = 0
    skipped_identifiers: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.replacements > 0


# Tokens that matter for replacement. Order of alternatives matters:
# self-closing forms are tried before the open-tag forms.
_TOKEN_RE = re.compile(
    r'<w:t(?P<empty_attrs>\s[^>]*?)?\s*/>'
    r'|<w:t(?P<attrs>\s[^>]*)?>(?P<text>.*?)</w:t>'
    r'|<w:r(?:\s[^>]*)?/>'
    r'|(?P<run_open><w:r(?:\s[^>]*)?>)'
    r'|(?P<run_close></w:r>)',
    re.DOTALL
)


@dataclass
class _Leaf:
    """One <w:t> element located in the body string"""
    start: int
    end: int
    attrs: str
    content: str
    content_start: int
    self_closing: bool


# ============================================================
# Tokenizing
# ============================================================

def _collect_leaf_groups(xml: str) -> List[List[_Leaf]]:
    """
    Group <w:t> leaves by their innermost enclosing <w:r>.

    Leaves outside any run form single-leaf groups. Groups are returned in
    document order of their first leaf.
    """
    groups: List[List[_Leaf]] = []
    run_stack: List[int] = []
    run_groups: Dict[int, List[_Leaf]] = {}
    next_run_id = 0

    for m in _TOKEN_RE.finditer(xml):
        if m.group('run_open') is not None:
            run_stack.append(next_run_id)
            next_run_id += 1
            continue
        if m.group('run_close') is not None:
            if run_stack:
                run_stack.pop()
            continue
        if m.group(0).startswith('<w:r'):
            # Empty self-closing run
            continue

        if m.group('text') is not None:
            leaf = _Leaf(
                start=m.start(), end=m.end(),
                attrs=m.group('attrs') or '',
                content=m.group('text'),
                content_start=m.start('text'),
                self_closing=False,
            )
        else:
            leaf = _Leaf(
                start=m.start(), end=m.end(),
                attrs=(m.group('empty_attrs') or '').rstrip(),
                content='',
                content_start=m.end(),
                self_closing=True,
            )

        if not run_stack:
            groups.append([leaf])
            continue
        run_id = run_stack[-1]
        group = run_groups.get(run_id)
        if group is None:
            group = []
            run_groups[run_id] = group
            groups.append(group)
        group.append(leaf)

    return groups


def _needs_preserve(text: str) -> bool:
    return bool(text) and (text[0].isspace() or text[-1].isspace())


def _leaf_open_tag(attrs: str, text: str) -> str:
    if _needs_preserve(text) and 'xml:space=' not in attrs:
        attrs = attrs + ' xml:space="preserve"'
    return f'<w:t{attrs}>'


# ============================================================
# Replacement
# ============================================================

def _valid_values(values: Mapping[str, str]) -> Tuple[Dict[str, str], List[str]]:
    valid: Dict[str, str] = {}
    skipped: List[str] = []
    for identifier, value in values.items():
        if not is_valid_identifier(identifier):
            print(f"Warning: Skipping invalid marker identifier: \"{identifier}\"", file=sys.stderr)
            skipped.append(str(identifier))
            continue
        if not isinstance(value, str):
            print(f"Warning: Skipping marker \"{identifier}\": value is not a string", file=sys.stderr)
            skipped.append(identifier)
            continue
        valid[identifier] = value
    return valid, skipped


def replace_markers_in_xml_detailed(xml: str, values: Mapping[str, str],
                                    prefix: str = DEFAULT_PREFIX) -> XmlReplacement:
    """
    Replace markers in a body XML string.

    The text of a run's <w:t> leaves is matched as one string, so word
    boundaries and identifier endings are judged across leaf edges. If any
    occurrence crosses a leaf boundary the run is consolidated: the
    substitution runs on the joined text and the run keeps a single leaf
    carrying the first leaf's attributes. Otherwise each occurrence is
    replaced inside the leaf holding it and the leaf tags are left as they
    were.

    All identifiers are substituted in one pass, so an inserted value is
    never scanned for further markers. Markers without a value are left
    verbatim. Bytes outside the replaced text are not touched.

    Args:
        xml: Body XML (word/document.xml)
        values: Identifier (without prefix) -> replacement text
        prefix: Marker prefix

    Returns:
        XmlReplacement; xml is the input object itself when nothing matched

    Raises:
        InvalidPrefixError: If the prefix is invalid
    """
    validate_prefix(prefix)
    result = XmlReplacement(xml=xml)
    if not values:
        return result

    valid, result.skipped_identifiers = _valid_values(values)
    if not valid:
        return result

    # Leaf content is stored escaped, so the prefix is searched in escaped form
    pattern = compile_identifier_pattern(escape_xml_text(prefix), valid)
    escaped_values = {k: escape_xml_value(v) for k, v in valid.items()}

    def substitute(m):
        return escaped_values[m.group(1)]

    edits: List[Tuple[int, int, str]] = []
    for group in _collect_leaf_groups(xml):
        # Joined so that word boundaries and identifier endings see neighbouring leaves
        joined = ''.join(leaf.content for leaf in group)
        matches = list(pattern.finditer(joined))
        if not matches:
            continue

        offsets = []
        pos = 0
        for leaf in group:
            offsets.append(pos)
            pos += len(leaf.content)

        fragmented = any(m.start() < b < m.end() for m in matches for b in offsets[1:])
        if fragmented:
            new_text = pattern.sub(substitute, joined)
            first = group[0]
            edits.append((first.start, first.end,
                          _leaf_open_tag(first.attrs, new_text) + new_text + '</w:t>'))
            for leaf in group[1:]:
                edits.append((leaf.start, leaf.end, ''))
            result.consolidated_runs += 1
            result.replacements += len(matches)
            continue

        # Each occurrence lies inside one leaf; edit that leaf's content in place
        for m in matches:
            idx = bisect_right(offsets, m.start()) - 1
            shift = group[idx].content_start - offsets[idx]
            edits.append((shift + m.start(), shift + m.end(), escaped_values[m.group(1)]))
            result.replacements += 1

    if not edits:
        return result

    edits.sort(key=lambda e: e[0])
    parts = []
    cursor = 0
    for start, end, replacement in edits:
        parts.append(xml[cursor:start])
        parts.append(replacement)
        cursor = end
    parts.append(xml[cursor:])
    result.xml = ''.join(parts)
    return result


def replace_markers_in_xml(xml: str, values: Mapping[str, str],
                           prefix: str = DEFAULT_PREFIX) -> str:
    """Replace markers in a body XML string and return the new XML"""
    return replace_markers_in_xml_detailed(xml, values, prefix).xml


def replace_markers_in_file(file_path, values: Mapping[str, str],
                            prefix: str = DEFAULT_PREFIX) -> XmlReplacement:
    """
    Replace markers in a .docx file in place.

    The file is only rewritten when at least one marker was replaced.

    Raises:
        ReplacementError: Read, parse or write failure; error_type is taken
            from the underlying archive error
    """
    try:
        validate_prefix(prefix)
    except InvalidPrefixError as e:
        raise ReplacementError(str(e), error_type='invalid_prefix', file_path=str(file_path), cause=e)

    try:
        xml = read_document_xml(file_path)
        result = replace_markers_in_xml_detailed(xml, values, prefix)
        if result.changed:
            write_document_xml(file_path, result.xml)
    except DocxAccessError as e:
        raise ReplacementError(
            f"Failed to process {file_path}: {e}",
            error_type=e.error_type, file_path=str(file_path), cause=e
        )
    return result
