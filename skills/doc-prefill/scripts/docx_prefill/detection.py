#!/usr/bin/env python3
"""
ABOUTME: Detects prefix + identifier markers in extracted document text
ABOUTME: Validates prefixes and identifiers, deduplicates markers across documents
"""

import os
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence

from .common import (
    IDENTIFIER_PATTERN,
    MAX_MARKER_NAME_LENGTH,
    MAX_MARKERS_PER_DOCUMENT,
    MAX_PREFIX_LENGTH,
    MAX_UNIQUE_MARKERS,
    MIN_PREFIX_LENGTH,
    Marker,
    MarkerStatus,
)

IDENTIFIER_CHARS = 'A-Za-z0-9_'


class MarkerDetectionError(ValueError):
    """Invalid input to marker detection"""


class InvalidPrefixError(MarkerDetectionError):
    """Prefix is not a string, empty, or outside the length bounds"""


@dataclass
class MarkerMatch:
    identifier: str
    full_marker: str
    start: int
    end: int


@dataclass
class MarkerDetection:
    """Detection result for one text, including soft-cap information"""
    identifiers: List[str] = field(default_factory=list)
    match_count: int = 0
    truncated: bool = False
    invalid_identifiers: List[str] = field(default_factory=list)


@dataclass
class DeduplicationResult:
    markers: List[Marker]
    truncated: bool = False
    total_unique: int = 0


# ============================================================
# Validation
# ============================================================

def validate_prefix(prefix: str) -> None:
    """
    Validate a marker prefix.

    Raises:
        InvalidPrefixError: If the prefix is not a string, empty, or too long
    """
    if not isinstance(prefix, str):
        raise InvalidPrefixError('Prefix must be a string')
    if len(prefix) == 0:
        raise InvalidPrefixError('Prefix cannot be empty')
    if len(prefix) < MIN_PREFIX_LENGTH:
        raise InvalidPrefixError(f'Prefix must be at least {MIN_PREFIX_LENGTH} character(s) long')
    if len(prefix) > MAX_PREFIX_LENGTH:
        raise InvalidPrefixError(f'Prefix cannot exceed {MAX_PREFIX_LENGTH} characters')


def is_valid_prefix(prefix: str) -> bool:
    try:
        validate_prefix(prefix)
    except InvalidPrefixError:
        return False
    return True


def is_valid_identifier(identifier: str) -> bool:
    """Identifier: 1..MAX_MARKER_NAME_LENGTH characters of [A-Za-z0-9_]"""
    if not isinstance(identifier, str):
        return False
    if not identifier or len(identifier) > MAX_MARKER_NAME_LENGTH:
        return False
    return IDENTIFIER_PATTERN.fullmatch(identifier) is not None


def _validate_max_markers(max_markers: int) -> None:
    if isinstance(max_markers, bool) or not isinstance(max_markers, int) or max_markers <= 0:
        raise MarkerDetectionError('max_markers must be a positive integer')


# ============================================================
# Patterns
# ============================================================

def escape_regex_special_chars(text: str) -> str:
    """Escape every regex metacharacter in text"""
    return re.escape(text)


def leading_boundary(prefix: str) -> str:
    """
    Word boundary placed before the prefix.

    Only a prefix that starts with a word character gets \\b: for a prefix
    such as "{{" a \\b would demand a word character right before it.
    """
    if prefix and re.match(r'\w', prefix[0]):
        return r'\b'
    return ''


def build_marker_pattern(prefix: str) -> re.Pattern:
    """
    Compile the detection pattern for a prefix.

    The identifier capture is maximal: the negative lookahead stops it from
    ending one character short of a longer identifier-character run.

    Raises:
        InvalidPrefixError: If the prefix is invalid
    """
    validate_prefix(prefix)
    pattern = (
        leading_boundary(prefix)
        + escape_regex_special_chars(prefix)
        + f'([{IDENTIFIER_CHARS}]+)(?![{IDENTIFIER_CHARS}])'
    )
    return re.compile(pattern)


def build_identifier_pattern(prefix: str, identifiers: Iterable[str]) -> re.Pattern:
    """
    Compile a pattern matching prefix followed by one of the given identifiers.

    Longer identifiers are tried first; together with the trailing lookahead,
    NAME never matches inside NAME2.
    """
    validate_prefix(prefix)
    return compile_identifier_pattern(prefix, identifiers)


def compile_identifier_pattern(literal: str, identifiers: Iterable[str]) -> re.Pattern:
    """Same as build_identifier_pattern for a literal that is not length-checked (e.g. an escaped prefix)"""
    ordered = sorted(set(identifiers), key=lambda x: (-len(x), x))
    alternation = '|'.join(re.escape(i) for i in ordered)
    return re.compile(
        leading_boundary(literal)
        + escape_regex_special_chars(literal)
        + f'({alternation})(?![{IDENTIFIER_CHARS}])'
    )


# ============================================================
# Detection
# ============================================================

def detect_markers_detailed(text: str, prefix: str,
                            max_markers: int = MAX_MARKERS_PER_DOCUMENT) -> MarkerDetection:
    """
    Find all distinct marker identifiers in text.

    Matches beyond max_markers are dropped with a warning; detection never
    fails because a text holds many markers.

    Args:
        text: Normalized document text
        prefix: Marker prefix
        max_markers: Maximum number of matches to consider

    Returns:
        MarkerDetection with identifiers in first-seen order

    Raises:
        MarkerDetectionError: Invalid text type, prefix or max_markers
    """
    if not isinstance(text, str):
        raise MarkerDetectionError('Text must be a string')
    validate_prefix(prefix)
    _validate_max_markers(max_markers)

    result = MarkerDetection()
    if not text:
        return result

    seen: Dict[str, None] = {}
    for match in build_marker_pattern(prefix).finditer(text):
        if result.match_count >= max_markers:
            result.truncated = True
            print(
                f"Warning: Maximum marker limit ({max_markers}) reached. Some markers may not be detected.",
                file=sys.stderr
            )
            break
        identifier = match.group(1)
        if is_valid_identifier(identifier):
            seen.setdefault(identifier, None)
        else:
            result.invalid_identifiers.append(identifier)
            print(f"Warning: Invalid marker identifier detected: \"{identifier[:40]}\". Skipping.",
                  file=sys.stderr)
        result.match_count += 1

    result.identifiers = list(seen)
    return result


def detect_markers(text: str, prefix: str,
                   max_markers: int = MAX_MARKERS_PER_DOCUMENT) -> List[str]:
    """Distinct valid marker identifiers (without prefix) found in text"""
    return detect_markers_detailed(text, prefix, max_markers).identifiers


def detect_markers_with_positions(text: str, prefix: str,
                                  max_markers: int = MAX_MARKERS_PER_DOCUMENT) -> List[MarkerMatch]:
    """Every valid marker occurrence with its offsets in text"""
    if not isinstance(text, str):
        raise MarkerDetectionError('Text must be a string')
    validate_prefix(prefix)
    _validate_max_markers(max_markers)

    matches = []
    count = 0
    for match in build_marker_pattern(prefix).finditer(text):
        if count >= max_markers:
            print(
                f"Warning: Maximum marker limit ({max_markers}) reached. Some markers may not be detected.",
                file=sys.stderr
            )
            break
        identifier = match.group(1)
        if is_valid_identifier(identifier):
            matches.append(MarkerMatch(identifier, match.group(0), match.start(), match.end()))
        count += 1
    return matches


def count_marker_occurrences(text: str, prefix: str, identifier: str) -> int:
    """
    Count occurrences of one marker in text.

    Raises:
        MarkerDetectionError: Invalid text, prefix or identifier
    """
    if not isinstance(text, str):
        raise MarkerDetectionError('Text must be a string')
    validate_prefix(prefix)
    if not is_valid_identifier(identifier):
        raise MarkerDetectionError(f'Invalid marker identifier: "{identifier}"')
    return sum(1 for _ in build_identifier_pattern(prefix, [identifier]).finditer(text))


def replace_markers_in_text(text: str, prefix: str, replacements: Mapping[str, str]) -> str:
    """
    Replace markers in plain text.

    Invalid identifiers are skipped with a warning. All identifiers are
    substituted in a single pass, so inserted values are not re-scanned.
    """
    if not isinstance(text, str):
        raise MarkerDetectionError('Text must be a string')
    validate_prefix(prefix)
    if not isinstance(replacements, Mapping):
        raise MarkerDetectionError('Replacements must be a mapping')

    valid = {}
    for identifier, value in replacements.items():
        if not is_valid_identifier(identifier):
            print(f"Warning: Skipping invalid marker identifier: \"{identifier}\"", file=sys.stderr)
            continue
        valid[identifier] = value
    if not valid:
        return text

    pattern = build_identifier_pattern(prefix, valid)
    return pattern.sub(lambda m: valid[m.group(1)], text)


def detect_markers_from_multiple_texts(texts: Sequence[str], prefix: str,
                                       max_markers: int = MAX_MARKERS_PER_DOCUMENT) -> List[str]:
    """Distinct identifiers across several texts (non-string entries are skipped)"""
    if isinstance(texts, str) or not isinstance(texts, Sequence):
        raise MarkerDetectionError('texts must be a sequence of strings')
    all_markers: Dict[str, None] = {}
    for text in texts:
        if not isinstance(text, str):
            print("Warning: Skipping non-string text in detect_markers_from_multiple_texts",
                  file=sys.stderr)
            continue
        for identifier in detect_markers(text, prefix, max_markers):
            all_markers.setdefault(identifier, None)
    return list(all_markers)


# ============================================================
# Deduplication
# ============================================================

def deduplicate_markers(document_markers: Mapping[str, Sequence[str]], prefix: str,
                        max_unique: int = MAX_UNIQUE_MARKERS) -> DeduplicationResult:
    """
    Merge per-document identifier lists into one Marker per identifier.

    Args:
        document_markers: Document path (or name) -> identifiers, in scan order
        prefix: Marker prefix used for the scan
        max_unique: Soft cap on distinct markers; excess is truncated with a warning

    Returns:
        DeduplicationResult; markers keep first-seen order
    """
    marker_map: Dict[str, Marker] = {}
    for doc_path, identifiers in document_markers.items():
        doc_name = os.path.basename(doc_path)
        for identifier in identifiers:
            marker = marker_map.get(identifier)
            if marker is None:
                marker_map[identifier] = Marker(
                    identifier=identifier,
                    full_marker=f"{prefix}{identifier}",
                    value='',
                    status=MarkerStatus.NEW,
                    documents=[doc_name],
                )
            elif doc_name not in marker.documents:
                marker.documents.append(doc_name)

    markers = list(marker_map.values())
    total = len(markers)
    if total > max_unique:
        print(
            f"Warning: Too many unique markers found ({total}). Maximum allowed is {max_unique}; "
            f"keeping the first {max_unique}.",
            file=sys.stderr
        )
        return DeduplicationResult(markers[:max_unique], truncated=True, total_unique=total)
    return DeduplicationResult(markers, truncated=False, total_unique=total)
