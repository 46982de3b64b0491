#!/usr/bin/env python3
"""
ABOUTME: Scans a folder of .docx templates and collects their markers
ABOUTME: Merges scanned markers with saved values into active / new / removed
"""

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .archive import DocxAccessError, parse_docx_file
from .common import (
    DOCUMENT_EXTENSION,
    FOLDER_NOT_FOUND_ERROR,
    NO_DOCUMENTS_FOUND_ERROR,
    NOT_A_FOLDER_ERROR,
    WORD_LOCK_FILE_PREFIX,
    DocumentError,
    Marker,
    MarkerStatus,
    PrefillConfig,
    ReplacementValuesFile,
    ScanResult,
    utc_timestamp,
)
from .detection import (
    InvalidPrefixError,
    MarkerDetectionError,
    deduplicate_markers,
    detect_markers_detailed,
    validate_prefix,
)


class ScanError(Exception):
    """Folder-level scan failure"""

    def __init__(self, message: str, error_type: str = 'unknown', folder: Optional[str] = None):
        super().__init__(message)
        self.error_type = error_type
        self.folder = folder


@dataclass
class DocxFileListing:
    """Outcome of enumerating a folder"""
    files: List[Path] = field(default_factory=list)
    skipped: List[DocumentError] = field(default_factory=list)
    truncated: bool = False
    total_found: int = 0


@dataclass
class MarkerStatistics:
    total: int = 0
    active: int = 0
    new: int = 0
    removed: int = 0
    with_values: int = 0
    without_values: int = 0

    @classmethod
    def from_markers(cls, markers: List[Marker]) -> 'MarkerStatistics':
        stats = cls(total=len(markers))
        for marker in markers:
            if marker.status == MarkerStatus.ACTIVE:
                stats.active += 1
            elif marker.status == MarkerStatus.NEW:
                stats.new += 1
            elif marker.status == MarkerStatus.REMOVED:
                stats.removed += 1
            if marker.value:
                stats.with_values += 1
            else:
                stats.without_values += 1
        return stats


# ============================================================
# Folder enumeration
# ============================================================

def find_docx_files(folder, config: Optional[PrefillConfig] = None) -> DocxFileListing:
    """
    List the .docx files directly inside a folder, sorted by name.

    The extension check is case-insensitive. Subfolders, Word lock files
    (~$name.docx) and non-regular files are ignored. Files larger than
    config.max_document_size are skipped with a warning; beyond
    config.max_scan_documents the listing is truncated with a warning.

    Raises:
        ScanError: The folder cannot be listed
    """
    config = config or PrefillConfig()
    listing = DocxFileListing()
    try:
        entries = sorted(Path(folder).iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ScanError(f"Failed to read folder: {e}", error_type='read_error', folder=str(folder))

    for entry in entries:
        if entry.suffix.lower() != DOCUMENT_EXTENSION:
            continue
        if entry.name.startswith(WORD_LOCK_FILE_PREFIX):
            continue
        try:
            if not entry.is_file():
                continue
            size = entry.stat().st_size
        except OSError as e:
            print(f"Warning: Skipping {entry.name}: {e}", file=sys.stderr)
            listing.skipped.append(DocumentError(str(entry), str(e), 'read_error'))
            continue
        if size > config.max_document_size:
            reason = f"File size exceeds maximum limit of {config.max_document_size} bytes"
            print(f"Warning: Skipping {entry.name}: {reason}", file=sys.stderr)
            listing.skipped.append(DocumentError(str(entry), reason, 'file_too_large'))
            continue
        listing.files.append(entry)

    listing.total_found = len(listing.files)
    if listing.total_found > config.max_scan_documents:
        print(
            f"Warning: Too many documents found ({listing.total_found}). "
            f"Only the first {config.max_scan_documents} will be processed.",
            file=sys.stderr
        )
        listing.files = listing.files[:config.max_scan_documents]
        listing.truncated = True
    return listing


def _check_folder(folder) -> Path:
    path = Path(folder)
    if not path.exists():
        raise ScanError(FOLDER_NOT_FOUND_ERROR, error_type='folder_not_found', folder=str(folder))
    if not path.is_dir():
        raise ScanError(NOT_A_FOLDER_ERROR, error_type='not_a_folder', folder=str(folder))
    return path


# ============================================================
# Scan
# ============================================================

def scan_folder(folder, prefix: Optional[str] = None,
                config: Optional[PrefillConfig] = None) -> ScanResult:
    """
    Scan a folder's .docx files for markers.

    Documents that cannot be read are recorded in ScanResult.errors and the
    scan continues with the rest.

    Args:
        folder: Folder with .docx templates
        prefix: Marker prefix (default: config.default_prefix)
        config: Limits; defaults to PrefillConfig()

    Returns:
        ScanResult with markers in first-seen order, all with status "new"

    Raises:
        ScanError: Folder missing, not a folder, without documents, or invalid prefix
    """
    config = config or PrefillConfig()
    prefix = prefix if prefix is not None else config.default_prefix
    try:
        validate_prefix(prefix)
    except InvalidPrefixError as e:
        raise ScanError(str(e), error_type='invalid_prefix', folder=str(folder))

    path = _check_folder(folder)
    listing = find_docx_files(path, config)
    if not listing.files:
        raise ScanError(NO_DOCUMENTS_FOUND_ERROR, error_type='no_documents', folder=str(folder))

    document_markers: Dict[str, List[str]] = {}
    errors: List[DocumentError] = []
    for file_path in listing.files:
        try:
            text = parse_docx_file(file_path)
            detection = detect_markers_detailed(text, prefix, config.max_markers_per_document)
        except DocxAccessError as e:
            print(f"Skipped {file_path.name}: {e}", file=sys.stderr)
            errors.append(DocumentError(str(file_path), str(e), e.error_type))
            continue
        except MarkerDetectionError as e:
            print(f"Skipped {file_path.name}: {e}", file=sys.stderr)
            errors.append(DocumentError(str(file_path), str(e), 'detection_error'))
            continue
        document_markers[str(file_path)] = detection.identifiers

    dedup = deduplicate_markers(document_markers, prefix, config.max_unique_markers)

    return ScanResult(
        folder=str(folder),
        documents=[p.name for p in listing.files],
        markers=dedup.markers,
        prefix=prefix,
        timestamp=utc_timestamp(),
        errors=errors,
        skipped_documents=listing.skipped,
        documents_truncated=listing.truncated,
        total_documents_found=listing.total_found,
        markers_truncated=dedup.truncated,
        total_unique_markers=dedup.total_unique,
    )


async def scan_folder_async(folder, prefix: Optional[str] = None,
                            config: Optional[PrefillConfig] = None) -> ScanResult:
    """Run scan_folder in a worker thread"""
    return await asyncio.to_thread(scan_folder, folder, prefix, config)


# ============================================================
# Merge with saved values
# ============================================================

def merge_markers_with_values(scan_result: ScanResult,
                              saved: Optional[ReplacementValuesFile]) -> List[Marker]:
    """
    Combine scanned markers with saved values.

    A scanned identifier with a saved entry (even an empty string) is
    active and takes the saved value; a scanned identifier without one is
    new; a saved identifier absent from the scan is removed. Scanned markers
    come first in scan order, removed ones follow in save-file order.
    """
    saved_values = saved.values if saved is not None else {}
    merged = []
    scanned = set()
    for marker in scan_result.markers:
        scanned.add(marker.identifier)
        if marker.identifier in saved_values:
            status = MarkerStatus.ACTIVE
            value = saved_values[marker.identifier]
        else:
            status = MarkerStatus.NEW
            value = ''
        merged.append(Marker(
            identifier=marker.identifier,
            full_marker=marker.full_marker,
            value=value,
            status=status,
            documents=list(marker.documents),
        ))

    for identifier, value in saved_values.items():
        if identifier in scanned:
            continue
        merged.append(Marker(
            identifier=identifier,
            full_marker=f"{scan_result.prefix}{identifier}",
            value=value,
            status=MarkerStatus.REMOVED,
            documents=[],
        ))
    return merged
