#!/usr/bin/env python3
"""
ABOUTME: Shared constants, data classes and configuration for the marker engine
ABOUTME: Used by scanning, replacement and the replacement value store
"""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


# ============================================================
# Constants
# ============================================================

NS = {
    'w': 'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
}

# Package layout
DOCUMENT_XML_PATH = 'word/document.xml'
STYLES_XML_PATH = 'word/styles.xml'
NUMBERING_XML_PATH = 'word/numbering.xml'
CONTENT_TYPES_PATH = '[Content_Types].xml'
DOCUMENT_EXTENSION = '.docx'
MIN_DOCX_SIZE = 4                 # Bytes; anything smaller cannot be a zip archive
ZIP_SIGNATURE = b'PK'
WORD_LOCK_FILE_PREFIX = '~$'      # Owner files Word creates next to open documents

# Markers
DEFAULT_PREFIX = 'REPLACEME-'
MIN_PREFIX_LENGTH = 1
MAX_PREFIX_LENGTH = 50
MAX_MARKER_NAME_LENGTH = 100
IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')

# Scan limits (soft caps: truncate with a warning)
MAX_SCAN_DOCUMENTS = 1000
MAX_DOCUMENT_SIZE = 100 * 1024 * 1024
MAX_MARKERS_PER_DOCUMENT = 1000
MAX_UNIQUE_MARKERS = 500

# Save file
SAVE_FILE_NAME = '.replacement-values.json'
SAVE_FILE_BACKUP_EXTENSION = '.bak'
SAVE_FILE_TEMP_EXTENSION = '.tmp'
SAVE_FILE_VERSION = '1.0'
MAX_SAVE_FILE_BACKUPS = 5
MAX_REPLACEMENT_VALUE_LENGTH = 10000

# Batch output
DEFAULT_OUTPUT_SUBFOLDER = 'output'

# User-facing messages
FOLDER_NOT_FOUND_ERROR = 'The specified folder could not be found'
NOT_A_FOLDER_ERROR = 'The specified path is not a folder'
NO_DOCUMENTS_FOUND_ERROR = 'No .docx files found in the selected folder'


# ============================================================
# Enums
# ============================================================

class MarkerStatus(str, Enum):
    """Marker status derived from the current scan and the saved values"""
    ACTIVE = 'active'      # In scan, saved value exists
    NEW = 'new'            # In scan, no saved value yet
    REMOVED = 'removed'    # Saved value exists, not in scan


class BatchPhase(str, Enum):
    COPYING = 'copying'
    PROCESSING = 'processing'
    COMPLETE = 'complete'


# ============================================================
# Data Classes
# ============================================================

@dataclass
class Marker:
    """Replacement marker detected in (or remembered for) a folder"""
    identifier: str
    full_marker: str
    value: str = ''
    status: MarkerStatus = MarkerStatus.NEW
    documents: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'identifier': self.identifier,
            'fullMarker': self.full_marker,
            'value': self.value,
            'status': self.status.value,
            'documents': list(self.documents),
        }


@dataclass
class DocumentError:
    """A document that was skipped, with the reason"""
    path: str
    error: str
    error_type: str = 'unknown'

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


@dataclass
class ScanResult:
    """Result of scanning one folder. Rebuilt on every scan, never persisted."""
    folder: str
    documents: List[str]
    markers: List[Marker]
    prefix: str
    timestamp: str
    errors: List[DocumentError] = field(default_factory=list)
    skipped_documents: List[DocumentError] = field(default_factory=list)
    documents_truncated: bool = False
    total_documents_found: int = 0
    markers_truncated: bool = False
    total_unique_markers: int = 0

    def to_dict(self) -> dict:
        return {
            'folder': self.folder,
            'documents': list(self.documents),
            'markers': [m.to_dict() for m in self.markers],
            'prefix': self.prefix,
            'timestamp': self.timestamp,
            'errors': [{'path': e.path, 'error': e.error, 'errorType': e.error_type}
                       for e in self.errors],
            'skippedDocuments': [{'path': e.path, 'error': e.error, 'errorType': e.error_type}
                                 for e in self.skipped_documents],
            'documentsTruncated': self.documents_truncated,
            'totalDocumentsFound': self.total_documents_found,
            'markersTruncated': self.markers_truncated,
            'totalUniqueMarkers': self.total_unique_markers,
        }


@dataclass
class ReplacementValuesFile:
    """Contents of the per-folder save file"""
    prefix: str = DEFAULT_PREFIX
    values: Dict[str, str] = field(default_factory=dict)
    version: str = SAVE_FILE_VERSION
    last_modified: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            'prefix': self.prefix,
            'values': dict(self.values),
            'version': self.version,
        }
        if self.last_modified is not None:
            data['lastModified'] = self.last_modified
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'ReplacementValuesFile':
        """Build from an already validated dict"""
        return cls(
            prefix=data['prefix'],
            values=dict(data['values']),
            version=data['version'],
            last_modified=data.get('lastModified'),
        )


@dataclass
class ReplacementRequest:
    source_folder: str
    output_folder: str
    values: Dict[str, str]
    prefix: str = DEFAULT_PREFIX


@dataclass
class FailedDocument:
    path: str
    error: str
    error_type: str = 'unknown'


@dataclass
class ReplacementResult:
    """Summary of one replacement run"""
    success: bool
    processed: int
    errors: int
    processed_documents: List[str] = field(default_factory=list)
    failed_documents: List[FailedDocument] = field(default_factory=list)
    error_message: Optional[str] = None


@dataclass
class BatchProgress:
    """Progress event for a replacement run"""
    phase: BatchPhase
    progress: int
    current_item: Optional[str] = None
    completed: int = 0
    total: int = 0
    errors: int = 0


@dataclass
class PrefillConfig:
    """
    Limits and defaults for one scan or replacement operation.

    Instances are passed explicitly; the engine keeps no module-level state.
    """
    default_prefix: str = DEFAULT_PREFIX
    max_scan_documents: int = MAX_SCAN_DOCUMENTS
    max_document_size: int = MAX_DOCUMENT_SIZE
    max_markers_per_document: int = MAX_MARKERS_PER_DOCUMENT
    max_unique_markers: int = MAX_UNIQUE_MARKERS
    max_backups: int = MAX_SAVE_FILE_BACKUPS

    @classmethod
    def from_env(cls) -> 'PrefillConfig':
        """
        Build a config from DOC_PREFILL_* environment variables.

        Raises:
            ValueError: If a numeric variable is not a positive integer
        """
        config = cls()
        prefix = os.getenv('DOC_PREFILL_DEFAULT_PREFIX')
        if prefix:
            config.default_prefix = prefix
        int_vars = {
            'DOC_PREFILL_MAX_DOCUMENTS': 'max_scan_documents',
            'DOC_PREFILL_MAX_DOCUMENT_SIZE': 'max_document_size',
            'DOC_PREFILL_MAX_MARKERS': 'max_markers_per_document',
            'DOC_PREFILL_MAX_UNIQUE_MARKERS': 'max_unique_markers',
            'DOC_PREFILL_MAX_BACKUPS': 'max_backups',
        }
        for env_name, attr in int_vars.items():
            raw = os.getenv(env_name)
            if raw is None or raw.strip() == '':
                continue
            try:
                number = int(raw)
            except ValueError:
                raise ValueError(f"{env_name} must be an integer, got {raw!r}")
            if number <= 0:
                raise ValueError(f"{env_name} must be a positive integer, got {number}")
            setattr(config, attr, number)
        return config


# ============================================================
# Helper Functions
# ============================================================

def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision, e.g. 2024-02-05T06:58:33.420Z"""
    now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"


def format_text_preview(text: str, max_len: int = 30) -> str:
    """
    Format text for log output: remove newlines and truncate.

    Args:
        text: Text to format
        max_len: Maximum length before truncation

    Returns:
        Clean, truncated text with "..." suffix if truncated
    """
    clean = text.replace('\n', ' ').replace('\r', '').replace('\t', ' ')
    while '  ' in clean:
        clean = clean.replace('  ', ' ')
    clean = clean.strip()
    if len(clean) > max_len:
        return clean[:max_len] + "..."
    return clean
