"""
ABOUTME: Document marker engine: scan .docx templates for markers and fill them with saved values
"""

from .batch import process_documents_batch
from .common import PrefillConfig, ReplacementRequest
from .replacement import replace_markers_in_xml
from .scanner import merge_markers_with_values, scan_folder
from .value_store import read_save_file, write_save_file

__all__ = [
    'PrefillConfig',
    'ReplacementRequest',
    'merge_markers_with_values',
    'process_documents_batch',
    'read_save_file',
    'replace_markers_in_xml',
    'scan_folder',
    'write_save_file',
]
