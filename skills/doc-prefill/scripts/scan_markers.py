#!/usr/bin/env python3
"""
ABOUTME: Scans a folder of .docx templates and lists the markers they contain
ABOUTME: Shows each marker's status against the folder's saved replacement values
"""

import argparse
import json
import sys
from dataclasses import asdict

from docx_prefill.common import PrefillConfig, format_text_preview
from docx_prefill.detection import is_valid_prefix
from docx_prefill.scanner import MarkerStatistics, ScanError, merge_markers_with_values, scan_folder
from docx_prefill.value_store import ReadStatus, read_save_file


def load_saved_values(folder: str, init: bool, default_prefix: str):
    """Read the save file; a corrupted file is reported and ignored."""
    result = read_save_file(folder, create_default_if_not_found=init, default_prefix=default_prefix)
    if result.status == ReadStatus.OK:
        if result.created_default:
            print(f"Created default save file in {folder}", file=sys.stderr)
        return result.data
    if result.status == ReadStatus.CORRUPTED:
        print(f"Warning: {result.error}", file=sys.stderr)
        print("Warning: Ignoring saved values; fix or restore the save file (manage_values.py restore)",
              file=sys.stderr)
    elif result.status == ReadStatus.ERROR:
        print(f"Warning: {result.error}", file=sys.stderr)
    return None


def print_markers(scan, markers, stats: MarkerStatistics, verbose: bool = False):
    print(f"Folder: {scan.folder}")
    print(f"Prefix: {scan.prefix}")
    print(f"Documents: {len(scan.documents)}")
    if verbose:
        for name in scan.documents:
            print(f"  - {name}")
    print("-" * 50)

    if not markers:
        print("No markers found")
    for marker in markers:
        value = format_text_preview(marker.value) if marker.value else '(no value)'
        print(f"[{marker.status.value:>7}] {marker.full_marker} = {value}")
        if verbose and marker.documents:
            print(f"          in: {', '.join(marker.documents)}")

    print("-" * 50)
    print(f"Markers: {stats.total} total, {stats.active} active, {stats.new} new, {stats.removed} removed")
    print(f"Values: {stats.with_values} set, {stats.without_values} missing")
    if scan.markers_truncated:
        print(f"Note: only the first {len(scan.markers)} of {scan.total_unique_markers} markers are listed")
    if scan.documents_truncated:
        print(f"Note: only the first {len(scan.documents)} of {scan.total_documents_found} documents were scanned")

    for err in scan.skipped_documents + scan.errors:
        print(f"Skipped {err.name}: {err.error}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Scan .docx templates for replacement markers"
    )
    parser.add_argument('folder', help='Folder containing .docx templates')
    parser.add_argument('--prefix',
                        help='Marker prefix (default: saved prefix, then DOC_PREFILL_DEFAULT_PREFIX or REPLACEME-)')
    parser.add_argument('--json', action='store_true',
                        help='Print the result as JSON')
    parser.add_argument('--init', action='store_true',
                        help='Create an empty save file if the folder has none')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    try:
        config = PrefillConfig.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.prefix is not None and not is_valid_prefix(args.prefix):
        print(f"Error: Invalid prefix: {args.prefix!r}", file=sys.stderr)
        return 1

    saved = load_saved_values(args.folder, args.init, args.prefix or config.default_prefix)
    prefix = args.prefix or (saved.prefix if saved is not None else config.default_prefix)

    if args.verbose:
        print(f"[Scan] Scanning {args.folder} with prefix {prefix!r}", file=sys.stderr)

    try:
        scan = scan_folder(args.folder, prefix, config)
    except ScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    markers = merge_markers_with_values(scan, saved)
    stats = MarkerStatistics.from_markers(markers)

    if args.json:
        output = scan.to_dict()
        output['markers'] = [m.to_dict() for m in markers]
        output['statistics'] = asdict(stats)
        print(json.dumps(output, indent=2, ensure_ascii=False))
    else:
        print_markers(scan, markers, stats, verbose=args.verbose)

    return 0


if __name__ == '__main__':
    sys.exit(main())
