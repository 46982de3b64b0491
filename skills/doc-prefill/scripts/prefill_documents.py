#!/usr/bin/env python3
"""
ABOUTME: Fills .docx templates: copies them to an output folder and replaces markers with values
ABOUTME: Values come from the folder's save file, a JSON file and --set overrides
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List

from docx_prefill.batch import process_documents_batch
from docx_prefill.common import (
    DEFAULT_OUTPUT_SUBFOLDER,
    BatchPhase,
    BatchProgress,
    PrefillConfig,
    ReplacementRequest,
    ReplacementValuesFile,
)
from docx_prefill.detection import is_valid_identifier, is_valid_prefix
from docx_prefill.replacement import ReplacementError
from docx_prefill.value_store import ReadStatus, read_save_file, write_save_file


def parse_assignments(assignments: List[str]) -> Dict[str, str]:
    """
    Parse ID=VALUE pairs from --set.

    Raises:
        ValueError: Missing '=' or invalid identifier
    """
    values = {}
    for item in assignments:
        if '=' not in item:
            raise ValueError(f"Expected ID=VALUE, got {item!r}")
        identifier, value = item.split('=', 1)
        identifier = identifier.strip()
        if not is_valid_identifier(identifier):
            raise ValueError(f"Invalid marker identifier: {identifier!r}")
        values[identifier] = value
    return values


def load_values_file(path: str) -> Dict[str, str]:
    """
    Load values from JSON: either {"ID": "value", ...} or a save file with a "values" object.

    Raises:
        ValueError: Unreadable file or unexpected structure
    """
    try:
        data = json.loads(Path(path).read_text(encoding='utf-8'))
    except (OSError, ValueError, RecursionError) as e:
        raise ValueError(f"Cannot load values file {path}: {e}")

    if isinstance(data, dict) and isinstance(data.get('values'), dict):
        data = data['values']
    if not isinstance(data, dict):
        raise ValueError(f"Values file {path} must contain a JSON object")

    for key, val in data.items():
        if not is_valid_identifier(key):
            raise ValueError(f"Invalid marker identifier in {path}: {key!r}")
        if not isinstance(val, str):
            raise ValueError(f"Value for {key} in {path} must be a string")
    return dict(data)


def make_progress_printer():
    def on_progress(progress: BatchProgress):
        if progress.phase == BatchPhase.COMPLETE:
            print(f"[Replace] complete ({progress.errors} error(s))", file=sys.stderr)
            return
        print(
            f"[Replace] {progress.phase.value} {progress.completed}/{progress.total} "
            f"({progress.progress}%): {progress.current_item}",
            file=sys.stderr
        )
    return on_progress


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Fill marker values into copies of .docx templates"
    )
    parser.add_argument('folder', help='Folder containing .docx templates')
    parser.add_argument('-o', '--output',
                        help=f'Output folder (default: FOLDER/{DEFAULT_OUTPUT_SUBFOLDER})')
    parser.add_argument('--prefix',
                        help='Marker prefix (default: saved prefix, then DOC_PREFILL_DEFAULT_PREFIX or REPLACEME-)')
    parser.add_argument('--set', dest='assignments', action='append', default=[], metavar='ID=VALUE',
                        help='Set a value (repeatable); overrides saved values')
    parser.add_argument('--values-file',
                        help='JSON file with values to apply on top of the saved values')
    parser.add_argument('--no-save', action='store_true',
                        help='Do not write the merged values back to the save file')
    parser.add_argument('--verify', action='store_true',
                        help='Load every output document with python-docx after writing')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    try:
        config = PrefillConfig.from_env()
        overrides = load_values_file(args.values_file) if args.values_file else {}
        overrides.update(parse_assignments(args.assignments))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.prefix is not None and not is_valid_prefix(args.prefix):
        print(f"Error: Invalid prefix: {args.prefix!r}", file=sys.stderr)
        return 1

    saved = read_save_file(args.folder)
    if saved.status in (ReadStatus.CORRUPTED, ReadStatus.ERROR):
        print(f"Warning: {saved.error}", file=sys.stderr)
        print("Warning: Ignoring saved values", file=sys.stderr)
    saved_data = saved.data if saved.status == ReadStatus.OK else None

    prefix = args.prefix or (saved_data.prefix if saved_data is not None else config.default_prefix)
    values = dict(saved_data.values) if saved_data is not None else {}
    values.update(overrides)

    output = args.output or str(Path(args.folder) / DEFAULT_OUTPUT_SUBFOLDER)

    print(f"Source folder: {args.folder}")
    print(f"Output folder: {output}")
    print(f"Prefix: {prefix}")
    print(f"Values: {len(values)}")
    if args.verbose:
        print("-" * 50)

    request = ReplacementRequest(
        source_folder=args.folder,
        output_folder=output,
        values=values,
        prefix=prefix,
    )
    try:
        result = process_documents_batch(
            request,
            on_progress=make_progress_printer() if args.verbose else None,
            config=config,
            verify_output=args.verify,
        )
    except ReplacementError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.no_save:
        write_result = write_save_file(
            args.folder,
            ReplacementValuesFile(prefix=prefix, values=values),
            max_backups=config.max_backups,
        )
        if not write_result.success:
            print(f"Warning: Values not saved: {write_result.error}", file=sys.stderr)
        elif args.verbose:
            print(f"[Backup] Values saved to {write_result.file_path}", file=sys.stderr)

    if result.failed_documents:
        print("\nSkipped documents:")
        for failed in result.failed_documents:
            print(f"  Skipped {Path(failed.path).name}: {failed.error}")

    print("-" * 50)
    print(f"Completed: {result.processed} processed, {result.errors} failed")

    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
