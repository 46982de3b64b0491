#!/usr/bin/env python3
"""
ABOUTME: Runs a replacement over a folder: copy templates to the output folder, fill each copy
ABOUTME: Reports copying / processing / complete progress; per-document failures never abort the run
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from .archive import validate_docx_package
from .common import (
    BatchPhase,
    BatchProgress,
    FailedDocument,
    PrefillConfig,
    ReplacementRequest,
    ReplacementResult,
)
from .detection import InvalidPrefixError, validate_prefix
from .file_ops import CopyProgress, FileCopyError, copy_files, ensure_directory_exists
from .replacement import ReplacementError, replace_markers_in_file
from .scanner import ScanError, find_docx_files

# Returning False from the callback stops the run before the next document
ProgressCallback = Callable[[BatchProgress], Optional[bool]]

COPY_PHASE_END = 50


def _validate_request(request: ReplacementRequest) -> None:
    try:
        validate_prefix(request.prefix)
    except InvalidPrefixError as e:
        raise ReplacementError(str(e), error_type='invalid_prefix')

    if not isinstance(request.values, Mapping):
        raise ReplacementError('Replacement values must be a mapping', error_type='invalid_values')

    source = Path(request.source_folder)
    if not source.is_dir():
        raise ReplacementError(
            f"Source folder not accessible: {request.source_folder}",
            error_type='folder_not_found'
        )

    if Path(request.output_folder).resolve() == source.resolve():
        raise ReplacementError(
            'Output folder must be different from the source folder',
            error_type='output_is_source'
        )


def _summarize_failures(failed: List[FailedDocument]) -> Optional[str]:
    if not failed:
        return None
    details = '; '.join(f"{Path(f.path).name} ({f.error})" for f in failed)
    return f"{len(failed)} document(s) failed: {details}"


def process_documents_batch(request: ReplacementRequest,
                            on_progress: Optional[ProgressCallback] = None,
                            config: Optional[PrefillConfig] = None,
                            verify_output: bool = False) -> ReplacementResult:
    """
    Fill every template of a folder into the output folder.

    Source documents are copied first (progress 0-50), then markers are
    replaced in each copy (50-100), then a final "complete" event at 100 is
    sent. Originals are never opened for writing. A document that fails
    to copy or to process is recorded in failed_documents and the run goes
    on. Copies that failed processing stay in the output folder.

    Args:
        request: Source folder, output folder, values and prefix
        on_progress: Called with BatchProgress; returning False cancels the
            remaining documents (they are reported as failed, type "cancelled")
        config: Limits; defaults to PrefillConfig()
        verify_output: Load every written document with python-docx afterwards

    Returns:
        ReplacementResult with processed documents in name order

    Raises:
        ReplacementError: Invalid prefix, missing source folder, output equal
            to source, or output folder that cannot be created
    """
    config = config or PrefillConfig()
    _validate_request(request)

    try:
        output_dir = ensure_directory_exists(request.output_folder)
    except FileCopyError as e:
        raise ReplacementError(
            f"Failed to create output folder: {request.output_folder} ({e})",
            error_type='write_error'
        )

    try:
        listing = find_docx_files(request.source_folder, config)
    except ScanError as e:
        raise ReplacementError(str(e), error_type=e.error_type)

    failed: List[FailedDocument] = [
        FailedDocument(s.path, s.error, s.error_type) for s in listing.skipped
    ]
    processed_documents: List[str] = []
    cancelled = False

    def report(progress: BatchProgress) -> None:
        nonlocal cancelled
        if on_progress is None:
            return
        if on_progress(progress) is False:
            cancelled = True

    # Copying phase
    def on_copy(copy_progress: CopyProgress) -> None:
        report(BatchProgress(
            phase=BatchPhase.COPYING,
            progress=copy_progress.current_file_index * COPY_PHASE_END // copy_progress.total_files,
            current_item=copy_progress.current_file,
            completed=copy_progress.current_file_index,
            total=copy_progress.total_files,
            errors=len(failed),
        ))

    copy_result = copy_files(listing.files, output_dir, on_progress=on_copy, overwrite=True)

    to_process = []
    for result in copy_result.results:
        if result.success:
            to_process.append(Path(result.destination_path))
        else:
            print(f"Skipped {Path(result.source_path).name}: {result.error}", file=sys.stderr)
            failed.append(FailedDocument(result.source_path, result.error or 'Copy failed', 'copy_error'))

    # Processing phase
    total = len(to_process)
    for index, output_path in enumerate(to_process):
        if cancelled:
            for remaining in to_process[index:]:
                failed.append(FailedDocument(str(remaining), 'Cancelled before processing', 'cancelled'))
            break

        try:
            replace_markers_in_file(output_path, request.values, request.prefix)
        except ReplacementError as e:
            print(f"Skipped {output_path.name}: {e}", file=sys.stderr)
            failed.append(FailedDocument(str(output_path), str(e), e.error_type))
        else:
            problems = validate_docx_package(output_path) if verify_output else []
            if problems:
                reason = '; '.join(problems)
                print(f"Skipped {output_path.name}: output verification failed: {reason}", file=sys.stderr)
                failed.append(FailedDocument(str(output_path), reason, 'verification_failed'))
            else:
                processed_documents.append(str(output_path))

        done = index + 1
        report(BatchProgress(
            phase=BatchPhase.PROCESSING,
            progress=COPY_PHASE_END + done * (100 - COPY_PHASE_END) // total,
            current_item=output_path.name,
            completed=done,
            total=total,
            errors=len(failed),
        ))

    report(BatchProgress(
        phase=BatchPhase.COMPLETE,
        progress=100,
        completed=len(processed_documents),
        total=len(processed_documents) + len(failed),
        errors=len(failed),
    ))

    return ReplacementResult(
        success=not failed,
        processed=len(processed_documents),
        errors=len(failed),
        processed_documents=processed_documents,
        failed_documents=failed,
        error_message=_summarize_failures(failed),
    )


async def process_documents_batch_async(request: ReplacementRequest,
                                        on_progress: Optional[ProgressCallback] = None,
                                        config: Optional[PrefillConfig] = None,
                                        verify_output: bool = False) -> ReplacementResult:
    """Run process_documents_batch in a worker thread"""
    return await asyncio.to_thread(
        process_documents_batch, request, on_progress, config, verify_output
    )
