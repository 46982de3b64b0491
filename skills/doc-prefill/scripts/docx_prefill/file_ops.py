#!/usr/bin/env python3
"""
ABOUTME: File copy helpers used to stage working copies of documents
ABOUTME: Single and batch copies with progress reporting, directory checks
"""

import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .common import DOCUMENT_EXTENSION, WORD_LOCK_FILE_PREFIX


class FileCopyError(Exception):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


@dataclass
class CopyProgress:
    current_file: str
    current_file_index: int
    total_files: int
    bytes_copied: int
    total_bytes: int

    @property
    def percentage(self) -> int:
        if self.total_bytes <= 0:
            return 0
        return round(self.bytes_copied * 100 / self.total_bytes)


@dataclass
class CopyResult:
    success: bool
    source_path: str
    destination_path: str
    error: Optional[str] = None


@dataclass
class BatchCopyResult:
    success: bool
    total_files: int = 0
    successful_copies: int = 0
    failed_copies: int = 0
    results: List[CopyResult] = field(default_factory=list)


# ============================================================
# Single file
# ============================================================

def ensure_directory_exists(dir_path) -> Path:
    """
    Create a directory (and parents) if needed.

    Raises:
        FileCopyError: Path exists but is not a directory, or cannot be created
    """
    path = Path(dir_path)
    if path.exists():
        if not path.is_dir():
            raise FileCopyError(f"Path exists but is not a directory: {path}")
        return path
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileCopyError(f"Failed to create directory: {path}", cause=e)
    return path


def copy_file(source_path, destination_path, overwrite: bool = False,
              preserve_metadata: bool = True) -> Path:
    """
    Copy one file.

    Args:
        source_path: Existing regular file
        destination_path: Target path; its parent is created if missing
        overwrite: Replace an existing destination
        preserve_metadata: Copy mode and timestamps (failure only warns)

    Returns:
        The destination path

    Raises:
        FileCopyError: Source missing or not a file, destination exists, or copy failed
    """
    source = Path(source_path)
    destination = Path(destination_path)

    if not source.exists():
        raise FileCopyError(f"Source file does not exist: {source}")
    if not source.is_file():
        raise FileCopyError(f"Source path is not a file: {source}")

    ensure_directory_exists(destination.parent)

    if destination.exists() and not overwrite:
        raise FileCopyError(
            f"Destination file already exists and overwrite is disabled: {destination}"
        )

    try:
        shutil.copyfile(source, destination)
    except OSError as e:
        raise FileCopyError(f"Failed to copy file from {source} to {destination}: {e}", cause=e)

    if preserve_metadata:
        try:
            shutil.copystat(source, destination)
        except OSError as e:
            print(f"Warning: Failed to preserve metadata for {destination}: {e}", file=sys.stderr)

    return destination


def copy_file_with_result(source_path, destination_path, **kwargs) -> CopyResult:
    """copy_file that reports failure in the result instead of raising"""
    try:
        copy_file(source_path, destination_path, **kwargs)
    except FileCopyError as e:
        return CopyResult(False, str(source_path), str(destination_path), str(e))
    return CopyResult(True, str(source_path), str(destination_path))


# ============================================================
# Batch
# ============================================================

def copy_files(source_files: Sequence, destination_dir,
               on_progress: Optional[Callable[[CopyProgress], None]] = None,
               overwrite: bool = False, preserve_metadata: bool = True) -> BatchCopyResult:
    """
    Copy files into one directory, sequentially.

    A failed copy is recorded and the remaining files are still copied.
    on_progress is called after each file.

    Raises:
        FileCopyError: source_files is not a sequence, or the destination cannot be created
    """
    if isinstance(source_files, (str, bytes)) or not isinstance(source_files, Sequence):
        raise FileCopyError('Source files must be a list')
    if not source_files:
        return BatchCopyResult(True)

    destination = ensure_directory_exists(destination_dir)

    sizes = {}
    for source in source_files:
        try:
            sizes[str(source)] = Path(source).stat().st_size
        except OSError as e:
            print(f"Warning: Failed to get size for {source}: {e}", file=sys.stderr)
    total_bytes = sum(sizes.values())

    batch = BatchCopyResult(True, total_files=len(source_files))
    bytes_copied = 0
    for index, source in enumerate(source_files, start=1):
        name = Path(source).name
        result = copy_file_with_result(
            source, destination / name,
            overwrite=overwrite, preserve_metadata=preserve_metadata
        )
        batch.results.append(result)
        if result.success:
            batch.successful_copies += 1
            bytes_copied += sizes.get(str(source), 0)
        else:
            batch.failed_copies += 1

        if on_progress is not None:
            on_progress(CopyProgress(name, index, len(source_files), bytes_copied, total_bytes))

    batch.success = batch.failed_copies == 0
    return batch


def copy_docx_files(source_dir, destination_dir,
                    on_progress: Optional[Callable[[CopyProgress], None]] = None,
                    overwrite: bool = False) -> BatchCopyResult:
    """
    Copy every .docx file directly inside source_dir.

    Raises:
        FileCopyError: Source is missing, not a directory, or cannot be listed
    """
    source = Path(source_dir)
    if not source.exists():
        raise FileCopyError(f"Source directory does not exist: {source}")
    if not source.is_dir():
        raise FileCopyError(f"Source path is not a directory: {source}")

    try:
        docx_files = sorted(
            p for p in source.iterdir()
            if p.suffix.lower() == DOCUMENT_EXTENSION
            and not p.name.startswith(WORD_LOCK_FILE_PREFIX)
            and p.is_file()
        )
    except OSError as e:
        raise FileCopyError(f"Failed to read source directory: {source}", cause=e)

    return copy_files(docx_files, destination_dir, on_progress=on_progress, overwrite=overwrite)


# ============================================================
# Checks
# ============================================================

def is_file_readable(file_path) -> bool:
    path = Path(file_path)
    return path.is_file() and os.access(path, os.R_OK)


def is_directory_writable(dir_path) -> bool:
    path = Path(dir_path)
    return path.is_dir() and os.access(path, os.W_OK)


def get_file_size(file_path) -> int:
    """
    Size of a regular file in bytes.

    Raises:
        FileCopyError: Missing, not a file, or not accessible
    """
    path = Path(file_path)
    try:
        if not path.is_file():
            raise FileCopyError(f"Path is not a file: {path}")
        return path.stat().st_size
    except OSError as e:
        raise FileCopyError(f"Failed to get file size for {path}", cause=e)
