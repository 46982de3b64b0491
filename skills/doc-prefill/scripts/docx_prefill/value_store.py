#!/usr/bin/env python3
"""
ABOUTME: Persists replacement values per folder in .replacement-values.json
ABOUTME: Atomic writes, timestamped backups with retention, schema validation
"""

import dataclasses
import json
import os
import re
import shutil
import sys
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from .common import (
    DEFAULT_PREFIX,
    MAX_PREFIX_LENGTH,
    MAX_REPLACEMENT_VALUE_LENGTH,
    MAX_SAVE_FILE_BACKUPS,
    MIN_PREFIX_LENGTH,
    SAVE_FILE_BACKUP_EXTENSION,
    SAVE_FILE_NAME,
    SAVE_FILE_TEMP_EXTENSION,
    SAVE_FILE_VERSION,
    ReplacementValuesFile,
    utc_timestamp,
)
from .detection import is_valid_identifier

_BACKUP_NAME_RE = re.compile(
    re.escape(SAVE_FILE_NAME + SAVE_FILE_BACKUP_EXTENSION) + r'\.(\d+)$'
)

_ISO_TIMESTAMP_RE = re.compile(
    r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})?$'
)


# ============================================================
# Errors and results
# ============================================================

class StorageError(Exception):
    """Save file could not be read or written"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SaveFileNotFoundError(StorageError):
    pass


class SaveFileCorruptedError(StorageError):
    """Save file exists but is not valid JSON or fails schema validation"""


class ReadStatus(str, Enum):
    OK = 'ok'
    NOT_FOUND = 'not_found'
    CORRUPTED = 'corrupted'
    ERROR = 'error'


@dataclass
class ValidationIssue:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


@dataclass
class ReadSaveFileResult:
    status: ReadStatus
    data: Optional[ReplacementValuesFile] = None
    error: Optional[str] = None
    errors: List[ValidationIssue] = field(default_factory=list)
    created_default: bool = False

    @property
    def success(self) -> bool:
        return self.status == ReadStatus.OK


@dataclass
class WriteSaveFileResult:
    success: bool
    file_path: Optional[str] = None
    backup_path: Optional[str] = None
    error: Optional[str] = None
    data: Optional[ReplacementValuesFile] = None


# ============================================================
# Paths
# ============================================================

def get_save_file_path(folder) -> Path:
    return Path(folder) / SAVE_FILE_NAME


def get_backup_file_path(folder, timestamp_ms: int) -> Path:
    return Path(folder) / f"{SAVE_FILE_NAME}{SAVE_FILE_BACKUP_EXTENSION}.{timestamp_ms}"


def save_file_exists(folder) -> bool:
    path = get_save_file_path(folder)
    return path.is_file() and os.access(path, os.R_OK)


def backup_timestamp(backup_path) -> Optional[int]:
    """Timestamp (unix millis) embedded in a backup file name, or None"""
    m = _BACKUP_NAME_RE.match(Path(backup_path).name)
    return int(m.group(1)) if m else None


# ============================================================
# Validation
# ============================================================

def _parse_iso_timestamp(value: str) -> Optional[datetime]:
    if not _ISO_TIMESTAMP_RE.match(value):
        return None
    normalized = value
    if normalized.endswith('Z'):
        normalized = normalized[:-1] + '+00:00'
    # Pad the fraction to microseconds; older fromisoformat only takes 3 or 6 digits
    m = re.match(r'^(.*T\d{2}:\d{2}:\d{2})\.(\d{1,6})(.*)$', normalized)
    if m:
        normalized = f"{m.group(1)}.{m.group(2).ljust(6, '0')}{m.group(3)}"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def validate_replacement_values_file(obj: Any) -> List[ValidationIssue]:
    """
    Validate a decoded save file.

    Args:
        obj: Parsed JSON value

    Returns:
        List of field-level issues; empty when valid
    """
    if not isinstance(obj, dict):
        return [ValidationIssue('', 'Value must be an object')]

    issues = []

    if 'prefix' not in obj:
        issues.append(ValidationIssue('prefix', 'Prefix is required'))
    elif not isinstance(obj['prefix'], str):
        issues.append(ValidationIssue('prefix', 'Prefix must be a string'))
    elif not MIN_PREFIX_LENGTH <= len(obj['prefix']) <= MAX_PREFIX_LENGTH:
        issues.append(ValidationIssue(
            'prefix', f'Prefix must be between {MIN_PREFIX_LENGTH} and {MAX_PREFIX_LENGTH} characters'
        ))

    if 'values' not in obj:
        issues.append(ValidationIssue('values', 'Values are required'))
    elif not isinstance(obj['values'], dict):
        issues.append(ValidationIssue('values', 'Values must be an object'))
    else:
        for key, val in obj['values'].items():
            if not is_valid_identifier(key):
                issues.append(ValidationIssue(f'values.{key}', f'Invalid marker identifier: {key}'))
            if not isinstance(val, str):
                issues.append(ValidationIssue(f'values.{key}', f'Value for {key} must be a string'))
            elif len(val) > MAX_REPLACEMENT_VALUE_LENGTH:
                issues.append(ValidationIssue(
                    f'values.{key}',
                    f'Value for {key} exceeds maximum length of {MAX_REPLACEMENT_VALUE_LENGTH}'
                ))

    if 'version' not in obj:
        issues.append(ValidationIssue('version', 'Version is required'))
    elif not isinstance(obj['version'], str):
        issues.append(ValidationIssue('version', 'Version must be a string'))

    if 'lastModified' in obj:
        last_modified = obj['lastModified']
        if not isinstance(last_modified, str):
            issues.append(ValidationIssue('lastModified', 'lastModified must be a string'))
        elif _parse_iso_timestamp(last_modified) is None:
            issues.append(ValidationIssue('lastModified', 'lastModified must be a valid ISO 8601 timestamp'))

    return issues


def _format_issues(issues: List[ValidationIssue]) -> str:
    return ', '.join(str(i) for i in issues)


def create_default_values_file(prefix: str = DEFAULT_PREFIX) -> ReplacementValuesFile:
    return ReplacementValuesFile(prefix=prefix, values={}, version=SAVE_FILE_VERSION)


# ============================================================
# Backups
# ============================================================

def create_backup_file(folder) -> Path:
    """
    Copy the save file to .replacement-values.json.bak.<unix-millis>.

    Raises:
        StorageError: No save file, or the copy failed
    """
    source = get_save_file_path(folder)
    if not save_file_exists(folder):
        raise StorageError(f"Cannot create backup: save file does not exist at {source}")

    timestamp_ms = int(time.time() * 1000)
    existing = get_backup_files(folder)
    if existing:
        # Names must stay strictly increasing, even for writes within one millisecond
        timestamp_ms = max(timestamp_ms, backup_timestamp(existing[0]) + 1)
    backup_path = get_backup_file_path(folder, timestamp_ms)

    try:
        shutil.copy2(source, backup_path)
    except OSError as e:
        raise StorageError(f"Failed to create backup at {backup_path}: {e}", cause=e)
    return backup_path


def get_backup_files(folder) -> List[Path]:
    """Backup files of a folder, newest first"""
    try:
        entries = list(Path(folder).iterdir())
    except OSError:
        return []
    backups = [p for p in entries if p.is_file() and backup_timestamp(p) is not None]
    backups.sort(key=lambda p: (backup_timestamp(p), p.name), reverse=True)
    return backups


def cleanup_old_backups(folder, max_backups: int = MAX_SAVE_FILE_BACKUPS) -> int:
    """
    Delete all but the newest max_backups backups.

    Returns:
        Number of backups deleted
    """
    deleted = 0
    for backup in get_backup_files(folder)[max_backups:]:
        try:
            backup.unlink()
            deleted += 1
        except OSError as e:
            print(f"[Backup] Warning: Failed to delete old backup {backup}: {e}", file=sys.stderr)
    return deleted


# ============================================================
# Read
# ============================================================

def read_save_file(folder, create_default_if_not_found: bool = False,
                   default_prefix: str = DEFAULT_PREFIX) -> ReadSaveFileResult:
    """
    Read and validate the save file of a folder.

    Args:
        folder: Folder that holds (or will hold) the save file
        create_default_if_not_found: Write an empty default file when missing
        default_prefix: Prefix of the default file

    Returns:
        ReadSaveFileResult. status distinguishes a missing file (not_found)
        from a file that exists but cannot be used (corrupted)
    """
    path = get_save_file_path(folder)

    if not path.exists():
        if not create_default_if_not_found:
            return ReadSaveFileResult(ReadStatus.NOT_FOUND, error=f"Save file not found at {path}")
        write_result = write_save_file(
            folder, create_default_values_file(default_prefix),
            create_backup=False, atomic=True, update_timestamp=True
        )
        if not write_result.success:
            return ReadSaveFileResult(
                ReadStatus.ERROR,
                error=write_result.error or 'Failed to create default save file'
            )
        return ReadSaveFileResult(ReadStatus.OK, data=write_result.data, created_default=True)

    try:
        content = path.read_text(encoding='utf-8')
    except UnicodeDecodeError:
        return ReadSaveFileResult(
            ReadStatus.CORRUPTED,
            error=f"Failed to parse save file at {path}: not valid UTF-8"
        )
    except OSError as e:
        return ReadSaveFileResult(ReadStatus.ERROR, error=f"Failed to read save file at {path}: {e}")

    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, RecursionError):
        return ReadSaveFileResult(
            ReadStatus.CORRUPTED,
            error=f"Failed to parse save file at {path}: Invalid JSON format"
        )

    issues = validate_replacement_values_file(parsed)
    if issues:
        return ReadSaveFileResult(
            ReadStatus.CORRUPTED,
            error=f"Save file validation failed at {path}: {_format_issues(issues)}",
            errors=issues,
        )

    return ReadSaveFileResult(ReadStatus.OK, data=ReplacementValuesFile.from_dict(parsed))


def read_save_file_or_raise(folder, create_default_if_not_found: bool = False,
                            default_prefix: str = DEFAULT_PREFIX) -> ReplacementValuesFile:
    """
    Like read_save_file, raising instead of returning a status.

    Raises:
        SaveFileNotFoundError: No save file in the folder
        SaveFileCorruptedError: Invalid JSON or schema
        StorageError: Any other failure
    """
    result = read_save_file(folder, create_default_if_not_found, default_prefix)
    if result.status == ReadStatus.OK:
        return result.data
    if result.status == ReadStatus.NOT_FOUND:
        raise SaveFileNotFoundError(result.error)
    if result.status == ReadStatus.CORRUPTED:
        raise SaveFileCorruptedError(result.error)
    raise StorageError(result.error or 'Failed to read save file')


# ============================================================
# Write
# ============================================================

def _write_text_atomic(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=path.name + SAVE_FILE_TEMP_EXTENSION + '.'
    )
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
        os.replace(tmp_name, path)
        tmp_name = None
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def write_save_file(folder, data: ReplacementValuesFile, create_backup: bool = True,
                    atomic: bool = True, update_timestamp: bool = True,
                    max_backups: int = MAX_SAVE_FILE_BACKUPS) -> WriteSaveFileResult:
    """
    Validate and write the save file.

    Invalid data is rejected before anything touches the disk. The caller's
    object is not modified; the written version is returned in result.data.
    A failed backup is reported as a warning and does not block the write.

    Args:
        folder: Target folder (must exist)
        data: Values to persist
        create_backup: Back up an existing file first
        atomic: Write to a temporary file and rename it into place
        update_timestamp: Set lastModified to now
        max_backups: Backups kept after the write

    Returns:
        WriteSaveFileResult
    """
    path = get_save_file_path(folder)

    issues = validate_replacement_values_file(data.to_dict())
    if issues:
        return WriteSaveFileResult(False, error=f"Data validation failed: {_format_issues(issues)}")

    if not Path(folder).is_dir():
        return WriteSaveFileResult(False, error=f"Folder not found: {folder}")

    to_write = dataclasses.replace(data, values=dict(data.values))
    if update_timestamp:
        to_write.last_modified = utc_timestamp()

    backup_path = None
    if create_backup and save_file_exists(folder):
        try:
            backup_path = create_backup_file(folder)
        except StorageError as e:
            print(f"[Backup] Warning: Failed to create backup: {e}", file=sys.stderr)

    content = json.dumps(to_write.to_dict(), indent=2, ensure_ascii=False)
    try:
        if atomic:
            _write_text_atomic(path, content)
        else:
            path.write_text(content, encoding='utf-8')
    except OSError as e:
        return WriteSaveFileResult(False, error=f"Failed to write save file at {path}: {e}")

    if backup_path is not None:
        cleanup_old_backups(folder, max_backups)

    return WriteSaveFileResult(
        True,
        file_path=str(path),
        backup_path=str(backup_path) if backup_path is not None else None,
        data=to_write,
    )


def write_save_file_or_raise(folder, data: ReplacementValuesFile, **kwargs) -> ReplacementValuesFile:
    """
    Like write_save_file, raising StorageError on failure.

    Returns:
        The data as written
    """
    result = write_save_file(folder, data, **kwargs)
    if not result.success:
        raise StorageError(result.error or 'Failed to write save file')
    return result.data


# ============================================================
# Management
# ============================================================

def delete_save_file(folder) -> bool:
    """Delete the save file. Returns False if there was none or deletion failed."""
    path = get_save_file_path(folder)
    if not save_file_exists(folder):
        return False
    try:
        path.unlink()
    except OSError as e:
        print(f"Warning: Failed to delete save file at {path}: {e}", file=sys.stderr)
        return False
    return True


def restore_from_backup(folder, backup_path) -> bool:
    """
    Replace the save file with a backup.

    The backup must parse and validate; an invalid backup never replaces
    the live file.

    Returns:
        True if the save file was restored
    """
    backup = Path(backup_path)
    try:
        content = backup.read_text(encoding='utf-8')
        parsed = json.loads(content)
    except (OSError, ValueError, RecursionError) as e:
        print(f"[Backup] Warning: Cannot restore from {backup}: {e}", file=sys.stderr)
        return False

    issues = validate_replacement_values_file(parsed)
    if issues:
        print(f"[Backup] Warning: Backup {backup} is invalid: {_format_issues(issues)}", file=sys.stderr)
        return False

    try:
        _write_text_atomic(get_save_file_path(folder), content)
    except OSError as e:
        print(f"[Backup] Warning: Failed to restore from {backup}: {e}", file=sys.stderr)
        return False
    return True


def get_save_file_last_modified(folder) -> Optional[datetime]:
    """Modification time of the save file, or None if there is none"""
    path = get_save_file_path(folder)
    if not save_file_exists(folder):
        return None
    try:
        return datetime.fromtimestamp(path.stat().st_mtime).astimezone()
    except OSError:
        return None
