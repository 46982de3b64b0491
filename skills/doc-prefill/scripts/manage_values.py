#!/usr/bin/env python3
"""
ABOUTME: Inspects and edits a folder's saved replacement values (.replacement-values.json)
ABOUTME: show / set / unset values, list and restore backups, delete the save file
"""

import argparse
import json
import sys
from datetime import datetime, timezone

from docx_prefill.common import PrefillConfig, ReplacementValuesFile, format_text_preview
from docx_prefill.detection import is_valid_identifier, is_valid_prefix
from docx_prefill.value_store import (
    ReadStatus,
    backup_timestamp,
    delete_save_file,
    get_backup_files,
    get_save_file_last_modified,
    read_save_file,
    restore_from_backup,
    write_save_file,
)


def _read_or_report(folder: str):
    result = read_save_file(folder)
    if result.status == ReadStatus.NOT_FOUND:
        print(f"Error: No save file in {folder}", file=sys.stderr)
        return None
    if result.status != ReadStatus.OK:
        print(f"Error: {result.error}", file=sys.stderr)
        for issue in result.errors:
            print(f"  - {issue}", file=sys.stderr)
        return None
    return result.data


def cmd_show(args, config: PrefillConfig) -> int:
    data = _read_or_report(args.folder)
    if data is None:
        return 1
    if args.json:
        print(json.dumps(data.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print(f"Prefix: {data.prefix}")
    print(f"Version: {data.version}")
    print(f"Last modified: {data.last_modified or '(unknown)'}")
    mtime = get_save_file_last_modified(args.folder)
    if mtime is not None:
        print(f"File time: {mtime.isoformat(timespec='seconds')}")
    print("-" * 50)
    if not data.values:
        print("No values saved")
    for identifier, value in data.values.items():
        print(f"{data.prefix}{identifier} = {format_text_preview(value, 60) if value else '(empty)'}")
    return 0


def cmd_set(args, config: PrefillConfig) -> int:
    if not is_valid_identifier(args.identifier):
        print(f"Error: Invalid marker identifier: {args.identifier!r}", file=sys.stderr)
        return 1
    if args.prefix is not None and not is_valid_prefix(args.prefix):
        print(f"Error: Invalid prefix: {args.prefix!r}", file=sys.stderr)
        return 1

    result = read_save_file(args.folder)
    if result.status == ReadStatus.OK:
        data = result.data
    elif result.status == ReadStatus.NOT_FOUND:
        data = ReplacementValuesFile(prefix=config.default_prefix)
    else:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    data.values[args.identifier] = args.value
    if args.prefix is not None:
        data.prefix = args.prefix
    return _write(args.folder, data, config)


def cmd_unset(args, config: PrefillConfig) -> int:
    data = _read_or_report(args.folder)
    if data is None:
        return 1
    if args.identifier not in data.values:
        print(f"Error: No saved value for {args.identifier}", file=sys.stderr)
        return 1
    del data.values[args.identifier]
    return _write(args.folder, data, config)


def _write(folder: str, data: ReplacementValuesFile, config: PrefillConfig) -> int:
    result = write_save_file(folder, data, max_backups=config.max_backups)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(f"Saved {len(result.data.values)} value(s) to {result.file_path}")
    if result.backup_path:
        print(f"Backup: {result.backup_path}")
    return 0


def cmd_backups(args, config: PrefillConfig) -> int:
    backups = get_backup_files(args.folder)
    if not backups:
        print("No backups")
        return 0
    for backup in backups:
        created = datetime.fromtimestamp(backup_timestamp(backup) / 1000, tz=timezone.utc)
        print(f"{backup.name}  ({created.isoformat(timespec='seconds')})")
    return 0


def cmd_restore(args, config: PrefillConfig) -> int:
    if args.backup:
        backup = args.backup
    else:
        backups = get_backup_files(args.folder)
        if not backups:
            print("Error: No backups to restore", file=sys.stderr)
            return 1
        backup = str(backups[0])

    if not restore_from_backup(args.folder, backup):
        print(f"Error: Could not restore from {backup}", file=sys.stderr)
        return 1
    print(f"Restored save file from {backup}")
    return 0


def cmd_delete(args, config: PrefillConfig) -> int:
    if not delete_save_file(args.folder):
        print(f"Error: No save file deleted in {args.folder}", file=sys.stderr)
        return 1
    print("Save file deleted")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Manage saved replacement values of a template folder"
    )
    parser.add_argument('folder', help='Folder containing the save file')
    sub = parser.add_subparsers(dest='command', required=True)

    show = sub.add_parser('show', help='Print saved values')
    show.add_argument('--json', action='store_true', help='Print the save file as JSON')
    show.set_defaults(func=cmd_show)

    set_cmd = sub.add_parser('set', help='Set one value')
    set_cmd.add_argument('identifier', help='Marker identifier (without prefix)')
    set_cmd.add_argument('value', help='Replacement value')
    set_cmd.add_argument('--prefix', help='Also change the saved prefix')
    set_cmd.set_defaults(func=cmd_set)

    unset = sub.add_parser('unset', help='Remove one value')
    unset.add_argument('identifier', help='Marker identifier (without prefix)')
    unset.set_defaults(func=cmd_unset)

    backups = sub.add_parser('backups', help='List backups, newest first')
    backups.set_defaults(func=cmd_backups)

    restore = sub.add_parser('restore', help='Restore the save file from a backup')
    restore.add_argument('backup', nargs='?', help='Backup file (default: newest)')
    restore.set_defaults(func=cmd_restore)

    delete = sub.add_parser('delete', help='Delete the save file')
    delete.set_defaults(func=cmd_delete)

    args = parser.parse_args()

    try:
        config = PrefillConfig.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return args.func(args, config)


if __name__ == '__main__':
    sys.exit(main())
