#!/usr/bin/env python3
"""
ABOUTME: Generates HTML and Excel fill-status reports for a folder of .docx templates
ABOUTME: Lists every marker with its status, saved value and the documents that use it
"""

import argparse
import json
import sys
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from docx_prefill.common import Marker, MarkerStatus, PrefillConfig, ScanResult
from docx_prefill.detection import is_valid_prefix
from docx_prefill.scanner import MarkerStatistics, ScanError, merge_markers_with_values, scan_folder
from docx_prefill.value_store import ReadStatus, read_save_file

DEFAULT_TEMPLATE = Path(__file__).resolve().parent.parent / 'assets' / 'report_template.html'

# Status fill colors for the Excel sheet
STATUS_FILLS = {
    MarkerStatus.ACTIVE.value: 'C6EFCE',
    MarkerStatus.NEW.value: 'FFEB9C',
    MarkerStatus.REMOVED.value: 'D9D9D9',
}


def sanitize_excel_string(text: str) -> str:
    """
    Remove control characters that are illegal in Excel/XML.

    Excel uses XML internally, which only allows:
    #x9 (tab), #xA (LF), #xD (CR), and #x20-#xD7FF, #xE000-#xFFFD, #x10000-#x10FFFF

    Args:
        text: Text that may contain control characters

    Returns:
        Sanitized text safe for Excel
    """
    if not text or not isinstance(text, str):
        return text
    illegal_chars = ''.join(
        chr(c) for c in range(0x20)
        if c not in (0x09, 0x0A, 0x0D)
    )
    return text.translate(str.maketrans('', '', illegal_chars))


def generate_report_data(scan: ScanResult, markers: List[Marker]) -> dict:
    """
    Build report data from a scan and its merged markers.

    Args:
        scan: Result of scan_folder
        markers: Output of merge_markers_with_values for the same scan

    Returns:
        Dictionary with report data
    """
    stats = MarkerStatistics.from_markers(markers)
    status_counts = Counter(m.status.value for m in markers)

    # Invert marker -> documents into document -> markers
    document_markers = {name: [] for name in scan.documents}
    for marker in markers:
        for name in marker.documents:
            document_markers.setdefault(name, []).append(marker.identifier)

    errors = {e.name: e for e in scan.skipped_documents + scan.errors}
    documents = []
    for name in sorted(set(document_markers) | set(errors)):
        error = errors.get(name)
        identifiers = document_markers.get(name, [])
        missing = [
            m.identifier for m in markers
            if m.identifier in identifiers and not m.value
        ]
        documents.append({
            'name': name,
            'markers': identifiers,
            'missing_values': missing,
            'error': error.error if error else '',
            'error_type': error.error_type if error else '',
        })

    return {
        'generated_at': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        'folder': scan.folder,
        'prefix': scan.prefix,
        'scanned_at': scan.timestamp,
        'document_count': len(scan.documents),
        'documents': documents,
        'markers': [m.to_dict() for m in markers],
        'statistics': {
            'total': stats.total,
            'active': stats.active,
            'new': stats.new,
            'removed': stats.removed,
            'with_values': stats.with_values,
            'without_values': stats.without_values,
        },
        'status_counts': dict(status_counts),
        'ready': not errors and all(
            m.value for m in markers if m.status != MarkerStatus.REMOVED
        ),
        'markers_truncated': scan.markers_truncated,
        'documents_truncated': scan.documents_truncated,
    }


def render_report(data: dict, template_path: Optional[str] = None) -> str:
    """
    Render HTML report from data using a Jinja2 template.

    Args:
        data: Report data dictionary
        template_path: Jinja2 template file (default: assets/report_template.html)

    Returns:
        Rendered HTML string

    Raises:
        FileNotFoundError: If the template does not exist
    """
    template_file = Path(template_path) if template_path else DEFAULT_TEMPLATE
    if not template_file.exists():
        raise FileNotFoundError(f"Template file not found: {template_file}")
    template_str = template_file.read_text(encoding='utf-8')

    # Values come from user documents; always escape
    env = Environment(autoescape=True)
    template = env.from_string(template_str)
    return template.render(**data)


def generate_excel_report(data: dict, output_path: str) -> None:
    """
    Generate Excel report with one row per marker.

    Args:
        data: Report data dictionary
        output_path: Path to save the Excel file
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Markers"

    headers = ["#", "Marker", "Identifier", "Status", "Value", "Documents"]

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = thin_border

    content_alignment = Alignment(vertical="top", wrap_text=True)

    for row_idx, marker in enumerate(data['markers'], 2):
        row_data = [
            row_idx - 1,
            marker['fullMarker'],
            marker['identifier'],
            marker['status'],
            marker['value'],
            ', '.join(marker['documents']),
        ]
        for col_idx, value in enumerate(row_data, 1):
            safe_value = sanitize_excel_string(value) if isinstance(value, str) else value
            cell = ws.cell(row=row_idx, column=col_idx, value=safe_value)
            cell.alignment = content_alignment
            cell.border = thin_border

        color = STATUS_FILLS.get(marker['status'])
        if color:
            ws.cell(row=row_idx, column=4).fill = PatternFill(
                start_color=color, end_color=color, fill_type="solid"
            )

    column_widths = [6, 30, 20, 10, 50, 40]
    for col_idx, width in enumerate(column_widths, 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width

    ws.freeze_panes = "A2"

    # Second sheet: documents
    docs = wb.create_sheet("Documents")
    doc_headers = ["Document", "Markers", "Missing values", "Error"]
    for col_idx, header in enumerate(doc_headers, 1):
        cell = docs.cell(row=1, column=col_idx, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = thin_border
    for row_idx, doc in enumerate(data['documents'], 2):
        row_data = [
            doc['name'],
            ', '.join(doc['markers']),
            ', '.join(doc['missing_values']),
            doc['error'],
        ]
        for col_idx, value in enumerate(row_data, 1):
            cell = docs.cell(row=row_idx, column=col_idx, value=sanitize_excel_string(value))
            cell.alignment = content_alignment
            cell.border = thin_border
    for col_idx, width in enumerate([30, 40, 40, 50], 1):
        docs.column_dimensions[get_column_letter(col_idx)].width = width
    docs.freeze_panes = "A2"

    wb.save(output_path)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate an HTML fill-status report for a folder of .docx templates"
    )
    parser.add_argument('folder', help='Folder containing .docx templates')
    parser.add_argument(
        "--output", "-o",
        type=str,
        default="prefill_report.html",
        help="Output HTML file path (default: prefill_report.html)"
    )
    parser.add_argument(
        "--template", "-t",
        type=str,
        help="Path to Jinja2 HTML template (default: bundled template)"
    )
    parser.add_argument('--prefix',
                        help='Marker prefix (default: saved prefix, then DOC_PREFILL_DEFAULT_PREFIX or REPLACEME-)')
    parser.add_argument(
        "--json",
        action="store_true",
        help="Also output report data as JSON"
    )
    parser.add_argument(
        "--excel",
        action="store_true",
        help="Also output report as Excel file (.xlsx)"
    )

    args = parser.parse_args()

    try:
        config = PrefillConfig.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.prefix is not None and not is_valid_prefix(args.prefix):
        print(f"Error: Invalid prefix: {args.prefix!r}", file=sys.stderr)
        return 1

    if args.template and not Path(args.template).exists():
        print(f"Error: Template file not found: {args.template}", file=sys.stderr)
        return 1

    saved = read_save_file(args.folder)
    if saved.status in (ReadStatus.CORRUPTED, ReadStatus.ERROR):
        print(f"Warning: {saved.error}", file=sys.stderr)
    saved_data = saved.data if saved.status == ReadStatus.OK else None
    prefix = args.prefix or (saved_data.prefix if saved_data is not None else config.default_prefix)

    print(f"Scanning: {args.folder}")
    try:
        scan = scan_folder(args.folder, prefix, config)
    except ScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    markers = merge_markers_with_values(scan, saved_data)
    data = generate_report_data(scan, markers)

    html = render_report(data, args.template)
    output_path = Path(args.output)
    output_path.write_text(html, encoding='utf-8')
    print(f"HTML report saved to: {output_path}")

    if args.json:
        json_path = output_path.with_suffix('.json')
        json_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding='utf-8')
        print(f"JSON data saved to: {json_path}")

    if args.excel:
        excel_path = output_path.with_suffix('.xlsx')
        generate_excel_report(data, str(excel_path))
        print(f"Excel report saved to: {excel_path}")

    stats = data['statistics']
    print("\n--- Summary ---")
    print(f"Documents: {data['document_count']}")
    print(f"Markers: {stats['total']} ({stats['without_values']} without value)")
    print(f"By status: {data['status_counts']}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
