#!/usr/bin/env python3
"""
ABOUTME: Reads and rewrites the main body part (word/document.xml) of DOCX packages
ABOUTME: Classifies unreadable, corrupted, incomplete and malformed packages
"""

import codecs
import io
import os
import re
import stat
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import defusedxml
from defusedxml import ElementTree as ET
from docx import Document
from lxml import etree

from .common import (
    CONTENT_TYPES_PATH,
    DOCUMENT_XML_PATH,
    MIN_DOCX_SIZE,
    NS,
    NUMBERING_XML_PATH,
    STYLES_XML_PATH,
    ZIP_SIGNATURE,
)


# ============================================================
# Errors
# ============================================================

class DocxAccessError(Exception):
    """Base error for DOCX package access. error_type classifies the failure."""

    error_type = 'unknown'

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 file_path: Optional[str] = None):
        super().__init__(message)
        self.cause = cause
        self.file_path = file_path


class DocxReadError(DocxAccessError):
    error_type = 'read_error'


class DocxWriteError(DocxAccessError):
    error_type = 'write_error'


class DocxCorruptedError(DocxAccessError):
    error_type = 'corrupted_file'


class DocxMissingPartError(DocxAccessError):
    error_type = 'missing_file'


class DocxInvalidXmlError(DocxAccessError):
    error_type = 'invalid_xml'


@dataclass
class DocxMetadata:
    has_document: bool
    has_styles: bool
    has_numbering: bool
    entry_count: int


# Well-formedness check for rewritten bodies; never resolves entities or fetches DTDs
_BODY_CHECK_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)

_WHITESPACE_RUN = re.compile(r'\s+')

_W_T = f'{{{NS["w"]}}}t'
_W_SEPARATORS = {f'{{{NS["w"]}}}{tag}' for tag in ('p', 'tab', 'br', 'cr')}

_ZIP_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, ValueError, NotImplementedError)


# ============================================================
# Read
# ============================================================

def read_document_xml(file_path) -> str:
    """
    Read word/document.xml from a DOCX file.

    Args:
        file_path: Path to the .docx file

    Returns:
        The body XML as text

    Raises:
        DocxReadError: File missing or not readable
        DocxCorruptedError: Not a zip archive, or too small to be one
        DocxMissingPartError: word/document.xml absent
        DocxInvalidXmlError: Body empty or without w:document / w:body
    """
    path = Path(file_path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DocxReadError(
            f"File not found or not accessible: {path} ({e.strerror or e})",
            cause=e, file_path=str(path)
        )
    return extract_document_xml(data, str(path))


def extract_document_xml(data: bytes, file_path: Optional[str] = None) -> str:
    """
    Extract word/document.xml from DOCX bytes.

    Args:
        data: Raw file content
        file_path: Optional path, used in error reporting only

    Returns:
        The body XML as text
    """
    if len(data) < MIN_DOCX_SIZE:
        raise DocxCorruptedError(
            f"Invalid .docx file: file too small ({len(data)} bytes)",
            file_path=file_path
        )

    if data[:2] != ZIP_SIGNATURE:
        raise DocxCorruptedError(
            "Invalid .docx file: not a valid ZIP archive (missing PK signature)",
            file_path=file_path
        )

    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            names = zf.namelist()
            if DOCUMENT_XML_PATH not in names:
                available = ', '.join(names) if names else '(none)'
                raise DocxMissingPartError(
                    f"Invalid .docx file: {DOCUMENT_XML_PATH} not found. Available entries: {available}",
                    file_path=file_path
                )
            raw = zf.read(DOCUMENT_XML_PATH)
    except DocxAccessError:
        raise
    except _ZIP_READ_ERRORS as e:
        raise DocxCorruptedError(
            f"Invalid .docx file: cannot open ZIP archive ({e})",
            cause=e, file_path=file_path
        )

    try:
        xml = raw.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise DocxInvalidXmlError(
            f"Invalid .docx file: {DOCUMENT_XML_PATH} is not valid UTF-8",
            cause=e, file_path=file_path
        )

    if not xml.strip():
        raise DocxInvalidXmlError(
            f"Invalid .docx file: {DOCUMENT_XML_PATH} is empty",
            file_path=file_path
        )

    if '<w:document' not in xml or '<w:body' not in xml:
        raise DocxInvalidXmlError(
            f"Invalid .docx file: {DOCUMENT_XML_PATH} has invalid structure (missing w:document or w:body)",
            file_path=file_path
        )

    return xml


# ============================================================
# Write
# ============================================================

def write_document_xml(file_path, xml: str) -> None:
    """
    Replace word/document.xml inside an existing DOCX file.

    Every other entry is rewritten with identical content and entry metadata.
    A UTF-8 byte order mark on the old body part is kept on the new one.
    The new archive goes to a temporary file next to the target and is renamed
    over it, so a failure leaves the target untouched. Call this on a working
    copy, never on a user's original.

    Args:
        file_path: Path to the .docx file to update
        xml: New body XML

    Raises:
        DocxWriteError: Body is not well-formed, or any I/O / zip failure
    """
    path = Path(file_path)
    body = xml.encode('utf-8')

    try:
        etree.fromstring(body, parser=_BODY_CHECK_PARSER)
    except etree.XMLSyntaxError as e:
        raise DocxWriteError(
            f"Refusing to write malformed {DOCUMENT_XML_PATH}: {e}",
            cause=e, file_path=str(path)
        )

    tmp_path = None
    try:
        with zipfile.ZipFile(path, 'r') as zin:
            if DOCUMENT_XML_PATH not in zin.namelist():
                raise DocxWriteError(
                    f"Cannot write {DOCUMENT_XML_PATH}: entry not found in {path}",
                    file_path=str(path)
                )

            fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix='.tmp')
            os.close(fd)
            tmp_path = Path(tmp_name)

            written = set()
            with zipfile.ZipFile(tmp_path, 'w') as zout:
                zout.comment = zin.comment
                for info in zin.infolist():
                    if info.filename in written:
                        continue
                    written.add(info.filename)
                    if info.filename == DOCUMENT_XML_PATH:
                        # Keep a byte order mark the original part carried
                        bom = zin.read(info.filename).startswith(codecs.BOM_UTF8)
                        if bom and not body.startswith(codecs.BOM_UTF8):
                            zout.writestr(info, codecs.BOM_UTF8 + body)
                        else:
                            zout.writestr(info, body)
                    else:
                        zout.writestr(info, zin.read(info.filename))

        os.chmod(tmp_path, stat.S_IMODE(os.stat(path).st_mode))
        os.replace(tmp_path, path)
        tmp_path = None
    except DocxWriteError:
        raise
    except (OSError,) + _ZIP_READ_ERRORS as e:
        raise DocxWriteError(
            f"Failed to write .docx file {path}: {e}",
            cause=e, file_path=str(path)
        )
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


# ============================================================
# Text extraction
# ============================================================

def extract_text_from_xml(xml: str) -> str:
    """
    Extract the visible text of a body XML part.

    All <w:t> contents are concatenated in document order, tabs become
    spaces, whitespace runs collapse to one space and the result is trimmed.
    Paragraph starts, <w:tab/> and <w:br/> count as whitespace so a marker
    at the end of one paragraph does not run into the next.

    Raises:
        DocxInvalidXmlError: The XML cannot be parsed
    """
    try:
        root = ET.fromstring(xml.encode('utf-8'))
    except (ET.ParseError, defusedxml.DefusedXmlException) as e:
        raise DocxInvalidXmlError(
            f"Failed to extract text from {DOCUMENT_XML_PATH}: {e}",
            cause=e
        )

    parts = []
    for elem in root.iter():
        if elem.tag == _W_T:
            if elem.text:
                parts.append(elem.text)
        elif elem.tag in _W_SEPARATORS:
            parts.append(' ')

    text = ''.join(parts).replace('\t', ' ')
    return _WHITESPACE_RUN.sub(' ', text).strip()


def parse_docx_file(file_path) -> str:
    """Read a DOCX file and return its normalized body text."""
    xml = read_document_xml(file_path)
    try:
        return extract_text_from_xml(xml)
    except DocxInvalidXmlError as e:
        e.file_path = str(file_path)
        raise


# ============================================================
# Package checks
# ============================================================

def is_valid_docx_file(file_path) -> bool:
    """Check that a file is a zip archive containing word/document.xml"""
    try:
        data = Path(file_path).read_bytes()
        if len(data) < MIN_DOCX_SIZE or data[:2] != ZIP_SIGNATURE:
            return False
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            return DOCUMENT_XML_PATH in zf.namelist()
    except (OSError,) + _ZIP_READ_ERRORS:
        return False


def get_docx_metadata(file_path) -> DocxMetadata:
    """
    Describe which well-known parts a DOCX package contains.

    Raises:
        DocxReadError: File not readable
        DocxCorruptedError: Not a zip archive
    """
    path = Path(file_path)
    try:
        with zipfile.ZipFile(path) as zf:
            names = set(zf.namelist())
    except OSError as e:
        raise DocxReadError(f"Failed to read .docx metadata: {e}", cause=e, file_path=str(path))
    except _ZIP_READ_ERRORS as e:
        raise DocxCorruptedError(f"Failed to read .docx metadata: {e}", cause=e, file_path=str(path))

    return DocxMetadata(
        has_document=DOCUMENT_XML_PATH in names,
        has_styles=STYLES_XML_PATH in names,
        has_numbering=NUMBERING_XML_PATH in names,
        entry_count=len(names),
    )


def validate_docx_package(file_path) -> List[str]:
    """
    Check package integrity after a rewrite.

    Runs the zip CRC test, checks the parts Word needs, then loads the
    package with python-docx.

    Returns:
        List of problems; empty when the package is intact
    """
    path = Path(file_path)
    problems = []
    try:
        with zipfile.ZipFile(path) as zf:
            bad_entry = zf.testzip()
            if bad_entry is not None:
                problems.append(f"CRC check failed for entry {bad_entry}")
            names = set(zf.namelist())
    except OSError as e:
        return [f"Cannot read package: {e}"]
    except _ZIP_READ_ERRORS as e:
        return [f"Not a valid ZIP archive: {e}"]

    for required in (CONTENT_TYPES_PATH, DOCUMENT_XML_PATH):
        if required not in names:
            problems.append(f"Missing required part {required}")

    if not problems:
        try:
            Document(str(path))
        except Exception as e:
            problems.append(f"python-docx could not load the package: {e}")

    return problems
