#!/usr/bin/env python3
"""
ABOUTME: XML text helpers for marker replacement in document bodies
ABOUTME: Sanitizes control characters and escapes values and literal text
"""

# Characters escaped when a replacement value is inserted into <w:t> content
_XML_ESCAPES = {
    '&': '&amp;',
    '<': '&lt;',
    '>': '&gt;',
    '"': '&quot;',
    "'": '&apos;',
}

# Markup-significant characters only (used for literal text we search for)
_XML_TEXT_ESCAPES = {
    '&': '&amp;',
    '<': '&lt;',
    '>': '&gt;',
}


def sanitize_xml_string(text: str) -> str:
    """
    Remove control characters that are illegal in XML 1.0.

    XML 1.0 allows: #x9 (tab), #xA (LF), #xD (CR), and #x20-#xD7FF, #xE000-#xFFFD, #x10000-#x10FFFF
    This function removes all other control characters (0x00-0x08, 0x0B, 0x0C, 0x0E-0x1F).

    Args:
        text: Text that may contain control characters

    Returns:
        Sanitized text safe for XML. Returns input unchanged if not a non-empty string.
    """
    if not text or not isinstance(text, str):
        return text
    # Keep: \t (0x09), \n (0x0A), \r (0x0D)
    illegal_chars = ''.join(
        chr(c) for c in range(0x20)
        if c not in (0x09, 0x0A, 0x0D)
    )
    return text.translate(str.maketrans('', '', illegal_chars))


def escape_xml_value(text: str) -> str:
    """
    Escape a replacement value for insertion into XML character content.

    All five predefined entities are escaped (& < > " '). Illegal control
    characters are removed first.

    Args:
        text: Raw replacement value

    Returns:
        XML-safe text
    """
    if not text:
        return ''
    text = sanitize_xml_string(text)
    return ''.join(_XML_ESCAPES.get(ch, ch) for ch in text)


def escape_xml_text(text: str) -> str:
    """Escape only & < > (how Word serializes literal text in <w:t>)."""
    if not text:
        return ''
    return ''.join(_XML_TEXT_ESCAPES.get(ch, ch) for ch in text)
