# markup.py
"""
Low-level markup helpers shared by the analyzer, the parsers and the chunking
engine: document skeleton detection, a forgiving tag scanner, attribute
parsing and safe slicing boundaries.

Everything here is pure string work so it can be used as the last-resort path
when tree parsing is unavailable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

# Attribute text of an open tag; quoted values may contain '>'
_ATTRS = r'(?:[^>"\']|"[^"]*"|\'[^\']*\')*'

DOCTYPE_RE = re.compile(r'<!DOCTYPE[^>]*>', re.IGNORECASE)
HEAD_RE = re.compile(r'<head\b' + _ATTRS + r'>.*?</head\s*>', re.IGNORECASE | re.DOTALL)
BODY_OPEN_RE = re.compile(r'<body\b' + _ATTRS + r'>', re.IGNORECASE)
BODY_CLOSE_RE = re.compile(r'</body\s*>', re.IGNORECASE)
HTML_OPEN_RE = re.compile(r'<html\b', re.IGNORECASE)
HTML_CLOSE_RE = re.compile(r'</html\s*>', re.IGNORECASE)

# Comments, doctype/processing instructions and tags. Quoted attribute values may contain '>'.
TOKEN_RE = re.compile(
    r'<!--.*?-->'
    r'|<![^>]*>'
    r'|<\?[^>]*>'
    r'|<(?P<close>/?)(?P<name>[a-zA-Z][a-zA-Z0-9:_-]*)'
    r'(?P<attrs>' + _ATTRS + r'?)(?P<selfclose>/?)>',
    re.DOTALL,
)
ATTR_RE = re.compile(r'([^\s=/>"\']+)(?:\s*=\s*("[^"]*"|\'[^\']*\'|[^\s>]+))?')
CLOSE_TAG_RE = re.compile(r'</[a-zA-Z][a-zA-Z0-9:_-]*\s*>')

VOID_ELEMENTS = frozenset({
    'area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input', 'link',
    'meta', 'param', 'source', 'track', 'wbr',
})
RAW_TEXT_ELEMENTS = frozenset({'script', 'style', 'textarea', 'title'})


@dataclass(frozen=True)
class DocumentStructure:
    """Offsets of the document skeleton detected by pattern matching."""
    doctype: Optional[str]
    head_start: Optional[int]
    head_end: Optional[int]
    body_start: int
    body_end: int
    has_body: bool


@dataclass(frozen=True)
class TagToken:
    """A single tag found by :func:`iter_tags`."""
    name: str
    kind: str  # 'open' | 'close' | 'selfclose'
    attrs: str
    start: int
    end: int


def utf8_len(text: str) -> int:
    """Return the UTF-8 encoded length of ``text`` in bytes."""
    return len(text.encode('utf-8'))


def detect_structure(text: str) -> DocumentStructure:
    """
    Locate doctype, head and body boundaries of a markup document.

    ``body_start`` is the offset just after the ``<body ...>`` open tag and
    ``body_end`` the offset of the last ``</body>``. Documents without a body
    element are treated as a bare fragment spanning the whole text.

    Args:
        text: Raw markup

    Returns:
        DocumentStructure with the detected offsets
    """
    doctype_match = DOCTYPE_RE.search(text)
    doctype = doctype_match.group(0) if doctype_match else None

    head_match = HEAD_RE.search(text)
    head_start = head_match.start() if head_match else None
    head_end = head_match.end() if head_match else None

    search_from = head_end or 0
    body_open = BODY_OPEN_RE.search(text, search_from)
    if body_open is None and search_from:
        body_open = BODY_OPEN_RE.search(text)
    if body_open is None:
        return DocumentStructure(doctype, head_start, head_end, 0, len(text), False)

    body_close = None
    for body_close in BODY_CLOSE_RE.finditer(text, body_open.end()):
        pass
    body_end = body_close.start() if body_close is not None else _implicit_body_end(text, body_open.end())
    return DocumentStructure(doctype, head_start, head_end, body_open.end(), body_end, True)


def _implicit_body_end(text: str, body_start: int) -> int:
    # Missing </body>: stop before a trailing </html> if there is one.
    html_close = None
    for html_close in HTML_CLOSE_RE.finditer(text, body_start):
        pass
    return html_close.start() if html_close is not None else len(text)


def has_html_structure(text: str) -> bool:
    """Return True when the markup has html and body open/close tags."""
    return bool(
        HTML_OPEN_RE.search(text)
        and HTML_CLOSE_RE.search(text)
        and BODY_OPEN_RE.search(text)
        and BODY_CLOSE_RE.search(text)
    )


def parse_attrs(attrs: str) -> Dict[str, str]:
    """Parse a raw attribute string into a lower-cased name -> value dict."""
    parsed: Dict[str, str] = {}
    for match in ATTR_RE.finditer(attrs or ''):
        name = match.group(1).lower()
        value = match.group(2) or ''
        if len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
            value = value[1:-1]
        parsed.setdefault(name, value)
    return parsed


def iter_tags(text: str, start: int = 0, end: Optional[int] = None) -> Iterator[TagToken]:
    """
    Scan tags between ``start`` and ``end``.

    Comments, doctypes and processing instructions are skipped, and the
    content of raw-text elements (script, style, ...) is not scanned.

    Yields:
        TagToken for every element tag in document order
    """
    end = len(text) if end is None else end
    pos = start
    while pos < end:
        match = TOKEN_RE.search(text, pos, end)
        if match is None:
            return
        pos = match.end()
        name = match.group('name')
        if name is None:
            continue
        name = name.lower()
        if match.group('close'):
            kind = 'close'
        elif match.group('selfclose') or name in VOID_ELEMENTS:
            kind = 'selfclose'
        else:
            kind = 'open'
        yield TagToken(name, kind, match.group('attrs') or '', match.start(), match.end())
        if kind == 'open' and name in RAW_TEXT_ELEMENTS:
            closer = re.compile(rf'</{name}\s*>', re.IGNORECASE).search(text, pos, end)
            if closer is None:
                return
            yield TagToken(name, 'close', '', closer.start(), closer.end())
            pos = closer.end()


def find_safe_boundary(text: str, lower: int, upper: int) -> Optional[int]:
    """
    Find the end offset of the last closing tag fully inside ``(lower, upper]``.

    Args:
        text: Text to search
        lower: Exclusive lower bound for the returned offset
        upper: Inclusive upper bound for the returned offset

    Returns:
        Offset just after a closing tag, or None when there is none
    """
    best = None
    for match in CLOSE_TAG_RE.finditer(text, max(lower, 0), upper):
        if match.end() > lower:
            best = match.end()
    return best


def wrap_fragment(preamble: str, fragment: str, closing: str) -> str:
    """Rebuild standalone markup around a body fragment."""
    return f"{preamble}{fragment}{closing}"


def strip_wrapper(markup: str, preamble: str, closing: str) -> str:
    """
    Remove a preamble/closing pair previously added by :func:`wrap_fragment`.

    Raises:
        ValueError: If ``markup`` is not wrapped by the given preamble/closing
    """
    if not markup.startswith(preamble) or not markup.endswith(closing):
        raise ValueError("Markup does not carry the expected wrapper")
    return markup[len(preamble):len(markup) - len(closing)]
