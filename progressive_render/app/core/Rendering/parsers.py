# parsers.py
"""
Structural parsers that locate block boundaries inside a document body.

Two implementations share the ``StructuralParser`` interface:

- ``TreeStructuralParser`` builds a BeautifulSoup tree (``html.parser``
  backend) and uses the source positions it records to find the direct
  children of ``<body>``.
- ``PatternStructuralParser`` scans tags with regular expressions and finds
  balanced top-level semantic elements. It works on documents of any size.

Both return ``Block`` spans expressed as offsets into the original document
text, so slicing never re-serializes markup.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from loguru import logger

from .base import Block, Document
from .exceptions import StructuralAnalysisError
from .markup import iter_tags, parse_attrs

SEMANTIC_TAGS = frozenset({
    'section', 'article', 'div', 'header', 'footer', 'nav', 'aside', 'main',
})

# Elements whose end tag may be omitted never block top-level detection
OPTIONAL_END_TAGS = frozenset({
    'p', 'li', 'dt', 'dd', 'option', 'optgroup', 'tr', 'td', 'th', 'thead',
    'tbody', 'tfoot', 'colgroup', 'rp', 'rt',
})

ElementInfo = Tuple[str, Dict[str, Any], int]


class StructuralParser(ABC):
    """Interface for parsers that split a document body into blocks."""

    name: str = "base"

    @abstractmethod
    def parse(self, document: Document) -> List[Block]:
        """
        Split the document body into contiguous blocks.

        The returned blocks cover ``[body_start, body_end)`` without gaps or
        overlaps, in document order.

        Raises:
            StructuralAnalysisError: If the body cannot be split
        """

    @abstractmethod
    def iter_elements(self, document: Document) -> Iterator[ElementInfo]:
        """Yield ``(tag, attrs, offset)`` for every element in the document."""


def _line_offsets(text: str) -> List[int]:
    offsets = [0]
    pos = text.find('\n')
    while pos != -1:
        offsets.append(pos + 1)
        pos = text.find('\n', pos + 1)
    return offsets


def _cover_body(document: Document, anchors: List[Tuple[int, str, Dict[str, Any]]]) -> List[Block]:
    """Turn sorted block start anchors into gap-free blocks over the body."""
    blocks: List[Block] = []
    for i, (start, tag, attrs) in enumerate(anchors):
        block_start = document.body_start if i == 0 else start
        block_end = anchors[i + 1][0] if i + 1 < len(anchors) else document.body_end
        if block_end > block_start:
            blocks.append(Block(block_start, block_end, tag, attrs))
    return blocks


class TreeStructuralParser(StructuralParser):
    """BeautifulSoup-backed parser using recorded source positions."""

    name = "tree"

    def __init__(self, features: str = 'html.parser', reuse_tree: bool = False):
        """
        Args:
            features: BeautifulSoup parser backend
            reuse_tree: Keep the tree of the last document so analysis and
                chunking of one render share a single parse; call ``release``
                once both are done
        """
        self.features = features
        self.reuse_tree = reuse_tree
        self._last: Optional[Tuple[Document, BeautifulSoup]] = None

    def _soup(self, document: Document) -> BeautifulSoup:
        if self._last is not None and self._last[0] is document:
            return self._last[1]
        try:
            soup = BeautifulSoup(document.text, self.features)
        except Exception as e:
            raise StructuralAnalysisError(f"Tree parse failed: {e}", parser=self.name) from e
        if self.reuse_tree:
            self._last = (document, soup)
        return soup

    def release(self) -> None:
        """Drop the tree kept for the last parsed document."""
        self._last = None

    def _offset(self, line_offsets: List[int], tag: Tag) -> int:
        line = getattr(tag, 'sourceline', None)
        column = getattr(tag, 'sourcepos', None)
        if line is None or column is None or line < 1 or line > len(line_offsets):
            return -1
        return line_offsets[line - 1] + column

    def parse(self, document: Document) -> List[Block]:
        if not document.has_body:
            raise StructuralAnalysisError("Document has no body element", parser=self.name)

        soup = self._soup(document)
        body = soup.body
        if body is None:
            raise StructuralAnalysisError("Parser found no body element", parser=self.name)

        text = document.text
        line_offsets = _line_offsets(text)
        anchors: List[Tuple[int, str, Dict[str, Any]]] = []
        last = document.body_start - 1
        for child in body.children:
            if not isinstance(child, Tag):
                continue
            offset = self._offset(line_offsets, child)
            if offset < document.body_start or offset >= document.body_end:
                continue
            if offset <= last or text[offset] != '<':
                raise StructuralAnalysisError(
                    "Source positions do not match document text",
                    parser=self.name, offset=offset, tag=child.name,
                )
            anchors.append((offset, child.name, dict(child.attrs)))
            last = offset

        if not anchors:
            raise StructuralAnalysisError("Body has no element children", parser=self.name)

        logger.debug(f"Tree parser found {len(anchors)} top-level body elements")
        return _cover_body(document, anchors)

    def iter_elements(self, document: Document) -> Iterator[ElementInfo]:
        soup = self._soup(document)
        line_offsets = _line_offsets(document.text)
        for tag in soup.find_all(True):
            yield tag.name, dict(tag.attrs), self._offset(line_offsets, tag)


class PatternStructuralParser(StructuralParser):
    """Regex tag scanner that finds balanced top-level semantic elements."""

    name = "pattern"

    def __init__(self, semantic_tags: frozenset = SEMANTIC_TAGS):
        self.semantic_tags = semantic_tags

    def parse(self, document: Document) -> List[Block]:
        text = document.text
        spans: List[Tuple[int, int, str, Dict[str, Any]]] = []
        open_stack: List[str] = []
        current = None
        current_start = 0
        current_attrs: Dict[str, Any] = {}
        depth = 0

        for token in iter_tags(text, document.body_start, document.body_end):
            if current is not None:
                # Inside a semantic block: only track same-name nesting
                if token.name != current:
                    continue
                if token.kind == 'open':
                    depth += 1
                elif token.kind == 'close':
                    depth -= 1
                    if depth == 0:
                        spans.append((current_start, token.end, current, current_attrs))
                        current = None
                continue

            if token.kind == 'open':
                if not open_stack and token.name in self.semantic_tags:
                    current = token.name
                    current_start = token.start
                    current_attrs = parse_attrs(token.attrs)
                    depth = 1
                elif token.name not in OPTIONAL_END_TAGS:
                    open_stack.append(token.name)
            elif token.kind == 'close' and token.name in open_stack:
                # Pop to the matching element, tolerating unclosed children
                while open_stack:
                    if open_stack.pop() == token.name:
                        break

        if current is not None:
            spans.append((current_start, document.body_end, current, current_attrs))
        if not spans:
            raise StructuralAnalysisError("No top-level semantic elements found", parser=self.name)

        # Interstitial content belongs to the following block; trailing content to the last one
        blocks: List[Block] = []
        cursor = document.body_start
        for i, (_, end, tag, attrs) in enumerate(spans):
            block_end = document.body_end if i == len(spans) - 1 else end
            blocks.append(Block(cursor, block_end, tag, attrs))
            cursor = block_end

        logger.debug(f"Pattern parser found {len(blocks)} top-level semantic elements")
        return blocks

    def iter_elements(self, document: Document) -> Iterator[ElementInfo]:
        for token in iter_tags(document.text):
            if token.kind != 'close':
                yield token.name, parse_attrs(token.attrs), token.start

