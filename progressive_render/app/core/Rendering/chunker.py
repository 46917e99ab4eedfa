# chunker.py
"""
ChunkingEngine: splits a document into standalone, independently renderable
chunks.

Splitting cascades through three strategies and falls through to the next
one when a strategy raises ``StructuralAnalysisError`` or finds fewer than
two blocks:

1. structural-node: direct children of ``<body>`` from a BeautifulSoup tree
2. semantic-tag: balanced top-level semantic elements from a tag scan
3. fixed-size: byte-budget slicing at the nearest closing-tag boundary

Chunk boundaries are offsets into the original text. Every chunk's markup is
the original preamble, the body fragment and the original closing, so the
fragments concatenated in index order reproduce the body exactly.
"""

import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger

from .base import (
    Block,
    Chunk,
    ChunkingStrategy,
    ChunkPlan,
    ChunkSpan,
    Document,
    PriorityMap,
    PriorityTier,
    RenderConfig,
)
from .exceptions import InvalidInputError, StructuralAnalysisError
from .markup import find_safe_boundary, strip_wrapper as _strip, utf8_len, wrap_fragment
from .parsers import PatternStructuralParser, StructuralParser, TreeStructuralParser


def _prefix_chars_within(text: str, start: int, end: int, max_bytes: int) -> int:
    """Number of characters from ``start`` whose UTF-8 size fits in ``max_bytes``."""
    # A character is at least one byte, so max_bytes characters always cover the budget
    window = text[start:min(end, start + max_bytes)]
    encoded = window.encode('utf-8')
    if len(encoded) <= max_bytes:
        return len(window)
    return len(encoded[:max_bytes].decode('utf-8', errors='ignore'))


def slice_fixed(text: str, start: int, end: int, max_bytes: int) -> List[Tuple[int, int]]:
    """
    Slice ``text[start:end]`` into pieces of at most ``max_bytes`` UTF-8 bytes.

    Cuts prefer the end of the last closing tag inside the budget; failing
    that, the cut is moved before an unterminated ``<`` so tags are not split.
    Pure string work, never raises.

    Args:
        text: Full document text
        start: Start offset of the region
        end: End offset of the region
        max_bytes: Byte budget per piece

    Returns:
        List of ``(start, end)`` offsets covering the region
    """
    pieces: List[Tuple[int, int]] = []
    pos = start
    max_bytes = max(1, max_bytes)
    while pos < end:
        if utf8_len(text[pos:min(end, pos + max_bytes + 1)]) <= max_bytes:
            pieces.append((pos, end))
            break
        budget_chars = max(1, _prefix_chars_within(text, pos, end, max_bytes))
        limit = pos + budget_chars
        cut = find_safe_boundary(text, pos, limit)
        if cut is None or cut - pos < budget_chars // 2:
            cut = limit
            lt = text.rfind('<', pos, limit)
            if lt > pos and text.find('>', lt, limit) == -1:
                cut = lt
        pieces.append((pos, cut))
        pos = cut
    return pieces


class ChunkingEngine:
    """Plans and materializes document chunks."""

    def __init__(self,
                 config: Optional[RenderConfig] = None,
                 tree_parser: Optional[StructuralParser] = None,
                 pattern_parser: Optional[StructuralParser] = None):
        """
        Initialize the chunking engine.

        Args:
            config: Render configuration (chunk size, overflow tolerance, parse limits)
            tree_parser: Parser for the structural-node strategy
            pattern_parser: Parser for the semantic-tag strategy
        """
        self.config = config or RenderConfig()
        self.tree_parser = tree_parser or TreeStructuralParser()
        self.pattern_parser = pattern_parser or PatternStructuralParser()

    # ------------------------------------------------------------------ planning

    def plan(self, document: Document, target_chunk_byte_size: Optional[int] = None,
             **options) -> ChunkPlan:
        """
        Compute chunk boundaries without materializing chunk markup.

        Args:
            document: Document to split
            target_chunk_byte_size: Target chunk size in bytes (defaults to config)
            **options: ``overflow_tolerance`` and ``tree_parse_max_bytes`` overrides

        Returns:
            ChunkPlan with ordered spans

        Raises:
            InvalidInputError: If the target size is not a positive integer
        """
        target = target_chunk_byte_size if target_chunk_byte_size is not None else self.config.target_chunk_byte_size
        if isinstance(target, bool) or not isinstance(target, int) or target <= 0:
            raise InvalidInputError(f"target_chunk_byte_size must be a positive integer, got {target}")

        if document.byte_length < target:
            return ChunkPlan([self._whole_span(document)], ChunkingStrategy.SINGLE)

        tolerance = options.get('overflow_tolerance', self.config.overflow_tolerance)
        tree_limit = options.get('tree_parse_max_bytes', self.config.tree_parse_max_bytes)
        overflow_limit = int(target * (1 + tolerance))

        start_time = time.time()
        for strategy, parser in self._cascade(document, tree_limit):
            try:
                blocks = parser.parse(document)
            except StructuralAnalysisError as e:
                logger.debug(f"{strategy.value} strategy unavailable: {e.message}")
                continue
            if len(blocks) < 2:
                logger.debug(f"{strategy.value} strategy found {len(blocks)} block(s), falling through")
                continue
            spans = self._group(document.text, blocks, target, overflow_limit)
            plan = ChunkPlan(spans, strategy)
            break
        else:
            spans = [
                ChunkSpan(s, e, utf8_len(document.text[s:e]))
                for s, e in slice_fixed(document.text, document.body_start, document.body_end, target)
            ]
            plan = ChunkPlan(spans or [self._whole_span(document)], ChunkingStrategy.FIXED_SIZE)

        logger.debug(
            f"Planned {plan.total} chunks with {plan.strategy.value} strategy "
            f"(target={target}, document={document.byte_length} bytes) "
            f"in {(time.time() - start_time) * 1000:.1f}ms"
        )
        return plan

    def _cascade(self, document: Document, tree_limit: int):
        if document.byte_length <= tree_limit:
            yield ChunkingStrategy.STRUCTURAL_NODE, self.tree_parser
        yield ChunkingStrategy.SEMANTIC_TAG, self.pattern_parser

    def _whole_span(self, document: Document) -> ChunkSpan:
        return ChunkSpan(document.body_start, document.body_end, document.body_byte_length)

    def _group(self, text: str, blocks: List[Block], target: int, overflow_limit: int) -> List[ChunkSpan]:
        """Greedily group blocks into spans; oversized blocks are sliced on their own."""
        spans: List[ChunkSpan] = []
        group: List[Block] = []
        group_bytes = 0

        def flush():
            nonlocal group, group_bytes
            if group:
                spans.append(ChunkSpan(group[0].start, group[-1].end, group_bytes, tuple(group)))
            group = []
            group_bytes = 0

        for block in blocks:
            size = utf8_len(text[block.start:block.end])
            if size > overflow_limit:
                flush()
                for s, e in slice_fixed(text, block.start, block.end, target):
                    anchor = (block,) if s == block.start else ()
                    spans.append(ChunkSpan(s, e, utf8_len(text[s:e]), anchor))
                continue
            if group and group_bytes + size > target:
                flush()
            group.append(block)
            group_bytes += size
        flush()
        return spans

    # ------------------------------------------------------------ materializing

    def iter_chunks(self, document: Document, plan: ChunkPlan,
                    priority_map: Optional[PriorityMap] = None) -> Iterator[Chunk]:
        """
        Lazily materialize the chunks of a plan in index order.

        Args:
            document: Document the plan was computed for
            plan: Chunk plan
            priority_map: Optional priority map used to annotate chunks

        Yields:
            Chunk objects
        """
        for index in range(plan.total):
            yield self.materialize(document, plan, index, priority_map)

    def materialize(self, document: Document, plan: ChunkPlan, index: int,
                    priority_map: Optional[PriorityMap] = None,
                    markup: Optional[str] = None) -> Chunk:
        """
        Build a single chunk of a plan.

        Args:
            document: Document the plan was computed for
            plan: Chunk plan
            index: Chunk index
            priority_map: Optional priority map used to annotate the chunk
            markup: Previously produced markup for this chunk (rebuilt from the document when None)

        Returns:
            Chunk
        """
        span = plan.spans[index]
        total = plan.total
        if markup is None:
            if plan.strategy is ChunkingStrategy.SINGLE:
                markup = document.text
            else:
                markup = wrap_fragment(document.preamble, document.text[span.start:span.end], document.closing)
        # Staged or rebuilt, markup is preamble + fragment + closing
        closing_length = len(document.text) - document.body_end
        return Chunk(
            index=index,
            total=total,
            byte_size=span.byte_size,
            is_first=index == 0,
            is_last=index == total - 1,
            markup=markup,
            start=span.start,
            end=span.end,
            strategy=plan.strategy,
            priority=self._priority(span, priority_map),
            fragment_start=document.body_start,
            fragment_end=len(markup) - closing_length,
        )

    def _priority(self, span: ChunkSpan, priority_map: Optional[PriorityMap]) -> PriorityTier:
        if priority_map is None:
            return PriorityTier.HIGH
        tiers = [priority_map.tier_for(b.tag, b.attrs) for b in span.blocks if b.tag]
        if not tiers:
            tiers = [r.tier for r in priority_map.regions_in(span.start, span.end)]
        if not tiers:
            return PriorityTier.HIGH
        return min(tiers, key=lambda t: t.rank)

    # ------------------------------------------------------------------- helpers

    def split(self, document: Document, target_chunk_byte_size: Optional[int] = None,
              **options: Any) -> List[Chunk]:
        """
        Split a document into chunks.

        Args:
            document: Document to split
            target_chunk_byte_size: Target chunk size in bytes (defaults to config)
            **options: ``priority_map``, ``overflow_tolerance``, ``tree_parse_max_bytes``

        Returns:
            Ordered list of Chunk objects
        """
        priority_map = options.pop('priority_map', None)
        plan = self.plan(document, target_chunk_byte_size, **options)
        return list(self.iter_chunks(document, plan, priority_map))

    @staticmethod
    def strip_wrapper(chunk: Chunk, document: Document) -> str:
        """Return the body fragment of a chunk by removing the wrapper markup."""
        return _strip(chunk.markup, document.preamble, document.closing)

    @staticmethod
    def reconstruct_body(chunks: List[Chunk], document: Document) -> str:
        """Concatenate chunk fragments in index order."""
        ordered = sorted(chunks, key=lambda c: c.index)
        return ''.join(ChunkingEngine.strip_wrapper(c, document) for c in ordered)

    def describe(self, plan: ChunkPlan) -> Dict[str, Any]:
        sizes = [s.byte_size for s in plan.spans]
        return {
            'strategy': plan.strategy.value,
            'total_chunks': plan.total,
            'min_bytes': min(sizes) if sizes else 0,
            'max_bytes': max(sizes) if sizes else 0,
        }
