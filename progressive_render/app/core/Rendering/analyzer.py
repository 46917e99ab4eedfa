# analyzer.py
"""
Structural analysis of documents into visual priority tiers.

The analyzer maps regions of a document (headers, navigation, hero banners,
main content, footers, sidebars) to ``critical``, ``high`` or ``low``
priority. The resulting ``PriorityMap`` is computed once per document and is
read-only afterwards.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .base import Document, PriorityMap, PriorityRegion, PriorityRule, PriorityTier
from .exceptions import RenderingError
from .parsers import PatternStructuralParser, StructuralParser, TreeStructuralParser

DEFAULT_CRITICAL_SELECTORS: Tuple[str, ...] = (
    'header', 'nav', '[role=banner]', '[role=navigation]',
    '.hero', '.navbar', '.masthead', '.banner',
)
DEFAULT_HIGH_SELECTORS: Tuple[str, ...] = (
    'main', 'article', '[role=main]', '.content', '.primary', '#main', '#content',
)
DEFAULT_LOW_SELECTORS: Tuple[str, ...] = (
    'footer', 'aside', '[role=contentinfo]', '[role=complementary]',
    '.sidebar', '.footer', '.secondary', '.widget',
)

# Caller-flagged selectors outrank every default rule
CALLER_SPECIFICITY_BOOST = 10_000


def build_rules(critical_selectors: Optional[Iterable[str]] = None) -> Tuple[PriorityRule, ...]:
    """
    Build the ordered rule list.

    Rules are sorted by specificity (descending), then declaration order.
    Caller selectors are always placed ahead of the defaults.

    Args:
        critical_selectors: Extra selectors to treat as critical

    Returns:
        Ordered tuple of PriorityRule

    Raises:
        ConfigurationError: If a caller selector is malformed
    """
    rules: List[PriorityRule] = []
    order = 0
    for selector in critical_selectors or ():
        rule = PriorityRule.from_selector(selector, PriorityTier.CRITICAL, order)
        rules.append(PriorityRule(rule.selector, rule.tier,
                                  rule.specificity + CALLER_SPECIFICITY_BOOST, order, rule.compiled))
        order += 1
    for tier, selectors in ((PriorityTier.CRITICAL, DEFAULT_CRITICAL_SELECTORS),
                            (PriorityTier.HIGH, DEFAULT_HIGH_SELECTORS),
                            (PriorityTier.LOW, DEFAULT_LOW_SELECTORS)):
        for selector in selectors:
            rules.append(PriorityRule.from_selector(selector, tier, order))
            order += 1
    rules.sort(key=lambda r: (-r.specificity, r.order))
    return tuple(rules)


class StructuralAnalyzer:
    """Assigns priority tiers to document regions."""

    def __init__(self,
                 critical_selectors: Optional[Sequence[str]] = None,
                 tree_parse_max_bytes: int = 10 * 1024 * 1024,
                 tree_parser: Optional[StructuralParser] = None,
                 pattern_parser: Optional[StructuralParser] = None):
        """
        Initialize the analyzer.

        Args:
            critical_selectors: Caller-flagged selectors treated as critical
            tree_parse_max_bytes: Largest document enumerated with the tree parser
            tree_parser: Parser used for documents up to the size limit
            pattern_parser: Parser used for larger documents or as fallback
        """
        self.rules = build_rules(critical_selectors)
        self.tree_parse_max_bytes = tree_parse_max_bytes
        self.tree_parser = tree_parser or TreeStructuralParser()
        self.pattern_parser = pattern_parser or PatternStructuralParser()

    def analyze(self, document: Document) -> PriorityMap:
        """
        Build the priority map of a document.

        Never raises: a parse failure yields an empty map, where every region
        defaults to ``high``.

        Args:
            document: Document to analyze

        Returns:
            PriorityMap for the document
        """
        parser = self.tree_parser if document.byte_length <= self.tree_parse_max_bytes else self.pattern_parser
        try:
            regions = self._collect_regions(parser, document)
        except (RenderingError, ValueError, AttributeError, TypeError) as e:
            logger.warning(f"Structural analysis failed with {parser.name} parser, using empty priority map: {e}")
            return PriorityMap.empty()

        priority_map = PriorityMap(rules=self.rules, regions=tuple(regions))
        logger.debug(
            f"Analyzed document ({document.byte_length} bytes) with {parser.name} parser: "
            f"{len(regions)} prioritized regions"
        )
        return priority_map

    def _collect_regions(self, parser: StructuralParser, document: Document) -> List[PriorityRegion]:
        regions: List[PriorityRegion] = []
        body_only = document.has_body
        for tag, attrs, offset in parser.iter_elements(document):
            if body_only and offset >= 0 and not (document.body_start <= offset < document.body_end):
                continue
            rule = self._match(tag, attrs)
            if rule is not None:
                regions.append(PriorityRegion(tag, rule.selector, rule.tier, offset))
        return regions

    def _match(self, tag, attrs) -> Optional[PriorityRule]:
        for rule in self.rules:
            if rule.matches(tag, attrs):
                return rule
        return None


def analyze(document: Document, critical_selectors: Optional[Sequence[str]] = None) -> PriorityMap:
    """Convenience wrapper around ``StructuralAnalyzer.analyze``."""
    return StructuralAnalyzer(critical_selectors=critical_selectors).analyze(document)
