# base.py
"""
Core data model for the progressive rendering system.

Defines the immutable document and chunk types, the priority annotation model
used by the structural analyzer, render statistics and results, and the
validated ``RenderConfig``.
"""

import hashlib
import json
import os
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from .exceptions import (
    ConfigurationError,
    DiskStagingError,
    InvalidInputError,
    RenderCancelledError,
    RenderingError,
    RenderTimeoutError,
)
from .markup import detect_structure, utf8_len


class RenderStrategy(Enum):
    """How a whole document is rendered."""
    DIRECT = "direct"
    CHUNKED_IN_MEMORY = "chunked_in_memory"
    CHUNKED_ON_DISK = "chunked_on_disk"


class RenderMode(Enum):
    """Delivery mode of a render invocation."""
    FULL = "full"
    STREAMING = "streaming"


class ChunkingStrategy(Enum):
    """Splitting strategy that produced a chunk plan."""
    SINGLE = "single"
    STRUCTURAL_NODE = "structural_node"
    SEMANTIC_TAG = "semantic_tag"
    FIXED_SIZE = "fixed_size"


class PriorityTier(Enum):
    """Visual priority of a document region."""
    CRITICAL = "critical"
    HIGH = "high"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Lower rank means more important."""
        return _TIER_RANKS[self]


_TIER_RANKS = {PriorityTier.CRITICAL: 0, PriorityTier.HIGH: 1, PriorityTier.LOW: 2}


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Document:
    """An immutable markup document with its detected skeleton offsets."""
    text: str
    byte_length: int
    doctype: Optional[str] = None
    head_start: Optional[int] = None
    head_end: Optional[int] = None
    body_start: int = 0
    body_end: int = 0
    has_body: bool = False

    @classmethod
    def from_text(cls, text: str) -> "Document":
        """
        Build a Document from raw markup.

        Args:
            text: Markup text

        Returns:
            Document instance

        Raises:
            InvalidInputError: If text is not a string
        """
        if not isinstance(text, str):
            raise InvalidInputError(
                f"Document must be a string, got {type(text).__name__}",
                details={'type': type(text).__name__},
            )
        structure = detect_structure(text)
        return cls(
            text=text,
            byte_length=utf8_len(text),
            doctype=structure.doctype,
            head_start=structure.head_start,
            head_end=structure.head_end,
            body_start=structure.body_start,
            body_end=structure.body_end,
            has_body=structure.has_body,
        )

    @property
    def preamble(self) -> str:
        return self.text[:self.body_start]

    @property
    def closing(self) -> str:
        return self.text[self.body_end:]

    @property
    def body(self) -> str:
        return self.text[self.body_start:self.body_end]

    @property
    def body_byte_length(self) -> int:
        return utf8_len(self.body)

    def __repr__(self) -> str:
        return (f"Document(byte_length={self.byte_length}, has_body={self.has_body}, "
                f"body=[{self.body_start}:{self.body_end}])")


# ---------------------------------------------------------------------------
# Priority annotation
# ---------------------------------------------------------------------------

_SELECTOR_TAG_RE = re.compile(r'^(\*|[a-zA-Z][a-zA-Z0-9_-]*)')
_SELECTOR_PART_RE = re.compile(
    r'\.(?P<cls>[a-zA-Z0-9_-]+)'
    r'|#(?P<id>[a-zA-Z0-9_-]+)'
    r'|\[\s*(?P<attr>[a-zA-Z0-9_:-]+)\s*(?:=\s*(?P<value>"[^"]*"|\'[^\']*\'|[^\]\s]+))?\s*\]'
)


@dataclass(frozen=True)
class Selector:
    """Compiled form of a simple selector such as ``section.hero[role=banner]``."""
    source: str
    tag: Optional[str] = None
    ids: Tuple[str, ...] = ()
    classes: Tuple[str, ...] = ()
    attributes: Tuple[Tuple[str, Optional[str]], ...] = ()

    @classmethod
    def parse(cls, selector: str) -> "Selector":
        """
        Parse a selector of the supported mini-language.

        Raises:
            ConfigurationError: If the selector is empty or malformed
        """
        source = (selector or '').strip()
        if not source:
            raise ConfigurationError("Selector must be a non-empty string")

        tag = None
        pos = 0
        tag_match = _SELECTOR_TAG_RE.match(source)
        if tag_match:
            tag = None if tag_match.group(1) == '*' else tag_match.group(1).lower()
            pos = tag_match.end()

        ids: List[str] = []
        classes: List[str] = []
        attributes: List[Tuple[str, Optional[str]]] = []
        while pos < len(source):
            part = _SELECTOR_PART_RE.match(source, pos)
            if part is None:
                raise ConfigurationError(
                    f"Unsupported selector syntax: {selector!r}",
                    details={'selector': selector, 'position': pos},
                )
            if part.group('cls'):
                classes.append(part.group('cls'))
            elif part.group('id'):
                ids.append(part.group('id'))
            else:
                value = part.group('value')
                if value is not None and len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
                    value = value[1:-1]
                attributes.append((part.group('attr').lower(), value))
            pos = part.end()

        if tag is None and not (ids or classes or attributes) and source != '*':
            raise ConfigurationError(f"Unsupported selector syntax: {selector!r}")
        return cls(source, tag, tuple(ids), tuple(classes), tuple(attributes))

    @property
    def specificity(self) -> int:
        """100 per id, 10 per class or attribute, 1 per tag."""
        return 100 * len(self.ids) + 10 * (len(self.classes) + len(self.attributes)) + (1 if self.tag else 0)

    def matches(self, tag: str, attrs: Mapping[str, Any]) -> bool:
        """Check whether an element with ``tag`` and ``attrs`` matches."""
        if self.tag and self.tag != (tag or '').lower():
            return False
        if self.ids and any(_attr_text(attrs.get('id')) != ident for ident in self.ids):
            return False
        if self.classes:
            element_classes = set(_attr_text(attrs.get('class')).split())
            if not all(c in element_classes for c in self.classes):
                return False
        for name, expected in self.attributes:
            if name not in attrs:
                return False
            if expected is not None and _attr_text(attrs.get(name)).strip() != expected:
                return False
        return True


def _attr_text(value: Any) -> str:
    # bs4 returns multi-valued attributes (class, rel) as lists
    if value is None:
        return ''
    if isinstance(value, (list, tuple)):
        return ' '.join(str(v) for v in value)
    return str(value)


@dataclass(frozen=True)
class PriorityRule:
    """A selector mapped to a priority tier."""
    selector: str
    tier: PriorityTier
    specificity: int
    order: int = 0
    compiled: Selector = field(default=None, compare=False, repr=False)

    @classmethod
    def from_selector(cls, selector: str, tier: PriorityTier, order: int = 0) -> "PriorityRule":
        compiled = Selector.parse(selector)
        return cls(selector, tier, compiled.specificity, order, compiled)

    def matches(self, tag: str, attrs: Mapping[str, Any]) -> bool:
        return self.compiled.matches(tag, attrs)


@dataclass(frozen=True)
class PriorityRegion:
    """A document element annotated with the tier of the rule it matched."""
    tag: str
    selector: str
    tier: PriorityTier
    offset: int


@dataclass(frozen=True)
class PriorityMap:
    """Ordered priority rules plus the regions detected in one document."""
    rules: Tuple[PriorityRule, ...] = ()
    regions: Tuple[PriorityRegion, ...] = ()

    @classmethod
    def empty(cls) -> "PriorityMap":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.regions

    def tier_for(self, tag: str, attrs: Optional[Mapping[str, Any]] = None) -> PriorityTier:
        """Return the tier of the first matching rule, ``high`` when none match."""
        attrs = attrs or {}
        for rule in self.rules:
            if rule.matches(tag, attrs):
                return rule.tier
        return PriorityTier.HIGH

    def regions_in(self, start: int, end: int) -> List[PriorityRegion]:
        """Regions whose start offset falls in ``[start, end)``."""
        return [r for r in self.regions if start <= r.offset < end]

    def to_dict(self) -> Dict[str, Any]:
        counts = {tier.value: 0 for tier in PriorityTier}
        for region in self.regions:
            counts[region.tier.value] += 1
        return {
            'rules': [
                {'selector': r.selector, 'tier': r.tier.value, 'specificity': r.specificity}
                for r in self.rules
            ],
            'regions': [
                {'tag': r.tag, 'selector': r.selector, 'tier': r.tier.value, 'offset': r.offset}
                for r in self.regions
            ],
            'counts': counts,
        }

    def fingerprint(self) -> str:
        """Stable short hash of rules and regions."""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()[:16]

    def __str__(self) -> str:
        return f"PriorityMap({self.fingerprint()})"


# ---------------------------------------------------------------------------
# Blocks and chunks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Block:
    """A contiguous span ``[start, end)`` of document text found by a parser."""
    start: int
    end: int
    tag: Optional[str] = None
    attrs: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class ChunkSpan:
    """Planned chunk boundaries before materialization."""
    start: int
    end: int
    byte_size: int
    blocks: Tuple[Block, ...] = field(default=(), compare=False, repr=False)


@dataclass
class ChunkPlan:
    """Ordered chunk spans produced by one splitting strategy."""
    spans: List[ChunkSpan]
    strategy: ChunkingStrategy

    @property
    def total(self) -> int:
        return len(self.spans)

    def __len__(self) -> int:
        return len(self.spans)


@dataclass(frozen=True)
class Chunk:
    """A standalone renderable fragment of a document."""
    index: int
    total: int
    byte_size: int
    is_first: bool
    is_last: bool
    markup: str
    start: int
    end: int
    strategy: ChunkingStrategy = ChunkingStrategy.SINGLE
    priority: PriorityTier = PriorityTier.HIGH
    # Offsets of the body fragment inside ``markup``; None means the whole markup
    fragment_start: Optional[int] = field(default=None, repr=False)
    fragment_end: Optional[int] = field(default=None, repr=False)

    @property
    def body(self) -> str:
        """Body fragment of the chunk, without the wrapper markup."""
        start = 0 if self.fragment_start is None else self.fragment_start
        end = len(self.markup) if self.fragment_end is None else self.fragment_end
        return self.markup[start:end]

    def meta(self) -> Dict[str, Any]:
        """Chunk metadata keys merged into the render context."""
        return {
            'chunkIndex': self.index,
            'totalChunks': self.total,
            'isFirstChunk': self.is_first,
            'isLastChunk': self.is_last,
        }

    def __repr__(self) -> str:
        return (f"Chunk(index={self.index}/{self.total}, bytes={self.byte_size}, "
                f"span=[{self.start}:{self.end}], strategy={self.strategy.value}, "
                f"priority={self.priority.value})")


# ---------------------------------------------------------------------------
# Stats, progress and results
# ---------------------------------------------------------------------------

@dataclass
class RenderStats:
    """Statistics collected during one render invocation."""
    total_chunks: int = 0
    processed_chunks: int = 0
    failed_chunks: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    retries: int = 0
    staging_fallbacks: int = 0
    peak_memory_bytes: int = 0
    memory_samples: List[int] = field(default_factory=list)
    chunk_times_ms: List[float] = field(default_factory=list)
    total_time_ms: float = 0.0
    strategy: Optional[str] = None
    chunking_strategy: Optional[str] = None

    def record_chunk_time(self, elapsed_ms: float) -> None:
        self.chunk_times_ms.append(elapsed_ms)

    def record_memory(self, rss_bytes: int) -> None:
        self.memory_samples.append(rss_bytes)
        if rss_bytes > self.peak_memory_bytes:
            self.peak_memory_bytes = rss_bytes

    def summary(self) -> Dict[str, Any]:
        """
        Return the statistics with derived averages.

        Returns:
            Dictionary with counters plus average/min/max chunk time and
            average memory usage
        """
        times = self.chunk_times_ms
        samples = self.memory_samples
        return {
            'total_chunks': self.total_chunks,
            'processed_chunks': self.processed_chunks,
            'failed_chunks': self.failed_chunks,
            'cache_hits': self.cache_hits,
            'cache_misses': self.cache_misses,
            'retries': self.retries,
            'staging_fallbacks': self.staging_fallbacks,
            'strategy': self.strategy,
            'chunking_strategy': self.chunking_strategy,
            'total_time_ms': round(self.total_time_ms, 3),
            'avg_chunk_time_ms': round(sum(times) / len(times), 3) if times else 0.0,
            'min_chunk_time_ms': round(min(times), 3) if times else 0.0,
            'max_chunk_time_ms': round(max(times), 3) if times else 0.0,
            'peak_memory_bytes': self.peak_memory_bytes,
            'avg_memory_bytes': int(sum(samples) / len(samples)) if samples else 0,
            'memory_samples': len(samples),
        }


@dataclass(frozen=True)
class RenderProgress:
    """Progress report emitted after every chunk."""
    chunk_index: int
    total_chunks: int
    percent: float
    elapsed_ms: float
    failed: bool = False
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chunk_index': self.chunk_index,
            'total_chunks': self.total_chunks,
            'percent': self.percent,
            'elapsed_ms': self.elapsed_ms,
            'failed': self.failed,
            'cached': self.cached,
        }


RENDER_ERROR_KINDS = ('timeout', 'cancelled', 'staging', 'setup')


@dataclass
class RenderError:
    """Whole-render failure surfaced inside a RenderResult."""
    kind: str
    message: str
    partial_output: Optional[str] = None
    stats: Optional[RenderStats] = None

    def __post_init__(self):
        if self.kind not in RENDER_ERROR_KINDS:
            raise ValueError(f"Unknown render error kind: {self.kind}")

    def to_exception(self) -> RenderingError:
        """Convert to the matching exception type."""
        if self.kind == 'timeout':
            return RenderTimeoutError(self.message, partial_output=self.partial_output)
        if self.kind == 'cancelled':
            return RenderCancelledError(self.message)
        if self.kind == 'staging':
            return DiskStagingError(self.message)
        return RenderingError(self.message, details={'kind': self.kind})


@dataclass
class RenderResult:
    """Outcome of one render invocation."""
    output: str = ""
    stats: RenderStats = field(default_factory=RenderStats)
    error: Optional[RenderError] = None
    cancelled: bool = False
    strategy: Optional[RenderStrategy] = None
    priority_map: Optional[PriorityMap] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """Raise the exception matching ``error`` if the render did not complete."""
        if self.error is not None:
            raise self.error.to_exception()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MIB = 1024 * 1024
MB = 1000 * 1000


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default).lower()).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, '') else None


def _env_list(name: str) -> List[str]:
    value = os.getenv(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


@dataclass
class RenderConfig:
    """
    Configuration for a progressive render.

    Defaults can be overridden with ``PRENDER_*`` environment variables.
    Values are validated on construction.
    """

    # Chunking
    target_chunk_byte_size: int = field(
        default_factory=lambda: _env_int('PRENDER_TARGET_CHUNK_BYTE_SIZE', MIB)
    )
    small_document_threshold: Optional[int] = field(
        default_factory=lambda: _env_optional_int('PRENDER_SMALL_DOCUMENT_THRESHOLD')
    )
    overflow_tolerance: float = field(
        default_factory=lambda: _env_float('PRENDER_OVERFLOW_TOLERANCE', 0.25)
    )
    tree_parse_max_bytes: int = field(
        default_factory=lambda: _env_int('PRENDER_TREE_PARSE_MAX_BYTES', 10 * MIB)
    )
    critical_selectors: List[str] = field(
        default_factory=lambda: _env_list('PRENDER_CRITICAL_SELECTORS')
    )

    # Memory and disk staging
    disk_staging_ceiling: int = field(
        default_factory=lambda: _env_int('PRENDER_DISK_STAGING_CEILING', 5 * MIB)
    )
    disk_staging_enabled: bool = field(
        default_factory=lambda: _env_bool('PRENDER_DISK_STAGING_ENABLED', True)
    )
    max_in_memory_bytes: int = field(
        default_factory=lambda: _env_int('PRENDER_MAX_IN_MEMORY_BYTES', 100 * MB)
    )
    memory_limit_bytes: int = field(
        default_factory=lambda: _env_int('PRENDER_MEMORY_LIMIT_BYTES', 300 * MB)
    )
    memory_sample_interval: float = field(
        default_factory=lambda: _env_float('PRENDER_MEMORY_SAMPLE_INTERVAL', 1.0)
    )
    temp_dir: Optional[str] = field(
        default_factory=lambda: os.getenv('PRENDER_TEMP_DIR') or None
    )
    temp_file_prefix: str = field(
        default_factory=lambda: os.getenv('PRENDER_TEMP_FILE_PREFIX', 'chunk-')
    )
    clean_temp_files: bool = field(
        default_factory=lambda: _env_bool('PRENDER_CLEAN_TEMP_FILES', True)
    )

    # Retries and timeouts
    max_retries: int = field(
        default_factory=lambda: _env_int('PRENDER_MAX_RETRIES', 3)
    )
    retry_delay_ms: int = field(
        default_factory=lambda: _env_int('PRENDER_RETRY_DELAY_MS', 500)
    )
    chunk_timeout_seconds: float = field(
        default_factory=lambda: _env_float('PRENDER_CHUNK_TIMEOUT_SECONDS', 60.0)
    )
    render_timeout_seconds: float = field(
        default_factory=lambda: _env_float('PRENDER_RENDER_TIMEOUT_SECONDS', 60.0)
    )

    # Cache
    cache_enabled: bool = field(
        default_factory=lambda: _env_bool('PRENDER_CACHE_ENABLED', True)
    )
    cache_ttl_seconds: int = field(
        default_factory=lambda: _env_int('PRENDER_CACHE_TTL_SECONDS', 3600)
    )
    cache_max_entries: int = field(
        default_factory=lambda: _env_int('PRENDER_CACHE_MAX_ENTRIES', 1000)
    )
    compression_enabled: bool = field(
        default_factory=lambda: _env_bool('PRENDER_COMPRESSION_ENABLED', True)
    )

    # Delivery
    render_mode: RenderMode = field(
        default_factory=lambda: RenderMode(os.getenv('PRENDER_RENDER_MODE', 'full'))
    )
    max_concurrency: int = field(
        default_factory=lambda: _env_int('PRENDER_MAX_CONCURRENCY', 1)
    )

    def __post_init__(self):
        """Validate configuration values."""
        if isinstance(self.render_mode, str):
            try:
                self.render_mode = RenderMode(self.render_mode.lower())
            except ValueError:
                raise ConfigurationError(
                    f"render_mode must be one of {[m.value for m in RenderMode]}, got {self.render_mode}"
                )
        if isinstance(self.critical_selectors, str):
            self.critical_selectors = [s.strip() for s in self.critical_selectors.split(',') if s.strip()]
        self.critical_selectors = list(self.critical_selectors or [])

        for name in ('target_chunk_byte_size', 'disk_staging_ceiling', 'max_in_memory_bytes',
                     'memory_limit_bytes', 'tree_parse_max_bytes', 'cache_max_entries',
                     'max_retries', 'max_concurrency'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(
                    f"{name} must be a positive integer, got {value}", details={'field': name}
                )
        if self.small_document_threshold is not None and (
                not isinstance(self.small_document_threshold, int) or self.small_document_threshold < 0):
            raise ConfigurationError(
                f"small_document_threshold must be a non-negative integer, got {self.small_document_threshold}"
            )
        if not isinstance(self.retry_delay_ms, int) or self.retry_delay_ms < 0:
            raise ConfigurationError(f"retry_delay_ms must be a non-negative integer, got {self.retry_delay_ms}")
        if not isinstance(self.cache_ttl_seconds, int) or self.cache_ttl_seconds < 0:
            raise ConfigurationError(f"cache_ttl_seconds must be a non-negative integer, got {self.cache_ttl_seconds}")
        for name in ('chunk_timeout_seconds', 'render_timeout_seconds', 'memory_sample_interval'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}", details={'field': name})
        if not isinstance(self.overflow_tolerance, (int, float)) or self.overflow_tolerance < 0:
            raise ConfigurationError(f"overflow_tolerance must be non-negative, got {self.overflow_tolerance}")
        if not self.temp_file_prefix or os.sep in self.temp_file_prefix:
            raise ConfigurationError(f"Invalid temp_file_prefix: {self.temp_file_prefix!r}")

    @property
    def effective_small_document_threshold(self) -> int:
        """Small-document threshold, defaulting to the target chunk size."""
        if self.small_document_threshold is None:
            return self.target_chunk_byte_size
        return self.small_document_threshold

    @property
    def overflow_limit(self) -> int:
        """Largest single block kept whole inside one chunk."""
        return int(self.target_chunk_byte_size * (1 + self.overflow_tolerance))

    @property
    def is_streaming(self) -> bool:
        return self.render_mode is RenderMode.STREAMING

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None,
                     base: Optional["RenderConfig"] = None) -> "RenderConfig":
        """
        Build a configuration from a caller options mapping.

        Accepts snake_case field names as well as the camelCase option names
        (``targetChunkByteSize``, ``cacheTTLSeconds``, ...). String values
        (as read from configuration files) are coerced to the field type.
        Unknown keys are ignored with a warning.

        Args:
            options: Caller options
            base: Configuration to start from (defaults to a fresh one)

        Returns:
            New RenderConfig

        Raises:
            ConfigurationError: If a value is invalid
        """
        base = base if base is not None else cls()
        if not options:
            return base

        updates: Dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in _FIELD_KINDS:
                logger.warning(f"Ignoring unknown render option: {key}")
                continue
            try:
                updates[name] = _coerce(_FIELD_KINDS[name], value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Invalid value for {key}: {value!r}", details={'option': key, 'error': str(e)}
                ) from e
        return replace(base, **updates)

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = value.value if isinstance(value, Enum) else value
        return result


_FIELD_KINDS = {
    'target_chunk_byte_size': 'int',
    'small_document_threshold': 'optional_int',
    'overflow_tolerance': 'float',
    'tree_parse_max_bytes': 'int',
    'critical_selectors': 'list',
    'disk_staging_ceiling': 'int',
    'disk_staging_enabled': 'bool',
    'max_in_memory_bytes': 'int',
    'memory_limit_bytes': 'int',
    'memory_sample_interval': 'float',
    'temp_dir': 'optional_str',
    'temp_file_prefix': 'str',
    'clean_temp_files': 'bool',
    'max_retries': 'int',
    'retry_delay_ms': 'int',
    'chunk_timeout_seconds': 'float',
    'render_timeout_seconds': 'float',
    'cache_enabled': 'bool',
    'cache_ttl_seconds': 'int',
    'cache_max_entries': 'int',
    'compression_enabled': 'bool',
    'render_mode': 'str',
    'max_concurrency': 'int',
}


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


_OPTION_ALIASES = {_camel(name): name for name in _FIELD_KINDS}
_OPTION_ALIASES.update({
    'chunkSize': 'target_chunk_byte_size',
    'cacheTTLSeconds': 'cache_ttl_seconds',
    'cacheTTL': 'cache_ttl_seconds',
    'enableCache': 'cache_enabled',
    'enableCompression': 'compression_enabled',
    'useDiskForLargeChunks': 'disk_staging_enabled',
    'memoryLimit': 'memory_limit_bytes',
    'memoryThreshold': 'memory_limit_bytes',
    'maxMemoryUsage': 'max_in_memory_bytes',
    'retryDelay': 'retry_delay_ms',
    'timeout': 'render_timeout_seconds',
    'cleanTempFiles': 'clean_temp_files',
    'tempFilePrefix': 'temp_file_prefix',
})


def _coerce(kind: str, value: Any) -> Any:
    if kind == 'int':
        if isinstance(value, str):
            return int(value.strip())
        return value
    if kind == 'optional_int':
        if value is None or (isinstance(value, str) and value.strip().lower() in ('', 'none', 'null')):
            return None
        return int(value.strip()) if isinstance(value, str) else value
    if kind == 'float':
        return float(value.strip()) if isinstance(value, str) else value
    if kind == 'bool':
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    if kind == 'list':
        if isinstance(value, str):
            return [item.strip() for item in value.split(',') if item.strip()]
        return list(value or [])
    if kind == 'optional_str':
        return str(value) if value not in (None, '') else None
    return value


__all__ = [
    'RenderStrategy',
    'RenderMode',
    'ChunkingStrategy',
    'PriorityTier',
    'Document',
    'Selector',
    'PriorityRule',
    'PriorityRegion',
    'PriorityMap',
    'Block',
    'ChunkSpan',
    'ChunkPlan',
    'Chunk',
    'RenderStats',
    'RenderProgress',
    'RenderError',
    'RenderResult',
    'RenderConfig',
    'MIB',
    'MB',
]
