# __init__.py
"""
Rendering module for progressive, memory-bounded document rendering.
Provides structural analysis, chunking, caching and streaming delivery.
"""

from .base import (
    RenderStrategy,
    RenderMode,
    ChunkingStrategy,
    PriorityTier,
    Document,
    PriorityRule,
    PriorityRegion,
    PriorityMap,
    Block,
    Chunk,
    ChunkPlan,
    RenderStats,
    RenderProgress,
    RenderError,
    RenderResult,
    RenderConfig,
)

from .exceptions import (
    RenderingError,
    InvalidInputError,
    ConfigurationError,
    StructuralAnalysisError,
    ChunkRenderError,
    ChunkTimeoutError,
    RenderTimeoutError,
    RenderCancelledError,
    CacheError,
    DiskStagingError,
)

from .analyzer import StructuralAnalyzer
from .parsers import StructuralParser, TreeStructuralParser, PatternStructuralParser
from .chunker import ChunkingEngine
from .scheduler import MemoryAwareScheduler
from .memory import MemoryMonitor, gc_collect_relief
from .staging import DiskChunkStager
from .cache import TemplateCache, make_cache_key
from .compilers import PassthroughCompiler, CallableCompiler, JinjaTemplateCompiler
from .pipeline import StreamingRenderPipeline, build_render_context
from .renderer import ProgressiveRenderer, RenderStream

# Default render options, using the caller-facing option names
DEFAULT_RENDER_OPTIONS = {
    'targetChunkByteSize': 1024 * 1024,
    'smallDocumentThreshold': None,
    'diskStagingCeiling': 5 * 1024 * 1024,
    'diskStagingEnabled': True,
    'maxInMemoryBytes': 100 * 1000 * 1000,
    'memoryLimitBytes': 300 * 1000 * 1000,
    'maxRetries': 3,
    'retryDelayMs': 500,
    'chunkTimeoutSeconds': 60,
    'renderTimeoutSeconds': 60,
    'cacheEnabled': True,
    'cacheTTLSeconds': 3600,
    'compressionEnabled': True,
    'renderMode': 'full',
    'maxConcurrency': 1,
}

__all__ = [
    'RenderStrategy', 'RenderMode', 'ChunkingStrategy', 'PriorityTier',
    'Document', 'PriorityRule', 'PriorityRegion', 'PriorityMap', 'Block', 'Chunk', 'ChunkPlan',
    'RenderStats', 'RenderProgress', 'RenderError', 'RenderResult', 'RenderConfig',
    'RenderingError', 'InvalidInputError', 'ConfigurationError', 'StructuralAnalysisError',
    'ChunkRenderError', 'ChunkTimeoutError', 'RenderTimeoutError', 'RenderCancelledError',
    'CacheError', 'DiskStagingError',
    'StructuralAnalyzer', 'StructuralParser', 'TreeStructuralParser', 'PatternStructuralParser',
    'ChunkingEngine', 'MemoryAwareScheduler', 'MemoryMonitor', 'gc_collect_relief',
    'DiskChunkStager', 'TemplateCache', 'make_cache_key',
    'PassthroughCompiler', 'CallableCompiler', 'JinjaTemplateCompiler',
    'StreamingRenderPipeline', 'build_render_context',
    'ProgressiveRenderer', 'RenderStream',
    'DEFAULT_RENDER_OPTIONS',
]
