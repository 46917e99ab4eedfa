# scheduler.py
"""
Memory-aware choice of render strategy.
"""

from typing import Callable, Optional

from loguru import logger

from .base import Document, RenderConfig, RenderStrategy
from .markup import has_html_structure
from .memory import current_rss


class MemoryAwareScheduler:
    """Chooses between direct, chunked in-memory and chunked on-disk rendering."""

    def __init__(self, config: Optional[RenderConfig] = None,
                 sampler: Callable[[], int] = current_rss):
        self.config = config or RenderConfig()
        self._sampler = sampler

    def decide(self, document_byte_length: int, live_heap_usage: Optional[int] = None,
               config: Optional[RenderConfig] = None) -> RenderStrategy:
        """
        Decide the render strategy for a document.

        Documents below the small-document threshold are rendered directly.
        Larger documents are chunked in memory up to the disk staging ceiling
        and staged on disk above it. Live memory above ``memory_limit_bytes``
        escalates any non-small document to disk staging.

        Args:
            document_byte_length: Document size in bytes
            live_heap_usage: Current process memory in bytes (sampled when None)
            config: Configuration (defaults to the scheduler's)

        Returns:
            RenderStrategy
        """
        config = config or self.config
        if document_byte_length < config.effective_small_document_threshold:
            return RenderStrategy.DIRECT

        if live_heap_usage is None:
            live_heap_usage = self._sampler()

        if not config.disk_staging_enabled:
            return RenderStrategy.CHUNKED_IN_MEMORY

        if live_heap_usage > config.memory_limit_bytes:
            logger.info(
                f"Live memory {live_heap_usage} bytes above limit {config.memory_limit_bytes}, "
                f"staging chunks on disk"
            )
            return RenderStrategy.CHUNKED_ON_DISK

        if document_byte_length > config.disk_staging_ceiling:
            return RenderStrategy.CHUNKED_ON_DISK
        return RenderStrategy.CHUNKED_IN_MEMORY

    def is_streamable(self, document: Document, config: Optional[RenderConfig] = None) -> bool:
        """
        Check whether a document benefits from incremental delivery.

        A document is streamable when it is larger than the target chunk size
        and has a complete html/body skeleton, or when it exceeds the disk
        staging ceiling.
        """
        config = config or self.config
        if document.byte_length > config.disk_staging_ceiling:
            return True
        return document.byte_length > config.target_chunk_byte_size and has_html_structure(document.text)
