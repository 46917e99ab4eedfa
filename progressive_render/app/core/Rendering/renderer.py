# renderer.py
"""
ProgressiveRenderer: top-level render invocation.

Ties together the scheduler, the structural analyzer, the chunking engine,
disk staging and the streaming pipeline::

    renderer = ProgressiveRenderer(compiler=JinjaTemplateCompiler())
    result = await renderer.render(html, {"title": "Report"})
    result.raise_for_error()

    async with renderer.stream(html, data) as stream:
        async for rendered, progress in stream:
            ...
"""

import asyncio
import time
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional, Tuple, Union

from loguru import logger

from progressive_render.app.core.Logging.log_context import log_context, new_render_id

from .analyzer import StructuralAnalyzer
from .base import (
    ChunkPlan,
    Document,
    PriorityMap,
    RenderConfig,
    RenderError,
    RenderMode,
    RenderProgress,
    RenderResult,
    RenderStats,
    RenderStrategy,
)
from .cache import TemplateCache
from .chunker import ChunkingEngine
from .compilers import resolve_compiler
from .exceptions import ConfigurationError, DiskStagingError, RenderingError
from .memory import MemoryMonitor, MemoryRelief, current_rss
from .parsers import TreeStructuralParser
from .pipeline import CancelSignal, ProgressCallback, Sink, StreamingRenderPipeline
from .scheduler import MemoryAwareScheduler
from .staging import DiskChunkStager, iter_staged_chunks, stage_chunks

DocumentInput = Union[str, Document]


class ProgressiveRenderer:
    """Renders large documents progressively under memory constraints."""

    def __init__(self,
                 compiler: Any = None,
                 config: Optional[RenderConfig] = None,
                 cache: Optional[TemplateCache] = None,
                 memory_relief: Optional[MemoryRelief] = None,
                 sampler: Callable[[], int] = current_rss):
        """
        Initialize the renderer.

        Args:
            compiler: Template compiler (object with ``compile`` or a callable); passthrough when None
            config: Default render configuration; loaded from environment and config.txt when None
            cache: Shared TemplateCache; one is created from the config when None
            memory_relief: Hook invoked between failed chunk attempts (``gc_collect_relief`` is available)
            sampler: Function returning the current process memory in bytes
        """
        if config is None:
            from progressive_render.app.core.config import get_render_config
            config = get_render_config()
        self.compiler = resolve_compiler(compiler)
        self.config = config
        self.cache = cache if cache is not None else TemplateCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
            compression_enabled=self.config.compression_enabled,
        )
        self.memory_relief = memory_relief
        self._sampler = sampler

    # ------------------------------------------------------------------ public

    def resolve_config(self, options: Optional[Mapping[str, Any]] = None) -> RenderConfig:
        return RenderConfig.from_options(options, base=self.config) if options else self.config

    def is_streamable(self, document: DocumentInput, options: Optional[Mapping[str, Any]] = None) -> bool:
        """Check whether incremental delivery is worthwhile for a document."""
        config = self.resolve_config(options)
        return MemoryAwareScheduler(config, self._sampler).is_streamable(_as_document(document))

    def analyze(self, document: DocumentInput, options: Optional[Mapping[str, Any]] = None) -> PriorityMap:
        config = self.resolve_config(options)
        return self._analyzer(config).analyze(_as_document(document))

    async def render(self,
                     document: DocumentInput,
                     data: Optional[Mapping[str, Any]] = None,
                     options: Optional[Mapping[str, Any]] = None,
                     *,
                     sink: Optional[Sink] = None,
                     progress_callback: Optional[ProgressCallback] = None,
                     cancel_event: Optional[CancelSignal] = None) -> RenderResult:
        """
        Render a document.

        In ``full`` render mode the output is collected into the result. In
        ``streaming`` mode every rendered chunk is handed to ``sink`` as soon
        as it is ready and the result carries no output.

        Args:
            document: Markup text or Document
            data: Data context passed to the compiler
            options: Per-call option overrides (snake_case or camelCase names)
            sink: Streaming delivery callback ``sink(rendered, progress)``; required in streaming mode
            progress_callback: Called after every chunk
            cancel_event: Set to stop rendering between chunks

        Returns:
            RenderResult with output (full mode), stats and any render error

        Raises:
            InvalidInputError: If the document is not a string or Document
            ConfigurationError: If an option value is invalid or the sink does not fit the render mode
        """
        config = self.resolve_config(options)
        if config.is_streaming and sink is None:
            raise ConfigurationError(
                "Streaming render mode requires a sink; use ProgressiveRenderer.stream() to iterate chunks",
                details={'render_mode': config.render_mode.value},
            )
        if not config.is_streaming and sink is not None:
            raise ConfigurationError(
                "A sink was given but render mode is 'full'; set renderMode to 'streaming'",
                details={'render_mode': config.render_mode.value},
            )
        doc = _as_document(document)
        render_id = new_render_id()
        stats = RenderStats()
        started = time.monotonic()

        scheduler = MemoryAwareScheduler(config, self._sampler)
        strategy = scheduler.decide(doc.byte_length, self._sampler(), config)
        stats.strategy = strategy.value

        with log_context(render_id=render_id, strategy=strategy.value) as log:
            log.info(
                f"Render started: {doc.byte_length} bytes, strategy={strategy.value}, "
                f"mode={config.render_mode.value}"
            )
            monitor = MemoryMonitor(config.memory_limit_bytes, config.memory_sample_interval, stats, self._sampler)
            async with monitor:
                # Analysis and chunking of this render share one tree parse
                tree_parser = TreeStructuralParser(reuse_tree=True)
                priority_map = self._analyzer(config, tree_parser).analyze(doc)
                pipeline = StreamingRenderPipeline(
                    compiler=self.compiler,
                    cache=self.cache if config.cache_enabled else None,
                    config=config,
                    memory_relief=self.memory_relief,
                )
                kwargs = dict(sink=sink, priority_map=priority_map, progress_callback=progress_callback,
                              cancel_event=cancel_event, stats=stats)
                try:
                    result, strategy = await self._run(doc, data, config, strategy, pipeline, tree_parser, kwargs)
                except RenderingError as e:
                    log.error(f"Render setup failed: {e.message}")
                    result = RenderResult(
                        stats=stats,
                        error=RenderError('setup', e.message, partial_output=None, stats=stats),
                        priority_map=priority_map,
                    )
                finally:
                    tree_parser.release()
                monitor.sample()

            stats.strategy = strategy.value
            stats.total_time_ms = (time.monotonic() - started) * 1000
            result.strategy = strategy
            result.stats = stats
            summary = stats.summary()
            log.info(
                f"Render finished in {summary['total_time_ms']:.1f}ms: "
                f"{stats.processed_chunks}/{stats.total_chunks} chunks, {stats.failed_chunks} failed, "
                f"{stats.cache_hits} cache hits, peak memory {stats.peak_memory_bytes / (1024 * 1024):.1f}MB"
            )
            if result.error is not None:
                log.error(f"Render ended with {result.error.kind} error: {result.error.message}")
        return result

    def stream(self,
               document: DocumentInput,
               data: Optional[Mapping[str, Any]] = None,
               options: Optional[Mapping[str, Any]] = None,
               *,
               cancel_event: Optional[CancelSignal] = None,
               buffer_size: int = 1) -> "RenderStream":
        """
        Render a document in streaming mode and deliver chunks through an async iterator.

        The stream must be entered with ``async with``; leaving the block stops
        the render. At most ``buffer_size`` rendered chunks are held while the
        consumer catches up.
        """
        streaming_options = {
            key: value for key, value in (options or {}).items() if key not in ('renderMode', 'render_mode')
        }
        streaming_options['render_mode'] = RenderMode.STREAMING.value
        return RenderStream(self, document, data, streaming_options, cancel_event, buffer_size)

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def clear_cache(self) -> int:
        return self.cache.clear()

    # ---------------------------------------------------------------- internal

    def _analyzer(self, config: RenderConfig,
                  tree_parser: Optional[TreeStructuralParser] = None) -> StructuralAnalyzer:
        return StructuralAnalyzer(
            critical_selectors=config.critical_selectors,
            tree_parse_max_bytes=config.tree_parse_max_bytes,
            tree_parser=tree_parser,
        )

    async def _run(self, doc: Document, data: Optional[Mapping[str, Any]], config: RenderConfig,
                   strategy: RenderStrategy, pipeline: StreamingRenderPipeline,
                   tree_parser: TreeStructuralParser,
                   kwargs: Dict[str, Any]) -> Tuple[RenderResult, RenderStrategy]:
        engine = ChunkingEngine(config, tree_parser=tree_parser)
        stats: RenderStats = kwargs['stats']
        priority_map = kwargs['priority_map']

        if strategy is RenderStrategy.DIRECT:
            plan = engine.plan(doc, doc.byte_length + 1)
        else:
            plan = engine.plan(doc, config.target_chunk_byte_size)
        tree_parser.release()
        stats.chunking_strategy = plan.strategy.value
        stats.total_chunks = plan.total
        logger.debug(f"Chunk plan: {engine.describe(plan)}")

        if strategy is RenderStrategy.CHUNKED_ON_DISK:
            staged = await self._run_staged(doc, data, config, engine, plan, pipeline, kwargs)
            if staged is not None:
                return staged, strategy
            if doc.byte_length > config.max_in_memory_bytes:
                message = (f"Disk staging failed and document ({doc.byte_length} bytes) exceeds "
                           f"in-memory limit ({config.max_in_memory_bytes} bytes)")
                return RenderResult(
                    stats=stats,
                    error=RenderError('staging', message, stats=stats),
                    priority_map=priority_map,
                ), strategy
            logger.warning("Disk staging unavailable, falling back to in-memory chunked rendering")
            strategy = RenderStrategy.CHUNKED_IN_MEMORY

        chunks = engine.iter_chunks(doc, plan, priority_map)
        return await pipeline.render(chunks, data, total_chunks=plan.total, **kwargs), strategy

    async def _run_staged(self, doc: Document, data: Optional[Mapping[str, Any]], config: RenderConfig,
                          engine: ChunkingEngine, plan: ChunkPlan, pipeline: StreamingRenderPipeline,
                          kwargs: Dict[str, Any]) -> Optional[RenderResult]:
        """Render through disk staging; returns None when staging could not be set up."""
        stager = DiskChunkStager(config.temp_dir, config.temp_file_prefix, config.clean_temp_files)
        try:
            async with stager:
                await stage_chunks(stager, engine, doc, plan, kwargs['priority_map'])
                chunks = iter_staged_chunks(stager, engine, doc, plan, kwargs['priority_map'], kwargs['stats'])
                return await pipeline.render(chunks, data, total_chunks=plan.total, **kwargs)
        except DiskStagingError as e:
            logger.warning(f"Disk staging failed ({e.details.get('operation')}): {e.message}")
            return None


class _StreamStop:
    """Stop signal of a RenderStream: set by the caller's event or by closing the stream."""

    def __init__(self, cancel_event: Optional[CancelSignal]):
        self.cancel_event = cancel_event
        self.closed = False

    def is_set(self) -> bool:
        return self.closed or (self.cancel_event is not None and self.cancel_event.is_set())


class RenderStream:
    """
    Async iterator over ``(rendered, progress)`` deliveries of one render.

    Use it as an async context manager; leaving the ``async with`` block,
    including by breaking out of the loop, stops the render and its memory
    sampling. The final RenderResult is available as ``result`` once the
    render has ended.
    """

    _DONE = object()

    def __init__(self, renderer: ProgressiveRenderer, document: DocumentInput,
                 data: Optional[Mapping[str, Any]], options: Optional[Mapping[str, Any]],
                 cancel_event: Optional[CancelSignal], buffer_size: int):
        self._renderer = renderer
        self._document = document
        self._data = data
        self._options = options
        self._stop = _StreamStop(cancel_event)
        self._queue: Optional[asyncio.Queue] = None
        self._buffer_size = max(1, buffer_size)
        self._task: Optional[asyncio.Task] = None
        self._entered = False
        self.result: Optional[RenderResult] = None

    def _start(self):
        if self._task is not None:
            return
        self._queue = asyncio.Queue(maxsize=self._buffer_size)

        async def sink(rendered: str, progress: RenderProgress):
            if self._stop.closed:
                return
            await self._queue.put((rendered, progress))

        async def finish():
            if not self._stop.closed:
                await self._queue.put(self._DONE)

        async def run():
            try:
                self.result = await self._renderer.render(
                    self._document, self._data, self._options,
                    sink=sink, cancel_event=self._stop,
                )
            except Exception:
                await finish()
                raise
            await finish()

        self._task = asyncio.create_task(run())

    def __aiter__(self) -> AsyncIterator[Tuple[str, RenderProgress]]:
        if not self._entered:
            raise RuntimeError("RenderStream must be entered with 'async with renderer.stream(...) as stream'")
        return self

    async def __anext__(self) -> Tuple[str, RenderProgress]:
        if self._stop.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is self._DONE:
            # Propagate exceptions raised by the render task
            await self._task
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop the render if it is still running and wait for it to end."""
        if self._task is None or self._stop.closed:
            return
        self._stop.closed = True
        # Release a render blocked on a full queue; later deliveries are dropped
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "RenderStream":
        self._entered = True
        self._start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False


def _as_document(document: DocumentInput) -> Document:
    if isinstance(document, Document):
        return document
    return Document.from_text(document)
