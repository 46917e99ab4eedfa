# pipeline.py
"""
StreamingRenderPipeline: renders chunks through the template compiler with
per-chunk failure isolation.

Each chunk is looked up in the TemplateCache, then rendered with a bounded
number of attempts. A chunk that exhausts its attempts is replaced by a
placeholder comment and rendering continues. Output is either collected into
one string or delivered chunk by chunk to a sink, always in index order.
"""

import asyncio
import inspect
import time
from collections import deque
from typing import (
    Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Deque, Dict, Iterable,
    List, Mapping, Optional, Protocol, Tuple, Union,
)

from loguru import logger

from .base import (
    Chunk,
    PriorityMap,
    RenderConfig,
    RenderError,
    RenderProgress,
    RenderResult,
    RenderStats,
)
from .cache import TemplateCache, make_cache_key
from .compilers import resolve_compiler, run_compiler
from .exceptions import CacheError, ChunkRenderError, ChunkTimeoutError, RenderTimeoutError
from .memory import MemoryRelief, noop_relief, run_relief

Sink = Callable[[str, RenderProgress], Union[None, Awaitable[None]]]
ProgressCallback = Callable[[RenderProgress], Union[None, Awaitable[None]]]
ChunkSource = Union[Iterable[Chunk], AsyncIterable[Chunk]]


class CancelSignal(Protocol):
    """Anything with ``is_set()``, such as ``asyncio.Event``."""

    def is_set(self) -> bool:
        ...


def failed_chunk_placeholder(index: int, total: int) -> str:
    """Placeholder emitted in place of a chunk that could not be rendered."""
    return f"<!-- chunk-render-failed index={index} total={total} -->\n"


def render_timeout_marker(processed: int, total: int, timeout_seconds: float) -> str:
    """Marker appended when the whole render exceeded its time budget."""
    return f"<!-- render-timeout processed={processed} total={total} timeout={timeout_seconds}s -->\n"


def build_render_context(data: Optional[Mapping[str, Any]], chunk: Chunk,
                         priority_map: Any = None) -> Dict[str, Any]:
    """
    Merge caller data with chunk metadata.

    Args:
        data: Caller data context
        chunk: Chunk being rendered
        priority_map: Priority map (or its dict view) exposed as ``priorityMap``

    Returns:
        New context dictionary; the caller data is not modified
    """
    context = dict(data or {})
    context.update(chunk.meta())
    context['priorityMap'] = priority_map
    return context


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


async def _aiter(chunks: ChunkSource) -> AsyncIterator[Chunk]:
    if hasattr(chunks, '__aiter__'):
        async for chunk in chunks:
            yield chunk
    else:
        for chunk in chunks:
            yield chunk


class _Rendered:
    __slots__ = ('chunk', 'output', 'failed', 'cached', 'elapsed_ms')

    def __init__(self, chunk: Chunk, output: str, failed: bool, cached: bool, elapsed_ms: float):
        self.chunk = chunk
        self.output = output
        self.failed = failed
        self.cached = cached
        self.elapsed_ms = elapsed_ms


class StreamingRenderPipeline:
    """Renders chunks in order with retries, caching and progress reporting."""

    def __init__(self,
                 compiler: Any = None,
                 cache: Optional[TemplateCache] = None,
                 config: Optional[RenderConfig] = None,
                 memory_relief: Optional[MemoryRelief] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """
        Initialize the pipeline.

        Args:
            compiler: Template compiler (object with ``compile`` or a callable)
            cache: Optional TemplateCache consulted before compiling
            config: Render configuration (retries, timeouts, concurrency)
            memory_relief: Hook invoked between failed attempts
            sleep: Coroutine used for retry delays
        """
        self.compiler = resolve_compiler(compiler)
        self.cache = cache
        self.config = config or RenderConfig()
        self.memory_relief = memory_relief or noop_relief
        self._sleep = sleep

    async def render(self,
                     chunks: ChunkSource,
                     context: Optional[Mapping[str, Any]] = None,
                     sink: Optional[Sink] = None,
                     *,
                     priority_map: Optional[PriorityMap] = None,
                     progress_callback: Optional[ProgressCallback] = None,
                     cancel_event: Optional[CancelSignal] = None,
                     stats: Optional[RenderStats] = None,
                     total_chunks: Optional[int] = None) -> RenderResult:
        """
        Render a sequence of chunks.

        Args:
            chunks: Chunks in index order (sync or async iterable)
            context: Caller data context
            sink: None to collect output, or ``sink(rendered, progress)`` to stream it
            priority_map: Priority map of the document
            progress_callback: Called with a RenderProgress after every chunk
            cancel_event: Checked between chunks; when set, rendering stops
            stats: RenderStats to update (a new one when None)
            total_chunks: Chunk count, when known before iteration

        Returns:
            RenderResult; in streaming mode ``output`` is empty
        """
        config = self.config
        stats = stats if stats is not None else RenderStats()
        if total_chunks is not None:
            stats.total_chunks = total_chunks
        collected: Optional[List[str]] = [] if sink is None else None
        pm_view = priority_map.to_dict() if priority_map is not None else None
        pm_fingerprint = priority_map.fingerprint() if priority_map is not None else None

        start = time.monotonic()
        deadline = start + config.render_timeout_seconds
        result = RenderResult(stats=stats, priority_map=priority_map)

        async def deliver(item: _Rendered):
            chunk = item.chunk
            total = stats.total_chunks or chunk.total
            stats.processed_chunks += 1
            stats.record_chunk_time(item.elapsed_ms)
            progress = RenderProgress(
                chunk_index=chunk.index,
                total_chunks=total,
                percent=round((chunk.index + 1) / total * 100, 2) if total else 100.0,
                elapsed_ms=round((time.monotonic() - start) * 1000, 3),
                failed=item.failed,
                cached=item.cached,
            )
            if collected is not None:
                collected.append(item.output)
            else:
                await _maybe_await(sink(item.output, progress))
            if progress_callback is not None:
                try:
                    await _maybe_await(progress_callback(progress))
                except Exception as e:
                    logger.warning(f"Progress callback failed: {e}")

        def process(chunk: Chunk) -> Awaitable[_Rendered]:
            if not stats.total_chunks:
                stats.total_chunks = chunk.total
            return self._process_chunk(chunk, context, stats, deadline, pm_view, pm_fingerprint)

        window: Deque[asyncio.Task] = deque()
        stop_kind: Optional[str] = None
        try:
            async for chunk in _aiter(chunks):
                if cancel_event is not None and cancel_event.is_set():
                    stop_kind = 'cancelled'
                    break
                if time.monotonic() >= deadline:
                    raise RenderTimeoutError("Render timed out", timeout_seconds=config.render_timeout_seconds)

                if config.max_concurrency <= 1:
                    await deliver(await process(chunk))
                    continue

                # Bounded concurrency: tasks are awaited in index order so delivery never reorders
                window.append(asyncio.create_task(process(chunk)))
                if len(window) >= config.max_concurrency:
                    await deliver(await window.popleft())

            while window:
                await deliver(await window.popleft())
        except RenderTimeoutError as e:
            stop_kind = 'timeout'
            logger.error(
                f"Render timed out after {config.render_timeout_seconds}s: "
                f"{stats.processed_chunks}/{stats.total_chunks} chunks delivered ({e.message})"
            )
        finally:
            for task in window:
                task.cancel()
            if window:
                await asyncio.gather(*window, return_exceptions=True)

        if stop_kind == 'cancelled':
            logger.info(f"Render cancelled after {stats.processed_chunks}/{stats.total_chunks} chunks")
            result.cancelled = True
            result.error = RenderError(
                'cancelled', "Render cancelled",
                partial_output=''.join(collected) if collected is not None else None,
                stats=stats,
            )
        elif stop_kind == 'timeout':
            marker = render_timeout_marker(stats.processed_chunks, stats.total_chunks, config.render_timeout_seconds)
            if collected is not None:
                collected.append(marker)
            else:
                marker_progress = RenderProgress(
                    chunk_index=stats.processed_chunks,
                    total_chunks=stats.total_chunks,
                    percent=round(stats.processed_chunks / stats.total_chunks * 100, 2) if stats.total_chunks else 0.0,
                    elapsed_ms=round((time.monotonic() - start) * 1000, 3),
                    failed=True,
                )
                await _maybe_await(sink(marker, marker_progress))
            result.error = RenderError(
                'timeout', f"Render exceeded {config.render_timeout_seconds}s",
                partial_output=''.join(collected) if collected is not None else None,
                stats=stats,
            )

        if collected is not None:
            result.output = ''.join(collected)
        return result

    async def _process_chunk(self,
                             chunk: Chunk,
                             data: Optional[Mapping[str, Any]],
                             stats: RenderStats,
                             deadline: float,
                             pm_view: Optional[Dict[str, Any]],
                             pm_fingerprint: Optional[str]) -> _Rendered:
        started = time.monotonic()
        context = build_render_context(data, chunk, pm_view)

        cache_key = None
        if self.cache is not None and self.config.cache_enabled:
            cache_key, cached = self._cache_lookup(chunk, data, pm_fingerprint)
            if cached is not None:
                stats.cache_hits += 1
                logger.debug(f"Chunk {chunk.index + 1}/{chunk.total} served from cache")
                return _Rendered(chunk, cached, False, True, (time.monotonic() - started) * 1000)
            stats.cache_misses += 1

        output = await self._render_with_retries(chunk, context, stats, deadline)
        if output is None:
            stats.failed_chunks += 1
            return _Rendered(chunk, failed_chunk_placeholder(chunk.index, chunk.total), True, False,
                             (time.monotonic() - started) * 1000)

        if cache_key is not None:
            self.cache.set_by_key(cache_key, output)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.debug(f"Chunk {chunk.index + 1}/{chunk.total} rendered in {elapsed_ms:.1f}ms")
        return _Rendered(chunk, output, False, False, elapsed_ms)

    def _cache_lookup(self, chunk: Chunk, data: Optional[Mapping[str, Any]],
                      pm_fingerprint: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        key_data = {
            'data': dict(data or {}),
            'chunk': chunk.meta(),
            'priorityMap': pm_fingerprint,
        }
        try:
            key = make_cache_key(chunk.markup, key_data)
            return key, self.cache.get_by_key(key)
        except CacheError as e:
            logger.warning(f"Cache lookup failed for chunk {chunk.index}, rendering uncached: {e}")
            return None, None

    async def _render_with_retries(self, chunk: Chunk, context: Dict[str, Any],
                                   stats: RenderStats, deadline: float) -> Optional[str]:
        """Return the rendered chunk, or None once every attempt has failed."""
        config = self.config
        for attempt in range(1, config.max_retries + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RenderTimeoutError("Render timed out", timeout_seconds=config.render_timeout_seconds)
            bounded_by_render = remaining < config.chunk_timeout_seconds
            attempt_timeout = min(config.chunk_timeout_seconds, remaining)
            try:
                return await self._attempt(chunk, context, attempt, attempt_timeout, bounded_by_render)
            except ChunkRenderError as e:
                if attempt >= config.max_retries:
                    logger.error(
                        f"Chunk {chunk.index + 1}/{chunk.total} failed after {attempt} attempts: {e.message}"
                    )
                    return None
                logger.warning(f"Chunk {chunk.index + 1}/{chunk.total} attempt {attempt} failed: {e.message}")
                stats.retries += 1
                await run_relief(self.memory_relief)
                delay = config.retry_delay_ms / 1000.0
                if delay > 0:
                    await self._sleep(min(delay, max(0.0, deadline - time.monotonic())))
        return None

    async def _attempt(self, chunk: Chunk, context: Dict[str, Any], attempt: int,
                       timeout: float, bounded_by_render: bool) -> str:
        try:
            return await asyncio.wait_for(run_compiler(self.compiler, chunk.markup, context), timeout)
        except asyncio.TimeoutError as e:
            if bounded_by_render:
                raise RenderTimeoutError(
                    "Render timed out", timeout_seconds=self.config.render_timeout_seconds
                ) from e
            raise ChunkTimeoutError(
                f"Attempt timed out after {timeout:.2f}s", chunk_index=chunk.index, attempt=attempt
            ) from e
        except Exception as e:
            raise ChunkRenderError(
                f"{type(e).__name__}: {e}", chunk_index=chunk.index, attempt=attempt
            ) from e
