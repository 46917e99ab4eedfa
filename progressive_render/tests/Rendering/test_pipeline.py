# test_pipeline.py
"""
Tests for StreamingRenderPipeline: per-chunk failure isolation, retries,
timeouts, cancellation, ordered concurrency, caching and streaming delivery.
"""

import asyncio

import pytest

from progressive_render.app.core.Rendering.base import Document, PriorityMap, RenderProgress
from progressive_render.app.core.Rendering.cache import TemplateCache
from progressive_render.app.core.Rendering.chunker import ChunkingEngine
from progressive_render.app.core.Rendering.pipeline import (
    StreamingRenderPipeline,
    build_render_context,
    failed_chunk_placeholder,
)


@pytest.fixture
def chunks(render_config, make_html):
    """Five chunks of a 50 KB document."""
    doc = Document.from_text(make_html(sections=50, section_bytes=1000))
    result = ChunkingEngine(render_config()).split(doc, 10 * 1024)
    assert len(result) == 5
    return result


def _expected(chunks):
    return "".join(c.markup for c in chunks)


class TestFailureIsolation:
    """Failed chunks become placeholders without aborting the render."""

    @pytest.mark.asyncio
    async def test_failed_chunks_become_placeholders(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        compiler = flaky_compiler_factory({1, 3})
        pipeline = StreamingRenderPipeline(compiler, config=render_config(max_retries=3), sleep=fake_sleep)
        result = await pipeline.render(chunks)

        assert result.ok
        assert result.stats.failed_chunks == 2
        assert result.stats.processed_chunks == 5
        assert result.output.count("chunk-render-failed") == 2
        assert failed_chunk_placeholder(1, 5) in result.output
        assert failed_chunk_placeholder(3, 5) in result.output
        assert chunks[0].markup in result.output
        assert chunks[4].markup in result.output
        assert compiler.attempts[1] == 3
        assert compiler.attempts[0] == 1

    @pytest.mark.asyncio
    async def test_retries_and_delays(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        compiler = flaky_compiler_factory({2})
        config = render_config(max_retries=4, retry_delay_ms=250)
        result = await StreamingRenderPipeline(compiler, config=config, sleep=fake_sleep).render(chunks)

        assert result.stats.retries == 3
        assert result.stats.failed_chunks == 1
        assert fake_sleep.delays == [0.25, 0.25, 0.25]

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        compiler = flaky_compiler_factory({2}, failures_per_chunk=2)
        pipeline = StreamingRenderPipeline(compiler, config=render_config(max_retries=3), sleep=fake_sleep)
        result = await pipeline.render(chunks)

        assert result.stats.failed_chunks == 0
        assert result.stats.retries == 2
        assert result.output == _expected(chunks)

    @pytest.mark.asyncio
    async def test_single_attempt_when_max_retries_is_one(self, render_config, chunks, flaky_compiler_factory,
                                                          fake_sleep):
        compiler = flaky_compiler_factory({0}, failures_per_chunk=1)
        pipeline = StreamingRenderPipeline(compiler, config=render_config(max_retries=1), sleep=fake_sleep)
        result = await pipeline.render(chunks)

        assert result.stats.failed_chunks == 1
        assert result.stats.retries == 0
        assert result.output.startswith(failed_chunk_placeholder(0, 5))

    @pytest.mark.asyncio
    async def test_memory_relief_between_attempts(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        calls = []

        async def relief():
            calls.append(1)

        compiler = flaky_compiler_factory({4})
        pipeline = StreamingRenderPipeline(compiler, config=render_config(max_retries=3),
                                           memory_relief=relief, sleep=fake_sleep)
        await pipeline.render(chunks)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failing_relief_hook_is_ignored(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        def relief():
            raise RuntimeError("relief failed")

        compiler = flaky_compiler_factory({0}, failures_per_chunk=1)
        pipeline = StreamingRenderPipeline(compiler, config=render_config(), memory_relief=relief, sleep=fake_sleep)
        result = await pipeline.render(chunks)
        assert result.stats.failed_chunks == 0

    @pytest.mark.asyncio
    async def test_all_chunks_fail(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        compiler = flaky_compiler_factory(range(5))
        result = await StreamingRenderPipeline(compiler, config=render_config(), sleep=fake_sleep).render(chunks)

        assert result.ok
        assert result.output == "".join(failed_chunk_placeholder(i, 5) for i in range(5))


class TestTimeouts:
    """Per-attempt and whole-render time limits."""

    @pytest.mark.asyncio
    async def test_chunk_timeout_counts_as_failure(self, render_config, chunks, slow_compiler_factory, fake_sleep):
        compiler = slow_compiler_factory(delay=2.0, slow_indexes={0})
        config = render_config(chunk_timeout_seconds=0.05, max_retries=2)
        result = await StreamingRenderPipeline(compiler, config=config, sleep=fake_sleep).render(chunks)

        assert result.ok
        assert result.stats.failed_chunks == 1
        assert result.stats.retries == 1
        assert result.output.startswith(failed_chunk_placeholder(0, 5))
        assert result.output.endswith(chunks[4].markup)

    @pytest.mark.asyncio
    async def test_render_timeout_returns_partial_output(self, render_config, chunks, slow_compiler_factory):
        compiler = slow_compiler_factory(delay=0.2)
        config = render_config(render_timeout_seconds=0.5, chunk_timeout_seconds=5.0)
        result = await StreamingRenderPipeline(compiler, config=config).render(chunks)

        assert not result.ok
        assert result.error.kind == "timeout"
        assert 1 <= result.stats.processed_chunks < 5
        assert result.output.startswith(chunks[0].markup)
        assert "render-timeout" in result.output
        assert result.error.partial_output == result.output
        assert result.stats.failed_chunks == 0

    @pytest.mark.asyncio
    async def test_render_timeout_in_streaming_mode(self, render_config, chunks, slow_compiler_factory):
        delivered = []
        compiler = slow_compiler_factory(delay=0.2)
        config = render_config(render_timeout_seconds=0.5)
        result = await StreamingRenderPipeline(compiler, config=config).render(
            chunks, sink=lambda rendered, progress: delivered.append((rendered, progress)),
        )

        assert result.error.kind == "timeout"
        assert result.output == ""
        assert result.error.partial_output is None
        marker, progress = delivered[-1]
        assert "render-timeout" in marker
        assert progress.failed is True


class TestCancellation:
    """Cancellation is checked between chunks."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_chunk(self, render_config, chunks):
        cancel = asyncio.Event()

        def on_progress(progress: RenderProgress):
            cancel.set()

        result = await StreamingRenderPipeline(config=render_config()).render(
            chunks, progress_callback=on_progress, cancel_event=cancel,
        )

        assert result.cancelled is True
        assert result.error.kind == "cancelled"
        assert result.stats.processed_chunks == 1
        assert result.output == chunks[0].markup
        assert result.error.partial_output == chunks[0].markup

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, render_config, chunks, recording_compiler):
        cancel = asyncio.Event()
        cancel.set()
        result = await StreamingRenderPipeline(recording_compiler, config=render_config()).render(
            chunks, cancel_event=cancel,
        )

        assert result.cancelled is True
        assert result.stats.processed_chunks == 0
        assert recording_compiler.calls == []


class TestDelivery:
    """Ordering, streaming sinks, progress and context."""

    @pytest.mark.asyncio
    async def test_concurrent_rendering_preserves_order(self, render_config, chunks):
        finished = []

        async def compiler(fragment, context):
            # Later chunks finish first
            await asyncio.sleep(0.01 * (context["totalChunks"] - context["chunkIndex"]))
            finished.append(context["chunkIndex"])
            return f"[{context['chunkIndex']}]"

        config = render_config(max_concurrency=3)
        result = await StreamingRenderPipeline(compiler, config=config).render(chunks)

        assert result.output == "[0][1][2][3][4]"
        assert finished != sorted(finished)

    @pytest.mark.asyncio
    async def test_streaming_sink(self, render_config, chunks):
        delivered = []

        async def sink(rendered, progress):
            delivered.append((rendered, progress))

        result = await StreamingRenderPipeline(config=render_config()).render(chunks, sink=sink)

        assert result.output == ""
        assert [r for r, _ in delivered] == [c.markup for c in chunks]
        assert [p.chunk_index for _, p in delivered] == [0, 1, 2, 3, 4]
        assert delivered[-1][1].percent == 100.0
        assert all(p.total_chunks == 5 for _, p in delivered)

    @pytest.mark.asyncio
    async def test_async_chunk_source(self, render_config, chunks):
        async def source():
            for chunk in chunks:
                yield chunk

        result = await StreamingRenderPipeline(config=render_config()).render(source())
        assert result.output == _expected(chunks)
        assert result.stats.total_chunks == 5

    @pytest.mark.asyncio
    async def test_progress_callback_errors_are_ignored(self, render_config, chunks):
        seen = []

        async def on_progress(progress):
            seen.append(progress.percent)
            raise RuntimeError("observer failed")

        result = await StreamingRenderPipeline(config=render_config()).render(chunks, progress_callback=on_progress)

        assert result.output == _expected(chunks)
        assert seen == [20.0, 40.0, 60.0, 80.0, 100.0]

    @pytest.mark.asyncio
    async def test_context_carries_chunk_metadata(self, render_config, chunks, recording_compiler):
        data = {"title": "Quarterly"}
        priority_map = PriorityMap.empty()
        await StreamingRenderPipeline(recording_compiler, config=render_config()).render(
            chunks, data, priority_map=priority_map,
        )

        assert data == {"title": "Quarterly"}
        assert len(recording_compiler.calls) == 5
        first, last = recording_compiler.calls[0], recording_compiler.calls[-1]
        assert first["title"] == "Quarterly"
        assert first["chunkIndex"] == 0 and first["isFirstChunk"] is True
        assert last["chunkIndex"] == 4 and last["isLastChunk"] is True
        assert all(call["totalChunks"] == 5 for call in recording_compiler.calls)
        assert first["priorityMap"] == priority_map.to_dict()

    def test_build_render_context_does_not_mutate(self, chunks):
        data = {"chunkIndex": "caller value", "x": 1}
        context = build_render_context(data, chunks[2], None)

        assert context["chunkIndex"] == 2
        assert context["x"] == 1
        assert data["chunkIndex"] == "caller value"

    @pytest.mark.asyncio
    async def test_non_string_output_is_converted(self, render_config, chunks):
        result = await StreamingRenderPipeline(lambda fragment, context: 7, config=render_config()).render(chunks)
        assert result.output == "77777"


class TestPipelineCache:
    """Cache lookups before compiling."""

    @pytest.mark.asyncio
    async def test_second_render_is_served_from_cache(self, render_config, chunks, recording_compiler):
        cache = TemplateCache()
        pipeline = StreamingRenderPipeline(recording_compiler, cache=cache, config=render_config())

        first = await pipeline.render(chunks, {"v": 1})
        second = await pipeline.render(chunks, {"v": 1})

        assert first.stats.cache_misses == 5
        assert second.stats.cache_hits == 5
        assert second.output == first.output
        assert len(recording_compiler.calls) == 5

    @pytest.mark.asyncio
    async def test_different_data_misses(self, render_config, chunks, recording_compiler):
        pipeline = StreamingRenderPipeline(recording_compiler, cache=TemplateCache(), config=render_config())
        await pipeline.render(chunks, {"v": 1})
        second = await pipeline.render(chunks, {"v": 2})

        assert second.stats.cache_hits == 0
        assert len(recording_compiler.calls) == 10

    @pytest.mark.asyncio
    async def test_failed_chunks_are_not_cached(self, render_config, chunks, flaky_compiler_factory, fake_sleep):
        compiler = flaky_compiler_factory({1})
        cache = TemplateCache()
        pipeline = StreamingRenderPipeline(compiler, cache=cache, config=render_config(), sleep=fake_sleep)

        await pipeline.render(chunks)
        second = await pipeline.render(chunks)

        assert len(cache) == 4
        assert second.stats.cache_hits == 4
        assert second.stats.failed_chunks == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_in_config(self, render_config, chunks, recording_compiler):
        cache = TemplateCache()
        pipeline = StreamingRenderPipeline(recording_compiler, cache=cache, config=render_config(cache_enabled=False))
        await pipeline.render(chunks)
        await pipeline.render(chunks)

        assert len(cache) == 0
        assert len(recording_compiler.calls) == 10

    @pytest.mark.asyncio
    async def test_unkeyable_data_renders_uncached(self, render_config, chunks, recording_compiler):
        data = {"title": "Report"}
        data["parent"] = data
        cache = TemplateCache()
        pipeline = StreamingRenderPipeline(recording_compiler, cache=cache, config=render_config())

        result = await pipeline.render(chunks, data)

        assert result.output == _expected(chunks)
        assert result.stats.failed_chunks == 0
        assert result.stats.cache_hits == 0
        assert len(cache) == 0
