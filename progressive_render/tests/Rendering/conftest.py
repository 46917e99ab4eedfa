"""
Rendering Test Configuration and Fixtures

Provides document builders, deterministic configuration, and compilers that
fail, hang or succeed on demand for exercising the render pipeline.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import pytest

from progressive_render.app.core.Rendering.base import MB, RenderConfig


# =====================================================================
# Document builders
# =====================================================================

HEAD = "<head><meta charset=\"utf-8\"><title>Report</title></head>"


def build_section(index: int, size: int, tag: str = "section") -> str:
    """Build one top-level element of exactly ``size`` ASCII bytes (newline included)."""
    prefix = f'<{tag} id="s{index:03d}"><p>'
    suffix = f"</p></{tag}>\n"
    filler = max(0, size - len(prefix) - len(suffix))
    return prefix + ("x" * filler) + suffix


def build_html(sections: int = 50, section_bytes: int = 1000, tag: str = "section",
               extra_body: str = "") -> str:
    """Build a complete document whose body holds ``sections`` equal-size elements."""
    body = "".join(build_section(i, section_bytes, tag) for i in range(sections))
    return f"<!DOCTYPE html>\n<html>{HEAD}<body>\n{extra_body}{body}</body></html>\n"


@pytest.fixture
def make_html() -> Callable[..., str]:
    return build_html


@pytest.fixture
def landing_page() -> str:
    """Small page with header, main content, sidebar and footer."""
    return (
        "<!DOCTYPE html>\n<html><head><title>Landing</title></head><body>\n"
        "<header class=\"site-header\"><h1>Title</h1></header>\n"
        "<nav><a href=\"/\">Home</a></nav>\n"
        "<main id=\"main\"><article><p>Body copy</p></article></main>\n"
        "<aside class=\"sidebar\"><p>Related</p></aside>\n"
        "<div class=\"promo\"><p>Promo</p></div>\n"
        "<footer><p>Footer</p></footer>\n"
        "</body></html>\n"
    )


# =====================================================================
# Configuration
# =====================================================================

@pytest.fixture
def render_config(tmp_path) -> Callable[..., RenderConfig]:
    """Factory for fast, environment-independent configurations."""

    def factory(**overrides: Any) -> RenderConfig:
        values: Dict[str, Any] = dict(
            target_chunk_byte_size=10 * 1024,
            small_document_threshold=None,
            overflow_tolerance=0.25,
            tree_parse_max_bytes=10 * 1024 * 1024,
            critical_selectors=[],
            disk_staging_ceiling=5 * 1024 * 1024,
            disk_staging_enabled=True,
            max_in_memory_bytes=100 * MB,
            memory_limit_bytes=300 * MB,
            memory_sample_interval=0.05,
            temp_dir=str(tmp_path / "staging"),
            temp_file_prefix="chunk-",
            clean_temp_files=True,
            max_retries=3,
            retry_delay_ms=1,
            chunk_timeout_seconds=5.0,
            render_timeout_seconds=30.0,
            cache_enabled=True,
            cache_ttl_seconds=3600,
            cache_max_entries=1000,
            compression_enabled=True,
            render_mode="full",
            max_concurrency=1,
        )
        values.update(overrides)
        return RenderConfig(**values)

    return factory


@pytest.fixture
def low_memory_sampler() -> Callable[[], int]:
    """Sampler reporting a steady 50 MB process."""
    return lambda: 50 * MB


@pytest.fixture
def high_memory_sampler() -> Callable[[], int]:
    """Sampler reporting a process above the default 300 MB limit."""
    return lambda: 400 * MB


# =====================================================================
# Compilers
# =====================================================================

class RecordingCompiler:
    """Synchronous compiler recording the context of every call."""

    blocking = False

    def __init__(self, transform: Optional[Callable[[str], str]] = None):
        self.calls: List[Dict[str, Any]] = []
        self.transform = transform or (lambda fragment: fragment)

    def compile(self, fragment: str, context: Dict[str, Any]) -> str:
        self.calls.append(dict(context))
        return self.transform(fragment)


class FlakyCompiler:
    """
    Compiler failing for selected chunk indexes.

    ``failures_per_chunk`` attempts fail before a chunk succeeds; ``None``
    means the chunk never succeeds.
    """

    blocking = False

    def __init__(self, failing_indexes: Iterable[int], failures_per_chunk: Optional[int] = None):
        self.failing_indexes: Set[int] = set(failing_indexes)
        self.failures_per_chunk = failures_per_chunk
        self.attempts: Dict[int, int] = {}

    def compile(self, fragment: str, context: Dict[str, Any]) -> str:
        index = context["chunkIndex"]
        self.attempts[index] = self.attempts.get(index, 0) + 1
        if index in self.failing_indexes:
            if self.failures_per_chunk is None or self.attempts[index] <= self.failures_per_chunk:
                raise RuntimeError(f"template failure in chunk {index}")
        return fragment


class SlowCompiler:
    """Async compiler sleeping ``delay`` seconds for the selected chunk indexes."""

    def __init__(self, delay: float, slow_indexes: Optional[Iterable[int]] = None):
        self.delay = delay
        self.slow_indexes = None if slow_indexes is None else set(slow_indexes)
        self.calls = 0

    async def compile(self, fragment: str, context: Dict[str, Any]) -> str:
        self.calls += 1
        if self.slow_indexes is None or context["chunkIndex"] in self.slow_indexes:
            await asyncio.sleep(self.delay)
        return fragment


@pytest.fixture
def recording_compiler() -> RecordingCompiler:
    return RecordingCompiler()


@pytest.fixture
def flaky_compiler_factory() -> Callable[..., FlakyCompiler]:
    return FlakyCompiler


@pytest.fixture
def slow_compiler_factory() -> Callable[..., SlowCompiler]:
    return SlowCompiler


@pytest.fixture
def fake_sleep() -> Callable[[float], Any]:
    """Sleep replacement recording requested delays without waiting."""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep
