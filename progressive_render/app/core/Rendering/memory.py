# memory.py
"""
Process memory sampling and relief hooks for rendering.

``MemoryMonitor`` samples the process RSS on its own asyncio task while a
render runs, tracks the peak and logs a warning when the configured limit is
crossed. Relief hooks are called between failed chunk attempts.
"""

import asyncio
import gc
import inspect
from typing import Awaitable, Callable, Optional, Union

import psutil
from loguru import logger

from .base import RenderStats

MemoryRelief = Callable[[], Union[None, int, Awaitable[None]]]


def current_rss() -> int:
    """Return the resident set size of the current process in bytes."""
    return int(psutil.Process().memory_info().rss)


def gc_collect_relief() -> int:
    """Relief hook that runs a full garbage collection."""
    collected = gc.collect()
    logger.debug(f"Memory relief: gc collected {collected} objects")
    return collected


def noop_relief() -> None:
    """Default relief hook; does nothing."""
    return None


async def run_relief(hook: Optional[MemoryRelief]) -> None:
    """Invoke a sync or async relief hook, logging and swallowing its errors."""
    if hook is None:
        return
    try:
        result = hook()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Error in memory relief hook: {e}")


class MemoryMonitor:
    """Samples process memory while a render is in progress"""

    def __init__(self,
                 memory_limit_bytes: int = 300 * 1000 * 1000,
                 sample_interval: float = 1.0,
                 stats: Optional[RenderStats] = None,
                 sampler: Callable[[], int] = current_rss):
        """
        Initialize memory monitor.

        Args:
            memory_limit_bytes: RSS above which a warning is logged
            sample_interval: Seconds between samples
            stats: RenderStats receiving samples and the peak
            sampler: Function returning the current RSS in bytes
        """
        self.memory_limit_bytes = memory_limit_bytes
        self.sample_interval = sample_interval
        self.stats = stats if stats is not None else RenderStats()
        self._sampler = sampler
        self._monitoring = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._above_limit = False

    @property
    def peak_bytes(self) -> int:
        return self.stats.peak_memory_bytes

    def sample(self) -> int:
        """Take one sample and record it"""
        rss = self._sampler()
        self.stats.record_memory(rss)
        if rss > self.memory_limit_bytes:
            if not self._above_limit:
                logger.warning(
                    f"High memory usage: {rss / (1024 * 1024):.1f}MB "
                    f"(limit {self.memory_limit_bytes / (1024 * 1024):.1f}MB)"
                )
            self._above_limit = True
        else:
            self._above_limit = False
        return rss

    async def start_monitoring(self):
        """Start memory monitoring"""
        if self._monitoring:
            return
        self._monitoring = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.debug("Memory monitoring started")

    async def stop_monitoring(self):
        """Stop memory monitoring"""
        self._monitoring = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        logger.debug(f"Memory monitoring stopped (peak {self.peak_bytes / (1024 * 1024):.1f}MB)")

    async def _monitor_loop(self):
        """Memory monitoring loop"""
        while self._monitoring:
            try:
                self.sample()
                await asyncio.sleep(self.sample_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in memory monitoring: {e}")
                await asyncio.sleep(self.sample_interval)

    async def __aenter__(self) -> "MemoryMonitor":
        await self.start_monitoring()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop_monitoring()
        return False
