# staging.py
"""
Disk staging of chunk markup for large documents.

``DiskChunkStager`` owns a private temporary directory for one render
invocation. Chunks are written one at a time, read back one at a time, and
each file is deleted as soon as it has been read. The directory is removed on
every exit path of the ``async with`` block.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os
from loguru import logger

from .base import Chunk, ChunkPlan, Document, PriorityMap, RenderStats
from .chunker import ChunkingEngine
from .exceptions import DiskStagingError


class DiskChunkStager:
    """Per-invocation temporary storage for chunk markup."""

    def __init__(self,
                 temp_dir: Optional[str] = None,
                 file_prefix: str = 'chunk-',
                 clean_temp_files: bool = True):
        """
        Initialize the stager.

        Args:
            temp_dir: Parent directory for the staging directory (system temp when None)
            file_prefix: Prefix of staged chunk file names
            clean_temp_files: Remove the staging directory on exit; disable only to inspect staged files
        """
        self.temp_dir = temp_dir
        self.file_prefix = file_prefix
        self.clean_temp_files = clean_temp_files
        self.directory: Optional[Path] = None
        self.files_written = 0
        self.files_read = 0

    async def __aenter__(self) -> "DiskChunkStager":
        try:
            if self.temp_dir:
                os.makedirs(self.temp_dir, exist_ok=True)
            self.directory = Path(tempfile.mkdtemp(prefix='prender-', dir=self.temp_dir))
        except OSError as e:
            raise DiskStagingError(
                f"Could not create staging directory: {e}", path=self.temp_dir, operation='mkdir'
            ) from e
        logger.debug(f"Staging directory created: {self.directory}")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    def cleanup(self) -> None:
        if self.directory is None:
            return
        if not self.clean_temp_files:
            logger.info(f"Keeping staging directory {self.directory}")
            return
        try:
            shutil.rmtree(self.directory)
            logger.debug(f"Staging directory removed: {self.directory}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove staging directory {self.directory}: {e}")
        self.directory = None

    def path_for(self, index: int) -> Path:
        if self.directory is None:
            raise DiskStagingError("Stager is not open", operation='path')
        return self.directory / f"{self.file_prefix}{index:06d}.html"

    async def write(self, index: int, markup: str) -> Path:
        """
        Write the markup of one chunk.

        Raises:
            DiskStagingError: If the file cannot be written
        """
        path = self.path_for(index)
        try:
            async with aiofiles.open(path, 'w', encoding='utf-8', newline='') as f:
                await f.write(markup)
        except OSError as e:
            raise DiskStagingError(
                f"Failed to stage chunk {index}: {e}", path=str(path), operation='write'
            ) from e
        self.files_written += 1
        return path

    async def read(self, index: int) -> str:
        """
        Read the markup of one chunk and delete its file.

        Raises:
            DiskStagingError: If the file cannot be read
        """
        path = self.path_for(index)
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8', newline='') as f:
                markup = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise DiskStagingError(
                f"Failed to read staged chunk {index}: {e}", path=str(path), operation='read'
            ) from e
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to delete staged chunk {path}: {e}")
        self.files_read += 1
        return markup


async def stage_chunks(stager: DiskChunkStager,
                       engine: ChunkingEngine,
                       document: Document,
                       plan: ChunkPlan,
                       priority_map: Optional[PriorityMap] = None) -> None:
    """
    Write every chunk of a plan to the stager, one at a time.

    Raises:
        DiskStagingError: On the first write failure
    """
    for chunk in engine.iter_chunks(document, plan, priority_map):
        await stager.write(chunk.index, chunk.markup)
    logger.debug(f"Staged {plan.total} chunks in {stager.directory}")


async def iter_staged_chunks(stager: DiskChunkStager,
                             engine: ChunkingEngine,
                             document: Document,
                             plan: ChunkPlan,
                             priority_map: Optional[PriorityMap] = None,
                             stats: Optional[RenderStats] = None) -> AsyncIterator[Chunk]:
    """
    Yield staged chunks in index order.

    A chunk whose file cannot be read back is rebuilt from the document text
    and counted in ``stats.staging_fallbacks``.
    """
    for index in range(plan.total):
        try:
            markup = await stager.read(index)
        except DiskStagingError as e:
            logger.warning(f"{e.message}; rebuilding chunk {index} from the document")
            if stats is not None:
                stats.staging_fallbacks += 1
            markup = None
        yield engine.materialize(document, plan, index, priority_map, markup=markup)
