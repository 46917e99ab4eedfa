"""
Lightweight logging context helpers for propagating render identifiers.

Usage:

    from progressive_render.app.core.Logging.log_context import log_context, new_render_id

    render_id = new_render_id()
    with log_context(render_id=render_id, strategy="chunked_in_memory") as log:
        log.info("Starting render")
        ...

The context manager both contextualizes the base logger (so nested logs inherit
the fields) and returns a bound logger for convenience.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Any
import uuid

from loguru import logger


def new_render_id() -> str:
    """Return a new opaque render identifier (hex)."""
    return uuid.uuid4().hex


@contextmanager
def log_context(**fields: Any) -> Iterator[Any]:
    """Context manager that sets structured logging fields and yields a bound logger.

    - Adds fields to the logger context (via logger.contextualize) so that any
      logs emitted inside the context inherit them.
    - Yields a logger bound with the same fields for direct use.
    """
    clean = {k: v for k, v in fields.items() if v is not None}
    with logger.contextualize(**clean):
        bound = logger.bind(**clean)
        yield bound


def short_id(value: str, length: int = 8) -> str:
    """Truncate an identifier or cache key for log lines."""
    if not value:
        return ""
    return value[:length] + ("..." if len(value) > length else "")
