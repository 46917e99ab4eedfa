# exceptions.py
"""
Custom exceptions for the rendering module.
"""

from typing import Optional, Any, Dict


class RenderingError(Exception):
    """Base exception for all rendering-related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize rendering error.

        Args:
            message: Error message
            details: Optional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInputError(RenderingError):
    """Exception raised when input validation fails."""
    pass


class ConfigurationError(RenderingError):
    """Exception raised for configuration-related errors."""
    pass


class StructuralAnalysisError(RenderingError):
    """Exception raised when a document cannot be parsed into blocks."""

    def __init__(self, message: str, parser: Optional[str] = None, **kwargs):
        """
        Initialize structural analysis error.

        Args:
            message: Error message
            parser: Name of the parser or strategy that failed
            **kwargs: Additional error details
        """
        details = {'parser': parser, **kwargs}
        super().__init__(message, details)


class ChunkRenderError(RenderingError):
    """Exception raised when a single chunk fails to render."""

    def __init__(self, message: str, chunk_index: Optional[int] = None,
                 attempt: Optional[int] = None, **kwargs):
        """
        Initialize chunk render error.

        Args:
            message: Error message
            chunk_index: Index of the chunk that failed
            attempt: Attempt number (1-based) that failed
            **kwargs: Additional error details
        """
        details = {'chunk_index': chunk_index, 'attempt': attempt, **kwargs}
        super().__init__(message, details)


class ChunkTimeoutError(ChunkRenderError):
    """Exception raised when a chunk attempt exceeds its timeout."""
    pass


class RenderTimeoutError(RenderingError):
    """Exception raised when the whole render exceeds its timeout."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None,
                 partial_output: Optional[str] = None, **kwargs):
        details = {'timeout_seconds': timeout_seconds, **kwargs}
        super().__init__(message, details)
        self.partial_output = partial_output


class RenderCancelledError(RenderingError):
    """Exception raised when a render is cancelled between chunks."""
    pass


class CacheError(RenderingError):
    """Exception raised for cache-related errors."""
    pass


class DiskStagingError(RenderingError):
    """Exception raised when temporary chunk storage cannot be written or read."""

    def __init__(self, message: str, path: Optional[str] = None,
                 operation: Optional[str] = None, **kwargs):
        """
        Initialize disk staging error.

        Args:
            message: Error message
            path: Filesystem path involved
            operation: Operation that failed (mkdir, write, read, cleanup)
            **kwargs: Additional error details
        """
        details = {'path': path, 'operation': operation, **kwargs}
        super().__init__(message, details)


__all__ = [
    'RenderingError',
    'InvalidInputError',
    'ConfigurationError',
    'StructuralAnalysisError',
    'ChunkRenderError',
    'ChunkTimeoutError',
    'RenderTimeoutError',
    'RenderCancelledError',
    'CacheError',
    'DiskStagingError',
]
