"""
Top-level package initializer for progressive_render.

The rendering engine lives in ``progressive_render.app.core.Rendering``;
configuration loading in ``progressive_render.app.core.config``.
"""

__version__ = "1.0.0"
