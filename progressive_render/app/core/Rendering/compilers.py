# compilers.py
"""
Adapters for the external template compiler collaborator.

A compiler is any object with ``compile(fragment, context) -> str`` (sync or
async) or a plain callable with the same signature. Sync compilers are run in
the default executor so they do not block the event loop.
"""

import asyncio
import functools
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from jinja2 import StrictUndefined, Undefined
from jinja2.sandbox import SandboxedEnvironment
from loguru import logger

from .exceptions import ConfigurationError

CompileResult = Union[str, Awaitable[str]]


class TemplateCompiler(Protocol):
    """Protocol for template compilers."""

    def compile(self, fragment: str, context: Dict[str, Any]) -> CompileResult:
        """
        Render a markup fragment with a data context.

        Args:
            fragment: Standalone markup of one chunk (or the whole document)
            context: Caller data merged with chunk metadata

        Returns:
            Rendered output, or an awaitable resolving to it
        """
        ...


class PassthroughCompiler:
    """Returns fragments unchanged."""

    blocking = False

    def compile(self, fragment: str, context: Dict[str, Any]) -> str:
        return fragment


class CallableCompiler:
    """Wraps a ``(fragment, context) -> str`` callable, sync or async."""

    def __init__(self, func: Callable[[str, Dict[str, Any]], CompileResult], blocking: bool = True):
        if not callable(func):
            raise ConfigurationError(f"Compiler callable expected, got {type(func).__name__}")
        self.func = func
        self.blocking = blocking
        self.is_async = inspect.iscoroutinefunction(func)

    def compile(self, fragment: str, context: Dict[str, Any]) -> CompileResult:
        return self.func(fragment, context)

    def __repr__(self) -> str:
        return f"CallableCompiler({getattr(self.func, '__name__', self.func)!r})"


class JinjaTemplateCompiler:
    """
    Renders fragments as Jinja templates in a sandboxed environment.

    Template errors propagate so the pipeline can retry the chunk and fall
    back to a placeholder.
    """

    blocking = True

    def __init__(self, autoescape: bool = True, strict_undefined: bool = False,
                 environment: Optional[SandboxedEnvironment] = None):
        """
        Initialize the Jinja compiler.

        Args:
            autoescape: HTML-escape substituted values
            strict_undefined: Raise on undefined variables instead of rendering empty
            environment: Preconfigured sandbox to use instead of a new one
        """
        self.environment = environment or SandboxedEnvironment(
            autoescape=autoescape,
            undefined=StrictUndefined if strict_undefined else Undefined,
            keep_trailing_newline=True,
        )

    def compile(self, fragment: str, context: Dict[str, Any]) -> str:
        template = self.environment.from_string(fragment)
        return template.render(**context)


def resolve_compiler(compiler: Any = None) -> Any:
    """
    Normalize a compiler argument.

    Args:
        compiler: None, an object with ``compile`` or a callable

    Returns:
        Object exposing ``compile(fragment, context)``

    Raises:
        ConfigurationError: If the argument is not usable as a compiler
    """
    if compiler is None:
        return PassthroughCompiler()
    if callable(getattr(compiler, 'compile', None)):
        return compiler
    if callable(compiler):
        return CallableCompiler(compiler)
    raise ConfigurationError(
        f"Unsupported compiler type: {type(compiler).__name__}",
        details={'type': type(compiler).__name__},
    )


async def run_compiler(compiler: Any, fragment: str, context: Dict[str, Any]) -> str:
    """
    Invoke a compiler and await its result.

    Async compilers are awaited directly; sync compilers run in the default
    executor unless they declare ``blocking = False``.
    """
    compile_fn = compiler.compile
    if inspect.iscoroutinefunction(compile_fn) or getattr(compiler, 'is_async', False):
        result = compile_fn(fragment, context)
    elif getattr(compiler, 'blocking', True):
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(compile_fn, fragment, context))
    else:
        result = compile_fn(fragment, context)

    if inspect.isawaitable(result):
        result = await result
    if not isinstance(result, str):
        logger.debug(f"Compiler returned {type(result).__name__}, converting to str")
        result = '' if result is None else str(result)
    return result
