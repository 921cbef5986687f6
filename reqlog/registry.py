# FILE: reqlog/registry.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Union

if TYPE_CHECKING:  # pragma: no cover
    from .context import RequestInfo, ResponseInfo


_logger = logging.getLogger(__name__)


TokenFn = Callable[["RequestInfo", "ResponseInfo", str], Any]
RenderFn = Callable[["Registry", "RequestInfo", "ResponseInfo"], Optional[str]]
FormatSpec = Union[str, RenderFn]


class Registry:
    """
    Token and named-format tables.

    Both tables are plain dicts: registration is expected while the app is
    being configured, reads happen on every logged request. A later
    registration under an existing name silently replaces the earlier one.
    `token()` and `format()` return the registry so calls can be chained:

        registry.token("tenant", lambda req, res, arg: req.headers.get("x-tenant")) \\
                .format("mine", ":method :url :tenant")
    """

    def __init__(self) -> None:
        self._tokens: Dict[str, TokenFn] = {}
        self._formats: Dict[str, FormatSpec] = {}

    # ------- tokens -------

    def token(self, name: str, fn: TokenFn) -> "Registry":
        if not callable(fn):
            raise TypeError(f"token {name!r} must be callable")
        if name in self._tokens:
            _logger.debug("token %s redefined", name)
        self._tokens[name] = fn
        return self

    def resolve_token(self, name: str) -> Optional[TokenFn]:
        return self._tokens.get(name)

    def token_names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._tokens))

    # ------- formats -------

    def format(self, name: str, fmt: FormatSpec) -> "Registry":
        if not isinstance(fmt, str) and not callable(fmt):
            raise TypeError(f"format {name!r} must be a template string or a callable")
        if name in self._formats:
            _logger.debug("format %s redefined", name)
        self._formats[name] = fmt
        return self

    def resolve_format(self, name: str) -> Optional[FormatSpec]:
        return self._formats.get(name)

    def format_names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._formats))

    # ------- construction -------

    def copy(self) -> "Registry":
        other = Registry()
        other._tokens = dict(self._tokens)
        other._formats = dict(self._formats)
        return other

    @classmethod
    def with_builtins(cls) -> "Registry":
        from .formats import register_builtin_formats
        from .tokens import register_builtin_tokens

        reg = cls()
        register_builtin_tokens(reg)
        register_builtin_formats(reg)
        return reg


# Process-wide registry used when the middleware is not handed one.
default_registry = Registry.with_builtins()


def define_token(name: str, fn: TokenFn) -> Registry:
    return default_registry.token(name, fn)


def define_format(name: str, fmt: FormatSpec) -> Registry:
    return default_registry.format(name, fmt)
