# FILE: reqlog/compiler.py
"""
Format compiler.

A template such as

    :remote-addr ":method :url" :status :res[content-length]

is split once into an ordered tuple of nodes: literal text chunks and
token references (name plus optional bracketed argument). Rendering walks
the nodes, looks each token up in the registry it is given and joins the
results. A token that is unregistered, raises, or returns None renders as
"-".

Compilation has no side effects and the resulting object holds no
per-request state, so one compiled format is shared by every request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional, Tuple, Union

from .registry import FormatSpec, RenderFn

if TYPE_CHECKING:  # pragma: no cover
    from .context import RequestInfo, ResponseInfo
    from .registry import Registry


_logger = logging.getLogger(__name__)

# ":name" or ":name[arg]"; name is at least two word/dash characters.
_TOKEN_RE = re.compile(r":([-\w]{2,})(?:\[([^\]]+)\])?", re.ASCII)

MISSING = "-"


class FormatError(TypeError):
    """Raised at configuration time for a format that cannot be compiled."""


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class TokenRef:
    name: str
    arg: str = ""


Node = Union[Literal, TokenRef]


def parse_template(template: str) -> Tuple[Node, ...]:
    nodes: List[Node] = []
    pos = 0
    for m in _TOKEN_RE.finditer(template):
        if m.start() > pos:
            nodes.append(Literal(template[pos:m.start()]))
        nodes.append(TokenRef(m.group(1), m.group(2) or ""))
        pos = m.end()
    if pos < len(template):
        nodes.append(Literal(template[pos:]))
    return tuple(nodes)


def _stringify(value: Any) -> str:
    if value is None:
        return MISSING
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class CompiledFormat:
    """
    Render function produced from a template string.

    Call it as `fmt(registry, req, res)`; the result is always a string.
    """

    __slots__ = ("template", "nodes")

    def __init__(self, template: str) -> None:
        self.template = template
        self.nodes = parse_template(template)

    @property
    def token_names(self) -> Tuple[str, ...]:
        return tuple(n.name for n in self.nodes if isinstance(n, TokenRef))

    def __call__(self, registry: "Registry", req: "RequestInfo", res: "ResponseInfo") -> str:
        parts: List[str] = []
        for node in self.nodes:
            if isinstance(node, Literal):
                parts.append(node.text)
                continue
            fn = registry.resolve_token(node.name)
            if fn is None:
                parts.append(MISSING)
                continue
            try:
                value = fn(req, res, node.arg)
            except Exception:
                _logger.debug("token %s failed", node.name, exc_info=True)
                parts.append(MISSING)
                continue
            parts.append(_stringify(value))
        return "".join(parts)

    def __repr__(self) -> str:
        return f"CompiledFormat({self.template!r})"


def compile_format(fmt: Optional[FormatSpec], registry: Optional["Registry"] = None) -> RenderFn:
    """
    Turn a format into a render function.

    - None selects the registry's "default" format.
    - A callable is returned unchanged.
    - A string naming a registered format is resolved first; any other
      string is compiled as an inline template.
    """
    if fmt is None:
        fmt = "default"
    if callable(fmt):
        return fmt
    if not isinstance(fmt, str):
        raise FormatError(f"format must be a name, a template string or a callable, not {type(fmt).__name__}")
    if registry is not None:
        named = registry.resolve_format(fmt)
        if named is not None:
            if callable(named):
                return named
            return CompiledFormat(named)
    return CompiledFormat(fmt)
