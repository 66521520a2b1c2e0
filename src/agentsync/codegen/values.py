"""Value rendering and layout-insensitive comparison of builder expressions."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentsync.source.literals import NOT_LITERAL, decode_string, literal_value, same_value

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentsync.source.document import CodeStyle

__all__ = [
    "NOT_LITERAL",
    "Code",
    "Expr",
    "RefItem",
    "RefList",
    "format_key",
    "format_string",
    "literal_value",
    "normalize_code",
    "render_inline",
    "render_value",
    "same_value",
]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


class Code(ABC):
    """An expression that renders itself instead of being a plain literal."""

    @abstractmethod
    def render(self, style: CodeStyle, indent: str, column: int, multiline: bool | None) -> str:
        """Source text at *column* of a line indented by *indent*."""


@dataclass(frozen=True)
class Expr(Code):
    """Pre-rendered source code, inserted verbatim."""

    code: str

    def render(self, style: CodeStyle, indent: str, column: int, multiline: bool | None) -> str:
        return self.code


@dataclass(frozen=True)
class RefItem:
    """One element of a reference list: *key* identifies the target for diffing."""

    key: str
    code: str


@dataclass(frozen=True)
class RefList(Code):
    """A list of identifier expressions, optionally wrapped in a getter."""

    items: tuple[RefItem, ...]
    lazy: bool = True

    def render(self, style: CodeStyle, indent: str, column: int, multiline: bool | None) -> str:
        prefix = "() => " if self.lazy else ""
        body = render_value(
            [Expr(item.code) for item in self.items],
            style,
            indent,
            column + len(prefix),
            multiline,
        )
        return prefix + body


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_key(key: str, style: CodeStyle) -> str:
    if _IDENTIFIER_RE.match(key):
        return key
    return format_string(key, style.quote)


def format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def format_string(value: str, quote: str = "'") -> str:
    """Render *value* as a string literal.

    Newlines, or both quote characters, switch to a template literal. A
    value containing only the preferred quote uses the other one.
    """
    other = '"' if quote == "'" else "'"
    if "\n" in value or (quote in value and other in value):
        body = value.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")
        return "`" + body.replace("\r", "\\r") + "`"
    if quote in value:
        quote = other
    body = value.replace("\\", "\\\\").replace(quote, "\\" + quote).replace("\r", "\\r")
    return f"{quote}{body}{quote}"


def is_multiline_value(value: Any) -> bool:
    """Objects nesting other objects are always rendered over several lines."""
    if isinstance(value, dict):
        return any(isinstance(v, (dict, list)) and v for v in value.values())
    return False


def render_value(
    value: Any,
    style: CodeStyle,
    indent: str = "",
    column: int = 0,
    multiline: bool | None = None,
) -> str:
    """Render a Python value as a source expression.

    Parameters
    ----------
    value:
        Plain JSON-like data, or a :class:`Code` instance.
    indent:
        Indentation of the line the expression starts on.
    column:
        Column where the expression starts, for the width check.
    multiline:
        ``True`` forces the outermost literal over several lines, ``False``
        keeps it on one line when it fits, ``None`` decides by width.
    """
    if isinstance(value, Code):
        return value.render(style, indent, column, multiline)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return format_string(value, style.quote)
    if isinstance(value, (list, tuple)):
        return _render_array(list(value), style, indent, column, multiline)
    if isinstance(value, dict):
        return _render_object(value, style, indent, column, multiline)
    return format_string(str(value), style.quote)


def render_inline(value: Any, style: CodeStyle) -> str:
    """Render *value* on a single line regardless of width."""
    if isinstance(value, dict):
        if not value:
            return "{}"
        body = ", ".join(f"{format_key(k, style)}: {render_inline(v, style)}" for k, v in value.items())
        return "{ " + body + " }"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_inline(v, style) for v in value) + "]"
    return render_value(value, style, "", 0, False)


def _join_multiline(parts: Sequence[str], style: CodeStyle, indent: str, open_: str, close: str) -> str:
    inner = indent + style.indent
    lines = [f"{inner}{part}," for part in parts]
    if not style.trailing_commas and lines:
        lines[-1] = lines[-1][:-1]
    return open_ + "\n" + "\n".join(lines) + "\n" + indent + close


def _render_array(
    items: list[Any], style: CodeStyle, indent: str, column: int, multiline: bool | None
) -> str:
    if not items:
        return "[]"
    flat = [render_value(v, style, indent, column) for v in items]
    single = "[" + ", ".join(flat) + "]"
    if (
        multiline is not True
        and "\n" not in single
        and column + len(single) <= style.print_width
    ):
        return single
    inner = indent + style.indent
    parts = [render_value(v, style, inner, len(inner)) for v in items]
    return _join_multiline(parts, style, indent, "[", "]")


def _render_object(
    obj: dict[str, Any], style: CodeStyle, indent: str, column: int, multiline: bool | None
) -> str:
    if not obj:
        return "{}"
    if multiline is not True and not is_multiline_value(obj):
        flat = [f"{format_key(k, style)}: {render_value(v, style, indent, column)}" for k, v in obj.items()]
        single = "{ " + ", ".join(flat) + " }"
        if "\n" not in single and column + len(single) <= style.print_width:
            return single
    inner = indent + style.indent
    parts = []
    for key, val in obj.items():
        head = f"{format_key(key, style)}: "
        parts.append(head + render_value(val, style, inner, len(inner) + len(head)))
    return _join_multiline(parts, style, indent, "{", "}")


# ---------------------------------------------------------------------------
# Code comparison
# ---------------------------------------------------------------------------


def normalize_code(code: str) -> str:
    """Reduce an expression to a layout-insensitive form.

    Whitespace, comments and trailing commas are dropped and quoted strings
    are canonicalized, so two renderings differing only in formatting compare
    equal.
    """
    tokens: list[str] = []
    i, n = 0, len(code)
    while i < n:
        ch = code[i]
        if ch in "'\"`":
            j = i + 1
            while j < n and code[j] != ch:
                j += 2 if code[j] == "\\" else 1
            raw = code[i + 1 : j]
            if ch == "`" and "${" in raw:
                tokens.append(code[i : j + 1])
            else:
                tokens.append(json.dumps(decode_string(raw)))
            i = j + 1
        elif code.startswith("//", i):
            end = code.find("\n", i)
            i = n if end == -1 else end
        elif code.startswith("/*", i):
            end = code.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch.isspace():
            i += 1
        else:
            tokens.append(ch)
            i += 1
    result = [
        tok
        for idx, tok in enumerate(tokens)
        if not (tok == "," and idx + 1 < len(tokens) and tokens[idx + 1] in (")", "]", "}"))
    ]
    return "".join(result)
