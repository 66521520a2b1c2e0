"""Static evaluation of literal expressions in parsed source."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from agentsync.source.document import node_text, object_members

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

_ESCAPE_RE = re.compile(r"\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|\r\n|.)", re.DOTALL)
_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
    "\n": "",
    "\r\n": "",
}


class _NotLiteral:
    def __repr__(self) -> str:
        return "NOT_LITERAL"


NOT_LITERAL: Any = _NotLiteral()


def _decode_escape(match: re.Match[str]) -> str:
    seq = match.group(1)
    if seq in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[seq]
    if seq.startswith("u{"):
        return chr(int(seq[2:-1], 16))
    if seq[0] in "ux" and len(seq) > 1:
        return chr(int(seq[1:], 16))
    return seq


def decode_string(raw: str) -> str:
    """Decode the body of a quoted string or template literal (quotes stripped)."""
    return _ESCAPE_RE.sub(_decode_escape, raw)


def _parse_number(text: str) -> Any:
    cleaned = text.replace("_", "")
    try:
        return int(cleaned, 0)
    except ValueError:
        pass
    try:
        return float(cleaned)
    except ValueError:
        return NOT_LITERAL


def literal_value(node: TSNode | None) -> Any:
    """Evaluate a static literal node, or return :data:`NOT_LITERAL`."""
    if node is None:
        return NOT_LITERAL
    kind = node.type
    if kind == "string":
        return decode_string(node_text(node)[1:-1])
    if kind == "template_string":
        if any(c.type == "template_substitution" for c in node.named_children):
            return NOT_LITERAL
        return decode_string(node_text(node)[1:-1])
    if kind == "number":
        return _parse_number(node_text(node))
    if kind == "true":
        return True
    if kind == "false":
        return False
    if kind == "null":
        return None
    if kind == "parenthesized_expression" and node.named_children:
        return literal_value(node.named_children[0])
    if kind == "unary_expression":
        operator = node.child_by_field_name("operator")
        value = literal_value(node.child_by_field_name("argument"))
        if operator is not None and node_text(operator) == "-" and isinstance(value, (int, float)):
            if not isinstance(value, bool):
                return -value
        return NOT_LITERAL
    if kind == "array":
        items = []
        for child in node.named_children:
            if child.type == "comment":
                continue
            value = literal_value(child)
            if value is NOT_LITERAL:
                return NOT_LITERAL
            items.append(value)
        return items
    if kind == "object":
        result: dict[str, Any] = {}
        for member in object_members(node):
            if member.key is None or member.shorthand or member.value is None:
                return NOT_LITERAL
            value = literal_value(member.value)
            if value is NOT_LITERAL:
                return NOT_LITERAL
            result[member.key] = value
        return result
    return NOT_LITERAL


def same_value(a: Any, b: Any) -> bool:
    """Deep equality that does not conflate booleans with numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(same_value(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(same_value(x, y) for x, y in zip(a, b))
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


