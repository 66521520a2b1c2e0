"""JSON Schema to zod schema-builder expression compiler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from agentsync.codegen.values import Code, render_value

if TYPE_CHECKING:
    from agentsync.source.document import CodeStyle

logger = logging.getLogger(__name__)

_SIMPLE_TYPES = {
    "string": "z.string",
    "number": "z.number",
    "integer": "z.number",
    "boolean": "z.boolean",
    "null": "z.null",
}


@dataclass(frozen=True)
class ZodNode(Code):
    """A schema-builder call with optional object shape and method chain."""

    callee: str
    args: tuple[Any, ...] = ()
    shape: tuple[tuple[str, ZodNode], ...] | None = None
    chain: tuple[tuple[str, tuple[Any, ...]], ...] = ()

    def then(self, method: str, *args: Any) -> ZodNode:
        return replace(self, chain=(*self.chain, (method, args)))

    @property
    def is_object(self) -> bool:
        return self.shape is not None

    def render(self, style: CodeStyle, indent: str, column: int, multiline: bool | None) -> str:
        head = f"{self.callee}("
        if self.shape is not None:
            nested = any(node.is_object for _key, node in self.shape)
            body = render_value(
                dict(self.shape),
                style,
                indent,
                column + len(head),
                True if nested or multiline else None,
            )
        else:
            rendered = [render_value(arg, style, indent, column + len(head)) for arg in self.args]
            body = ", ".join(rendered)
        text = f"{head}{body})"
        for method, args in self.chain:
            rendered_args = ", ".join(render_value(a, style, indent, column) for a in args)
            text += f".{method}({rendered_args})"
        return text


def _with_common(node: ZodNode, schema: dict[str, Any]) -> ZodNode:
    description = schema.get("description")
    if isinstance(description, str) and description:
        node = node.then("describe", description)
    if "default" in schema:
        node = node.then("default", schema["default"])
    return node


def _types_of(schema: dict[str, Any]) -> tuple[list[str], bool]:
    raw = schema.get("type")
    types = [raw] if isinstance(raw, str) else [t for t in raw or [] if isinstance(t, str)]
    nullable = "null" in types and len(types) > 1
    if nullable:
        types = [t for t in types if t != "null"]
    return types, nullable or schema.get("nullable") is True


def compile_schema(schema: Any) -> ZodNode:
    """Compile a JSON Schema document into a zod expression tree.

    Objects walk ``properties`` and mark fields absent from ``required`` as
    optional; ``enum``, ``items``, ``anyOf``/``oneOf`` and ``const`` map
    recursively; ``description`` text is carried over via ``.describe()``.
    """
    if not isinstance(schema, dict):
        logger.warning("Schema conversion skipped: non-object schema provided, using z.any()")
        return ZodNode("z.any")
    return _with_common(_compile(schema), schema)


def _compile(schema: dict[str, Any]) -> ZodNode:
    if "const" in schema:
        return ZodNode("z.literal", (schema["const"],))

    enum = schema.get("enum")
    if isinstance(enum, list) and enum:
        if all(isinstance(v, str) for v in enum):
            return ZodNode("z.enum", (list(enum),))
        literals = [ZodNode("z.literal", (v,)) for v in enum]
        return literals[0] if len(literals) == 1 else ZodNode("z.union", (literals,))

    for combinator in ("anyOf", "oneOf"):
        options = schema.get(combinator)
        if isinstance(options, list) and options:
            nodes = [compile_schema(o) for o in options]
            return nodes[0] if len(nodes) == 1 else ZodNode("z.union", (nodes,))

    types, nullable = _types_of(schema)
    if len(types) > 1:
        node = ZodNode("z.union", ([_compile({**schema, "type": t}) for t in types],))
    elif not types:
        node = _compile_object(schema) if "properties" in schema else ZodNode("z.any")
    elif types[0] == "object":
        node = _compile_object(schema)
    elif types[0] == "array":
        items = schema.get("items")
        node = ZodNode("z.array", (compile_schema(items) if isinstance(items, dict) else ZodNode("z.any"),))
    elif types[0] in _SIMPLE_TYPES:
        node = ZodNode(_SIMPLE_TYPES[types[0]])
        if types[0] == "integer":
            node = node.then("int")
    else:
        node = ZodNode("z.any")
    return node.then("nullable") if nullable else node


def _compile_object(schema: dict[str, Any]) -> ZodNode:
    properties = schema.get("properties")
    if not isinstance(properties, dict) or not properties:
        return ZodNode("z.record", (ZodNode("z.string"), ZodNode("z.any")))
    required = set(schema.get("required") or [])
    shape = []
    for name, prop in properties.items():
        node = compile_schema(prop)
        if name not in required:
            node = node.then("optional")
        shape.append((name, node))
    node = ZodNode("z.object", shape=tuple(shape))
    if schema.get("additionalProperties") is False:
        node = node.then("strict")
    return node


def compile_artifact_props(schema: Any) -> ZodNode:
    """Compile artifact props, wrapping ``inPreview`` fields in ``preview()``."""
    if not isinstance(schema, dict) or not isinstance(schema.get("properties"), dict):
        return compile_schema(schema)
    required = set(schema.get("required") or [])
    shape = []
    for name, prop in schema["properties"].items():
        in_preview = isinstance(prop, dict) and prop.get("inPreview") is True
        clean = {k: v for k, v in prop.items() if k != "inPreview"} if isinstance(prop, dict) else prop
        node = compile_schema(clean)
        if name not in required:
            node = node.then("optional")
        if in_preview:
            node = ZodNode("preview", (node,))
        shape.append((name, node))
    return _with_common(ZodNode("z.object", shape=tuple(shape)), schema)


def uses_preview(node: Any) -> bool:
    """Return whether a compiled tree contains a ``preview()`` wrapper."""
    if not isinstance(node, ZodNode):
        return False
    if node.callee == "preview":
        return True
    children = [n for _k, n in node.shape or ()] + [a for a in node.args if isinstance(a, ZodNode)]
    for arg in node.args:
        if isinstance(arg, list):
            children.extend(a for a in arg if isinstance(a, ZodNode))
    return any(uses_preview(c) for c in children)
