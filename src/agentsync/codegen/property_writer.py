"""Property writer: patch one object literal against a canonical property bag.

Existing managed keys get their value sub-expression replaced in place,
missing keys are appended after the last member, stale keys are removed.
Keys the caller does not name are never touched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentsync.codegen.values import (
    NOT_LITERAL,
    Code,
    Expr,
    RefList,
    format_key,
    literal_value,
    normalize_code,
    render_value,
    same_value,
)
from agentsync.source.document import find_member, node_text, object_members

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tree_sitter import Node as TSNode

    from agentsync.source.document import CodeStyle, Member, SourceDocument

    Locator = Callable[[SourceDocument], TSNode | None]

logger = logging.getLogger(__name__)

# schema builders, possibly imported under a numbered alias
_ZOD_ROOT_RE = re.compile(r"^(z|preview)\d*$")


@dataclass
class PatchReport:
    """Keys touched by one :meth:`PropertyWriter.patch` call."""

    changed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    manual: list[str] = field(default_factory=list)

    @property
    def touched(self) -> bool:
        return bool(self.changed or self.added or self.removed)

    def merge(self, other: PatchReport, prefix: str = "") -> None:
        self.changed.extend(prefix + k for k in other.changed)
        self.added.extend(prefix + k for k in other.added)
        self.removed.extend(prefix + k for k in other.removed)
        self.manual.extend(prefix + k for k in other.manual)


def _is_multiline(node: TSNode) -> bool:
    return node.start_point[0] != node.end_point[0]


def _elements(node: TSNode) -> list[TSNode]:
    return [c for c in node.named_children if c.type != "comment"]


def getter_array(value: TSNode) -> TSNode | None:
    """Return the array of a ``() => [...]`` getter or a bare array, else ``None``."""
    if value.type == "array":
        return value
    if value.type != "arrow_function":
        return None
    params = value.child_by_field_name("parameters")
    if params is None or _elements(params):
        return None
    body = value.child_by_field_name("body")
    return body if body is not None and body.type == "array" else None


def element_key(node: TSNode) -> str | None:
    """Identify the target of one reference-list element.

    ``weather``, ``weather.with({...})`` and ``status.config`` all key on
    ``weather``/``status``; string and ``{ id }`` elements key on the id.
    """
    if node.type == "identifier":
        return node_text(node)
    if node.type == "call_expression":
        callee = node.child_by_field_name("function")
        if callee is not None and callee.type == "member_expression":
            return element_key(callee)
        return None
    if node.type == "member_expression":
        obj = node.child_by_field_name("object")
        return node_text(obj) if obj is not None and obj.type == "identifier" else None
    value = literal_value(node)
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return value["id"]
    return None


def _chain_root(node: TSNode | None) -> str | None:
    """Identifier a call/member chain starts from: ``z`` for ``z.object({}).strict()``."""
    while node is not None:
        if node.type == "call_expression":
            node = node.child_by_field_name("function")
        elif node.type == "member_expression":
            node = node.child_by_field_name("object")
        else:
            return node_text(node) if node.type == "identifier" else None
    return None


def _is_to_template(node: TSNode) -> bool:
    if node.type != "call_expression":
        return False
    callee = node.child_by_field_name("function")
    if callee is None or callee.type != "member_expression":
        return False
    prop = callee.child_by_field_name("property")
    return prop is not None and node_text(prop) == "toTemplate"


def is_generated(node: TSNode, identifiers: bool) -> bool:
    """Whether a non-literal value has a shape this package writes itself.

    Identifiers (and ``x.config``) only count under keys holding a single
    reference, so ``prompt: SHARED_PROMPT`` stays with its author.
    """
    if literal_value(node) is not NOT_LITERAL:
        return True
    kind = node.type
    if kind in ("identifier", "shorthand_property_identifier", "member_expression"):
        return identifiers
    if kind == "template_string":
        return all(
            sub.named_children and _is_to_template(sub.named_children[0])
            for sub in node.named_children
            if sub.type == "template_substitution"
        )
    if kind == "call_expression":
        return _ZOD_ROOT_RE.match(_chain_root(node) or "") is not None
    if kind == "object":
        return all(
            m.value is not None and is_generated(m.value, identifiers)
            for m in object_members(node)
        )
    if kind == "array":
        return all(is_generated(e, identifiers) for e in _elements(node))
    return False


def is_manual_value(value: TSNode | None, reference: bool, identifiers: bool = False) -> bool:
    """Whether an existing value is owned by hand and must not be rewritten."""
    if value is None:
        return True
    if value.type == "arrow_function":
        array = getter_array(value)
        return array is None or any(element_key(e) is None for e in _elements(array))
    if reference:
        if value.type == "array":
            return any(element_key(e) is None for e in _elements(value))
        return True
    return not is_generated(value, identifiers)


def child_locator(locate: Locator, key: str) -> Locator:
    """Locator for the object literal stored under *key* of another object."""

    def inner(doc: SourceDocument) -> TSNode | None:
        obj = locate(doc)
        member = find_member(obj, key) if obj is not None else None
        if member is None or member.value is None or member.value.type != "object":
            return None
        return member.value

    return inner


class PropertyWriter:
    """Applies managed-field patches to object literals of one document."""

    def __init__(self, doc: SourceDocument) -> None:
        self.doc = doc

    @property
    def style(self) -> CodeStyle:
        return self.doc.style

    # -- public API ----------------------------------------------------------

    def patch(
        self,
        locate: Locator,
        desired: Iterable[tuple[str, Any]],
        remove: Iterable[str] = (),
        reference_keys: frozenset[str] = frozenset(),
        identifier_keys: frozenset[str] = frozenset(),
    ) -> PatchReport:
        """Bring the object found by *locate* in line with *desired*.

        Existing values that are neither literals nor expressions this
        package generates are hand-owned: they are reported in
        ``manual`` and never replaced or removed.

        Parameters
        ----------
        locate:
            Re-locates the target object after every edit.
        desired:
            ``(key, value)`` pairs in canonical order; ``None`` values mean
            the key must be absent.
        remove:
            Further managed keys that must be absent.
        reference_keys:
            Keys holding reference lists; only bare arrays of identifiers
            (or a getter returning one) are rewritten there.
        identifier_keys:
            Keys holding a single reference (or an object of them), where
            an existing identifier is generated output.
        """
        report = PatchReport()
        wanted: dict[str, Any] = {}
        for key, value in desired:
            wanted[key] = value
        absent = [k for k, v in wanted.items() if v is None]
        absent.extend(k for k in remove if k not in wanted)

        for key, value in wanted.items():
            if value is None:
                continue
            obj = locate(self.doc)
            if obj is None:
                raise LookupError(f"object literal for '{key}' disappeared")
            member = find_member(obj, key)
            if member is None:
                self._append(locate, key, value)
                report.added.append(key)
            else:
                self._update(
                    locate,
                    member,
                    key,
                    value,
                    report,
                    reference=key in reference_keys,
                    identifiers=key in identifier_keys,
                )

        for key in absent:
            obj = locate(self.doc)
            member = find_member(obj, key) if obj is not None else None
            if member is None:
                continue
            if is_manual_value(member.value, key in reference_keys, key in identifier_keys):
                logger.debug("Keeping hand-owned %s in %s", key, self.doc.path)
                report.manual.append(key)
                continue
            self._remove(member)
            report.removed.append(key)
        return report

    # -- updates -------------------------------------------------------------

    def matches(self, node: TSNode, value: Any) -> bool:
        if isinstance(value, Code):
            rendered = value.render(self.style, "", 0, False)
            return normalize_code(node_text(node)) == normalize_code(rendered)
        existing = literal_value(node)
        if existing is NOT_LITERAL:
            return normalize_code(node_text(node)) == normalize_code(
                render_value(value, self.style)
            )
        return same_value(existing, value)

    def _update(
        self,
        locate: Locator,
        member: Member,
        key: str,
        value: Any,
        report: PatchReport,
        *,
        reference: bool,
        identifiers: bool,
    ) -> None:
        if member.value is None:
            report.manual.append(key)
            return

        if member.shorthand:
            if isinstance(value, Expr) and value.code == key:
                return
            if not identifiers:
                report.manual.append(key)
                return
            indent = self.doc.line_indent(member.node.start_byte)
            text = f"{format_key(key, self.style)}: " + render_value(
                value, self.style, indent, self.doc.column(member.node.start_byte) + len(key) + 2
            )
            self.doc.replace(member.node.start_byte, member.node.end_byte, text)
            report.changed.append(key)
            return

        if isinstance(value, RefList):
            outcome = self._patch_ref_list(member.value, value, reference)
            if outcome == "manual":
                report.manual.append(key)
            elif outcome == "changed":
                report.changed.append(key)
            return

        if reference and is_manual_value(member.value, True):
            report.manual.append(key)
            return

        if isinstance(value, dict) and value and member.value.type == "object":
            stale = [
                m.key for m in object_members(member.value) if m.key is not None and m.key not in value
            ]
            nested = self.patch(
                child_locator(locate, key),
                list(value.items()),
                remove=stale,
                identifier_keys=frozenset([*value, *stale]) if identifiers else frozenset(),
            )
            report.merge(nested, prefix=f"{key}.")
            return

        if is_manual_value(member.value, False, identifiers):
            report.manual.append(key)
            return
        if self.matches(member.value, value):
            return
        self._replace_value(member.value, value)
        report.changed.append(key)

    def _replace_value(self, node: TSNode, value: Any) -> None:
        indent = self.doc.line_indent(node.start_byte)
        rendered = render_value(
            value,
            self.style,
            indent,
            self.doc.column(node.start_byte),
            True if _is_multiline(node) and isinstance(value, (dict, list)) else None,
        )
        self.doc.replace(node.start_byte, node.end_byte, rendered)

    def _patch_ref_list(self, node: TSNode, value: RefList, reference: bool) -> str:
        """Diff a reference list in place; returns ``manual``, ``changed`` or ``same``.

        Existing elements keep their order and text; dropped targets are
        removed and new targets appended, so a hand-chosen order survives.
        """
        array = getter_array(node)
        if array is None:
            if reference or node.type == "arrow_function":
                return "manual"
            self._replace_value(node, value)
            return "changed"
        elements = _elements(array)
        keys = [element_key(e) for e in elements]
        if any(k is None for k in keys):
            return "manual"

        desired = {item.key: item for item in value.items}
        result: list[str] = []
        changed = False
        for element, key in zip(elements, keys):
            item = desired.get(key)  # type: ignore[arg-type]
            if item is None:
                changed = True
                continue
            text = node_text(element)
            if normalize_code(text) != normalize_code(item.code):
                text = item.code
                changed = True
            result.append(text)
        seen = set(keys)
        for item in value.items:
            if item.key not in seen:
                result.append(item.code)
                changed = True
        if not changed:
            return "same"

        indent = self.doc.line_indent(array.start_byte)
        rendered = render_value(
            [Expr(t) for t in result],
            self.style,
            indent,
            self.doc.column(array.start_byte),
            True if _is_multiline(array) else None,
        )
        self.doc.replace(array.start_byte, array.end_byte, rendered)
        return "changed"

    # -- insertion -----------------------------------------------------------

    def _append(self, locate: Locator, key: str, value: Any) -> None:
        doc = self.doc
        obj = locate(doc)
        assert obj is not None
        head = f"{format_key(key, self.style)}: "
        members = _elements(obj)
        obj_indent = doc.line_indent(obj.start_byte)

        if not members:
            inner = obj_indent + self.style.indent
            text = head + render_value(value, self.style, inner, len(inner) + len(head))
            comma = "," if self.style.trailing_commas else ""
            doc.replace(obj.start_byte, obj.end_byte, f"{{\n{inner}{text}{comma}\n{obj_indent}}}")
            return

        last = members[-1]
        comma_node = last.next_sibling if last.next_sibling and last.next_sibling.type == "," else None

        if not _is_multiline(obj):
            text = head + render_value(value, self.style, obj_indent, doc.column(last.end_byte))
            if comma_node is not None:
                doc.insert(comma_node.end_byte, f" {text},")
            else:
                doc.insert(last.end_byte, f", {text}")
            return

        member_indent = doc.line_indent(members[0].start_byte)
        text = head + render_value(
            value, self.style, member_indent, len(member_indent) + len(head)
        )
        if comma_node is not None:
            anchor = comma_node.end_byte
            suffix = ","
        else:
            doc.insert(last.end_byte, ",")
            obj = locate(doc)
            assert obj is not None
            anchor = _elements(obj)[-1].end_byte + 1
            suffix = ""
        close = obj.end_byte - 1
        line_end = doc.line_end(anchor)
        if line_end >= close:
            # closing brace shares the line with the last member
            doc.insert(close, f"\n{member_indent}{text}{suffix}\n{obj_indent}")
            return
        doc.insert(line_end, f"\n{member_indent}{text}{suffix}")

    # -- removal -------------------------------------------------------------

    def _remove(self, member: Member) -> None:
        doc = self.doc
        node = member.node
        obj = node.parent
        assert obj is not None
        comma = node.next_sibling if node.next_sibling and node.next_sibling.type == "," else None
        end = comma.end_byte if comma is not None else node.end_byte
        trailing = (comma or node).next_sibling
        if (
            trailing is not None
            and trailing.type == "comment"
            and trailing.start_point[0] == node.end_point[0]
        ):
            end = trailing.end_byte

        start = doc.line_start(node.start_byte)
        line_end = doc.line_end(end)
        own_line = (
            _is_multiline(obj)
            and doc.is_blank_between(start, node.start_byte)
            and doc.is_blank_between(end, line_end)
        )
        if own_line:
            # comments directly above the member go with it
            prev = node.prev_sibling
            while (
                prev is not None
                and prev.type == "comment"
                and prev.end_point[0] == _row(doc, start) - 1
                and doc.is_blank_between(doc.line_start(prev.start_byte), prev.start_byte)
            ):
                start = doc.line_start(prev.start_byte)
                prev = prev.prev_sibling
            while prev is not None and prev.type == "comment":
                prev = prev.prev_sibling
            doc.delete(start, min(line_end + 1, len(doc.source)))
            if comma is None and prev is not None and prev.type == ",":
                # the new last member follows the file's no-trailing-comma style
                doc.delete(prev.start_byte, prev.end_byte)
            return

        if comma is not None:
            after = comma.end_byte
            while doc.source[after : after + 1] == b" ":
                after += 1
            doc.delete(node.start_byte, after)
            return
        prev = node.prev_sibling
        while prev is not None and prev.type == "comment":
            prev = prev.prev_sibling
        if prev is not None and prev.type == ",":
            doc.delete(prev.start_byte, node.end_byte)
        else:
            doc.delete(node.start_byte, node.end_byte)


def _row(doc: SourceDocument, offset: int) -> int:
    return doc.source.count(b"\n", 0, offset)
