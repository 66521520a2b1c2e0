"""Structured source document: one parsed file with byte-range edit primitives.

Every edit re-parses the buffer, so callers never hold a syntax node across
an edit; they re-locate it through a locator callable instead. Bytes outside
an edited range are never re-serialized, which keeps comments, blank lines and
the formatting of untouched regions intact.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from agentsync.errors import ParseError
from agentsync.source.languages import get_lang_config

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from tree_sitter import Node as TSNode

    from agentsync.source.languages import LangConfig

    Locator = Callable[["SourceDocument"], TSNode | None]

logger = logging.getLogger(__name__)

_INDENTED_LINE_RE = re.compile(rb"^([ \t]+)[^\s*]", re.MULTILINE)

_STATEMENT_TYPES = frozenset(
    {"lexical_declaration", "variable_declaration", "import_statement", "expression_statement"}
)


@dataclass(frozen=True)
class CodeStyle:
    """Formatting conventions used when rendering new code into a file."""

    quote: str = "'"
    indent: str = "  "
    semicolons: bool = True
    trailing_commas: bool = True
    print_width: int = 100


@dataclass(frozen=True)
class Member:
    """One member of an object literal."""

    key: str | None  # None for spreads and computed keys
    node: TSNode  # the pair / shorthand / spread node
    value: TSNode | None  # value sub-expression (the identifier for shorthand)
    shorthand: bool = False


def walk(node: TSNode) -> Iterator[TSNode]:
    """Yield *node* and all of its descendants in document order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def node_text(node: TSNode) -> str:
    return node.text.decode("utf-8") if node.text else ""


def property_key(node: TSNode) -> str | None:
    """Return the static name of a property key node."""
    if node.type in ("property_identifier", "identifier", "number"):
        return node_text(node)
    if node.type == "string":
        return "".join(
            node_text(c) for c in node.named_children if c.type == "string_fragment"
        )
    return None


def object_members(obj: TSNode) -> list[Member]:
    """Return the members of an ``object`` node, comments excluded."""
    members: list[Member] = []
    for child in obj.named_children:
        if child.type == "pair":
            key_node = child.child_by_field_name("key")
            key = property_key(key_node) if key_node is not None else None
            members.append(Member(key, child, child.child_by_field_name("value")))
        elif child.type == "shorthand_property_identifier":
            members.append(Member(node_text(child), child, child, shorthand=True))
        elif child.type == "method_definition":
            name = child.child_by_field_name("name")
            members.append(Member(property_key(name) if name else None, child, None))
        elif child.type == "spread_element":
            members.append(Member(None, child, None))
    return members


def find_member(obj: TSNode, key: str) -> Member | None:
    for member in object_members(obj):
        if member.key == key:
            return member
    return None


def unwrap_statement(statement: TSNode) -> tuple[TSNode | None, bool]:
    """Return ``(declaration, exported)`` for a top-level statement."""
    if statement.type == "export_statement":
        declaration = statement.child_by_field_name("declaration")
        return declaration, True
    if statement.type in ("lexical_declaration", "variable_declaration"):
        return statement, False
    return None, False


def call_parts(value: TSNode | None) -> tuple[str | None, TSNode | None, bool]:
    """Return ``(callee, arguments, is_new)`` for a factory call expression."""
    if value is None:
        return None, None, False
    while value.type in ("as_expression", "satisfies_expression", "parenthesized_expression"):
        inner = value.named_children[0] if value.named_children else None
        if inner is None:
            return None, None, False
        value = inner
    if value.type == "call_expression":
        callee = value.child_by_field_name("function")
        is_new = False
    elif value.type == "new_expression":
        callee = value.child_by_field_name("constructor")
        is_new = True
    else:
        return None, None, False
    if callee is None or callee.type != "identifier":
        return None, None, False
    return node_text(callee), value.child_by_field_name("arguments"), is_new


def first_object_argument(arguments: TSNode | None) -> TSNode | None:
    if arguments is None:
        return None
    for child in arguments.named_children:
        if child.type == "comment":
            continue
        return child if child.type == "object" else None
    return None


class SourceDocument:
    """A parsed source file and its mutable byte buffer."""

    def __init__(
        self,
        path: str,
        text: str,
        lang: LangConfig,
        default_style: CodeStyle | None = None,
        *,
        detect: bool = True,
    ) -> None:
        self.path = path
        self.lang = lang
        self._parser = lang.parser()
        self._source = text.encode("utf-8")
        self._tree = self._parser.parse(self._source)
        if self._tree.root_node.has_error:
            raise ParseError(path, self._describe_error())
        self.original = text
        base = default_style or CodeStyle()
        self.style = detect_style(self, base) if detect and text.strip() else base

    @classmethod
    def parse(
        cls,
        path: str,
        text: str,
        default_style: CodeStyle | None = None,
        *,
        detect: bool = True,
    ) -> SourceDocument:
        """Parse *text* as the file at relative *path*."""
        lang = get_lang_config(PurePosixPath(path).suffix)
        if lang is None:
            raise ParseError(path, "no grammar available for this file type")
        return cls(path, text, lang, default_style, detect=detect)

    # -- buffer access -------------------------------------------------------

    @property
    def root(self) -> TSNode:
        return self._tree.root_node

    @property
    def source(self) -> bytes:
        return self._source

    @property
    def text(self) -> str:
        return self._source.decode("utf-8")

    @property
    def changed(self) -> bool:
        return self.text != self.original

    def slice(self, start: int, end: int) -> str:
        return self._source[start:end].decode("utf-8")

    def _describe_error(self) -> str:
        for node in walk(self._tree.root_node):
            if node.type == "ERROR" or node.is_missing:
                row, col = node.start_point
                return f"syntax error at line {row + 1}, column {col + 1}"
        return "syntax error"

    # -- edits ---------------------------------------------------------------

    def replace(self, start: int, end: int, text: str) -> None:
        self._source = self._source[:start] + text.encode("utf-8") + self._source[end:]
        self._tree = self._parser.parse(self._source)

    def insert(self, offset: int, text: str) -> None:
        self.replace(offset, offset, text)

    def delete(self, start: int, end: int) -> None:
        self.replace(start, end, "")

    # -- line geometry -------------------------------------------------------

    def line_start(self, offset: int) -> int:
        return self._source.rfind(b"\n", 0, offset) + 1

    def line_end(self, offset: int) -> int:
        end = self._source.find(b"\n", offset)
        return len(self._source) if end == -1 else end

    def line_indent(self, offset: int) -> str:
        start = self.line_start(offset)
        end = start
        while end < len(self._source) and self._source[end : end + 1] in (b" ", b"\t"):
            end += 1
        return self.slice(start, end)

    def column(self, offset: int) -> int:
        return len(self.slice(self.line_start(offset), offset))

    def is_blank_between(self, start: int, end: int) -> bool:
        return not self._source[start:end].strip()

    # -- declarations --------------------------------------------------------

    def top_level(self) -> list[TSNode]:
        return [c for c in self.root.named_children if c.type != "comment"]

    def declarators(self) -> Iterator[tuple[TSNode, TSNode, bool]]:
        """Yield ``(statement, declarator, exported)`` for top-level variables."""
        for statement in self.top_level():
            declaration, exported = unwrap_statement(statement)
            if declaration is None or declaration.type not in (
                "lexical_declaration",
                "variable_declaration",
            ):
                continue
            for child in declaration.named_children:
                if child.type == "variable_declarator":
                    yield statement, child, exported

    def declarator(self, name: str) -> TSNode | None:
        for _statement, declarator, _exported in self.declarators():
            name_node = declarator.child_by_field_name("name")
            if name_node is not None and node_text(name_node) == name:
                return declarator
        return None

    def statement_of(self, name: str) -> TSNode | None:
        for statement, declarator, _exported in self.declarators():
            name_node = declarator.child_by_field_name("name")
            if name_node is not None and node_text(name_node) == name:
                return statement
        return None

    def config_object(self, name: str) -> TSNode | None:
        """Return the object literal passed to the factory call bound to *name*."""
        declarator = self.declarator(name)
        if declarator is None:
            return None
        _callee, arguments, _is_new = call_parts(declarator.child_by_field_name("value"))
        return first_object_argument(arguments)

    def leading_comments(self, statement: TSNode) -> list[TSNode]:
        """Comments directly above *statement* with no blank line in between."""
        comments: list[TSNode] = []
        boundary = statement
        node = statement.prev_sibling
        while node is not None and node.type == "comment":
            if boundary.start_point[0] - node.end_point[0] > 1:
                break
            comments.insert(0, node)
            boundary = node
            node = node.prev_sibling
        return comments

    def identifiers(self) -> set[str]:
        """Every identifier appearing in the file (bindings and uses)."""
        return {
            node_text(n)
            for n in walk(self.root)
            if n.type in ("identifier", "shorthand_property_identifier", "type_identifier")
        }

    # -- statement-level edits -----------------------------------------------

    def insert_statement(self, text: str, before: TSNode | None = None) -> None:
        """Insert a top-level statement before *before*, or append it."""
        if before is not None:
            comments = self.leading_comments(before)
            anchor = comments[0] if comments else before
            self.insert(self.line_start(anchor.start_byte), f"{text}\n\n")
            return
        body = self._source.rstrip(b"\n")
        if not body:
            self.replace(0, len(self._source), f"{text}\n")
            return
        self.replace(len(body), len(self._source), f"\n\n{text}\n")

    def remove_statement(self, statement: TSNode) -> None:
        """Delete *statement* together with its leading comments."""
        comments = self.leading_comments(statement)
        start = self.line_start((comments[0] if comments else statement).start_byte)
        end = self.line_end(statement.end_byte)
        if end < len(self._source):
            end += 1
        # Collapse the blank line the statement leaves behind.
        if self._source[end : end + 1] == b"\n" and (
            start == 0 or self._source[start - 2 : start] == b"\n\n"
        ):
            end += 1
        elif end >= len(self._source) and self._source[start - 2 : start] == b"\n\n":
            start -= 1
        self.delete(start, end)


def detect_style(doc: SourceDocument, base: CodeStyle) -> CodeStyle:
    """Infer quote, indent, semicolon and trailing-comma conventions."""
    single = double = 0
    commas_yes = commas_no = 0
    for node in walk(doc.root):
        if node.type == "string" and node.text:
            if node.text.startswith(b"'"):
                single += 1
            elif node.text.startswith(b'"'):
                double += 1
        elif node.type in ("object", "array") and node.start_point[0] != node.end_point[0]:
            elements = [c for c in node.named_children if c.type != "comment"]
            if not elements:
                continue
            sibling = elements[-1].next_sibling
            while sibling is not None and sibling.type == "comment":
                sibling = sibling.next_sibling
            if sibling is not None and sibling.type == ",":
                commas_yes += 1
            else:
                commas_no += 1

    semis_yes = semis_no = 0
    for statement in doc.top_level():
        if statement.type in _STATEMENT_TYPES or statement.type == "export_statement":
            if statement.text and statement.text.rstrip().endswith(b";"):
                semis_yes += 1
            else:
                semis_no += 1

    style = base
    if single != double:
        style = replace(style, quote="'" if single > double else '"')
    if semis_yes != semis_no:
        style = replace(style, semicolons=semis_yes > semis_no)
    if commas_yes != commas_no:
        style = replace(style, trailing_commas=commas_yes > commas_no)
    match = _INDENTED_LINE_RE.search(doc.source)
    if match:
        style = replace(style, indent=match.group(1).decode("utf-8"))
    logger.debug("Detected style for %s: %s", doc.path, style)
    return style
