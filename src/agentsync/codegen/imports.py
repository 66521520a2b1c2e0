"""Import manager: relative module specifiers and import binding reuse."""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from agentsync.codegen.values import format_string
from agentsync.source.document import node_text, walk
from agentsync.source.indexer import extract_imports
from agentsync.source.literals import literal_value

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

    from agentsync.source.document import SourceDocument
    from agentsync.source.indexer import ImportBinding

logger = logging.getLogger(__name__)

_SOURCE_EXTENSIONS = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs")


def module_specifier(from_path: str, to_path: str, extension: str = "") -> str:
    """Relative specifier importing *to_path* from *from_path* (both project-relative).

    >>> module_specifier("agents/weather.ts", "agents/sub-agents/lookup.ts")
    './sub-agents/lookup'
    """
    stem, ext = posixpath.splitext(to_path)
    if ext not in _SOURCE_EXTENSIONS:
        stem = to_path
    rel = posixpath.relpath(stem, posixpath.dirname(from_path) or ".")
    if not rel.startswith("."):
        rel = f"./{rel}"
    return rel + extension


def _module_key(from_path: str, specifier: str) -> str:
    """Normalize a specifier so ``./x``, ``./x.js`` and ``./x.ts`` compare equal."""
    if not specifier.startswith("."):
        return specifier
    joined = posixpath.normpath(posixpath.join(posixpath.dirname(from_path), specifier))
    stem, ext = posixpath.splitext(joined)
    return stem if ext in _SOURCE_EXTENSIONS else joined


class ImportManager:
    """Reuses or creates import bindings in one document."""

    def __init__(self, doc: SourceDocument, reserved: set[str] | None = None) -> None:
        self.doc = doc
        self.reserved = set(reserved or ())
        self.added: set[str] = set()
        self._used_before = self.used_identifiers()

    def bindings(self) -> list[ImportBinding]:
        return extract_imports(self.doc)

    def lookup(self, specifier: str, name: str) -> str | None:
        """Local name already bound to export *name* of *specifier*, if any."""
        key = _module_key(self.doc.path, specifier)
        for binding in self.bindings():
            if binding.imported == name and _module_key(self.doc.path, binding.specifier) == key:
                return binding.local
        return None

    def ensure(self, specifier: str, name: str) -> str:
        """Return the local name for *name* from *specifier*, importing it if needed."""
        existing = self.lookup(specifier, name)
        if existing is not None:
            return existing

        taken = self.doc.identifiers() | self.reserved
        local = name
        counter = 2
        while local in taken:
            local = f"{name}{counter}"
            counter += 1
        clause = name if local == name else f"{name} as {local}"

        statement = self._import_statement_for(specifier)
        if statement is not None:
            self._extend_statement(statement, clause)
        else:
            self._add_statement(specifier, clause)
        self.added.add(local)
        logger.debug("Imported %s from %s in %s", clause, specifier, self.doc.path)
        return local

    # -- editing -------------------------------------------------------------

    def _import_statements(self) -> list[TSNode]:
        return [c for c in self.doc.root.named_children if c.type == "import_statement"]

    def _import_statement_for(self, specifier: str) -> TSNode | None:
        key = _module_key(self.doc.path, specifier)
        for statement in self._import_statements():
            if any(c.type == "type" for c in statement.children):
                continue
            source = statement.child_by_field_name("source")
            value = literal_value(source) if source is not None else None
            if not isinstance(value, str) or _module_key(self.doc.path, value) != key:
                continue
            if self._named_imports(statement) is not None:
                return statement
        return None

    @staticmethod
    def _named_imports(statement: TSNode) -> TSNode | None:
        for clause in statement.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "named_imports":
                    return part
        return None

    def _extend_statement(self, statement: TSNode, clause: str) -> None:
        named = self._named_imports(statement)
        assert named is not None
        specs = [c for c in named.named_children if c.type == "import_specifier"]
        if not specs:
            self.doc.replace(named.start_byte, named.end_byte, f"{{ {clause} }}")
            return
        last = specs[-1]
        comma = last.next_sibling if last.next_sibling and last.next_sibling.type == "," else None
        if named.start_point[0] == named.end_point[0]:
            if comma is not None:
                self.doc.insert(comma.end_byte, f" {clause},")
            else:
                self.doc.insert(last.end_byte, f", {clause}")
            return
        indent = self.doc.line_indent(last.start_byte)
        if comma is not None:
            self.doc.insert(self.doc.line_end(comma.end_byte), f"\n{indent}{clause},")
        else:
            self.doc.insert(last.end_byte, f",\n{indent}{clause}")

    def _add_statement(self, specifier: str, clause: str) -> None:
        style = self.doc.style
        semi = ";" if style.semicolons else ""
        text = f"import {{ {clause} }} from {format_string(specifier, style.quote)}{semi}"
        statements = self._import_statements()
        if statements:
            self.doc.insert(statements[-1].end_byte, f"\n{text}")
            return
        first = self.doc.root.named_children[0] if self.doc.root.named_children else None
        if first is None:
            self.doc.insert(0, f"{text}\n")
            return
        offset = 0
        if first.type == "comment" and self._is_file_header(first):
            offset = self.doc.line_end(first.end_byte) + 1
            self.doc.insert(offset, f"\n{text}\n")
            return
        self.doc.insert(offset, f"{text}\n\n")

    def _is_file_header(self, comment: TSNode) -> bool:
        """A top-of-file comment separated from the next statement by a blank line."""
        following = comment.next_sibling
        if following is None:
            return True
        return following.start_point[0] - comment.end_point[0] > 1

    # -- pruning -------------------------------------------------------------

    def used_identifiers(self) -> set[str]:
        """Identifiers referenced outside import statements."""
        used: set[str] = set()
        for child in self.doc.root.named_children:
            if child.type == "import_statement":
                continue
            for node in walk(child):
                if node.type in ("identifier", "shorthand_property_identifier", "type_identifier"):
                    used.add(node_text(node))
        return used

    def prune(self, candidates: set[str] | None = None) -> list[str]:
        """Remove import bindings that are no longer referenced.

        Only bindings in *candidates* are considered; by default those that
        were in use before this run, or were added by it, and are now unused.
        """
        used = self.used_identifiers()
        if candidates is None:
            candidates = self._used_before | self.added
        removed: list[str] = []
        while True:
            target = self._find_unused(candidates, used)
            if target is None:
                return removed
            statement, spec, local = target
            self._remove_specifier(statement, spec)
            removed.append(local)

    def _find_unused(
        self, candidates: set[str], used: set[str]
    ) -> tuple[TSNode, TSNode | None, str] | None:
        for statement in self._import_statements():
            for clause in statement.named_children:
                if clause.type != "import_clause":
                    continue
                for part in clause.named_children:
                    if part.type == "identifier":
                        local = node_text(part)
                        if local in candidates and local not in used:
                            return statement, part, local
                    elif part.type == "named_imports":
                        for spec in part.named_children:
                            if spec.type != "import_specifier":
                                continue
                            alias = spec.child_by_field_name("alias")
                            name = spec.child_by_field_name("name")
                            local_node = alias if alias is not None else name
                            if local_node is None:
                                continue
                            local = node_text(local_node)
                            if local in candidates and local not in used:
                                return statement, spec, local
        return None

    def _remove_specifier(self, statement: TSNode, spec: TSNode | None) -> None:
        remaining = [
            s
            for clause in statement.named_children
            if clause.type == "import_clause"
            for part in clause.named_children
            for s in ([part] if part.type == "identifier" else part.named_children)
            if s.type in ("identifier", "import_specifier") and s != spec
        ]
        if not remaining or spec is None:
            source = self.doc.source
            start = self.doc.line_start(statement.start_byte)
            end = min(self.doc.line_end(statement.end_byte) + 1, len(source))
            # an import block that shrinks to nothing takes its separator line along
            if source[end : end + 1] == b"\n" and (start == 0 or source[start - 2 : start] == b"\n\n"):
                end += 1
            self.doc.delete(start, end)
            return
        if spec.type == "identifier":
            # default import next to named imports: drop "name, "
            after = spec.next_sibling
            end = after.end_byte if after is not None and after.type == "," else spec.end_byte
            while self.doc.source[end : end + 1] == b" ":
                end += 1
            self.doc.delete(spec.start_byte, end)
            return
        comma = spec.next_sibling if spec.next_sibling and spec.next_sibling.type == "," else None
        if comma is not None:
            end = comma.end_byte
            while self.doc.source[end : end + 1] in (b" ", b"\n", b"\t"):
                end += 1
            self.doc.delete(spec.start_byte, end)
            return
        prev = spec.prev_sibling
        start = prev.start_byte if prev is not None and prev.type == "," else spec.start_byte
        self.doc.delete(start, spec.end_byte)
