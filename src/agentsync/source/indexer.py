"""Source tree indexer: discover builder declarations and bind them to entity ids."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from agentsync.errors import AmbiguousIdError, FatalSyncError, ParseError
from agentsync.model.entities import EntityKind, EntityRef
from agentsync.model.graph_builder import KIND_SPECS
from agentsync.source.document import (
    SourceDocument,
    call_parts,
    find_member,
    first_object_argument,
    node_text,
)
from agentsync.source.languages import supported_extensions
from agentsync.source.literals import NOT_LITERAL, literal_value

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from tree_sitter import Node as TSNode

    from agentsync.source.document import CodeStyle

logger = logging.getLogger(__name__)

_RESOLVE_SUFFIXES = ("", ".ts", ".tsx", ".mts", ".js", "/index.ts", "/index.js")


@dataclass(frozen=True)
class ImportBinding:
    """One local name bound by an import statement."""

    local: str
    imported: str  # "default" for default imports, "*" for namespaces
    specifier: str
    type_only: bool = False


@dataclass
class Declaration:
    """A builder-factory declaration found in (or added to) a source file."""

    kind: EntityKind
    entity_id: str | None
    name: str
    file_path: str
    exported: bool
    factory: str
    line: int
    leading_comments: list[str] = field(default_factory=list)
    blank_lines_before: int = 0
    manual: bool = False

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.line}"


@dataclass
class FileIndex:
    """Declarations and imports of one parsed source file."""

    path: str
    document: SourceDocument
    declarations: list[Declaration] = field(default_factory=list)
    imports: list[ImportBinding] = field(default_factory=list)

    def declaration(self, name: str) -> Declaration | None:
        for decl in self.declarations:
            if decl.name == name:
                return decl
        return None


class BindingTable:
    """Mapping ``(kind, id) -> Declaration`` for one run."""

    def __init__(self) -> None:
        self._bindings: dict[EntityRef, Declaration] = {}
        self.ambiguous: dict[EntityRef, list[Declaration]] = {}
        self.manual: list[Declaration] = []

    def lookup(self, ref: EntityRef) -> Declaration | None:
        return self._bindings.get(ref)

    def bind(self, ref: EntityRef, declaration: Declaration) -> None:
        if ref in self.ambiguous:
            self.ambiguous[ref].append(declaration)
            return
        existing = self._bindings.get(ref)
        if existing is not None and existing is not declaration:
            del self._bindings[ref]
            self.ambiguous[ref] = [existing, declaration]
            return
        self._bindings[ref] = declaration

    def ambiguity(self, ref: EntityRef) -> AmbiguousIdError | None:
        locations = self.ambiguous.get(ref)
        if not locations:
            return None
        return AmbiguousIdError(ref.kind.value, ref.id, [d.location for d in locations])

    def bound(self) -> list[tuple[EntityRef, Declaration]]:
        return list(self._bindings.items())

    def __len__(self) -> int:
        return len(self._bindings)


@dataclass
class SourceIndex:
    """Result of indexing a target directory."""

    files: dict[str, FileIndex] = field(default_factory=dict)
    bindings: BindingTable = field(default_factory=BindingTable)
    errors: dict[str, ParseError] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


def extract_imports(doc: SourceDocument) -> list[ImportBinding]:
    """Extract the names bound by top-level import statements of *doc*."""
    results: list[ImportBinding] = []
    for statement in doc.root.named_children:
        if statement.type != "import_statement":
            continue
        source = statement.child_by_field_name("source")
        if source is None:
            continue
        specifier = literal_value(source)
        if not isinstance(specifier, str):
            continue
        type_only = any(c.type == "type" for c in statement.children)
        for clause in statement.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "identifier":
                    results.append(ImportBinding(node_text(part), "default", specifier, type_only))
                elif part.type == "namespace_import":
                    ident = next((c for c in part.named_children if c.type == "identifier"), None)
                    if ident is not None:
                        results.append(ImportBinding(node_text(ident), "*", specifier, type_only))
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type != "import_specifier":
                            continue
                        name = spec.child_by_field_name("name")
                        alias = spec.child_by_field_name("alias")
                        if name is None:
                            continue
                        imported = node_text(name)
                        local = node_text(alias) if alias is not None else imported
                        spec_type_only = type_only or any(c.type == "type" for c in spec.children)
                        results.append(ImportBinding(local, imported, specifier, spec_type_only))
    return results


def resolve_specifier(from_path: str, specifier: str, known: Iterable[str]) -> str | None:
    """Resolve a relative module specifier to a known project-relative path."""
    if not specifier.startswith("."):
        return None
    base = posixpath.normpath(posixpath.join(posixpath.dirname(from_path), specifier))
    candidates = [base + suffix for suffix in _RESOLVE_SUFFIXES]
    stem, ext = posixpath.splitext(base)
    if ext in (".js", ".mjs", ".jsx"):
        candidates.extend(stem + alt for alt in (".ts", ".tsx", ".mts"))
    known_set = set(known)
    for candidate in candidates:
        if candidate in known_set:
            return candidate
    return None


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


def _blank_lines_before(node: TSNode) -> int:
    prev = node.prev_sibling
    if prev is None:
        return 0
    return max(node.start_point[0] - prev.end_point[0] - 1, 0)


def scan_declarations(doc: SourceDocument, factories: dict[str, EntityKind]) -> list[Declaration]:
    """Find every top-level declaration built by a recognized factory call.

    Declarations whose id is not a static string literal are marked manual.
    Headers declarations carry no id of their own; they get one later from
    the context config that uses them.
    """
    found: list[Declaration] = []
    for statement, declarator, exported in doc.declarators():
        name_node = declarator.child_by_field_name("name")
        if name_node is None or name_node.type != "identifier":
            continue
        callee, arguments, _is_new = call_parts(declarator.child_by_field_name("value"))
        if callee is None or callee not in factories:
            continue
        kind = factories[callee]
        comments = doc.leading_comments(statement)
        decl = Declaration(
            kind=kind,
            entity_id=None,
            name=node_text(name_node),
            file_path=doc.path,
            exported=exported,
            factory=callee,
            line=statement.start_point[0] + 1,
            leading_comments=[node_text(c) for c in comments],
            blank_lines_before=_blank_lines_before(comments[0] if comments else statement),
        )
        id_field = KIND_SPECS[kind].id_field
        if id_field is not None:
            obj = first_object_argument(arguments)
            member = find_member(obj, id_field) if obj is not None else None
            value = literal_value(member.value) if member is not None else NOT_LITERAL
            if isinstance(value, str) and value:
                decl.entity_id = value
            else:
                decl.manual = True
                logger.warning(
                    "%s: %s '%s' has a computed %s; leaving it to manual control",
                    decl.location,
                    callee,
                    decl.name,
                    id_field,
                )
        found.append(decl)
    return found


def _headers_identifier(doc: SourceDocument, name: str) -> str | None:
    obj = doc.config_object(name)
    member = find_member(obj, "headers") if obj is not None else None
    if member is None or member.value is None or member.value.type != "identifier":
        return None
    return node_text(member.value)


def _associate_headers(index: SourceIndex) -> None:
    """Give each headers declaration the id of the context config using it."""
    for file_index in index.files.values():
        for decl in file_index.declarations:
            if decl.kind is not EntityKind.CONTEXT_CONFIG or decl.entity_id is None:
                continue
            ident = _headers_identifier(file_index.document, decl.name)
            if ident is None:
                continue
            target_file, target_name = file_index, ident
            binding = next((b for b in file_index.imports if b.local == ident), None)
            if binding is not None:
                resolved = resolve_specifier(file_index.path, binding.specifier, index.files)
                if resolved is None:
                    continue
                target_file, target_name = index.files[resolved], binding.imported
            headers = target_file.declaration(target_name)
            if headers is not None and headers.kind is EntityKind.HEADERS_SCHEMA:
                headers.entity_id = decl.entity_id
                index.bindings.bind(EntityRef(EntityKind.HEADERS_SCHEMA, decl.entity_id), headers)


def iter_source_files(root: Path, exclude: Iterable[str] = ()) -> list[Path]:
    """Source files under *root* with an available grammar, sorted."""
    excluded = set(exclude) | {".agentsync", ".git"}
    extensions = supported_extensions()
    files = []
    for path in root.rglob("*"):
        rel_parts = path.relative_to(root).parts
        if any(part in excluded for part in rel_parts[:-1]):
            continue
        if path.is_file() and path.suffix in extensions and not path.name.endswith(".d.ts"):
            files.append(path)
    return sorted(files)


def index_directory(
    root: Path,
    factories: dict[str, EntityKind],
    *,
    style: CodeStyle | None = None,
    exclude: Iterable[str] = (),
) -> SourceIndex:
    """Parse every source file under *root* and build the binding table.

    Files that fail to parse are recorded in ``errors`` and never edited.
    """
    index = SourceIndex()
    if not root.is_dir():
        return index

    for path in iter_source_files(root, exclude):
        rel = path.relative_to(root).as_posix()
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            index.errors[rel] = ParseError(rel, f"not valid UTF-8 ({exc.reason})")
            logger.warning("Skipping %s: not valid UTF-8", rel)
            continue
        except OSError as exc:
            raise FatalSyncError(f"Cannot read {path}: {exc}") from exc
        try:
            doc = SourceDocument.parse(rel, text, style)
        except ParseError as exc:
            index.errors[rel] = exc
            logger.warning("Skipping unparseable file %s", exc)
            continue
        file_index = FileIndex(rel, doc, scan_declarations(doc, factories), extract_imports(doc))
        index.files[rel] = file_index

    for file_index in index.files.values():
        for decl in file_index.declarations:
            if decl.manual:
                index.bindings.manual.append(decl)
            elif decl.entity_id is not None:
                index.bindings.bind(EntityRef(decl.kind, decl.entity_id), decl)
    _associate_headers(index)

    for ref, decls in index.bindings.ambiguous.items():
        logger.warning(
            "%s is declared more than once: %s", ref, ", ".join(d.location for d in decls)
        )
    logger.debug("Indexed %d files, %d bindings", len(index.files), len(index.bindings))
    return index
