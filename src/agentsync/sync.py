"""Synchronization run: canonical project graph in, merged source tree out.

The run is organised in the same phases for every mode:

1. load and resolve the canonical graph;
2. index the target directory (skipped in overwrite mode);
3. plan one identifier and one file per entity;
4. merge every code file, one :class:`FileSession` per file;
5. merge skill and policy documents;
6. apply the removed-entity policy;
7. emit changed files (or diffs in dry-run mode).
"""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from agentsync.codegen.emitter import FileStatus, PendingFile, emit
from agentsync.codegen.imports import ImportManager
from agentsync.codegen.markdown import merge_document
from agentsync.codegen.merger import EntityResult, FileSession, Outcome, RunContext, merge_entity
from agentsync.config import load_config
from agentsync.errors import FatalSyncError, ParseError, SchemaValidationError
from agentsync.model.entities import EntityKind, EntityRef, ProjectGraph, load_project
from agentsync.model.graph_builder import KIND_SPECS, build_graph, missing_fields
from agentsync.source.document import SourceDocument, unwrap_statement
from agentsync.source.indexer import SourceIndex, extract_imports, index_directory, resolve_specifier

if TYPE_CHECKING:
    from collections.abc import Mapping

    from agentsync.codegen.emitter import FileResult
    from agentsync.config import SyncConfig
    from agentsync.model.entities import Entity
    from agentsync.source.indexer import Declaration

logger = logging.getLogger(__name__)

_WORD_BREAK_RE = re.compile(r"[^A-Za-z0-9]+(.)?")

_MARKDOWN_KINDS = frozenset({EntityKind.SKILL, EntityKind.POLICY})

# Names that would shadow builder imports in generated files.
_HELPER_NAMES = frozenset(
    {"z", "preview", "headers", "contextConfig", "fetchDefinition"}
    | {spec.factory for spec in KIND_SPECS.values() if spec.factory}
    | {alt for spec in KIND_SPECS.values() for alt in spec.alt_factories}
)

_RESERVED_WORDS = frozenset(
    {
        "await", "break", "case", "catch", "class", "const", "continue", "debugger",
        "default", "delete", "do", "else", "enum", "export", "extends", "false",
        "finally", "for", "function", "if", "implements", "import", "in", "instanceof",
        "interface", "let", "new", "null", "package", "private", "protected", "public",
        "return", "static", "super", "switch", "this", "throw", "true", "try", "typeof",
        "var", "void", "while", "with", "yield", "undefined", "arguments", "eval",
    }
)  # fmt: skip


class SyncMode(str, Enum):
    MERGE = "merge"
    OVERWRITE = "overwrite"
    DRY_RUN = "dry-run"


class RemovalPolicy(str, Enum):
    """What to do with declarations whose entity left the canonical graph."""

    KEEP = "keep"
    REPORT = "report"
    DELETE = "delete"


@dataclass
class StaleDeclaration:
    """A source declaration (or document) with no canonical entity behind it."""

    ref: EntityRef
    location: str
    name: str | None = None
    removed: bool = False


@dataclass
class SyncResult:
    """Aggregate result of one synchronization run."""

    entities: list[EntityResult] = field(default_factory=list)
    files: list[FileResult] = field(default_factory=list)
    parse_errors: list[ParseError] = field(default_factory=list)
    stale: list[StaleDeclaration] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        """Number of entities per outcome, every outcome present."""
        counts = {outcome.value: 0 for outcome in Outcome}
        for item in self.entities:
            counts[item.outcome.value] += 1
        return counts

    @property
    def failed(self) -> list[EntityResult]:
        return [r for r in self.entities if r.outcome is Outcome.FAILED]

    @property
    def changed_files(self) -> list[FileResult]:
        return [f for f in self.files if f.status is not FileStatus.UNCHANGED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": self.counts(),
            "entities": [
                {
                    "kind": r.ref.kind.value,
                    "id": r.ref.id,
                    "outcome": r.outcome.value,
                    "file": r.file_path,
                    "name": r.name,
                    "message": r.message,
                    "warnings": r.warnings,
                }
                for r in self.entities
            ],
            "files": [
                {"path": f.path, "status": f.status.value, "created": f.created}
                for f in self.files
            ],
            "parse_errors": [{"path": e.path, "detail": e.detail} for e in self.parse_errors],
            "stale": [
                {
                    "kind": s.ref.kind.value,
                    "id": s.ref.id,
                    "location": s.location,
                    "removed": s.removed,
                }
                for s in self.stale
            ],
            "warnings": self.warnings,
        }


@dataclass
class _FileWork:
    path: str
    original: str | None
    document: SourceDocument | None
    results: list[EntityResult]


# ---------------------------------------------------------------------------
# Names and paths
# ---------------------------------------------------------------------------


def default_name(entity_id: str) -> str:
    """camelCase identifier derived from *entity_id*.

    >>> default_name("weather-forecast_agent")
    'weatherForecastAgent'
    """
    name = _WORD_BREAK_RE.sub(lambda m: (m.group(1) or "").upper(), entity_id)
    if not name:
        name = "entity"
    if name[0].isdigit():
        name = f"_{name}"
    return name[0].lower() + name[1:]


def _unique(base: str, taken: set[str]) -> str:
    name = base
    counter = 2
    while name in taken or name in _RESERVED_WORDS or name in _HELPER_NAMES:
        name = f"{base}{counter}"
        counter += 1
    return name


def _manual_match(index: SourceIndex, entity: Entity, name: str) -> Declaration | None:
    for decl in index.bindings.manual:
        if decl.kind is entity.kind and decl.name == name:
            return decl
    return None


def plan_names(ctx: RunContext) -> None:
    """Choose the identifier and file of every code entity.

    Bound entities keep the name and file of their existing declaration;
    new ones get a camelCase default that collides with no declared name,
    no identifier of the target file and no builder import.
    """
    index = ctx.index
    taken: set[str] = set()
    for _ref, decl in index.bindings.bound():
        taken.add(decl.name)
    for decl in index.bindings.manual:
        taken.add(decl.name)
    for decls in index.bindings.ambiguous.values():
        taken.update(d.name for d in decls)

    pending: list[Entity] = []
    for ref in ctx.resolved.paths:
        if ref.kind in _MARKDOWN_KINDS:
            continue
        decl = index.bindings.lookup(ref)
        if decl is not None:
            ctx.names[ref] = decl.name
            ctx.paths[ref] = decl.file_path
            continue
        entity = ctx.graph.get(ref)
        if entity is not None:
            pending.append(entity)

    # Context configs are named before the headers that derive their name from them.
    pending.sort(key=lambda e: (e.kind is EntityKind.HEADERS_SCHEMA, KIND_SPECS[e.kind].rank, e.id))
    file_identifiers: dict[str, set[str]] = {}
    for entity in pending:
        ref = entity.ref
        path = _target_path(ctx, entity)
        if path not in file_identifiers:
            file_index = index.files.get(path)
            file_identifiers[path] = file_index.document.identifiers() if file_index else set()

        if entity.kind is EntityKind.HEADERS_SCHEMA and entity.parent in ctx.names:
            base = f"{ctx.names[entity.parent]}Headers"
        else:
            base = default_name(entity.id)

        manual = _manual_match(index, entity, base)
        if manual is not None:
            ctx.manual_skips[ref] = manual
            ctx.names[ref] = manual.name
            ctx.paths[ref] = manual.file_path
            continue

        name = _unique(base, taken | file_identifiers[path])
        taken.add(name)
        ctx.names[ref] = name
        ctx.paths[ref] = path
        logger.debug("Planned %s as %s in %s", ref, name, path)

    _mark_unavailable(ctx, pending)


def _mark_unavailable(ctx: RunContext, pending: list[Entity]) -> None:
    """Record the planned entities that will end up without a declaration.

    Other entities must not import them: an ambiguous id, a required-field
    gap or an unparseable target file each abort that entity's merge.
    """
    for entity in pending:
        ref = entity.ref
        if ref in ctx.manual_skips:
            continue
        ambiguity = ctx.index.bindings.ambiguity(ref)
        missing = missing_fields(entity)
        error = ctx.index.errors.get(ctx.paths.get(ref, ""))
        if ambiguity is not None:
            ctx.unavailable[ref] = str(ambiguity)
        elif missing:
            ctx.unavailable[ref] = str(SchemaValidationError(entity.kind.value, entity.id, missing))
        elif error is not None:
            ctx.unavailable[ref] = str(error)
        else:
            continue
        logger.debug("%s cannot be referenced: %s", ref, ctx.unavailable[ref])


def _target_path(ctx: RunContext, entity: Entity) -> str:
    """Canonical path, or the file already holding the owning context config."""
    path = ctx.resolved.paths[entity.ref]
    if entity.parent is not None and "{parent}" in KIND_SPECS[entity.kind].path:
        owner = ctx.index.bindings.lookup(entity.parent)
        if owner is not None:
            return owner.file_path
    return path


# ---------------------------------------------------------------------------
# File merging
# ---------------------------------------------------------------------------


def _read_text(path: Path, *, lenient: bool = False) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        if lenient:
            return path.read_bytes().decode("utf-8", errors="replace")
        raise ParseError(path.name, f"not valid UTF-8 ({exc.reason})") from exc
    except OSError as exc:
        raise FatalSyncError(f"Cannot read {path}: {exc}") from exc


def _failed(entity: Entity, path: str, message: str) -> EntityResult:
    return EntityResult(entity.ref, Outcome.FAILED, path, message=message)


def _open_document(
    ctx: RunContext, root: Path, path: str, overwrite: bool
) -> tuple[str | None, SourceDocument]:
    style = ctx.config.style
    if overwrite:
        original = _read_text(root / path, lenient=True)
        return original, SourceDocument.parse(path, "", style, detect=False)
    file_index = ctx.index.files.get(path)
    if file_index is not None:
        return file_index.document.original, file_index.document
    original = _read_text(root / path)
    if original is None:
        return None, SourceDocument.parse(path, "", style, detect=False)
    return original, SourceDocument.parse(path, original, style)


def _merge_file(
    ctx: RunContext, root: Path, path: str, entities: list[Entity], overwrite: bool
) -> _FileWork:
    error = ctx.index.errors.get(path)
    if error is not None:
        return _FileWork(path, None, None, [_failed(e, path, str(error)) for e in entities])
    try:
        original, document = _open_document(ctx, root, path, overwrite)
    except ParseError as exc:
        ctx.index.errors[path] = exc
        return _FileWork(path, None, None, [_failed(e, path, str(exc)) for e in entities])

    session = FileSession(ctx, path, document)
    results = [merge_entity(session, entity) for entity in entities]
    pruned = session.imports.prune()
    if pruned:
        logger.debug("Pruned unused imports in %s: %s", path, ", ".join(pruned))
    return _FileWork(path, original, document, results)


def _merge_documents(
    ctx: RunContext, root: Path, overwrite: bool, pending: dict[str, PendingFile]
) -> list[EntityResult]:
    results: list[EntityResult] = []
    entities = [e for kind in _MARKDOWN_KINDS for e in ctx.graph.by_kind(kind)]
    entities.sort(key=lambda e: (KIND_SPECS[e.kind].rank, e.id))
    for entity in entities:
        path = ctx.resolved.paths[entity.ref]
        result = EntityResult(entity.ref, Outcome.UNCHANGED, path)
        missing = missing_fields(entity)
        if missing:
            error = SchemaValidationError(entity.kind.value, entity.id, missing)
            logger.warning("%s", error)
            result.outcome = Outcome.FAILED
            result.message = str(error)
            results.append(result)
            continue
        try:
            original = _read_text(root / path, lenient=overwrite)
            content = merge_document(path, None if overwrite else original, entity)
        except ParseError as exc:
            logger.warning("Failed to merge %s: %s", entity.ref, exc)
            result.outcome = Outcome.FAILED
            result.message = str(exc)
            results.append(result)
            continue
        if original is None:
            result.outcome = Outcome.CREATED
        elif content != original:
            result.outcome = Outcome.UPDATED
        pending[path] = PendingFile(path, original, content)
        results.append(result)
    return results


# ---------------------------------------------------------------------------
# Removed entities and exports
# ---------------------------------------------------------------------------


def _imported_elsewhere(documents: dict[str, SourceDocument], decl: Declaration) -> str | None:
    """Path of a file still importing *decl*, if any."""
    for path, document in documents.items():
        if path == decl.file_path:
            continue
        for binding in extract_imports(document):
            if binding.imported != decl.name:
                continue
            if resolve_specifier(path, binding.specifier, documents) == decl.file_path:
                return path
    return None


def _stale_documents(root: Path, ctx: RunContext) -> list[StaleDeclaration]:
    expected = {p for ref, p in ctx.resolved.paths.items() if ref.kind in _MARKDOWN_KINDS}
    found: list[StaleDeclaration] = []
    for kind, pattern in ((EntityKind.SKILL, "skills/*/SKILL.md"), (EntityKind.POLICY, "policies/*.md")):
        for file_path in sorted(root.glob(pattern)):
            rel = file_path.relative_to(root).as_posix()
            if rel in expected:
                continue
            stem = file_path.parent.name if kind is EntityKind.SKILL else file_path.stem
            found.append(StaleDeclaration(EntityRef(kind, stem), rel))
    return found


def apply_removal_policy(
    ctx: RunContext,
    root: Path,
    policy: RemovalPolicy,
    documents: dict[str, SourceDocument],
    pending: dict[str, PendingFile],
    result: SyncResult,
) -> None:
    """Find declarations without a canonical entity and keep, report or delete them."""
    stale: list[tuple[StaleDeclaration, Declaration | None]] = []
    for ref, decl in ctx.index.bindings.bound():
        if ref not in ctx.graph:
            stale.append((StaleDeclaration(ref, decl.location, decl.name), decl))
    stale.extend((item, None) for item in _stale_documents(root, ctx))
    stale.sort(key=lambda pair: pair[0].location)

    for item, decl in stale:
        result.stale.append(item)
        if policy is RemovalPolicy.KEEP:
            logger.debug("Keeping stale %s at %s", item.ref, item.location)
            continue
        if policy is RemovalPolicy.REPORT:
            message = f"{item.ref} at {item.location} is no longer in the project"
            logger.warning("%s", message)
            result.warnings.append(message)
            continue

        if decl is None:
            original = _read_text(root / item.location, lenient=True)
            pending[item.location] = PendingFile(item.location, original, None)
            item.removed = True
            continue
        importer = _imported_elsewhere(documents, decl)
        if importer is not None:
            message = f"{item.ref} at {item.location} is still imported by {importer}; not deleted"
            logger.warning("%s", message)
            result.warnings.append(message)
            continue
        document = documents[decl.file_path]
        statement = document.statement_of(decl.name)
        if statement is None:
            continue
        imports = ImportManager(document)
        document.remove_statement(statement)
        imports.prune()
        item.removed = True
        logger.info("Removed stale %s from %s", item.ref, decl.file_path)
        if not document.text.strip():
            pending[decl.file_path] = PendingFile(decl.file_path, document.original, None)


def export_imported(documents: dict[str, SourceDocument]) -> list[str]:
    """Add ``export`` to declarations that another file now imports."""
    exported: list[str] = []
    for path, document in documents.items():
        for binding in extract_imports(document):
            if binding.imported in ("default", "*") or binding.type_only:
                continue
            target_path = resolve_specifier(path, binding.specifier, documents)
            if target_path is None:
                continue
            target = documents[target_path]
            statement = target.statement_of(binding.imported)
            if statement is None:
                continue
            _declaration, is_exported = unwrap_statement(statement)
            if is_exported:
                continue
            target.insert(statement.start_byte, "export ")
            exported.append(f"{target_path}:{binding.imported}")
            logger.debug("Exported %s from %s", binding.imported, target_path)
    return exported


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _prepare_target(root: Path, dry_run: bool) -> None:
    if dry_run and not root.exists():
        return
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FatalSyncError(f"Cannot create target directory {root}: {exc}") from exc
    if not root.is_dir():
        raise FatalSyncError(f"Target {root} is not a directory")
    if not dry_run and not os.access(root, os.W_OK):
        raise FatalSyncError(f"Target directory {root} is not writable")


def synchronize(
    project: Mapping[str, Any] | ProjectGraph,
    target_dir: Path | str,
    *,
    mode: SyncMode | str = SyncMode.MERGE,
    removal: RemovalPolicy | str | None = None,
    config: SyncConfig | None = None,
) -> SyncResult:
    """Bring the source tree under *target_dir* in line with *project*.

    Parameters
    ----------
    project:
        Full-project definition (as returned by the management API) or an
        already loaded :class:`ProjectGraph`.
    target_dir:
        Root of the source tree.
    mode:
        ``merge`` patches existing files, ``overwrite`` regenerates them and
        ``dry-run`` merges in memory and reports diffs.
    removal:
        Policy for declarations whose entity is gone; defaults to the
        configured ``removed_entities``.
    config:
        Run settings; loaded from the target directory when omitted.

    Raises
    ------
    GraphValidationError
        When *project* is structurally invalid.
    FatalSyncError
        When the target directory cannot be created, read or written.
    """
    mode = SyncMode(mode)
    root = Path(target_dir)
    graph = project if isinstance(project, ProjectGraph) else load_project(project)
    resolved = build_graph(graph)
    _prepare_target(root, mode is SyncMode.DRY_RUN)

    config = config or load_config(root)
    policy = RemovalPolicy(removal or config.removed_entities)
    overwrite = mode is SyncMode.OVERWRITE
    if overwrite:
        index = SourceIndex()
    else:
        index = index_directory(
            root, config.factory_kinds(), style=config.style, exclude=config.exclude
        )

    ctx = RunContext(resolved, index, config)
    plan_names(ctx)
    result = SyncResult()

    by_path: dict[str, list[Entity]] = {}
    for ref, path in ctx.paths.items():
        entity = graph.get(ref)
        if entity is not None:
            by_path.setdefault(path, []).append(entity)
    for entities in by_path.values():
        entities.sort(key=lambda e: (KIND_SPECS[e.kind].rank, e.id))
    paths = sorted(by_path, key=lambda p: (KIND_SPECS[by_path[p][0].kind].rank, p))

    if config.workers > 1 and len(paths) > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as executor:
            work = list(
                executor.map(lambda p: _merge_file(ctx, root, p, by_path[p], overwrite), paths)
            )
    else:
        work = [_merge_file(ctx, root, p, by_path[p], overwrite) for p in paths]

    documents: dict[str, SourceDocument] = {
        path: file_index.document for path, file_index in index.files.items()
    }
    originals: dict[str, str | None] = {
        path: file_index.document.original for path, file_index in index.files.items()
    }
    for item in work:
        result.entities.extend(item.results)
        if item.document is not None:
            documents[item.path] = item.document
            originals[item.path] = item.original

    pending: dict[str, PendingFile] = {}
    result.entities.extend(_merge_documents(ctx, root, overwrite, pending))

    if not overwrite:
        apply_removal_policy(ctx, root, policy, documents, pending, result)
    export_imported(documents)

    for path, document in documents.items():
        original = originals.get(path)
        if path in pending or (original is None and not document.text):
            continue
        if path in by_path or document.text != original:
            pending[path] = PendingFile(path, original, document.text)

    result.parse_errors = [index.errors[p] for p in sorted(index.errors)]
    result.files = emit(root, list(pending.values()), dry_run=mode is SyncMode.DRY_RUN)

    counts = result.counts()
    logger.info(
        "Synchronized %d entities: %s",
        len(result.entities),
        ", ".join(f"{n} {outcome}" for outcome, n in counts.items() if n),
    )
    return result

