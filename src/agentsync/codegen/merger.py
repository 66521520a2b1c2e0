"""Entity merger: create, update or skip the declaration of one canonical entity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from agentsync.codegen.fields import build_plan
from agentsync.codegen.imports import ImportManager, module_specifier
from agentsync.codegen.property_writer import PropertyWriter
from agentsync.codegen.values import render_value
from agentsync.errors import SchemaValidationError, SyncError
from agentsync.model.graph_builder import KIND_SPECS, missing_fields
from agentsync.source.document import call_parts, node_text

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

    from agentsync.config import SyncConfig
    from agentsync.model.entities import Entity, EntityRef, ProjectGraph
    from agentsync.model.graph_builder import ResolvedGraph
    from agentsync.source.document import CodeStyle, SourceDocument
    from agentsync.source.indexer import Declaration, SourceIndex

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Per-entity result of a merge."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_MANUAL = "skipped-manual"
    FAILED = "failed"


@dataclass
class EntityResult:
    """Outcome of merging one canonical entity."""

    ref: EntityRef
    outcome: Outcome
    file_path: str | None = None
    name: str | None = None
    message: str = ""
    warnings: list[str] = field(default_factory=list)


@dataclass
class RunContext:
    """Read-mostly state shared by every file of one run."""

    resolved: ResolvedGraph
    index: SourceIndex
    config: SyncConfig
    names: dict[EntityRef, str] = field(default_factory=dict)
    paths: dict[EntityRef, str] = field(default_factory=dict)
    manual_skips: dict[EntityRef, Declaration] = field(default_factory=dict)
    # entities that will have no declaration to import, with the reason
    unavailable: dict[EntityRef, str] = field(default_factory=dict)

    @property
    def graph(self) -> ProjectGraph:
        return self.resolved.graph


class FileSession:
    """Editing state for one target file: document, writer and imports."""

    def __init__(self, ctx: RunContext, path: str, document: SourceDocument) -> None:
        self.ctx = ctx
        self.path = path
        self.document = document
        planned = {name for ref, name in ctx.names.items() if ctx.paths.get(ref) == path}
        self.imports = ImportManager(document, reserved=planned)
        self.writer = PropertyWriter(document)
        self._warnings: list[str] = []

    @property
    def graph(self) -> ProjectGraph:
        return self.ctx.graph

    @property
    def style(self) -> CodeStyle:
        return self.document.style

    def take_warnings(self) -> list[str]:
        warnings, self._warnings = self._warnings, []
        return warnings

    def warn(self, message: str) -> None:
        if message in self._warnings:
            return
        logger.warning("%s", message)
        self._warnings.append(message)

    def reference(self, target: EntityRef, field_name: str, owner: Entity) -> str | None:
        """Local identifier for *target* in this file, importing it when needed.

        Returns ``None`` when there is nothing to import: the target is not in
        the canonical graph (reported once per entity by :func:`merge_entity`)
        or its own generation failed.
        """
        if target not in self.graph:
            return None
        reason = self.ctx.unavailable.get(target)
        if reason is not None:
            self.warn(f"{owner.ref}: {field_name} target {target} was left out ({reason})")
            return None
        name = self.ctx.names.get(target)
        path = self.ctx.paths.get(target)
        if name is None or path is None:
            self.warn(f"{owner.ref}: {field_name} target {target} has no declaration to reference")
            return None
        if path == self.path:
            return name
        specifier = module_specifier(self.path, path, self.ctx.config.import_extension)
        return self.imports.ensure(specifier, name)

    def helper(self, module: str, name: str) -> str:
        """Import a library export (``z`` from zod, ``preview`` from the core module)."""
        return self.imports.ensure(self.ctx.config.module(module), name)

    def factory(self, entity: Entity) -> str:
        spec = KIND_SPECS[entity.kind]
        assert spec.factory is not None
        return self.imports.ensure(self.ctx.config.module(spec.module), spec.factory)


def merge_entity(session: FileSession, entity: Entity) -> EntityResult:
    """Merge one entity into its file; errors scoped to the entity are recorded."""
    ctx = session.ctx
    ref = entity.ref
    result = EntityResult(ref, Outcome.UNCHANGED, session.path, ctx.names.get(ref))
    try:
        ambiguity = ctx.index.bindings.ambiguity(ref)
        if ambiguity is not None:
            raise ambiguity
        missing = missing_fields(entity)
        if missing:
            raise SchemaValidationError(entity.kind.value, entity.id, missing)
        if ref in ctx.manual_skips:
            decl = ctx.manual_skips[ref]
            result.outcome = Outcome.SKIPPED_MANUAL
            result.message = f"matched hand-maintained declaration at {decl.location}"
            return result

        for error in ctx.resolved.unresolved_errors(entity):
            session.warn(str(error))
        before = session.document.text
        declaration = ctx.index.bindings.lookup(ref)
        if declaration is not None and declaration.file_path == session.path:
            _update(session, entity, declaration.name, result)
        else:
            _create(session, entity, result)
        if result.outcome is Outcome.UNCHANGED and session.document.text != before:
            result.outcome = Outcome.UPDATED
    except SyncError as exc:
        logger.warning("Failed to merge %s: %s", ref, exc)
        result.outcome = Outcome.FAILED
        result.message = str(exc)
    finally:
        result.warnings.extend(session.take_warnings())
    return result


def _update(session: FileSession, entity: Entity, name: str, result: EntityResult) -> None:
    document = session.document
    obj = document.config_object(name)
    if obj is None:
        result.outcome = Outcome.SKIPPED_MANUAL
        result.message = f"'{name}' is not built from an object literal"
        logger.warning("%s: %s; leaving it alone", entity.ref, result.message)
        return
    plan = build_plan(session, entity)
    report = session.writer.patch(
        lambda doc: doc.config_object(name),
        plan.desired,
        remove=plan.remove,
        reference_keys=plan.reference_keys,
        identifier_keys=plan.identifier_keys,
    )
    for key in report.manual:
        session.warn(f"{entity.ref}: '{key}' is hand-maintained and was left untouched")
    if report.touched:
        logger.debug(
            "%s: changed=%s added=%s removed=%s",
            entity.ref,
            report.changed,
            report.added,
            report.removed,
        )


def declaration_text(session: FileSession, entity: Entity, name: str, factory: str) -> str:
    """Source text of a brand-new declaration for *entity*."""
    plan = build_plan(session, entity)
    spec = KIND_SPECS[entity.kind]
    call = f"new {factory}(" if spec.constructor else f"{factory}("
    head = f"export const {name} = {call}"
    body = render_value(plan.present(), session.style, "", len(head), True)
    semi = ";" if session.style.semicolons else ""
    return f"{head}{body}){semi}"


def _create(session: FileSession, entity: Entity, result: EntityResult) -> None:
    name = session.ctx.names[entity.ref]
    factory = session.factory(entity)
    text = declaration_text(session, entity, name, factory)
    session.document.insert_statement(text, before=_insertion_anchor(session, entity))
    result.outcome = Outcome.CREATED
    logger.debug("Created %s as %s in %s", entity.ref, name, session.path)


def _insertion_anchor(session: FileSession, entity: Entity) -> TSNode | None:
    """First declaration of a later-ranked kind, so dependencies come first."""
    rank = KIND_SPECS[entity.kind].rank
    factories = session.ctx.config.factory_kinds()
    for statement, declarator, _exported in session.document.declarators():
        callee, _args, _is_new = call_parts(declarator.child_by_field_name("value"))
        kind = factories.get(callee) if callee else None
        if kind is not None and KIND_SPECS[kind].rank > rank:
            logger.debug(
                "Inserting %s before %s",
                entity.ref,
                node_text(declarator.child_by_field_name("name")),
            )
            return statement
    return None
