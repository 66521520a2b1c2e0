"""Reference graph builder: per-kind builder metadata and target file paths."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from agentsync.errors import UnresolvedReferenceError
from agentsync.model.entities import EntityKind, EntityRef

if TYPE_CHECKING:
    from agentsync.model.entities import Entity, ProjectGraph, Reference

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class KindSpec:
    """How one entity kind is expressed in source files."""

    kind: EntityKind
    factory: str | None  # builder call name; None for markdown documents
    module: str  # "sdk" | "core" | "" (markdown)
    path: str  # target path template, ``{id}`` / ``{parent}`` substituted
    rank: int  # processing and in-file ordering
    id_field: str | None = "id"
    constructor: bool = False  # ``new Factory({...})`` instead of ``factory({...})``
    alt_factories: tuple[str, ...] = ()
    required: tuple[str, ...] = ()


KIND_SPECS: dict[EntityKind, KindSpec] = {
    spec.kind: spec
    for spec in (
        KindSpec(
            EntityKind.CREDENTIAL,
            "credential",
            "sdk",
            "credentials/{id}.ts",
            0,
            required=("type", "credentialStoreId"),
        ),
        KindSpec(
            EntityKind.HEADERS_SCHEMA,
            "headers",
            "core",
            "context-configs/{parent}.ts",
            1,
            id_field=None,
            required=("schema",),
        ),
        KindSpec(
            EntityKind.FETCH_DEFINITION,
            "fetchDefinition",
            "core",
            "context-configs/{parent}.ts",
            2,
            required=("fetchConfig",),
        ),
        KindSpec(EntityKind.CONTEXT_CONFIG, "contextConfig", "core", "context-configs/{id}.ts", 3),
        KindSpec(
            EntityKind.TOOL, "mcpTool", "sdk", "tools/{id}.ts", 4, required=("name", "serverUrl")
        ),
        KindSpec(
            EntityKind.DATA_COMPONENT,
            "dataComponent",
            "sdk",
            "data-components/{id}.ts",
            5,
            required=("name", "props"),
        ),
        KindSpec(
            EntityKind.ARTIFACT_COMPONENT,
            "artifactComponent",
            "sdk",
            "artifact-components/{id}.ts",
            6,
            required=("name", "props"),
        ),
        KindSpec(
            EntityKind.STATUS_COMPONENT,
            "statusComponent",
            "sdk",
            "status-components/{id}.ts",
            7,
            id_field="type",
            required=("type",),
        ),
        KindSpec(
            EntityKind.TRIGGER,
            "Trigger",
            "sdk",
            "triggers/{id}.ts",
            8,
            constructor=True,
            alt_factories=("trigger",),
            required=("name",),
        ),
        KindSpec(EntityKind.SUB_AGENT, "subAgent", "sdk", "agents/sub-agents/{id}.ts", 9),
        KindSpec(EntityKind.AGENT, "agent", "sdk", "agents/{id}.ts", 10, required=("name",)),
        KindSpec(EntityKind.PROJECT, "project", "sdk", "index.ts", 11, required=("name",)),
        KindSpec(
            EntityKind.SKILL,
            None,
            "",
            "skills/{id}/SKILL.md",
            12,
            required=("name", "description", "content"),
        ),
        KindSpec(
            EntityKind.POLICY,
            None,
            "",
            "policies/{id}.md",
            13,
            required=("name", "description", "content"),
        ),
    )
}


def factory_kinds(extra: dict[str, str] | None = None) -> dict[str, EntityKind]:
    """Map every recognized factory call name to its entity kind.

    *extra* adds user-configured aliases (factory name -> kind value).
    """
    mapping: dict[str, EntityKind] = {}
    for spec in KIND_SPECS.values():
        if spec.factory is None:
            continue
        mapping[spec.factory] = spec.kind
        for alt in spec.alt_factories:
            mapping[alt] = spec.kind
    for name, kind_value in (extra or {}).items():
        try:
            mapping[name] = EntityKind(kind_value)
        except ValueError:
            logger.warning("Ignoring factory alias %s: unknown kind %r", name, kind_value)
    return mapping


def file_stem(entity_id: str) -> str:
    """Return a filesystem-safe stem for *entity_id*."""
    stem = _UNSAFE_PATH_CHARS.sub("-", entity_id).strip("-.")
    return stem or "entity"


def missing_fields(entity: Entity) -> list[str]:
    """Return the required fields *entity* lacks, in declaration order."""
    spec = KIND_SPECS[entity.kind]
    missing = []
    for name in spec.required:
        value = entity.id if name == spec.id_field else entity.props.get(name)
        if value is None or value == "":
            missing.append(name)
    return missing


@dataclass
class ResolvedGraph:
    """Canonical graph plus target file paths and dangling references."""

    graph: ProjectGraph
    paths: dict[EntityRef, str] = field(default_factory=dict)
    unresolved: dict[EntityRef, list[Reference]] = field(default_factory=dict)

    def unresolved_errors(self, entity: Entity) -> list[UnresolvedReferenceError]:
        return [
            UnresolvedReferenceError(str(entity.ref), ref.field, str(ref.target))
            for ref in self.unresolved.get(entity.ref, [])
        ]


def build_graph(graph: ProjectGraph) -> ResolvedGraph:
    """Assign target paths and collect dangling references.

    Dangling references are kept for the merger, which omits the offending
    element and records a warning on the owning entity.
    """
    resolved = ResolvedGraph(graph)
    for entity in graph:
        spec = KIND_SPECS[entity.kind]
        if "{parent}" in spec.path:
            if entity.parent is None:
                logger.warning("%s has no owning context config; skipped", entity.ref)
                continue
            path = spec.path.format(parent=file_stem(entity.parent.id))
        else:
            path = spec.path.format(id=file_stem(entity.id))
        resolved.paths[entity.ref] = path

        dangling = [r for r in entity.references if r.target not in graph]
        if dangling:
            resolved.unresolved[entity.ref] = dangling
            for ref in dangling:
                logger.debug("%s: %s references unknown %s", entity.ref, ref.field, ref.target)
    return resolved
