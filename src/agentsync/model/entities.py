"""Canonical entity model: kinds, references and the project graph registry."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from agentsync.errors import GraphValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Kinds of entities in a canonical project graph."""

    PROJECT = "project"
    AGENT = "agent"
    SUB_AGENT = "subAgent"
    TOOL = "tool"
    CONTEXT_CONFIG = "contextConfig"
    HEADERS_SCHEMA = "headers"
    FETCH_DEFINITION = "fetchDefinition"
    CREDENTIAL = "credential"
    DATA_COMPONENT = "dataComponent"
    ARTIFACT_COMPONENT = "artifactComponent"
    STATUS_COMPONENT = "statusComponent"
    TRIGGER = "trigger"
    SKILL = "skill"
    POLICY = "policy"


@dataclass(frozen=True, order=True)
class EntityRef:
    """Identity of an entity: its kind plus an id unique within that kind."""

    kind: EntityKind
    id: str

    def __str__(self) -> str:
        return f"{self.kind.value} '{self.id}'"


@dataclass(frozen=True)
class Reference:
    """An outbound reference from one entity field to another entity.

    ``options`` carries per-reference configuration that is rendered next to
    the identifier (tool selection, delegation headers, skill flags).
    """

    field: str
    target: EntityRef
    options: Mapping[str, Any] | None = None


@dataclass
class Entity:
    """One canonical entity with its property bag and outbound references."""

    kind: EntityKind
    id: str
    props: dict[str, Any]
    references: list[Reference] = field(default_factory=list)
    parent: EntityRef | None = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.kind, self.id)

    def references_for(self, field_name: str) -> list[Reference]:
        return [r for r in self.references if r.field == field_name]


class ProjectGraph:
    """Registry of canonical entities keyed by identity.

    Entities reference each other by :class:`EntityRef` only, so cyclic
    graphs (mutually delegating sub-agents) need no special handling.
    """

    def __init__(self) -> None:
        self._entities: dict[EntityRef, Entity] = {}
        self.problems: list[str] = []
        self.unsupported: dict[str, int] = {}

    def add(self, entity: Entity) -> Entity:
        existing = self._entities.get(entity.ref)
        if existing is None:
            self._entities[entity.ref] = entity
            return entity
        if existing.props != entity.props:
            self.problems.append(f"{entity.ref} is defined twice with different content")
        return existing

    def get(self, ref: EntityRef) -> Entity | None:
        return self._entities.get(ref)

    def by_kind(self, kind: EntityKind) -> list[Entity]:
        return [e for e in self._entities.values() if e.kind is kind]

    def ids(self, kind: EntityKind) -> set[str]:
        return {ref.id for ref in self._entities if ref.kind is kind}

    def __contains__(self, ref: object) -> bool:
        return ref in self._entities

    def __iter__(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)


# ---------------------------------------------------------------------------
# Loading the full-project JSON document
# ---------------------------------------------------------------------------

_HEADER_PLACEHOLDER_RE = re.compile(r"\{\{\s*headers\.([^}\s]+)\s*\}\}")

# Sections the management API can return that are not generated here.
_UNSUPPORTED_SECTIONS = ("functionTools", "functions", "externalAgents", "environments")


def load_project(data: Mapping[str, Any]) -> ProjectGraph:
    """Build a :class:`ProjectGraph` from a full-project definition.

    Raises
    ------
    GraphValidationError
        When the document is structurally invalid.
    """
    if not isinstance(data, Mapping):
        raise GraphValidationError(["project definition must be a JSON object"])

    graph = ProjectGraph()
    loader = _Loader(graph)
    loader.load(data)
    loader.link()

    agent_ids = graph.ids(EntityKind.AGENT)
    for shared in sorted(agent_ids & graph.ids(EntityKind.SUB_AGENT)):
        graph.problems.append(f"id '{shared}' is used by both an agent and a sub-agent")

    if graph.problems:
        raise GraphValidationError(graph.problems)

    if graph.unsupported:
        summary = ", ".join(f"{count} {name}" for name, count in sorted(graph.unsupported.items()))
        logger.warning("Skipping unsupported components: %s", summary)
    return graph


def collect_header_placeholders(value: Any) -> set[str]:
    """Return the header field names used as ``{{headers.<field>}}`` in *value*."""
    found: set[str] = set()
    if isinstance(value, str):
        found.update(_HEADER_PLACEHOLDER_RE.findall(value))
    elif isinstance(value, Mapping):
        for item in value.values():
            found |= collect_header_placeholders(item)
    elif isinstance(value, list):
        for item in value:
            found |= collect_header_placeholders(item)
    return found


def _compact(value: Any) -> Any:
    """Drop ``None`` members from mappings, recursively."""
    if isinstance(value, Mapping):
        return {k: _compact(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_compact(v) for v in value]
    return value


class _Loader:
    def __init__(self, graph: ProjectGraph) -> None:
        self.graph = graph
        self._project: Entity | None = None
        # agent id -> ordered sub-agent ids / trigger ids
        self._agent_children: dict[str, dict[str, list[str]]] = {}
        # context config id -> [(variable key, fetch id)]
        self._context_variables: dict[str, list[tuple[str, str]]] = {}
        self._status_aliases: dict[str, str] = {}

    # -- helpers -----------------------------------------------------------

    def _section(self, data: Mapping[str, Any], key: str, where: str = "project") -> dict[str, Any]:
        value = data.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            self.graph.problems.append(f"{where}.{key} must be an object")
            return {}
        result: dict[str, Any] = {}
        for item_key, item in value.items():
            if not isinstance(item, Mapping):
                self.graph.problems.append(f"{where}.{key}.{item_key} must be an object")
                continue
            result[str(item_key)] = item
        return result

    def _entity_id(self, key: str, item: Mapping[str, Any], where: str) -> str | None:
        raw = item.get("id", key)
        if not isinstance(raw, str) or not raw:
            self.graph.problems.append(f"{where}.{key} has no usable string id")
            return None
        return raw

    def _add(
        self,
        kind: EntityKind,
        entity_id: str,
        props: Mapping[str, Any],
        parent: EntityRef | None = None,
    ) -> Entity:
        clean = _compact({k: v for k, v in props.items() if k not in ("createdAt", "updatedAt")})
        clean.pop("id", None)
        return self.graph.add(Entity(kind, entity_id, clean, parent=parent))

    # -- sections ----------------------------------------------------------

    def load(self, data: Mapping[str, Any]) -> None:
        project_id = data.get("id")
        if project_id is not None:
            if not isinstance(project_id, str) or not project_id:
                self.graph.problems.append("project id must be a non-empty string")
            else:
                props = {
                    k: data[k]
                    for k in ("name", "description", "models", "stopWhen")
                    if data.get(k) is not None
                }
                self._project = self._add(EntityKind.PROJECT, project_id, props)

        for key, item in self._section(data, "credentialReferences").items():
            entity_id = self._entity_id(key, item, "credentialReferences")
            if entity_id:
                self._add(EntityKind.CREDENTIAL, entity_id, item)

        for key, item in self._section(data, "tools").items():
            entity_id = self._entity_id(key, item, "tools")
            if entity_id:
                self._load_tool(entity_id, item)

        simple_sections = (
            ("dataComponents", EntityKind.DATA_COMPONENT),
            ("artifactComponents", EntityKind.ARTIFACT_COMPONENT),
            ("skills", EntityKind.SKILL),
            ("policies", EntityKind.POLICY),
        )
        for section, kind in simple_sections:
            for key, item in self._section(data, section).items():
                entity_id = self._entity_id(key, item, section)
                if entity_id:
                    self._add(kind, entity_id, item)

        for key, item in self._section(data, "statusComponents").items():
            status_type = item.get("type")
            entity_id = status_type if isinstance(status_type, str) and status_type else None
            if entity_id is None:
                entity_id = self._entity_id(key, item, "statusComponents")
            if entity_id:
                self._status_aliases[key] = entity_id
                self._add(EntityKind.STATUS_COMPONENT, entity_id, {**item, "type": entity_id})

        for key, item in self._section(data, "agents").items():
            entity_id = self._entity_id(key, item, "agents")
            if entity_id:
                self._load_agent(entity_id, item)

        for section in _UNSUPPORTED_SECTIONS:
            value = data.get(section)
            if isinstance(value, Mapping) and value:
                self.graph.unsupported[section] = (
                    self.graph.unsupported.get(section, 0) + len(value)
                )

    def _load_tool(self, tool_id: str, item: Mapping[str, Any]) -> None:
        config = item.get("config") if isinstance(item.get("config"), Mapping) else {}
        if config.get("type") == "function":
            self.graph.unsupported["functionTools"] = (
                self.graph.unsupported.get("functionTools", 0) + 1
            )
            return
        props = {k: v for k, v in item.items() if k != "config"}
        mcp = config.get("mcp") if isinstance(config.get("mcp"), Mapping) else {}
        server = mcp.get("server") if isinstance(mcp.get("server"), Mapping) else {}
        if "serverUrl" not in props and isinstance(server.get("url"), str):
            props["serverUrl"] = server["url"]
        if "transport" not in props and mcp.get("transport") is not None:
            props["transport"] = mcp["transport"]
        self._add(EntityKind.TOOL, tool_id, props)

    def _load_agent(self, agent_id: str, item: Mapping[str, Any]) -> None:
        nested = ("subAgents", "contextConfig", "triggers", "tools", "functionTools", "functions")
        props = {k: v for k, v in item.items() if k not in nested}
        agent = self._add(EntityKind.AGENT, agent_id, props)
        children: dict[str, list[str]] = {"subAgents": [], "triggers": []}
        self._agent_children[agent_id] = children

        where = f"agents.{agent_id}"
        for key, sub in self._section(item, "subAgents", where).items():
            sub_id = self._entity_id(key, sub, f"{where}.subAgents")
            if sub_id:
                self._add(
                    EntityKind.SUB_AGENT,
                    sub_id,
                    {k: v for k, v in sub.items() if k != "type"},
                    parent=agent.ref,
                )
                children["subAgents"].append(sub_id)

        for key, trig in self._section(item, "triggers", where).items():
            trig_id = self._entity_id(key, trig, f"{where}.triggers")
            if trig_id:
                self._add(EntityKind.TRIGGER, trig_id, trig, parent=agent.ref)
                children["triggers"].append(trig_id)

        context = item.get("contextConfig")
        if context is None:
            return
        if not isinstance(context, Mapping):
            self.graph.problems.append(f"{where}.contextConfig must be an object")
            return
        context_id = context.get("id")
        if not isinstance(context_id, str) or not context_id:
            self.graph.problems.append(f"{where}.contextConfig has no usable string id")
            return
        agent.props["contextConfigId"] = context_id
        self._load_context_config(context_id, context)

    def _load_context_config(self, context_id: str, data: Mapping[str, Any]) -> None:
        cc_ref = EntityRef(EntityKind.CONTEXT_CONFIG, context_id)
        self._add(EntityKind.CONTEXT_CONFIG, context_id, {})
        variables = data.get("contextVariables")
        fetch_data: list[Mapping[str, Any]] = []
        entries: list[tuple[str, str]] = []
        if isinstance(variables, Mapping):
            for key, var in variables.items():
                if not isinstance(var, Mapping):
                    continue
                if "fetchConfig" not in var and "responseSchema" not in var:
                    continue
                fetch_id = var.get("id") or key
                if not isinstance(fetch_id, str):
                    self.graph.problems.append(
                        f"contextConfig '{context_id}'.{key} has no usable string id"
                    )
                    continue
                self._add(EntityKind.FETCH_DEFINITION, fetch_id, var, parent=cc_ref)
                fetch_data.append(var)
                entries.append((str(key), fetch_id))
        self._context_variables.setdefault(context_id, entries)

        schema = data.get("headersSchema")
        if not isinstance(schema, Mapping):
            fields = sorted(collect_header_placeholders(fetch_data))
            schema = (
                {
                    "type": "object",
                    "properties": {f: {"type": "string"} for f in fields},
                    "required": fields,
                    "additionalProperties": False,
                }
                if fields
                else None
            )
        if schema is not None:
            self._add(EntityKind.HEADERS_SCHEMA, context_id, {"schema": schema}, parent=cc_ref)

    # -- references ----------------------------------------------------------

    def link(self) -> None:
        for entity in self.graph:
            linker = getattr(self, f"_link_{entity.kind.name.lower()}", None)
            if linker is not None:
                linker(entity)

    def _link_project(self, entity: Entity) -> None:
        lists = (
            ("agents", EntityKind.AGENT),
            ("tools", EntityKind.TOOL),
            ("credentialReferences", EntityKind.CREDENTIAL),
            ("dataComponents", EntityKind.DATA_COMPONENT),
            ("artifactComponents", EntityKind.ARTIFACT_COMPONENT),
        )
        for field_name, kind in lists:
            for target in self.graph.by_kind(kind):
                entity.references.append(Reference(field_name, target.ref))

    def _link_agent(self, entity: Entity) -> None:
        props = entity.props
        children = self._agent_children.get(entity.id, {})
        default = props.get("defaultSubAgentId")
        if isinstance(default, str) and default:
            entity.references.append(
                Reference("defaultSubAgent", EntityRef(EntityKind.SUB_AGENT, default))
            )
        for sub_id in children.get("subAgents", []):
            entity.references.append(Reference("subAgents", EntityRef(EntityKind.SUB_AGENT, sub_id)))
        context_id = props.get("contextConfigId")
        if isinstance(context_id, str):
            entity.references.append(
                Reference("contextConfig", EntityRef(EntityKind.CONTEXT_CONFIG, context_id))
            )
        for trig_id in children.get("triggers", []):
            entity.references.append(Reference("triggers", EntityRef(EntityKind.TRIGGER, trig_id)))
        status = props.get("statusUpdates")
        if isinstance(status, Mapping):
            for item in status.get("statusComponents") or []:
                raw = item.get("type") or item.get("id") if isinstance(item, Mapping) else item
                if isinstance(raw, str):
                    target = EntityRef(EntityKind.STATUS_COMPONENT, self._status_aliases.get(raw, raw))
                    entity.references.append(Reference("statusUpdates.statusComponents", target))

    def _link_sub_agent(self, entity: Entity) -> None:
        props = entity.props
        for item in props.get("canUse") or []:
            tool_id = item if isinstance(item, str) else None
            options: dict[str, Any] = {}
            if isinstance(item, Mapping):
                tool_id = item.get("toolId") if isinstance(item.get("toolId"), str) else None
                selection = item.get("toolSelection") or item.get("selectedTools")
                if selection:
                    options["selectedTools"] = list(selection)
                if isinstance(item.get("headers"), Mapping) and item["headers"]:
                    options["headers"] = dict(item["headers"])
                if isinstance(item.get("toolPolicies"), Mapping) and item["toolPolicies"]:
                    options["toolPolicies"] = dict(item["toolPolicies"])
            if tool_id:
                entity.references.append(
                    Reference("canUse", EntityRef(EntityKind.TOOL, tool_id), options or None)
                )

        for item in props.get("canDelegateTo") or []:
            target, options = self._delegate_target(item)
            if target is not None:
                entity.references.append(Reference("canDelegateTo", target, options))

        for item in props.get("canTransferTo") or []:
            target, _options = self._delegate_target(item)
            if target is not None:
                entity.references.append(Reference("canTransferTo", target))

        for field_name, kind in (
            ("dataComponents", EntityKind.DATA_COMPONENT),
            ("artifactComponents", EntityKind.ARTIFACT_COMPONENT),
        ):
            for item in props.get(field_name) or []:
                if isinstance(item, str):
                    entity.references.append(Reference(field_name, EntityRef(kind, item)))

        for item in props.get("skills") or []:
            skill_id: Any = item
            options = None
            if isinstance(item, Mapping):
                skill_id = item.get("id") or item.get("skillId")
                options = {
                    k: item[k]
                    for k in ("index", "alwaysLoaded")
                    if k in item and item[k] is not None
                }
            if isinstance(skill_id, str):
                entity.references.append(
                    Reference("skills", EntityRef(EntityKind.SKILL, skill_id), options or None)
                )

    def _delegate_target(self, item: Any) -> tuple[EntityRef | None, dict[str, Any] | None]:
        options = None
        if isinstance(item, Mapping):
            if isinstance(item.get("headers"), Mapping) and item["headers"]:
                options = {"headers": dict(item["headers"])}
            if isinstance(item.get("subAgentId"), str):
                return EntityRef(EntityKind.SUB_AGENT, item["subAgentId"]), options
            if isinstance(item.get("agentId"), str):
                return EntityRef(EntityKind.AGENT, item["agentId"]), options
            if isinstance(item.get("externalAgentId"), str):
                # External agents are not modelled; the reference stays dangling.
                return EntityRef(EntityKind.AGENT, item["externalAgentId"]), options
            return None, None
        if not isinstance(item, str):
            return None, None
        if item in self.graph.ids(EntityKind.SUB_AGENT):
            return EntityRef(EntityKind.SUB_AGENT, item), None
        if item in self.graph.ids(EntityKind.AGENT):
            return EntityRef(EntityKind.AGENT, item), None
        return EntityRef(EntityKind.SUB_AGENT, item), None

    def _link_tool(self, entity: Entity) -> None:
        credential = entity.props.get("credentialReferenceId")
        if isinstance(credential, str) and credential:
            entity.references.append(
                Reference("credential", EntityRef(EntityKind.CREDENTIAL, credential))
            )

    def _link_context_config(self, entity: Entity) -> None:
        headers_ref = EntityRef(EntityKind.HEADERS_SCHEMA, entity.id)
        if headers_ref in self.graph:
            entity.references.append(Reference("headers", headers_ref))
        for key, fetch_id in self._context_variables.get(entity.id, []):
            entity.references.append(
                Reference(
                    "contextVariables",
                    EntityRef(EntityKind.FETCH_DEFINITION, fetch_id),
                    {"key": key},
                )
            )

    def _link_fetch_definition(self, entity: Entity) -> None:
        credential = entity.props.get("credentialReferenceId")
        if isinstance(credential, str) and credential:
            entity.references.append(
                Reference("credentialReference", EntityRef(EntityKind.CREDENTIAL, credential))
            )

    def _link_trigger(self, entity: Entity) -> None:
        credential = entity.props.get("signingSecretCredentialReferenceId")
        if isinstance(credential, str) and credential:
            entity.references.append(
                Reference(
                    "signingSecretCredentialReference",
                    EntityRef(EntityKind.CREDENTIAL, credential),
                )
            )
