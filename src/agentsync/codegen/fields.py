"""Managed field plans: the desired ``(key, value)`` list for each entity kind."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentsync.codegen.references import (
    CREDENTIAL_FIELDS,
    rewrite_credential,
    rewrite_templates,
    template_variables,
)
from agentsync.codegen.schema import compile_artifact_props, compile_schema, uses_preview
from agentsync.codegen.values import Expr, RefItem, RefList, render_inline
from agentsync.model.entities import EntityKind, EntityRef

if TYPE_CHECKING:
    from collections.abc import Callable

    from agentsync.codegen.merger import FileSession
    from agentsync.model.entities import Entity, Reference

logger = logging.getLogger(__name__)

# Canonical field order per kind; every listed key is managed.
MANAGED_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.PROJECT: (
        "id", "name", "description", "models", "stopWhen", "agents", "tools",
        "credentialReferences", "dataComponents", "artifactComponents",
    ),
    EntityKind.AGENT: (
        "id", "name", "description", "prompt", "models", "defaultSubAgent", "subAgents",
        "contextConfig", "stopWhen", "statusUpdates", "triggers",
    ),
    EntityKind.SUB_AGENT: (
        "id", "name", "description", "prompt", "models", "stopWhen", "canUse",
        "canDelegateTo", "canTransferTo", "dataComponents", "artifactComponents", "skills",
    ),
    EntityKind.TOOL: (
        "id", "name", "description", "serverUrl", "transport", "headers", "imageUrl",
        "credential",
    ),
    EntityKind.CONTEXT_CONFIG: ("id", "headers", "contextVariables"),
    EntityKind.HEADERS_SCHEMA: ("schema",),
    EntityKind.FETCH_DEFINITION: (
        "id", "name", "trigger", "fetchConfig", "responseSchema", "defaultValue",
        "credentialReference",
    ),
    EntityKind.CREDENTIAL: ("id", "name", "type", "credentialStoreId", "retrievalParams"),
    EntityKind.DATA_COMPONENT: ("id", "name", "description", "props", "render"),
    EntityKind.ARTIFACT_COMPONENT: (
        "id", "name", "description", "props", "template", "contentType", "render",
    ),
    EntityKind.STATUS_COMPONENT: ("type", "description", "detailsSchema"),
    EntityKind.TRIGGER: (
        "id", "name", "description", "enabled", "inputSchema", "outputTransform",
        "messageTemplate", "authentication", "signatureVerification",
        "signingSecretCredentialReference",
    ),
}  # fmt: skip

# Fields rendered as lists of identifiers; hand-written shapes there are left alone.
REFERENCE_LIST_FIELDS: dict[EntityKind, frozenset[str]] = {
    EntityKind.PROJECT: frozenset(
        {"agents", "tools", "credentialReferences", "dataComponents", "artifactComponents"}
    ),
    EntityKind.AGENT: frozenset({"subAgents", "triggers"}),
    EntityKind.SUB_AGENT: frozenset(
        {
            "canUse",
            "canDelegateTo",
            "canTransferTo",
            "dataComponents",
            "artifactComponents",
            "skills",
        }
    ),
}


# Fields holding one identifier (or an object of identifiers).
SINGLE_REFERENCE_FIELDS: dict[EntityKind, frozenset[str]] = {
    EntityKind.AGENT: frozenset({"defaultSubAgent", "contextConfig", "statusUpdates"}),
    EntityKind.TOOL: frozenset({"credential"}),
    EntityKind.CONTEXT_CONFIG: frozenset({"headers", "contextVariables"}),
    EntityKind.FETCH_DEFINITION: frozenset({"credentialReference"}),
    EntityKind.TRIGGER: frozenset({"signingSecretCredentialReference"}),
}


@dataclass
class FieldPlan:
    """Desired managed state of one declaration's config object."""

    desired: list[tuple[str, Any]]
    remove: list[str] = field(default_factory=list)
    reference_keys: frozenset[str] = frozenset()
    identifier_keys: frozenset[str] = frozenset()

    def present(self) -> dict[str, Any]:
        """Managed keys that carry a value, for rendering new declarations."""
        return {k: v for k, v in self.desired if v is not None}


def build_plan(session: FileSession, entity: Entity) -> FieldPlan:
    """Compute the managed fields of *entity* as seen from *session*'s file."""
    builder = _BUILDERS[entity.kind]
    values = builder(session, entity)
    desired = [(key, values.get(key)) for key in MANAGED_FIELDS[entity.kind]]
    remove = []
    if entity.kind in CREDENTIAL_FIELDS:
        remove.append(CREDENTIAL_FIELDS[entity.kind][0])
    if entity.kind is EntityKind.AGENT:
        remove.append("defaultSubAgentId")
    return FieldPlan(
        desired,
        remove,
        REFERENCE_LIST_FIELDS.get(entity.kind, frozenset()),
        SINGLE_REFERENCE_FIELDS.get(entity.kind, frozenset()),
    )


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _pick(entity: Entity, *keys: str) -> dict[str, Any]:
    return {k: entity.props[k] for k in keys if entity.props.get(k) is not None}


def _ref_list(
    session: FileSession,
    entity: Entity,
    field_name: str,
    code: Callable[[str, Reference], str] | None = None,
    *,
    lazy: bool = True,
) -> RefList | None:
    items = []
    seen: set[str] = set()
    for ref in entity.references_for(field_name):
        name = session.reference(ref.target, field_name, entity)
        if name is None or name in seen:
            continue
        seen.add(name)
        items.append(RefItem(name, code(name, ref) if code else name))
    return RefList(tuple(items), lazy=lazy) if items else None


def _single_ref(session: FileSession, entity: Entity, field_name: str) -> Expr | None:
    refs = entity.references_for(field_name)
    if not refs:
        return None
    name = session.reference(refs[0].target, field_name, entity)
    return Expr(name) if name is not None else None


def _template_bindings(
    session: FileSession, owner: Entity, agent_ref: EntityRef | None, text: Any
) -> tuple[str | None, str | None]:
    """Resolve the headers and context config names a template needs."""
    names: list[str] = []
    _collect_variables(text, names)
    if not names or agent_ref is None:
        return None, None
    agent = session.graph.get(agent_ref)
    if agent is None:
        return None, None
    cc_refs = agent.references_for("contextConfig")
    if not cc_refs or cc_refs[0].target not in session.graph:
        return None, None
    cc_ref = cc_refs[0].target
    headers_name = context_name = None
    if any(n.startswith("headers.") for n in names):
        headers_ref = EntityRef(EntityKind.HEADERS_SCHEMA, cc_ref.id)
        if headers_ref in session.graph:
            headers_name = session.reference(headers_ref, "prompt", owner)
    if any(not n.startswith("headers.") for n in names):
        context_name = session.reference(cc_ref, "prompt", owner)
    return headers_name, context_name


def _collect_variables(value: Any, out: list[str]) -> None:
    if isinstance(value, str):
        out.extend(template_variables(value))
    elif isinstance(value, dict):
        for item in value.values():
            _collect_variables(item, out)
    elif isinstance(value, list):
        for item in value:
            _collect_variables(item, out)


def _headers_only(session: FileSession, owner: Entity, cc_id: str | None, value: Any) -> Any:
    """Rewrite ``{{headers.x}}`` placeholders in *value* through the headers binding."""
    if value is None or cc_id is None:
        return value
    names: list[str] = []
    _collect_variables(value, names)
    if not any(n.startswith("headers.") for n in names):
        return value
    headers_ref = EntityRef(EntityKind.HEADERS_SCHEMA, cc_id)
    if headers_ref not in session.graph:
        return value
    headers_name = session.reference(headers_ref, "fetchConfig", owner)
    return rewrite_templates(value, headers_name, None)


def _credential(session: FileSession, entity: Entity) -> dict[str, Any]:
    return rewrite_credential(
        entity.kind,
        entity.props,
        lambda ref, target_field: session.reference(ref, target_field, entity),
    )


def _schema(session: FileSession, value: Any) -> Any:
    if value is None:
        return None
    session.helper("zod", "z")
    return compile_schema(value)


# ---------------------------------------------------------------------------
# per-kind builders
# ---------------------------------------------------------------------------


def _project(session: FileSession, entity: Entity) -> dict[str, Any]:
    values: dict[str, Any] = {"id": entity.id, **_pick(entity, "name", "description", "models", "stopWhen")}
    for list_field in REFERENCE_LIST_FIELDS[EntityKind.PROJECT]:
        values[list_field] = _ref_list(session, entity, list_field)
    return values


def _agent(session: FileSession, entity: Entity) -> dict[str, Any]:
    values: dict[str, Any] = {
        "id": entity.id,
        **_pick(entity, "name", "description", "models", "stopWhen"),
    }
    prompt = entity.props.get("prompt")
    if prompt is not None:
        headers, context = _template_bindings(session, entity, entity.ref, prompt)
        values["prompt"] = rewrite_templates(prompt, headers, context)
    values["defaultSubAgent"] = _single_ref(session, entity, "defaultSubAgent")
    values["subAgents"] = _ref_list(session, entity, "subAgents")
    values["contextConfig"] = _single_ref(session, entity, "contextConfig")
    values["triggers"] = _ref_list(session, entity, "triggers")

    status = entity.props.get("statusUpdates")
    if isinstance(status, dict):
        rendered: dict[str, Any] = {k: v for k, v in status.items() if k != "statusComponents"}
        components = _ref_list(
            session,
            entity,
            "statusUpdates.statusComponents",
            lambda name, _ref: f"{name}.config",
            lazy=False,
        )
        if components is not None:
            rendered["statusComponents"] = components
        if isinstance(rendered.get("prompt"), str):
            headers, context = _template_bindings(session, entity, entity.ref, rendered["prompt"])
            rendered["prompt"] = rewrite_templates(rendered["prompt"], headers, context)
        ordered = {
            k: rendered[k]
            for k in ("numEvents", "timeInSeconds", "statusComponents", "prompt")
            if k in rendered
        }
        ordered.update({k: v for k, v in rendered.items() if k not in ordered})
        values["statusUpdates"] = ordered or None
    return values


def _with_options(options: dict[str, Any] | None, session: FileSession) -> str:
    return render_inline(options, session.style) if options else ""


def _sub_agent(session: FileSession, entity: Entity) -> dict[str, Any]:
    values: dict[str, Any] = {
        "id": entity.id,
        **_pick(entity, "name", "description", "models", "stopWhen"),
    }
    prompt = entity.props.get("prompt")
    if prompt is not None:
        headers, context = _template_bindings(session, entity, entity.parent, prompt)
        values["prompt"] = rewrite_templates(prompt, headers, context)

    def with_call(name: str, ref: Reference) -> str:
        options = dict(ref.options or {})
        return f"{name}.with({_with_options(options, session)})" if options else name

    values["canUse"] = _ref_list(session, entity, "canUse", with_call)
    values["canDelegateTo"] = _ref_list(session, entity, "canDelegateTo", with_call)
    values["canTransferTo"] = _ref_list(session, entity, "canTransferTo")
    values["dataComponents"] = _ref_list(session, entity, "dataComponents")
    values["artifactComponents"] = _ref_list(session, entity, "artifactComponents")

    skills = []
    for ref in entity.references_for("skills"):
        if ref.target not in session.graph:
            continue
        item: Any = ref.target.id
        if ref.options:
            item = {"id": ref.target.id, **ref.options}
        skills.append(RefItem(ref.target.id, render_inline(item, session.style)))
    values["skills"] = RefList(tuple(skills)) if skills else None
    return values


def _tool(session: FileSession, entity: Entity) -> dict[str, Any]:
    props = _credential(session, entity)
    values = {k: props[k] for k in MANAGED_FIELDS[EntityKind.TOOL] if props.get(k) is not None}
    values["id"] = entity.id
    return values


def _context_config(session: FileSession, entity: Entity) -> dict[str, Any]:
    values: dict[str, Any] = {"id": entity.id, "headers": _single_ref(session, entity, "headers")}
    variables: dict[str, Any] = {}
    for ref in entity.references_for("contextVariables"):
        name = session.reference(ref.target, "contextVariables", entity)
        if name is not None:
            key = (ref.options or {}).get("key", ref.target.id)
            variables[key] = Expr(name)
    values["contextVariables"] = variables or None
    return values


def _headers(session: FileSession, entity: Entity) -> dict[str, Any]:
    return {"schema": _schema(session, entity.props.get("schema"))}


def _fetch_definition(session: FileSession, entity: Entity) -> dict[str, Any]:
    props = _credential(session, entity)
    cc_id = entity.parent.id if entity.parent is not None else None
    values = _pick(entity, "name", "trigger", "defaultValue")
    values["id"] = entity.id
    values["fetchConfig"] = _headers_only(session, entity, cc_id, props.get("fetchConfig"))
    values["responseSchema"] = _schema(session, props.get("responseSchema"))
    values["credentialReference"] = props.get("credentialReference")
    return values


def _credential_entity(session: FileSession, entity: Entity) -> dict[str, Any]:
    return {"id": entity.id, **_pick(entity, "name", "type", "credentialStoreId", "retrievalParams")}


def _data_component(session: FileSession, entity: Entity) -> dict[str, Any]:
    values = {"id": entity.id, **_pick(entity, "name", "description", "render")}
    values["props"] = _schema(session, entity.props.get("props"))
    return values


def _artifact_component(session: FileSession, entity: Entity) -> dict[str, Any]:
    values = {
        "id": entity.id,
        **_pick(entity, "name", "description", "template", "contentType", "render"),
    }
    props = entity.props.get("props")
    if props is not None:
        session.helper("zod", "z")
        compiled = compile_artifact_props(props)
        if uses_preview(compiled):
            session.helper("core", "preview")
        values["props"] = compiled
    return values


def _status_component(session: FileSession, entity: Entity) -> dict[str, Any]:
    values = {"type": entity.id, **_pick(entity, "description")}
    values["detailsSchema"] = _schema(session, entity.props.get("detailsSchema"))
    return values


def _trigger(session: FileSession, entity: Entity) -> dict[str, Any]:
    props = _credential(session, entity)
    values = {
        k: props[k] for k in MANAGED_FIELDS[EntityKind.TRIGGER] if props.get(k) is not None
    }
    values["id"] = entity.id
    template = values.get("messageTemplate")
    if isinstance(template, str) and entity.parent is not None:
        agent = session.graph.get(entity.parent)
        cc_refs = agent.references_for("contextConfig") if agent is not None else []
        if cc_refs:
            values["messageTemplate"] = _headers_only(session, entity, cc_refs[0].target.id, template)
    return values


_BUILDERS: dict[EntityKind, Callable[[FileSession, Entity], dict[str, Any]]] = {
    EntityKind.PROJECT: _project,
    EntityKind.AGENT: _agent,
    EntityKind.SUB_AGENT: _sub_agent,
    EntityKind.TOOL: _tool,
    EntityKind.CONTEXT_CONFIG: _context_config,
    EntityKind.HEADERS_SCHEMA: _headers,
    EntityKind.FETCH_DEFINITION: _fetch_definition,
    EntityKind.CREDENTIAL: _credential_entity,
    EntityKind.DATA_COMPONENT: _data_component,
    EntityKind.ARTIFACT_COMPONENT: _artifact_component,
    EntityKind.STATUS_COMPONENT: _status_component,
    EntityKind.TRIGGER: _trigger,
}
