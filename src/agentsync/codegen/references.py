"""Reference rewriting: template placeholders and credential references."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from agentsync.codegen.values import Expr
from agentsync.model.entities import EntityKind, EntityRef

if TYPE_CHECKING:
    from collections.abc import Callable

TEMPLATE_VARIABLE_RE = re.compile(r"\{\{(?!\{)(?P<name>[^{}]+)\}\}")

# kind -> (canonical scalar field, identifier-valued source field)
CREDENTIAL_FIELDS: dict[EntityKind, tuple[str, str]] = {
    EntityKind.FETCH_DEFINITION: ("credentialReferenceId", "credentialReference"),
    EntityKind.TOOL: ("credentialReferenceId", "credential"),
    EntityKind.TRIGGER: ("signingSecretCredentialReferenceId", "signingSecretCredentialReference"),
}


def template_variables(value: str) -> list[str]:
    """Return the placeholder names used in *value*, in order."""
    return [m.group("name").strip() for m in TEMPLATE_VARIABLE_RE.finditer(value)]


def _escape_template(chunk: str) -> str:
    return chunk.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


def rewrite_template(value: str, headers: str | None, context: str | None) -> str | Expr:
    """Turn placeholders in *value* into ``toTemplate`` calls.

    ``{{headers.<field>}}`` goes through the headers binding; any other
    placeholder through the context config binding. Placeholders without a
    binding to route through stay as plain text, and a string with nothing
    to rewrite is returned unchanged.
    """
    parts: list[str] = []
    last = 0
    rewritten = False
    for match in TEMPLATE_VARIABLE_RE.finditer(value):
        name = match.group("name").strip()
        if name.startswith("headers."):
            if headers is None:
                continue
            call = f"{headers}.toTemplate({json.dumps(name[len('headers.'):])})"
        elif context is not None:
            call = f"{context}.toTemplate({json.dumps(name)})"
        else:
            continue
        parts.append(_escape_template(value[last : match.start()]))
        parts.append("${" + call + "}")
        last = match.end()
        rewritten = True
    if not rewritten:
        return value
    parts.append(_escape_template(value[last:]))
    return Expr("`" + "".join(parts) + "`")


def rewrite_templates(value: Any, headers: str | None, context: str | None) -> Any:
    """Apply :func:`rewrite_template` to every string inside *value*."""
    if isinstance(value, str):
        return rewrite_template(value, headers, context)
    if isinstance(value, dict):
        return {k: rewrite_templates(v, headers, context) for k, v in value.items()}
    if isinstance(value, list):
        return [rewrite_templates(v, headers, context) for v in value]
    return value


def rewrite_credential(
    kind: EntityKind,
    props: dict[str, Any],
    resolve: Callable[[EntityRef, str], str | None],
) -> dict[str, Any]:
    """Replace the scalar credential id with an identifier-valued field.

    *resolve* maps the credential to the local identifier bound in the
    consuming file (importing it when needed); when it cannot, the field is
    left out entirely.
    """
    if kind not in CREDENTIAL_FIELDS:
        return props
    scalar, target = CREDENTIAL_FIELDS[kind]
    result = {k: v for k, v in props.items() if k != scalar}
    credential_id = props.get(scalar)
    if isinstance(credential_id, str) and credential_id:
        name = resolve(EntityRef(EntityKind.CREDENTIAL, credential_id), target)
        if name is not None:
            result[target] = Expr(name)
    return result
