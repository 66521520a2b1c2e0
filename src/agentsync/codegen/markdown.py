"""Skill and policy documents: YAML front matter plus a markdown body."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import yaml

from agentsync.errors import ParseError

if TYPE_CHECKING:
    from agentsync.model.entities import Entity

logger = logging.getLogger(__name__)

_DELIMITER = "---"
_MANAGED_KEYS = ("name", "description", "metadata")


def split_front_matter(path: str, text: str) -> tuple[dict[str, Any], str]:
    """Split a document into its front matter mapping and body.

    A document without a leading ``---`` block has empty front matter.
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != _DELIMITER:
        return {}, text
    for idx in range(1, len(lines)):
        if lines[idx].strip() == _DELIMITER:
            raw = "".join(lines[1:idx])
            body = "".join(lines[idx + 1 :])
            break
    else:
        raise ParseError(path, "unterminated front matter block")
    try:
        data = yaml.safe_load(raw) if raw.strip() else {}
    except yaml.YAMLError as exc:
        raise ParseError(path, f"invalid front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(path, "front matter must be a mapping")
    return data, body


def render_document(front: dict[str, Any], body: str) -> str:
    dumped = yaml.dump(front, default_flow_style=False, sort_keys=False, allow_unicode=True)
    text = f"{_DELIMITER}\n{dumped}{_DELIMITER}\n"
    if body.strip():
        text += "\n" + body.strip("\n") + "\n"
    return text


def merge_document(path: str, existing: str | None, entity: Entity) -> str:
    """Return the merged text of a skill or policy document.

    Front matter keys other than ``name``, ``description`` and ``metadata``
    are preserved in place. When the existing document already matches the
    canonical entity its text is returned unchanged, byte for byte.
    """
    props = entity.props
    desired: dict[str, Any] = {
        "name": props.get("name"),
        "description": props.get("description"),
        "metadata": props.get("metadata") or None,
    }
    content = props.get("content") or ""

    if existing is None:
        front = {k: v for k, v in desired.items() if v is not None}
        return render_document(front, content)

    front, body = split_front_matter(path, existing)
    merged = dict(front)
    for key in _MANAGED_KEYS:
        value = desired[key]
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value

    if merged == front and body.strip() == content.strip():
        logger.debug("%s is up to date", path)
        return existing
    return render_document(merged, content)
