"""Error taxonomy for synchronization runs.

Only :class:`FatalSyncError` and :class:`GraphValidationError` abort a run.
Every other error is scoped to one file or one entity and ends up in the
run result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class SyncError(Exception):
    """Base class for all synchronizer errors."""


class FatalSyncError(SyncError):
    """The target directory cannot be created, read or written."""


class GraphValidationError(SyncError):
    """The canonical graph is structurally invalid."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid project graph:\n" + "\n".join(f"  - {p}" for p in self.problems))


class ParseError(SyncError):
    """A target file is not syntactically valid and was left untouched."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"{path}: {detail}")


class SchemaValidationError(SyncError):
    """A canonical entity lacks fields required to generate it."""

    def __init__(self, kind: str, entity_id: str, missing: Sequence[str]) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.missing = list(missing)
        super().__init__(
            f"Validation failed for {kind} '{entity_id}': missing {', '.join(self.missing)}"
        )


class UnresolvedReferenceError(SyncError):
    """A reference points at an id that is absent from the canonical graph."""

    def __init__(self, owner: str, field: str, target: str) -> None:
        self.owner = owner
        self.field = field
        self.target = target
        super().__init__(f"{owner}: {field} references unknown {target}")


class AmbiguousIdError(SyncError):
    """Two declarations in the target directory claim the same (kind, id)."""

    def __init__(self, kind: str, entity_id: str, locations: Sequence[str]) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.locations = list(locations)
        super().__init__(
            f"{kind} '{entity_id}' is declared more than once: {', '.join(self.locations)}"
        )
