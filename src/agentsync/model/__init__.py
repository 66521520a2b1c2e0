"""Canonical project graph: entities, references and target layout."""

from agentsync.model.entities import (
    Entity,
    EntityKind,
    EntityRef,
    ProjectGraph,
    Reference,
    load_project,
)
from agentsync.model.graph_builder import KIND_SPECS, KindSpec, ResolvedGraph, build_graph

__all__ = [
    "KIND_SPECS",
    "Entity",
    "EntityKind",
    "EntityRef",
    "KindSpec",
    "ProjectGraph",
    "Reference",
    "ResolvedGraph",
    "build_graph",
    "load_project",
]
