"""Tests for agentsync.model.entities: loading the canonical project graph."""

from __future__ import annotations

from typing import Any

import pytest

from agentsync.errors import GraphValidationError
from agentsync.model.entities import (
    Entity,
    EntityKind,
    EntityRef,
    ProjectGraph,
    collect_header_placeholders,
    load_project,
)


def _targets(entity: Entity, field_name: str) -> list[EntityRef]:
    return [r.target for r in entity.references_for(field_name)]


class TestProjectGraph:
    def test_add_and_lookup(self) -> None:
        graph = ProjectGraph()
        entity = graph.add(Entity(EntityKind.TOOL, "search", {"name": "Search"}))
        assert graph.get(EntityRef(EntityKind.TOOL, "search")) is entity
        assert EntityRef(EntityKind.TOOL, "search") in graph
        assert graph.ids(EntityKind.TOOL) == {"search"}
        assert len(graph) == 1

    def test_same_id_in_other_kind_is_separate(self) -> None:
        graph = ProjectGraph()
        graph.add(Entity(EntityKind.TOOL, "x", {}))
        graph.add(Entity(EntityKind.DATA_COMPONENT, "x", {}))
        assert len(graph) == 2
        assert graph.problems == []

    def test_conflicting_duplicate_is_a_problem(self) -> None:
        graph = ProjectGraph()
        graph.add(Entity(EntityKind.TOOL, "x", {"name": "A"}))
        graph.add(Entity(EntityKind.TOOL, "x", {"name": "B"}))
        assert len(graph.problems) == 1
        assert "defined twice" in graph.problems[0]

    def test_ref_str(self) -> None:
        assert str(EntityRef(EntityKind.SUB_AGENT, "triage")) == "subAgent 'triage'"


class TestLoadProject:
    def test_weather_project(self, weather_project: dict[str, Any]) -> None:
        graph = load_project(weather_project)
        assert graph.ids(EntityKind.AGENT) == {"weather"}
        assert graph.ids(EntityKind.SUB_AGENT) == {"forecaster"}
        # no project id, no project entity
        assert graph.ids(EntityKind.PROJECT) == set()

        agent = graph.get(EntityRef(EntityKind.AGENT, "weather"))
        assert agent is not None
        assert _targets(agent, "defaultSubAgent") == [EntityRef(EntityKind.SUB_AGENT, "forecaster")]
        assert _targets(agent, "subAgents") == [EntityRef(EntityKind.SUB_AGENT, "forecaster")]

        sub = graph.get(EntityRef(EntityKind.SUB_AGENT, "forecaster"))
        assert sub is not None
        assert sub.parent == agent.ref
        assert "id" not in sub.props

    def test_support_project_entities(self, support_project: dict[str, Any]) -> None:
        graph = load_project(support_project)
        assert graph.ids(EntityKind.PROJECT) == {"support"}
        assert graph.ids(EntityKind.CREDENTIAL) == {"api-key"}
        assert graph.ids(EntityKind.TOOL) == {"weather-api"}
        assert graph.ids(EntityKind.CONTEXT_CONFIG) == {"helpdesk-context"}
        assert graph.ids(EntityKind.HEADERS_SCHEMA) == {"helpdesk-context"}
        assert graph.ids(EntityKind.FETCH_DEFINITION) == {"user-info"}

    def test_tool_server_url_from_mcp_config(self, support_project: dict[str, Any]) -> None:
        graph = load_project(support_project)
        tool = graph.get(EntityRef(EntityKind.TOOL, "weather-api"))
        assert tool is not None
        assert tool.props["serverUrl"] == "https://weather.example.com/mcp"
        assert "config" not in tool.props
        assert _targets(tool, "credential") == [EntityRef(EntityKind.CREDENTIAL, "api-key")]

    def test_sub_agent_references(self, support_project: dict[str, Any]) -> None:
        graph = load_project(support_project)
        triage = graph.get(EntityRef(EntityKind.SUB_AGENT, "triage"))
        assert triage is not None
        assert _targets(triage, "canUse") == [EntityRef(EntityKind.TOOL, "weather-api")]
        assert _targets(triage, "canDelegateTo") == [EntityRef(EntityKind.SUB_AGENT, "lookup")]
        assert _targets(triage, "dataComponents") == [
            EntityRef(EntityKind.DATA_COMPONENT, "forecast-card")
        ]

    def test_delegation_to_agent_when_no_sub_agent(self) -> None:
        data = {
            "agents": {
                "a": {"name": "A", "subAgents": {"s": {"canDelegateTo": ["b"]}}},
                "b": {"name": "B"},
            }
        }
        graph = load_project(data)
        sub = graph.get(EntityRef(EntityKind.SUB_AGENT, "s"))
        assert sub is not None
        assert _targets(sub, "canDelegateTo") == [EntityRef(EntityKind.AGENT, "b")]

    def test_can_use_options(self) -> None:
        data = {
            "tools": {"t": {"name": "T", "serverUrl": "https://t"}},
            "agents": {
                "a": {
                    "name": "A",
                    "subAgents": {
                        "s": {
                            "canUse": [
                                {"toolId": "t", "toolSelection": ["search"], "headers": {"x": "1"}}
                            ]
                        }
                    },
                }
            },
        }
        graph = load_project(data)
        sub = graph.get(EntityRef(EntityKind.SUB_AGENT, "s"))
        assert sub is not None
        (ref,) = sub.references_for("canUse")
        assert ref.options == {"selectedTools": ["search"], "headers": {"x": "1"}}

    def test_context_config_links(self, support_project: dict[str, Any]) -> None:
        graph = load_project(support_project)
        cc = graph.get(EntityRef(EntityKind.CONTEXT_CONFIG, "helpdesk-context"))
        assert cc is not None
        assert _targets(cc, "headers") == [EntityRef(EntityKind.HEADERS_SCHEMA, "helpdesk-context")]
        (variable,) = cc.references_for("contextVariables")
        assert variable.target == EntityRef(EntityKind.FETCH_DEFINITION, "user-info")
        assert variable.options == {"key": "user"}

        fetch = graph.get(EntityRef(EntityKind.FETCH_DEFINITION, "user-info"))
        assert fetch is not None
        assert fetch.parent == cc.ref
        assert _targets(fetch, "credentialReference") == [
            EntityRef(EntityKind.CREDENTIAL, "api-key")
        ]

    def test_headers_schema_inferred_from_placeholders(self) -> None:
        data = {
            "agents": {
                "a": {
                    "name": "A",
                    "contextConfig": {
                        "id": "ctx",
                        "contextVariables": {
                            "v": {
                                "fetchConfig": {"url": "https://x/{{headers.tenant}}"},
                            }
                        },
                    },
                }
            }
        }
        graph = load_project(data)
        headers = graph.get(EntityRef(EntityKind.HEADERS_SCHEMA, "ctx"))
        assert headers is not None
        assert headers.props["schema"]["required"] == ["tenant"]

    def test_status_components_keyed_by_type(self) -> None:
        data = {
            "statusComponents": {"summary": {"type": "tool_summary", "description": "Sum"}},
            "agents": {
                "a": {
                    "name": "A",
                    "statusUpdates": {"numEvents": 3, "statusComponents": [{"type": "summary"}]},
                }
            },
        }
        graph = load_project(data)
        assert graph.ids(EntityKind.STATUS_COMPONENT) == {"tool_summary"}
        agent = graph.get(EntityRef(EntityKind.AGENT, "a"))
        assert agent is not None
        assert _targets(agent, "statusUpdates.statusComponents") == [
            EntityRef(EntityKind.STATUS_COMPONENT, "tool_summary")
        ]

    def test_function_tools_counted_as_unsupported(self) -> None:
        data = {"tools": {"f": {"name": "F", "config": {"type": "function"}}}}
        graph = load_project(data)
        assert graph.ids(EntityKind.TOOL) == set()
        assert graph.unsupported == {"functionTools": 1}

    def test_timestamps_dropped(self) -> None:
        data = {"tools": {"t": {"name": "T", "serverUrl": "u", "createdAt": "2024", "updatedAt": "x"}}}
        graph = load_project(data)
        tool = graph.get(EntityRef(EntityKind.TOOL, "t"))
        assert tool is not None
        assert tool.props == {"name": "T", "serverUrl": "u"}


class TestLoadProjectErrors:
    def test_non_mapping(self) -> None:
        with pytest.raises(GraphValidationError):
            load_project(["not", "a", "project"])  # type: ignore[arg-type]

    def test_section_must_be_object(self) -> None:
        with pytest.raises(GraphValidationError) as info:
            load_project({"tools": ["a"]})
        assert "project.tools must be an object" in info.value.problems

    def test_agent_and_sub_agent_share_id(self) -> None:
        data = {"agents": {"x": {"name": "X", "subAgents": {"x": {"name": "inner"}}}}}
        with pytest.raises(GraphValidationError) as info:
            load_project(data)
        assert any("both an agent and a sub-agent" in p for p in info.value.problems)


class TestHeaderPlaceholders:
    def test_nested_values(self) -> None:
        value = {"url": "https://x/{{headers.a}}", "body": ["{{ headers.b }}", "{{other}}"]}
        assert collect_header_placeholders(value) == {"a", "b"}
