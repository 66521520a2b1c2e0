"""Shared test fixtures for agentsync."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import pytest

from agentsync.source.languages import clear_cache

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_lang_cache() -> None:
    """Clear language cache before each test to avoid cross-test pollution."""
    clear_cache()


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Drop handlers and levels the CLI installs on the package logger."""
    yield
    package_logger = logging.getLogger("agentsync")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture()
def write_tree(tmp_path: Path):
    """Write ``{relative path: text}`` under ``tmp_path`` and return the root."""

    def _write(files: dict[str, str]) -> Path:
        for rel, text in files.items():
            target = tmp_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        return tmp_path

    return _write


@pytest.fixture()
def weather_project() -> dict[str, Any]:
    """One agent with one sub-agent and nothing else."""
    return {
        "name": "Weather",
        "agents": {
            "weather": {
                "id": "weather",
                "name": "Weather",
                "defaultSubAgentId": "forecaster",
                "subAgents": {
                    "forecaster": {
                        "id": "forecaster",
                        "name": "Forecaster",
                        "prompt": "Forecast.",
                    },
                },
            },
        },
    }


@pytest.fixture()
def support_project() -> dict[str, Any]:
    """A project exercising tools, credentials, context configs and components."""
    return {
        "id": "support",
        "name": "Support",
        "credentialReferences": {
            "api-key": {
                "id": "api-key",
                "name": "API key",
                "type": "memory",
                "credentialStoreId": "memory-default",
                "retrievalParams": {"key": "API_KEY"},
            },
        },
        "tools": {
            "weather-api": {
                "id": "weather-api",
                "name": "Weather API",
                "credentialReferenceId": "api-key",
                "config": {
                    "type": "mcp",
                    "mcp": {"server": {"url": "https://weather.example.com/mcp"}},
                },
            },
        },
        "dataComponents": {
            "forecast-card": {
                "id": "forecast-card",
                "name": "Forecast card",
                "description": "Shows a forecast",
                "props": {
                    "type": "object",
                    "properties": {"city": {"type": "string"}},
                    "required": ["city"],
                },
            },
        },
        "agents": {
            "helpdesk": {
                "id": "helpdesk",
                "name": "Helpdesk",
                "prompt": "Greet {{headers.user_id}} at {{time}}.",
                "defaultSubAgentId": "triage",
                "subAgents": {
                    "triage": {
                        "id": "triage",
                        "name": "Triage",
                        "prompt": "Route the request.",
                        "canUse": [{"toolId": "weather-api"}],
                        "canDelegateTo": ["lookup"],
                        "dataComponents": ["forecast-card"],
                    },
                    "lookup": {
                        "id": "lookup",
                        "name": "Lookup",
                        "prompt": "Look things up.",
                    },
                },
                "contextConfig": {
                    "id": "helpdesk-context",
                    "headersSchema": {
                        "type": "object",
                        "properties": {"user_id": {"type": "string"}},
                        "required": ["user_id"],
                    },
                    "contextVariables": {
                        "user": {
                            "id": "user-info",
                            "name": "User info",
                            "trigger": "initialization",
                            "fetchConfig": {
                                "url": "https://api.example.com/users/{{headers.user_id}}",
                                "method": "GET",
                            },
                            "responseSchema": {
                                "type": "object",
                                "properties": {"name": {"type": "string"}},
                            },
                            "credentialReferenceId": "api-key",
                        },
                    },
                },
            },
        },
    }
