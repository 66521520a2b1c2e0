"""Tests for agentsync.source.indexer: declarations, imports and bindings."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from agentsync.model.entities import EntityKind, EntityRef
from agentsync.model.graph_builder import factory_kinds
from agentsync.source.document import SourceDocument
from agentsync.source.indexer import (
    ImportBinding,
    extract_imports,
    index_directory,
    iter_source_files,
    resolve_specifier,
    scan_declarations,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

FACTORIES = factory_kinds()


class TestExtractImports:
    def test_import_forms(self) -> None:
        doc = SourceDocument.parse(
            "a.ts",
            "import { agent, subAgent as sa } from '@inkeep/agents-sdk';\n"
            "import lib from './lib';\n"
            "import * as ns from '../ns';\n"
            "import type { Shape } from './types';\n"
            "import { type Other, value } from './mixed';\n",
        )
        assert extract_imports(doc) == [
            ImportBinding("agent", "agent", "@inkeep/agents-sdk"),
            ImportBinding("sa", "subAgent", "@inkeep/agents-sdk"),
            ImportBinding("lib", "default", "./lib"),
            ImportBinding("ns", "*", "../ns"),
            ImportBinding("Shape", "Shape", "./types", type_only=True),
            ImportBinding("Other", "Other", "./mixed", type_only=True),
            ImportBinding("value", "value", "./mixed"),
        ]


class TestResolveSpecifier:
    KNOWN = ["agents/weather.ts", "tools/index.ts", "lib/util.ts"]

    @pytest.mark.parametrize(
        ("from_path", "specifier", "expected"),
        [
            ("agents/sub-agents/x.ts", "../weather", "agents/weather.ts"),
            ("index.ts", "./tools", "tools/index.ts"),
            ("agents/weather.ts", "../lib/util.js", "lib/util.ts"),
            ("agents/weather.ts", "./missing", None),
            ("agents/weather.ts", "@inkeep/agents-sdk", None),
        ],
    )
    def test_resolution(self, from_path: str, specifier: str, expected: str | None) -> None:
        assert resolve_specifier(from_path, specifier, self.KNOWN) == expected


class TestScanDeclarations:
    def test_factories_recognized(self) -> None:
        doc = SourceDocument.parse(
            "agents/a.ts",
            "import { agent, subAgent, Trigger } from '@inkeep/agents-sdk';\n"
            "\n"
            "\n"
            "// the helper\n"
            "const helper = subAgent({ id: 'helper', name: 'Helper' });\n"
            "export const hook = new Trigger({ id: 'hook', name: 'Hook' });\n"
            "export const main = agent({ id: 'main', subAgents: () => [helper] });\n"
            "const other = somethingElse({ id: 'x' });\n",
        )
        decls = scan_declarations(doc, FACTORIES)
        assert [(d.kind, d.entity_id, d.name, d.exported) for d in decls] == [
            (EntityKind.SUB_AGENT, "helper", "helper", False),
            (EntityKind.TRIGGER, "hook", "hook", True),
            (EntityKind.AGENT, "main", "main", True),
        ]
        helper = decls[0]
        assert helper.leading_comments == ["// the helper"]
        assert helper.blank_lines_before == 2
        assert helper.location == "agents/a.ts:5"

    def test_computed_id_is_manual(self) -> None:
        doc = SourceDocument.parse(
            "tools/t.ts",
            "export const t = mcpTool({ id: `tool-${env}`, name: 'T', serverUrl: 'u' });\n",
        )
        (decl,) = scan_declarations(doc, FACTORIES)
        assert decl.manual
        assert decl.entity_id is None

    def test_status_component_keyed_by_type(self) -> None:
        doc = SourceDocument.parse(
            "status-components/s.ts",
            "export const s = statusComponent({ type: 'tool_summary' });\n",
        )
        (decl,) = scan_declarations(doc, FACTORIES)
        assert decl.entity_id == "tool_summary"

    def test_headers_have_no_id_yet(self) -> None:
        doc = SourceDocument.parse(
            "context-configs/c.ts",
            "const h = headers({ schema: z.object({}) });\n",
        )
        (decl,) = scan_declarations(doc, FACTORIES)
        assert decl.kind is EntityKind.HEADERS_SCHEMA
        assert decl.entity_id is None
        assert not decl.manual


class TestIndexDirectory:
    def test_bindings(self, write_tree: Callable[[dict[str, str]], Path]) -> None:
        root = write_tree(
            {
                "agents/weather.ts": "export const weather = agent({ id: 'weather', name: 'W' });\n",
                "tools/t.ts": "export const t = mcpTool({ id: 't', name: 'T', serverUrl: 'u' });\n",
                "README.md": "# readme\n",
            }
        )
        index = index_directory(root, FACTORIES)
        assert sorted(index.files) == ["agents/weather.ts", "tools/t.ts"]
        decl = index.bindings.lookup(EntityRef(EntityKind.AGENT, "weather"))
        assert decl is not None
        assert decl.file_path == "agents/weather.ts"
        assert [d.name for d in index.files["tools/t.ts"].declarations] == ["t"]
        assert len(index.bindings) == 2

    def test_ambiguous_ids(self, write_tree: Callable[[dict[str, str]], Path]) -> None:
        root = write_tree(
            {
                "a.ts": "export const one = agent({ id: 'dup', name: 'A' });\n",
                "b.ts": "export const two = agent({ id: 'dup', name: 'B' });\n",
            }
        )
        index = index_directory(root, FACTORIES)
        ref = EntityRef(EntityKind.AGENT, "dup")
        assert index.bindings.lookup(ref) is None
        error = index.bindings.ambiguity(ref)
        assert error is not None
        assert "a.ts:1" in str(error)
        assert "b.ts:1" in str(error)
        assert {d.name for d in index.bindings.ambiguous[ref]} == {"one", "two"}

    def test_same_id_different_kind_not_ambiguous(
        self, write_tree: Callable[[dict[str, str]], Path]
    ) -> None:
        root = write_tree(
            {
                "a.ts": (
                    "export const x = agent({ id: 'x', name: 'A' });\n"
                    "export const xTool = mcpTool({ id: 'x', name: 'T', serverUrl: 'u' });\n"
                ),
            }
        )
        index = index_directory(root, FACTORIES)
        assert index.bindings.ambiguous == {}
        assert len(index.bindings) == 2

    def test_parse_errors_recorded(self, write_tree: Callable[[dict[str, str]], Path]) -> None:
        root = write_tree(
            {
                "good.ts": "export const g = agent({ id: 'g', name: 'G' });\n",
                "bad.ts": "export const b = agent({ id: 'b',\n",
            }
        )
        index = index_directory(root, FACTORIES)
        assert list(index.errors) == ["bad.ts"]
        assert "bad.ts" not in index.files
        assert index.bindings.lookup(EntityRef(EntityKind.AGENT, "g")) is not None

    def test_manual_declarations(self, write_tree: Callable[[dict[str, str]], Path]) -> None:
        root = write_tree({"a.ts": "export const dyn = agent({ id: makeId(), name: 'D' });\n"})
        index = index_directory(root, FACTORIES)
        assert [d.name for d in index.bindings.manual] == ["dyn"]
        assert index.bindings.manual[0].file_path == "a.ts"

    def test_headers_bound_through_import(
        self, write_tree: Callable[[dict[str, str]], Path]
    ) -> None:
        root = write_tree(
            {
                "context-configs/h.ts": "export const sharedHeaders = headers({ schema: z.object({}) });\n",
                "context-configs/ctx.ts": (
                    "import { sharedHeaders as hdrs } from './h';\n"
                    "export const ctx = contextConfig({ id: 'ctx', headers: hdrs });\n"
                ),
            }
        )
        index = index_directory(root, FACTORIES)
        decl = index.bindings.lookup(EntityRef(EntityKind.HEADERS_SCHEMA, "ctx"))
        assert decl is not None
        assert decl.name == "sharedHeaders"
        assert decl.file_path == "context-configs/h.ts"

    def test_headers_bound_in_same_file(self, write_tree: Callable[[dict[str, str]], Path]) -> None:
        root = write_tree(
            {
                "ctx.ts": (
                    "const h = headers({ schema: z.object({}) });\n"
                    "export const ctx = contextConfig({ id: 'ctx', headers: h });\n"
                ),
            }
        )
        index = index_directory(root, FACTORIES)
        decl = index.bindings.lookup(EntityRef(EntityKind.HEADERS_SCHEMA, "ctx"))
        assert decl is not None
        assert decl.name == "h"

    def test_missing_root(self, tmp_path: Path) -> None:
        index = index_directory(tmp_path / "nowhere", FACTORIES)
        assert index.files == {}


class TestIterSourceFiles:
    def test_excludes(self, write_tree: Callable[[dict[str, str]], Path]) -> None:
        root = write_tree(
            {
                "a.ts": "",
                "types.d.ts": "",
                "node_modules/pkg/index.ts": "",
                ".agentsync/cache.ts": "",
                "sub/b.tsx": "",
            }
        )
        found = [p.relative_to(root).as_posix() for p in iter_source_files(root, ["node_modules"])]
        assert found == ["a.ts", "sub/b.tsx"]
