"""Tests for agentsync.codegen.imports: specifiers, reuse, insertion and pruning."""

from __future__ import annotations

import pytest

from agentsync.codegen.imports import ImportManager, module_specifier
from agentsync.source.document import SourceDocument

SDK = "@inkeep/agents-sdk"


def _manager(text: str, path: str = "agents/a.ts") -> ImportManager:
    return ImportManager(SourceDocument.parse(path, text))


class TestModuleSpecifier:
    @pytest.mark.parametrize(
        ("from_path", "to_path", "extension", "expected"),
        [
            ("agents/weather.ts", "agents/sub-agents/lookup.ts", "", "./sub-agents/lookup"),
            ("agents/sub-agents/triage.ts", "tools/weather-api.ts", "", "../../tools/weather-api"),
            ("index.ts", "agents/weather.ts", ".js", "./agents/weather.js"),
            ("agents/a.ts", "agents/b.ts", "", "./b"),
        ],
    )
    def test_specifiers(self, from_path: str, to_path: str, extension: str, expected: str) -> None:
        assert module_specifier(from_path, to_path, extension) == expected


class TestEnsure:
    def test_adds_statement_after_last_import(self) -> None:
        imports = _manager(f"import {{ agent }} from '{SDK}';\n\nexport const a = agent({{}});\n")
        assert imports.ensure("./x", "x") == "x"
        assert imports.doc.text == (
            f"import {{ agent }} from '{SDK}';\n"
            "import { x } from './x';\n"
            "\n"
            "export const a = agent({});\n"
        )

    def test_extends_existing_statement(self) -> None:
        imports = _manager(f"import {{ agent }} from '{SDK}';\n")
        assert imports.ensure(SDK, "subAgent") == "subAgent"
        assert imports.doc.text == f"import {{ agent, subAgent }} from '{SDK}';\n"

    def test_extends_multiline_statement(self) -> None:
        imports = _manager(f"import {{\n  agent,\n  subAgent,\n}} from '{SDK}';\n")
        imports.ensure(SDK, "Trigger")
        assert imports.doc.text == f"import {{\n  agent,\n  subAgent,\n  Trigger,\n}} from '{SDK}';\n"

    def test_reuses_alias_and_extension_variant(self) -> None:
        imports = _manager("import { lookup as lk } from './lookup.js';\n")
        assert imports.ensure("./lookup", "lookup") == "lk"
        assert not imports.doc.changed

    def test_avoids_local_collision(self) -> None:
        imports = _manager("const x = 1;\n")
        assert imports.ensure("./other", "x") == "x2"
        assert imports.doc.text == "import { x as x2 } from './other';\n\nconst x = 1;\n"

    def test_empty_document(self) -> None:
        imports = _manager("")
        imports.ensure("./x", "x")
        assert imports.doc.text == "import { x } from './x';\n"

    def test_after_file_header_comment(self) -> None:
        imports = _manager("// header\n\nconst a = 1;\n")
        imports.ensure("./x", "x")
        assert imports.doc.text == "// header\n\nimport { x } from './x';\n\nconst a = 1;\n"

    def test_uses_document_quote_style(self) -> None:
        imports = _manager('const a = "x";\n')
        imports.ensure("./y", "y")
        assert imports.doc.text.startswith("import { y } from \"./y\";\n")


class TestPrune:
    def test_removes_single_specifier(self) -> None:
        imports = _manager("import { a, b } from './m';\n\nexport const x = a;\n")
        assert imports.prune({"b"}) == ["b"]
        assert imports.doc.text == "import { a } from './m';\n\nexport const x = a;\n"

    def test_default_candidates_only_previously_used(self) -> None:
        imports = _manager("import { a, b } from './m';\n\nexport const x = a;\n")
        value = imports.doc.declarator("x").child_by_field_name("value")  # type: ignore[union-attr]
        imports.doc.replace(value.start_byte, value.end_byte, "1")
        assert imports.prune() == ["a"]
        assert imports.doc.text == "import { b } from './m';\n\nexport const x = 1;\n"

    def test_removes_whole_statement(self) -> None:
        imports = _manager("import { a } from './m';\nconst y = 1;\n")
        imports.prune({"a"})
        assert imports.doc.text == "const y = 1;\n"

    def test_default_import_beside_named(self) -> None:
        imports = _manager("import d, { n } from './m';\nuse(n);\n")
        imports.prune({"d"})
        assert imports.doc.text == "import { n } from './m';\nuse(n);\n"

    def test_used_identifiers_ignore_imports(self) -> None:
        imports = _manager("import { a } from './m';\nconst b = c;\n")
        assert imports.used_identifiers() == {"b", "c"}
