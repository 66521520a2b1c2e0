"""Tests for agentsync.codegen.property_writer: in-place object literal patches."""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentsync.codegen.property_writer import (
    PropertyWriter,
    element_key,
    getter_array,
    is_manual_value,
)
from agentsync.codegen.values import Expr, RefItem, RefList
from agentsync.source.document import SourceDocument

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

MULTILINE = (
    "export const a = agent({\n"
    "  id: 'a',\n"
    "  name: 'Old', // renamed upstream\n"
    "  custom: 42,\n"
    "});\n"
)


def _locate(doc: SourceDocument) -> TSNode | None:
    return doc.config_object("a")


def _writer(text: str) -> PropertyWriter:
    return PropertyWriter(SourceDocument.parse("agents/a.ts", text))


def _refs(*names: str) -> RefList:
    return RefList(tuple(RefItem(n, n) for n in names))


def _value(text: str) -> TSNode:
    doc = SourceDocument.parse("sample.ts", f"const sample = {text};\n")
    declarator = doc.declarator("sample")
    assert declarator is not None
    value = declarator.child_by_field_name("value")
    assert value is not None
    return value


class TestHelpers:
    def test_element_keys(self) -> None:
        array = _value("[a, b.with({ x: 1 }), s.config, 'lit', { id: 'obj' }, f()]")
        keys = [element_key(e) for e in array.named_children]
        assert keys == ["a", "b", "s", "lit", "obj", None]

    def test_getter_array(self) -> None:
        assert getter_array(_value("() => [a]")) is not None
        assert getter_array(_value("[a]")) is not None
        assert getter_array(_value("(x) => [a]")) is None
        assert getter_array(_value("() => build()")) is None

    def test_manual_values(self) -> None:
        assert is_manual_value(_value("SHARED_PROMPT"), False)
        assert not is_manual_value(_value("helper"), False, identifiers=True)
        assert is_manual_value(_value("build({ a: 1 })"), False)
        assert not is_manual_value(_value("z.object({ a: z2.string() }).strict()"), False)
        assert not is_manual_value(_value("{ n: 1, s: ['x'] }"), False)
        assert is_manual_value(_value("{ n: limit }"), False)


class TestScalarFields:
    def test_replace_keeps_trailing_comment(self) -> None:
        writer = _writer(MULTILINE)
        report = writer.patch(_locate, [("id", "a"), ("name", "New")])
        assert report.changed == ["name"]
        assert "  name: 'New', // renamed upstream\n" in writer.doc.text
        assert "  custom: 42,\n" in writer.doc.text

    def test_equal_value_is_untouched(self) -> None:
        writer = _writer(MULTILINE)
        report = writer.patch(_locate, [("id", "a"), ("name", "Old")])
        assert not report.touched
        assert not writer.doc.changed

    def test_equal_value_other_quotes(self) -> None:
        writer = _writer('export const a = agent({ id: "a" });\n')
        report = writer.patch(_locate, [("id", "a")])
        assert not report.touched

    def test_append_after_custom_key(self) -> None:
        writer = _writer(MULTILINE)
        report = writer.patch(_locate, [("id", "a"), ("name", "Old"), ("prompt", "Hi")])
        assert report.added == ["prompt"]
        assert writer.doc.text.endswith("  custom: 42,\n  prompt: 'Hi',\n});\n")

    def test_append_single_line(self) -> None:
        writer = _writer("export const a = agent({ id: 'a' });\n")
        writer.patch(_locate, [("id", "a"), ("name", "A")])
        assert writer.doc.text == "export const a = agent({ id: 'a', name: 'A' });\n"

    def test_append_to_empty_object(self) -> None:
        writer = _writer("export const a = agent({});\n")
        writer.patch(_locate, [("id", "a")])
        assert writer.doc.text == "export const a = agent({\n  id: 'a',\n});\n"

    def test_remove_takes_trailing_comment(self) -> None:
        writer = _writer(MULTILINE)
        report = writer.patch(_locate, [("id", "a")], remove=["name"])
        assert report.removed == ["name"]
        assert writer.doc.text == "export const a = agent({\n  id: 'a',\n  custom: 42,\n});\n"

    def test_none_value_removes(self) -> None:
        writer = _writer("export const a = agent({ id: 'a', prompt: 'x' });\n")
        report = writer.patch(_locate, [("id", "a"), ("prompt", None)])
        assert report.removed == ["prompt"]
        assert writer.doc.text == "export const a = agent({ id: 'a' });\n"

    def test_shorthand_is_hand_owned(self) -> None:
        writer = _writer("export const a = agent({ id: 'a', name });\n")
        report = writer.patch(_locate, [("id", "a"), ("name", "N")])
        assert report.manual == ["name"]
        assert not writer.doc.changed

    def test_shorthand_reference_expanded(self) -> None:
        writer = _writer("export const a = agent({ id: 'a', contextConfig });\n")
        report = writer.patch(
            _locate,
            [("id", "a"), ("contextConfig", Expr("ctx"))],
            identifier_keys=frozenset({"contextConfig"}),
        )
        assert report.changed == ["contextConfig"]
        assert writer.doc.text == "export const a = agent({ id: 'a', contextConfig: ctx });\n"

    def test_code_value_compared_by_layout(self) -> None:
        writer = _writer("export const a = agent({ id: 'a', defaultSubAgent: helper });\n")
        report = writer.patch(
            _locate,
            [("id", "a"), ("defaultSubAgent", Expr("helper"))],
            identifier_keys=frozenset({"defaultSubAgent"}),
        )
        assert not report.touched


class TestHandOwnedValues:
    def test_constant_kept(self) -> None:
        text = (
            "const FC_PROMPT = 'Forecast.';\n"
            "export const a = agent({\n"
            "  id: 'a',\n"
            "  prompt: FC_PROMPT,\n"
            "});\n"
        )
        writer = _writer(text)
        report = writer.patch(_locate, [("id", "a"), ("prompt", "Forecast!")])
        assert report.manual == ["prompt"]
        assert writer.doc.text == text

    def test_constant_not_removed(self) -> None:
        text = "export const a = agent({ id: 'a', prompt: FC_PROMPT });\n"
        writer = _writer(text)
        report = writer.patch(_locate, [("id", "a"), ("prompt", None)])
        assert report.manual == ["prompt"]
        assert not report.removed
        assert writer.doc.text == text

    def test_function_call_kept(self) -> None:
        text = "export const a = agent({ id: 'a', models: pickModels('fast') });\n"
        writer = _writer(text)
        report = writer.patch(_locate, [("id", "a"), ("models", {"base": {"model": "x"}})])
        assert report.manual == ["models"]
        assert writer.doc.text == text

    def test_hand_written_template_kept(self) -> None:
        text = "export const a = agent({ id: 'a', prompt: `Hi ${user}` });\n"
        writer = _writer(text)
        report = writer.patch(_locate, [("id", "a"), ("prompt", "Hi")])
        assert report.manual == ["prompt"]
        assert not writer.doc.changed

    def test_generated_template_replaced(self) -> None:
        writer = _writer(
            'export const a = agent({ id: \'a\', prompt: `Hi ${h.toTemplate("user")}` });\n'
        )
        report = writer.patch(_locate, [("id", "a"), ("prompt", "Hi")])
        assert report.changed == ["prompt"]
        assert writer.doc.text == "export const a = agent({ id: 'a', prompt: 'Hi' });\n"

    def test_generated_schema_removed(self) -> None:
        writer = _writer(
            "export const a = dataComponent({ id: 'a', props: z.object({ n: z.number() }) });\n"
        )
        report = writer.patch(_locate, [("id", "a"), ("props", None)])
        assert report.removed == ["props"]
        assert writer.doc.text == "export const a = dataComponent({ id: 'a' });\n"

    def test_identifier_replaced_under_reference_key(self) -> None:
        writer = _writer("export const a = agent({ id: 'a', contextConfig: oldCtx });\n")
        report = writer.patch(
            _locate,
            [("id", "a"), ("contextConfig", Expr("ctx"))],
            identifier_keys=frozenset({"contextConfig"}),
        )
        assert report.changed == ["contextConfig"]
        assert "contextConfig: ctx" in writer.doc.text

    def test_nested_identifiers_follow_parent_key(self) -> None:
        writer = _writer(
            "export const a = contextConfig({ id: 'a', contextVariables: { user: old } });\n"
        )
        report = writer.patch(
            _locate,
            [("id", "a"), ("contextVariables", {"user": Expr("userInfo")})],
            identifier_keys=frozenset({"contextVariables"}),
        )
        assert report.changed == ["contextVariables.user"]
        assert "contextVariables: { user: userInfo }" in writer.doc.text


class TestNestedObjects:
    def test_nested_patch(self) -> None:
        writer = _writer(
            "export const a = agent({\n"
            "  models: {\n"
            "    base: { model: 'x' },\n"
            "    extra: 1,\n"
            "  },\n"
            "});\n"
        )
        report = writer.patch(_locate, [("models", {"base": {"model": "y"}})])
        assert report.changed == ["models.base.model"]
        assert report.removed == ["models.extra"]
        assert writer.doc.text == (
            "export const a = agent({\n"
            "  models: {\n"
            "    base: { model: 'y' },\n"
            "  },\n"
            "});\n"
        )


class TestReferenceLists:
    def test_existing_order_preserved(self) -> None:
        writer = _writer("export const a = agent({\n  subAgents: () => [c, a2, b],\n});\n")
        report = writer.patch(
            _locate, [("subAgents", _refs("b", "c", "d"))], reference_keys=frozenset({"subAgents"})
        )
        assert report.changed == ["subAgents"]
        assert "  subAgents: () => [c, b, d],\n" in writer.doc.text

    def test_same_members_different_order_untouched(self) -> None:
        writer = _writer("export const a = agent({\n  subAgents: () => [c, a2, b],\n});\n")
        report = writer.patch(
            _locate, [("subAgents", _refs("a2", "b", "c"))], reference_keys=frozenset({"subAgents"})
        )
        assert not report.touched
        assert not writer.doc.changed

    def test_with_options_updated_in_place(self) -> None:
        writer = _writer("export const a = agent({\n  canUse: () => [t, u],\n});\n")
        desired = RefList((RefItem("t", "t.with({ selectedTools: ['x'] })"), RefItem("u", "u")))
        writer.patch(_locate, [("canUse", desired)], reference_keys=frozenset({"canUse"}))
        assert "  canUse: () => [t.with({ selectedTools: ['x'] }), u],\n" in writer.doc.text

    def test_computed_list_is_hand_owned(self) -> None:
        writer = _writer("export const a = agent({\n  subAgents: () => buildList(),\n});\n")
        report = writer.patch(
            _locate, [("subAgents", _refs("b"))], reference_keys=frozenset({"subAgents"})
        )
        assert report.manual == ["subAgents"]
        assert not writer.doc.changed

    def test_hand_owned_list_not_removed(self) -> None:
        writer = _writer("export const a = agent({\n  canUse: () => tools.filter(ok),\n});\n")
        report = writer.patch(
            _locate, [("canUse", None)], reference_keys=frozenset({"canUse"})
        )
        assert report.manual == ["canUse"]
        assert not writer.doc.changed
