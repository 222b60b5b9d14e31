"""
Unit tests for markform/serialize.py - document rendering
"""
from pathlib import Path

import pytest

from markform import (
    AnswerState,
    FieldKind,
    FieldResponse,
    FormSchema,
    Group,
    Note,
    apply_patches,
    build_form,
    parse_form,
    serialize,
    serialize_raw_markdown,
)
from markform.model import Field, Option
from markform.serialize import has_structural_change, serialize_field, value_fence


class TestSplice:
    """Test content-preserving serialization."""

    def test_unchanged_form_is_identical(self, company_text, company_form):
        """Test a canonical document serializes byte for byte."""
        assert serialize(company_form) == company_text

    def test_only_modified_field_changes(self, company_text, company_form):
        """Test prose, heading and code block survive a value change."""
        result = apply_patches(company_form, [{"op": "set_string", "fieldId": "name", "value": "Acme"}])
        output = serialize(result.form)

        old_tag = '{% field kind="string" id="name" label="Company name" required=true %}{% /field %}'
        new_tag = (
            '{% field kind="string" id="name" label="Company name" required=true %}\n'
            "```value\nAcme\n```\n"
            "{% /field %}"
        )
        assert output == company_text.replace(old_tag, new_tag)
        assert "# Company Profile\n\nProse before the form that must survive serialization.\n" in output
        assert "echo '{% field kind=\"string\" id=\"decoy\" label=\"Decoy\" %}{% /field %}'" in output

    def test_new_note_inserted_before_form_close(self, company_form):
        result = apply_patches(company_form, [
            {"op": "add_note", "ref": "name", "role": "agent", "text": "Check the legal name"},
        ])
        output = serialize(result.form)
        assert (
            '{% note id="n1" ref="name" role="agent" %}\nCheck the legal name\n{% /note %}\n\n{% /form %}'
        ) in output

    def test_removed_note_disappears(self):
        text = (
            '{% form id="f" %}\n\n'
            '{% field kind="string" id="a" label="A" %}{% /field %}\n\n'
            '{% note id="n1" ref="a" role="user" %}\nOld note\n{% /note %}\n\n'
            '{% /form %}\n'
        )
        form = parse_form(text)
        result = apply_patches(form, [{"op": "remove_note", "noteId": "n1"}])
        output = serialize(result.form)
        assert "Old note" not in output
        assert output == (
            '{% form id="f" %}\n\n'
            '{% field kind="string" id="a" label="A" %}{% /field %}\n\n'
            '{% /form %}\n'
        )

    def test_comment_syntax_preserved(self, survey_text):
        """Test comment-style documents come back in comment style."""
        form = parse_form(survey_text)
        assert serialize(form) == survey_text

        result = apply_patches(form, [
            {"op": "set_string", "fieldId": "q1", "value": "Blue sky"},
            {"op": "set_single_select", "fieldId": "color", "value": "blue"},
        ])
        output = serialize(result.form)
        assert '<!-- f:field kind="string" id="q1" label="Question 1" -->\n```value\nBlue sky\n```\n<!-- /f:field -->' in output
        assert "- [x] Blue <!-- #blue -->" in output
        assert "{%" not in output

    def test_structural_change_detection(self, company_form):
        assert not has_structural_change(company_form)
        programmatic = build_form(company_form.schema)
        assert has_structural_change(programmatic)


class TestRoundTrip:
    """Test parse(serialize(form)) preserves state."""

    def test_every_kind_round_trips(self, kitchen_sink_form):
        result = apply_patches(kitchen_sink_form, [
            {"op": "set_string", "fieldId": "title", "value": "Launch"},
            {"op": "set_number", "fieldId": "budget", "value": 1250.5},
            {"op": "set_date", "fieldId": "due", "value": "2025-03-01"},
            {"op": "set_year", "fieldId": "founded", "value": 1999},
            {"op": "set_string_list", "fieldId": "tags", "value": ["alpha", "beta"]},
            {"op": "set_url", "fieldId": "homepage", "value": "https://example.com"},
            {"op": "set_url_list", "fieldId": "sources", "value": ["https://a.example.com", "https://b.example.com"]},
            {"op": "set_single_select", "fieldId": "tier", "value": "pro"},
            {"op": "set_multi_select", "fieldId": "platforms", "value": ["web", "ios"]},
            {"op": "set_checkboxes", "fieldId": "review", "value": {"accessible": "yes", "localized": "no"}},
            {"op": "set_table", "fieldId": "people", "value": [
                {"name": "Ada", "born": 1815},
                {"name": "Alan", "born": "|SKIP| (unknown)"},
            ]},
        ])
        assert not result.rejections

        text = serialize(result.form)
        reparsed = parse_form(text)
        assert reparsed.responses_by_field_id == result.form.responses_by_field_id
        assert serialize(reparsed) == text

    def test_skip_and_abort_round_trip(self, company_form):
        result = apply_patches(company_form, [
            {"op": "skip_field", "fieldId": "website", "role": "agent", "reason": "No site yet"},
            {"op": "abort_field", "fieldId": "products", "role": "agent"},
        ])
        text = serialize(result.form)
        assert (
            '{% field kind="url" id="website" label="Website" state="skipped" %}\n'
            "```value\n|SKIP| (No site yet)\n```\n"
            "{% /field %}"
        ) in text
        assert '{% field kind="string_list" id="products" label="Products" minItems=1 state="aborted" %}{% /field %}' in text

        reparsed = parse_form(text)
        assert reparsed.response_for("website") == FieldResponse(AnswerState.SKIPPED, reason="No site yet")
        assert reparsed.response_for("products").state == AnswerState.ABORTED

    def test_whole_number_renders_without_decimal(self, company_form):
        result = apply_patches(company_form, [{"op": "set_number", "fieldId": "employees", "value": 42.0}])
        assert "```value\n42\n```" in serialize(result.form)


class TestRegenerate:
    """Test full regeneration for programmatic forms."""

    @pytest.fixture
    def programmatic_form(self):
        schema = FormSchema(id="p", title="Programmatic", groups=[
            Group(id="g", title="G", fields=[
                Field(id="a", kind=FieldKind.STRING, label="A", required=True),
                Field(id="b", kind=FieldKind.SINGLE_SELECT, label="B", options=[
                    Option(id="x", label="X"), Option(id="y", label="Y"),
                ]),
            ]),
        ])
        return build_form(
            schema,
            responses={"a": FieldResponse.answered("hello"), "b": FieldResponse.answered("y")},
            notes=[Note(id="n1", ref="a", role="user", text="Looks right")],
        )

    def test_regenerated_layout(self, programmatic_form):
        assert serialize(programmatic_form) == (
            '{% form id="p" title="Programmatic" %}\n\n'
            '{% group id="g" title="G" %}\n\n'
            '{% field kind="string" id="a" label="A" required=true %}\n```value\nhello\n```\n{% /field %}\n\n'
            '{% field kind="single_select" id="b" label="B" %}\n- [ ] X {% #x %}\n- [x] Y {% #y %}\n{% /field %}\n\n'
            '{% /group %}\n\n'
            '{% note id="n1" ref="a" role="user" %}\nLooks right\n{% /note %}\n\n'
            '{% /form %}\n'
        )

    def test_regenerated_form_parses_back(self, programmatic_form):
        reparsed = parse_form(serialize(programmatic_form))
        assert reparsed.responses_by_field_id == programmatic_form.responses_by_field_id
        assert reparsed.notes == programmatic_form.notes


class TestFieldRendering:
    """Test individual rendering helpers."""

    def test_value_fence_grows_past_backticks(self):
        assert value_fence("use ```code``` here") == "````value\nuse ```code``` here\n````"

    def test_empty_field(self):
        form_field = Field(id="a", kind=FieldKind.STRING, label="A")
        assert serialize_field(form_field, FieldResponse()) == '{% field kind="string" id="a" label="A" %}{% /field %}'

    def test_raw_markdown_export(self, filled_company_form):
        output = serialize_raw_markdown(filled_company_form)
        assert output.startswith("# Company Profile\n\n## Basics\n\n**Company name**\n\nAcme\n")
        assert "**Size**\n\nSmall\n" in output
        assert "- Rockets\n- Anvils" in output
        assert "{%" not in output


FORMS_DIR = Path(__file__).resolve().parent.parent / "fixtures" / "forms"


class TestIdempotence:
    """Test serialize(parse(serialize(form))) == serialize(form)."""

    @pytest.mark.parametrize("path", sorted(FORMS_DIR.glob("*.form.md")), ids=lambda p: p.name)
    def test_sample_documents(self, path):
        once = serialize(parse_form(path.read_text(encoding="utf-8")))
        assert serialize(parse_form(once)) == once

    def test_after_patches(self, filled_company_form):
        result = apply_patches(filled_company_form, [
            {"op": "skip_field", "fieldId": "website", "role": "agent", "reason": "None yet"},
            {"op": "add_note", "ref": "products", "role": "agent", "text": "From the catalog"},
        ])
        once = serialize(result.form)
        assert serialize(parse_form(once)) == once

    def test_regenerated_form(self, kitchen_sink_form):
        once = serialize(build_form(kitchen_sink_form.schema))
        assert serialize(parse_form(once)) == once


class TestNoteOrdering:
    """Test notes are written in numeric id order."""

    @pytest.fixture
    def out_of_order_notes(self):
        return [
            Note(id="n10", ref="name", role="agent", text="Tenth"),
            Note(id="n2", ref="name", role="user", text="Second"),
        ]

    def test_regenerated_output(self, company_form, out_of_order_notes):
        output = serialize(build_form(company_form.schema, notes=out_of_order_notes))
        assert output.index('id="n2"') < output.index('id="n10"')

    def test_spliced_new_notes(self, company_form, out_of_order_notes):
        form = company_form.with_state(dict(company_form.responses_by_field_id), out_of_order_notes)
        output = serialize(form)
        assert not has_structural_change(form)
        assert output.index('id="n2"') < output.index('id="n10"')
        assert output.index('id="n10"') < output.index("{% /form %}")
