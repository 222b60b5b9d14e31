"""
Unit tests for markform/coercion.py - input context coercion
"""
import pytest

from markform import apply_patches, coerce_input_context, coerce_to_field_patch


class TestCoerceToFieldPatch:
    """Test raw value -> typed patch conversion per kind."""

    def test_string_passthrough(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "title", "Launch")
        assert result.ok
        assert result.patch.op == "set_string"
        assert result.patch.value == "Launch"
        assert result.warning is None

    @pytest.mark.parametrize("raw,expected", [(42, "42"), (True, "true"), (1.5, "1.5")])
    def test_scalar_to_string_warns(self, kitchen_sink_form, raw, expected):
        result = coerce_to_field_patch(kitchen_sink_form, "title", raw)
        assert result.patch.value == expected
        assert "to string" in result.warning

    def test_numeric_string_to_number(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "budget", "12.5")
        assert result.patch.value == 12.5
        assert result.warning is not None

    def test_non_numeric_string_fails(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "budget", "lots")
        assert not result.ok
        assert "non-numeric" in result.error

    def test_year_from_whole_float(self, kitchen_sink_form):
        assert coerce_to_field_patch(kitchen_sink_form, "founded", 1999.0).patch.value == 1999
        assert not coerce_to_field_patch(kitchen_sink_form, "founded", 1999.5).ok

    def test_single_string_to_list(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "tags", "solo")
        assert result.patch.value == ["solo"]
        assert "array" in result.warning

    def test_list_items_stringified(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "tags", ["a", 2, False])
        assert result.patch.value == ["a", "2", "false"]
        assert result.warning is not None

    def test_url_list_rejects_non_strings(self, kitchen_sink_form):
        assert not coerce_to_field_patch(kitchen_sink_form, "sources", ["https://a.example.com", 3]).ok

    def test_single_select_checks_options(self, kitchen_sink_form):
        assert coerce_to_field_patch(kitchen_sink_form, "tier", "pro").ok
        result = coerce_to_field_patch(kitchen_sink_form, "tier", "gold")
        assert "Invalid option 'gold'" in result.error
        assert "free, pro" in result.error

    def test_checkbox_list_uses_positive_state(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "review", ["accessible"])
        assert result.patch.value == {"accessible": "yes"}

    def test_checkbox_booleans(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "review", {"accessible": True, "localized": False})
        assert result.patch.value == {"accessible": "yes", "localized": "no"}
        assert "boolean" in result.warning

    def test_checkbox_state_not_in_mode(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "review", {"accessible": "done"})
        assert not result.ok
        assert "explicit mode" in result.error

    def test_table_requires_rows(self, kitchen_sink_form):
        assert not coerce_to_field_patch(kitchen_sink_form, "people", {"name": "Ada"}).ok
        assert coerce_to_field_patch(kitchen_sink_form, "people", [{"name": "Ada"}]).ok

    def test_unknown_field(self, kitchen_sink_form):
        result = coerce_to_field_patch(kitchen_sink_form, "ghost", "x")
        assert result.error == "Field 'ghost' not found"


class TestCoerceInputContext:
    """Test whole-context coercion."""

    def test_collects_patches_warnings_and_errors(self, kitchen_sink_form):
        result = coerce_input_context(kitchen_sink_form, {
            "title": "Launch",
            "budget": "100",
            "tier": "gold",
            "homepage": None,
        })
        assert [p.field_id for p in result.patches] == ["title", "budget"]
        assert len(result.warnings) == 1
        assert len(result.errors) == 1

    def test_patches_apply_cleanly(self, kitchen_sink_form):
        result = coerce_input_context(kitchen_sink_form, {
            "title": "Launch",
            "founded": "1999",
            "platforms": "web",
            "review": ["accessible", "localized"],
        })
        applied = apply_patches(kitchen_sink_form, result.patches)
        assert applied.rejections == []
        assert applied.form.response_for("founded").value == 1999
        assert applied.form.response_for("platforms").value == ["web"]
