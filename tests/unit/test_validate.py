"""
Unit tests for markform/validate.py - built-in and code validators
"""
import pytest

from markform import (
    FieldKind,
    FieldResponse,
    FormSchema,
    Group,
    ValidationIssue,
    ValidatorRegistry,
    build_form,
    validate,
)
from markform.model import CellResponse, CheckboxMode, CheckboxState, ColumnType, Field, Option, TableColumn
from markform.validate import (
    IssueSource,
    Severity,
    constraint_issues,
    is_checkbox_complete,
    validate_field_value,
)


def codes(issues):
    return [issue.code for issue in issues]


def checkbox_field(mode=CheckboxMode.MULTI, required=False, min_done=None):
    return Field(
        id="c", kind=FieldKind.CHECKBOXES, label="Checks", required=required,
        checkbox_mode=mode, min_done=min_done,
        options=[Option(id="a", label="A"), Option(id="b", label="B")],
    )


class TestScalarValidators:
    """Test per-kind value checks."""

    def test_string_length_and_pattern(self):
        form_field = Field(id="s", kind=FieldKind.STRING, label="S", min_length=3, max_length=5, pattern=r"^[a-z]+$")
        assert validate_field_value(form_field, "abcd") == []
        assert codes(validate_field_value(form_field, "ab")) == ["min_length"]
        assert codes(validate_field_value(form_field, "abcdef")) == ["max_length"]
        assert codes(validate_field_value(form_field, "AbC")) == ["pattern_mismatch"]

    def test_invalid_pattern_reported(self):
        form_field = Field(id="s", kind=FieldKind.STRING, label="S", pattern="([")
        assert codes(validate_field_value(form_field, "x")) == ["invalid_pattern"]

    def test_number_range_and_integer(self):
        form_field = Field(id="n", kind=FieldKind.NUMBER, label="N", min_value=1, max_value=10, integer=True)
        assert validate_field_value(form_field, 5.0) == []
        assert codes(validate_field_value(form_field, 0)) == ["below_min"]
        assert codes(validate_field_value(form_field, 11)) == ["above_max"]
        assert codes(validate_field_value(form_field, 2.5)) == ["not_integer"]
        assert codes(validate_field_value(form_field, True)) == ["invalid_type"]

    def test_date(self):
        form_field = Field(id="d", kind=FieldKind.DATE, label="D", min_value="2024-01-01", max_value="2024-12-31")
        assert validate_field_value(form_field, "2024-06-30") == []
        assert codes(validate_field_value(form_field, "2024-02-30")) == ["invalid_date"]
        assert codes(validate_field_value(form_field, "30/06/2024")) == ["invalid_date"]
        assert codes(validate_field_value(form_field, "2023-12-31")) == ["below_min"]
        assert codes(validate_field_value(form_field, "2025-01-01")) == ["above_max"]

    def test_year(self):
        form_field = Field(id="y", kind=FieldKind.YEAR, label="Y", min_value=1900, max_value=2030)
        assert validate_field_value(form_field, 1999) == []
        assert codes(validate_field_value(form_field, 1850)) == ["below_min"]
        assert codes(validate_field_value(form_field, 1999.5)) == ["invalid_type"]

    @pytest.mark.parametrize("url,valid", [
        ("https://example.com/path?q=1", True),
        ("http://localhost:8000", True),
        ("not a url", False),
        ("example.com", False),
    ])
    def test_url(self, url, valid):
        form_field = Field(id="u", kind=FieldKind.URL, label="U")
        assert (validate_field_value(form_field, url) == []) is valid

    def test_string_list(self):
        form_field = Field(
            id="l", kind=FieldKind.STRING_LIST, label="L",
            min_items=2, max_items=3, item_min_length=2, unique_items=True,
        )
        assert validate_field_value(form_field, ["ab", "cd"]) == []
        assert codes(validate_field_value(form_field, ["ab"])) == ["min_items_not_met"]
        assert codes(validate_field_value(form_field, ["ab", "cd", "ef", "gh"])) == ["max_items_exceeded"]
        assert codes(validate_field_value(form_field, ["ab", "c"])) == ["item_too_short"]
        assert codes(validate_field_value(form_field, ["ab", "ab"])) == ["duplicate_item"]

    def test_url_list_items(self):
        form_field = Field(id="ul", kind=FieldKind.URL_LIST, label="UL")
        issues = validate_field_value(form_field, ["https://ok.example.com", "nope"])
        assert codes(issues) == ["invalid_url"]
        assert "Item 2" in issues[0].message


class TestChooserValidators:
    """Test select and checkbox checks."""

    def test_single_select_unknown_option(self):
        form_field = Field(id="s", kind=FieldKind.SINGLE_SELECT, label="S", options=[Option(id="a", label="A")])
        assert validate_field_value(form_field, "a") == []
        assert codes(validate_field_value(form_field, "z")) == ["invalid_option"]

    def test_multi_select_counts(self):
        form_field = Field(
            id="m", kind=FieldKind.MULTI_SELECT, label="M", min_selections=1, max_selections=2,
            options=[Option(id=i, label=i.upper()) for i in ("a", "b", "c")],
        )
        assert validate_field_value(form_field, ["a"]) == []
        assert codes(validate_field_value(form_field, ["a", "b", "c"])) == ["max_items_exceeded"]
        assert codes(validate_field_value(form_field, ["a", "a"])) == ["duplicate_item"]

    def test_checkbox_state_not_allowed_in_mode(self):
        issues = validate_field_value(checkbox_field(CheckboxMode.SIMPLE), {"a": CheckboxState.NA})
        assert codes(issues) == ["invalid_checkbox_state"]
        assert issues[0].ref == "c.a"

    def test_required_multi_in_progress(self):
        form_field = checkbox_field(required=True)
        values = {"a": CheckboxState.DONE, "b": CheckboxState.ACTIVE}
        assert codes(validate_field_value(form_field, values)) == ["checkbox_incomplete"]
        assert validate_field_value(form_field, {"a": CheckboxState.DONE, "b": CheckboxState.NA}) == []

    def test_required_simple_needs_all_checked(self):
        form_field = checkbox_field(CheckboxMode.SIMPLE, required=True)
        issues = validate_field_value(form_field, {"a": CheckboxState.DONE})
        assert codes(issues) == ["checkbox_incomplete"]
        assert "1 unchecked" in issues[0].message

    def test_explicit_needs_every_answer(self):
        form_field = checkbox_field(CheckboxMode.EXPLICIT, required=True)
        assert codes(validate_field_value(form_field, {"a": CheckboxState.YES})) == ["checkbox_incomplete"]
        assert validate_field_value(form_field, {"a": CheckboxState.YES, "b": CheckboxState.NO}) == []

    def test_min_done(self):
        form_field = checkbox_field(min_done=2)
        assert codes(validate_field_value(form_field, {"a": CheckboxState.DONE})) == ["min_done_not_met"]

    def test_completeness_codes_are_not_constraints(self):
        """Test incompleteness never blocks a patch."""
        form_field = checkbox_field(CheckboxMode.SIMPLE, required=True)
        assert constraint_issues(form_field, {"a": CheckboxState.DONE}) == []

    @pytest.mark.parametrize("mode,values,complete", [
        (CheckboxMode.MULTI, {"a": CheckboxState.DONE, "b": CheckboxState.NA}, True),
        (CheckboxMode.MULTI, {"a": CheckboxState.DONE}, False),
        (CheckboxMode.SIMPLE, {"a": CheckboxState.DONE, "b": CheckboxState.DONE}, True),
        (CheckboxMode.EXPLICIT, {"a": CheckboxState.NO, "b": CheckboxState.NO}, True),
        (CheckboxMode.EXPLICIT, {"a": CheckboxState.YES}, False),
    ])
    def test_is_checkbox_complete(self, mode, values, complete):
        assert is_checkbox_complete(checkbox_field(mode), values) is complete


class TestTableValidator:
    """Test table rows and cells."""

    @pytest.fixture
    def table_field(self):
        return Field(
            id="t", kind=FieldKind.TABLE, label="T", min_rows=1,
            columns=[
                TableColumn(id="name", label="Name", required=True),
                TableColumn(id="age", label="Age", type=ColumnType.NUMBER),
            ],
        )

    def test_valid_rows(self, table_field):
        rows = [{"name": CellResponse(value="Ada"), "age": CellResponse(value=36)}]
        assert validate_field_value(table_field, rows) == []

    def test_cell_problems(self, table_field):
        rows = [{"name": CellResponse(value=None), "age": CellResponse(value="old")}]
        issues = validate_field_value(table_field, rows)
        assert codes(issues) == ["required_cell_missing", "invalid_cell"]
        assert [issue.ref for issue in issues] == ["t.name", "t.age"]

    def test_min_rows(self, table_field):
        assert codes(validate_field_value(table_field, [])) == ["min_items_not_met"]


class TestValidateForm:
    """Test whole-form validation and code validators."""

    @pytest.fixture
    def form(self):
        schema = FormSchema(id="f", groups=[
            Group(id="g", validators=["group_check"], fields=[
                Field(id="a", kind=FieldKind.NUMBER, label="A", validators=["even"]),
                Field(id="b", kind=FieldKind.STRING, label="B", min_length=2),
            ]),
        ])
        return build_form(schema, responses={
            "a": FieldResponse.answered(3),
            "b": FieldResponse.answered("x"),
        })

    def test_unanswered_fields_have_no_value_issues(self):
        schema = FormSchema(id="f", groups=[Group(id="g", fields=[
            Field(id="a", kind=FieldKind.STRING, label="A", required=True, min_length=5),
        ])])
        assert validate(build_form(schema)) == []

    def test_missing_validators_warn(self, form):
        issues = validate(form)
        warnings = [issue for issue in issues if issue.severity == Severity.WARNING]
        assert codes(warnings) == ["validator_not_found", "validator_not_found"]
        assert codes([issue for issue in issues if issue.is_error]) == ["min_length"]

    def test_code_validators_run(self, form):
        registry = ValidatorRegistry()

        @registry.register("even")
        def even(ctx):
            value = ctx.values.get(ctx.target_id)
            if value is not None and value % 2:
                return [ValidationIssue(Severity.ERROR, "not_even", "must be even", ctx.target_id)]
            return []

        registry.register("group_check", lambda ctx: [])
        issues = validate(form, registry)
        not_even = [issue for issue in issues if issue.code == "not_even"]
        assert len(not_even) == 1
        assert not_even[0].source == IssueSource.CODE
        assert not_even[0].validator_id == "even"

    def test_validator_exception_becomes_issue(self, form):
        def broken(ctx):
            raise RuntimeError("boom")

        registry = ValidatorRegistry({"even": broken, "group_check": lambda ctx: []})
        issues = validate(form, registry)
        errors = [issue for issue in issues if issue.code == "validator_error"]
        assert len(errors) == 1
        assert "boom" in errors[0].message

    def test_skip_code_validators(self, form):
        assert "validator_not_found" not in codes(validate(form, skip_code_validators=True))
