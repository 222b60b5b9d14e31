"""
Form validator.

Pure function over a ParsedForm: built-in per-kind value checks for
answered fields, re-affirmed structural rules, and optional code
validators looked up in a ValidatorRegistry.

Usage:
    registry = ValidatorRegistry()

    @registry.register("sum_to_100")
    def sum_to_100(ctx):
        ...
        return []

    issues = validate(form, registry)
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from config.logging_config import get_logger

from .model import (
    CHOOSER_KINDS,
    MODE_STATES,
    AnswerState,
    ApprovalMode,
    CheckboxMode,
    CheckboxState,
    Field,
    FieldKind,
    Group,
    ParsedForm,
)
from .values import cell_matches_type, is_integer, is_number, is_valid_url, parse_iso_date, text_parses_as

logger = get_logger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueSource(str, Enum):
    BUILTIN = "builtin"
    STRUCTURE = "structure"
    CODE = "code"


# Codes describing incompleteness rather than a bad value; never patch rejections
COMPLETENESS_CODES = frozenset({"checkbox_incomplete", "min_done_not_met"})


@dataclass
class ValidationIssue:
    """One problem found by the validator."""
    severity: Severity
    code: str
    message: str
    ref: str
    source: IssueSource = IssueSource.BUILTIN
    validator_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


@dataclass
class ValidatorContext:
    """Input handed to a code validator."""
    form: ParsedForm
    target_id: str
    target: Union[Field, Group]
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def values(self) -> Dict[str, Any]:
        """Answered values keyed by field id."""
        return {
            field_id: response.value
            for field_id, response in self.form.responses_by_field_id.items()
            if response.state == AnswerState.ANSWERED
        }


Validator = Callable[[ValidatorContext], List[ValidationIssue]]


class ValidatorRegistry:
    """Named code validators referenced by ``validate=[...]`` attributes."""

    def __init__(self, validators: Optional[Dict[str, Validator]] = None):
        self._validators: Dict[str, Validator] = dict(validators or {})

    def register(self, name: str, func: Optional[Validator] = None):
        """Register ``func`` under ``name``; usable as a decorator."""
        if func is not None:
            self._validators[name] = func
            return func

        def decorator(fn: Validator) -> Validator:
            self._validators[name] = fn
            return fn
        return decorator

    def get(self, name: str) -> Optional[Validator]:
        return self._validators.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._validators

    def __len__(self) -> int:
        return len(self._validators)


def validate(
    form: ParsedForm,
    registry: Optional[ValidatorRegistry] = None,
    skip_code_validators: bool = False,
) -> List[ValidationIssue]:
    """
    Validate every field and group of a form.

    Args:
        form: Form to check (not mutated)
        registry: Code validators; missing names produce warnings
        skip_code_validators: Only run built-in checks

    Returns:
        Issues in document order (errors and warnings)
    """
    registry = registry or ValidatorRegistry()
    issues: List[ValidationIssue] = []

    for group in form.schema.groups:
        for form_field in group.fields:
            response = form.response_for(form_field.id)
            issues.extend(check_field_structure(form_field, response.state))
            if response.state == AnswerState.ANSWERED:
                issues.extend(validate_field_value(form_field, response.value))
            if not skip_code_validators:
                issues.extend(_run_code_validators(form, form_field, registry))
        if not skip_code_validators:
            issues.extend(_run_code_validators(form, group, registry))

    errors = sum(1 for issue in issues if issue.is_error)
    logger.debug(f"Validated form '{form.schema.id}': {errors} errors, {len(issues) - errors} warnings")
    return issues


def validate_field_value(form_field: Field, value: Any) -> List[ValidationIssue]:
    """Built-in value checks for an answered field of any kind."""
    return VALUE_VALIDATORS[form_field.kind](form_field, value)


def constraint_issues(form_field: Field, value: Any) -> List[ValidationIssue]:
    """Error issues that make a value unacceptable (completeness excluded)."""
    return [
        issue for issue in validate_field_value(form_field, value)
        if issue.is_error and issue.code not in COMPLETENESS_CODES
    ]


def check_field_structure(form_field: Field, state: AnswerState) -> List[ValidationIssue]:
    """Attribute-placement rules also enforced by the parser."""
    issues = []
    if form_field.approval_mode != ApprovalMode.NONE and form_field.kind != FieldKind.CHECKBOXES:
        issues.append(_structure_issue(
            form_field, "approval_mode_not_allowed",
            f"approvalMode is only allowed on checkboxes fields ('{form_field.id}' is {form_field.kind.value})",
        ))
    if state == AnswerState.SKIPPED and form_field.required:
        issues.append(_structure_issue(
            form_field, "required_skipped",
            f"Required field '{form_field.id}' cannot be skipped",
        ))
    if form_field.kind in CHOOSER_KINDS and (form_field.placeholder is not None or form_field.examples):
        issues.append(_structure_issue(
            form_field, "placeholder_not_allowed",
            f"placeholder/examples are not allowed on {form_field.kind.value} field '{form_field.id}'",
        ))
    elif form_field.kind not in CHOOSER_KINDS:
        for example in form_field.examples:
            if not text_parses_as(form_field.kind, example):
                issues.append(_structure_issue(
                    form_field, "invalid_example",
                    f"Example '{example}' is not a valid {form_field.kind.value} value for '{form_field.id}'",
                ))
        if form_field.placeholder is not None and not text_parses_as(form_field.kind, form_field.placeholder):
            issues.append(_structure_issue(
                form_field, "invalid_placeholder",
                f"Placeholder '{form_field.placeholder}' is not a valid {form_field.kind.value} value",
                severity=Severity.WARNING,
            ))
    return issues


# ---------------------------------------------------------------------------
# Checkbox completion
# ---------------------------------------------------------------------------

def checkbox_counts(form_field: Field, values: Dict[str, CheckboxState]) -> Dict[str, int]:
    """Per-state option counts with unset options at the mode default."""
    default = _default_state(form_field)
    counts = {state.value: 0 for state in MODE_STATES[form_field.checkbox_mode]}
    for opt in form_field.options:
        state = values.get(opt.id, default)
        counts[state.value] = counts.get(state.value, 0) + 1
    return counts


def is_checkbox_complete(form_field: Field, values: Optional[Dict[str, CheckboxState]]) -> bool:
    """
    Completion rule used by approval checkpoints.

    multi: all options done or na (or at least ``minDone`` done when set);
    simple: all options done; explicit: no option left unfilled.
    """
    values = values or {}
    default = _default_state(form_field)
    states = [values.get(opt.id, default) for opt in form_field.options]
    mode = form_field.checkbox_mode
    if mode == CheckboxMode.MULTI:
        if form_field.min_done is not None:
            return sum(1 for s in states if s == CheckboxState.DONE) >= form_field.min_done
        return all(s in (CheckboxState.DONE, CheckboxState.NA) for s in states)
    if mode == CheckboxMode.SIMPLE:
        return all(s == CheckboxState.DONE for s in states)
    return all(s != CheckboxState.UNFILLED for s in states)


def _default_state(form_field: Field) -> CheckboxState:
    if form_field.checkbox_mode == CheckboxMode.EXPLICIT:
        return CheckboxState.UNFILLED
    return CheckboxState.TODO


# ---------------------------------------------------------------------------
# Per-kind value validators
# ---------------------------------------------------------------------------

def _validate_string(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not isinstance(value, str):
        return [_type_issue(form_field, "a string")]
    issues = _length_issues(form_field, value, form_field.min_length, form_field.max_length)
    if form_field.pattern:
        try:
            matched = re.search(form_field.pattern, value) is not None
        except re.error:
            issues.append(_issue(
                form_field, "invalid_pattern",
                f"Invalid pattern '{form_field.pattern}' for field '{form_field.id}'",
            ))
        else:
            if not matched:
                issues.append(_issue(
                    form_field, "pattern_mismatch",
                    f"'{form_field.label}' does not match required pattern",
                ))
    return issues


def _validate_number(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not is_number(value):
        return [_type_issue(form_field, "a number")]
    issues = []
    if form_field.integer and not is_integer(value):
        issues.append(_issue(form_field, "not_integer", f"'{form_field.label}' must be an integer"))
    issues.extend(_range_issues(form_field, value, value))
    return issues


def _validate_date(form_field: Field, value: Any) -> List[ValidationIssue]:
    parsed = parse_iso_date(value)
    if parsed is None:
        return [_issue(
            form_field, "invalid_date",
            f"'{form_field.label}' must be a valid date in YYYY-MM-DD format (got '{value}')",
        )]
    low = parse_iso_date(form_field.min_value)
    high = parse_iso_date(form_field.max_value)
    issues = []
    if low is not None and parsed < low:
        issues.append(_issue(form_field, "below_min", f"'{form_field.label}' must be on or after {form_field.min_value}"))
    if high is not None and parsed > high:
        issues.append(_issue(form_field, "above_max", f"'{form_field.label}' must be on or before {form_field.max_value}"))
    return issues


def _validate_year(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not is_integer(value):
        return [_type_issue(form_field, "a whole year")]
    return _range_issues(form_field, value, int(value))


def _validate_url(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not is_valid_url(value):
        return [_issue(form_field, "invalid_url", f"'{form_field.label}' must be a valid URL (got '{value}')")]
    return []


def _validate_list(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return [_type_issue(form_field, "a list of strings")]
    issues = _count_issues(form_field, len(value), form_field.min_items, form_field.max_items, "items")
    for idx, item in enumerate(value, start=1):
        if form_field.kind == FieldKind.URL_LIST and not is_valid_url(item):
            issues.append(_issue(form_field, "invalid_url", f"Item {idx} in '{form_field.label}' is not a valid URL"))
        if form_field.item_min_length is not None and len(item) < form_field.item_min_length:
            issues.append(_issue(
                form_field, "item_too_short",
                f"Item {idx} in '{form_field.label}' must be at least {form_field.item_min_length} characters",
            ))
        if form_field.item_max_length is not None and len(item) > form_field.item_max_length:
            issues.append(_issue(
                form_field, "item_too_long",
                f"Item {idx} in '{form_field.label}' must be at most {form_field.item_max_length} characters",
            ))
    if form_field.unique_items:
        issues.extend(
            _issue(form_field, "duplicate_item", f"Duplicate item '{item}' in '{form_field.label}'")
            for item in _duplicates(value)
        )
    return issues


def _validate_single_select(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not isinstance(value, str) or value not in form_field.option_ids():
        return [_option_issue(form_field, value)]
    return []


def _validate_multi_select(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not isinstance(value, list):
        return [_type_issue(form_field, "a list of option ids")]
    valid = set(form_field.option_ids())
    issues = [_option_issue(form_field, item) for item in value if item not in valid]
    issues.extend(
        _issue(form_field, "duplicate_item", f"Option '{item}' selected twice in '{form_field.label}'")
        for item in _duplicates(value)
    )
    issues.extend(_count_issues(
        form_field, len(value), form_field.min_selections, form_field.max_selections, "selections",
    ))
    return issues


def _validate_checkboxes(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not isinstance(value, dict):
        return [_type_issue(form_field, "a mapping of option ids to checkbox states")]
    valid = set(form_field.option_ids())
    allowed = MODE_STATES[form_field.checkbox_mode]
    issues = []
    for opt_id, state in value.items():
        if opt_id not in valid:
            issues.append(_option_issue(form_field, opt_id))
        elif state not in allowed:
            issues.append(_issue(
                form_field, "invalid_checkbox_state",
                f"State '{getattr(state, 'value', state)}' is not valid for option '{opt_id}' "
                f"in {form_field.checkbox_mode.value} mode (allowed: {', '.join(sorted(s.value for s in allowed))})",
                ref=f"{form_field.id}.{opt_id}",
            ))
    if issues:
        return issues

    default = _default_state(form_field)
    states = [value.get(opt.id, default) for opt in form_field.options]
    mode = form_field.checkbox_mode

    if form_field.required:
        if mode == CheckboxMode.EXPLICIT:
            unfilled = sum(1 for s in states if s == CheckboxState.UNFILLED)
            if unfilled:
                issues.append(_issue(
                    form_field, "checkbox_incomplete",
                    f"All items in '{form_field.label}' must be answered ({unfilled} unfilled)",
                ))
        elif mode == CheckboxMode.MULTI:
            in_progress = sum(1 for s in states if s in (CheckboxState.INCOMPLETE, CheckboxState.ACTIVE))
            done = sum(1 for s in states if s in (CheckboxState.DONE, CheckboxState.NA))
            if in_progress or done == 0:
                issues.append(_issue(
                    form_field, "checkbox_incomplete", f"All items in '{form_field.label}' must be completed",
                ))
        else:
            remaining = sum(1 for s in states if s != CheckboxState.DONE)
            if remaining:
                issues.append(_issue(
                    form_field, "checkbox_incomplete",
                    f"All items in '{form_field.label}' must be checked ({remaining} unchecked)",
                ))

    if form_field.min_done is not None:
        done_only = sum(1 for s in states if s == CheckboxState.DONE)
        if done_only < form_field.min_done:
            issues.append(_issue(
                form_field, "min_done_not_met",
                f"'{form_field.label}' requires at least {form_field.min_done} items done (got {done_only})",
            ))
    return issues


def _validate_table(form_field: Field, value: Any) -> List[ValidationIssue]:
    if not isinstance(value, list) or not all(isinstance(row, dict) for row in value):
        return [_type_issue(form_field, "a list of row mappings")]
    issues = _count_issues(form_field, len(value), form_field.min_rows, form_field.max_rows, "rows")
    columns = {col.id: col for col in form_field.columns}
    for number, row in enumerate(value, start=1):
        for col_id in row:
            if col_id not in columns:
                issues.append(_issue(
                    form_field, "unknown_column",
                    f"Unknown column '{col_id}' in row {number} of '{form_field.label}' "
                    f"(columns: {', '.join(columns)})",
                ))
        for col in form_field.columns:
            cell = row.get(col.id)
            if cell is None or cell.state != AnswerState.ANSWERED:
                continue
            ref = f"{form_field.id}.{col.id}"
            if cell.value is None:
                if col.required:
                    issues.append(_issue(
                        form_field, "required_cell_missing",
                        f"Row {number} of '{form_field.label}' is missing required column '{col.label}'",
                        ref=ref,
                    ))
            elif not cell_matches_type(cell.value, col.type):
                issues.append(_issue(
                    form_field, "invalid_cell",
                    f"Row {number} column '{col.label}' of '{form_field.label}' must be a {col.type.value} "
                    f"(got '{cell.value}')",
                    ref=ref,
                ))
    return issues


VALUE_VALIDATORS: Dict[FieldKind, Callable[[Field, Any], List[ValidationIssue]]] = {
    FieldKind.STRING: _validate_string,
    FieldKind.NUMBER: _validate_number,
    FieldKind.DATE: _validate_date,
    FieldKind.YEAR: _validate_year,
    FieldKind.STRING_LIST: _validate_list,
    FieldKind.URL: _validate_url,
    FieldKind.URL_LIST: _validate_list,
    FieldKind.SINGLE_SELECT: _validate_single_select,
    FieldKind.MULTI_SELECT: _validate_multi_select,
    FieldKind.CHECKBOXES: _validate_checkboxes,
    FieldKind.TABLE: _validate_table,
}


# ---------------------------------------------------------------------------
# Code validators
# ---------------------------------------------------------------------------

def _run_code_validators(
    form: ParsedForm,
    target: Union[Field, Group],
    registry: ValidatorRegistry,
) -> List[ValidationIssue]:
    issues = []
    what = "field" if isinstance(target, Field) else "group"
    for name in target.validators:
        validator = registry.get(name)
        if validator is None:
            issues.append(ValidationIssue(
                severity=Severity.WARNING,
                code="validator_not_found",
                message=f"Validator '{name}' not found for {what} '{target.id}'",
                ref=target.id,
                source=IssueSource.CODE,
                validator_id=name,
            ))
            continue

        ctx = ValidatorContext(form=form, target_id=target.id, target=target)
        try:
            found = validator(ctx) or []
        except Exception as e:
            logger.warning(f"Validator '{name}' raised on {what} '{target.id}': {e}")
            issues.append(ValidationIssue(
                severity=Severity.ERROR,
                code="validator_error",
                message=f"Validator '{name}' threw an error: {e}",
                ref=target.id,
                source=IssueSource.CODE,
                validator_id=name,
            ))
            continue

        for issue in found:
            issue.source = IssueSource.CODE
            issue.validator_id = issue.validator_id or name
            issues.append(issue)
    return issues


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _issue(form_field: Field, code: str, message: str, ref: Optional[str] = None,
           severity: Severity = Severity.ERROR) -> ValidationIssue:
    return ValidationIssue(severity=severity, code=code, message=message, ref=ref or form_field.id)


def _structure_issue(form_field: Field, code: str, message: str,
                     severity: Severity = Severity.ERROR) -> ValidationIssue:
    return ValidationIssue(
        severity=severity, code=code, message=message, ref=form_field.id, source=IssueSource.STRUCTURE,
    )


def _type_issue(form_field: Field, expected: str) -> ValidationIssue:
    return _issue(form_field, "invalid_type", f"'{form_field.label}' must be {expected}")


def _option_issue(form_field: Field, option_id: Any) -> ValidationIssue:
    return _issue(
        form_field, "invalid_option",
        f"Invalid option '{option_id}' for field '{form_field.id}' "
        f"(valid: {', '.join(form_field.option_ids())})",
    )


def _length_issues(form_field: Field, value: str, low: Optional[int], high: Optional[int]) -> List[ValidationIssue]:
    issues = []
    if low is not None and len(value) < low:
        issues.append(_issue(
            form_field, "min_length",
            f"'{form_field.label}' must be at least {low} characters (got {len(value)})",
        ))
    if high is not None and len(value) > high:
        issues.append(_issue(
            form_field, "max_length",
            f"'{form_field.label}' must be at most {high} characters (got {len(value)})",
        ))
    return issues


def _range_issues(form_field: Field, shown: Any, value: Any) -> List[ValidationIssue]:
    issues = []
    if form_field.min_value is not None and value < form_field.min_value:
        issues.append(_issue(form_field, "below_min", f"'{form_field.label}' must be at least {form_field.min_value} (got {shown})"))
    if form_field.max_value is not None and value > form_field.max_value:
        issues.append(_issue(form_field, "above_max", f"'{form_field.label}' must be at most {form_field.max_value} (got {shown})"))
    return issues


def _count_issues(form_field: Field, count: int, low: Optional[int], high: Optional[int],
                  noun: str) -> List[ValidationIssue]:
    issues = []
    if low is not None and count < low:
        issues.append(_issue(
            form_field, "min_items_not_met",
            f"'{form_field.label}' must have at least {low} {noun} (got {count})",
        ))
    if high is not None and count > high:
        issues.append(_issue(
            form_field, "max_items_exceeded",
            f"'{form_field.label}' must have at most {high} {noun} (got {count})",
        ))
    return issues


def _duplicates(items: Iterable[Any]) -> List[Any]:
    seen, dupes = set(), []
    for item in items:
        if item in seen and item not in dupes:
            dupes.append(item)
        seen.add(item)
    return dupes
