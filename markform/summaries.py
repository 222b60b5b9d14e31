"""
Structure and progress summaries of a form.

Three independent axes are tracked per field: answer state
(unanswered/answered/skipped/aborted), validity (valid/invalid) and value
presence (empty/filled). The answer-state counts always sum to the
total field count.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .model import AnswerState, CheckboxState, Field, FieldKind, FieldResponse, FormSchema, ParsedForm, is_value_empty
from .validate import ValidationIssue


class FormState(str, Enum):
    INCOMPLETE = "incomplete"
    INVALID = "invalid"
    COMPLETE = "complete"


@dataclass
class StructureSummary:
    group_count: int = 0
    field_count: int = 0
    option_count: int = 0
    column_count: int = 0
    field_count_by_kind: Dict[str, int] = field(default_factory=dict)
    groups_by_id: Dict[str, Optional[str]] = field(default_factory=dict)
    fields_by_id: Dict[str, str] = field(default_factory=dict)
    options_by_id: Dict[str, str] = field(default_factory=dict)
    columns_by_id: Dict[str, str] = field(default_factory=dict)


@dataclass
class FieldProgress:
    kind: FieldKind
    required: bool
    answer_state: AnswerState
    note_count: int
    empty: bool
    valid: bool
    issue_count: int
    checkbox_progress: Optional[Dict[str, int]] = None

    @property
    def has_notes(self) -> bool:
        return self.note_count > 0


@dataclass
class ProgressCounts:
    total_fields: int = 0
    required_fields: int = 0
    unanswered_fields: int = 0
    answered_fields: int = 0
    skipped_fields: int = 0
    aborted_fields: int = 0
    valid_fields: int = 0
    invalid_fields: int = 0
    empty_fields: int = 0
    filled_fields: int = 0
    empty_required_fields: int = 0
    total_notes: int = 0


@dataclass
class ProgressSummary:
    counts: ProgressCounts
    fields: Dict[str, FieldProgress]


def compute_structure_summary(schema: FormSchema) -> StructureSummary:
    summary = StructureSummary(field_count_by_kind={kind.value: 0 for kind in FieldKind})
    for group in schema.groups:
        summary.group_count += 1
        summary.groups_by_id[group.id] = group.title
        for form_field in group.fields:
            summary.field_count += 1
            summary.field_count_by_kind[form_field.kind.value] += 1
            summary.fields_by_id[form_field.id] = form_field.kind.value
            for opt in form_field.options:
                summary.option_count += 1
                summary.options_by_id[f"{form_field.id}.{opt.id}"] = form_field.id
            for col in form_field.columns:
                summary.column_count += 1
                summary.columns_by_id[f"{form_field.id}.{col.id}"] = form_field.id
    return summary


def compute_progress_summary(form: ParsedForm, issues: List[ValidationIssue]) -> ProgressSummary:
    """
    Per-field progress plus aggregate counts.

    Args:
        form: Form to summarize
        issues: Validator output; only error-severity issues affect validity
    """
    errors_by_field: Dict[str, int] = {}
    for issue in issues:
        if issue.is_error:
            field_id = issue.ref.split(".", 1)[0]
            errors_by_field[field_id] = errors_by_field.get(field_id, 0) + 1

    counts = ProgressCounts(total_notes=len(form.notes))
    fields: Dict[str, FieldProgress] = {}
    for form_field in form.schema.iter_fields():
        response = form.response_for(form_field.id)
        progress = _field_progress(form, form_field, response, errors_by_field.get(form_field.id, 0))
        fields[form_field.id] = progress

        counts.total_fields += 1
        if progress.required:
            counts.required_fields += 1
        if response.state == AnswerState.ANSWERED:
            counts.answered_fields += 1
        elif response.state == AnswerState.SKIPPED:
            counts.skipped_fields += 1
        elif response.state == AnswerState.ABORTED:
            counts.aborted_fields += 1
        else:
            counts.unanswered_fields += 1

        if progress.valid:
            counts.valid_fields += 1
        else:
            counts.invalid_fields += 1

        if progress.empty:
            counts.empty_fields += 1
            if progress.required:
                counts.empty_required_fields += 1
        else:
            counts.filled_fields += 1

    return ProgressSummary(counts=counts, fields=fields)


def is_form_complete(progress: ProgressSummary) -> bool:
    """Aborted fields block completion outright; otherwise every field is answered or skipped and valid."""
    counts = progress.counts
    if counts.aborted_fields > 0:
        return False
    return (
        counts.answered_fields + counts.skipped_fields == counts.total_fields
        and counts.invalid_fields == 0
    )


def compute_form_state(progress: ProgressSummary) -> FormState:
    counts = progress.counts
    if counts.aborted_fields > 0 or counts.invalid_fields > 0:
        return FormState.INVALID
    all_accounted_for = counts.answered_fields + counts.skipped_fields == counts.total_fields
    if not all_accounted_for or counts.empty_required_fields > 0:
        return FormState.INCOMPLETE
    return FormState.COMPLETE


def checkbox_progress(form_field: Field, response: FieldResponse) -> Dict[str, int]:
    """Option counts per checkbox state (plus ``total``)."""
    counts = {state.value: 0 for state in CheckboxState}
    counts["total"] = len(form_field.options)
    values = response.value if response.state == AnswerState.ANSWERED else {}
    defaults = form_field.default_checkbox_values()
    for opt in form_field.options:
        counts[values.get(opt.id, defaults[opt.id]).value] += 1
    return counts


def _field_progress(form: ParsedForm, form_field: Field, response: FieldResponse, error_count: int) -> FieldProgress:
    answered = response.state == AnswerState.ANSWERED
    return FieldProgress(
        kind=form_field.kind,
        required=form_field.required,
        answer_state=response.state,
        note_count=sum(1 for note in form.notes if note.ref == form_field.id),
        empty=not answered or is_value_empty(form_field, response.value),
        valid=error_count == 0,
        issue_count=error_count,
        checkbox_progress=checkbox_progress(form_field, response) if form_field.kind == FieldKind.CHECKBOXES else None,
    )
