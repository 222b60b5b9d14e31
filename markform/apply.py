"""
Patch engine.

Applies a batch of patches, in order, to a copy of a form. Each patch is
normalized (with a coercion warning where the input shape was bent),
checked against the target field's kind and constraints, and then
applied or rejected on its own; a rejection never rolls back earlier
patches of the same batch.

Usage:
    result = apply_patches(form, [
        {"op": "set_string", "fieldId": "company_name", "value": "Acme"},
        {"op": "skip_field", "fieldId": "notes", "role": "agent"},
    ])
    result.status        # ApplyStatus.APPLIED
    result.form          # new ParsedForm; the input form is untouched
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from config.logging_config import get_logger

from .model import (
    MODE_NEGATIVE_STATE,
    MODE_POSITIVE_STATE,
    AnswerState,
    CellResponse,
    CheckboxState,
    Field,
    FieldKind,
    FieldResponse,
    Note,
    ParsedForm,
    is_value_empty,
)
from .patches import (
    SET_OPS,
    AbortFieldPatch,
    AddNotePatch,
    ClearFieldPatch,
    PatchModel,
    RemoveNotePatch,
    SkipFieldPatch,
    parse_patch,
    patch_field_id,
    set_op_for_kind,
)
from .sentinels import contains_sentinel, parse_sentinel
from .table import coerce_cell_value
from .validate import constraint_issues

logger = get_logger(__name__)


class ApplyStatus(str, Enum):
    APPLIED = "applied"
    PARTIAL = "partial"
    REJECTED = "rejected"


@dataclass
class PatchRejection:
    """A patch that could not be applied, with guidance for retrying."""
    patch_index: int
    code: str
    message: str
    field_id: Optional[str] = None
    field_kind: Optional[str] = None
    expected_op: Optional[str] = None
    column_ids: Optional[List[str]] = None


@dataclass
class PatchWarning:
    """A patch that was applied (or ignored) with a caveat."""
    patch_index: int
    code: str
    message: str
    field_id: Optional[str] = None


@dataclass
class ApplyResult:
    status: ApplyStatus
    form: ParsedForm
    applied_patches: List[PatchModel] = field(default_factory=list)
    rejections: List[PatchRejection] = field(default_factory=list)
    warnings: List[PatchWarning] = field(default_factory=list)


class _Rejected(Exception):
    def __init__(self, rejection: PatchRejection):
        super().__init__(rejection.message)
        self.rejection = rejection


PatchInput = Union[PatchModel, Dict[str, Any]]


def apply_patches(form: ParsedForm, patches: Sequence[PatchInput]) -> ApplyResult:
    """
    Apply patches in input order.

    Args:
        form: Source form (not mutated)
        patches: Patch models or wire-format dicts

    Returns:
        ApplyResult with the new form and per-patch outcomes
    """
    target = form.copy_state()
    applied: List[PatchModel] = []
    rejections: List[PatchRejection] = []
    warnings: List[PatchWarning] = []

    for index, raw in enumerate(patches):
        try:
            patch = _parse(raw, index)
            warning = _apply_one(target, patch, index)
        except _Rejected as e:
            rejections.append(e.rejection)
            logger.debug(f"Patch {index} rejected ({e.rejection.code}): {e.rejection.message}")
            continue
        if warning is not None:
            warnings.append(warning)
            if warning.code == "note_not_found":
                continue
        applied.append(patch)

    if rejections and not applied:
        status = ApplyStatus.REJECTED
    elif rejections:
        status = ApplyStatus.PARTIAL
    else:
        status = ApplyStatus.APPLIED

    if rejections:
        logger.info(f"Applied {len(applied)}/{len(patches)} patches to '{form.schema.id}' ({len(rejections)} rejected)")
    else:
        logger.debug(f"Applied {len(applied)} patches to '{form.schema.id}'")
    return ApplyResult(status=status, form=target, applied_patches=applied, rejections=rejections, warnings=warnings)


def _parse(raw: PatchInput, index: int) -> PatchModel:
    try:
        return parse_patch(raw)
    except PydanticValidationError as e:
        field_id = raw.get("fieldId") or raw.get("field_id") if isinstance(raw, dict) else None
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'patch'}: {err['msg']}" for err in e.errors()
        )
        raise _Rejected(PatchRejection(index, "malformed_patch", f"Malformed patch: {details}", field_id=field_id))


def _apply_one(form: ParsedForm, patch: PatchModel, index: int) -> Optional[PatchWarning]:
    if isinstance(patch, AddNotePatch):
        _add_note(form, patch, index)
        return None
    if isinstance(patch, RemoveNotePatch):
        return _remove_note(form, patch, index)

    field_id = patch_field_id(patch)
    form_field = form.get_field(field_id)
    if form_field is None:
        raise _Rejected(PatchRejection(index, "unknown_field", f"Field '{field_id}' not found", field_id=field_id))
    responses = form.responses_by_field_id

    if isinstance(patch, ClearFieldPatch):
        responses[field_id] = FieldResponse()
        return None
    if isinstance(patch, SkipFieldPatch):
        if form_field.required:
            raise _Rejected(PatchRejection(
                index, "required_field_skip",
                f"Cannot skip required field '{field_id}': required field cannot be skipped "
                "(use abort_field if it cannot be answered)",
                field_id=field_id, field_kind=form_field.kind.value,
            ))
        responses[field_id] = FieldResponse.skipped(patch.reason)
        return None
    if isinstance(patch, AbortFieldPatch):
        responses[field_id] = FieldResponse.aborted(patch.reason)
        return None

    return _set_value(form, form_field, patch, index)


def _set_value(form: ParsedForm, form_field: Field, patch: PatchModel, index: int) -> Optional[PatchWarning]:
    if SET_OPS[patch.op] != form_field.kind:
        expected = set_op_for_kind(form_field.kind)
        raise _Rejected(PatchRejection(
            index, "wrong_operation",
            f"Cannot apply {patch.op} to {form_field.kind.value} field '{form_field.id}'; use {expected}",
            field_id=form_field.id,
            field_kind=form_field.kind.value,
            expected_op=expected,
            column_ids=form_field.column_ids() or None,
        ))

    value, warning = NORMALIZERS[form_field.kind](form, form_field, patch.value, index)
    responses = form.responses_by_field_id

    if value is None or is_value_empty(form_field, value):
        responses[form_field.id] = FieldResponse()
        return warning

    problems = constraint_issues(form_field, value)
    if problems:
        raise _Rejected(PatchRejection(
            index, "constraint_violation",
            "; ".join(issue.message for issue in problems),
            field_id=form_field.id, field_kind=form_field.kind.value,
        ))
    responses[form_field.id] = FieldResponse.answered(value)
    return warning


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

def _add_note(form: ParsedForm, patch: AddNotePatch, index: int):
    if patch.ref not in form.id_index:
        raise _Rejected(PatchRejection(index, "unknown_ref", f"Reference '{patch.ref}' not found in form"))
    text = patch.text.strip()
    if not text:
        raise _Rejected(PatchRejection(index, "empty_note", "Note text cannot be empty"))
    note = Note(id=next_note_id(form.notes), ref=patch.ref, role=patch.role, text=text)
    form.notes.append(note)


def _remove_note(form: ParsedForm, patch: RemoveNotePatch, index: int) -> Optional[PatchWarning]:
    for position, note in enumerate(form.notes):
        if note.id == patch.note_id:
            del form.notes[position]
            return None
    return PatchWarning(index, "note_not_found", f"Note with id '{patch.note_id}' not found; nothing removed")


def next_note_id(notes: List[Note]) -> str:
    """``n<max+1>`` over the existing numeric note ids."""
    highest = 0
    for note in notes:
        digits = note.id[1:]
        if note.id.startswith("n") and digits.isdigit():
            highest = max(highest, int(digits))
    return f"n{highest + 1}"


# ---------------------------------------------------------------------------
# Per-kind normalizers: (form, field, raw value, index) -> (value, warning)
# ---------------------------------------------------------------------------

def _reject_value(index: int, form_field: Field, message: str, code: str = "invalid_value") -> _Rejected:
    return _Rejected(PatchRejection(
        index, code, message, field_id=form_field.id, field_kind=form_field.kind.value,
        column_ids=form_field.column_ids() or None,
    ))


def _check_sentinel(index: int, form_field: Field, text: str):
    upper = text.upper()
    if not contains_sentinel(upper):
        return
    op = "abort_field" if "ABORT" in upper else "skip_field"
    raise _reject_value(
        index, form_field,
        f"Value for field '{form_field.id}' contains a skip/abort sentinel; use the {op} operation instead",
        code="embedded_sentinel",
    )


def _normalize_text(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    if raw is None:
        return None, None
    _check_sentinel(index, form_field, raw)
    return raw.strip(), None


def _normalize_number(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    return raw, None


def _normalize_list(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    if raw is None:
        return None, None
    warning = None
    if isinstance(raw, str):
        code = "url_to_list" if form_field.kind == FieldKind.URL_LIST else "string_to_list"
        warning = PatchWarning(index, code, f"Coerced single value to {form_field.kind.value}", form_field.id)
        raw = [raw]
    items = []
    for item in raw:
        _check_sentinel(index, form_field, item)
        if "\n" in item.strip():
            raise _reject_value(index, form_field, f"List items of field '{form_field.id}' cannot contain newlines")
        if item.strip():
            items.append(item.strip())
    return items, warning


def _normalize_single_select(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    return raw, None


def _normalize_multi_select(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    if isinstance(raw, str):
        warning = PatchWarning(index, "option_to_array", "Coerced single option id to multi_select array", form_field.id)
        return [raw], warning
    return raw, None


def _normalize_checkboxes(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    if raw is None:
        return None, None
    mode = form_field.checkbox_mode
    valid_options = form_field.option_ids()
    warning = None

    if isinstance(raw, list):
        positive = MODE_POSITIVE_STATE[mode]
        updates: Dict[str, CheckboxState] = {}
        for item in raw:
            if not isinstance(item, str):
                raise _reject_value(
                    index, form_field,
                    f"Checkbox option ids for field '{form_field.id}' must be strings, got {type(item).__name__}",
                )
            if item not in valid_options:
                raise _reject_value(
                    index, form_field,
                    f"Invalid option '{item}' for field '{form_field.id}' (valid: {', '.join(valid_options)})",
                    code="invalid_option",
                )
            updates[item] = positive
        if raw:
            warning = PatchWarning(
                index, "array_to_checkboxes",
                f"Coerced array to checkboxes object with '{positive.value}' state", form_field.id,
            )
    else:
        updates = {}
        had_bool = False
        for opt_id, state in raw.items():
            if opt_id not in valid_options:
                raise _reject_value(
                    index, form_field,
                    f"Invalid option '{opt_id}' for field '{form_field.id}' (valid: {', '.join(valid_options)})",
                    code="invalid_option",
                )
            if isinstance(state, bool):
                had_bool = True
                updates[opt_id] = MODE_POSITIVE_STATE[mode] if state else MODE_NEGATIVE_STATE[mode]
                continue
            try:
                updates[opt_id] = CheckboxState(state)
            except ValueError:
                raise _reject_value(
                    index, form_field,
                    f"Invalid checkbox state '{state}' for option '{opt_id}' in field '{form_field.id}'",
                )
        if had_bool:
            warning = PatchWarning(
                index, "boolean_to_checkbox", "Coerced boolean values to checkbox states", form_field.id,
            )

    current = form.response_for(form_field.id)
    merged = dict(current.value) if current.state == AnswerState.ANSWERED else {}
    merged.update(updates)
    return merged, warning


def _normalize_table(form: ParsedForm, form_field: Field, raw: Any, index: int) -> Tuple[Any, Optional[PatchWarning]]:
    if raw is None:
        return None, None
    columns = {col.id: col for col in form_field.columns}
    rows = []
    for number, row in enumerate(raw, start=1):
        for col_id in row:
            if col_id not in columns:
                raise _reject_value(
                    index, form_field,
                    f"Invalid column '{col_id}' for table field '{form_field.id}' "
                    f"(columns: {', '.join(columns)})",
                    code="invalid_column",
                )
        cells = {}
        for col_id, col in columns.items():
            cell_value = row.get(col_id)
            if isinstance(cell_value, str):
                if "\n" in cell_value:
                    raise _reject_value(
                        index, form_field, f"Row {number} column '{col_id}' of '{form_field.id}' contains a newline",
                    )
                sentinel = parse_sentinel(cell_value)
                if sentinel is not None:
                    cells[col_id] = CellResponse(state=sentinel.state, reason=sentinel.reason)
                    continue
                cell_value = cell_value.strip() or None
            cells[col_id] = CellResponse(value=coerce_cell_value(cell_value, col.type))
        rows.append(cells)
    return rows, None


NORMALIZERS = {
    FieldKind.STRING: _normalize_text,
    FieldKind.NUMBER: _normalize_number,
    FieldKind.DATE: _normalize_text,
    FieldKind.YEAR: _normalize_number,
    FieldKind.STRING_LIST: _normalize_list,
    FieldKind.URL: _normalize_text,
    FieldKind.URL_LIST: _normalize_list,
    FieldKind.SINGLE_SELECT: _normalize_single_select,
    FieldKind.MULTI_SELECT: _normalize_multi_select,
    FieldKind.CHECKBOXES: _normalize_checkboxes,
    FieldKind.TABLE: _normalize_table,
}
