"""
Input-context coercion: raw values keyed by field id -> typed set_* patches.

Used to pre-fill a form from caller-supplied data (CLI flags, JSON,
another form) before an agent runs. Lossy conversions succeed with a
warning; impossible ones are reported as errors and produce no patch.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.logging_config import get_logger

from .model import MODE_NEGATIVE_STATE, MODE_POSITIVE_STATE, MODE_STATES, Field, FieldKind, ParsedForm
from .patches import PatchModel, make_set_patch

logger = get_logger(__name__)


class _CoercionFailure(Exception):
    pass


@dataclass
class CoercionResult:
    """Outcome of coercing one raw value."""
    patch: Optional[PatchModel] = None
    warning: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.patch is not None


@dataclass
class InputContextResult:
    patches: List[PatchModel] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def coerce_input_context(form: ParsedForm, input_context: Dict[str, Any]) -> InputContextResult:
    """
    Coerce every entry of ``input_context`` into a patch.

    ``None`` values are skipped (the field is left unchanged).
    """
    result = InputContextResult()
    for field_id, raw in input_context.items():
        if raw is None:
            continue
        coerced = coerce_to_field_patch(form, field_id, raw)
        if coerced.ok:
            result.patches.append(coerced.patch)
            if coerced.warning:
                result.warnings.append(coerced.warning)
        else:
            result.errors.append(coerced.error)

    if result.errors:
        logger.info(f"Input context: {len(result.patches)} patches, {len(result.errors)} errors")
    return result


def coerce_to_field_patch(form: ParsedForm, field_id: str, raw: Any) -> CoercionResult:
    form_field = form.get_field(field_id)
    if form_field is None:
        return CoercionResult(error=f"Field '{field_id}' not found")
    if raw is None:
        return CoercionResult(patch=make_set_patch(form_field.kind, field_id, None))
    try:
        value, warning = COERCERS[form_field.kind](form_field, raw)
    except _CoercionFailure as e:
        return CoercionResult(error=str(e))
    return CoercionResult(patch=make_set_patch(form_field.kind, field_id, value), warning=warning)


# ---------------------------------------------------------------------------
# Per-kind coercers: (field, raw) -> (value, warning)
# ---------------------------------------------------------------------------

def _type_name(raw: Any) -> str:
    return type(raw).__name__


def _to_text(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(raw, str):
        return raw, None
    if isinstance(raw, (bool, int, float)):
        text = str(raw).lower() if isinstance(raw, bool) else str(raw)
        return text, f"Coerced {_type_name(raw)} {raw} to string for field '{form_field.id}'"
    raise _CoercionFailure(f"Cannot coerce {_type_name(raw)} to {form_field.kind.value} for field '{form_field.id}'")


def _to_plain_string(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(raw, str):
        return raw, None
    raise _CoercionFailure(f"Cannot coerce {_type_name(raw)} to {form_field.kind.value} for field '{form_field.id}'")


def _to_number(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw, None
    if isinstance(raw, str):
        try:
            return float(raw), f"Coerced string '{raw}' to number for field '{form_field.id}'"
        except ValueError:
            raise _CoercionFailure(
                f"Cannot coerce non-numeric string '{raw}' to number for field '{form_field.id}'"
            )
    raise _CoercionFailure(f"Cannot coerce {_type_name(raw)} to number for field '{form_field.id}'")


def _to_year(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(raw, bool):
        raise _CoercionFailure(f"Cannot coerce bool to year for field '{form_field.id}'")
    if isinstance(raw, int):
        return raw, None
    if isinstance(raw, float):
        if not raw.is_integer():
            raise _CoercionFailure(f"Year must be an integer for field '{form_field.id}', got {raw}")
        return int(raw), None
    if isinstance(raw, str):
        try:
            return int(raw.strip()), f"Coerced string '{raw}' to year for field '{form_field.id}'"
        except ValueError:
            raise _CoercionFailure(f"Cannot coerce non-numeric string '{raw}' to year for field '{form_field.id}'")
    raise _CoercionFailure(f"Cannot coerce {_type_name(raw)} to year for field '{form_field.id}'")


def _to_list(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(raw, str):
        return [raw], f"Coerced single string to array for field '{form_field.id}'"
    if not isinstance(raw, list):
        raise _CoercionFailure(f"Cannot coerce {_type_name(raw)} to {form_field.kind.value} for field '{form_field.id}'")
    if all(isinstance(item, str) for item in raw):
        return list(raw), None
    allow_scalars = form_field.kind == FieldKind.STRING_LIST
    items = []
    for item in raw:
        if isinstance(item, str):
            items.append(item)
        elif allow_scalars and isinstance(item, (bool, int, float)):
            items.append(str(item).lower() if isinstance(item, bool) else str(item))
        else:
            raise _CoercionFailure(
                f"Cannot coerce array with non-string items to {form_field.kind.value} for field '{form_field.id}'"
            )
    return items, f"Coerced array items to strings for field '{form_field.id}'"


def _to_single_select(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if not isinstance(raw, str):
        raise _CoercionFailure(
            f"single_select field '{form_field.id}' requires a string option id, got {_type_name(raw)}"
        )
    _check_options(form_field, [raw])
    return raw, None


def _to_multi_select(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    warning = None
    if isinstance(raw, str):
        selected = [raw]
        warning = f"Coerced single string to array for multi_select field '{form_field.id}'"
    elif isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        selected = list(raw)
    else:
        raise _CoercionFailure(
            f"multi_select field '{form_field.id}' requires a string or list of strings, got {_type_name(raw)}"
        )
    _check_options(form_field, selected)
    return selected, warning


def _to_checkboxes(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    mode = form_field.checkbox_mode
    if isinstance(raw, list):
        if not all(isinstance(item, str) for item in raw):
            raise _CoercionFailure(f"checkboxes field '{form_field.id}' requires option id strings")
        _check_options(form_field, raw)
        positive = MODE_POSITIVE_STATE[mode].value
        return {opt_id: positive for opt_id in raw}, None
    if not isinstance(raw, dict):
        raise _CoercionFailure(
            f"checkboxes field '{form_field.id}' requires a mapping of option ids to states, got {_type_name(raw)}"
        )

    _check_options(form_field, list(raw))
    allowed = sorted(state.value for state in MODE_STATES[mode])
    values = {}
    had_bool = False
    for opt_id, state in raw.items():
        if isinstance(state, bool):
            had_bool = True
            values[opt_id] = (MODE_POSITIVE_STATE[mode] if state else MODE_NEGATIVE_STATE[mode]).value
        elif isinstance(state, str) and state in allowed:
            values[opt_id] = state
        else:
            raise _CoercionFailure(
                f"Invalid checkbox value '{state}' for option '{opt_id}' in field '{form_field.id}'. "
                f"Valid values for {mode.value} mode: {', '.join(allowed)} (or use true/false)"
            )
    warning = f"Coerced boolean values to checkbox states for field '{form_field.id}'" if had_bool else None
    return values, warning


def _to_table(form_field: Field, raw: Any) -> Tuple[Any, Optional[str]]:
    if not isinstance(raw, list):
        raise _CoercionFailure(
            f"Table value for field '{form_field.id}' must be a list of rows, got {_type_name(raw)}"
        )
    for idx, row in enumerate(raw):
        if not isinstance(row, dict):
            raise _CoercionFailure(
                f"Row {idx} for table field '{form_field.id}' must be a mapping, got {_type_name(row)}"
            )
    return list(raw), None


def _check_options(form_field: Field, selected: List[str]):
    valid = form_field.option_ids()
    for opt_id in selected:
        if opt_id not in valid:
            raise _CoercionFailure(
                f"Invalid option '{opt_id}' for {form_field.kind.value} field '{form_field.id}'. "
                f"Valid options: {', '.join(valid)}"
            )


COERCERS: Dict[FieldKind, Callable[[Field, Any], Tuple[Any, Optional[str]]]] = {
    FieldKind.STRING: _to_text,
    FieldKind.NUMBER: _to_number,
    FieldKind.DATE: _to_plain_string,
    FieldKind.YEAR: _to_year,
    FieldKind.STRING_LIST: _to_list,
    FieldKind.URL: _to_plain_string,
    FieldKind.URL_LIST: _to_list,
    FieldKind.SINGLE_SELECT: _to_single_select,
    FieldKind.MULTI_SELECT: _to_multi_select,
    FieldKind.CHECKBOXES: _to_checkboxes,
    FieldKind.TABLE: _to_table,
}
