"""
Per-kind field parsers.

Each ``field`` tag is dispatched on its ``kind`` attribute (or a legacy
tag name such as ``string-field``) to a sub-parser that reads the
kind's constraint attributes and its body: a ```value fence for
text-entry kinds and tables, option list items for choosers.
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.constants import AGENT_ROLE, VALUE_FENCE_INFO
from config.logging_config import get_logger

from .errors import ParseError, ValidationError
from .model import (
    CHECKBOX_MARKERS,
    CHOOSER_KINDS,
    MODE_DEFAULT_STATE,
    MODE_STATES,
    AnswerState,
    ApprovalMode,
    CheckboxMode,
    CheckboxState,
    ColumnType,
    Field,
    FieldKind,
    FieldResponse,
    Option,
    Priority,
    TableColumn,
    is_value_empty,
)
from .scanner import TagNode
from .sentinels import Sentinel, parse_sentinel
from .table import parse_table
from .values import parse_iso_date, text_parses_as

logger = get_logger(__name__)

FIELD_TAG = "field"

LEGACY_FIELD_TAGS: Dict[str, FieldKind] = {
    "string-field": FieldKind.STRING,
    "number-field": FieldKind.NUMBER,
    "date-field": FieldKind.DATE,
    "year-field": FieldKind.YEAR,
    "string-list": FieldKind.STRING_LIST,
    "url-field": FieldKind.URL,
    "url-list": FieldKind.URL_LIST,
    "single-select": FieldKind.SINGLE_SELECT,
    "multi-select": FieldKind.MULTI_SELECT,
    "checkboxes": FieldKind.CHECKBOXES,
    "table-field": FieldKind.TABLE,
}

# Document attribute -> Field attribute
FIELD_ATTRIBUTES: Dict[str, str] = {
    "required": "required",
    "role": "role",
    "priority": "priority",
    "placeholder": "placeholder",
    "examples": "examples",
    "validate": "validators",
    "minLength": "min_length",
    "maxLength": "max_length",
    "pattern": "pattern",
    "minItems": "min_items",
    "maxItems": "max_items",
    "itemMinLength": "item_min_length",
    "itemMaxLength": "item_max_length",
    "uniqueItems": "unique_items",
    "min": "min_value",
    "max": "max_value",
    "integer": "integer",
    "minSelections": "min_selections",
    "maxSelections": "max_selections",
    "checkboxMode": "checkbox_mode",
    "minDone": "min_done",
    "approvalMode": "approval_mode",
    "minRows": "min_rows",
    "maxRows": "max_rows",
}

_VALUE_FENCE_RE = re.compile(
    r"^ {0,3}(?P<fence>`{3,})" + VALUE_FENCE_INFO + r"[ \t]*\n(?P<content>.*?)\n?^ {0,3}(?P=fence)(?!`)[ \t]*$\n?",
    re.MULTILINE | re.DOTALL,
)
_OPTION_RE = re.compile(
    r"^\s*[-*+]\s+\[(?P<marker>.)\]\s+(?P<label>.*?)\s*\{%\s*#(?P<id>[A-Za-z0-9_-]+)\s*%\}\s*$"
)
_OPTION_WITHOUT_ID_RE = re.compile(r"^\s*[-*+]\s+\[.\]\s+")
_VALID_STATE_ATTRS = ("", "empty", "unanswered", "answered", "skipped", "aborted")


def field_kind_for(node: TagNode) -> FieldKind:
    """Kind of a field tag from its ``kind`` attribute or legacy tag name."""
    if node.name in LEGACY_FIELD_TAGS:
        return LEGACY_FIELD_TAGS[node.name]
    raw = node.attributes.get("kind")
    if raw is None:
        raise ParseError("Field tag missing required 'kind' attribute", line=node.line, column=node.column)
    try:
        return FieldKind(raw)
    except ValueError:
        raise ParseError(f"Unknown field kind '{raw}'", line=node.line, column=node.column)


def is_field_tag(name: str) -> bool:
    return name == FIELD_TAG or name in LEGACY_FIELD_TAGS


def parse_field(node: TagNode, source: str) -> Tuple[Field, FieldResponse]:
    """
    Parse one field tag into its schema definition and initial response.

    Raises:
        ParseError: Missing id/label/kind, or a value that cannot be read
        ValidationError: Attribute misuse or inconsistent state
    """
    kind = field_kind_for(node)
    attrs = node.attributes
    field_id = attrs.get("id")
    if not isinstance(field_id, str) or not field_id:
        raise ParseError(f"{kind.value} field missing required 'id' attribute", line=node.line, column=node.column)
    label = attrs.get("label")
    if not isinstance(label, str) or not label:
        raise ParseError(f"Field '{field_id}' missing required 'label' attribute", line=node.line, field_id=field_id)

    reader = _AttributeReader(attrs, node, field_id)
    _check_attribute_placement(kind, reader)

    form_field = Field(
        id=field_id,
        kind=kind,
        label=label,
        required=reader.flag("required", False),
        role=reader.text("role") or AGENT_ROLE,
        priority=reader.enum("priority", Priority, Priority.MEDIUM),
        placeholder=reader.text("placeholder"),
        examples=reader.text_list("examples"),
        validators=reader.validator_refs(),
    )

    body = node.inner_text(source)
    fence_content, rest = extract_value_fence(body)
    sentinel = parse_sentinel(fence_content) if fence_content is not None else None
    text = fence_content if sentinel is None else None

    value = KIND_PARSERS[kind](form_field, reader, text, rest)
    _check_examples(form_field, node)

    has_value = value is not None and not is_value_empty(form_field, value)
    response = _resolve_response(form_field, node, value if has_value else None, sentinel)
    return form_field, response


def extract_value_fence(body: str) -> Tuple[Optional[str], str]:
    """Return (fence content or None, body with the fence removed)."""
    match = _VALUE_FENCE_RE.search(body)
    if not match:
        return None, body
    return match.group("content"), body[:match.start()] + body[match.end():]


# ---------------------------------------------------------------------------
# Kind parsers: (field, attributes, fence text, remaining body) -> value
# ---------------------------------------------------------------------------

def _parse_string(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.min_length = reader.integer("minLength")
    form_field.max_length = reader.integer("maxLength")
    form_field.pattern = reader.text("pattern")
    return text.strip() if text is not None else None


def _parse_number(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.min_value = reader.number("min")
    form_field.max_value = reader.number("max")
    form_field.integer = reader.flag("integer", False)
    if text is None or not text.strip():
        return None
    try:
        return float(text.strip())
    except ValueError:
        raise ParseError(
            f"Invalid number value '{text.strip()}' for field '{form_field.id}'",
            line=reader.node.line, field_id=form_field.id,
        )


def _parse_date(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.min_value = reader.date("min")
    form_field.max_value = reader.date("max")
    return text.strip() if text is not None else None


def _parse_year(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.min_value = reader.integer("min")
    form_field.max_value = reader.integer("max")
    if text is None or not text.strip():
        return None
    try:
        return int(text.strip())
    except ValueError:
        raise ParseError(
            f"Invalid year value '{text.strip()}' for field '{form_field.id}'",
            line=reader.node.line, field_id=form_field.id,
        )


def _parse_list(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.min_items = reader.integer("minItems")
    form_field.max_items = reader.integer("maxItems")
    form_field.unique_items = reader.flag("uniqueItems", False)
    if form_field.kind == FieldKind.STRING_LIST:
        form_field.item_min_length = reader.integer("itemMinLength")
        form_field.item_max_length = reader.integer("itemMaxLength")
    if text is None:
        return None
    return [line.strip() for line in text.splitlines() if line.strip()]


def _parse_url(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    return text.strip() if text is not None else None


def _parse_single_select(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    marks = _parse_options(form_field, reader, rest, select=True)
    chosen = [opt_id for opt_id, state in marks.items() if state == CheckboxState.DONE]
    if len(chosen) > 1:
        raise ValidationError(
            f"Single-select field '{form_field.id}' has {len(chosen)} options selected",
            line=reader.node.line, field_id=form_field.id,
        )
    return chosen[0] if chosen else None


def _parse_multi_select(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.min_selections = reader.integer("minSelections")
    form_field.max_selections = reader.integer("maxSelections")
    marks = _parse_options(form_field, reader, rest, select=True)
    return [opt_id for opt_id, state in marks.items() if state == CheckboxState.DONE]


def _parse_checkboxes(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.checkbox_mode = reader.enum("checkboxMode", CheckboxMode, CheckboxMode.MULTI)
    form_field.min_done = reader.integer("minDone")
    form_field.approval_mode = reader.enum("approvalMode", ApprovalMode, ApprovalMode.NONE)
    if form_field.checkbox_mode == CheckboxMode.EXPLICIT:
        if reader.attrs.get("required") is False:
            raise ValidationError(
                f"Checkbox field '{form_field.id}' has checkboxMode=\"explicit\" which is always required; "
                "remove required=false or change checkboxMode",
                line=reader.node.line, field_id=form_field.id,
            )
        form_field.required = True

    marks = _parse_options(form_field, reader, rest, select=False)
    default = MODE_DEFAULT_STATE[form_field.checkbox_mode]
    values = {}
    for opt in form_field.options:
        state = marks.get(opt.id, default)
        values[opt.id] = default if state == CheckboxState.TODO else state
    return values


def _parse_table_field(form_field: Field, reader: "_AttributeReader", text: Optional[str], rest: str) -> Any:
    form_field.columns = _parse_columns(form_field, reader)
    form_field.min_rows = reader.integer("minRows")
    form_field.max_rows = reader.integer("maxRows")
    if text is None:
        return None
    try:
        return parse_table(text, form_field.columns, form_field.id)
    except ValidationError as e:
        raise ValidationError(e.message, line=reader.node.line, field_id=form_field.id)


KIND_PARSERS: Dict[FieldKind, Callable] = {
    FieldKind.STRING: _parse_string,
    FieldKind.NUMBER: _parse_number,
    FieldKind.DATE: _parse_date,
    FieldKind.YEAR: _parse_year,
    FieldKind.STRING_LIST: _parse_list,
    FieldKind.URL: _parse_url,
    FieldKind.URL_LIST: _parse_list,
    FieldKind.SINGLE_SELECT: _parse_single_select,
    FieldKind.MULTI_SELECT: _parse_multi_select,
    FieldKind.CHECKBOXES: _parse_checkboxes,
    FieldKind.TABLE: _parse_table_field,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_options(form_field: Field, reader: "_AttributeReader", body: str, select: bool) -> Dict[str, CheckboxState]:
    marks: Dict[str, CheckboxState] = {}
    allowed = {CheckboxState.TODO, CheckboxState.DONE} if select else MODE_STATES[form_field.checkbox_mode] | {CheckboxState.TODO}
    for line in body.splitlines():
        match = _OPTION_RE.match(line)
        if not match:
            if _OPTION_WITHOUT_ID_RE.match(line):
                raise ParseError(
                    f"Option in field '{form_field.id}' is missing an id annotation: {line.strip()}",
                    line=reader.node.line, field_id=form_field.id,
                )
            continue
        opt_id = match.group("id")
        if opt_id in marks:
            raise ValidationError(
                f"Duplicate option id '{opt_id}' in field '{form_field.id}'",
                line=reader.node.line, field_id=form_field.id,
            )
        state = CHECKBOX_MARKERS.get(match.group("marker"))
        if state is None or state not in allowed:
            raise ValidationError(
                f"Invalid checkbox marker '[{match.group('marker')}]' for option '{opt_id}' in field '{form_field.id}'",
                line=reader.node.line, field_id=form_field.id,
            )
        form_field.options.append(Option(id=opt_id, label=match.group("label")))
        marks[opt_id] = state
    return marks


def _parse_columns(form_field: Field, reader: "_AttributeReader") -> List[TableColumn]:
    ids = reader.attrs.get("columnIds")
    if not isinstance(ids, list) or not ids or not all(isinstance(i, str) for i in ids):
        raise ParseError(
            f"Table field '{form_field.id}' requires a non-empty columnIds array of strings",
            line=reader.node.line, field_id=form_field.id,
        )
    if len(set(ids)) != len(ids):
        raise ValidationError(f"Table field '{form_field.id}' has duplicate column ids", field_id=form_field.id)

    labels = reader.attrs.get("columnLabels", ids)
    types = reader.attrs.get("columnTypes", ["string"] * len(ids))
    for name, values in (("columnLabels", labels), ("columnTypes", types)):
        if not isinstance(values, list) or len(values) != len(ids):
            raise ValidationError(
                f"Table field '{form_field.id}' {name} must have {len(ids)} entries",
                line=reader.node.line, field_id=form_field.id,
            )

    columns = []
    for col_id, label, spec in zip(ids, labels, types):
        required = False
        if isinstance(spec, dict):
            required = bool(spec.get("required", False))
            spec = spec.get("type", "string")
        try:
            col_type = ColumnType(spec)
        except ValueError:
            raise ValidationError(
                f"Unknown column type '{spec}' for column '{col_id}' in field '{form_field.id}'",
                line=reader.node.line, field_id=form_field.id,
            )
        columns.append(TableColumn(id=col_id, label=str(label), type=col_type, required=required))
    return columns


def _check_attribute_placement(kind: FieldKind, reader: "_AttributeReader"):
    attrs = reader.attrs
    if "approvalMode" in attrs and kind != FieldKind.CHECKBOXES:
        raise ValidationError(
            f"approvalMode is only allowed on checkboxes fields, not {kind.value} field '{reader.field_id}'",
            line=reader.node.line, field_id=reader.field_id,
        )
    if kind in CHOOSER_KINDS:
        for name in ("placeholder", "examples"):
            if name in attrs:
                raise ValidationError(
                    f"{name} is not allowed on {kind.value} field '{reader.field_id}'",
                    line=reader.node.line, field_id=reader.field_id,
                )


def _check_examples(form_field: Field, node: TagNode):
    for example in form_field.examples:
        if not text_parses_as(form_field.kind, example):
            raise ValidationError(
                f"Example '{example}' is not a valid {form_field.kind.value} value for field '{form_field.id}'",
                line=node.line, field_id=form_field.id,
            )
    if form_field.placeholder is not None and not text_parses_as(form_field.kind, form_field.placeholder):
        logger.warning(
            f"Placeholder '{form_field.placeholder}' of field '{form_field.id}' "
            f"is not a valid {form_field.kind.value} value"
        )


def _resolve_response(form_field: Field, node: TagNode, value: Any, sentinel: Optional[Sentinel]) -> FieldResponse:
    raw_state = node.attributes.get("state")
    if raw_state is not None and raw_state not in _VALID_STATE_ATTRS:
        raise ValidationError(
            f"Invalid state attribute '{raw_state}' on field '{form_field.id}'. "
            "Must be empty, answered, skipped, or aborted",
            line=node.line, field_id=form_field.id,
        )
    state_attr = "unanswered" if raw_state in ("", "empty") else raw_state
    filled = value is not None

    if sentinel is not None:
        if filled:
            raise ValidationError(
                f"Field '{form_field.id}' has both a value and a {sentinel.state.value} sentinel",
                line=node.line, field_id=form_field.id,
            )
        if state_attr is not None and state_attr != sentinel.state.value:
            raise ValidationError(
                f"Field '{form_field.id}' has state='{state_attr}' but its sentinel marks it {sentinel.state.value}",
                line=node.line, field_id=form_field.id,
            )
        response = FieldResponse(sentinel.state, reason=sentinel.reason)
    elif state_attr in ("skipped", "aborted"):
        if filled:
            raise ValidationError(
                f"Field '{form_field.id}' has state='{state_attr}' but contains a value; "
                "state is not allowed on a filled field",
                line=node.line, field_id=form_field.id,
            )
        response = FieldResponse(AnswerState(state_attr))
    elif state_attr == "answered":
        if not filled:
            raise ValidationError(
                f"Field '{form_field.id}' has state='answered' but no value",
                line=node.line, field_id=form_field.id,
            )
        response = FieldResponse.answered(value)
    elif state_attr == "unanswered":
        if filled:
            raise ValidationError(
                f"Field '{form_field.id}' has state='{raw_state}' but contains a value",
                line=node.line, field_id=form_field.id,
            )
        response = FieldResponse()
    else:
        response = FieldResponse.answered(value) if filled else FieldResponse()

    if response.state == AnswerState.SKIPPED and form_field.required:
        raise ValidationError(
            f"Field '{form_field.id}' is required but has state='skipped'; required fields cannot be skipped",
            line=node.line, field_id=form_field.id,
        )
    return response


class _AttributeReader:
    """Typed access to a field tag's attributes with located errors."""

    def __init__(self, attrs: Dict[str, Any], node: TagNode, field_id: str):
        self.attrs = attrs
        self.node = node
        self.field_id = field_id

    def _fail(self, name: str, expected: str) -> ValidationError:
        return ValidationError(
            f"Attribute '{name}' on field '{self.field_id}' must be {expected}, got {self.attrs.get(name)!r}",
            line=self.node.line, field_id=self.field_id,
        )

    def text(self, name: str) -> Optional[str]:
        value = self.attrs.get(name)
        if value is not None and not isinstance(value, str):
            raise self._fail(name, "a string")
        return value

    def flag(self, name: str, default: bool) -> bool:
        value = self.attrs.get(name, default)
        if not isinstance(value, bool):
            raise self._fail(name, "true or false")
        return value

    def integer(self, name: str) -> Optional[int]:
        value = self.attrs.get(name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise self._fail(name, "an integer")
        return value

    def number(self, name: str) -> Optional[float]:
        value = self.attrs.get(name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise self._fail(name, "a number")
        return value

    def date(self, name: str) -> Optional[str]:
        value = self.attrs.get(name)
        if value is not None and parse_iso_date(value) is None:
            raise self._fail(name, "an ISO date (YYYY-MM-DD)")
        return value

    def enum(self, name: str, enum_cls, default):
        value = self.attrs.get(name)
        if value is None:
            return default
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise self._fail(name, f"one of: {allowed}")

    def text_list(self, name: str) -> List[str]:
        value = self.attrs.get(name)
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list) or any(isinstance(v, (list, dict)) for v in value):
            raise self._fail(name, "a list of values")
        return [str(v) for v in value]

    def validator_refs(self) -> List[str]:
        value = self.attrs.get("validate")
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        refs = []
        for item in value if isinstance(value, list) else [value]:
            if isinstance(item, str):
                refs.append(item)
            elif isinstance(item, dict) and isinstance(item.get("id"), str):
                refs.append(item["id"])
            else:
                raise self._fail("validate", "a validator id or list of ids")
        return refs
