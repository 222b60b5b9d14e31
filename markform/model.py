#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Document model for Markform forms.

Field kind and answer state are independent axes: every kind can be
unanswered, answered, skipped or aborted. Values are held as plain
Python data keyed by kind:

    string, date, url        -> str
    number                   -> float (or int)
    year                     -> int
    string_list, url_list    -> List[str]
    single_select            -> str (option id)
    multi_select             -> List[str] (option ids)
    checkboxes               -> Dict[str, CheckboxState]
    table                    -> List[Dict[str, CellResponse]]
"""

import copy
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from config.constants import (
    AGENT_ROLE,
    DEFAULT_PRIORITY,
    DEFAULT_ROLES,
    DEFAULT_ROLE_INSTRUCTIONS,
    DEFAULT_SPEC_VERSION,
)


class FieldKind(str, Enum):
    """Closed set of field kinds."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    YEAR = "year"
    STRING_LIST = "string_list"
    URL = "url"
    URL_LIST = "url_list"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    CHECKBOXES = "checkboxes"
    TABLE = "table"


CHOOSER_KINDS = frozenset({
    FieldKind.SINGLE_SELECT,
    FieldKind.MULTI_SELECT,
    FieldKind.CHECKBOXES,
})
LIST_KINDS = frozenset({FieldKind.STRING_LIST, FieldKind.URL_LIST})


class AnswerState(str, Enum):
    """Whether and how a field has been addressed."""
    UNANSWERED = "unanswered"
    ANSWERED = "answered"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class CheckboxMode(str, Enum):
    MULTI = "multi"
    SIMPLE = "simple"
    EXPLICIT = "explicit"


class ApprovalMode(str, Enum):
    NONE = "none"
    BLOCKING = "blocking"


class CheckboxState(str, Enum):
    TODO = "todo"
    DONE = "done"
    INCOMPLETE = "incomplete"
    ACTIVE = "active"
    NA = "na"
    UNFILLED = "unfilled"
    YES = "yes"
    NO = "no"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ColumnType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    URL = "url"
    DATE = "date"
    YEAR = "year"


class SyntaxStyle(str, Enum):
    """Surface syntax the source document was written in."""
    MARKDOC = "markdoc"
    HTML_COMMENT = "html-comment"


class NodeType(str, Enum):
    FORM = "form"
    GROUP = "group"
    FIELD = "field"
    OPTION = "option"
    COLUMN = "column"


class TagType(str, Enum):
    FORM = "form"
    GROUP = "group"
    FIELD = "field"
    NOTE = "note"
    DOCUMENTATION = "documentation"


# Marker character inside "[ ]" -> checkbox state
CHECKBOX_MARKERS: Dict[str, CheckboxState] = {
    " ": CheckboxState.TODO,
    "x": CheckboxState.DONE,
    "X": CheckboxState.DONE,
    "/": CheckboxState.INCOMPLETE,
    "*": CheckboxState.ACTIVE,
    "-": CheckboxState.NA,
    "y": CheckboxState.YES,
    "Y": CheckboxState.YES,
    "n": CheckboxState.NO,
    "N": CheckboxState.NO,
}

STATE_MARKERS: Dict[CheckboxState, str] = {
    CheckboxState.TODO: " ",
    CheckboxState.UNFILLED: " ",
    CheckboxState.DONE: "x",
    CheckboxState.INCOMPLETE: "/",
    CheckboxState.ACTIVE: "*",
    CheckboxState.NA: "-",
    CheckboxState.YES: "y",
    CheckboxState.NO: "n",
}

MODE_STATES: Dict[CheckboxMode, frozenset] = {
    CheckboxMode.MULTI: frozenset({
        CheckboxState.TODO,
        CheckboxState.DONE,
        CheckboxState.INCOMPLETE,
        CheckboxState.ACTIVE,
        CheckboxState.NA,
    }),
    CheckboxMode.SIMPLE: frozenset({CheckboxState.TODO, CheckboxState.DONE}),
    CheckboxMode.EXPLICIT: frozenset({
        CheckboxState.UNFILLED,
        CheckboxState.YES,
        CheckboxState.NO,
    }),
}

MODE_DEFAULT_STATE = {
    CheckboxMode.MULTI: CheckboxState.TODO,
    CheckboxMode.SIMPLE: CheckboxState.TODO,
    CheckboxMode.EXPLICIT: CheckboxState.UNFILLED,
}

MODE_POSITIVE_STATE = {
    CheckboxMode.MULTI: CheckboxState.DONE,
    CheckboxMode.SIMPLE: CheckboxState.DONE,
    CheckboxMode.EXPLICIT: CheckboxState.YES,
}

MODE_NEGATIVE_STATE = {
    CheckboxMode.MULTI: CheckboxState.TODO,
    CheckboxMode.SIMPLE: CheckboxState.TODO,
    CheckboxMode.EXPLICIT: CheckboxState.NO,
}


@dataclass
class Option:
    """Selectable option of a chooser field."""
    id: str
    label: str


@dataclass
class TableColumn:
    """Column definition of a table field."""
    id: str
    label: str
    type: ColumnType = ColumnType.STRING
    required: bool = False


@dataclass
class Field:
    """
    Schema-level field definition.

    One record for every kind; constraint attributes that do not apply to
    a kind stay at their defaults. ``kind`` never changes after creation.
    """
    id: str
    kind: FieldKind
    label: str
    required: bool = False
    role: str = AGENT_ROLE
    priority: Priority = Priority(DEFAULT_PRIORITY)
    placeholder: Optional[str] = None
    examples: List[str] = field(default_factory=list)
    validators: List[str] = field(default_factory=list)

    # string / string_list / url_list
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    item_min_length: Optional[int] = None
    item_max_length: Optional[int] = None
    unique_items: bool = False

    # number / date / year
    min_value: Any = None
    max_value: Any = None
    integer: bool = False

    # choosers
    options: List[Option] = field(default_factory=list)
    min_selections: Optional[int] = None
    max_selections: Optional[int] = None
    checkbox_mode: CheckboxMode = CheckboxMode.MULTI
    min_done: Optional[int] = None
    approval_mode: ApprovalMode = ApprovalMode.NONE

    # table
    columns: List[TableColumn] = field(default_factory=list)
    min_rows: Optional[int] = None
    max_rows: Optional[int] = None

    @property
    def is_chooser(self) -> bool:
        return self.kind in CHOOSER_KINDS

    def option_ids(self) -> List[str]:
        return [opt.id for opt in self.options]

    def column_ids(self) -> List[str]:
        return [col.id for col in self.columns]

    def default_checkbox_values(self) -> Dict[str, CheckboxState]:
        """All options at the mode's unchecked state."""
        default = MODE_DEFAULT_STATE[self.checkbox_mode]
        return {opt.id: default for opt in self.options}


@dataclass
class CellResponse:
    """Response for a single table cell (cells are never unanswered)."""
    state: AnswerState = AnswerState.ANSWERED
    value: Any = None
    reason: Optional[str] = None


@dataclass
class FieldResponse:
    """
    Answer state plus optional value/reason.

    ``value`` is only present when the state is answered.
    """
    state: AnswerState = AnswerState.UNANSWERED
    value: Any = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.state != AnswerState.ANSWERED and self.value is not None:
            raise ValueError(f"value is only allowed on answered responses, got state={self.state.value}")

    @classmethod
    def answered(cls, value: Any) -> "FieldResponse":
        return cls(AnswerState.ANSWERED, value=value)

    @classmethod
    def skipped(cls, reason: Optional[str] = None) -> "FieldResponse":
        return cls(AnswerState.SKIPPED, reason=reason)

    @classmethod
    def aborted(cls, reason: Optional[str] = None) -> "FieldResponse":
        return cls(AnswerState.ABORTED, reason=reason)


@dataclass
class Note:
    """Free-standing annotation on a form, group or field."""
    id: str
    ref: str
    role: str
    text: str


@dataclass
class DocumentationBlock:
    """Prose block (description / instructions / documentation) tied to a ref."""
    tag: str
    ref: str
    body: str


@dataclass
class Group:
    id: str
    title: Optional[str] = None
    fields: List[Field] = field(default_factory=list)
    validators: List[str] = field(default_factory=list)
    implicit: bool = False


@dataclass
class FormSchema:
    id: str
    title: Optional[str] = None
    groups: List[Group] = field(default_factory=list)

    def iter_fields(self) -> Iterator[Field]:
        for group in self.groups:
            yield from group.fields


@dataclass
class IdEntry:
    """Entry in the form's id index."""
    node_type: NodeType
    parent_id: Optional[str] = None


@dataclass
class TagRegion:
    """Source range ``[start_offset, end_offset)`` replaced by an entity's canonical text."""
    tag_id: str
    tag_type: TagType
    start_offset: int
    end_offset: int
    includes_value: bool = False


@dataclass
class FormMetadata:
    """Frontmatter settings of a form."""
    spec_version: str = DEFAULT_SPEC_VERSION
    title: Optional[str] = None
    description: Optional[str] = None
    run_mode: Optional[str] = None
    roles: List[str] = field(default_factory=lambda: list(DEFAULT_ROLES))
    role_instructions: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ROLE_INSTRUCTIONS))
    harness: Dict[str, int] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedForm:
    """
    Complete in-memory document.

    Mutated only through ``markform.apply.apply_patches``, which returns a
    new instance sharing the immutable schema and source metadata.
    """
    schema: FormSchema
    responses_by_field_id: Dict[str, FieldResponse] = field(default_factory=dict)
    notes: List[Note] = field(default_factory=list)
    docs: List[DocumentationBlock] = field(default_factory=list)
    order_index: List[str] = field(default_factory=list)
    id_index: Dict[str, IdEntry] = field(default_factory=dict)
    metadata: Optional[FormMetadata] = None
    syntax_style: SyntaxStyle = SyntaxStyle.MARKDOC
    raw_source: Optional[str] = None
    tag_regions: Optional[List[TagRegion]] = None

    @property
    def fields(self) -> List[Field]:
        return list(self.schema.iter_fields())

    def get_field(self, field_id: str) -> Optional[Field]:
        entry = self.id_index.get(field_id)
        if entry is None or entry.node_type != NodeType.FIELD:
            return None
        for candidate in self.schema.iter_fields():
            if candidate.id == field_id:
                return candidate
        return None

    def response_for(self, field_id: str) -> FieldResponse:
        return self.responses_by_field_id.get(field_id) or FieldResponse()

    def group_of(self, field_id: str) -> Optional[Group]:
        for group in self.schema.groups:
            if any(f.id == field_id for f in group.fields):
                return group
        return None

    @property
    def roles(self) -> List[str]:
        return self.metadata.roles if self.metadata else list(DEFAULT_ROLES)

    @property
    def role_instructions(self) -> Dict[str, str]:
        if self.metadata:
            return self.metadata.role_instructions
        return dict(DEFAULT_ROLE_INSTRUCTIONS)

    def with_state(self, responses: Dict[str, FieldResponse], notes: List[Note]) -> "ParsedForm":
        """New form sharing schema and source with replaced response/note state."""
        return dataclasses.replace(self, responses_by_field_id=responses, notes=notes)

    def copy_state(self) -> "ParsedForm":
        """New form with deep-copied responses and notes."""
        return self.with_state(
            copy.deepcopy(self.responses_by_field_id),
            copy.deepcopy(self.notes),
        )


def is_value_empty(form_field: Field, value: Any) -> bool:
    """True when ``value`` carries no answer for the field's kind."""
    if value is None:
        return True
    kind = form_field.kind
    if kind in (FieldKind.STRING, FieldKind.URL, FieldKind.DATE):
        return value.strip() == "" if isinstance(value, str) else False
    if kind in (FieldKind.NUMBER, FieldKind.YEAR, FieldKind.SINGLE_SELECT):
        return False
    if kind in (FieldKind.STRING_LIST, FieldKind.URL_LIST, FieldKind.MULTI_SELECT, FieldKind.TABLE):
        return len(value) == 0
    if kind == FieldKind.CHECKBOXES:
        default = MODE_DEFAULT_STATE[form_field.checkbox_mode]
        return all(state == default for state in value.values())
    raise ValueError(f"Unhandled field kind: {kind}")


def note_sort_key(note_id: str):
    """Numeric ordering for n1, n2, ..., n10."""
    digits = note_id[1:] if note_id[:1] == "n" else ""
    if digits.isdigit():
        return (0, int(digits), note_id)
    return (1, 0, note_id)


def index_schema(schema: FormSchema):
    """Build (order_index, id_index) for a schema in declaration order."""
    order_index: List[str] = [schema.id]
    id_index: Dict[str, IdEntry] = {schema.id: IdEntry(NodeType.FORM)}
    for group in schema.groups:
        parent = schema.id
        if not group.implicit:
            order_index.append(group.id)
            id_index[group.id] = IdEntry(NodeType.GROUP, schema.id)
            parent = group.id
        for form_field in group.fields:
            order_index.append(form_field.id)
            id_index[form_field.id] = IdEntry(NodeType.FIELD, parent)
            for opt in form_field.options:
                id_index[f"{form_field.id}.{opt.id}"] = IdEntry(NodeType.OPTION, form_field.id)
            for col in form_field.columns:
                id_index[f"{form_field.id}.{col.id}"] = IdEntry(NodeType.COLUMN, form_field.id)
    return order_index, id_index


def build_form(
    schema: FormSchema,
    responses: Optional[Dict[str, FieldResponse]] = None,
    notes: Optional[List[Note]] = None,
    docs: Optional[List[DocumentationBlock]] = None,
    metadata: Optional[FormMetadata] = None,
) -> ParsedForm:
    """Programmatic form without source text; serialization regenerates it in full."""
    order_index, id_index = index_schema(schema)
    return ParsedForm(
        schema=schema,
        responses_by_field_id=dict(responses or {}),
        notes=list(notes or []),
        docs=list(docs or []),
        order_index=order_index,
        id_index=id_index,
        metadata=metadata,
    )
