"""
Patch wire format.

A patch is a JSON object whose ``op`` key selects one variant. Keys are
camelCase on the wire (``fieldId``, ``noteId``); snake_case is accepted
on input as well.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from .model import FieldKind


class PatchModel(BaseModel):
    """Common configuration of all patch variants."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "forbid"

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _reject_boolean(value: Any) -> Any:
    # bool is an int subclass and would otherwise be accepted as 0/1
    if isinstance(value, bool):
        raise ValueError("expected a number, got a boolean")
    return value


# ==================== VALUE PATCHES ====================

class SetStringPatch(PatchModel):
    op: Literal["set_string"] = "set_string"
    field_id: str = Field(..., description="Target field id")
    value: Optional[str] = Field(default=None, description="Text; empty or null clears the field")


class SetNumberPatch(PatchModel):
    op: Literal["set_number"] = "set_number"
    field_id: str = Field(..., description="Target field id")
    value: Optional[Union[int, float]] = None

    _no_booleans = field_validator("value", mode="before")(_reject_boolean)


class SetDatePatch(PatchModel):
    op: Literal["set_date"] = "set_date"
    field_id: str = Field(..., description="Target field id")
    value: Optional[str] = Field(default=None, description="ISO date (YYYY-MM-DD)")


class SetYearPatch(PatchModel):
    op: Literal["set_year"] = "set_year"
    field_id: str = Field(..., description="Target field id")
    value: Optional[int] = None

    _no_booleans = field_validator("value", mode="before")(_reject_boolean)


class SetStringListPatch(PatchModel):
    op: Literal["set_string_list"] = "set_string_list"
    field_id: str = Field(..., description="Target field id")
    value: Optional[Union[List[str], str]] = Field(default=None, description="Items; a single string is wrapped")


class SetUrlPatch(PatchModel):
    op: Literal["set_url"] = "set_url"
    field_id: str = Field(..., description="Target field id")
    value: Optional[str] = None


class SetUrlListPatch(PatchModel):
    op: Literal["set_url_list"] = "set_url_list"
    field_id: str = Field(..., description="Target field id")
    value: Optional[Union[List[str], str]] = Field(default=None, description="URLs; a single URL is wrapped")


class SetSingleSelectPatch(PatchModel):
    op: Literal["set_single_select"] = "set_single_select"
    field_id: str = Field(..., description="Target field id")
    value: Optional[str] = Field(default=None, description="Selected option id")


class SetMultiSelectPatch(PatchModel):
    op: Literal["set_multi_select"] = "set_multi_select"
    field_id: str = Field(..., description="Target field id")
    value: Optional[Union[List[str], str]] = Field(default=None, description="Selected option ids")


class SetCheckboxesPatch(PatchModel):
    op: Literal["set_checkboxes"] = "set_checkboxes"
    field_id: str = Field(..., description="Target field id")
    value: Optional[Union[Dict[str, Union[bool, str]], List[Any]]] = Field(
        default=None,
        description="Option id -> state (or boolean); a list of option ids marks them done/yes",
    )


class SetTablePatch(PatchModel):
    op: Literal["set_table"] = "set_table"
    field_id: str = Field(..., description="Target field id")
    value: Optional[List[Dict[str, Any]]] = Field(default=None, description="Rows mapping column id to cell value")


# ==================== STATE PATCHES ====================

class ClearFieldPatch(PatchModel):
    op: Literal["clear_field"] = "clear_field"
    field_id: str


class SkipFieldPatch(PatchModel):
    op: Literal["skip_field"] = "skip_field"
    field_id: str
    role: str
    reason: Optional[str] = None


class AbortFieldPatch(PatchModel):
    op: Literal["abort_field"] = "abort_field"
    field_id: str
    role: str
    reason: Optional[str] = None


# ==================== NOTE PATCHES ====================

class AddNotePatch(PatchModel):
    op: Literal["add_note"] = "add_note"
    ref: str = Field(..., description="Id of the form, group, field or option the note is about")
    role: str
    text: str


class RemoveNotePatch(PatchModel):
    op: Literal["remove_note"] = "remove_note"
    note_id: str


Patch = Annotated[
    Union[
        SetStringPatch,
        SetNumberPatch,
        SetDatePatch,
        SetYearPatch,
        SetStringListPatch,
        SetUrlPatch,
        SetUrlListPatch,
        SetSingleSelectPatch,
        SetMultiSelectPatch,
        SetCheckboxesPatch,
        SetTablePatch,
        ClearFieldPatch,
        SkipFieldPatch,
        AbortFieldPatch,
        AddNotePatch,
        RemoveNotePatch,
    ],
    Field(discriminator="op"),
]

PATCH_ADAPTER = TypeAdapter(Patch)

# set_* operation -> field kind it applies to
SET_OPS: Dict[str, FieldKind] = {
    "set_string": FieldKind.STRING,
    "set_number": FieldKind.NUMBER,
    "set_date": FieldKind.DATE,
    "set_year": FieldKind.YEAR,
    "set_string_list": FieldKind.STRING_LIST,
    "set_url": FieldKind.URL,
    "set_url_list": FieldKind.URL_LIST,
    "set_single_select": FieldKind.SINGLE_SELECT,
    "set_multi_select": FieldKind.MULTI_SELECT,
    "set_checkboxes": FieldKind.CHECKBOXES,
    "set_table": FieldKind.TABLE,
}

_SET_PATCH_CLASSES = {
    "set_string": SetStringPatch,
    "set_number": SetNumberPatch,
    "set_date": SetDatePatch,
    "set_year": SetYearPatch,
    "set_string_list": SetStringListPatch,
    "set_url": SetUrlPatch,
    "set_url_list": SetUrlListPatch,
    "set_single_select": SetSingleSelectPatch,
    "set_multi_select": SetMultiSelectPatch,
    "set_checkboxes": SetCheckboxesPatch,
    "set_table": SetTablePatch,
}


def set_op_for_kind(kind: FieldKind) -> str:
    """Name of the set_* operation for a field kind."""
    for op, op_kind in SET_OPS.items():
        if op_kind == kind:
            return op
    raise ValueError(f"Unhandled field kind: {kind}")


def make_set_patch(kind: FieldKind, field_id: str, value: Any) -> PatchModel:
    """Build the set_* patch matching a field kind."""
    return _SET_PATCH_CLASSES[set_op_for_kind(kind)](field_id=field_id, value=value)


def parse_patch(data: Union[PatchModel, Dict[str, Any]]) -> PatchModel:
    """
    Validate a wire-format dict into a patch model.

    Raises:
        pydantic.ValidationError: Unknown op or malformed payload
    """
    if isinstance(data, PatchModel):
        return data
    return PATCH_ADAPTER.validate_python(data)


def patch_field_id(patch: PatchModel) -> Optional[str]:
    """Field the patch targets, if any."""
    return getattr(patch, "field_id", None)
