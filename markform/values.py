"""
Scalar value checks shared by the parser, validator and patch engine.
"""

import datetime
import re
from typing import Any, Optional

from pydantic import AnyUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .model import ColumnType, FieldKind

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_URL_ADAPTER = TypeAdapter(AnyUrl)


def parse_iso_date(value: Any) -> Optional[datetime.date]:
    """Calendar date for a ``YYYY-MM-DD`` string, or None."""
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        return None


def is_valid_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip() or any(c.isspace() for c in value):
        return False
    try:
        _URL_ADAPTER.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def text_parses_as(kind: FieldKind, text: str) -> bool:
    """Whether ``text`` is a well-formed value of the field kind's underlying type."""
    if kind == FieldKind.NUMBER:
        try:
            float(text)
        except ValueError:
            return False
        return True
    if kind == FieldKind.YEAR:
        try:
            int(text)
        except ValueError:
            return False
        return True
    if kind == FieldKind.DATE:
        return parse_iso_date(text) is not None
    if kind in (FieldKind.URL, FieldKind.URL_LIST):
        return is_valid_url(text)
    return True


def cell_matches_type(value: Any, column_type: ColumnType) -> bool:
    if column_type == ColumnType.STRING:
        return isinstance(value, str)
    if column_type == ColumnType.NUMBER:
        return is_number(value)
    if column_type == ColumnType.YEAR:
        return is_integer(value)
    if column_type == ColumnType.DATE:
        return parse_iso_date(value) is not None
    if column_type == ColumnType.URL:
        return is_valid_url(value)
    raise ValueError(f"Unhandled column type: {column_type}")
