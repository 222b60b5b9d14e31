"""
Markdown table codec for table fields.

A table value is a list of rows, each mapping column id to a
CellResponse. Cells hold typed values (number/year columns are numeric
when they parse) or a skip/abort sentinel.
"""

import re
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .model import AnswerState, CellResponse, ColumnType, TableColumn
from .sentinels import format_sentinel, parse_sentinel

_SEPARATOR_CELL_RE = re.compile(r"^:?-{1,}:?$")
_ESCAPED_PIPE_PLACEHOLDER = "\x00PIPE\x00"
_SENTINEL_TOKEN_RE = re.compile(r"(?<=\s)\|(SKIP|ABORT)\|(?=\s|$)")


def escape_cell(value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ValueError("Cell value cannot contain newlines")
    return value.replace("|", "\\|")


def unescape_cell(value: str) -> str:
    return value.replace("\\|", "|")


def split_row(line: str) -> List[str]:
    """Split a ``| a | b |`` row into raw (still escaped) cell texts."""
    body = line.strip().replace("\\|", _ESCAPED_PIPE_PLACEHOLDER)
    # |SKIP| / |ABORT| cells carry their own pipes
    body = _SENTINEL_TOKEN_RE.sub(lambda m: f"\x00{m.group(1)}\x00", body)
    if body.startswith("|"):
        body = body[1:]
    if body.endswith("|"):
        body = body[:-1]
    return [_restore(cell).strip() for cell in body.split("|")]


def _restore(cell: str) -> str:
    cell = cell.replace(_ESCAPED_PIPE_PLACEHOLDER, "\\|")
    return re.sub(r"\x00(SKIP|ABORT)\x00", r"|\1|", cell)


def parse_cell(text: str, column: TableColumn) -> CellResponse:
    """Typed cell response; unparseable numbers are kept as text for the validator."""
    sentinel = parse_sentinel(text)
    if sentinel is not None:
        return CellResponse(state=sentinel.state, reason=sentinel.reason)
    value = unescape_cell(text).strip()
    if value == "":
        return CellResponse(state=AnswerState.ANSWERED, value=None)
    return CellResponse(state=AnswerState.ANSWERED, value=coerce_cell_value(value, column.type))


def coerce_cell_value(value: Any, column_type: ColumnType) -> Any:
    if not isinstance(value, str):
        return value
    if column_type == ColumnType.NUMBER:
        try:
            number = float(value)
        except ValueError:
            return value
        return int(number) if number.is_integer() and "." not in value and "e" not in value.lower() else number
    if column_type == ColumnType.YEAR:
        try:
            return int(value)
        except ValueError:
            return value
    return value


def parse_table(content: str, columns: List[TableColumn], field_id: str) -> List[Dict[str, CellResponse]]:
    """
    Parse a markdown table (header, separator, rows) into row responses.

    Raises:
        ValidationError: When header or row widths do not match the columns
    """
    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        return []

    header = split_row(lines[0])
    if len(header) != len(columns):
        raise ValidationError(
            f"Table '{field_id}' header has {len(header)} columns, expected {len(columns)}",
            field_id=field_id,
        )
    body = lines[1:]
    if body and all(_SEPARATOR_CELL_RE.match(cell) for cell in split_row(body[0])):
        body = body[1:]

    rows = []
    for number, line in enumerate(body, start=1):
        cells = split_row(line)
        if len(cells) != len(columns):
            raise ValidationError(
                f"Table '{field_id}' row {number} has {len(cells)} cells, expected {len(columns)}",
                field_id=field_id,
            )
        rows.append({col.id: parse_cell(cell, col) for col, cell in zip(columns, cells)})
    return rows


def format_cell(cell: Optional[CellResponse]) -> str:
    if cell is None:
        return ""
    if cell.state in (AnswerState.SKIPPED, AnswerState.ABORTED):
        return format_sentinel(cell.state, cell.reason)
    if cell.value is None:
        return ""
    return escape_cell(format_scalar(cell.value))


def format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_table(rows: List[Dict[str, CellResponse]], columns: List[TableColumn]) -> str:
    header = "| " + " | ".join(escape_cell(col.label) for col in columns) + " |"
    separator = "|" + "|".join("---" for _ in columns) + "|"
    lines = [header, separator]
    for row in rows:
        lines.append("| " + " | ".join(format_cell(row.get(col.id)) for col in columns) + " |")
    return "\n".join(lines)
