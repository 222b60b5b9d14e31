"""
Form serializer: ParsedForm -> document text.

Two strategies:

- Content-preserving splice (default): when the form was parsed from text
  and its structure is unchanged, only the form/group open tags, field
  tags, notes and documentation blocks are re-rendered in place. Prose
  between tags survives byte for byte.
- Full regeneration: canonical layout walked from ``order_index``. Used
  for programmatic forms, after structural changes, or on request.

The output is re-rendered in the document's original syntax style and
prefixed with canonical frontmatter.
"""

import re
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from config.constants import AGENT_ROLE, DEFAULT_PRIORITY, VALUE_FENCE_INFO
from config.logging_config import get_logger

from .fields import FIELD_ATTRIBUTES
from .frontmatter import render_frontmatter
from .model import (
    STATE_MARKERS,
    AnswerState,
    ApprovalMode,
    CheckboxMode,
    ColumnType,
    DocumentationBlock,
    Field,
    FieldKind,
    FieldResponse,
    Group,
    MODE_DEFAULT_STATE,
    NodeType,
    Note,
    ParsedForm,
    TagType,
    note_sort_key,
)
from .parse import doc_region_id
from .sentinels import format_sentinel
from .syntax import CodeMask, render_in_style
from .table import format_scalar, render_table

logger = get_logger(__name__)

_FORM_CLOSE_RE = re.compile(r"\{%\s*/form\s*%\}")
_BACKTICK_RUN_RE = re.compile(r"`+")

# Kind-specific document attributes, in addition to the common ones
KIND_ATTRIBUTES: Dict[FieldKind, Tuple[str, ...]] = {
    FieldKind.STRING: ("minLength", "maxLength", "pattern"),
    FieldKind.NUMBER: ("min", "max", "integer"),
    FieldKind.DATE: ("min", "max"),
    FieldKind.YEAR: ("min", "max"),
    FieldKind.STRING_LIST: ("minItems", "maxItems", "itemMinLength", "itemMaxLength", "uniqueItems"),
    FieldKind.URL: (),
    FieldKind.URL_LIST: ("minItems", "maxItems", "uniqueItems"),
    FieldKind.SINGLE_SELECT: (),
    FieldKind.MULTI_SELECT: ("minSelections", "maxSelections"),
    FieldKind.CHECKBOXES: ("checkboxMode", "minDone", "approvalMode"),
    FieldKind.TABLE: ("minRows", "maxRows"),
}

# Values equal to these are omitted from the tag
_ATTRIBUTE_DEFAULTS: Dict[str, Any] = {
    "required": False,
    "role": AGENT_ROLE,
    "priority": DEFAULT_PRIORITY,
    "uniqueItems": False,
    "integer": False,
    "checkboxMode": CheckboxMode.MULTI.value,
    "approvalMode": ApprovalMode.NONE.value,
}


def serialize(form: ParsedForm, preserve_content: bool = True) -> str:
    """
    Render a form as a Markform document.

    Args:
        form: Form to render
        preserve_content: Splice into the original source when possible

    Returns:
        Document text in the form's original syntax style
    """
    if preserve_content and not has_structural_change(form):
        body = _splice(form)
        mode = "splice"
    else:
        body = _regenerate(form)
        mode = "regenerate"
    logger.debug(f"Serialized form '{form.schema.id}' ({mode}, {form.syntax_style.value})")
    return render_frontmatter(form.metadata) + render_in_style(body, form.syntax_style)


def has_structural_change(form: ParsedForm) -> bool:
    """
    True when splicing is unsafe: no source, or the form/group/field set
    or order no longer matches the source regions.
    """
    if form.raw_source is None or form.tag_regions is None:
        return True

    structural = sorted(
        (r for r in form.tag_regions if r.tag_type in (TagType.FORM, TagType.GROUP, TagType.FIELD)),
        key=lambda r: r.start_offset,
    )
    region_ids = [r.tag_id for r in structural]
    expected = [
        entity_id for entity_id in form.order_index
        if form.id_index.get(entity_id) is not None
        and form.id_index[entity_id].node_type in (NodeType.FORM, NodeType.GROUP, NodeType.FIELD)
    ]
    if region_ids != expected:
        return True

    current = {form.schema.id}
    current.update(g.id for g in form.schema.groups if not g.implicit)
    current.update(f.id for f in form.schema.iter_fields())
    if set(region_ids) != current:
        return True

    doc_regions = {r.tag_id for r in form.tag_regions if r.tag_type == TagType.DOCUMENTATION}
    return doc_regions != {doc_region_id(block) for block in form.docs}


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _splice(form: ParsedForm) -> str:
    source = form.raw_source
    groups = {g.id: g for g in form.schema.groups}
    fields = {f.id: f for f in form.schema.iter_fields()}
    docs = {doc_region_id(block): block for block in form.docs}
    notes = {note.id: note for note in form.notes}
    seen_notes = set()

    edits: List[Tuple[int, int, str]] = []
    for region in form.tag_regions:
        if region.tag_type == TagType.FORM:
            text = render_form_open(form)
        elif region.tag_type == TagType.GROUP:
            text = render_group_open(groups[region.tag_id])
        elif region.tag_type == TagType.FIELD:
            text = serialize_field(fields[region.tag_id], form.response_for(region.tag_id))
        elif region.tag_type == TagType.DOCUMENTATION:
            text = render_doc(docs[region.tag_id])
        else:
            note = notes.get(region.tag_id)
            if note is None:
                end = region.end_offset
                # Swallow the blank line that separated the removed note
                while end < len(source) and end - region.end_offset < 2 and source[end] == "\n":
                    end += 1
                edits.append((region.start_offset, end, ""))
                continue
            seen_notes.add(note.id)
            text = render_note(note)
        edits.append((region.start_offset, region.end_offset, text))

    new_notes = sorted(
        (note for note in form.notes if note.id not in seen_notes),
        key=lambda n: note_sort_key(n.id),
    )
    if new_notes:
        close_at = _form_close_offset(source)
        edits.append((close_at, close_at, "".join(render_note(n) + "\n\n" for n in new_notes)))

    result = source
    for start, end, text in sorted(edits, key=lambda e: (e[0], e[1]), reverse=True):
        result = result[:start] + text + result[end:]
    return result


def _regenerate(form: ParsedForm) -> str:
    docs_by_ref: Dict[str, List[DocumentationBlock]] = defaultdict(list)
    for block in form.docs:
        docs_by_ref[block.ref].append(block)
    groups = {g.id: g for g in form.schema.groups}
    fields = {f.id: f for f in form.schema.iter_fields()}

    blocks = [render_form_open(form)]
    blocks.extend(render_doc(d) for d in docs_by_ref.get(form.schema.id, []))

    open_group: Optional[str] = None
    for entity_id in form.order_index:
        entry = form.id_index.get(entity_id)
        if entry is None:
            continue
        if entry.node_type == NodeType.GROUP and entity_id in groups:
            if open_group is not None:
                blocks.append("{% /group %}")
            blocks.append(render_group_open(groups[entity_id]))
            blocks.extend(render_doc(d) for d in docs_by_ref.get(entity_id, []))
            open_group = entity_id
        elif entry.node_type == NodeType.FIELD and entity_id in fields:
            if entry.parent_id != open_group and open_group is not None:
                blocks.append("{% /group %}")
                open_group = None
            blocks.extend(render_doc(d) for d in docs_by_ref.get(entity_id, []))
            blocks.append(serialize_field(fields[entity_id], form.response_for(entity_id)))
    if open_group is not None:
        blocks.append("{% /group %}")

    blocks.extend(render_note(n) for n in sorted(form.notes, key=lambda n: note_sort_key(n.id)))
    blocks.append("{% /form %}")
    return "\n\n".join(blocks) + "\n"


def _form_close_offset(source: str) -> int:
    mask = CodeMask(source)
    matches = [m.start() for m in _FORM_CLOSE_RE.finditer(source) if not mask.contains(m.start())]
    return matches[-1] if matches else len(source)


# ---------------------------------------------------------------------------
# Tag rendering
# ---------------------------------------------------------------------------

def format_attribute_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return format_scalar(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_attribute_value(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {format_attribute_value(v)}" for k, v in value.items()) + "}"
    raise TypeError(f"Cannot render attribute value of type {type(value).__name__}")


def render_tag(name: str, attributes: List[Tuple[str, Any]]) -> str:
    parts = [name] + [f"{key}={format_attribute_value(value)}" for key, value in attributes]
    return "{% " + " ".join(parts) + " %}"


def render_form_open(form: ParsedForm) -> str:
    attrs: List[Tuple[str, Any]] = [("id", form.schema.id)]
    if form.schema.title is not None:
        attrs.append(("title", form.schema.title))
    return render_tag("form", attrs)


def render_group_open(group: Group) -> str:
    attrs: List[Tuple[str, Any]] = [("id", group.id)]
    if group.title is not None:
        attrs.append(("title", group.title))
    if group.validators:
        attrs.append(("validate", list(group.validators)))
    return render_tag("group", attrs)


def render_note(note: Note) -> str:
    open_tag = render_tag("note", [("id", note.id), ("ref", note.ref), ("role", note.role)])
    return f"{open_tag}\n{note.text}\n{{% /note %}}"


def render_doc(block: DocumentationBlock) -> str:
    open_tag = render_tag(block.tag, [("ref", block.ref)])
    return f"{open_tag}\n{block.body}\n{{% /{block.tag} %}}"


def field_attributes(form_field: Field, response: FieldResponse) -> List[Tuple[str, Any]]:
    """Canonical attribute list: kind, id, label, then the rest alphabetically."""
    names = ["required", "role", "priority", "placeholder", "examples", "validate"]
    names.extend(KIND_ATTRIBUTES[form_field.kind])

    extra: Dict[str, Any] = {}
    for name in names:
        value = getattr(form_field, FIELD_ATTRIBUTES[name])
        if isinstance(value, Enum):
            value = value.value
        if value is None or value == [] or _ATTRIBUTE_DEFAULTS.get(name, object()) == value:
            continue
        extra[name] = value

    if form_field.kind == FieldKind.CHECKBOXES and form_field.checkbox_mode == CheckboxMode.EXPLICIT:
        extra.pop("required", None)
    if form_field.kind == FieldKind.TABLE:
        extra.update(_column_attributes(form_field))
    if response.state in (AnswerState.SKIPPED, AnswerState.ABORTED):
        extra["state"] = response.state.value

    attrs: List[Tuple[str, Any]] = [
        ("kind", form_field.kind.value),
        ("id", form_field.id),
        ("label", form_field.label),
    ]
    return attrs + sorted(extra.items())


def _column_attributes(form_field: Field) -> Dict[str, Any]:
    columns = form_field.columns
    attrs: Dict[str, Any] = {"columnIds": [c.id for c in columns]}
    if any(c.label != c.id for c in columns):
        attrs["columnLabels"] = [c.label for c in columns]
    if any(c.type != ColumnType.STRING or c.required for c in columns):
        attrs["columnTypes"] = [
            {"type": c.type.value, "required": True} if c.required else c.type.value
            for c in columns
        ]
    return attrs


def serialize_field(form_field: Field, response: FieldResponse) -> str:
    """Canonical text of one field tag including its options and value fence."""
    open_tag = render_tag("field", field_attributes(form_field, response))
    close_tag = "{% /field %}"

    parts = []
    if form_field.is_chooser:
        parts.append(_render_options(form_field, response))

    fence_text = None
    if response.state == AnswerState.ANSWERED and not form_field.is_chooser:
        fence_text = format_value(form_field, response.value)
    elif response.state in (AnswerState.SKIPPED, AnswerState.ABORTED) and response.reason:
        fence_text = format_sentinel(response.state, response.reason)
    if fence_text is not None:
        parts.append(value_fence(fence_text))

    if not parts:
        return open_tag + close_tag
    return open_tag + "\n" + "\n".join(parts) + "\n" + close_tag


def value_fence(content: str) -> str:
    """Fence ``content``, lengthening the fence past any backtick run inside."""
    longest = max((len(run) for run in _BACKTICK_RUN_RE.findall(content)), default=0)
    ticks = "`" * max(3, longest + 1)
    return f"{ticks}{VALUE_FENCE_INFO}\n{content}\n{ticks}"


def format_value(form_field: Field, value: Any) -> str:
    """Fence content for a text-entry or table value."""
    kind = form_field.kind
    if kind in (FieldKind.STRING, FieldKind.DATE, FieldKind.URL):
        return str(value)
    if kind in (FieldKind.NUMBER, FieldKind.YEAR):
        return format_scalar(value)
    if kind in (FieldKind.STRING_LIST, FieldKind.URL_LIST):
        return "\n".join(str(item) for item in value)
    if kind == FieldKind.TABLE:
        return render_table(value, form_field.columns)
    raise ValueError(f"Field kind {kind.value} has no fenced value")


def _render_options(form_field: Field, response: FieldResponse) -> str:
    answered = response.state == AnswerState.ANSWERED
    value = response.value if answered else None
    lines = []
    for opt in form_field.options:
        if form_field.kind == FieldKind.SINGLE_SELECT:
            marker = "x" if value == opt.id else " "
        elif form_field.kind == FieldKind.MULTI_SELECT:
            marker = "x" if value and opt.id in value else " "
        else:
            default = MODE_DEFAULT_STATE[form_field.checkbox_mode]
            state = (value or {}).get(opt.id, default)
            marker = STATE_MARKERS[state]
        lines.append(f"- [{marker}] {opt.label} {{% #{opt.id} %}}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Plain markdown export
# ---------------------------------------------------------------------------

def serialize_raw_markdown(form: ParsedForm) -> str:
    """
    Human-readable markdown without any Markform markup.

    Groups become headings, fields become bold labels followed by their
    value; skipped/aborted and empty fields are shown in italics.
    """
    title = form.schema.title or (form.metadata.title if form.metadata else None) or form.schema.id
    lines = [f"# {title}", ""]
    for group in form.schema.groups:
        if not group.implicit:
            lines.extend([f"## {group.title or group.id}", ""])
        for form_field in group.fields:
            lines.append(f"**{form_field.label}**")
            lines.append("")
            lines.append(_raw_value(form_field, form.response_for(form_field.id)))
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _raw_value(form_field: Field, response: FieldResponse) -> str:
    if response.state in (AnswerState.SKIPPED, AnswerState.ABORTED):
        suffix = f": {response.reason}" if response.reason else ""
        return f"_({response.state.value}{suffix})_"
    if response.state != AnswerState.ANSWERED:
        return "_(empty)_"

    kind = form_field.kind
    if kind == FieldKind.SINGLE_SELECT:
        labels = {opt.id: opt.label for opt in form_field.options}
        return labels.get(response.value, response.value)
    if kind == FieldKind.MULTI_SELECT:
        labels = {opt.id: opt.label for opt in form_field.options}
        return "\n".join(f"- {labels.get(v, v)}" for v in response.value)
    if kind == FieldKind.CHECKBOXES:
        default = MODE_DEFAULT_STATE[form_field.checkbox_mode]
        return "\n".join(
            f"- [{STATE_MARKERS[response.value.get(opt.id, default)]}] {opt.label}"
            for opt in form_field.options
        )
    if kind in (FieldKind.STRING_LIST, FieldKind.URL_LIST):
        return "\n".join(f"- {item}" for item in response.value)
    return format_value(form_field, response.value)
