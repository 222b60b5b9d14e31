#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Form parser: document text -> ParsedForm.

Parsing is all-or-nothing: any ParseError or ValidationError aborts and
no partial form is returned.

Usage:
    form = parse_form(text)
    form.response_for("company_name").state
"""

from typing import Dict, List, Optional, Set, Tuple

from config.constants import IMPLICIT_GROUP_ID
from config.logging_config import get_logger

from .errors import ParseError, ValidationError
from .fields import is_field_tag, parse_field
from .frontmatter import parse_frontmatter
from .model import (
    DocumentationBlock,
    FieldResponse,
    FormSchema,
    Group,
    IdEntry,
    NodeType,
    Note,
    ParsedForm,
    SyntaxStyle,
    TagRegion,
    TagType,
)
from .scanner import TagNode, scan_tags
from .syntax import detect_syntax_style, normalize_to_markdoc

logger = get_logger(__name__)

FORM_TAG = "form"
GROUP_TAG = "group"
NOTE_TAG = "note"
DOC_TAGS = ("description", "instructions", "documentation")


def parse_form(text: str) -> ParsedForm:
    """
    Parse a Markform document.

    Args:
        text: Full document, optionally starting with YAML frontmatter

    Returns:
        ParsedForm with raw_source (normalized body) and tag_regions set

    Raises:
        ParseError: Malformed frontmatter or markup
        ValidationError: Well-formed markup violating form semantics
    """
    metadata, body, line_offset = parse_frontmatter(text)
    style = detect_syntax_style(body)
    source = normalize_to_markdoc(body) if style == SyntaxStyle.HTML_COMMENT else body

    roots = scan_tags(source, line_offset)
    builder = _FormBuilder(source)
    form = builder.build(roots)
    form.metadata = metadata
    form.syntax_style = style

    logger.info(
        f"Parsed form '{form.schema.id}': {len(form.fields)} fields, "
        f"{len(form.schema.groups)} groups, {len(form.notes)} notes ({style.value} syntax)"
    )
    return form


class _FormBuilder:
    """Walks the tag tree and collects schema, responses and regions."""

    def __init__(self, source: str):
        self.source = source
        self.groups: List[Group] = []
        self.responses: Dict[str, FieldResponse] = {}
        self.notes: List[Note] = []
        self.docs: List[DocumentationBlock] = []
        self.order_index: List[str] = []
        self.id_index: Dict[str, IdEntry] = {}
        self.regions: List[TagRegion] = []
        self._implicit_group: Optional[Group] = None
        self._note_nodes: List[Tuple[Note, TagNode]] = []
        self._doc_nodes: List[Tuple[DocumentationBlock, TagNode]] = []
        self._doc_keys: Set[Tuple[str, str]] = set()
        self.form_id = ""

    def build(self, roots: List[TagNode]) -> ParsedForm:
        forms = [node for node in roots if node.name == FORM_TAG]
        for node in roots:
            if node.name != FORM_TAG:
                raise ParseError(
                    f"Tag '{node.name}' must be inside the form tag",
                    line=node.line, column=node.column,
                )
        if not forms:
            raise ParseError("No form tag found")
        if len(forms) > 1:
            raise ParseError("Multiple form tags found; only one is allowed", line=forms[1].line, column=forms[1].column)

        form_node = forms[0]
        form_id = self._require_attr(form_node, "id", "form")
        self._reject_state(form_node, "form", form_id)
        self._register(form_id, NodeType.FORM, None, form_node)
        self.regions.append(TagRegion(form_id, TagType.FORM, form_node.start, form_node.open_end))
        self.form_id = form_id

        for child in form_node.children:
            if child.name == GROUP_TAG:
                self._group(child)
            elif is_field_tag(child.name):
                self._field(child, None)
            else:
                self._common_child(child, "form")

        self._check_refs()

        schema = FormSchema(id=form_id, title=form_node.attributes.get("title"), groups=self.groups)
        return ParsedForm(
            schema=schema,
            responses_by_field_id=self.responses,
            notes=self.notes,
            docs=self.docs,
            order_index=self.order_index,
            id_index=self.id_index,
            raw_source=self.source,
            tag_regions=self.regions,
        )

    def _group(self, node: TagNode):
        group_id = self._require_attr(node, "id", "group")
        self._reject_state(node, "group", group_id)
        validators = node.attributes.get("validate") or []
        group = Group(
            id=group_id,
            title=node.attributes.get("title"),
            validators=[validators] if isinstance(validators, str) else list(validators),
        )
        self._register(group_id, NodeType.GROUP, self.form_id, node)
        self.regions.append(TagRegion(group_id, TagType.GROUP, node.start, node.open_end))
        self.groups.append(group)

        for child in node.children:
            if is_field_tag(child.name):
                self._field(child, group)
            elif child.name == GROUP_TAG:
                raise ParseError(f"Nested groups are not allowed (group '{group_id}')", line=child.line, column=child.column)
            else:
                self._common_child(child, "group")

    def _field(self, node: TagNode, group: Optional[Group]):
        if node.children:
            child = node.children[0]
            raise ParseError(
                f"Unexpected tag '{child.name}' inside a field",
                line=child.line, column=child.column,
            )
        form_field, response = parse_field(node, self.source)
        if group is None:
            if self._implicit_group is None:
                self._implicit_group = Group(id=IMPLICIT_GROUP_ID, implicit=True)
                self.groups.append(self._implicit_group)
            group = self._implicit_group

        parent = self.form_id if group.implicit else group.id
        self._register(form_field.id, NodeType.FIELD, parent, node, field_id=form_field.id)
        for opt in form_field.options:
            self._register(f"{form_field.id}.{opt.id}", NodeType.OPTION, form_field.id, node, index_order=False)
        for col in form_field.columns:
            self._register(f"{form_field.id}.{col.id}", NodeType.COLUMN, form_field.id, node, index_order=False)

        group.fields.append(form_field)
        self.responses[form_field.id] = response
        self.regions.append(TagRegion(form_field.id, TagType.FIELD, node.start, node.end, includes_value=True))

    def _common_child(self, node: TagNode, parent: str):
        if node.name == NOTE_TAG:
            self._note(node)
        elif node.name in DOC_TAGS:
            self._doc(node)
        else:
            raise ParseError(f"Unknown tag '{node.name}' inside {parent}", line=node.line, column=node.column)

    def _note(self, node: TagNode):
        note_id = self._require_attr(node, "id", "note")
        ref = self._require_attr(node, "ref", "note")
        role = self._require_attr(node, "role", "note")
        if "state" in node.attributes:
            raise ValidationError(
                f"Note '{note_id}' has a state attribute; notes do not carry state",
                line=node.line, note_id=note_id,
            )
        if node.children:
            raise ParseError(f"Unexpected tag inside note '{note_id}'", line=node.line, note_id=note_id)
        if any(existing.id == note_id for existing in self.notes):
            raise ValidationError(f"Duplicate note id '{note_id}'", line=node.line, note_id=note_id)
        text = node.inner_text(self.source).strip()
        if not text:
            raise ValidationError(f"Note '{note_id}' has no text", line=node.line, note_id=note_id)

        note = Note(id=note_id, ref=ref, role=role, text=text)
        self.notes.append(note)
        self._note_nodes.append((note, node))
        self.regions.append(TagRegion(note_id, TagType.NOTE, node.start, node.end))

    def _doc(self, node: TagNode):
        ref = self._require_attr(node, "ref", node.name)
        key = (ref, node.name)
        if key in self._doc_keys:
            raise ValidationError(f"Duplicate {node.name} block for '{ref}'", line=node.line)
        if node.children:
            raise ParseError(f"Unexpected tag inside {node.name} block", line=node.line)
        self._doc_keys.add(key)
        block = DocumentationBlock(tag=node.name, ref=ref, body=node.inner_text(self.source).strip())
        self.docs.append(block)
        self._doc_nodes.append((block, node))
        self.regions.append(TagRegion(doc_region_id(block), TagType.DOCUMENTATION, node.start, node.end))

    def _check_refs(self):
        for note, node in self._note_nodes:
            if note.ref not in self.id_index:
                raise ValidationError(
                    f"Note '{note.id}' references unknown id '{note.ref}'",
                    line=node.line, note_id=note.id,
                )
        for block, node in self._doc_nodes:
            if block.ref not in self.id_index:
                raise ValidationError(
                    f"{block.tag} block references unknown id '{block.ref}'",
                    line=node.line,
                )

    def _register(self, entity_id: str, node_type: NodeType, parent: Optional[str], node: TagNode,
                  field_id: Optional[str] = None, index_order: bool = True):
        if entity_id in self.id_index:
            raise ValidationError(f"Duplicate id '{entity_id}'", line=node.line, field_id=field_id)
        self.id_index[entity_id] = IdEntry(node_type=node_type, parent_id=parent)
        if index_order:
            self.order_index.append(entity_id)

    @staticmethod
    def _require_attr(node: TagNode, name: str, what: str) -> str:
        value = node.attributes.get(name)
        if not isinstance(value, str) or not value:
            raise ParseError(f"{what} tag missing required '{name}' attribute", line=node.line, column=node.column)
        return value

    @staticmethod
    def _reject_state(node: TagNode, what: str, entity_id: str):
        if "state" in node.attributes:
            raise ValidationError(f"state attribute is not allowed on {what} '{entity_id}'", line=node.line)


def doc_region_id(block: DocumentationBlock) -> str:
    """Region key of a documentation block (unique per ref and tag)."""
    return f"{block.ref}#{block.tag}"
