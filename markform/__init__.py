"""
Markform - form documents in Markdown.

Parse a form, inspect what is missing, apply patches, serialize back:

    form = parse_form(text)
    result = inspect(form)
    applied = apply_patches(form, [{"op": "set_string", "fieldId": "name", "value": "Ada"}])
    text = serialize(applied.form)
"""

from .apply import ApplyResult, ApplyStatus, PatchRejection, PatchWarning, apply_patches
from .coercion import CoercionResult, InputContextResult, coerce_input_context, coerce_to_field_patch
from .errors import HarnessConfigError, MarkformError, ParseError, ValidationError
from .inspect import (
    InspectIssue,
    InspectResult,
    IssueReason,
    IssueScope,
    IssueSeverity,
    filter_issues_by_scope,
    find_blocking_checkpoint,
    get_fields_for_roles,
    inspect,
)
from .model import (
    AnswerState,
    CheckboxMode,
    CheckboxState,
    Field,
    FieldKind,
    FieldResponse,
    FormSchema,
    Group,
    Note,
    ParsedForm,
    build_form,
)
from .parse import parse_form
from .patches import PATCH_ADAPTER, Patch, PatchModel, parse_patch
from .serialize import serialize, serialize_raw_markdown
from .summaries import (
    FormState,
    ProgressSummary,
    StructureSummary,
    compute_form_state,
    compute_progress_summary,
    compute_structure_summary,
    is_form_complete,
)
from .validate import ValidationIssue, ValidatorContext, ValidatorRegistry, validate

__version__ = "0.1.0"

__all__ = [
    # Parse / serialize
    'parse_form',
    'serialize',
    'serialize_raw_markdown',
    # Model
    'AnswerState',
    'CheckboxMode',
    'CheckboxState',
    'Field',
    'FieldKind',
    'FieldResponse',
    'FormSchema',
    'Group',
    'Note',
    'ParsedForm',
    'build_form',
    # Validation
    'validate',
    'ValidationIssue',
    'ValidatorContext',
    'ValidatorRegistry',
    # Patches
    'Patch',
    'PatchModel',
    'PATCH_ADAPTER',
    'parse_patch',
    'apply_patches',
    'ApplyResult',
    'ApplyStatus',
    'PatchRejection',
    'PatchWarning',
    'coerce_input_context',
    'coerce_to_field_patch',
    'CoercionResult',
    'InputContextResult',
    # Inspection
    'inspect',
    'InspectIssue',
    'InspectResult',
    'IssueReason',
    'IssueScope',
    'IssueSeverity',
    'filter_issues_by_scope',
    'find_blocking_checkpoint',
    'get_fields_for_roles',
    'FormState',
    'ProgressSummary',
    'StructureSummary',
    'compute_form_state',
    'compute_progress_summary',
    'compute_structure_summary',
    'is_form_complete',
    # Errors
    'MarkformError',
    'ParseError',
    'ValidationError',
    'HarnessConfigError',
]
