"""
Inspection - the single entry point used by agents and the harness.

Combines validator output with structure/progress summaries and turns
everything still outstanding into prioritized issues:

    result = inspect(form, target_roles=["agent"])
    for issue in result.issues:
        print(issue.priority, issue.ref, issue.message)

Issues for fields after an incomplete blocking checkpoint are withheld
from ``issues`` and reported in ``blocked_issues``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Set

from config.constants import (
    DEFAULT_PRIORITY,
    ISSUE_REASON_SCORES,
    LOWEST_PRIORITY_TIER,
    PRIORITY_TIER_THRESHOLDS,
    PRIORITY_WEIGHTS,
    WILDCARD_ROLE,
)
from config.logging_config import get_logger

from .model import AnswerState, ApprovalMode, Field, FieldKind, NodeType, ParsedForm
from .summaries import (
    FormState,
    ProgressSummary,
    StructureSummary,
    compute_form_state,
    compute_progress_summary,
    compute_structure_summary,
    is_form_complete,
)
from .validate import ValidationIssue, ValidatorRegistry, is_checkbox_complete, validate

logger = get_logger(__name__)


class IssueReason(str, Enum):
    REQUIRED_MISSING = "required_missing"
    VALIDATION_ERROR = "validation_error"
    CHECKBOX_INCOMPLETE = "checkbox_incomplete"
    MIN_ITEMS_NOT_MET = "min_items_not_met"
    OPTIONAL_UNANSWERED = "optional_unanswered"


class IssueSeverity(str, Enum):
    REQUIRED = "required"
    RECOMMENDED = "recommended"


class IssueScope(str, Enum):
    FORM = "form"
    GROUP = "group"
    FIELD = "field"
    OPTION = "option"
    COLUMN = "column"


# Validator codes with a dedicated reason; everything else is validation_error
_REASON_BY_CODE = {
    "checkbox_incomplete": IssueReason.CHECKBOX_INCOMPLETE,
    "min_done_not_met": IssueReason.CHECKBOX_INCOMPLETE,
    "invalid_checkbox_state": IssueReason.CHECKBOX_INCOMPLETE,
    "min_items_not_met": IssueReason.MIN_ITEMS_NOT_MET,
}


@dataclass
class InspectIssue:
    """Outstanding problem or gap, derived fresh on every inspection."""
    ref: str
    scope: IssueScope
    reason: IssueReason
    message: str
    severity: IssueSeverity
    priority: int = LOWEST_PRIORITY_TIER
    code: Optional[str] = None
    blocked_by: Optional[str] = None
    score: int = 0

    @property
    def field_id(self) -> Optional[str]:
        if self.scope == IssueScope.FIELD:
            return self.ref
        if self.scope in (IssueScope.OPTION, IssueScope.COLUMN):
            return self.ref.split(".", 1)[0]
        return None

    @property
    def is_required(self) -> bool:
        return self.severity == IssueSeverity.REQUIRED


@dataclass
class BlockingCheckpoint:
    index: int
    field_id: str


@dataclass
class InspectResult:
    structure: StructureSummary
    progress: ProgressSummary
    issues: List[InspectIssue]
    form_state: FormState
    is_complete: bool
    blocked_issues: List[InspectIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    blocking_checkpoint: Optional[BlockingCheckpoint] = None

    @property
    def required_issue_count(self) -> int:
        return sum(1 for issue in self.issues if issue.is_required)


def inspect(
    form: ParsedForm,
    target_roles: Optional[Sequence[str]] = None,
    registry: Optional[ValidatorRegistry] = None,
    max_issues: Optional[int] = None,
    skip_code_validators: bool = False,
) -> InspectResult:
    """
    Inspect a form.

    Args:
        form: Form to inspect (not mutated)
        target_roles: Only surface issues for fields of these roles
            (``None`` or ``"*"`` means every role)
        registry: Code validators passed through to ``validate``
        max_issues: Cap on the number of returned issues
        skip_code_validators: Only run built-in checks

    Returns:
        InspectResult with issues sorted by priority (1 = most urgent)
    """
    validation = validate(form, registry, skip_code_validators=skip_code_validators)
    errors = [issue for issue in validation if issue.is_error]
    warnings = [issue for issue in validation if not issue.is_error]

    structure = compute_structure_summary(form.schema)
    progress = compute_progress_summary(form, errors)

    issues = [_from_validation(issue, form) for issue in errors]
    issues.extend(_unanswered_issues(form, progress, {issue.ref for issue in issues}))

    checkpoint = find_blocking_checkpoint(form)
    if checkpoint is not None and not any(issue.field_id == checkpoint.field_id for issue in issues):
        # Optional or skipped checkpoints raise no validation issue of their own
        issues.append(_checkpoint_issue(form.get_field(checkpoint.field_id)))
    issues = sort_issues(issues, form)

    blocked: List[InspectIssue] = []
    if checkpoint is not None:
        blocked_ids = set(form.order_index[checkpoint.index + 1:])
        visible = []
        for issue in issues:
            if issue.field_id in blocked_ids:
                issue.blocked_by = checkpoint.field_id
                blocked.append(issue)
            else:
                visible.append(issue)
        issues = visible

    issues = filter_issues_by_role(issues, form, target_roles)
    blocked = filter_issues_by_role(blocked, form, target_roles)
    if max_issues is not None:
        issues = issues[:max_issues]

    return InspectResult(
        structure=structure,
        progress=progress,
        issues=issues,
        form_state=compute_form_state(progress),
        is_complete=is_form_complete(progress),
        blocked_issues=blocked,
        warnings=warnings,
        blocking_checkpoint=checkpoint,
    )


# ---------------------------------------------------------------------------
# Issue construction
# ---------------------------------------------------------------------------

def _scope_of(ref: str, form: ParsedForm) -> IssueScope:
    entry = form.id_index.get(ref)
    if entry is None:
        return IssueScope.OPTION if "." in ref else IssueScope.FIELD
    return {
        NodeType.FORM: IssueScope.FORM,
        NodeType.GROUP: IssueScope.GROUP,
        NodeType.FIELD: IssueScope.FIELD,
        NodeType.OPTION: IssueScope.OPTION,
        NodeType.COLUMN: IssueScope.COLUMN,
    }[entry.node_type]


def _from_validation(issue: ValidationIssue, form: ParsedForm) -> InspectIssue:
    return InspectIssue(
        ref=issue.ref,
        scope=_scope_of(issue.ref, form),
        reason=_REASON_BY_CODE.get(issue.code, IssueReason.VALIDATION_ERROR),
        message=issue.message,
        severity=IssueSeverity.REQUIRED,
        code=issue.code,
    )


def _unanswered_issues(form: ParsedForm, progress: ProgressSummary, refs_with_issues: Set[str]) -> List[InspectIssue]:
    """
    Issues for fields nobody has addressed yet.

    Skipped and aborted fields made a decision and get nothing here; an
    answered field only counts as missing when it is required and empty.
    """
    issues = []
    for form_field in form.schema.iter_fields():
        fp = progress.fields[form_field.id]
        if fp.answer_state in (AnswerState.SKIPPED, AnswerState.ABORTED) or not fp.empty:
            continue
        if form_field.required:
            issues.append(InspectIssue(
                ref=form_field.id,
                scope=IssueScope.FIELD,
                reason=IssueReason.REQUIRED_MISSING,
                message=_missing_message(form_field),
                severity=IssueSeverity.REQUIRED,
                code="required_missing",
            ))
        elif fp.answer_state == AnswerState.UNANSWERED and form_field.id not in refs_with_issues:
            issues.append(InspectIssue(
                ref=form_field.id,
                scope=IssueScope.FIELD,
                reason=IssueReason.OPTIONAL_UNANSWERED,
                message="Optional field not yet addressed",
                severity=IssueSeverity.RECOMMENDED,
                code="optional_unanswered",
            ))
    return issues


def _checkpoint_issue(form_field: Field) -> InspectIssue:
    return InspectIssue(
        ref=form_field.id,
        scope=IssueScope.FIELD,
        reason=IssueReason.CHECKBOX_INCOMPLETE,
        message=f"Approval '{form_field.label}' must be completed before later fields can be filled",
        severity=IssueSeverity.REQUIRED,
        code="checkpoint_incomplete",
    )


def _missing_message(form_field: Field) -> str:
    if form_field.kind == FieldKind.CHECKBOXES:
        return f"Required field '{form_field.label}' must be completed"
    if form_field.is_chooser:
        return f"Required field '{form_field.label}' has no selection"
    return f"Required field '{form_field.label}' is empty"


# ---------------------------------------------------------------------------
# Prioritization
# ---------------------------------------------------------------------------

def score_to_tier(score: int) -> int:
    for minimum, tier in PRIORITY_TIER_THRESHOLDS:
        if score >= minimum:
            return tier
    return LOWEST_PRIORITY_TIER


def issue_score(issue: InspectIssue, form: ParsedForm) -> int:
    """Field priority weight plus reason score."""
    form_field = form.get_field(issue.field_id) if issue.field_id else None
    priority = form_field.priority.value if form_field else DEFAULT_PRIORITY
    reason_score = ISSUE_REASON_SCORES[issue.reason.value]
    if issue.reason == IssueReason.CHECKBOX_INCOMPLETE and issue.is_required:
        reason_score += 1
    return PRIORITY_WEIGHTS[priority] + reason_score


def sort_issues(issues: List[InspectIssue], form: ParsedForm) -> List[InspectIssue]:
    """Assign tiers and order by tier, severity, score (descending), ref."""
    for issue in issues:
        issue.score = issue_score(issue, form)
        issue.priority = score_to_tier(issue.score)
    return sorted(issues, key=lambda i: (i.priority, not i.is_required, -i.score, i.ref))


# ---------------------------------------------------------------------------
# Roles, checkpoints and scope
# ---------------------------------------------------------------------------

def get_fields_for_roles(form: ParsedForm, roles: Optional[Sequence[str]]) -> List[Field]:
    """All fields when ``roles`` is empty or holds the wildcard, else fields of those roles."""
    if not roles or WILDCARD_ROLE in roles:
        return form.fields
    return [f for f in form.schema.iter_fields() if f.role in roles]


def filter_issues_by_role(
    issues: List[InspectIssue],
    form: ParsedForm,
    target_roles: Optional[Sequence[str]],
) -> List[InspectIssue]:
    """Keep issues of target-role fields; form and group issues always pass."""
    if not target_roles or WILDCARD_ROLE in target_roles:
        return issues
    wanted = {f.id for f in get_fields_for_roles(form, target_roles)}
    return [issue for issue in issues if issue.field_id is None or issue.field_id in wanted]


def checkpoint_resolved(form: ParsedForm, form_field: Field) -> bool:
    response = form.response_for(form_field.id)
    if response.state != AnswerState.ANSWERED:
        return False
    return is_checkbox_complete(form_field, response.value)


def find_blocking_checkpoint(form: ParsedForm) -> Optional[BlockingCheckpoint]:
    """First blocking checkbox field, in document order, that is not yet complete."""
    for index, item_id in enumerate(form.order_index):
        form_field = form.get_field(item_id)
        if form_field is None or form_field.kind != FieldKind.CHECKBOXES:
            continue
        if form_field.approval_mode == ApprovalMode.BLOCKING and not checkpoint_resolved(form, form_field):
            logger.debug(f"Fields after '{item_id}' are blocked until it is complete")
            return BlockingCheckpoint(index=index, field_id=item_id)
    return None


def filter_issues_by_scope(
    issues: List[InspectIssue],
    form: ParsedForm,
    max_fields: Optional[int] = None,
    max_groups: Optional[int] = None,
) -> List[InspectIssue]:
    """
    Limit issues to a bounded number of distinct fields and groups.

    Issues are taken in the given (priority) order; form-level issues are
    always kept.
    """
    if max_fields is None and max_groups is None:
        return issues

    result = []
    seen_fields: Set[str] = set()
    seen_groups: Set[str] = set()
    for issue in issues:
        if issue.scope == IssueScope.FORM:
            result.append(issue)
            continue
        field_id = issue.field_id
        group_id = _group_of(form, field_id) if field_id else None
        if issue.scope == IssueScope.GROUP:
            group_id = issue.ref

        if max_fields is not None and field_id and field_id not in seen_fields and len(seen_fields) >= max_fields:
            continue
        if max_groups is not None and group_id and group_id not in seen_groups and len(seen_groups) >= max_groups:
            continue

        result.append(issue)
        if field_id:
            seen_fields.add(field_id)
        if group_id:
            seen_groups.add(group_id)
    return result


def _group_of(form: ParsedForm, field_id: str) -> Optional[str]:
    entry = form.id_index.get(field_id)
    if entry is None or entry.parent_id is None:
        return None
    parent = form.id_index.get(entry.parent_id)
    if parent is not None and parent.node_type == NodeType.GROUP:
        return entry.parent_id
    return None
