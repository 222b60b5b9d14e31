"""
Deterministic agent that copies answers from a completed form.

Used in tests and demos to drive the harness without a model.
"""

from typing import Any, List, Optional, Set

from config.constants import AGENT_ROLE

from ..inspect import InspectIssue
from ..model import AnswerState, Field, FieldKind, FieldResponse, ParsedForm
from ..patches import AbortFieldPatch, PatchModel, SkipFieldPatch, make_set_patch
from ..sentinels import format_sentinel
from .agent import Agent, AgentResponse


class MockAgent(Agent):
    """
    Answers issues from ``completed_form``.

    Answered fields become set_* patches, skipped/aborted fields are
    mirrored, and optional fields with no value are skipped.
    """

    def __init__(self, completed_form: ParsedForm, role: str = AGENT_ROLE):
        self.completed_form = completed_form
        self.role = role
        self.calls = 0

    async def generate_patches(
        self,
        issues: List[InspectIssue],
        form: ParsedForm,
        max_patches: int,
    ) -> AgentResponse:
        self.calls += 1
        patches: List[PatchModel] = []
        addressed: Set[str] = set()

        for issue in issues:
            if len(patches) >= max_patches:
                break
            field_id = issue.field_id
            if field_id is None or field_id in addressed:
                continue
            form_field = form.get_field(field_id)
            if form_field is None:
                continue
            patch = self._patch_for(form_field, self.completed_form.response_for(field_id))
            if patch is not None:
                patches.append(patch)
                addressed.add(field_id)

        return AgentResponse(patches=patches)

    def _patch_for(self, form_field: Field, response: FieldResponse) -> Optional[PatchModel]:
        if response.state == AnswerState.ANSWERED:
            return make_set_patch(form_field.kind, form_field.id, to_patch_value(form_field, response.value))
        if response.state == AnswerState.ABORTED:
            return AbortFieldPatch(field_id=form_field.id, role=self.role, reason=response.reason)
        if form_field.required:
            return None
        return SkipFieldPatch(
            field_id=form_field.id,
            role=self.role,
            reason=response.reason or "No value in mock form",
        )


def to_patch_value(form_field: Field, value: Any) -> Any:
    """Model value -> JSON-friendly patch value."""
    if form_field.kind == FieldKind.CHECKBOXES:
        return {opt_id: state.value for opt_id, state in value.items()}
    if form_field.kind == FieldKind.TABLE:
        return [
            {
                col_id: cell.value if cell.state == AnswerState.ANSWERED else format_sentinel(cell.state, cell.reason)
                for col_id, cell in row.items()
            }
            for row in value
        ]
    if isinstance(value, list):
        return list(value)
    return value
