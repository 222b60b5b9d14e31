"""
Form Harness - turn-based control loop for agent-driven filling.

Each turn: inspect -> check termination -> ask the agent -> apply.

    harness = FormHarness(form, agent, resolve_harness_config(form))
    result = await harness.run()
    if result.status == HarnessStatus.PARTIAL:
        # resume later from result.markdown with start_turn=result.next_turn
        ...

The loop keeps no state besides the form itself and the turn offset,
so a partial run can be resumed from its serialized markdown.
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from config.logging_config import get_logger
from config.settings import MarkformSettings

from ..apply import PatchRejection, PatchWarning, apply_patches
from ..coercion import coerce_input_context
from ..inspect import InspectIssue, InspectResult, filter_issues_by_scope, get_fields_for_roles, inspect
from ..model import AnswerState, ParsedForm
from ..parse import parse_form
from ..patches import ClearFieldPatch, PatchModel
from ..serialize import serialize
from ..validate import ValidatorRegistry
from .agent import Agent
from .config import HarnessConfig, resolve_harness_config

logger = get_logger(__name__)


class HarnessStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ABORTED = "aborted"


class PartialReason(str, Enum):
    BATCH_LIMIT = "batch_limit"
    MAX_TURNS = "max_turns"
    AGENT_DONE = "agent_done"
    BLOCKED_BY_CHECKPOINT = "blocked_by_checkpoint"


@dataclass
class TurnRecord:
    """Transcript entry for one turn"""
    turn: int
    issue_refs: List[str]
    patches: List[Dict[str, Any]]
    applied_count: int
    rejected_count: int
    required_issues_remaining: int
    markdown_sha256: str
    rejections: List[PatchRejection] = field(default_factory=list)
    warnings: List[PatchWarning] = field(default_factory=list)


@dataclass
class HarnessResult:
    status: HarnessStatus
    form: ParsedForm
    markdown: str
    turns: List[TurnRecord] = field(default_factory=list)
    next_turn: int = 0
    reason: Optional[PartialReason] = None
    error: Optional[str] = None
    remaining_issues: List[InspectIssue] = field(default_factory=list)
    form_complete: bool = False
    input_context_warnings: List[str] = field(default_factory=list)

    @property
    def turn_count(self) -> int:
        return len(self.turns)

    @property
    def patches_applied(self) -> int:
        return sum(turn.applied_count for turn in self.turns)

    @property
    def values(self) -> Dict[str, Any]:
        """Answered values keyed by field id"""
        return {
            field_id: response.value
            for field_id, response in self.form.responses_by_field_id.items()
            if response.state == AnswerState.ANSWERED
        }


TurnCallback = Callable[[TurnRecord], None]


def markdown_sha256(markdown: str) -> str:
    return hashlib.sha256(markdown.encode("utf-8")).hexdigest()


class FormHarness:
    """
    Drives one agent against one form.

    Only one turn is ever in flight; independent harness instances may run
    concurrently on their own forms.
    """

    def __init__(
        self,
        form: ParsedForm,
        agent: Agent,
        config: HarnessConfig,
        registry: Optional[ValidatorRegistry] = None,
        on_turn_complete: Optional[TurnCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.form = form
        self.agent = agent
        self.config = config
        self.registry = registry
        self.on_turn_complete = on_turn_complete
        self._cancel_event = cancel_event or asyncio.Event()
        self._cleared = False

    def cancel(self):
        """Request cancellation; observed at the top of the next turn."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def inspect(self) -> InspectResult:
        """Inspect the current form for the configured target roles."""
        return inspect(self.form, target_roles=self.config.target_roles, registry=self.registry)

    async def run(self, start_turn: int = 0) -> HarnessResult:
        """
        Run turns until a terminal status.

        Args:
            start_turn: Turns already spent in earlier calls (resume offset)

        Returns:
            HarnessResult; the form reflects every patch applied so far,
            including on failure and cancellation
        """
        config = self.config
        if config.fill_mode == "overwrite" and start_turn == 0 and not self._cleared:
            self.clear_target_fields()

        turn = start_turn
        turns_this_call = 0
        records: List[TurnRecord] = []
        agent_done = False
        inspection = self.inspect()

        while True:
            if not inspection.issues:
                if inspection.blocked_issues:
                    # Checkpoint belongs to another role; nothing this run can fill
                    return self._finish(
                        HarnessStatus.PARTIAL, records, turn, inspection, PartialReason.BLOCKED_BY_CHECKPOINT,
                    )
                if inspection.progress.counts.aborted_fields > 0:
                    return self._finish(HarnessStatus.ABORTED, records, turn, inspection)
                return self._finish(HarnessStatus.COMPLETE, records, turn, inspection)

            if agent_done:
                return self._finish(HarnessStatus.PARTIAL, records, turn, inspection, PartialReason.AGENT_DONE)
            if config.max_turns_this_call is not None and turns_this_call >= config.max_turns_this_call:
                return self._finish(HarnessStatus.PARTIAL, records, turn, inspection, PartialReason.BATCH_LIMIT)
            if turn >= config.max_turns:
                return self._finish(HarnessStatus.PARTIAL, records, turn, inspection, PartialReason.MAX_TURNS)
            if self.cancelled:
                return self._finish(HarnessStatus.CANCELLED, records, turn, inspection)

            issues = filter_issues_by_scope(
                inspection.issues, self.form, config.max_fields_per_turn, config.max_groups_per_turn,
            )[:config.max_issues_per_turn]
            logger.info(f"Turn {turn + 1}: {len(issues)} issues for roles {', '.join(config.target_roles)}")

            try:
                response = await self.agent.generate_patches(issues, self.form, config.max_patches_per_turn)
            except Exception as e:
                logger.error(f"Agent failed on turn {turn + 1}: {e}", exc_info=True)
                return self._finish(HarnessStatus.FAILED, records, turn, inspection, error=str(e))

            patches = list(response.patches[:config.max_patches_per_turn])
            if len(response.patches) > len(patches):
                logger.warning(f"Agent returned {len(response.patches)} patches; only {len(patches)} applied")
            applied = apply_patches(self.form, patches)
            self.form = applied.form
            turn += 1
            turns_this_call += 1
            agent_done = response.done

            inspection = self.inspect()
            markdown = serialize(self.form)
            record = TurnRecord(
                turn=turn,
                issue_refs=[issue.ref for issue in issues],
                patches=[_wire(patch) for patch in patches],
                applied_count=len(applied.applied_patches),
                rejected_count=len(applied.rejections),
                required_issues_remaining=inspection.required_issue_count,
                markdown_sha256=markdown_sha256(markdown),
                rejections=applied.rejections,
                warnings=applied.warnings,
            )
            records.append(record)
            self._notify(record)

    def clear_target_fields(self):
        """Reset every target-role field to unanswered (overwrite mode)."""
        self._cleared = True
        patches = [
            ClearFieldPatch(field_id=form_field.id)
            for form_field in get_fields_for_roles(self.form, self.config.target_roles)
            if self.form.response_for(form_field.id).state != AnswerState.UNANSWERED
        ]
        if patches:
            logger.info(f"Overwrite mode: clearing {len(patches)} fields")
            self.form = apply_patches(self.form, patches).form

    def _notify(self, record: TurnRecord):
        if self.on_turn_complete is None:
            return
        try:
            self.on_turn_complete(record)
        except Exception as e:
            logger.warning(f"on_turn_complete callback failed: {e}")

    def _finish(
        self,
        status: HarnessStatus,
        records: List[TurnRecord],
        turn: int,
        inspection: InspectResult,
        reason: Optional[PartialReason] = None,
        error: Optional[str] = None,
    ) -> HarnessResult:
        logger.info(f"Harness finished: {status.value}{f' ({reason.value})' if reason else ''} after {turn} turns")
        return HarnessResult(
            status=status,
            form=self.form,
            markdown=serialize(self.form),
            turns=records,
            next_turn=turn,
            reason=reason,
            error=error,
            remaining_issues=list(inspection.issues) + list(inspection.blocked_issues),
            form_complete=inspection.is_complete,
        )


def _wire(patch: Union[PatchModel, Dict[str, Any]]) -> Dict[str, Any]:
    return patch.to_wire() if isinstance(patch, PatchModel) else dict(patch)


async def fill_form(
    form: Union[str, ParsedForm],
    agent: Agent,
    input_context: Optional[Dict[str, Any]] = None,
    settings: Optional[MarkformSettings] = None,
    registry: Optional[ValidatorRegistry] = None,
    on_turn_complete: Optional[TurnCallback] = None,
    cancel_event: Optional[asyncio.Event] = None,
    start_turn: int = 0,
    **options: Any,
) -> HarnessResult:
    """
    One-call fill: parse, pre-fill from ``input_context``, run the harness.

    Args:
        form: Markdown text or an already parsed form
        agent: Agent proposing patches
        input_context: Raw values keyed by field id, applied before the first turn
        settings: Environment defaults for the harness limits
        **options: HarnessConfig overrides (max_turns, target_roles, fill_mode, ...)

    Raises:
        ParseError / ValidationError: ``form`` text is malformed
        HarnessConfigError: Invalid options
    """
    parsed = parse_form(form) if isinstance(form, str) else form.copy_state()
    config = resolve_harness_config(parsed, settings, **options)
    harness = FormHarness(
        parsed, agent, config,
        registry=registry,
        on_turn_complete=on_turn_complete,
        cancel_event=cancel_event,
    )
    # Overwrite clearing must not wipe the input context applied below
    if config.fill_mode == "overwrite" and start_turn == 0:
        harness.clear_target_fields()

    warnings: List[str] = []
    if input_context:
        coerced = coerce_input_context(harness.form, input_context)
        warnings = coerced.warnings
        if coerced.errors:
            logger.error(f"Input context rejected: {'; '.join(coerced.errors)}")
            return HarnessResult(
                status=HarnessStatus.FAILED,
                form=harness.form,
                markdown=serialize(harness.form),
                next_turn=start_turn,
                error="; ".join(coerced.errors),
                input_context_warnings=warnings,
            )
        if coerced.patches:
            harness.form = apply_patches(harness.form, coerced.patches).form

    result = await harness.run(start_turn=start_turn)
    result.input_context_warnings = warnings
    return result
