#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for the fill harness.

Drives MockAgent and scripted agents through FormHarness / fill_form and
checks termination, resume, overwrite and input-context behavior.
"""

import asyncio

import pytest

from markform import AnswerState, apply_patches, parse_form
from markform.harness import (
    AgentResponse,
    FormHarness,
    HarnessStatus,
    MockAgent,
    PartialReason,
    fill_form,
    markdown_sha256,
    resolve_harness_config,
)


# ============================================================================
# Completion
# ============================================================================

class TestHarnessCompletion:
    """Test runs that finish the form."""

    @pytest.mark.asyncio
    async def test_mock_agent_completes_form(self, company_form, mock_agent, test_settings):
        """Test MockAgent answers every issue in one turn."""
        result = await fill_form(company_form, mock_agent, settings=test_settings)

        assert result.status == HarnessStatus.COMPLETE
        assert result.form_complete is True
        assert result.turn_count == 1
        assert result.remaining_issues == []
        assert result.values["name"] == "Acme"
        assert result.values["products"] == ["Rockets", "Anvils"]

    @pytest.mark.asyncio
    async def test_input_form_untouched(self, company_form, mock_agent, test_settings):
        await fill_form(company_form, mock_agent, settings=test_settings)
        assert company_form.response_for("name").state == AnswerState.UNANSWERED

    @pytest.mark.asyncio
    async def test_markdown_text_accepted(self, company_text, mock_agent, test_settings):
        result = await fill_form(company_text, mock_agent, settings=test_settings)
        assert result.status == HarnessStatus.COMPLETE
        assert result.markdown.startswith("---\nmarkform:\n")
        assert "# Company Profile" in result.markdown

    @pytest.mark.asyncio
    async def test_already_complete_form_takes_no_turns(self, filled_company_form, idle_agent, test_settings):
        result = await fill_form(filled_company_form, idle_agent, settings=test_settings)
        assert result.status == HarnessStatus.COMPLETE
        assert result.turns == []
        assert idle_agent.seen_issues == []

    @pytest.mark.asyncio
    async def test_one_issue_per_turn(self, company_form, mock_agent, test_settings):
        result = await fill_form(company_form, mock_agent, settings=test_settings, max_issues_per_turn=1)
        assert result.status == HarnessStatus.COMPLETE
        assert result.turn_count == 6
        assert result.turns[0].issue_refs == ["name"]
        assert [turn.turn for turn in result.turns] == [1, 2, 3, 4, 5, 6]
        assert result.patches_applied == 6

    @pytest.mark.asyncio
    async def test_aborted_field_ends_run_as_aborted(self, filled_company_form, company_form, test_settings):
        source = apply_patches(filled_company_form, [
            {"op": "abort_field", "fieldId": "website", "role": "agent", "reason": "Site offline"},
        ]).form
        result = await fill_form(company_form, MockAgent(source), settings=test_settings)

        assert result.status == HarnessStatus.ABORTED
        assert result.form_complete is False
        assert result.form.response_for("website").reason == "Site offline"

    @pytest.mark.asyncio
    async def test_completion_scoped_to_target_roles(self, company_form, idle_agent, test_settings):
        """Test a run with no issues for its roles completes without touching the form."""
        result = await fill_form(company_form, idle_agent, settings=test_settings, target_roles=["user"])
        assert result.status == HarnessStatus.COMPLETE
        assert result.form_complete is False
        assert result.turns == []


# ============================================================================
# Partial and terminal outcomes
# ============================================================================

class TestHarnessLimits:
    """Test turn budgets, cancellation and failure."""

    @pytest.mark.asyncio
    async def test_max_turns(self, company_form, idle_agent, test_settings):
        result = await fill_form(company_form, idle_agent, settings=test_settings, max_turns=2)
        assert result.status == HarnessStatus.PARTIAL
        assert result.reason == PartialReason.MAX_TURNS
        assert result.turn_count == 2
        assert result.next_turn == 2
        assert result.remaining_issues

    @pytest.mark.asyncio
    async def test_frontmatter_turn_budget(self, company_form, idle_agent, test_settings):
        result = await fill_form(company_form, idle_agent, settings=test_settings)
        assert result.reason == PartialReason.MAX_TURNS
        assert result.turn_count == 8

    @pytest.mark.asyncio
    async def test_agent_done(self, company_form, scripted_agent, test_settings):
        agent = scripted_agent([AgentResponse(
            patches=[{"op": "set_string", "fieldId": "name", "value": "Acme"}],
            done=True,
        )])
        result = await fill_form(company_form, agent, settings=test_settings)
        assert result.status == HarnessStatus.PARTIAL
        assert result.reason == PartialReason.AGENT_DONE
        assert result.values == {"name": "Acme"}

    @pytest.mark.asyncio
    async def test_batch_limit_and_resume(self, company_form, mock_agent, test_settings):
        """Test a run split across calls picks up where it stopped."""
        first = await fill_form(
            company_form, mock_agent, settings=test_settings,
            max_issues_per_turn=1, max_turns_this_call=2,
        )
        assert first.status == HarnessStatus.PARTIAL
        assert first.reason == PartialReason.BATCH_LIMIT
        assert first.next_turn == 2

        resumed_form = parse_form(first.markdown)
        second = await fill_form(
            resumed_form, mock_agent, settings=test_settings,
            max_issues_per_turn=1, start_turn=first.next_turn,
        )
        assert second.status == HarnessStatus.COMPLETE
        assert second.turns[0].turn == 3
        assert second.next_turn == 6

    @pytest.mark.asyncio
    async def test_resume_respects_overall_budget(self, company_form, idle_agent, test_settings):
        result = await fill_form(company_form, idle_agent, settings=test_settings, max_turns=3, start_turn=3)
        assert result.status == HarnessStatus.PARTIAL
        assert result.reason == PartialReason.MAX_TURNS
        assert result.turns == []

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, company_form, idle_agent, test_settings):
        cancel_event = asyncio.Event()
        cancel_event.set()
        result = await fill_form(company_form, idle_agent, settings=test_settings, cancel_event=cancel_event)
        assert result.status == HarnessStatus.CANCELLED
        assert result.turns == []

    @pytest.mark.asyncio
    async def test_cancel_between_turns(self, company_form, mock_agent, test_settings):
        """Test cancellation is observed at the next turn boundary."""
        config = resolve_harness_config(company_form, test_settings, max_issues_per_turn=1)
        harness = FormHarness(company_form, mock_agent, config, on_turn_complete=lambda record: harness.cancel())
        result = await harness.run()

        assert result.status == HarnessStatus.CANCELLED
        assert result.turn_count == 1
        assert result.values == {"name": "Acme"}

    @pytest.mark.asyncio
    async def test_agent_failure(self, company_form, failing_agent, test_settings):
        result = await fill_form(company_form, failing_agent, settings=test_settings)
        assert result.status == HarnessStatus.FAILED
        assert "model endpoint unavailable" in result.error
        assert result.turns == []

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_turns(self, company_form, test_settings):
        class FlakyAgent(MockAgent):
            async def generate_patches(self, issues, form, max_patches):
                if self.calls >= 1:
                    raise ConnectionError("connection reset")
                return await super().generate_patches(issues, form, max_patches)

        filled = apply_patches(company_form, [{"op": "set_string", "fieldId": "name", "value": "Acme"}]).form
        result = await fill_form(company_form, FlakyAgent(filled), settings=test_settings, max_issues_per_turn=1)
        assert result.status == HarnessStatus.FAILED
        assert result.turn_count == 1
        assert result.values == {"name": "Acme"}


# ============================================================================
# Turn records and callbacks
# ============================================================================

class TestTurnRecords:
    """Test the per-turn transcript."""

    @pytest.mark.asyncio
    async def test_record_contents(self, company_form, scripted_agent, test_settings):
        agent = scripted_agent([AgentResponse(patches=[
            {"op": "set_string", "fieldId": "name", "value": "Acme"},
            {"op": "set_number", "fieldId": "employees", "value": 0},
        ])])
        result = await fill_form(company_form, agent, settings=test_settings, max_turns=1)
        record = result.turns[0]

        assert record.turn == 1
        assert record.applied_count == 1
        assert record.rejected_count == 1
        assert record.rejections[0].code == "constraint_violation"
        assert record.patches[0] == {"op": "set_string", "fieldId": "name", "value": "Acme"}
        assert record.required_issues_remaining == 0
        assert record.markdown_sha256 == markdown_sha256(result.markdown)

    @pytest.mark.asyncio
    async def test_patches_beyond_limit_dropped(self, company_form, scripted_agent, test_settings):
        agent = scripted_agent([AgentResponse(patches=[
            {"op": "set_string", "fieldId": "name", "value": "Acme"},
            {"op": "set_url", "fieldId": "website", "value": "https://acme.example.com"},
        ])])
        result = await fill_form(company_form, agent, settings=test_settings, max_turns=1, max_patches_per_turn=1)
        assert len(result.turns[0].patches) == 1
        assert "website" not in result.values

    @pytest.mark.asyncio
    async def test_callback_receives_each_turn(self, company_form, mock_agent, test_settings):
        seen = []
        result = await fill_form(
            company_form, mock_agent, settings=test_settings,
            max_issues_per_turn=2, on_turn_complete=seen.append,
        )
        assert seen == result.turns
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_stop_run(self, company_form, mock_agent, test_settings):
        def broken_callback(record):
            raise ValueError("dashboard offline")

        result = await fill_form(company_form, mock_agent, settings=test_settings, on_turn_complete=broken_callback)
        assert result.status == HarnessStatus.COMPLETE


# ============================================================================
# Fill modes and input context
# ============================================================================

class TestFillModes:
    """Test overwrite mode and input context pre-fill."""

    @pytest.mark.asyncio
    async def test_continue_mode_keeps_answers(self, filled_company_form, idle_agent, test_settings):
        result = await fill_form(filled_company_form, idle_agent, settings=test_settings)
        assert result.values["name"] == "Acme"

    @pytest.mark.asyncio
    async def test_overwrite_mode_refills(self, filled_company_form, test_settings):
        source = apply_patches(filled_company_form, [
            {"op": "set_string", "fieldId": "name", "value": "Globex"},
        ]).form
        result = await fill_form(filled_company_form, MockAgent(source), settings=test_settings, fill_mode="overwrite")
        assert result.status == HarnessStatus.COMPLETE
        assert result.turn_count == 1
        assert result.values["name"] == "Globex"

    @pytest.mark.asyncio
    async def test_input_context_prefills(self, company_form, scripted_agent, test_settings):
        agent = scripted_agent([AgentResponse(done=True)])
        result = await fill_form(
            company_form, agent, settings=test_settings,
            input_context={"name": "Acme", "employees": "42"},
        )
        assert result.values["name"] == "Acme"
        assert result.values["employees"] == 42
        assert len(result.input_context_warnings) == 1
        assert "name" not in agent.seen_issues[0]

    @pytest.mark.asyncio
    async def test_input_context_survives_overwrite(self, filled_company_form, idle_agent, test_settings):
        result = await fill_form(
            filled_company_form, idle_agent, settings=test_settings,
            fill_mode="overwrite", max_turns=1, input_context={"name": "Initech"},
        )
        assert result.values == {"name": "Initech"}

    @pytest.mark.asyncio
    async def test_input_context_errors_fail_run(self, company_form, idle_agent, test_settings):
        result = await fill_form(company_form, idle_agent, settings=test_settings, input_context={"size": "huge"})
        assert result.status == HarnessStatus.FAILED
        assert "Invalid option 'huge'" in result.error
        assert idle_agent.seen_issues == []


# ============================================================================
# Blocking checkpoints
# ============================================================================

GATED_FORM = (
    '{{% form id="gated" %}}\n\n'
    '{{% field kind="checkboxes" id="gate" label="Gate" approvalMode="blocking" checkboxMode="simple"{attrs} %}}\n'
    '- {first} A {{% #a %}}\n'
    '- [ ] B {{% #b %}}\n'
    '{{% /field %}}\n\n'
    '{{% field kind="string" id="summary" label="Summary" required=true %}}{{% /field %}}\n\n'
    '{{% /form %}}\n'
)


class TestBlockingCheckpoint:
    """Test a run never reports complete while fields wait behind a checkpoint."""

    @pytest.mark.asyncio
    async def test_checkpoint_owned_by_other_role(self, idle_agent, test_settings):
        form = parse_form(GATED_FORM.format(attrs=' role="user"', first="[ ]"))
        result = await fill_form(form, idle_agent, settings=test_settings, max_turns=5)

        assert result.status == HarnessStatus.PARTIAL
        assert result.reason == PartialReason.BLOCKED_BY_CHECKPOINT
        assert result.turns == []
        assert [issue.ref for issue in result.remaining_issues] == ["summary"]
        assert result.remaining_issues[0].blocked_by == "gate"

    @pytest.mark.asyncio
    async def test_optional_checkpoint_partly_checked(self, idle_agent, test_settings):
        form = parse_form(GATED_FORM.format(attrs="", first="[x]"))
        result = await fill_form(form, idle_agent, settings=test_settings, max_turns=5)

        assert result.status == HarnessStatus.PARTIAL
        assert result.reason == PartialReason.MAX_TURNS
        assert idle_agent.seen_issues[0] == ["gate"]

    @pytest.mark.asyncio
    async def test_completing_checkpoint_releases_fields(self, scripted_agent, test_settings):
        agent = scripted_agent([
            AgentResponse(patches=[{"op": "set_checkboxes", "fieldId": "gate", "value": ["a", "b"]}]),
            AgentResponse(patches=[{"op": "set_string", "fieldId": "summary", "value": "Approved"}]),
        ])
        form = parse_form(GATED_FORM.format(attrs="", first="[ ]"))
        result = await fill_form(form, agent, settings=test_settings, max_turns=5)

        assert result.status == HarnessStatus.COMPLETE
        assert agent.seen_issues == [["gate"], ["summary"]]
        assert result.values["summary"] == "Approved"
