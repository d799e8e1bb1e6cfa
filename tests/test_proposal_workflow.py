"""
Tests for proposal_workflow.py: Measuring -> Priced -> Generated -> Sent gate.
Collaborators are AsyncMocks; no HTTP.
"""
import asyncio
import logging
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from proposal_errors import ExternalCollaboratorFailure, InvalidInput, InvalidTransition  # noqa: E402
from proposal_workflow import (  # noqa: E402
    VALID_TRANSITIONS,
    ProposalSnapshot,
    ProposalWorkflow,
    RenderedProposal,
    WorkflowState,
    abandon,
    can_transition,
    generate_proposal,
    revise_measurements,
    revise_tier,
    select_tier,
    send_proposal,
    submit_measurements,
)
from tier_pricing import Tier  # noqa: E402


MEASUREMENTS = {"roof_area": 2500, "pitch": "6/12", "complexity": "moderate"}


def _priced(basic_input):
    return submit_measurements(ProposalSnapshot(), basic_input).snapshot


async def _generated(basic_input, renderer):
    result = await generate_proposal(_priced(basic_input), "Full tear-off", renderer, timeout=1)
    return result.snapshot


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitionTable:
    def test_every_state_listed(self):
        assert set(VALID_TRANSITIONS) == set(WorkflowState)

    def test_abandoned_is_terminal(self):
        assert VALID_TRANSITIONS[WorkflowState.ABANDONED] == []
        allowed, reason = can_transition(WorkflowState.ABANDONED, WorkflowState.MEASURING)
        assert not allowed
        assert "terminal" in reason

    def test_forward_and_backward_moves(self):
        assert can_transition(WorkflowState.MEASURING, WorkflowState.PRICED)[0]
        assert can_transition(WorkflowState.PRICED, WorkflowState.MEASURING)[0]
        assert can_transition(WorkflowState.GENERATED, WorkflowState.PRICED)[0]
        assert not can_transition(WorkflowState.MEASURING, WorkflowState.SENT)[0]


# ---------------------------------------------------------------------------
# MEASURING -> PRICED
# ---------------------------------------------------------------------------


class TestSubmitMeasurements:
    def test_prices_and_defaults_to_better(self, basic_input):
        result = submit_measurements(ProposalSnapshot(), basic_input)
        assert result.ok
        assert result.error is None
        assert result.snapshot.state == WorkflowState.PRICED
        assert result.snapshot.selected_tier == Tier.BETTER
        assert result.snapshot.selected_pricing is result.snapshot.tiers.better

    def test_accepts_raw_form_fields(self):
        result = submit_measurements(ProposalSnapshot(), MEASUREMENTS)
        assert result.ok
        assert result.snapshot.pricing_input.roof_area == 2500

    def test_accepts_edge_lengths_from_form(self):
        fields = {**MEASUREMENTS, "linear_measurements": {"eave": 120, "rake": 80}, "labor_rate_per_hour": 60}
        result = submit_measurements(ProposalSnapshot(), fields)
        assert result.ok
        assert result.snapshot.pricing_input.linear_measurements.eave == 120
        assert result.snapshot.pricing_input.labor_rate_per_hour == 60

    def test_invalid_input_stays_measuring(self):
        snapshot = ProposalSnapshot()
        result = submit_measurements(snapshot, {**MEASUREMENTS, "roof_area": 0})
        assert not result.ok
        assert isinstance(result.error, InvalidInput)
        assert result.error.field == "roof_area"
        assert result.snapshot is snapshot

    def test_unknown_form_field_is_invalid_input(self):
        result = submit_measurements(ProposalSnapshot(), {**MEASUREMENTS, "gutters": True})
        assert not result.ok
        assert isinstance(result.error, InvalidInput)

    def test_not_allowed_once_generated(self, basic_input, renderer):
        generated = asyncio.run(_generated(basic_input, renderer))
        result = submit_measurements(generated, basic_input)
        assert not result.ok
        assert isinstance(result.error, InvalidTransition)
        assert result.snapshot.state == WorkflowState.GENERATED


class TestSelectTier:
    def test_changes_selection(self, basic_input):
        result = select_tier(_priced(basic_input), "best")
        assert result.ok
        assert result.snapshot.selected_tier == Tier.BEST
        assert result.snapshot.state == WorkflowState.PRICED

    def test_unknown_tier(self, basic_input):
        result = select_tier(_priced(basic_input), "platinum")
        assert not result.ok
        assert isinstance(result.error, InvalidInput)

    def test_only_while_priced(self):
        result = select_tier(ProposalSnapshot(), "good")
        assert not result.ok
        assert isinstance(result.error, InvalidTransition)


# ---------------------------------------------------------------------------
# PRICED -> GENERATED
# ---------------------------------------------------------------------------


class TestGenerateProposal:
    @pytest.mark.asyncio
    async def test_renders_selected_tier(self, basic_input, renderer):
        priced = select_tier(_priced(basic_input), "good").snapshot
        result = await generate_proposal(priced, "Full tear-off", renderer, timeout=1)
        assert result.ok
        assert result.snapshot.state == WorkflowState.GENERATED
        assert result.snapshot.proposal.proposal_id == "est-001"
        assert result.snapshot.scope_of_work == "Full tear-off"
        renderer.render_proposal.assert_awaited_once_with(priced.tiers.good, "Full tear-off")

    @pytest.mark.asyncio
    async def test_tuple_result_accepted(self, basic_input):
        renderer = AsyncMock()
        renderer.render_proposal.return_value = ("est-009", "<p>preview</p>")
        result = await generate_proposal(_priced(basic_input), "", renderer, timeout=1)
        assert result.ok
        assert result.snapshot.proposal == RenderedProposal("est-009", "<p>preview</p>")

    @pytest.mark.asyncio
    async def test_renderer_error_stays_priced(self, basic_input):
        renderer = AsyncMock()
        renderer.render_proposal.side_effect = RuntimeError("pdf service down")
        priced = _priced(basic_input)
        result = await generate_proposal(priced, "scope", renderer, timeout=1)
        assert not result.ok
        assert isinstance(result.error, ExternalCollaboratorFailure)
        assert result.error.collaborator == "renderer"
        assert result.snapshot is priced

    @pytest.mark.asyncio
    async def test_timeout_is_collaborator_failure(self, basic_input):
        class SlowRenderer:
            async def render_proposal(self, tier, scope_of_work):
                await asyncio.sleep(5)

        result = await generate_proposal(_priced(basic_input), "scope", SlowRenderer(), timeout=0.01)
        assert not result.ok
        assert isinstance(result.error, ExternalCollaboratorFailure)
        assert "did not answer" in str(result.error)
        assert result.snapshot.state == WorkflowState.PRICED

    @pytest.mark.asyncio
    async def test_missing_id_is_failure(self, basic_input):
        renderer = AsyncMock()
        renderer.render_proposal.return_value = RenderedProposal(proposal_id="")
        result = await generate_proposal(_priced(basic_input), "scope", renderer, timeout=1)
        assert not result.ok
        assert result.snapshot.state == WorkflowState.PRICED

    @pytest.mark.asyncio
    async def test_not_from_measuring(self, renderer):
        result = await generate_proposal(ProposalSnapshot(), "scope", renderer, timeout=1)
        assert isinstance(result.error, InvalidTransition)
        renderer.render_proposal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, basic_input, monkeypatch):
        from config import config

        monkeypatch.setattr(config.backend, "timeout", 0.01)

        class SlowRenderer:
            async def render_proposal(self, tier, scope_of_work):
                await asyncio.sleep(5)

        result = await generate_proposal(_priced(basic_input), "scope", SlowRenderer())
        assert isinstance(result.error, ExternalCollaboratorFailure)


# ---------------------------------------------------------------------------
# GENERATED -> SENT
# ---------------------------------------------------------------------------


class TestSendProposal:
    @pytest.mark.asyncio
    async def test_sends(self, basic_input, renderer, sender):
        generated = await _generated(basic_input, renderer)
        result = await send_proposal(generated, "owner@example.com", sender, timeout=1)
        assert result.ok
        assert result.snapshot.state == WorkflowState.SENT
        assert result.snapshot.recipient_email == "owner@example.com"
        sender.send_proposal.assert_awaited_once_with("est-001", "owner@example.com")

    @pytest.mark.asyncio
    async def test_refused_send_is_retryable(self, basic_input, renderer):
        generated = await _generated(basic_input, renderer)
        sender = AsyncMock()
        sender.send_proposal.side_effect = [False, True]

        first = await send_proposal(generated, "owner@example.com", sender, timeout=1)
        assert not first.ok
        assert isinstance(first.error, ExternalCollaboratorFailure)
        assert first.snapshot.state == WorkflowState.GENERATED

        second = await send_proposal(first.snapshot, "owner@example.com", sender, timeout=1)
        assert second.ok
        assert sender.send_proposal.await_count == 2

    @pytest.mark.asyncio
    async def test_sender_exception(self, basic_input, renderer):
        generated = await _generated(basic_input, renderer)
        sender = AsyncMock()
        sender.send_proposal.side_effect = ConnectionError("smtp refused")
        result = await send_proposal(generated, "owner@example.com", sender, timeout=1)
        assert not result.ok
        assert result.error.collaborator == "sender"

    @pytest.mark.asyncio
    async def test_bad_recipient(self, basic_input, renderer, sender):
        generated = await _generated(basic_input, renderer)
        result = await send_proposal(generated, "not-an-email", sender, timeout=1)
        assert not result.ok
        assert isinstance(result.error, InvalidInput)
        sender.send_proposal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cannot_send_before_generating(self, basic_input, sender):
        result = await send_proposal(_priced(basic_input), "owner@example.com", sender, timeout=1)
        assert isinstance(result.error, InvalidTransition)

    @pytest.mark.asyncio
    async def test_resend_after_sent(self, basic_input, renderer, sender):
        generated = await _generated(basic_input, renderer)
        sent = (await send_proposal(generated, "owner@example.com", sender, timeout=1)).snapshot
        again = await send_proposal(sent, "spouse@example.com", sender, timeout=1)
        assert again.ok
        assert again.snapshot.recipient_email == "spouse@example.com"


# ---------------------------------------------------------------------------
# Backward moves & abandon
# ---------------------------------------------------------------------------


class TestRevisions:
    def test_revise_measurements_discards_tiers(self, basic_input):
        result = revise_measurements(_priced(basic_input))
        assert result.ok
        assert result.snapshot.state == WorkflowState.MEASURING
        assert result.snapshot.tiers is None
        assert result.snapshot.selected_tier is None
        assert result.snapshot.pricing_input == basic_input

    @pytest.mark.asyncio
    async def test_revise_tier_discards_proposal(self, basic_input, renderer):
        generated = await _generated(basic_input, renderer)
        result = revise_tier(generated)
        assert result.ok
        assert result.snapshot.state == WorkflowState.PRICED
        assert result.snapshot.proposal is None
        assert result.snapshot.tiers is generated.tiers

    def test_revise_tier_not_from_measuring(self):
        result = revise_tier(ProposalSnapshot())
        assert isinstance(result.error, InvalidTransition)

    def test_revise_measurements_not_from_measuring(self):
        result = revise_measurements(ProposalSnapshot())
        assert isinstance(result.error, InvalidTransition)


class TestAbandon:
    def test_from_measuring(self):
        result = abandon(ProposalSnapshot())
        assert result.ok
        assert result.snapshot.state == WorkflowState.ABANDONED
        assert result.snapshot.is_terminal

    def test_from_priced(self, basic_input):
        assert abandon(_priced(basic_input)).snapshot.state == WorkflowState.ABANDONED

    @pytest.mark.asyncio
    async def test_not_after_sent(self, basic_input, renderer, sender):
        generated = await _generated(basic_input, renderer)
        sent = (await send_proposal(generated, "owner@example.com", sender, timeout=1)).snapshot
        result = abandon(sent)
        assert not result.ok
        assert result.snapshot.state == WorkflowState.SENT

    def test_nothing_after_abandoned(self, basic_input):
        abandoned = abandon(ProposalSnapshot()).snapshot
        assert not submit_measurements(abandoned, basic_input).ok
        assert not abandon(abandoned).ok


# ---------------------------------------------------------------------------
# ProposalWorkflow holder
# ---------------------------------------------------------------------------


class TestProposalWorkflow:
    @pytest.mark.asyncio
    async def test_happy_path_history(self, basic_input, renderer, sender):
        workflow = ProposalWorkflow(renderer=renderer, sender=sender, timeout=1, workflow_id="wf-12345678")
        assert workflow.submit_measurements(basic_input).ok
        assert workflow.select_tier("best").ok
        assert (await workflow.generate_proposal("Full tear-off")).ok
        assert (await workflow.send_proposal("owner@example.com")).ok

        assert workflow.state == WorkflowState.SENT
        assert [(t.from_state, t.to_state) for t in workflow.history] == [
            ("measuring", "priced"),
            ("priced", "generated"),
            ("generated", "sent"),
        ]
        renderer.render_proposal.assert_awaited_once_with(workflow.snapshot.tiers.best, "Full tear-off")

    def test_logs_transitions(self, basic_input, caplog):
        workflow = ProposalWorkflow(workflow_id="wf-abcdef99")
        with caplog.at_level(logging.INFO, logger="proposal_workflow"):
            workflow.submit_measurements(basic_input)
            workflow.revise_tier()
        assert "Proposal workflow wf-abcde: measuring -> priced" in caplog.text
        assert "revise_tier failed" in caplog.text

    def test_failure_does_not_move(self):
        workflow = ProposalWorkflow()
        result = workflow.submit_measurements({**MEASUREMENTS, "stories": 0})
        assert not result.ok
        assert workflow.state == WorkflowState.MEASURING
        assert workflow.history == []

    @pytest.mark.asyncio
    async def test_missing_renderer(self, basic_input):
        workflow = ProposalWorkflow()
        workflow.submit_measurements(basic_input)
        with pytest.raises(ValueError, match="no renderer"):
            await workflow.generate_proposal("scope")

    @pytest.mark.asyncio
    async def test_cancellation_leaves_state(self, basic_input):
        started = asyncio.Event()

        class HangingRenderer:
            async def render_proposal(self, tier, scope_of_work):
                started.set()
                await asyncio.sleep(10)

        workflow = ProposalWorkflow(renderer=HangingRenderer(), timeout=30)
        workflow.submit_measurements(basic_input)
        task = asyncio.create_task(workflow.generate_proposal("scope"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert workflow.state == WorkflowState.PRICED
        assert workflow.snapshot.proposal is None

    @pytest.mark.asyncio
    async def test_abandon_while_rendering_wins(self, basic_input):
        release = asyncio.Event()

        class GatedRenderer:
            async def render_proposal(self, tier, scope_of_work):
                await release.wait()
                return RenderedProposal("est-late")

        workflow = ProposalWorkflow(renderer=GatedRenderer(), timeout=5)
        workflow.submit_measurements(basic_input)
        task = asyncio.create_task(workflow.generate_proposal("scope"))
        await asyncio.sleep(0)
        assert workflow.abandon().ok
        release.set()
        result = await task
        assert not result.ok
        assert isinstance(result.error, InvalidTransition)
        assert workflow.state == WorkflowState.ABANDONED
