#!/usr/bin/env python3
"""
Proposal Workflow State Machine
===============================
The gate between measuring a roof and delivering a priced proposal.

    MEASURING -> PRICED -> GENERATED -> SENT
        \\           \\          \\
         +-----------+----------+--> ABANDONED

Backward moves (PRICED -> MEASURING, GENERATED -> PRICED) discard whatever
the later state produced. Rendering and delivery are external collaborators
awaited with a timeout; when they fail the state does not move, so GENERATED
and SENT always correspond to a real artifact.

Transition functions are pure: they take a snapshot and return a
TransitionResult. ProposalWorkflow holds one live snapshot, keeps the
transition history and logs every move.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Union

from pricing_settings import PricingSettings, load_pricing_settings
from proposal_errors import ExternalCollaboratorFailure, InvalidInput, InvalidTransition, ProposalCoreError
from tier_pricing import (
    DEFAULT_SELECTED_TIER,
    PricingInput,
    Tier,
    TierPricing,
    TierPricingSet,
    build_pricing_input,
    calculate_tiers,
)

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    """Proposal workflow states."""
    MEASURING = "measuring"    # Collecting roof measurements
    PRICED = "priced"          # Three tiers priced, one selected
    GENERATED = "generated"    # Proposal document rendered
    SENT = "sent"              # Delivered to the homeowner

    # Terminal
    ABANDONED = "abandoned"    # Discarded without side effects


# Valid state transitions
VALID_TRANSITIONS = {
    WorkflowState.MEASURING: [WorkflowState.PRICED, WorkflowState.ABANDONED],
    WorkflowState.PRICED: [WorkflowState.GENERATED, WorkflowState.MEASURING, WorkflowState.ABANDONED],
    WorkflowState.GENERATED: [WorkflowState.SENT, WorkflowState.PRICED, WorkflowState.ABANDONED],
    WorkflowState.SENT: [WorkflowState.SENT],  # Resend only
    WorkflowState.ABANDONED: [],  # Terminal
}

TERMINAL_STATES = {WorkflowState.SENT, WorkflowState.ABANDONED}
OPEN_STATES = (WorkflowState.MEASURING, WorkflowState.PRICED, WorkflowState.GENERATED)


# =============================================================================
# COLLABORATOR INTERFACES
# =============================================================================


@dataclass(frozen=True)
class RenderedProposal:
    """What the renderer hands back: the stored proposal id and an HTML preview."""
    proposal_id: str
    html_preview: Optional[str] = None


class ProposalRenderer(Protocol):
    async def render_proposal(self, tier: TierPricing, scope_of_work: str) -> RenderedProposal:
        ...


class ProposalSender(Protocol):
    async def send_proposal(self, proposal_id: str, recipient_email: str) -> bool:
        ...


# =============================================================================
# SNAPSHOT & RESULTS
# =============================================================================


@dataclass(frozen=True)
class ProposalSnapshot:
    """Immutable view of one proposal's progress."""
    state: WorkflowState = WorkflowState.MEASURING
    pricing_input: Optional[PricingInput] = None
    tiers: Optional[TierPricingSet] = None
    selected_tier: Optional[Tier] = None
    scope_of_work: Optional[str] = None
    proposal: Optional[RenderedProposal] = None
    recipient_email: Optional[str] = None

    @property
    def selected_pricing(self) -> Optional[TierPricing]:
        if self.tiers is None or self.selected_tier is None:
            return None
        return self.tiers[self.selected_tier]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class TransitionResult:
    """Tagged outcome of a transition: ok with the new snapshot, or the error and the unchanged one."""
    ok: bool
    snapshot: ProposalSnapshot
    error: Optional[ProposalCoreError] = None

    @classmethod
    def success(cls, snapshot: ProposalSnapshot) -> "TransitionResult":
        return cls(ok=True, snapshot=snapshot)

    @classmethod
    def failure(cls, snapshot: ProposalSnapshot, error: ProposalCoreError) -> "TransitionResult":
        return cls(ok=False, snapshot=snapshot, error=error)


@dataclass
class StateTransition:
    """Represents a state transition event."""
    id: str
    workflow_id: str
    from_state: str
    to_state: str
    trigger: str  # Which transition function ran
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def can_transition(current: WorkflowState, to_state: WorkflowState) -> tuple[bool, str]:
    """Check if a state transition is valid."""
    if to_state in VALID_TRANSITIONS.get(current, []):
        return True, "Transition allowed"
    if current in TERMINAL_STATES:
        return False, f"Cannot transition from terminal state {current.value}"
    return False, f"Cannot transition from {current.value} to {to_state.value}"


def _guard(
    snapshot: ProposalSnapshot,
    to_state: WorkflowState,
    from_states: tuple[WorkflowState, ...],
) -> Optional[TransitionResult]:
    """Failure result when this move is not allowed from the snapshot's state, else None."""
    allowed, reason = can_transition(snapshot.state, to_state)
    if allowed and snapshot.state not in from_states:
        allowed, reason = False, f"Cannot transition from {snapshot.state.value} to {to_state.value} this way"
    if allowed:
        return None
    return TransitionResult.failure(snapshot, InvalidTransition(reason))


async def _await_collaborator(collaborator: str, call, timeout: float) -> Any:
    """Await one collaborator call; timeouts and errors become ExternalCollaboratorFailure.

    CancelledError is not an Exception and passes straight through.
    """
    try:
        return await asyncio.wait_for(call(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ExternalCollaboratorFailure(
            f"{collaborator} did not answer within {timeout}s", collaborator=collaborator
        ) from exc
    except ExternalCollaboratorFailure:
        raise
    except Exception as exc:
        raise ExternalCollaboratorFailure(f"{collaborator} failed: {exc}", collaborator=collaborator) from exc


def _default_timeout() -> float:
    from config import config
    return config.backend.timeout


# =============================================================================
# TRANSITIONS
# =============================================================================


def submit_measurements(
    snapshot: ProposalSnapshot,
    pricing_input: Union[PricingInput, Mapping[str, Any]],
    settings: Optional[PricingSettings] = None,
) -> TransitionResult:
    """MEASURING -> PRICED. Prices all tiers and preselects the recommended one."""
    blocked = _guard(snapshot, WorkflowState.PRICED, (WorkflowState.MEASURING,))
    if blocked:
        return blocked

    try:
        if not isinstance(pricing_input, PricingInput):
            pricing_input = build_pricing_input(**pricing_input, settings=settings)
        tiers = calculate_tiers(pricing_input, settings)
    except InvalidInput as exc:
        return TransitionResult.failure(snapshot, exc)
    except TypeError as exc:
        return TransitionResult.failure(snapshot, InvalidInput(f"Bad measurement fields: {exc}"))

    return TransitionResult.success(replace(
        snapshot,
        state=WorkflowState.PRICED,
        pricing_input=pricing_input,
        tiers=tiers,
        selected_tier=DEFAULT_SELECTED_TIER,
    ))


def select_tier(snapshot: ProposalSnapshot, tier: Union[Tier, str]) -> TransitionResult:
    """Change the selected tier. Only while PRICED; the state does not move."""
    if snapshot.state != WorkflowState.PRICED:
        return TransitionResult.failure(
            snapshot, InvalidTransition(f"Tier can only be selected while priced, not {snapshot.state.value}")
        )
    try:
        chosen = Tier(tier)
    except ValueError:
        return TransitionResult.failure(
            snapshot, InvalidInput(f"Unknown tier '{tier}'", field="tier")
        )
    return TransitionResult.success(replace(snapshot, selected_tier=chosen))


async def generate_proposal(
    snapshot: ProposalSnapshot,
    scope_of_work: str,
    renderer: ProposalRenderer,
    timeout: Optional[float] = None,
) -> TransitionResult:
    """PRICED -> GENERATED. Renders the selected tier through the renderer."""
    blocked = _guard(snapshot, WorkflowState.GENERATED, (WorkflowState.PRICED,))
    if blocked:
        return blocked

    timeout = _default_timeout() if timeout is None else timeout
    tier_pricing = snapshot.selected_pricing
    try:
        rendered = await _await_collaborator(
            "renderer", lambda: renderer.render_proposal(tier_pricing, scope_of_work), timeout
        )
        if isinstance(rendered, tuple) and len(rendered) == 2:
            rendered = RenderedProposal(*rendered)
        if not isinstance(rendered, RenderedProposal) or not rendered.proposal_id:
            raise ExternalCollaboratorFailure("renderer returned no proposal id", collaborator="renderer")
    except ExternalCollaboratorFailure as exc:
        return TransitionResult.failure(snapshot, exc)

    return TransitionResult.success(replace(
        snapshot,
        state=WorkflowState.GENERATED,
        scope_of_work=scope_of_work,
        proposal=rendered,
    ))


async def send_proposal(
    snapshot: ProposalSnapshot,
    recipient_email: str,
    sender: ProposalSender,
    timeout: Optional[float] = None,
) -> TransitionResult:
    """GENERATED -> SENT. A failed or refused send leaves GENERATED so it can be retried."""
    blocked = _guard(snapshot, WorkflowState.SENT, (WorkflowState.GENERATED, WorkflowState.SENT))
    if blocked:
        return blocked

    recipient = (recipient_email or "").strip()
    if "@" not in recipient:
        return TransitionResult.failure(
            snapshot, InvalidInput(f"Invalid recipient email '{recipient_email}'", field="recipient_email")
        )

    timeout = _default_timeout() if timeout is None else timeout
    proposal_id = snapshot.proposal.proposal_id
    try:
        delivered = await _await_collaborator(
            "sender", lambda: sender.send_proposal(proposal_id, recipient), timeout
        )
        if not delivered:
            raise ExternalCollaboratorFailure("sender did not confirm delivery", collaborator="sender")
    except ExternalCollaboratorFailure as exc:
        return TransitionResult.failure(snapshot, exc)

    return TransitionResult.success(replace(snapshot, state=WorkflowState.SENT, recipient_email=recipient))


def revise_measurements(snapshot: ProposalSnapshot) -> TransitionResult:
    """PRICED -> MEASURING. Drops the priced tiers; the measurements stay for editing."""
    blocked = _guard(snapshot, WorkflowState.MEASURING, (WorkflowState.PRICED,))
    if blocked:
        return blocked
    return TransitionResult.success(replace(
        snapshot, state=WorkflowState.MEASURING, tiers=None, selected_tier=None
    ))


def revise_tier(snapshot: ProposalSnapshot) -> TransitionResult:
    """GENERATED -> PRICED. Drops the generated proposal."""
    blocked = _guard(snapshot, WorkflowState.PRICED, (WorkflowState.GENERATED,))
    if blocked:
        return blocked
    return TransitionResult.success(replace(
        snapshot, state=WorkflowState.PRICED, proposal=None, scope_of_work=None
    ))


def abandon(snapshot: ProposalSnapshot) -> TransitionResult:
    """Any open state -> ABANDONED. Nothing external is touched."""
    blocked = _guard(snapshot, WorkflowState.ABANDONED, OPEN_STATES)
    if blocked:
        return blocked
    return TransitionResult.success(replace(snapshot, state=WorkflowState.ABANDONED))


# =============================================================================
# WORKFLOW HOLDER
# =============================================================================


class ProposalWorkflow:
    """
    One proposal in flight.

    Holds the live snapshot and the renderer / sender collaborators, applies
    transitions, keeps an in-memory transition history and logs every move.
    Without explicit settings the configured pricing settings are loaded.
    """

    def __init__(
        self,
        renderer: Optional[ProposalRenderer] = None,
        sender: Optional[ProposalSender] = None,
        settings: Optional[PricingSettings] = None,
        timeout: Optional[float] = None,
        workflow_id: Optional[str] = None,
    ):
        self.workflow_id = workflow_id or str(uuid.uuid4())
        self.renderer = renderer
        self.sender = sender
        self.settings = settings if settings is not None else load_pricing_settings()
        self.timeout = timeout
        self.snapshot = ProposalSnapshot()
        self.history: list[StateTransition] = []

    @property
    def state(self) -> WorkflowState:
        return self.snapshot.state

    def _apply(self, trigger: str, before: ProposalSnapshot, result: TransitionResult) -> TransitionResult:
        if self.snapshot is not before:
            # Another transition landed while a collaborator was being awaited.
            error = InvalidTransition(
                f"Workflow moved to {self.snapshot.state.value} while {trigger} was in flight"
            )
            logger.warning("Proposal workflow %s: %s discarded: %s", self.workflow_id[:8], trigger, error)
            return TransitionResult.failure(self.snapshot, error)

        if not result.ok:
            logger.warning(
                "Proposal workflow %s: %s failed in %s: %s",
                self.workflow_id[:8],
                trigger,
                before.state.value,
                result.error,
            )
            return result

        self.snapshot = result.snapshot
        if before.state != result.snapshot.state or trigger == "send_proposal":
            self.history.append(StateTransition(
                id=str(uuid.uuid4()),
                workflow_id=self.workflow_id,
                from_state=before.state.value,
                to_state=result.snapshot.state.value,
                trigger=trigger,
            ))
            logger.info(
                "Proposal workflow %s: %s -> %s",
                self.workflow_id[:8],
                before.state.value,
                result.snapshot.state.value,
            )
        return result

    def submit_measurements(self, pricing_input: Union[PricingInput, Mapping[str, Any]]) -> TransitionResult:
        before = self.snapshot
        return self._apply("submit_measurements", before, submit_measurements(before, pricing_input, self.settings))

    def select_tier(self, tier: Union[Tier, str]) -> TransitionResult:
        before = self.snapshot
        return self._apply("select_tier", before, select_tier(before, tier))

    async def generate_proposal(self, scope_of_work: str) -> TransitionResult:
        if self.renderer is None:
            raise ValueError("ProposalWorkflow has no renderer")
        before = self.snapshot
        result = await generate_proposal(before, scope_of_work, self.renderer, self.timeout)
        return self._apply("generate_proposal", before, result)

    async def send_proposal(self, recipient_email: str) -> TransitionResult:
        if self.sender is None:
            raise ValueError("ProposalWorkflow has no sender")
        before = self.snapshot
        result = await send_proposal(before, recipient_email, self.sender, self.timeout)
        return self._apply("send_proposal", before, result)

    def revise_measurements(self) -> TransitionResult:
        before = self.snapshot
        return self._apply("revise_measurements", before, revise_measurements(before))

    def revise_tier(self) -> TransitionResult:
        before = self.snapshot
        return self._apply("revise_tier", before, revise_tier(before))

    def abandon(self) -> TransitionResult:
        before = self.snapshot
        return self._apply("abandon", before, abandon(before))
