"""
Mention review workflow.

A mention moves through:

    pending_extraction -> extracted -> approved
                                    -> pending_review -> approved
                                                      -> needs_correction
                                                      -> rejected

Transitions are pure: they return the next state and the side effects the
caller must carry out, and never touch a store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from entitymatch.config import settings
from entitymatch.errors import InvalidTransitionError
from entitymatch.schemas import MentionState


class Trigger(str, Enum):
    """Events that drive a mention through the workflow."""

    EXTRACTION_COMPLETE = "extraction_complete"
    HIGH_CONFIDENCE = "high_confidence"
    LOW_CONFIDENCE = "low_confidence"
    ADMIN_APPROVE = "admin_approve"
    ADMIN_REQUEST_CORRECTION = "admin_request_correction"
    ADMIN_REJECT = "admin_reject"


class SideEffect(str, Enum):
    """Work the caller performs after a transition."""

    COMPUTE_CONFIDENCE = "compute_confidence"
    CREATE_REVIEW_TASK = "create_review_task"
    FLAG_FOR_CORRECTION = "flag_for_correction"


@dataclass
class Transition:
    """Outcome of applying a trigger."""

    state: MentionState
    side_effects: list[SideEffect] = field(default_factory=list)

    def __iter__(self):
        # Unpacks as (next_state, side_effects)
        yield self.state
        yield self.side_effects


TRANSITIONS: dict[tuple[MentionState, Trigger], MentionState] = {
    (MentionState.PENDING_EXTRACTION, Trigger.EXTRACTION_COMPLETE): MentionState.EXTRACTED,
    (MentionState.EXTRACTED, Trigger.HIGH_CONFIDENCE): MentionState.APPROVED,
    (MentionState.EXTRACTED, Trigger.LOW_CONFIDENCE): MentionState.PENDING_REVIEW,
    (MentionState.PENDING_REVIEW, Trigger.ADMIN_APPROVE): MentionState.APPROVED,
    (MentionState.PENDING_REVIEW, Trigger.ADMIN_REQUEST_CORRECTION): MentionState.NEEDS_CORRECTION,
    (MentionState.PENDING_REVIEW, Trigger.ADMIN_REJECT): MentionState.REJECTED,
}

TERMINAL_STATES = frozenset(
    {MentionState.APPROVED, MentionState.REJECTED, MentionState.NEEDS_CORRECTION}
)


def is_terminal(state: MentionState) -> bool:
    """Terminal states accept no triggers; needs_correction is left by resubmission."""
    return state in TERMINAL_STATES


def trigger_for_confidence(
    confidence: float,
    forced_review: bool = False,
    auto_approve_threshold: Optional[float] = None,
) -> Trigger:
    """Pick the confidence trigger for an extracted mention."""
    threshold = (
        settings.auto_approve_threshold
        if auto_approve_threshold is None
        else auto_approve_threshold
    )
    if forced_review or confidence < threshold:
        return Trigger.LOW_CONFIDENCE
    return Trigger.HIGH_CONFIDENCE


def transition(
    state: MentionState,
    trigger: Trigger,
    confidence: Optional[float] = None,
    auto_approve_threshold: Optional[float] = None,
    needs_correction_threshold: Optional[float] = None,
) -> Transition:
    """
    Apply a trigger to a workflow state.

    Args:
        state: Current mention state
        trigger: Event to apply
        confidence: Overall confidence, checked by the confidence triggers
        auto_approve_threshold: Override of the configured threshold
        needs_correction_threshold: Override of the configured threshold

    Returns:
        Transition with the next state and side effects

    Raises:
        InvalidTransitionError: if the trigger does not apply to the state
    """
    state = MentionState(state)
    trigger = Trigger(trigger)

    next_state = TRANSITIONS.get((state, trigger))
    if next_state is None:
        detail = "state is terminal" if is_terminal(state) else ""
        raise InvalidTransitionError(state.value, trigger.value, detail)

    approve_at = (
        settings.auto_approve_threshold
        if auto_approve_threshold is None
        else auto_approve_threshold
    )
    correct_below = (
        settings.needs_correction_threshold
        if needs_correction_threshold is None
        else needs_correction_threshold
    )

    effects: list[SideEffect] = []
    if trigger == Trigger.EXTRACTION_COMPLETE:
        effects.append(SideEffect.COMPUTE_CONFIDENCE)
    elif trigger == Trigger.HIGH_CONFIDENCE:
        if confidence is not None and confidence < approve_at:
            raise InvalidTransitionError(
                state.value,
                trigger.value,
                f"confidence {confidence:.1f} is below {approve_at:.1f}",
            )
    elif trigger == Trigger.LOW_CONFIDENCE:
        effects.append(SideEffect.CREATE_REVIEW_TASK)
        if confidence is not None and confidence < correct_below:
            effects.append(SideEffect.FLAG_FOR_CORRECTION)

    return Transition(state=next_state, side_effects=effects)
