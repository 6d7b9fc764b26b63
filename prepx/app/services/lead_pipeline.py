"""Lead funnel stages, the legal moves between them, and who may close a lead."""

from enum import Enum

from prepx.app.core.errors import InvalidStageTransition, PermissionDenied, ValidationFailed
from prepx.app.models.user import ADMIN_ROLES


class LeadStage(str, Enum):
    INQUIRY = "inquiry"
    FOLLOW_UP = "follow_up"
    DEMO = "demo"
    CONVERTED = "converted"
    LOST = "lost"


ALLOWED_TRANSITIONS = {
    LeadStage.INQUIRY: {LeadStage.FOLLOW_UP, LeadStage.LOST},
    LeadStage.FOLLOW_UP: {LeadStage.DEMO, LeadStage.LOST},
    LeadStage.DEMO: {LeadStage.CONVERTED, LeadStage.LOST},
    LeadStage.CONVERTED: set(),
    LeadStage.LOST: set(),
}

TERMINAL_STAGES = frozenset({LeadStage.CONVERTED, LeadStage.LOST})
OPEN_STAGES = (LeadStage.INQUIRY, LeadStage.FOLLOW_UP, LeadStage.DEMO)
ALL_STAGES = tuple(LeadStage)


def parse_stage(value) -> LeadStage:
    try:
        return LeadStage(value)
    except ValueError as exc:
        raise ValidationFailed(f"Unknown lead stage: {value}") from exc


def validate_transition(current, requested) -> LeadStage:
    """Return the stage to store when moving ``current`` to ``requested``.

    Raises InvalidStageTransition when the transition table does not allow it.
    Requesting the current stage of an open lead is accepted and changes nothing.
    """
    current_stage = parse_stage(current)
    requested_stage = parse_stage(requested)
    if current_stage == requested_stage and current_stage not in TERMINAL_STAGES:
        return current_stage
    if requested_stage not in ALLOWED_TRANSITIONS[current_stage]:
        raise InvalidStageTransition(current_stage.value, requested_stage.value)
    return requested_stage


def can_close_lead(user) -> bool:
    return user is not None and getattr(user, "role", None) in ADMIN_ROLES


def ensure_can_close_lead(user) -> None:
    """Conversion, loss and deletion are reserved for admin roles."""
    if not can_close_lead(user):
        raise PermissionDenied("Only admins can convert, close or delete leads")
