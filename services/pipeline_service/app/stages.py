"""
Stage registry for the lead pipeline.
The closed, ordered set of lifecycle stages plus display metadata.
"""
import enum
from typing import Optional


class Stage(str, enum.Enum):
    """Lifecycle stage of a lead."""

    NEW_LEAD = "new_lead"
    CONTACTED = "contacted"
    AWAITING_VIDEO = "awaiting_video"
    QUOTE_SENT = "quote_sent"
    QUOTE_VIEWED = "quote_viewed"
    AWAITING_PAYMENT = "awaiting_payment"
    BOOKED = "booked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    LOST = "lost"
    EXPIRED = "expired"
    DECLINED = "declined"


# Canonical column order (enum definition order)
STAGE_ORDER: list[Stage] = list(Stage)

ACTIVE_STAGES: frozenset[Stage] = frozenset(STAGE_ORDER[: STAGE_ORDER.index(Stage.IN_PROGRESS) + 1])
TERMINAL_STAGES: frozenset[Stage] = frozenset(
    {Stage.COMPLETED, Stage.LOST, Stage.EXPIRED, Stage.DECLINED}
)

# Higher = further down the funnel. Negative ranks are dead ends.
_STAGE_RANK: dict[Stage, int] = {
    Stage.NEW_LEAD: 0,
    Stage.CONTACTED: 1,
    Stage.AWAITING_VIDEO: 2,
    Stage.QUOTE_SENT: 4,
    Stage.QUOTE_VIEWED: 5,
    Stage.AWAITING_PAYMENT: 6,
    Stage.BOOKED: 7,
    Stage.IN_PROGRESS: 8,
    Stage.COMPLETED: 9,
    Stage.LOST: -1,
    Stage.EXPIRED: -2,
    Stage.DECLINED: -3,
}

_STAGE_LABELS: dict[Stage, str] = {
    Stage.NEW_LEAD: "New Lead",
    Stage.CONTACTED: "Contacted",
    Stage.AWAITING_VIDEO: "Awaiting Video",
    Stage.QUOTE_SENT: "Quote Sent",
    Stage.QUOTE_VIEWED: "Quote Viewed",
    Stage.AWAITING_PAYMENT: "Awaiting Payment",
    Stage.BOOKED: "Booked",
    Stage.IN_PROGRESS: "In Progress",
    Stage.COMPLETED: "Completed",
    Stage.LOST: "Lost",
    Stage.EXPIRED: "Expired",
    Stage.DECLINED: "Declined",
}

_NEXT_ACTIONS: dict[Stage, str] = {
    Stage.NEW_LEAD: "Contact customer",
    Stage.CONTACTED: "Determine route",
    Stage.AWAITING_VIDEO: "Chase video",
    Stage.QUOTE_SENT: "Follow up",
    Stage.QUOTE_VIEWED: "Close the deal",
    Stage.AWAITING_PAYMENT: "Chase payment",
    Stage.BOOKED: "Dispatch",
    Stage.IN_PROGRESS: "Monitor job",
    Stage.COMPLETED: "Request review",
    Stage.LOST: "Remarketing",
    Stage.EXPIRED: "Re-engage",
    Stage.DECLINED: "Understand why",
}


def parse_stage(value) -> Optional[Stage]:
    """Return the Stage for a Stage or its string value, None for anything else."""
    if isinstance(value, Stage):
        return value
    if isinstance(value, str):
        try:
            return Stage(value.strip().lower())
        except ValueError:
            return None
    return None


def is_terminal(stage: Stage) -> bool:
    return stage in TERMINAL_STAGES


def is_active(stage: Stage) -> bool:
    return stage in ACTIVE_STAGES


def stage_label(stage: Stage) -> str:
    """Human-readable name, e.g. new_lead -> 'New Lead'."""
    return _STAGE_LABELS[stage]


def next_action(stage: Stage) -> str:
    """Hint shown to operators for what to do with a lead in this stage."""
    return _NEXT_ACTIONS.get(stage, "Review")


def stage_rank(stage: Stage) -> int:
    return _STAGE_RANK[stage]
