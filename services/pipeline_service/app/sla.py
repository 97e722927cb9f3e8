"""
SLA classification for pipeline stages.

A lead's urgency is derived from how long it has been sitting in its current
stage. Each stage has a (warning_after, overdue_after) pair; the three bands
partition [0, inf):

    ok       elapsed <  warning_after
    warning  warning_after <= elapsed < overdue_after
    overdue  elapsed >= overdue_after

SLA status is never stored. It is recomputed on every read so it is always current.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from . import config
from .stages import Stage

logger = logging.getLogger(__name__)


class SLAStatus(str, enum.Enum):
    """Urgency of a lead in its current stage."""

    OK = "ok"
    WARNING = "warning"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class SLAThresholds:
    """Elapsed-time boundaries for one stage."""

    warning_after: timedelta
    overdue_after: timedelta

    def __post_init__(self):
        if self.warning_after < timedelta(0):
            raise ValueError("warning_after must not be negative")
        if self.warning_after > self.overdue_after:
            raise ValueError("warning_after must not exceed overdue_after")

    @classmethod
    def from_sla_hours(cls, hours: float) -> "SLAThresholds":
        """Warn once less than a quarter of the SLA remains, overdue once it is used up."""
        sla = timedelta(hours=hours)
        return cls(warning_after=sla * 0.75, overdue_after=sla)


# Stages that wait on the customer or the calendar have no deadline.
NO_SLA = SLAThresholds(warning_after=timedelta.max, overdue_after=timedelta.max)

DEFAULT_THRESHOLDS: dict[Stage, SLAThresholds] = {
    Stage.NEW_LEAD: SLAThresholds.from_sla_hours(0.5),
    Stage.CONTACTED: SLAThresholds.from_sla_hours(24),
    Stage.AWAITING_VIDEO: SLAThresholds.from_sla_hours(24),
    Stage.QUOTE_SENT: SLAThresholds.from_sla_hours(12),
    Stage.QUOTE_VIEWED: SLAThresholds.from_sla_hours(24),
    Stage.AWAITING_PAYMENT: SLAThresholds.from_sla_hours(12),
    Stage.BOOKED: NO_SLA,
    Stage.IN_PROGRESS: NO_SLA,
    Stage.COMPLETED: NO_SLA,
    Stage.LOST: NO_SLA,
    Stage.EXPIRED: NO_SLA,
    Stage.DECLINED: NO_SLA,
}


def fallback_thresholds() -> SLAThresholds:
    """System-wide pair for stages absent from a threshold table."""
    return SLAThresholds(
        warning_after=timedelta(hours=config.SLA_FALLBACK_WARNING_HOURS),
        overdue_after=timedelta(hours=config.SLA_FALLBACK_OVERDUE_HOURS),
    )


def classify_sla(
    stage: Stage,
    elapsed: timedelta,
    thresholds: Optional[Mapping[Stage, SLAThresholds]] = None,
    fallback: Optional[SLAThresholds] = None,
) -> SLAStatus:
    """
    Classify how urgent a lead is given its stage and time in that stage.

    Args:
        stage: Current stage of the lead.
        elapsed: Time since the lead entered the stage. Negative values are
            clamped to zero.
        thresholds: Per-stage thresholds. Defaults to DEFAULT_THRESHOLDS.
        fallback: Pair used for stages missing from `thresholds`.

    Returns:
        Exactly one of SLAStatus.OK, WARNING or OVERDUE.
    """
    if elapsed < timedelta(0):
        logger.debug(f"Negative elapsed time {elapsed} for stage {stage}, clamping to zero")
        elapsed = timedelta(0)

    table = DEFAULT_THRESHOLDS if thresholds is None else thresholds
    pair = table.get(stage)
    if pair is None:
        pair = fallback or fallback_thresholds()

    if elapsed < pair.warning_after:
        return SLAStatus.OK
    if elapsed < pair.overdue_after:
        return SLAStatus.WARNING
    return SLAStatus.OVERDUE


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (that is how the database stores them)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def time_in_stage(entered_at: Optional[datetime], now: datetime) -> timedelta:
    """Elapsed time since `entered_at`, zero when unknown or in the future."""
    if entered_at is None:
        return timedelta(0)
    elapsed = ensure_utc(now) - ensure_utc(entered_at)
    return max(elapsed, timedelta(0))


def format_time_in_stage(entered_at: Optional[datetime], now: datetime) -> str:
    """Render time in stage the way the board shows it: '3h 20m', '2 days', ..."""
    if entered_at is None:
        return "Unknown"

    minutes = int(time_in_stage(entered_at, now).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return "1 day" if days == 1 else f"{days} days"
    if hours > 0:
        remaining_minutes = minutes % 60
        if remaining_minutes > 0:
            return f"{hours}h {remaining_minutes}m"
        return f"{hours}h"
    if minutes > 0:
        return f"{minutes}m"
    return "Just now"
