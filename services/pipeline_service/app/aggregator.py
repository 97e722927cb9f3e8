"""
Pipeline aggregation.

Turns the authoritative lead set into the board: a lane x stage grid of
PipelineItems with lane-level and global rollups. Pure and deterministic;
the same leads and `now` always produce the same PipelineData.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from . import config
from .lanes import LANE_ORDER, Lane, classify_lane, lane_title
from .links import build_links
from .schemas import (
    LaneStats,
    LeadRecord,
    PipelineData,
    PipelineItem,
    PipelineTotals,
    StageData,
    Swimlane,
)
from .sla import SLAStatus, SLAThresholds, classify_sla, ensure_utc, format_time_in_stage, time_in_stage
from .stages import STAGE_ORDER, Stage, is_active, next_action, stage_label

logger = logging.getLogger(__name__)


# =============================================================================
# Boundary parsing
# =============================================================================

@dataclass
class QuarantinedRecord:
    """A raw row that failed validation and was kept off the board."""

    lead_id: Optional[str]
    reason: str


@dataclass
class ParsedLeads:
    leads: List[LeadRecord] = field(default_factory=list)
    quarantined: List[QuarantinedRecord] = field(default_factory=list)


def parse_lead_records(rows: Iterable[Mapping[str, Any]]) -> ParsedLeads:
    """
    Validate raw lead rows into LeadRecords.

    A missing stage defaults to new_lead (flagged via stage_defaulted). Rows
    that still fail validation (not a mapping, no id, unrecognised stage, bad
    types) are quarantined and logged instead of aborting the whole batch. A
    malformed quote only drops the quote, so the lead lands in no_quote.
    """
    parsed = ParsedLeads()

    for row in rows:
        if not isinstance(row, Mapping):
            logger.warning(f"⚠️ Quarantined lead row of type {type(row).__name__}: not a mapping")
            parsed.quarantined.append(QuarantinedRecord(lead_id=None, reason="not a mapping"))
            continue

        data = dict(row)
        raw_id = data.get("id")
        if data.get("stage") in (None, ""):
            data["stage"] = Stage.NEW_LEAD
            data["stage_defaulted"] = True

        try:
            parsed.leads.append(LeadRecord.model_validate(data))
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in e.errors()
            )
            reason = f"invalid fields: {fields}"
            logger.warning(f"⚠️ Quarantined lead {raw_id}: {reason}")
            parsed.quarantined.append(
                QuarantinedRecord(lead_id=str(raw_id) if raw_id is not None else None, reason=reason)
            )

    return parsed


# =============================================================================
# Item projection
# =============================================================================

def has_whatsapp_window(last_inbound_at: Optional[datetime], now: datetime) -> bool:
    """True while the customer's last inbound message is inside the reply window."""
    if last_inbound_at is None:
        return False
    delta = ensure_utc(now) - ensure_utc(last_inbound_at)
    return timedelta(0) <= delta < timedelta(hours=config.WHATSAPP_WINDOW_HOURS)


def build_item(
    lead: LeadRecord,
    now: datetime,
    thresholds: Optional[Mapping[Stage, SLAThresholds]] = None,
) -> PipelineItem:
    """Project one lead onto the board."""
    quote = lead.quote
    whatsapp_open = has_whatsapp_window(lead.last_inbound_at, now)

    if lead.stage_updated_at is None:
        sla_status = SLAStatus.OK
    else:
        sla_status = classify_sla(
            lead.stage, time_in_stage(lead.stage_updated_at, now), thresholds
        )

    return PipelineItem(
        id=lead.id,
        customer_name=lead.customer_name,
        phone=lead.phone,
        job_description=lead.job_description,
        source=lead.source,
        segment=(quote.segment if quote and quote.segment else lead.segment),
        stage=lead.stage,
        stage_label=stage_label(lead.stage),
        lane=classify_lane(quote),
        stage_updated_at=lead.stage_updated_at,
        time_in_stage=format_time_in_stage(lead.stage_updated_at, now),
        sla_status=sla_status,
        next_action=next_action(lead.stage),
        has_whatsapp_window=whatsapp_open,
        quote_id=quote.id if quote else None,
        quote_slug=quote.slug if quote else None,
        created_at=lead.created_at,
        links=build_links(lead.phone, quote.slug if quote else None, whatsapp_open),
    )


def _fallback_item(lead: LeadRecord) -> PipelineItem:
    return PipelineItem(
        id=lead.id,
        customer_name=lead.customer_name,
        phone=lead.phone,
        stage=Stage.NEW_LEAD,
        stage_label=stage_label(Stage.NEW_LEAD),
        lane=Lane.NO_QUOTE,
        time_in_stage="Unknown",
        sla_status=SLAStatus.OK,
        next_action=next_action(Stage.NEW_LEAD),
    )


def item_sort_key(item: PipelineItem):
    """Most recently moved first; unknown timestamps last; id breaks ties."""
    if item.stage_updated_at is None:
        return (1, 0.0, item.id)
    return (0, -ensure_utc(item.stage_updated_at).timestamp(), item.id)


# =============================================================================
# Rollups
# =============================================================================

def conversion_rate(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(completed / total, 2)


def summarize_lane(cells: Sequence[StageData]) -> LaneStats:
    """Lane stats from its cells."""
    total = active = completed = 0
    for cell in cells:
        total += cell.count
        if is_active(cell.stage):
            active += cell.count
        if cell.stage == Stage.COMPLETED:
            completed += cell.count
    return LaneStats(
        total=total,
        active=active,
        completed=completed,
        conversion_rate=conversion_rate(completed, total),
    )


def summarize_totals(swimlanes: Sequence[Swimlane]) -> PipelineTotals:
    """Global totals across lanes. `lost` counts stage == lost regardless of lane."""
    totals = PipelineTotals()
    for lane in swimlanes:
        totals.active += lane.stats.active
        totals.completed += lane.stats.completed
        totals.total += lane.stats.total
        for cell in lane.stages:
            if cell.stage == Stage.LOST:
                totals.lost += cell.count
    return totals


def build_swimlane(lane: Lane, cells: Sequence[StageData]) -> Swimlane:
    return Swimlane(
        lane=lane,
        title=lane_title(lane),
        stages=list(cells),
        stats=summarize_lane(cells),
    )


# =============================================================================
# Aggregate
# =============================================================================

def aggregate(
    leads: Sequence[LeadRecord],
    now: datetime,
    thresholds: Optional[Mapping[Stage, SLAThresholds]] = None,
    quarantined: int = 0,
) -> PipelineData:
    """
    Build the full board for `leads` as of `now`.

    Every lead lands in exactly one (lane, stage) cell. Lanes come out in
    LANE_ORDER and stages in STAGE_ORDER, with an (possibly empty) cell for
    every stage in every lane.
    """
    grid: dict[Lane, dict[Stage, List[PipelineItem]]] = {
        lane: {stage: [] for stage in STAGE_ORDER} for lane in LANE_ORDER
    }

    for lead in leads:
        try:
            item = build_item(lead, now, thresholds)
        except Exception as e:
            logger.error(f"❌ Failed to project lead {lead.id}, using defaults: {e}")
            item = _fallback_item(lead)
        grid[item.lane][item.stage].append(item)

    swimlanes = []
    for lane in LANE_ORDER:
        cells = []
        for stage in STAGE_ORDER:
            items = sorted(grid[lane][stage], key=item_sort_key)
            cells.append(
                StageData(stage=stage, title=stage_label(stage), count=len(items), items=items)
            )
        swimlanes.append(build_swimlane(lane, cells))

    return PipelineData(
        swimlanes=swimlanes,
        totals=summarize_totals(swimlanes),
        stage_order=list(STAGE_ORDER),
        generated_at=now,
        quarantined=quarantined,
    )


def aggregate_rows(
    rows: Iterable[Mapping[str, Any]],
    now: datetime,
    thresholds: Optional[Mapping[Stage, SLAThresholds]] = None,
) -> PipelineData:
    """Parse raw rows at the boundary, then aggregate what validated."""
    parsed = parse_lead_records(rows)
    return aggregate(parsed.leads, now, thresholds, quarantined=len(parsed.quarantined))
