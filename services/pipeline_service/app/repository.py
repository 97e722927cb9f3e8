"""
Data access for the pipeline store.
Loads lead rows for aggregation and applies stage changes under server-side rules.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from .models import Lead, Quote
from .schemas import QuoteUpsert, StageChangeAck
from .stages import Stage, is_terminal, parse_stage, stage_label, stage_rank

logger = logging.getLogger(__name__)

# Follow-ups owed when a lead lands in these stages
_STAGE_FOLLOW_UPS = {
    Stage.LOST: "add_to_remarketing_list",
    Stage.BOOKED: "send_confirmation",
}


class StageChangeRejected(Exception):
    """A stage change the server refuses. Carries a machine-readable reason."""

    def __init__(self, reason: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code


def _parse_lead_id(lead_id) -> Optional[UUID]:
    if isinstance(lead_id, UUID):
        return lead_id
    try:
        return UUID(str(lead_id))
    except (TypeError, ValueError):
        return None


def get_lead(db: Session, lead_id) -> Optional[Lead]:
    parsed = _parse_lead_id(lead_id)
    if parsed is None:
        return None
    return db.query(Lead).filter(Lead.id == parsed).first()


def lead_to_row(lead: Lead) -> dict:
    """Flatten a Lead (and its quote) into the raw shape the aggregator parses."""
    quote = None
    if lead.quote is not None:
        quote = {
            "id": lead.quote.id,
            "slug": lead.quote.slug,
            "quote_mode": lead.quote.quote_mode,
            "segment": lead.quote.segment,
        }
    return {
        "id": str(lead.id),
        "customer_name": lead.customer_name,
        "phone": lead.phone,
        "job_description": lead.job_description,
        "source": lead.source,
        "segment": lead.segment,
        "quote": quote,
        "created_at": lead.created_at,
        "stage": lead.stage,
        "stage_updated_at": lead.stage_updated_at,
        "last_inbound_at": lead.last_inbound_at,
    }


def load_lead_rows(db: Session) -> list[dict]:
    """All leads as raw rows, newest first."""
    leads = (
        db.query(Lead)
        .options(joinedload(Lead.quote))
        .order_by(Lead.created_at.desc())
        .all()
    )
    return [lead_to_row(lead) for lead in leads]


def check_transition(current: Stage, target: Stage) -> None:
    """
    Server-side rules for a non-forced move.

    Terminal stages are sinks, and a lead may not move back up the funnel.
    Dropping out to lost/expired/declined is allowed from any active stage.
    """
    if is_terminal(current):
        raise StageChangeRejected(
            "invalid_transition",
            f"Lead is {stage_label(current)}; use force to move it out of a terminal stage",
        )
    if stage_rank(target) >= 0 and stage_rank(target) < stage_rank(current):
        raise StageChangeRejected(
            "invalid_transition",
            f"Cannot move back from {stage_label(current)} to {stage_label(target)} without force",
        )


def change_stage(
    db: Session,
    lead_id,
    stage_value,
    force: bool = False,
    reason: Optional[str] = None,
) -> StageChangeAck:
    """
    Move a lead to `stage_value`.

    Moving to the current stage is a no-op (changed=False) so retries are safe.
    Raises StageChangeRejected for unknown stages, missing leads and refused
    transitions.
    """
    target = parse_stage(stage_value)
    if target is None:
        raise StageChangeRejected("invalid_stage", f"Unknown stage '{stage_value}'", 422)

    lead = get_lead(db, lead_id)
    if lead is None:
        raise StageChangeRejected("lead_not_found", "Lead not found", 404)

    current = parse_stage(lead.stage) or Stage.NEW_LEAD
    if current == target and lead.stage == target.value:
        return StageChangeAck(
            lead_id=str(lead.id), previous_stage=current, new_stage=target, changed=False
        )

    if not force:
        check_transition(current, target)

    lead.stage = target.value
    lead.stage_updated_at = datetime.utcnow()
    db.commit()
    db.refresh(lead)

    logger.info(
        f"✅ Lead {lead.id} stage updated: {current.value} -> {target.value} "
        f"({reason or 'no reason'}{', forced' if force else ''})"
    )
    follow_up = _STAGE_FOLLOW_UPS.get(target)
    if follow_up:
        logger.info(f"📌 Lead {lead.id} now {target.value}: {follow_up} pending")

    return StageChangeAck(
        lead_id=str(lead.id), previous_stage=current, new_stage=target, changed=True
    )


def upsert_quote(db: Session, lead: Lead, data: QuoteUpsert) -> Quote:
    """Record (or replace) the quote metadata for a lead."""
    quote = lead.quote
    if quote is None:
        quote = Quote(lead_id=lead.id)
        if data.id:
            quote.id = data.id
        db.add(quote)
        lead.quote = quote

    quote.slug = data.slug
    quote.quote_mode = data.quote_mode
    quote.segment = data.segment
    db.commit()
    db.refresh(quote)

    logger.info(f"🧾 Quote {quote.id} recorded for lead {lead.id} (mode={quote.quote_mode})")
    return quote
