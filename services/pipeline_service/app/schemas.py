"""
Pydantic schemas for the Pipeline Service.
Covers the validated lead record, the board projection and the API payloads.
"""
import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, field_validator

from .lanes import Lane
from .sla import SLAStatus
from .stages import Stage

logger = logging.getLogger(__name__)


# =============================================================================
# Validated lead record (boundary type)
# =============================================================================

class QuoteInfo(BaseModel):
    """Quote metadata attached to a lead. Only what lane routing and links need."""

    id: str
    slug: Optional[str] = None
    quote_mode: Optional[str] = None
    segment: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        return str(value) if isinstance(value, UUID) else value


class LeadRecord(BaseModel):
    """A lead that passed boundary validation and is safe to aggregate."""

    id: str = Field(..., min_length=1)
    customer_name: str = ""
    phone: str = ""
    job_description: Optional[str] = None
    source: Optional[str] = None
    segment: Optional[str] = None
    quote: Optional[QuoteInfo] = None
    created_at: Optional[datetime] = None
    stage: Stage = Stage.NEW_LEAD
    stage_updated_at: Optional[datetime] = None
    last_inbound_at: Optional[datetime] = None
    stage_defaulted: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        return str(value) if isinstance(value, UUID) else value

    @field_validator("customer_name", "phone", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("stage", mode="before")
    @classmethod
    def _normalize_stage(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("quote", mode="before")
    @classmethod
    def _lenient_quote(cls, value, info):
        # Malformed quote metadata falls back to the no_quote lane
        if value is None or isinstance(value, QuoteInfo):
            return value
        try:
            return QuoteInfo.model_validate(value)
        except ValidationError as e:
            lead_id = info.data.get("id")
            logger.warning(f"⚠️ Ignoring malformed quote on lead {lead_id}: {e.error_count()} error(s)")
            return None


# =============================================================================
# Board projection
# =============================================================================

class LeadLinks(BaseModel):
    """Outbound navigation targets for a lead."""

    call: Optional[str] = None
    inbox: Optional[str] = None
    quote: Optional[str] = None


class PipelineItem(BaseModel):
    """Read projection of one lead as shown on the board."""

    id: str
    customer_name: str
    phone: str
    job_description: Optional[str] = None
    source: Optional[str] = None
    segment: Optional[str] = None
    stage: Stage
    stage_label: str
    lane: Lane
    stage_updated_at: Optional[datetime] = None
    time_in_stage: str
    sla_status: SLAStatus
    next_action: str
    has_whatsapp_window: bool = False
    quote_id: Optional[str] = None
    quote_slug: Optional[str] = None
    created_at: Optional[datetime] = None
    links: LeadLinks = Field(default_factory=LeadLinks)


class StageData(BaseModel):
    """One (lane, stage) cell."""

    stage: Stage
    title: str
    count: int = 0
    items: List[PipelineItem] = Field(default_factory=list)


class LaneStats(BaseModel):
    total: int = 0
    active: int = 0
    completed: int = 0
    conversion_rate: float = 0.0


class Swimlane(BaseModel):
    """A lane's full row across all stages."""

    lane: Lane
    title: str
    stages: List[StageData]
    stats: LaneStats


class PipelineTotals(BaseModel):
    active: int = 0
    completed: int = 0
    lost: int = 0
    total: int = 0


class PipelineData(BaseModel):
    """The full board: every lane, global totals and the column order."""

    swimlanes: List[Swimlane]
    totals: PipelineTotals
    stage_order: List[Stage]
    generated_at: datetime
    quarantined: int = 0


# =============================================================================
# API payloads
# =============================================================================

class StageChangeRequest(BaseModel):
    """Body of PATCH /leads/{lead_id}/stage."""

    stage: str = Field(..., description="Target stage")
    force: bool = Field(default=False, description="Skip transition rules (admin override)")
    reason: Optional[str] = Field(default=None, max_length=500)

    class Config:
        json_schema_extra = {
            "example": {"stage": "booked", "force": True},
        }


class StageChangeAck(BaseModel):
    """Server acknowledgement of a stage change."""

    lead_id: str = Field(..., alias="leadId")
    previous_stage: Optional[Stage] = Field(default=None, alias="previousStage")
    new_stage: Stage = Field(..., alias="newStage")
    changed: bool = True

    class Config:
        populate_by_name = True


class QuoteUpsert(BaseModel):
    """Quote metadata recorded against a lead by the quote builder."""

    id: Optional[str] = Field(default=None, max_length=64)
    slug: Optional[str] = Field(default=None, max_length=64)
    quote_mode: str = Field(..., max_length=20)
    segment: Optional[str] = Field(default=None, max_length=50)

    class Config:
        json_schema_extra = {
            "example": {"slug": "k3x9q", "quote_mode": "hhh", "segment": "BUSY_PRO"},
        }


class LeadCreate(BaseModel):
    """Schema for creating a new lead."""

    customer_name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=50)
    job_description: Optional[str] = Field(default=None)
    source: Optional[str] = Field(default=None, max_length=50)
    segment: Optional[str] = Field(default=None, max_length=50)

    class Config:
        json_schema_extra = {
            "example": {
                "customer_name": "Jane Smith",
                "phone": "+447700900123",
                "job_description": "Leaking kitchen tap, needs replacing",
                "source": "landing_page",
            }
        }


class LeadResponse(BaseModel):
    """Schema for lead response."""

    id: UUID
    customer_name: str
    phone: str
    job_description: Optional[str]
    source: Optional[str]
    segment: Optional[str]
    stage: Optional[str]
    stage_updated_at: Optional[datetime] = None
    last_inbound_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
