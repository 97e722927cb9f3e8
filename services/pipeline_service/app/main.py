"""
Pipeline Service - Lead Pipeline Board API.
Serves the lane x stage board aggregated from the lead store and applies
operator stage moves (drag-and-drop on the sales console).
"""
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from . import config
from .aggregator import aggregate_rows
from .database import engine, get_db, Base
from .models import Lead
from .repository import (
    StageChangeRejected,
    change_stage,
    get_lead,
    load_lead_rows,
    upsert_quote,
)
from .schemas import (
    LeadCreate,
    LeadResponse,
    PipelineData,
    QuoteInfo,
    QuoteUpsert,
    StageChangeAck,
    StageChangeRequest,
)
from .stages import Stage, parse_stage

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

# Create tables on startup
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Pipeline Service",
    description="Lead pipeline board: lane x stage aggregation, SLA status and stage moves",
    version=config.SERVICE_VERSION,
)

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


# =============================================================================
# Health
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "pipeline", "version": config.SERVICE_VERSION}


# =============================================================================
# Pipeline Board
# =============================================================================

@app.get("/pipeline", response_model=PipelineData)
async def get_pipeline(db: Session = Depends(get_db)):
    """
    Full pipeline board. Polled by the console every 30s and on manual refresh.
    Rows that fail validation are left off the board and counted in `quarantined`.
    """
    try:
        rows = load_lead_rows(db)
    except SQLAlchemyError as e:
        logger.error(f"❌ Error loading leads for pipeline: {e}")
        raise HTTPException(status_code=500, detail="Failed to load pipeline data")

    data = aggregate_rows(rows, datetime.now(timezone.utc))
    if data.quarantined:
        logger.warning(f"⚠️ Pipeline built with {data.quarantined} quarantined lead(s)")
    return data


@app.patch("/leads/{lead_id}/stage", response_model=StageChangeAck)
async def update_lead_stage(
    lead_id: str, body: StageChangeRequest, db: Session = Depends(get_db)
):
    """
    Move a lead to another stage. Safe to retry: moving to the current stage
    is acknowledged without changing anything.
    """
    try:
        return change_stage(db, lead_id, body.stage, force=body.force, reason=body.reason)
    except StageChangeRejected as e:
        logger.info(f"ℹ️ Stage change rejected for lead {lead_id}: {e.reason}")
        raise HTTPException(
            status_code=e.status_code,
            detail={"reason": e.reason, "message": e.message},
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error updating stage for lead {lead_id}: {e}")
        raise HTTPException(
            status_code=500,
            detail={"reason": "server_error", "message": "Failed to update stage"},
        )


# =============================================================================
# Lead Endpoints
# =============================================================================

@app.post("/leads", response_model=LeadResponse, status_code=201)
async def create_lead(lead: LeadCreate, db: Session = Depends(get_db)):
    """Create a new lead. Every lead starts in new_lead."""
    try:
        now = datetime.utcnow()
        db_lead = Lead(
            customer_name=lead.customer_name,
            phone=lead.phone,
            job_description=lead.job_description,
            source=lead.source,
            segment=lead.segment,
            stage=Stage.NEW_LEAD.value,
            stage_updated_at=now,
            created_at=now,
        )
        db.add(db_lead)
        db.commit()
        db.refresh(db_lead)

        logger.info(f"✅ Created lead: {db_lead.customer_name} (ID: {db_lead.id})")
        return db_lead

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error creating lead: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/leads", response_model=List[LeadResponse])
async def list_leads(
    skip: int = 0,
    limit: int = 100,
    stage: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List leads, optionally filtered by stage."""
    query = db.query(Lead)

    if stage:
        parsed = parse_stage(stage)
        if parsed is None:
            raise HTTPException(
                status_code=422,
                detail={"reason": "invalid_stage", "message": f"Unknown stage '{stage}'"},
            )
        query = query.filter(Lead.stage == parsed.value)

    return query.order_by(Lead.created_at.desc()).offset(skip).limit(limit).all()


@app.get("/leads/{lead_id}", response_model=LeadResponse)
async def read_lead(lead_id: str, db: Session = Depends(get_db)):
    """Get a specific lead by ID."""
    lead = get_lead(db, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


@app.put("/leads/{lead_id}/quote", response_model=QuoteInfo)
async def record_quote(lead_id: str, body: QuoteUpsert, db: Session = Depends(get_db)):
    """Record the quote experience a lead was given. Drives its swimlane."""
    lead = get_lead(db, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    try:
        quote = upsert_quote(db, lead, body)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error recording quote for lead {lead_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to record quote")

    return QuoteInfo(id=quote.id, slug=quote.slug, quote_mode=quote.quote_mode, segment=quote.segment)


# =============================================================================
# Root Info
# =============================================================================

@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Pipeline Service",
        "version": config.SERVICE_VERSION,
        "endpoints": {
            "/health": "Health check",
            "/pipeline": "GET - Lane x stage board with SLA status and totals",
            "/leads": "GET - List leads, POST - Create lead",
            "/leads/{id}": "GET - Lead detail",
            "/leads/{id}/stage": "PATCH - Move lead to a stage ({stage, force?})",
            "/leads/{id}/quote": "PUT - Record quote metadata (sets the lane)",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"🚀 Starting Pipeline Service on {config.HOST}:{config.PORT}")
    uvicorn.run(
        "services.pipeline_service.app.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.RELOAD,
    )
