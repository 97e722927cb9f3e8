"""
Shared fixtures for Pipeline Service tests.
"""
import os
from datetime import datetime, timedelta, timezone

import pytest

# Configure the service before any app module is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_pipeline.db")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from services.pipeline_service.app.schemas import LeadRecord, QuoteInfo
from services.pipeline_service.app.stages import Stage


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_lead():
    """Build a LeadRecord: make_lead("L1", Stage.CONTACTED, minutes_ago=10, quote_mode="hhh")."""

    def _make(
        lead_id="L1",
        stage=Stage.NEW_LEAD,
        minutes_ago=5,
        quote_mode=None,
        name="Test Customer",
        phone="+447700900001",
        **extra,
    ):
        quote = None
        if quote_mode is not None:
            quote = QuoteInfo(id=f"q-{lead_id}", slug=f"s{lead_id.lower()}", quote_mode=quote_mode)
        stage_updated_at = None if minutes_ago is None else NOW - timedelta(minutes=minutes_ago)
        return LeadRecord(
            id=lead_id,
            customer_name=name,
            phone=phone,
            stage=stage,
            stage_updated_at=stage_updated_at,
            quote=quote,
            created_at=NOW - timedelta(days=1),
            **extra,
        )

    return _make
