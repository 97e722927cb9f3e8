"""
API tests for the Pipeline Service.
Runs against a local SQLite database; no Postgres required.
"""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.pipeline_service.app.database import Base, get_db
from services.pipeline_service.app.main import app
from services.pipeline_service.app.models import Lead

TEST_DATABASE_URL = "sqlite:///./test_pipeline.db"
test_engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client():
    """Test client for FastAPI."""

    def override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create_lead(client, name="Test Customer", phone="+447700900123"):
    response = client.post("/leads", json={"customer_name": name, "phone": phone})
    assert response.status_code == 201
    return response.json()["id"]


def _set_stage(client, lead_id, stage):
    response = client.patch(f"/leads/{lead_id}/stage", json={"stage": stage, "force": True})
    assert response.status_code == 200


def _cell(board, lane, stage):
    swimlane = next(s for s in board["swimlanes"] if s["lane"] == lane)
    return next(c for c in swimlane["stages"] if c["stage"] == stage)


# =============================================================================
# Health Check Tests
# =============================================================================

class TestHealth:
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "pipeline"

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "Pipeline Service"


# =============================================================================
# Lead Tests
# =============================================================================

class TestLeads:
    def test_create_lead_starts_in_new_lead(self, client):
        response = client.post("/leads", json={
            "customer_name": "Jane Smith",
            "phone": "+447700900123",
            "job_description": "Leaking tap",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["stage"] == "new_lead"
        assert data["stage_updated_at"] is not None

    def test_get_nonexistent_lead(self, client):
        assert client.get(f"/leads/{uuid4()}").status_code == 404
        assert client.get("/leads/not-a-uuid").status_code == 404

    def test_filter_leads_by_stage(self, client):
        _create_lead(client, "New One")
        lead_id = _create_lead(client, "Contacted One")
        _set_stage(client, lead_id, "contacted")

        response = client.get("/leads?stage=contacted")
        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["customer_name"] == "Contacted One"

    def test_filter_by_unknown_stage(self, client):
        response = client.get("/leads?stage=video_received")
        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "invalid_stage"


# =============================================================================
# Pipeline Board Tests
# =============================================================================

class TestPipeline:
    def test_empty_pipeline(self, client):
        response = client.get("/pipeline")
        assert response.status_code == 200
        data = response.json()
        assert len(data["swimlanes"]) == 4
        assert data["totals"] == {"active": 0, "completed": 0, "lost": 0, "total": 0}
        for lane in data["swimlanes"]:
            assert lane["stats"]["total"] == 0
            assert lane["stats"]["conversion_rate"] == 0
        assert data["stage_order"][0] == "new_lead"

    def test_new_lead_lands_in_no_quote_lane(self, client):
        lead_id = _create_lead(client)
        board = client.get("/pipeline").json()
        cell = _cell(board, "no_quote", "new_lead")
        assert cell["count"] == 1
        item = cell["items"][0]
        assert item["id"] == lead_id
        assert item["sla_status"] == "ok"
        assert item["time_in_stage"] == "Just now"
        assert item["links"]["call"] == "tel:+447700900123"

    def test_quote_sets_lane(self, client):
        lead_id = _create_lead(client)
        response = client.put(f"/leads/{lead_id}/quote", json={"slug": "abc12", "quote_mode": "hhh"})
        assert response.status_code == 200
        assert response.json()["quote_mode"] == "hhh"

        board = client.get("/pipeline").json()
        item = _cell(board, "tiered", "new_lead")["items"][0]
        assert item["quote_slug"] == "abc12"
        assert item["links"]["quote"] == "/q/abc12"

    def test_quote_for_missing_lead(self, client):
        response = client.put(f"/leads/{uuid4()}/quote", json={"quote_mode": "simple"})
        assert response.status_code == 404

    def test_bad_rows_are_quarantined(self, client):
        _create_lead(client, "Good")
        db = TestSessionLocal()
        db.add(Lead(customer_name="Bad", phone="1", stage="video_received"))
        db.commit()
        db.close()

        data = client.get("/pipeline").json()
        assert data["quarantined"] == 1
        assert data["totals"]["total"] == 1

    def test_overdue_lead(self, client):
        lead_id = _create_lead(client)
        db = TestSessionLocal()
        lead = db.query(Lead).first()
        lead.stage_updated_at = datetime.utcnow() - timedelta(hours=2)
        db.commit()
        db.close()

        item = _cell(client.get("/pipeline").json(), "no_quote", "new_lead")["items"][0]
        assert item["id"] == lead_id
        assert item["sla_status"] == "overdue"


# =============================================================================
# Stage Move Tests
# =============================================================================

class TestStageMove:
    def test_move_contacted_to_booked(self, client):
        """L7 moves contacted -> booked; the contacted cell shrinks by one."""
        lead_id = _create_lead(client, "L7")
        other_id = _create_lead(client, "Other")
        _set_stage(client, lead_id, "contacted")
        _set_stage(client, other_id, "contacted")

        before = _cell(client.get("/pipeline").json(), "no_quote", "contacted")["count"]

        response = client.patch(f"/leads/{lead_id}/stage", json={"stage": "booked"})
        assert response.status_code == 200
        assert response.json() == {
            "leadId": lead_id,
            "previousStage": "contacted",
            "newStage": "booked",
            "changed": True,
        }

        board = client.get("/pipeline").json()
        assert _cell(board, "no_quote", "contacted")["count"] == before - 1
        assert [i["id"] for i in _cell(board, "no_quote", "booked")["items"]] == [lead_id]

    def test_same_stage_is_idempotent(self, client):
        lead_id = _create_lead(client)
        _set_stage(client, lead_id, "quote_sent")
        first = client.get(f"/leads/{lead_id}").json()["stage_updated_at"]

        for _ in range(2):
            response = client.patch(f"/leads/{lead_id}/stage", json={"stage": "quote_sent"})
            assert response.status_code == 200
            assert response.json()["changed"] is False

        assert client.get(f"/leads/{lead_id}").json()["stage_updated_at"] == first

    def test_downgrade_without_force_rejected(self, client):
        lead_id = _create_lead(client)
        _set_stage(client, lead_id, "booked")

        response = client.patch(f"/leads/{lead_id}/stage", json={"stage": "contacted"})
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_transition"
        assert client.get(f"/leads/{lead_id}").json()["stage"] == "booked"

    def test_drop_out_to_lost_allowed(self, client):
        lead_id = _create_lead(client)
        _set_stage(client, lead_id, "quote_viewed")
        response = client.patch(f"/leads/{lead_id}/stage", json={"stage": "lost"})
        assert response.status_code == 200

        totals = client.get("/pipeline").json()["totals"]
        assert totals["lost"] == 1
        assert totals["active"] == 0

    def test_terminal_is_sink_without_force(self, client):
        lead_id = _create_lead(client)
        _set_stage(client, lead_id, "lost")
        response = client.patch(f"/leads/{lead_id}/stage", json={"stage": "completed"})
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "invalid_transition"

    def test_force_moves_out_of_terminal(self, client):
        lead_id = _create_lead(client)
        _set_stage(client, lead_id, "declined")
        response = client.patch(
            f"/leads/{lead_id}/stage", json={"stage": "contacted", "force": True}
        )
        assert response.status_code == 200
        assert response.json()["newStage"] == "contacted"

    def test_unknown_lead(self, client):
        response = client.patch(f"/leads/{uuid4()}/stage", json={"stage": "booked"})
        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "lead_not_found"

    def test_unknown_stage(self, client):
        lead_id = _create_lead(client)
        response = client.patch(f"/leads/{lead_id}/stage", json={"stage": "teleported"})
        assert response.status_code == 422
        assert response.json()["detail"]["reason"] == "invalid_stage"
