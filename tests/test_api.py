"""
HTTP tests for the escalation, history and notification routes.

The application lifespan is not run by the ASGI transport, so the engine is
placed on app.state and the session dependency points at the test database.
"""

import importlib
import warnings

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from grievance.core import (
    ConfigurationException, DomainException, EmailDeliveryException, RepositoryException,
    ResourceNotFoundException, ValidationException,
)
from grievance.escalation.infrastructure.models import (
    ComplaintModel, EscalationModel, NotificationModel,
)
from grievance.infrastructure.database import get_session, session_scope
from grievance.main import app
from grievance.shared.api import middleware
from tests.conftest import ADMIN_ID, CITIZEN_ID, COMMISSIONER_ID, CLOSED_OFFICE_ID


@pytest_asyncio.fixture
async def client(seeded, session_maker, make_engine):
    async def _test_session():
        async with session_scope(session_maker) as session:
            yield session

    app.dependency_overrides[get_session] = _test_session
    app.state.escalation_engine = make_engine()
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        app.state.escalation_engine = None


class TestManualEscalationRoute:

    @pytest.mark.asyncio
    async def test_escalates(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)

        response = await client.post(
            f"/admin/complaints/{complaint_id}/escalate",
            json={"target_authority_id": COMMISSIONER_ID, "reason": "Citizen follow-up", "admin_id": ADMIN_ID},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ucn"] == "GRV-2024-000001"
        assert body["new_status"] == "Escalated"
        assert body["to_authority_name"] == "Municipal Commissioner"
        assert body["manual"] is True
        assert await seeded.count(EscalationModel) == 1

    @pytest.mark.asyncio
    async def test_unknown_complaint(self, client):
        response = await client.post(
            "/admin/complaints/999/escalate", json={"target_authority_id": COMMISSIONER_ID}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "ResourceNotFoundException"
        assert response.json()["detail"] == "Complaint 999 does not exist"

    @pytest.mark.asyncio
    async def test_resolved_complaint_conflicts(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2, status="Resolved")

        response = await client.post(
            f"/admin/complaints/{complaint_id}/escalate", json={"target_authority_id": COMMISSIONER_ID}
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_inactive_authority(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)

        response = await client.post(
            f"/admin/complaints/{complaint_id}/escalate", json={"target_authority_id": CLOSED_OFFICE_ID}
        )

        assert response.status_code == 422
        assert (await seeded.get(ComplaintModel, complaint_id)).status == "Submitted"

    @pytest.mark.asyncio
    async def test_body_validation(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)

        response = await client.post(
            f"/admin/complaints/{complaint_id}/escalate", json={"target_authority_id": 0}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_engine_missing(self, client):
        app.state.escalation_engine = None

        response = await client.post("/admin/escalations/sweep")

        assert response.status_code == 503


class TestStatusRoute:

    @pytest.mark.asyncio
    async def test_updates_status(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)

        response = await client.put(
            f"/admin/complaints/{complaint_id}/status",
            json={"status": "In Progress", "remarks": "Crew dispatched", "admin_id": ADMIN_ID},
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["old_status"], body["new_status"]) == ("Submitted", "In Progress")
        assert body["escalation"] is None

    @pytest.mark.asyncio
    async def test_escalated_status_returns_escalation(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)

        response = await client.put(
            f"/admin/complaints/{complaint_id}/status",
            json={"status": "Escalated", "assigned_authority_id": COMMISSIONER_ID},
        )

        assert response.status_code == 200
        assert response.json()["escalation"]["to_authority_id"] == COMMISSIONER_ID

    @pytest.mark.asyncio
    async def test_submitted_rejected(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2, status="In Progress")

        response = await client.put(
            f"/admin/complaints/{complaint_id}/status", json={"status": "Submitted"}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_history(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)
        await client.put(f"/admin/complaints/{complaint_id}/status", json={"status": "Under Review"})

        response = await client.get(f"/complaints/{complaint_id}/history")

        assert response.status_code == 200
        assert [h["new_status"] for h in response.json()] == ["Under Review"]

    @pytest.mark.asyncio
    async def test_history_unknown_complaint(self, client):
        response = await client.get("/complaints/999/history")
        assert response.status_code == 404


class TestSweepAndReports:

    @pytest.mark.asyncio
    async def test_sweep(self, client, seeded):
        await seeded.complaint(hours_old=73, severity="High")
        await seeded.complaint(hours_old=10, severity="High")

        response = await client.post("/admin/escalations/sweep")

        assert response.status_code == 200
        body = response.json()
        assert body["escalated"] == 1
        assert body["not_due"] == 1
        assert body["escalated_ucns"] == ["GRV-2024-000001"]

    @pytest.mark.asyncio
    async def test_stats(self, client, seeded):
        await seeded.complaint(hours_old=73)
        await client.post("/admin/escalations/sweep")

        response = await client.get("/admin/escalations/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["total_escalations"] == 1
        assert body["by_severity"] == [{"severity": "High", "escalation_count": 1}]

    @pytest.mark.asyncio
    async def test_sla_compliance(self, client, seeded):
        await seeded.complaint(hours_old=24 * 40, severity="Low")

        default = await client.get("/admin/reports/sla-compliance")
        wide = await client.get("/admin/reports/sla-compliance", params={"window_days": 60})
        invalid = await client.get("/admin/reports/sla-compliance", params={"window_days": 0})

        assert default.json()["severities"] == []
        assert wide.json()["window_days"] == 60
        assert [s["severity"] for s in wide.json()["severities"]] == ["Low"]
        assert invalid.status_code == 422


class TestRuleRoutes:

    @pytest.mark.asyncio
    async def test_list(self, client):
        response = await client.get("/admin/escalation-rules")

        assert response.status_code == 200
        assert [r["severity"] for r in response.json()] == ["Low", "Medium", "High"]

    @pytest.mark.asyncio
    async def test_update(self, client):
        rules = (await client.get("/admin/escalation-rules")).json()
        high = next(r for r in rules if r["severity"] == "High")

        response = await client.put(
            f"/admin/escalation-rules/{high['id']}",
            json={"time_limit_hours": 48, "escalation_authority_id": COMMISSIONER_ID},
        )

        assert response.status_code == 200
        assert response.json()["time_limit_hours"] == 48
        assert response.json()["authority_name"] == "Municipal Commissioner"

    @pytest.mark.asyncio
    async def test_update_rejects_zero_hours(self, client):
        response = await client.put("/admin/escalation-rules/1", json={"time_limit_hours": 0})
        assert response.status_code == 422


class TestNotificationRoutes:

    @pytest.mark.asyncio
    async def test_list_and_mark_read(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)
        await client.put(f"/admin/complaints/{complaint_id}/status", json={"status": "Under Review"})
        await client.put(f"/admin/complaints/{complaint_id}/status", json={"status": "In Progress"})

        listing = await client.get("/notifications", params={"user_id": CITIZEN_ID})
        assert listing.status_code == 200
        body = listing.json()
        assert body["total_count"] == 2
        assert body["notifications"][0]["complaint_ucn"] == "GRV-2024-000001"

        first_id = body["notifications"][0]["id"]
        marked = await client.put(f"/notifications/{first_id}/read", params={"user_id": CITIZEN_ID})
        assert marked.json() == {"success": True, "updated": 1}

        unread = await client.get("/notifications", params={"user_id": CITIZEN_ID, "unread_only": True})
        assert unread.json()["total_count"] == 1

        rest = await client.put("/notifications/read-all", params={"user_id": CITIZEN_ID})
        assert rest.json()["updated"] == 1
        assert await seeded.count(NotificationModel, NotificationModel.is_read.is_(False)) == 0

    @pytest.mark.asyncio
    async def test_mark_read_of_other_user(self, client, seeded):
        complaint_id = await seeded.complaint(hours_old=2)
        await client.put(f"/admin/complaints/{complaint_id}/status", json={"status": "Under Review"})
        (note,) = await seeded.all(NotificationModel)

        response = await client.put(f"/notifications/{note.id}/read", params={"user_id": ADMIN_ID})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_user_id_required(self, client):
        response = await client.get("/notifications")
        assert response.status_code == 422


class TestErrorMapping:

    @pytest.mark.parametrize("exc, code", [
        (ResourceNotFoundException("Complaint", 7), 404),
        (ValidationException("bad reason"), 422),
        (DomainException("already resolved"), 409),
        (ConfigurationException("no engine"), 503),
        (RepositoryException("db down"), 500),
        (EmailDeliveryException("relay returned 502"), 500),
    ])
    def test_status_codes(self, exc, code):
        assert middleware.status_code_for(exc) == code

    def test_module_import_is_warning_free(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            importlib.reload(middleware)

        assert not [w for w in caught if "HTTP_422" in str(w.message)]


class TestServiceRoutes:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["escalation_scheduler"] == "stopped"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["docs"] == "/docs"
