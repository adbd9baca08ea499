"""
Tests for the escalation sweep and manual escalation.

Runs the engine against an in-memory SQLite database.
"""

import pytest

from grievance.core import (
    DomainException, RepositoryException, ResourceNotFoundException, ValidationException
)
from grievance.escalation.application import EscalationService
from grievance.escalation.infrastructure import (
    SQLAlchemyComplaintRepository, SQLAlchemyEscalationLogRepository,
)
from grievance.escalation.infrastructure.models import (
    AuthorityModel, ComplaintModel, EscalationModel, EscalationRuleModel, NotificationModel,
    StatusHistoryModel,
)
from tests.conftest import (
    ADMIN_ID, CLOSED_OFFICE_ID, COMMISSIONER_ID, WARD_OFFICER_ID, RecordingSink,
)


class TestSweep:
    """Automatic escalation of breached complaints."""

    @pytest.mark.asyncio
    async def test_breached_high_complaint_is_escalated(self, seeded, make_engine, sink):
        complaint_id = await seeded.complaint(hours_old=73, severity="High")

        result = await make_engine().run_sweep()

        assert result.escalated == 1
        assert result.escalated_ucns == ["GRV-2024-000001"]

        complaint = await seeded.get(ComplaintModel, complaint_id)
        assert complaint.status == "Escalated"
        assert complaint.assigned_authority_id == COMMISSIONER_ID

        history = await seeded.all(StatusHistoryModel)
        assert len(history) == 1
        assert history[0].old_status == "Submitted"
        assert history[0].new_status == "Escalated"
        assert history[0].created_by is None
        assert "72 hours limit exceeded" in history[0].remarks

        log = await seeded.all(EscalationModel)
        assert len(log) == 1
        assert log[0].from_authority_id == WARD_OFFICER_ID
        assert log[0].to_authority_id == COMMISSIONER_ID
        assert log[0].reason == "SLA breach: 72 hours limit exceeded"

        notifications = await seeded.all(NotificationModel)
        assert len(notifications) == 1
        assert notifications[0].title == "Complaint Escalated"
        assert notifications[0].type == "escalation"
        assert notifications[0].message == (
            "Your complaint GRV-2024-000001 has been escalated due to delay in resolution"
        )

        assert sink.escalations == [
            ("GRV-2024-000001", "SLA breach: 72 hours limit exceeded", COMMISSIONER_ID)
        ]

    @pytest.mark.asyncio
    async def test_medium_complaint_within_limit_is_left_alone(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=100, severity="Medium")

        result = await make_engine().run_sweep()

        assert result.escalated == 0
        assert result.not_due == 1
        assert (await seeded.get(ComplaintModel, complaint_id)).status == "Submitted"
        assert await seeded.count(StatusHistoryModel) == 0
        assert await seeded.count(EscalationModel) == 0
        assert await seeded.count(NotificationModel) == 0

    @pytest.mark.asyncio
    async def test_complaint_without_rule_is_skipped(self, seeder, make_engine):
        await seeder.rule("High", 72)
        complaint_id = await seeder.complaint(hours_old=1000, severity="Low")

        result = await make_engine().run_sweep()

        assert result.skipped_no_rule == 1
        assert result.failed == 0
        assert (await seeder.get(ComplaintModel, complaint_id)).status == "Submitted"
        assert await seeder.count(EscalationModel) == 0

    @pytest.mark.asyncio
    async def test_inactive_rule_is_ignored(self, seeder, make_engine):
        await seeder.rule("High", 72, is_active=False)
        await seeder.rule("Low", 360)
        await seeder.complaint(hours_old=100, severity="High")

        result = await make_engine().run_sweep()

        assert result.skipped_no_rule == 1
        assert result.escalated == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["Resolved", "Escalated"])
    async def test_closed_complaints_never_touched(self, seeded, make_engine, status):
        complaint_id = await seeded.complaint(hours_old=1000, status=status)

        result = await make_engine().run_sweep()

        assert result.complaints_checked == 0
        assert (await seeded.get(ComplaintModel, complaint_id)).status == status
        assert await seeded.count(StatusHistoryModel) == 0

    @pytest.mark.asyncio
    async def test_young_complaint_below_floor(self, seeder, make_engine):
        await seeder.rule("High", 1)
        await seeder.complaint(hours_old=0.5)

        result = await make_engine().run_sweep()

        assert result.complaints_checked == 0
        assert result.escalated == 0

    @pytest.mark.asyncio
    async def test_floor_is_strict(self, seeder, make_engine):
        await seeder.rule("High", 1)
        at_floor = await seeder.complaint(hours_old=1)
        past_floor = await seeder.complaint(hours_old=1.01)

        result = await make_engine().run_sweep()

        assert result.complaints_checked == 1
        assert result.escalated == 1
        assert (await seeder.get(ComplaintModel, at_floor)).status == "Submitted"
        assert (await seeder.get(ComplaintModel, past_floor)).status == "Escalated"

    @pytest.mark.asyncio
    async def test_open_statuses_are_swept(self, seeded, make_engine):
        for status in ["Submitted", "Under Review", "Assigned to Authority", "In Progress"]:
            await seeded.complaint(hours_old=80, status=status)

        result = await make_engine().run_sweep()

        assert result.complaints_checked == 4
        assert result.escalated == 4

    @pytest.mark.asyncio
    async def test_second_sweep_does_not_escalate_again(self, seeded, make_engine):
        await seeded.complaint(hours_old=73)
        engine = make_engine()

        first = await engine.run_sweep()
        second = await engine.run_sweep()

        assert first.escalated == 1
        assert second.escalated == 0
        assert await seeded.count(StatusHistoryModel) == 1
        assert await seeded.count(EscalationModel) == 1
        assert await seeded.count(NotificationModel) == 1

    @pytest.mark.asyncio
    async def test_rule_authority_is_preferred(self, seeder, make_engine):
        await seeder.rule("High", 72, authority_id=WARD_OFFICER_ID)
        complaint_id = await seeder.complaint(hours_old=80, authority_id=None)

        await make_engine().run_sweep()

        complaint = await seeder.get(ComplaintModel, complaint_id)
        assert complaint.assigned_authority_id == WARD_OFFICER_ID
        log = await seeder.all(EscalationModel)
        assert log[0].from_authority_id is None

    @pytest.mark.asyncio
    async def test_inactive_rule_authority_falls_back(self, seeder, make_engine):
        await seeder.rule("High", 72, authority_id=CLOSED_OFFICE_ID)
        complaint_id = await seeder.complaint(hours_old=80, authority_id=WARD_OFFICER_ID)

        await make_engine().run_sweep()

        complaint = await seeder.get(ComplaintModel, complaint_id)
        assert complaint.assigned_authority_id == COMMISSIONER_ID

    @pytest.mark.asyncio
    async def test_no_rules_is_a_noop(self, seeder, make_engine):
        await seeder.complaint(hours_old=1000)

        result = await make_engine().run_sweep()

        assert result.rules_loaded == 0
        assert result.aborted is False
        assert result.complaints_checked == 0
        assert await seeder.count(EscalationModel) == 0

    @pytest.mark.asyncio
    async def test_each_complaint_escalated_independently(self, seeded, make_engine):
        await seeded.complaint(hours_old=73, severity="High")
        await seeded.complaint(hours_old=200, severity="Medium")
        await seeded.complaint(hours_old=100, severity="Low")

        result = await make_engine().run_sweep()

        assert result.complaints_checked == 3
        assert result.escalated == 2
        assert result.not_due == 1
        assert await seeded.count(ComplaintModel, ComplaintModel.status == "Escalated") == 2

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_undo_escalation(self, seeded, make_engine):
        await seeded.complaint(hours_old=73)
        engine = make_engine(notification_sink=RecordingSink(error=RuntimeError("smtp down")))

        result = await engine.run_sweep()

        assert result.escalated == 1
        assert result.failed == 0
        assert await seeded.count(EscalationModel) == 1


class TestAtomicity:
    """A failed step leaves no partial escalation behind."""

    @pytest.mark.asyncio
    async def test_log_failure_rolls_back_everything(self, seeded, make_engine, monkeypatch, sink):
        complaint_id = await seeded.complaint(hours_old=73)

        async def broken_append(self, entry):
            raise RepositoryException("escalations table unavailable")

        monkeypatch.setattr(SQLAlchemyEscalationLogRepository, "append", broken_append)

        result = await make_engine().run_sweep()

        assert result.escalated == 0
        assert result.failed == 1
        assert "escalations table unavailable" in result.errors[0]

        complaint = await seeded.get(ComplaintModel, complaint_id)
        assert complaint.status == "Submitted"
        assert complaint.assigned_authority_id == WARD_OFFICER_ID
        assert await seeded.count(StatusHistoryModel) == 0
        assert await seeded.count(NotificationModel) == 0
        assert sink.escalations == []

    @pytest.mark.asyncio
    async def test_update_failure_does_not_stop_the_sweep(self, seeded, make_engine, monkeypatch):
        first_id = await seeded.complaint(hours_old=90)
        second_id = await seeded.complaint(hours_old=80)
        original = SQLAlchemyComplaintRepository.mark_escalated

        async def flaky_mark(self, complaint_id, authority_id, updated_at):
            if complaint_id == first_id:
                raise RepositoryException("deadlock detected")
            return await original(self, complaint_id, authority_id, updated_at)

        monkeypatch.setattr(SQLAlchemyComplaintRepository, "mark_escalated", flaky_mark)

        result = await make_engine().run_sweep()

        assert result.failed == 1
        assert result.escalated == 1
        assert (await seeded.get(ComplaintModel, first_id)).status == "Submitted"
        assert (await seeded.get(ComplaintModel, second_id)).status == "Escalated"
        assert await seeded.count(StatusHistoryModel) == 1

    @pytest.mark.asyncio
    async def test_no_alternative_authority_fails_cleanly(self, seeder, make_engine):
        await seeder.rule("High", 72)
        complaint_id = await seeder.complaint(hours_old=80, authority_id=COMMISSIONER_ID)
        await seeder.update(AuthorityModel, WARD_OFFICER_ID, is_active=False)

        result = await make_engine().run_sweep()

        assert result.failed == 1
        assert (await seeder.get(ComplaintModel, complaint_id)).status == "Submitted"
        assert await seeder.count(EscalationModel) == 0

    @pytest.mark.asyncio
    async def test_read_failure_aborts_the_sweep(self, seeded, make_engine, monkeypatch, sink):
        complaint_id = await seeded.complaint(hours_old=73)

        async def broken_list(self, created_before):
            raise RepositoryException("db down")

        monkeypatch.setattr(SQLAlchemyComplaintRepository, "list_eligible", broken_list)
        engine = make_engine()

        result = await engine.run_sweep()

        assert result.aborted is True
        assert result.errors == ["db down"]
        assert result.escalated == 0
        assert engine.last_sweep is result
        assert (await seeded.get(ComplaintModel, complaint_id)).status == "Submitted"
        assert await seeded.count(StatusHistoryModel) == 0
        assert await seeded.count(EscalationModel) == 0
        assert sink.escalations == []

    @pytest.mark.asyncio
    async def test_complaint_resolved_mid_sweep_is_skipped(self, seeded, make_engine, monkeypatch, sink):
        complaint_id = await seeded.complaint(hours_old=73)
        original = EscalationService.escalate_for_breach

        async def resolve_first(self, target_id, rule, now):
            await seeded.update(ComplaintModel, target_id, status="Resolved")
            return await original(self, target_id, rule, now)

        monkeypatch.setattr(EscalationService, "escalate_for_breach", resolve_first)

        result = await make_engine().run_sweep()

        assert result.skipped_stale == 1
        assert result.escalated == 0
        assert result.failed == 0
        assert (await seeded.get(ComplaintModel, complaint_id)).status == "Resolved"
        assert await seeded.count(StatusHistoryModel) == 0
        assert await seeded.count(EscalationModel) == 0
        assert await seeded.count(NotificationModel) == 0
        assert sink.escalations == []


class TestManualEscalation:
    """Admin-initiated escalation."""

    @pytest.mark.asyncio
    async def test_defaults_when_no_reason(self, seeded, make_engine, sink):
        complaint_id = await seeded.complaint(hours_old=0.1, status="In Progress")

        outcome = await make_engine().manual_escalation(
            complaint_id, COMMISSIONER_ID, actor_id=ADMIN_ID
        )

        assert outcome.manual is True
        assert outcome.to_authority.id == COMMISSIONER_ID
        assert outcome.notification_sent is True

        history = await seeded.all(StatusHistoryModel)
        assert history[0].remarks == "Manually escalated by admin"
        assert history[0].created_by == ADMIN_ID
        assert history[0].old_status == "In Progress"

        log = await seeded.all(EscalationModel)
        assert log[0].reason == "Manual escalation"

        notification = (await seeded.all(NotificationModel))[0]
        assert notification.message == (
            "Your complaint GRV-2024-000001 has been escalated: Manual escalation by admin"
        )
        assert sink.escalations[0][1] == "Manual escalation"

    @pytest.mark.asyncio
    async def test_reason_is_recorded(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=5)

        await make_engine().manual_escalation(complaint_id, COMMISSIONER_ID, "  Citizen petition  ")

        assert (await seeded.all(StatusHistoryModel))[0].remarks == "Citizen petition"
        assert (await seeded.all(EscalationModel))[0].reason == "Citizen petition"

    @pytest.mark.asyncio
    async def test_already_escalated_can_be_escalated_again(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=5, status="Escalated", authority_id=COMMISSIONER_ID)

        outcome = await make_engine().manual_escalation(complaint_id, WARD_OFFICER_ID)

        assert outcome.old_status == "Escalated"
        assert (await seeded.get(ComplaintModel, complaint_id)).assigned_authority_id == WARD_OFFICER_ID

    @pytest.mark.asyncio
    async def test_resolved_complaint_rejected(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=5, status="Resolved")

        with pytest.raises(DomainException):
            await make_engine().manual_escalation(complaint_id, COMMISSIONER_ID)

        assert await seeded.count(StatusHistoryModel) == 0

    @pytest.mark.asyncio
    async def test_unknown_complaint(self, seeded, make_engine):
        with pytest.raises(ResourceNotFoundException):
            await make_engine().manual_escalation(999, COMMISSIONER_ID)

    @pytest.mark.asyncio
    async def test_unknown_authority(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=5)

        with pytest.raises(ResourceNotFoundException):
            await make_engine().manual_escalation(complaint_id, 42)

        assert (await seeded.get(ComplaintModel, complaint_id)).status == "Submitted"

    @pytest.mark.asyncio
    async def test_inactive_authority(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=5)

        with pytest.raises(ValidationException):
            await make_engine().manual_escalation(complaint_id, CLOSED_OFFICE_ID)

    @pytest.mark.asyncio
    async def test_reason_too_long(self, seeded, make_engine):
        complaint_id = await seeded.complaint(hours_old=5)

        with pytest.raises(ValidationException):
            await make_engine().manual_escalation(complaint_id, COMMISSIONER_ID, "x" * 1001)

    @pytest.mark.asyncio
    async def test_manual_escalation_ignores_rules(self, seeder, make_engine):
        complaint_id = await seeder.complaint(hours_old=0.1)

        outcome = await make_engine().manual_escalation(complaint_id, COMMISSIONER_ID)

        assert outcome.complaint.id == complaint_id
        assert await seeder.count(EscalationRuleModel) == 0
        assert await seeder.count(EscalationModel) == 1
