"""
Escalation Engine
=================

Coordinates background SLA sweeps, manual escalations and the
notification sink.

The engine:
1. Wakes on a timer (and once immediately on start)
2. Reads active rules and eligible complaints
3. Escalates each breached complaint in its own unit of work
4. Calls the notification sink after each commit, best-effort

Every escalation, automatic or manual, goes through EscalationService so
both paths write the same four artifacts atomically.
"""

import asyncio
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from grievance.config import ComplaintStatus, settings
from grievance.core import ConfigurationException, ValidationException
from grievance.escalation.application import (
    EscalationService, INotificationSink, NotificationService,
    ReportingService, StatusWorkflowService,
)
from grievance.escalation.domain import (
    EscalationOutcome, EscalationPolicy, EscalationRule, EscalationStats,
    SLAComplianceReport, StatusChange, SweepResult,
)
from grievance.escalation.infrastructure import (
    EscalationScheduler,
    SQLAlchemyAuthorityRepository,
    SQLAlchemyComplaintRepository,
    SQLAlchemyEscalationLogRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyRuleStore,
    SQLAlchemyStatusHistoryRepository,
)
from grievance.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

SessionContext = Callable[[], AsyncContextManager[AsyncSession]]

SWEEP_JOB_ID = "escalation_sweep"
CLEANUP_JOB_ID = "notification_cleanup"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EscalationEngine:
    """
    Scheduled SLA escalation engine.

    `session_context` must return an async context manager yielding a
    session that commits on clean exit and rolls back on error
    (see grievance.infrastructure.database.session_scope).
    """

    def __init__(
        self,
        session_context: SessionContext,
        notification_sink: Optional[INotificationSink] = None,
        interval_seconds: Optional[int] = None,
        min_age_hours: Optional[int] = None,
        notification_retention_days: Optional[int] = None,
        cleanup_interval_seconds: Optional[int] = None,
        report_window_days: Optional[int] = None,
        scheduler: Optional[EscalationScheduler] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self._session_context = session_context
        self._sink = notification_sink
        self.interval_seconds = interval_seconds or settings.escalation_interval_seconds
        self.min_age_hours = (
            settings.escalation_min_age_hours if min_age_hours is None else min_age_hours
        )
        self.notification_retention_days = (
            notification_retention_days or settings.notification_retention_days
        )
        self.cleanup_interval_seconds = (
            cleanup_interval_seconds or settings.notification_cleanup_interval_seconds
        )
        self.report_window_days = report_window_days or settings.report_window_days
        self._scheduler = scheduler or EscalationScheduler()
        self._clock = clock

        self._sweep_lock = asyncio.Lock()
        self._running = False
        self.last_sweep: Optional[SweepResult] = None

    # ========== Lifecycle ==========

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Schedule the periodic jobs and run one sweep right away."""
        if self._running:
            logger.warning("Escalation engine already running")
            return

        self._scheduler.add_interval_job(
            SWEEP_JOB_ID, self.run_sweep, self.interval_seconds, "Escalation Sweep"
        )
        self._scheduler.add_interval_job(
            CLEANUP_JOB_ID, self.purge_notifications, self.cleanup_interval_seconds,
            "Notification Cleanup"
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation engine started",
            extra={
                "interval_seconds": self.interval_seconds,
                "min_age_hours": self.min_age_hours,
            }
        )
        await self.run_sweep()

    async def stop(self) -> None:
        """Stop scheduling and wait for an in-flight sweep to finish."""
        if not self._running:
            return

        self._scheduler.remove_jobs()
        async with self._sweep_lock:
            self._scheduler.stop()
            self._running = False

        logger.info("Escalation engine stopped")

    # ========== Sweep ==========

    async def run_sweep(self) -> SweepResult:
        """
        Run one escalation pass.

        Never raises: per-complaint failures are counted and logged, and a
        failure to read rules or complaints aborts the pass.
        """
        now = self._clock()
        if self._sweep_lock.locked():
            logger.info("Escalation sweep already in progress, skipping")
            return SweepResult(started_at=now, finished_at=now, skipped_in_flight=True)

        async with self._sweep_lock:
            with log_latency(logger, "escalation_sweep"):
                result = await self._sweep(now)

        self.last_sweep = result
        logger.info("Escalation sweep finished", extra=result.to_dict())
        return result

    async def _sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(started_at=now)
        cutoff = EscalationPolicy.eligibility_cutoff(now, self.min_age_hours)

        try:
            async with self._session_context() as session:
                rules = await SQLAlchemyRuleStore(session).list_active_rules()
                complaints = await SQLAlchemyComplaintRepository(session).list_eligible(cutoff)
        except Exception as e:
            logger.error("Escalation sweep aborted", extra={"error": str(e)}, exc_info=True)
            result.aborted = True
            result.errors.append(str(e))
            result.finished_at = self._clock()
            return result

        rules_by_severity, duplicates = EscalationPolicy.index_active_rules(rules)
        result.rules_loaded = len(rules_by_severity)
        for duplicate in duplicates:
            logger.warning(
                "Ignoring duplicate active escalation rule",
                extra={"rule_id": duplicate.id, "severity": duplicate.severity}
            )

        if not rules_by_severity:
            warning = ConfigurationException("No active escalation rules configured")
            logger.warning(warning.message)
            result.finished_at = self._clock()
            return result

        for complaint in complaints:
            result.complaints_checked += 1

            rule = rules_by_severity.get(complaint.severity)
            if rule is None:
                result.skipped_no_rule += 1
                continue
            if not EscalationPolicy.is_due(complaint, rule, now):
                result.not_due += 1
                continue

            try:
                outcome = await self._escalate_for_breach(complaint.id, rule, now)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"{complaint.ucn}: {e}")
                logger.error(
                    "Failed to escalate complaint",
                    extra={"complaint_id": complaint.id, "ucn": complaint.ucn, "error": str(e)},
                    exc_info=True
                )
                continue

            if outcome is None:
                result.skipped_stale += 1
                continue

            result.escalated += 1
            result.escalated_ucns.append(complaint.ucn)
            logger.info(
                "Complaint escalated",
                extra={
                    "ucn": complaint.ucn,
                    "severity": complaint.severity,
                    "age_hours": complaint.age_hours(now),
                    "time_limit_hours": rule.time_limit_hours,
                    "to_authority_id": outcome.to_authority.id,
                }
            )
            await self._send_escalation_email(outcome)

        result.finished_at = self._clock()
        return result

    async def _escalate_for_breach(
        self,
        complaint_id: int,
        rule: EscalationRule,
        now: datetime
    ) -> Optional[EscalationOutcome]:
        async with self._session_context() as session:
            return await self._escalation_service(session).escalate_for_breach(
                complaint_id, rule, now
            )

    # ========== Administrative operations ==========

    async def manual_escalation(
        self,
        complaint_id: int,
        target_authority_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> EscalationOutcome:
        """Escalate one complaint now, to an authority chosen by an admin."""
        now = self._clock()
        async with self._session_context() as session:
            outcome = await self._escalation_service(session).escalate_manually(
                complaint_id, target_authority_id, reason, actor_id, now
            )

        logger.info("Complaint manually escalated", extra=outcome.to_dict())
        await self._send_escalation_email(outcome)
        return outcome

    async def update_status(
        self,
        complaint_id: int,
        new_status: str,
        remarks: Optional[str] = None,
        actor_id: Optional[int] = None,
        assigned_authority_id: Optional[int] = None
    ) -> Union[StatusChange, EscalationOutcome]:
        """
        Administrative status change.

        Escalated is routed to manual escalation, with the given authority
        as the target.
        """
        if new_status == ComplaintStatus.ESCALATED:
            if assigned_authority_id is None:
                raise ValidationException(
                    "An authority is required to escalate a complaint",
                    {"status": new_status}
                )
            return await self.manual_escalation(
                complaint_id, assigned_authority_id, remarks, actor_id
            )

        now = self._clock()
        async with self._session_context() as session:
            workflow = StatusWorkflowService(
                SQLAlchemyComplaintRepository(session),
                SQLAlchemyAuthorityRepository(session),
                SQLAlchemyStatusHistoryRepository(session),
                SQLAlchemyNotificationRepository(session),
            )
            change = await workflow.change_status(
                complaint_id, new_status, remarks, actor_id, now, assigned_authority_id
            )

        if change.changed and self._sink is not None:
            try:
                change.notification_sent = await self._sink.notify_status_change(
                    change.complaint, change.old_status, change.new_status, change.remarks
                )
            except Exception as e:
                logger.error(
                    "Status change email failed",
                    extra={"ucn": change.complaint.ucn, "error": str(e)}
                )
        return change

    # ========== Reporting & housekeeping ==========

    async def get_escalation_stats(self) -> EscalationStats:
        async with self._session_context() as session:
            return await self._reporting_service(session).get_escalation_stats(self._clock())

    async def get_sla_compliance_report(
        self,
        window_days: Optional[int] = None
    ) -> SLAComplianceReport:
        async with self._session_context() as session:
            return await self._reporting_service(session).get_sla_compliance_report(
                self._clock(), window_days or self.report_window_days
            )

    async def purge_notifications(self) -> int:
        """Delete notifications past the retention window."""
        async with self._session_context() as session:
            deleted = await NotificationService(
                SQLAlchemyNotificationRepository(session)
            ).purge_expired(self._clock(), self.notification_retention_days)

        logger.info(
            "Old notifications purged",
            extra={"deleted": deleted, "retention_days": self.notification_retention_days}
        )
        return deleted

    # ========== Helpers ==========

    @staticmethod
    def _escalation_service(session: AsyncSession) -> EscalationService:
        return EscalationService(
            SQLAlchemyComplaintRepository(session),
            SQLAlchemyAuthorityRepository(session),
            SQLAlchemyStatusHistoryRepository(session),
            SQLAlchemyEscalationLogRepository(session),
            SQLAlchemyNotificationRepository(session),
        )

    @staticmethod
    def _reporting_service(session: AsyncSession) -> ReportingService:
        return ReportingService(
            SQLAlchemyEscalationLogRepository(session),
            SQLAlchemyComplaintRepository(session),
            SQLAlchemyRuleStore(session),
        )

    async def _send_escalation_email(self, outcome: EscalationOutcome) -> None:
        """Best-effort email after the escalation committed."""
        if self._sink is None:
            return
        try:
            outcome.notification_sent = await self._sink.notify_escalation(
                outcome.complaint, outcome.reason, outcome.to_authority
            )
        except Exception as e:
            logger.error(
                "Escalation email failed",
                extra={"ucn": outcome.complaint.ucn, "error": str(e)}
            )
