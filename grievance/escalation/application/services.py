"""
Escalation Application Services
===============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Services never commit. The caller owns the unit of work, so every write a
service performs lands or rolls back together.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from grievance.config import (
    ADMIN_SETTABLE_STATUSES, ComplaintStatus, NotificationType, VALID_SEVERITIES
)
from grievance.core import (
    DomainException, ResourceNotFoundException, ValidationException
)
from grievance.escalation.domain import (
    Authority, Complaint, EscalationLogEntry, EscalationOutcome, EscalationPolicy,
    EscalationRule, EscalationStats, Notification, RuleSeedConfig,
    SeverityCompliance, SLAComplianceReport, StatusChange, StatusHistoryEntry,
    as_utc,
)
from grievance.escalation.domain.value_objects import ESCALATION_TITLE
from grievance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IRuleStore(ABC):
    """Interface for escalation rule access."""

    @abstractmethod
    async def list_active_rules(self) -> List[EscalationRule]:
        """All active rules."""

    @abstractmethod
    async def get_rule(self, rule_id: int) -> Optional[EscalationRule]:
        """Get rule by ID."""

    @abstractmethod
    async def save_rule(self, rule: EscalationRule) -> EscalationRule:
        """Persist changes to an existing rule."""

    @abstractmethod
    async def add_rules(self, rules: Sequence[EscalationRule]) -> List[EscalationRule]:
        """Insert new rules."""

    @abstractmethod
    async def count_rules(self) -> int:
        """Number of rules, active or not."""


class IComplaintRepository(ABC):
    """Interface for complaint data access."""

    @abstractmethod
    async def list_eligible(self, created_before: datetime) -> List[Complaint]:
        """Open, non-escalated complaints created before the cutoff, with context."""

    @abstractmethod
    async def get_by_id(
        self,
        complaint_id: int,
        for_update: bool = False
    ) -> Optional[Complaint]:
        """Get complaint with context; optionally lock its row."""

    @abstractmethod
    async def mark_escalated(
        self,
        complaint_id: int,
        authority_id: int,
        updated_at: datetime
    ) -> None:
        """Set status Escalated and reassign. Raises ResourceNotFoundException."""

    @abstractmethod
    async def update_status(
        self,
        complaint_id: int,
        status: str,
        updated_at: datetime,
        assigned_authority_id: Optional[int] = None
    ) -> None:
        """Set a new status. Raises ResourceNotFoundException."""

    @abstractmethod
    async def list_created_since(
        self,
        since: datetime
    ) -> List[Tuple[str, str, datetime, datetime]]:
        """(severity, status, created_at, updated_at) of complaints created since."""


class IAuthorityRepository(ABC):
    """Interface for authority lookup."""

    @abstractmethod
    async def get_by_id(self, authority_id: int) -> Optional[Authority]:
        """Get authority by ID."""

    @abstractmethod
    async def list_active_excluding(self, authority_id: Optional[int]) -> List[Authority]:
        """Active authorities other than the given one, lowest id first."""


class IStatusHistoryRepository(ABC):
    """Interface for the append-only status history."""

    @abstractmethod
    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        """Append an entry. Raises RepositoryException."""

    @abstractmethod
    async def list_for_complaint(self, complaint_id: int) -> List[StatusHistoryEntry]:
        """Entries for one complaint, newest first."""


class IEscalationLogRepository(ABC):
    """Interface for the append-only escalation log and its aggregates."""

    @abstractmethod
    async def append(self, entry: EscalationLogEntry) -> EscalationLogEntry:
        """Append an entry. Raises RepositoryException."""

    @abstractmethod
    async def count_since(self, since: Optional[datetime] = None) -> int:
        """Escalations at or after `since` (all when None)."""

    @abstractmethod
    async def counts_by_severity(self) -> List[dict]:
        """[{"severity", "escalation_count"}]"""

    @abstractmethod
    async def counts_by_category(self, limit: int = 10) -> List[dict]:
        """[{"category", "escalation_count"}], busiest first."""


class INotificationRepository(ABC):
    """Interface for in-app notifications."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Store a notification."""

    @abstractmethod
    async def list_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0
    ) -> List[Notification]:
        """User's notifications, newest first."""

    @abstractmethod
    async def count_for_user(self, user_id: int, unread_only: bool = False) -> int:
        """Total matching notifications."""

    @abstractmethod
    async def mark_read(self, notification_id: int, user_id: int) -> bool:
        """Flip the read flag; False when no such notification for the user."""

    @abstractmethod
    async def mark_all_read(self, user_id: int) -> int:
        """Mark every notification of a user read; returns rows changed."""

    @abstractmethod
    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete notifications created before the cutoff."""


class INotificationSink(ABC):
    """
    Out-of-band delivery (email) to complaint owners.

    Implementations must never raise; failure is reported as False.
    """

    @abstractmethod
    async def notify_escalation(
        self,
        complaint: Complaint,
        reason: str,
        authority: Optional[Authority] = None
    ) -> bool:
        """Tell the owner their complaint was escalated."""

    @abstractmethod
    async def notify_status_change(
        self,
        complaint: Complaint,
        old_status: str,
        new_status: str,
        remarks: Optional[str] = None
    ) -> bool:
        """Tell the owner their complaint changed status."""


# ========== Application Services ==========

class EscalationService:
    """
    Performs one escalation as a single unit of work.

    Steps, in order: reassign the complaint and set it Escalated, append the
    status history entry, append the escalation log entry, create the owner's
    notification. Any failure propagates so the caller's transaction rolls
    everything back.
    """

    def __init__(
        self,
        complaints: IComplaintRepository,
        authorities: IAuthorityRepository,
        history: IStatusHistoryRepository,
        escalation_log: IEscalationLogRepository,
        notifications: INotificationRepository
    ):
        self._complaints = complaints
        self._authorities = authorities
        self._history = history
        self._escalation_log = escalation_log
        self._notifications = notifications

    async def escalate_for_breach(
        self,
        complaint_id: int,
        rule: EscalationRule,
        now: datetime
    ) -> Optional[EscalationOutcome]:
        """
        Escalate a complaint whose SLA has been breached.

        The complaint is re-read under a row lock. If it was resolved or
        escalated since the sweep read it, nothing is written.

        Returns:
            EscalationOutcome, or None when the complaint is no longer eligible
        """
        complaint = await self._complaints.get_by_id(complaint_id, for_update=True)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)

        if not complaint.is_escalatable:
            logger.info(
                "Complaint changed since sweep read it, skipping",
                extra={"complaint_id": complaint_id, "status": complaint.status}
            )
            return None

        target = await self._resolve_breach_target(complaint, rule)

        return await self._apply(
            complaint,
            target,
            remarks=EscalationPolicy.breach_remarks(rule),
            reason=EscalationPolicy.breach_reason(rule),
            notice=EscalationPolicy.breach_notice(complaint.ucn),
            actor_id=None,
            manual=False,
            now=now
        )

    async def escalate_manually(
        self,
        complaint_id: int,
        target_authority_id: int,
        reason: Optional[str],
        actor_id: Optional[int],
        now: datetime
    ) -> EscalationOutcome:
        """
        Escalate a complaint to an admin-chosen authority, regardless of age.

        Raises:
            ValidationException: Bad target id or over-long reason
            ResourceNotFoundException: Complaint or authority missing
            DomainException: Complaint already resolved
        """
        if target_authority_id is None or target_authority_id < 1:
            raise ValidationException(
                "A target authority is required for manual escalation",
                {"target_authority_id": target_authority_id}
            )
        reason = EscalationPolicy.normalize_reason(reason)

        complaint = await self._complaints.get_by_id(complaint_id, for_update=True)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)
        if complaint.is_terminal:
            raise DomainException(
                f"Complaint {complaint.ucn} is resolved and cannot be escalated",
                {"complaint_id": complaint_id, "status": complaint.status}
            )

        target = await self._authorities.get_by_id(target_authority_id)
        if target is None:
            raise ResourceNotFoundException("Authority", target_authority_id)
        if not target.is_active:
            raise ValidationException(
                f"Authority '{target.name}' is not active",
                {"target_authority_id": target_authority_id}
            )

        remarks, log_reason, notice = EscalationPolicy.manual_texts(complaint.ucn, reason)

        return await self._apply(
            complaint,
            target,
            remarks=remarks,
            reason=log_reason,
            notice=notice,
            actor_id=actor_id,
            manual=True,
            now=now
        )

    async def _resolve_breach_target(
        self,
        complaint: Complaint,
        rule: EscalationRule
    ) -> Authority:
        """Rule's authority when usable, otherwise the fallback pick."""
        configured_id = rule.escalation_authority_id
        if configured_id is not None and configured_id != complaint.assigned_authority_id:
            authority = await self._authorities.get_by_id(configured_id)
            if authority is not None and authority.is_active:
                return authority
            logger.warning(
                "Rule escalation authority unavailable, using fallback",
                extra={"rule_id": rule.id, "authority_id": configured_id}
            )

        candidates = await self._authorities.list_active_excluding(
            complaint.assigned_authority_id
        )
        target = EscalationPolicy.choose_fallback_authority(
            candidates, complaint.assigned_authority_id
        )
        if target is None:
            raise DomainException(
                f"No alternative authority available to escalate {complaint.ucn}",
                {"complaint_id": complaint.id,
                 "current_authority_id": complaint.assigned_authority_id}
            )
        return target

    async def _apply(
        self,
        complaint: Complaint,
        target: Authority,
        remarks: str,
        reason: str,
        notice: str,
        actor_id: Optional[int],
        manual: bool,
        now: datetime
    ) -> EscalationOutcome:
        await self._complaints.mark_escalated(complaint.id, target.id, now)

        await self._history.append(StatusHistoryEntry(
            complaint_id=complaint.id,
            old_status=complaint.status,
            new_status=ComplaintStatus.ESCALATED,
            remarks=remarks,
            created_by=actor_id,
            created_at=now
        ))

        await self._escalation_log.append(EscalationLogEntry(
            complaint_id=complaint.id,
            from_authority_id=complaint.assigned_authority_id,
            to_authority_id=target.id,
            reason=reason,
            escalated_at=now
        ))

        await self._notifications.create(Notification(
            user_id=complaint.user_id,
            complaint_id=complaint.id,
            title=ESCALATION_TITLE,
            message=notice,
            type=NotificationType.ESCALATION,
            created_at=now
        ))

        return EscalationOutcome(
            complaint=complaint,
            old_status=complaint.status,
            from_authority_id=complaint.assigned_authority_id,
            to_authority=target,
            reason=reason,
            remarks=remarks,
            manual=manual,
            actor_id=actor_id,
            escalated_at=now
        )


class StatusWorkflowService:
    """
    Administrative status changes other than escalation.

    Every change is appended to the status history; the owner gets a
    notification when the status actually moves.
    """

    def __init__(
        self,
        complaints: IComplaintRepository,
        authorities: IAuthorityRepository,
        history: IStatusHistoryRepository,
        notifications: INotificationRepository
    ):
        self._complaints = complaints
        self._authorities = authorities
        self._history = history
        self._notifications = notifications

    async def change_status(
        self,
        complaint_id: int,
        new_status: str,
        remarks: Optional[str],
        actor_id: Optional[int],
        now: datetime,
        assigned_authority_id: Optional[int] = None
    ) -> StatusChange:
        """
        Move a complaint to a new status.

        Escalation is not handled here; callers route it to EscalationService.
        """
        if new_status not in ADMIN_SETTABLE_STATUSES or new_status == ComplaintStatus.ESCALATED:
            raise ValidationException(
                f"Status '{new_status}' cannot be set here",
                {"allowed": [s for s in ADMIN_SETTABLE_STATUSES if s != ComplaintStatus.ESCALATED]}
            )
        if assigned_authority_id is not None and new_status != ComplaintStatus.ASSIGNED_TO_AUTHORITY:
            raise ValidationException(
                "An authority can only be given when assigning the complaint",
                {"status": new_status}
            )
        remarks = EscalationPolicy.normalize_reason(remarks)

        complaint = await self._complaints.get_by_id(complaint_id, for_update=True)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)
        if complaint.is_terminal:
            raise DomainException(
                f"Complaint {complaint.ucn} is resolved and cannot change status",
                {"complaint_id": complaint_id}
            )

        if assigned_authority_id is not None:
            authority = await self._authorities.get_by_id(assigned_authority_id)
            if authority is None:
                raise ResourceNotFoundException("Authority", assigned_authority_id)
            if not authority.is_active:
                raise ValidationException(
                    f"Authority '{authority.name}' is not active",
                    {"assigned_authority_id": assigned_authority_id}
                )

        await self._complaints.update_status(
            complaint.id, new_status, now, assigned_authority_id
        )
        await self._history.append(StatusHistoryEntry(
            complaint_id=complaint.id,
            old_status=complaint.status,
            new_status=new_status,
            remarks=remarks,
            created_by=actor_id,
            created_at=now
        ))

        change = StatusChange(
            complaint=complaint,
            old_status=complaint.status,
            new_status=new_status,
            remarks=remarks,
            actor_id=actor_id,
            changed_at=now
        )
        if change.changed:
            await self._notifications.create(self._notification_for(change))

        return change

    async def get_history(self, complaint_id: int) -> List[StatusHistoryEntry]:
        """Status history of a complaint, newest first."""
        complaint = await self._complaints.get_by_id(complaint_id)
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)
        return await self._history.list_for_complaint(complaint_id)

    @staticmethod
    def _notification_for(change: StatusChange) -> Notification:
        ucn = change.complaint.ucn
        if change.new_status == ComplaintStatus.RESOLVED:
            title = "Complaint Resolved"
            message = f"Your complaint {ucn} has been resolved."
            if change.remarks:
                message += f" Resolution remarks: {change.remarks}"
            kind = NotificationType.RESOLUTION
        else:
            title = "Complaint Status Updated"
            message = (
                f'Your complaint {ucn} status has been updated from '
                f'"{change.old_status}" to "{change.new_status}".'
            )
            if change.remarks:
                message += f" Remarks: {change.remarks}"
            kind = NotificationType.STATUS_CHANGE

        return Notification(
            user_id=change.complaint.user_id,
            complaint_id=change.complaint.id,
            title=title,
            message=message,
            type=kind,
            created_at=change.changed_at
        )


class RuleService:
    """Administration of SLA rules: one active rule per severity."""

    def __init__(self, rules: IRuleStore, authorities: IAuthorityRepository):
        self._rules = rules
        self._authorities = authorities

    async def list_rules(self) -> List[EscalationRule]:
        """Active rules, ordered by severity."""
        rules = await self._rules.list_active_rules()
        return sorted(
            rules,
            key=lambda r: (VALID_SEVERITIES.index(r.severity), r.id or 0)
        )

    async def update_rule(
        self,
        rule_id: int,
        time_limit_hours: int,
        escalation_authority_id: Optional[int] = None,
        is_active: Optional[bool] = None
    ) -> EscalationRule:
        """
        Change a rule's limit, target authority and optionally its active flag.

        Raises:
            ValidationException: Non-positive limit, inactive authority, or a
                second active rule for the same severity
            ResourceNotFoundException: Rule or authority missing
        """
        if time_limit_hours is None or time_limit_hours < 1:
            raise ValidationException(
                "Time limit must be at least 1 hour",
                {"time_limit_hours": time_limit_hours}
            )

        rule = await self._rules.get_rule(rule_id)
        if rule is None:
            raise ResourceNotFoundException("Escalation rule", rule_id)

        authority_name = None
        if escalation_authority_id is not None:
            authority = await self._authorities.get_by_id(escalation_authority_id)
            if authority is None:
                raise ResourceNotFoundException("Authority", escalation_authority_id)
            if not authority.is_active:
                raise ValidationException(
                    f"Authority '{authority.name}' is not active",
                    {"escalation_authority_id": escalation_authority_id}
                )
            authority_name = authority.name

        activate = rule.is_active if is_active is None else is_active
        if activate and not rule.is_active:
            active = await self._rules.list_active_rules()
            clash = [r for r in active if r.severity == rule.severity and r.id != rule.id]
            if clash:
                raise ValidationException(
                    f"Severity '{rule.severity}' already has an active rule",
                    {"active_rule_id": clash[0].id}
                )

        updated = EscalationRule(
            id=rule.id,
            severity=rule.severity,
            time_limit_hours=time_limit_hours,
            escalation_authority_id=escalation_authority_id,
            is_active=activate,
            authority_name=authority_name
        )
        return await self._rules.save_rule(updated)

    async def seed_defaults(self, config: RuleSeedConfig) -> int:
        """
        Insert default rules when the rule table is empty.

        Returns:
            Number of rules inserted
        """
        if await self._rules.count_rules() > 0:
            return 0
        added = await self._rules.add_rules(config.to_rules())
        logger.info("Seeded default escalation rules", extra={"rules": len(added)})
        return len(added)


class ReportingService:
    """Read-only aggregates over escalations and complaints."""

    def __init__(
        self,
        escalation_log: IEscalationLogRepository,
        complaints: IComplaintRepository,
        rules: IRuleStore
    ):
        self._escalation_log = escalation_log
        self._complaints = complaints
        self._rules = rules

    async def get_escalation_stats(self, now: datetime) -> EscalationStats:
        """Escalation totals for today, the last 7 and 30 days, and overall."""
        start_of_today = as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)

        return EscalationStats(
            total_escalations=await self._escalation_log.count_since(None),
            today_escalations=await self._escalation_log.count_since(start_of_today),
            week_escalations=await self._escalation_log.count_since(
                start_of_today - timedelta(days=7)
            ),
            month_escalations=await self._escalation_log.count_since(
                start_of_today - timedelta(days=30)
            ),
            by_severity=await self._escalation_log.counts_by_severity(),
            by_category=await self._escalation_log.counts_by_category(limit=10),
        )

    async def get_sla_compliance_report(
        self,
        now: datetime,
        window_days: int = 30
    ) -> SLAComplianceReport:
        """Per-severity resolution and escalation figures over the trailing window."""
        since = as_utc(now) - timedelta(days=window_days)
        rows = await self._complaints.list_created_since(since)
        rules_by_severity, _ = EscalationPolicy.index_active_rules(
            await self._rules.list_active_rules()
        )

        grouped: Dict[str, List[Tuple[str, datetime, datetime]]] = defaultdict(list)
        for severity, status, created_at, updated_at in rows:
            grouped[severity].append((status, created_at, updated_at))

        severities = [
            SeverityCompliance.from_complaints(
                severity, rules_by_severity.get(severity), grouped[severity]
            )
            for severity in VALID_SEVERITIES
            if severity in grouped
        ]

        return SLAComplianceReport(
            window_days=window_days,
            generated_at=as_utc(now),
            severities=severities
        )


class NotificationService:
    """Polled in-app notifications and their retention."""

    def __init__(self, notifications: INotificationRepository):
        self._notifications = notifications

    async def list_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Notification], int]:
        """Page of notifications plus the total count."""
        items = await self._notifications.list_for_user(user_id, unread_only, limit, offset)
        total = await self._notifications.count_for_user(user_id, unread_only)
        return items, total

    async def mark_read(self, notification_id: int, user_id: int) -> None:
        if not await self._notifications.mark_read(notification_id, user_id):
            raise ResourceNotFoundException("Notification", notification_id)

    async def mark_all_read(self, user_id: int) -> int:
        return await self._notifications.mark_all_read(user_id)

    async def purge_expired(self, now: datetime, retention_days: int) -> int:
        """Delete notifications past the retention window."""
        cutoff = as_utc(now) - timedelta(days=retention_days)
        return await self._notifications.purge_older_than(cutoff)
