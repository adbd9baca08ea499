"""
Escalation Domain Entities
==========================

Pure Python domain entities for complaint escalation.

These entities carry business state and small pieces of logic and are
free of infrastructure concerns. Repositories translate ORM rows to and
from them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List

from grievance.config import (
    ComplaintStatus, ESCALATABLE_STATUSES, TERMINAL_STATUSES, VALID_SEVERITIES
)
from grievance.core import ValidationException


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Authority:
    """A department or office that can own a complaint."""

    id: int
    name: str
    department: str
    email: Optional[str] = None
    is_active: bool = True


@dataclass
class EscalationRule:
    """
    SLA rule for one severity.

    A complaint of this severity that stays open for `time_limit_hours`
    is escalated, to `escalation_authority_id` when set.
    """

    id: Optional[int]
    severity: str
    time_limit_hours: int
    escalation_authority_id: Optional[int] = None
    is_active: bool = True
    authority_name: Optional[str] = None

    def __post_init__(self):
        if self.severity not in VALID_SEVERITIES:
            raise ValidationException(
                f"Unknown severity '{self.severity}'",
                {"allowed": VALID_SEVERITIES}
            )
        if self.time_limit_hours is None or self.time_limit_hours <= 0:
            raise ValidationException(
                "time_limit_hours must be a positive number of hours",
                {"time_limit_hours": self.time_limit_hours}
            )


@dataclass
class Complaint:
    """
    Complaint aggregate root, as seen by the escalation engine.

    The context fields (category, user and authority names) are filled
    when the complaint was read with its joins.
    """

    id: int
    ucn: str
    user_id: int
    category_id: int
    severity: str
    status: str
    created_at: datetime
    updated_at: datetime
    title: str = ""
    assigned_authority_id: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Joined context
    category_name: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    current_authority_name: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        """Resolved complaints never change again."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_escalatable(self) -> bool:
        """Whether the automatic sweep may act on this complaint."""
        return self.status in ESCALATABLE_STATUSES

    def age_hours(self, now: datetime) -> int:
        """Whole hours elapsed since creation (truncated)."""
        elapsed = as_utc(now) - as_utc(self.created_at)
        return int(elapsed.total_seconds() // 3600)


@dataclass
class StatusHistoryEntry:
    """One status transition; `created_by` None means the system did it."""

    complaint_id: int
    old_status: Optional[str]
    new_status: str
    remarks: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass
class EscalationLogEntry:
    """Audit record of an authority change caused by escalation."""

    complaint_id: int
    from_authority_id: Optional[int]
    to_authority_id: int
    reason: str
    escalated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass
class Notification:
    """In-app notification polled by the complaint owner."""

    user_id: int
    complaint_id: Optional[int]
    title: str
    message: str
    type: str
    is_read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None
    complaint_ucn: Optional[str] = None


@dataclass
class EscalationOutcome:
    """Result of one committed escalation."""

    complaint: Complaint
    old_status: str
    from_authority_id: Optional[int]
    to_authority: Authority
    reason: str
    remarks: str
    manual: bool
    actor_id: Optional[int]
    escalated_at: datetime
    notification_sent: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses and logs."""
        return {
            "complaint_id": self.complaint.id,
            "ucn": self.complaint.ucn,
            "old_status": self.old_status,
            "new_status": ComplaintStatus.ESCALATED,
            "from_authority_id": self.from_authority_id,
            "to_authority_id": self.to_authority.id,
            "to_authority_name": self.to_authority.name,
            "reason": self.reason,
            "manual": self.manual,
            "escalated_at": self.escalated_at.isoformat(),
            "notification_sent": self.notification_sent,
        }


@dataclass
class SweepResult:
    """Summary of one escalation sweep."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    rules_loaded: int = 0
    complaints_checked: int = 0
    escalated: int = 0
    not_due: int = 0
    skipped_no_rule: int = 0
    skipped_stale: int = 0
    failed: int = 0
    skipped_in_flight: bool = False
    aborted: bool = False
    escalated_ucns: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "rules_loaded": self.rules_loaded,
            "complaints_checked": self.complaints_checked,
            "escalated": self.escalated,
            "not_due": self.not_due,
            "skipped_no_rule": self.skipped_no_rule,
            "skipped_stale": self.skipped_stale,
            "failed": self.failed,
            "skipped_in_flight": self.skipped_in_flight,
            "aborted": self.aborted,
            "escalated_ucns": list(self.escalated_ucns),
            "errors": list(self.errors),
        }


@dataclass
class StatusChange:
    """Result of an administrative (non-escalation) status update."""

    complaint: Complaint
    old_status: str
    new_status: str
    remarks: Optional[str]
    actor_id: Optional[int]
    changed_at: datetime
    notification_sent: bool = False

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status
