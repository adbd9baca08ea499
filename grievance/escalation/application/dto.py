"""
Escalation Application DTOs
===========================

Data Transfer Objects for the escalation API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime

from grievance.escalation.domain import (
    EscalationOutcome, EscalationRule, EscalationStats, Notification,
    SLAComplianceReport, SeverityCompliance, StatusChange, StatusHistoryEntry,
    SweepResult,
)
from grievance.escalation.domain.value_objects import MAX_REASON_LENGTH


# ========== Type Aliases for Literals ==========
SeverityStr = Literal["Low", "Medium", "High"]
ComplaintStatusStr = Literal[
    "Submitted", "Under Review", "Assigned to Authority",
    "In Progress", "Resolved", "Escalated"
]
NotificationTypeStr = Literal[
    "submission", "status_change", "escalation", "resolution"
]


# ========== Request DTOs ==========

class ManualEscalationRequest(BaseModel):
    """Request model for an admin-initiated escalation."""
    target_authority_id: int = Field(..., ge=1, description="Authority to escalate to")
    reason: Optional[str] = Field(
        None,
        max_length=MAX_REASON_LENGTH,
        description="Why the complaint is escalated"
    )
    admin_id: Optional[int] = Field(None, ge=1, description="Admin user performing it")


class StatusUpdateRequest(BaseModel):
    """Request model for an administrative status change."""
    status: ComplaintStatusStr = Field(..., description="New status")
    remarks: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)
    assigned_authority_id: Optional[int] = Field(
        None, ge=1, description="Authority to assign, or escalation target"
    )
    admin_id: Optional[int] = Field(None, ge=1, description="Admin user performing it")

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        """Submitted is only set when a complaint is filed."""
        if v == "Submitted":
            raise ValueError("status cannot be set back to Submitted")
        return v


class RuleUpdateRequest(BaseModel):
    """Request model for changing an escalation rule."""
    time_limit_hours: int = Field(..., ge=1, description="SLA threshold in hours")
    escalation_authority_id: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


# ========== Response DTOs ==========

class EscalationResultResponse(BaseModel):
    """Response model for one escalation."""
    complaint_id: int
    ucn: str
    old_status: ComplaintStatusStr
    new_status: ComplaintStatusStr
    from_authority_id: Optional[int]
    to_authority_id: int
    to_authority_name: str
    reason: str
    manual: bool
    escalated_at: datetime
    notification_sent: bool = False

    @classmethod
    def from_domain(cls, outcome: EscalationOutcome) -> "EscalationResultResponse":
        return cls(**outcome.to_dict())


class StatusUpdateResponse(BaseModel):
    """Response model for a status update."""
    complaint_id: int
    ucn: str
    old_status: ComplaintStatusStr
    new_status: ComplaintStatusStr
    remarks: Optional[str] = None
    changed_at: datetime
    notification_sent: bool = False
    escalation: Optional[EscalationResultResponse] = Field(
        None, description="Set when the update was an escalation"
    )

    @classmethod
    def from_change(cls, change: StatusChange) -> "StatusUpdateResponse":
        return cls(
            complaint_id=change.complaint.id,
            ucn=change.complaint.ucn,
            old_status=change.old_status,
            new_status=change.new_status,
            remarks=change.remarks,
            changed_at=change.changed_at,
            notification_sent=change.notification_sent,
        )

    @classmethod
    def from_escalation(cls, outcome: EscalationOutcome) -> "StatusUpdateResponse":
        return cls(
            complaint_id=outcome.complaint.id,
            ucn=outcome.complaint.ucn,
            old_status=outcome.old_status,
            new_status="Escalated",
            remarks=outcome.remarks,
            changed_at=outcome.escalated_at,
            notification_sent=outcome.notification_sent,
            escalation=EscalationResultResponse.from_domain(outcome),
        )


class SweepSummaryResponse(BaseModel):
    """Response model for a sweep run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    rules_loaded: int
    complaints_checked: int
    escalated: int
    not_due: int
    skipped_no_rule: int
    skipped_stale: int
    failed: int
    skipped_in_flight: bool
    aborted: bool
    escalated_ucns: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: SweepResult) -> "SweepSummaryResponse":
        return cls(**result.to_dict())


class SeverityCount(BaseModel):
    severity: str
    escalation_count: int


class CategoryCount(BaseModel):
    category: str
    escalation_count: int


class EscalationStatsResponse(BaseModel):
    """Response model for escalation statistics."""
    total_escalations: int
    today_escalations: int
    week_escalations: int
    month_escalations: int
    by_severity: List[SeverityCount] = Field(default_factory=list)
    by_category: List[CategoryCount] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, stats: EscalationStats) -> "EscalationStatsResponse":
        return cls(
            total_escalations=stats.total_escalations,
            today_escalations=stats.today_escalations,
            week_escalations=stats.week_escalations,
            month_escalations=stats.month_escalations,
            by_severity=[SeverityCount(**row) for row in stats.by_severity],
            by_category=[CategoryCount(**row) for row in stats.by_category],
        )


class SeverityComplianceResponse(BaseModel):
    """Compliance figures for one severity."""
    severity: SeverityStr
    time_limit_hours: Optional[int]
    total_complaints: int
    resolved_complaints: int
    escalated_complaints: int
    resolved_within_sla: int
    avg_resolution_hours: Optional[float]
    max_resolution_hours: Optional[int]
    compliance_rate: float = Field(..., description="Percentage resolved within SLA")

    @classmethod
    def from_domain(cls, item: SeverityCompliance) -> "SeverityComplianceResponse":
        return cls(
            severity=item.severity,
            time_limit_hours=item.time_limit_hours,
            total_complaints=item.total_complaints,
            resolved_complaints=item.resolved_complaints,
            escalated_complaints=item.escalated_complaints,
            resolved_within_sla=item.resolved_within_sla,
            avg_resolution_hours=item.avg_resolution_hours,
            max_resolution_hours=item.max_resolution_hours,
            compliance_rate=item.compliance_rate,
        )


class SLAComplianceResponse(BaseModel):
    """Response model for the SLA compliance report."""
    window_days: int
    generated_at: datetime
    severities: List[SeverityComplianceResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: SLAComplianceReport) -> "SLAComplianceResponse":
        return cls(
            window_days=report.window_days,
            generated_at=report.generated_at,
            severities=[SeverityComplianceResponse.from_domain(s) for s in report.severities],
        )


class RuleResponse(BaseModel):
    """Response model for an escalation rule."""
    id: int
    severity: SeverityStr
    time_limit_hours: int
    escalation_authority_id: Optional[int] = None
    authority_name: Optional[str] = None
    is_active: bool

    @classmethod
    def from_domain(cls, rule: EscalationRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            severity=rule.severity,
            time_limit_hours=rule.time_limit_hours,
            escalation_authority_id=rule.escalation_authority_id,
            authority_name=rule.authority_name,
            is_active=rule.is_active,
        )


class StatusHistoryResponse(BaseModel):
    """One status history entry."""
    id: int
    complaint_id: int
    old_status: Optional[ComplaintStatusStr]
    new_status: ComplaintStatusStr
    remarks: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, entry: StatusHistoryEntry) -> "StatusHistoryResponse":
        return cls(
            id=entry.id,
            complaint_id=entry.complaint_id,
            old_status=entry.old_status,
            new_status=entry.new_status,
            remarks=entry.remarks,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )


class NotificationResponse(BaseModel):
    """Response model for an in-app notification."""
    id: int
    complaint_id: Optional[int] = None
    complaint_ucn: Optional[str] = None
    title: str
    message: str
    type: NotificationTypeStr
    is_read: bool
    created_at: datetime

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            complaint_id=notification.complaint_id,
            complaint_ucn=notification.complaint_ucn,
            title=notification.title,
            message=notification.message,
            type=notification.type,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    """Page of notifications."""
    notifications: List[NotificationResponse]
    total_count: int
    limit: int
    offset: int


class MarkReadResponse(BaseModel):
    success: bool = True
    updated: int = Field(..., description="Notifications marked read")
