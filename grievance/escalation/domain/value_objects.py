"""
Escalation Value Objects
========================

Immutable value objects and stateless policy for the escalation domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator

from grievance.config import (
    ComplaintStatus, DEFAULT_RULE_HOURS, VALID_SEVERITIES
)
from grievance.core import ValidationException
from grievance.escalation.domain.entities import (
    Authority, Complaint, EscalationRule, as_utc
)

MAX_REASON_LENGTH = 1000
DEFAULT_MANUAL_REMARKS = "Manually escalated by admin"
DEFAULT_MANUAL_LOG_REASON = "Manual escalation"
DEFAULT_MANUAL_NOTICE = "Manual escalation by admin"
ESCALATION_TITLE = "Complaint Escalated"


class EscalationPolicy:
    """
    Pure functions for escalation decisions.

    Stateless utility class: every SLA and escalation rule of thumb lives
    here so the engine and the reports agree on them.
    """

    @staticmethod
    def age_hours(created_at: datetime, now: datetime) -> int:
        """Whole hours between creation and now, truncated."""
        return int((as_utc(now) - as_utc(created_at)).total_seconds() // 3600)

    @staticmethod
    def eligibility_cutoff(now: datetime, min_age_hours: int) -> datetime:
        """Complaints created before this instant are old enough to evaluate."""
        return as_utc(now) - timedelta(hours=min_age_hours)

    @staticmethod
    def is_due(complaint: Complaint, rule: EscalationRule, now: datetime) -> bool:
        """SLA breached: age in whole hours has reached the rule's limit."""
        return complaint.age_hours(now) >= rule.time_limit_hours

    @staticmethod
    def index_active_rules(
        rules: Iterable[EscalationRule]
    ) -> Tuple[Dict[str, EscalationRule], List[EscalationRule]]:
        """
        Map severity -> rule, keeping the lowest rule id per severity.

        Returns:
            Tuple of (rules by severity, duplicate rules that were ignored)
        """
        by_severity: Dict[str, EscalationRule] = {}
        duplicates: List[EscalationRule] = []

        ordered = sorted(
            (r for r in rules if r.is_active),
            key=lambda r: (r.id is None, r.id or 0)
        )
        for rule in ordered:
            if rule.severity in by_severity:
                duplicates.append(rule)
                continue
            by_severity[rule.severity] = rule

        return by_severity, duplicates

    @staticmethod
    def choose_fallback_authority(
        candidates: Sequence[Authority],
        current_authority_id: Optional[int]
    ) -> Optional[Authority]:
        """
        Pick the escalation target when the rule names none.

        Lowest-id active authority other than the current assignee.
        """
        eligible = [
            a for a in candidates
            if a.is_active and a.id != current_authority_id
        ]
        if not eligible:
            return None
        return min(eligible, key=lambda a: a.id)

    @staticmethod
    def breach_remarks(rule: EscalationRule) -> str:
        return (
            "Automatically escalated due to SLA breach "
            f"({rule.time_limit_hours} hours limit exceeded)"
        )

    @staticmethod
    def breach_reason(rule: EscalationRule) -> str:
        return f"SLA breach: {rule.time_limit_hours} hours limit exceeded"

    @staticmethod
    def breach_notice(ucn: str) -> str:
        return f"Your complaint {ucn} has been escalated due to delay in resolution"

    @staticmethod
    def normalize_reason(reason: Optional[str]) -> Optional[str]:
        """
        Strip an admin-supplied reason; blank means "use the defaults".

        Raises:
            ValidationException: If the reason is longer than allowed
        """
        if reason is None:
            return None
        reason = reason.strip()
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationException(
                f"Reason must be at most {MAX_REASON_LENGTH} characters",
                {"length": len(reason)}
            )
        return reason or None

    @staticmethod
    def manual_texts(ucn: str, reason: Optional[str]) -> Tuple[str, str, str]:
        """
        Texts for a manual escalation.

        Returns:
            Tuple of (history remarks, escalation log reason, notification message)
        """
        remarks = reason or DEFAULT_MANUAL_REMARKS
        log_reason = reason or DEFAULT_MANUAL_LOG_REASON
        notice = f"Your complaint {ucn} has been escalated: {reason or DEFAULT_MANUAL_NOTICE}"
        return remarks, log_reason, notice

    @staticmethod
    def resolution_hours(created_at: datetime, resolved_at: datetime) -> int:
        """Whole hours a resolved complaint took."""
        return EscalationPolicy.age_hours(created_at, resolved_at)


class RuleSeed(BaseModel):
    """One default rule as written in the seed file."""
    time_limit_hours: int = Field(ge=1, description="SLA threshold in hours")
    escalation_authority_id: Optional[int] = Field(
        default=None, ge=1, description="Authority complaints escalate to"
    )
    is_active: bool = Field(default=True)


class RuleSeedConfig(BaseModel):
    """
    Default escalation rules loaded from YAML.

    Severities missing from the file fall back to the built-in
    limits (High 72h, Medium 168h, Low 360h).
    """
    rules: Dict[str, RuleSeed] = Field(
        default_factory=dict,
        validate_default=True,
        description="Rule per severity"
    )

    @field_validator("rules")
    @classmethod
    def validate_rules(cls, v: Dict[str, RuleSeed]) -> Dict[str, RuleSeed]:
        """Reject unknown severities and fill in missing ones."""
        unknown = [key for key in v if key not in VALID_SEVERITIES]
        if unknown:
            raise ValueError(f"unknown severities in rule seeds: {unknown}")

        for severity in VALID_SEVERITIES:
            if severity not in v:
                v[severity] = RuleSeed(time_limit_hours=DEFAULT_RULE_HOURS[severity])

        return v

    def to_rules(self) -> List[EscalationRule]:
        """Domain rules in severity order."""
        return [
            EscalationRule(
                id=None,
                severity=severity,
                time_limit_hours=seed.time_limit_hours,
                escalation_authority_id=seed.escalation_authority_id,
                is_active=seed.is_active,
            )
            for severity, seed in sorted(
                self.rules.items(), key=lambda item: VALID_SEVERITIES.index(item[0])
            )
        ]


@dataclass(frozen=True)
class EscalationStats:
    """Escalation counts for the admin dashboard."""
    total_escalations: int
    today_escalations: int
    week_escalations: int
    month_escalations: int
    by_severity: List[dict] = field(default_factory=list)
    by_category: List[dict] = field(default_factory=list)


@dataclass(frozen=True)
class SeverityCompliance:
    """SLA compliance figures for one severity over the report window."""
    severity: str
    time_limit_hours: Optional[int]
    total_complaints: int
    resolved_complaints: int
    escalated_complaints: int
    resolved_within_sla: int
    avg_resolution_hours: Optional[float]
    max_resolution_hours: Optional[int]

    @property
    def compliance_rate(self) -> float:
        """Percentage of complaints resolved inside their SLA."""
        if self.total_complaints == 0:
            return 0.0
        return round(self.resolved_within_sla / self.total_complaints * 100, 2)

    @classmethod
    def from_complaints(
        cls,
        severity: str,
        rule: Optional[EscalationRule],
        complaints: Sequence[Tuple[str, datetime, datetime]]
    ) -> "SeverityCompliance":
        """
        Aggregate (status, created_at, updated_at) rows of one severity.

        Resolution time of a resolved complaint is measured up to its last
        update, which is when it was resolved.
        """
        resolution_hours = [
            EscalationPolicy.resolution_hours(created_at, updated_at)
            for status, created_at, updated_at in complaints
            if status == ComplaintStatus.RESOLVED
        ]
        escalated = sum(1 for status, _, _ in complaints if status == ComplaintStatus.ESCALATED)
        time_limit = rule.time_limit_hours if rule else None
        within = (
            sum(1 for hours in resolution_hours if hours < time_limit)
            if time_limit is not None else len(resolution_hours)
        )

        return cls(
            severity=severity,
            time_limit_hours=time_limit,
            total_complaints=len(complaints),
            resolved_complaints=len(resolution_hours),
            escalated_complaints=escalated,
            resolved_within_sla=within,
            avg_resolution_hours=(
                round(sum(resolution_hours) / len(resolution_hours), 2)
                if resolution_hours else None
            ),
            max_resolution_hours=max(resolution_hours) if resolution_hours else None,
        )


@dataclass(frozen=True)
class SLAComplianceReport:
    """Per-severity compliance over a trailing window."""
    window_days: int
    generated_at: datetime
    severities: List[SeverityCompliance] = field(default_factory=list)
