"""
Escalation Domain Layer
=======================

Domain layer for the complaint escalation module.

Contains:
- Entities: Core business objects (Complaint, EscalationRule, Authority,
  StatusHistoryEntry, EscalationLogEntry, Notification)
- Value Objects: Immutable objects (RuleSeedConfig, EscalationStats,
  SLAComplianceReport)
- Domain Services: Stateless business logic (EscalationPolicy)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from grievance.escalation.domain.entities import (
    Authority,
    Complaint,
    EscalationLogEntry,
    EscalationOutcome,
    EscalationRule,
    Notification,
    StatusChange,
    StatusHistoryEntry,
    SweepResult,
    as_utc,
)
from grievance.escalation.domain.value_objects import (
    EscalationPolicy,
    EscalationStats,
    RuleSeed,
    RuleSeedConfig,
    SeverityCompliance,
    SLAComplianceReport,
)

__all__ = [
    # Entities
    "Authority",
    "Complaint",
    "EscalationLogEntry",
    "EscalationOutcome",
    "EscalationRule",
    "Notification",
    "StatusChange",
    "StatusHistoryEntry",
    "SweepResult",
    "as_utc",
    # Value Objects & Services
    "EscalationPolicy",
    "EscalationStats",
    "RuleSeed",
    "RuleSeedConfig",
    "SeverityCompliance",
    "SLAComplianceReport",
]
