"""
Escalation Application Layer
============================

Application layer for the escalation module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from grievance.escalation.application.dto import (
    ManualEscalationRequest,
    StatusUpdateRequest,
    RuleUpdateRequest,
    EscalationResultResponse,
    StatusUpdateResponse,
    SweepSummaryResponse,
    EscalationStatsResponse,
    SeverityComplianceResponse,
    SLAComplianceResponse,
    RuleResponse,
    StatusHistoryResponse,
    NotificationResponse,
    NotificationListResponse,
    MarkReadResponse,
)
from grievance.escalation.application.services import (
    EscalationService,
    StatusWorkflowService,
    RuleService,
    ReportingService,
    NotificationService,
    IRuleStore,
    IComplaintRepository,
    IAuthorityRepository,
    IStatusHistoryRepository,
    IEscalationLogRepository,
    INotificationRepository,
    INotificationSink,
)

__all__ = [
    # DTOs
    "ManualEscalationRequest",
    "StatusUpdateRequest",
    "RuleUpdateRequest",
    "EscalationResultResponse",
    "StatusUpdateResponse",
    "SweepSummaryResponse",
    "EscalationStatsResponse",
    "SeverityComplianceResponse",
    "SLAComplianceResponse",
    "RuleResponse",
    "StatusHistoryResponse",
    "NotificationResponse",
    "NotificationListResponse",
    "MarkReadResponse",
    # Services
    "EscalationService",
    "StatusWorkflowService",
    "RuleService",
    "ReportingService",
    "NotificationService",
    # Repository Interfaces
    "IRuleStore",
    "IComplaintRepository",
    "IAuthorityRepository",
    "IStatusHistoryRepository",
    "IEscalationLogRepository",
    "INotificationRepository",
    "INotificationSink",
]
