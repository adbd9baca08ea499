"""
Escalation Infrastructure Layer
===============================

Infrastructure implementations for complaint escalation:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: External service integrations (email relay, rule seeds, scheduler)
"""

from grievance.escalation.infrastructure.models import (
    UserModel,
    CategoryModel,
    AuthorityModel,
    ComplaintModel,
    StatusHistoryModel,
    EscalationModel,
    EscalationRuleModel,
    NotificationModel,
)
from grievance.escalation.infrastructure.repositories import (
    SQLAlchemyComplaintRepository,
    SQLAlchemyAuthorityRepository,
    SQLAlchemyStatusHistoryRepository,
    SQLAlchemyEscalationLogRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyRuleStore,
)
from grievance.escalation.infrastructure.external import (
    RuleSeedLoader,
    CircuitBreaker,
    CircuitState,
    EmailMessage,
    EmailNotificationClient,
    EscalationScheduler,
)

__all__ = [
    "UserModel",
    "CategoryModel",
    "AuthorityModel",
    "ComplaintModel",
    "StatusHistoryModel",
    "EscalationModel",
    "EscalationRuleModel",
    "NotificationModel",
    "SQLAlchemyComplaintRepository",
    "SQLAlchemyAuthorityRepository",
    "SQLAlchemyStatusHistoryRepository",
    "SQLAlchemyEscalationLogRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyRuleStore",
    "RuleSeedLoader",
    "CircuitBreaker",
    "CircuitState",
    "EmailMessage",
    "EmailNotificationClient",
    "EscalationScheduler",
]
