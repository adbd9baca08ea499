"""
Escalation Controllers (API Routes)
===================================

FastAPI routes for escalation administration, complaint history and
user notifications.

Controllers are thin - they delegate to the escalation engine or to
application services. Application exceptions propagate to the handlers
registered in grievance.main, which map them to HTTP status codes.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.core import ConfigurationException
from grievance.escalation.application import (
    EscalationResultResponse,
    EscalationStatsResponse,
    ManualEscalationRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationService,
    RuleResponse,
    RuleService,
    RuleUpdateRequest,
    SLAComplianceResponse,
    StatusHistoryResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
    StatusWorkflowService,
    SweepSummaryResponse,
)
from grievance.escalation.domain import EscalationOutcome
from grievance.escalation.infrastructure import (
    SQLAlchemyAuthorityRepository,
    SQLAlchemyComplaintRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyRuleStore,
    SQLAlchemyStatusHistoryRepository,
)
from grievance.escalation.services import EscalationEngine
from grievance.infrastructure.database import get_session
from grievance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

admin_router = APIRouter(prefix="/admin", tags=["Escalation Administration"])
complaints_router = APIRouter(prefix="/complaints", tags=["Complaints"])
notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ========== Example payloads for Swagger ==========

ESCALATION_RESULT_EXAMPLE = {
    "complaint_id": 42,
    "ucn": "GRV-2024-000042",
    "old_status": "In Progress",
    "new_status": "Escalated",
    "from_authority_id": 3,
    "to_authority_id": 1,
    "to_authority_name": "Municipal Commissioner",
    "reason": "Manual escalation",
    "manual": True,
    "escalated_at": "2024-01-15T10:00:00Z",
    "notification_sent": True
}


# ========== Dependencies ==========

def get_escalation_engine(request: Request) -> EscalationEngine:
    """Engine created by the application lifespan."""
    engine = getattr(request.app.state, "escalation_engine", None)
    if engine is None:
        raise ConfigurationException("Escalation engine is not initialized")
    return engine


async def get_rule_service(
    session: AsyncSession = Depends(get_session)
) -> RuleService:
    return RuleService(SQLAlchemyRuleStore(session), SQLAlchemyAuthorityRepository(session))


async def get_workflow_service(
    session: AsyncSession = Depends(get_session)
) -> StatusWorkflowService:
    return StatusWorkflowService(
        SQLAlchemyComplaintRepository(session),
        SQLAlchemyAuthorityRepository(session),
        SQLAlchemyStatusHistoryRepository(session),
        SQLAlchemyNotificationRepository(session),
    )


async def get_notification_service(
    session: AsyncSession = Depends(get_session)
) -> NotificationService:
    return NotificationService(SQLAlchemyNotificationRepository(session))


# ========== Admin: escalation ==========

@admin_router.post(
    "/complaints/{complaint_id}/escalate",
    response_model=EscalationResultResponse,
    summary="Escalate a complaint manually",
    description="""
    Escalate a complaint to the given authority regardless of its age.

    Writes the status history entry, the escalation log entry and the owner's
    notification in one transaction. Resolved complaints cannot be escalated.
    """,
    responses={
        200: {"content": {"application/json": {"example": ESCALATION_RESULT_EXAMPLE}}},
        404: {"description": "Complaint or authority not found"},
        409: {"description": "Complaint is resolved"},
    }
)
async def escalate_complaint(
    complaint_id: int,
    body: ManualEscalationRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    outcome = await engine.manual_escalation(
        complaint_id, body.target_authority_id, body.reason, body.admin_id
    )
    return EscalationResultResponse.from_domain(outcome)


@admin_router.put(
    "/complaints/{complaint_id}/status",
    response_model=StatusUpdateResponse,
    summary="Update complaint status",
    description="""
    Move a complaint to Under Review, Assigned to Authority, In Progress,
    Resolved or Escalated. Escalated requires `assigned_authority_id`, which
    becomes the escalation target.
    """
)
async def update_complaint_status(
    complaint_id: int,
    body: StatusUpdateRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    result = await engine.update_status(
        complaint_id,
        body.status,
        remarks=body.remarks,
        actor_id=body.admin_id,
        assigned_authority_id=body.assigned_authority_id,
    )
    if isinstance(result, EscalationOutcome):
        return StatusUpdateResponse.from_escalation(result)
    return StatusUpdateResponse.from_change(result)


@admin_router.post(
    "/escalations/sweep",
    response_model=SweepSummaryResponse,
    summary="Run an escalation sweep now"
)
async def run_sweep(engine: EscalationEngine = Depends(get_escalation_engine)):
    result = await engine.run_sweep()
    return SweepSummaryResponse.from_domain(result)


@admin_router.get(
    "/escalations/stats",
    response_model=EscalationStatsResponse,
    summary="Escalation statistics"
)
async def escalation_stats(engine: EscalationEngine = Depends(get_escalation_engine)):
    stats = await engine.get_escalation_stats()
    return EscalationStatsResponse.from_domain(stats)


@admin_router.get(
    "/reports/sla-compliance",
    response_model=SLAComplianceResponse,
    summary="SLA compliance per severity"
)
async def sla_compliance(
    window_days: int = Query(default=None, ge=1, le=365),
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    report = await engine.get_sla_compliance_report(window_days)
    return SLAComplianceResponse.from_domain(report)


# ========== Admin: rules ==========

@admin_router.get(
    "/escalation-rules",
    response_model=List[RuleResponse],
    summary="List active escalation rules"
)
async def list_rules(service: RuleService = Depends(get_rule_service)):
    return [RuleResponse.from_domain(rule) for rule in await service.list_rules()]


@admin_router.put(
    "/escalation-rules/{rule_id}",
    response_model=RuleResponse,
    summary="Update an escalation rule"
)
async def update_rule(
    rule_id: int,
    body: RuleUpdateRequest,
    service: RuleService = Depends(get_rule_service)
):
    rule = await service.update_rule(
        rule_id,
        body.time_limit_hours,
        escalation_authority_id=body.escalation_authority_id,
        is_active=body.is_active,
    )
    logger.info(
        "Escalation rule updated",
        extra={"rule_id": rule.id, "time_limit_hours": rule.time_limit_hours}
    )
    return RuleResponse.from_domain(rule)


# ========== Complaints ==========

@complaints_router.get(
    "/{complaint_id}/history",
    response_model=List[StatusHistoryResponse],
    summary="Status history of a complaint"
)
async def complaint_history(
    complaint_id: int,
    service: StatusWorkflowService = Depends(get_workflow_service)
):
    entries = await service.get_history(complaint_id)
    return [StatusHistoryResponse.from_domain(entry) for entry in entries]


# ========== Notifications ==========

@notifications_router.get(
    "",
    response_model=NotificationListResponse,
    summary="List a user's notifications"
)
async def list_notifications(
    user_id: int = Query(..., ge=1),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: NotificationService = Depends(get_notification_service)
):
    items, total = await service.list_for_user(user_id, unread_only, limit, offset)
    return NotificationListResponse(
        notifications=[NotificationResponse.from_domain(n) for n in items],
        total_count=total,
        limit=limit,
        offset=offset,
    )


@notifications_router.put(
    "/read-all",
    response_model=MarkReadResponse,
    summary="Mark all notifications read"
)
async def mark_all_read(
    user_id: int = Query(..., ge=1),
    service: NotificationService = Depends(get_notification_service)
):
    return MarkReadResponse(updated=await service.mark_all_read(user_id))


@notifications_router.put(
    "/{notification_id}/read",
    response_model=MarkReadResponse,
    summary="Mark one notification read"
)
async def mark_read(
    notification_id: int,
    user_id: int = Query(..., ge=1),
    service: NotificationService = Depends(get_notification_service)
):
    await service.mark_read(notification_id, user_id)
    return MarkReadResponse(updated=1)
