"""
Escalation Infrastructure Repositories
======================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Repositories only flush; committing belongs
to the unit of work that owns the session.
"""

from typing import List, Optional, Sequence, Tuple
from datetime import datetime

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.config import ComplaintStatus, ESCALATABLE_STATUSES
from grievance.core import RepositoryException, ResourceNotFoundException
from grievance.escalation.application import (
    IAuthorityRepository, IComplaintRepository, IEscalationLogRepository,
    INotificationRepository, IRuleStore, IStatusHistoryRepository,
)
from grievance.escalation.domain import (
    Authority, Complaint, EscalationLogEntry, EscalationRule, Notification,
    StatusHistoryEntry, as_utc,
)
from grievance.escalation.infrastructure.models import (
    AuthorityModel, CategoryModel, ComplaintModel, EscalationModel,
    EscalationRuleModel, NotificationModel, StatusHistoryModel, UserModel,
)


def _complaint_with_context() -> Select:
    return (
        select(
            ComplaintModel,
            CategoryModel.name,
            UserModel.name,
            UserModel.email,
            AuthorityModel.name,
        )
        .join(CategoryModel, ComplaintModel.category_id == CategoryModel.id)
        .join(UserModel, ComplaintModel.user_id == UserModel.id)
        .outerjoin(AuthorityModel, ComplaintModel.assigned_authority_id == AuthorityModel.id)
    )


def _to_complaint(row) -> Complaint:
    model, category_name, user_name, user_email, authority_name = row
    return Complaint(
        id=model.id,
        ucn=model.ucn,
        user_id=model.user_id,
        category_id=model.category_id,
        severity=model.severity,
        status=model.status,
        created_at=as_utc(model.created_at),
        updated_at=as_utc(model.updated_at),
        title=model.title,
        assigned_authority_id=model.assigned_authority_id,
        latitude=model.latitude,
        longitude=model.longitude,
        category_name=category_name,
        user_name=user_name,
        user_email=user_email,
        current_authority_name=authority_name,
    )


def _to_authority(model: AuthorityModel) -> Authority:
    return Authority(
        id=model.id,
        name=model.name,
        department=model.department,
        email=model.email,
        is_active=model.is_active,
    )


class SQLAlchemyComplaintRepository(IComplaintRepository):
    """
    SQLAlchemy implementation of complaint repository.

    Reads complaints together with their category, owner and authority.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_eligible(self, created_before: datetime) -> List[Complaint]:
        """Open, non-escalated complaints older than the cutoff, oldest first."""
        stmt = (
            _complaint_with_context()
            .where(ComplaintModel.status.in_(ESCALATABLE_STATUSES))
            .where(ComplaintModel.created_at < as_utc(created_before))
            .order_by(ComplaintModel.created_at.asc(), ComplaintModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_complaint(row) for row in result.all()]

    async def get_by_id(
        self,
        complaint_id: int,
        for_update: bool = False
    ) -> Optional[Complaint]:
        stmt = (
            _complaint_with_context()
            .where(ComplaintModel.id == complaint_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            # Lock only the complaint row; outer-joined tables cannot be locked
            stmt = stmt.with_for_update(of=ComplaintModel)

        result = await self._session.execute(stmt)
        row = result.one_or_none()
        return _to_complaint(row) if row is not None else None

    async def mark_escalated(
        self,
        complaint_id: int,
        authority_id: int,
        updated_at: datetime
    ) -> None:
        await self._update(
            complaint_id,
            status=ComplaintStatus.ESCALATED,
            assigned_authority_id=authority_id,
            updated_at=as_utc(updated_at),
        )

    async def update_status(
        self,
        complaint_id: int,
        status: str,
        updated_at: datetime,
        assigned_authority_id: Optional[int] = None
    ) -> None:
        values = {"status": status, "updated_at": as_utc(updated_at)}
        if assigned_authority_id is not None:
            values["assigned_authority_id"] = assigned_authority_id
        await self._update(complaint_id, **values)

    async def list_created_since(
        self,
        since: datetime
    ) -> List[Tuple[str, str, datetime, datetime]]:
        stmt = (
            select(
                ComplaintModel.severity,
                ComplaintModel.status,
                ComplaintModel.created_at,
                ComplaintModel.updated_at,
            )
            .where(ComplaintModel.created_at >= as_utc(since))
        )
        result = await self._session.execute(stmt)
        return [
            (severity, status, as_utc(created_at), as_utc(updated_at))
            for severity, status, created_at, updated_at in result.all()
        ]

    async def _update(self, complaint_id: int, **values) -> None:
        stmt = (
            update(ComplaintModel)
            .where(ComplaintModel.id == complaint_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to update complaint {complaint_id}",
                {"error": str(e)}
            ) from e

        if result.rowcount == 0:
            raise ResourceNotFoundException("Complaint", complaint_id)


class SQLAlchemyAuthorityRepository(IAuthorityRepository):
    """SQLAlchemy implementation of authority lookup."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, authority_id: int) -> Optional[Authority]:
        model = await self._session.get(AuthorityModel, authority_id)
        return _to_authority(model) if model is not None else None

    async def list_active_excluding(self, authority_id: Optional[int]) -> List[Authority]:
        stmt = select(AuthorityModel).where(AuthorityModel.is_active.is_(True))
        if authority_id is not None:
            stmt = stmt.where(AuthorityModel.id != authority_id)
        stmt = stmt.order_by(AuthorityModel.id.asc())

        result = await self._session.execute(stmt)
        return [_to_authority(model) for model in result.scalars().all()]


class SQLAlchemyStatusHistoryRepository(IStatusHistoryRepository):
    """SQLAlchemy implementation of the status history."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        model = StatusHistoryModel(
            complaint_id=entry.complaint_id,
            old_status=entry.old_status,
            new_status=entry.new_status,
            remarks=entry.remarks,
            created_by=entry.created_by,
            created_at=as_utc(entry.created_at),
        )
        try:
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to record status history for complaint {entry.complaint_id}",
                {"error": str(e)}
            ) from e

        entry.id = model.id
        return entry

    async def list_for_complaint(self, complaint_id: int) -> List[StatusHistoryEntry]:
        stmt = (
            select(StatusHistoryModel)
            .where(StatusHistoryModel.complaint_id == complaint_id)
            .order_by(StatusHistoryModel.created_at.desc(), StatusHistoryModel.id.desc())
        )
        result = await self._session.execute(stmt)
        return [
            StatusHistoryEntry(
                id=model.id,
                complaint_id=model.complaint_id,
                old_status=model.old_status,
                new_status=model.new_status,
                remarks=model.remarks,
                created_by=model.created_by,
                created_at=as_utc(model.created_at),
            )
            for model in result.scalars().all()
        ]


class SQLAlchemyEscalationLogRepository(IEscalationLogRepository):
    """SQLAlchemy implementation of the escalation log and its aggregates."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, entry: EscalationLogEntry) -> EscalationLogEntry:
        model = EscalationModel(
            complaint_id=entry.complaint_id,
            from_authority_id=entry.from_authority_id,
            to_authority_id=entry.to_authority_id,
            reason=entry.reason,
            escalated_at=as_utc(entry.escalated_at),
        )
        try:
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to record escalation for complaint {entry.complaint_id}",
                {"error": str(e)}
            ) from e

        entry.id = model.id
        return entry

    async def count_since(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count(EscalationModel.id))
        if since is not None:
            stmt = stmt.where(EscalationModel.escalated_at >= as_utc(since))
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def counts_by_severity(self) -> List[dict]:
        count = func.count(EscalationModel.id)
        stmt = (
            select(ComplaintModel.severity, count)
            .select_from(EscalationModel)
            .join(ComplaintModel, EscalationModel.complaint_id == ComplaintModel.id)
            .group_by(ComplaintModel.severity)
            .order_by(ComplaintModel.severity)
        )
        result = await self._session.execute(stmt)
        return [
            {"severity": severity, "escalation_count": total}
            for severity, total in result.all()
        ]

    async def counts_by_category(self, limit: int = 10) -> List[dict]:
        count = func.count(EscalationModel.id).label("escalation_count")
        stmt = (
            select(CategoryModel.name, count)
            .select_from(EscalationModel)
            .join(ComplaintModel, EscalationModel.complaint_id == ComplaintModel.id)
            .join(CategoryModel, ComplaintModel.category_id == CategoryModel.id)
            .group_by(CategoryModel.name)
            .order_by(count.desc(), CategoryModel.name.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            {"category": name, "escalation_count": total}
            for name, total in result.all()
        ]


class SQLAlchemyNotificationRepository(INotificationRepository):
    """SQLAlchemy implementation of in-app notifications."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        model = NotificationModel(
            user_id=notification.user_id,
            complaint_id=notification.complaint_id,
            title=notification.title,
            message=notification.message,
            type=notification.type,
            is_read=notification.is_read,
            created_at=as_utc(notification.created_at),
        )
        try:
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to create notification for user {notification.user_id}",
                {"error": str(e)}
            ) from e

        notification.id = model.id
        return notification

    async def list_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0
    ) -> List[Notification]:
        stmt = (
            select(NotificationModel, ComplaintModel.ucn)
            .outerjoin(ComplaintModel, NotificationModel.complaint_id == ComplaintModel.id)
            .where(NotificationModel.user_id == user_id)
        )
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        stmt = (
            stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
            .limit(limit)
            .offset(offset)
        )

        result = await self._session.execute(stmt)
        return [
            Notification(
                id=model.id,
                user_id=model.user_id,
                complaint_id=model.complaint_id,
                title=model.title,
                message=model.message,
                type=model.type,
                is_read=model.is_read,
                created_at=as_utc(model.created_at),
                complaint_ucn=ucn,
            )
            for model, ucn in result.all()
        ]

    async def count_for_user(self, user_id: int, unread_only: bool = False) -> int:
        stmt = select(func.count(NotificationModel.id)).where(NotificationModel.user_id == user_id)
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def mark_read(self, notification_id: int, user_id: int) -> bool:
        stmt = (
            update(NotificationModel)
            .where(NotificationModel.id == notification_id)
            .where(NotificationModel.user_id == user_id)
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def mark_all_read(self, user_id: int) -> int:
        stmt = (
            update(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .where(NotificationModel.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def purge_older_than(self, cutoff: datetime) -> int:
        stmt = (
            delete(NotificationModel)
            .where(NotificationModel.created_at < as_utc(cutoff))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount


class SQLAlchemyRuleStore(IRuleStore):
    """
    SQLAlchemy implementation of the escalation rule store.

    Rules are read fresh on every call so admin edits apply to the
    next sweep.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_rule(model: EscalationRuleModel, authority_name: Optional[str]) -> EscalationRule:
        return EscalationRule(
            id=model.id,
            severity=model.severity,
            time_limit_hours=model.time_limit_hours,
            escalation_authority_id=model.escalation_authority_id,
            is_active=model.is_active,
            authority_name=authority_name,
        )

    def _select(self) -> Select:
        return (
            select(EscalationRuleModel, AuthorityModel.name)
            .outerjoin(AuthorityModel, EscalationRuleModel.escalation_authority_id == AuthorityModel.id)
        )

    async def list_active_rules(self) -> List[EscalationRule]:
        stmt = (
            self._select()
            .where(EscalationRuleModel.is_active.is_(True))
            .order_by(EscalationRuleModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_rule(model, name) for model, name in result.all()]

    async def get_rule(self, rule_id: int) -> Optional[EscalationRule]:
        result = await self._session.execute(
            self._select().where(EscalationRuleModel.id == rule_id)
        )
        row = result.one_or_none()
        return self._to_rule(*row) if row is not None else None

    async def save_rule(self, rule: EscalationRule) -> EscalationRule:
        model = await self._session.get(EscalationRuleModel, rule.id)
        if model is None:
            raise ResourceNotFoundException("Escalation rule", rule.id)

        model.time_limit_hours = rule.time_limit_hours
        model.escalation_authority_id = rule.escalation_authority_id
        model.is_active = rule.is_active
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to update escalation rule {rule.id}",
                {"error": str(e)}
            ) from e

        return rule

    async def add_rules(self, rules: Sequence[EscalationRule]) -> List[EscalationRule]:
        models = [
            EscalationRuleModel(
                severity=rule.severity,
                time_limit_hours=rule.time_limit_hours,
                escalation_authority_id=rule.escalation_authority_id,
                is_active=rule.is_active,
            )
            for rule in rules
        ]
        try:
            self._session.add_all(models)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to insert escalation rules", {"error": str(e)}) from e

        for rule, model in zip(rules, models):
            rule.id = model.id
        return list(rules)

    async def count_rules(self) -> int:
        result = await self._session.execute(select(func.count(EscalationRuleModel.id)))
        return result.scalar_one()
