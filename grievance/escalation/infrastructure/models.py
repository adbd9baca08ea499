"""
Escalation Infrastructure Models
================================

SQLAlchemy ORM models for the escalation module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer,
    String, Text, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grievance.infrastructure.database import Base
from grievance.config import ComplaintStatus, NotificationType, Severity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    """
    Database model for complaint owners and administrators.

    Maps to the 'users' table.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="citizen")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CategoryModel(Base):
    """
    Database model for complaint categories.

    Maps to the 'categories' table.
    """
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class AuthorityModel(Base):
    """
    Database model for authorities complaints are assigned to.

    Maps to the 'authorities' table.
    """
    __tablename__ = "authorities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ComplaintModel(Base):
    """
    Database model for Complaint entity.

    Maps to the 'complaints' table.
    """
    __tablename__ = "complaints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Business identifier (unique complaint number)
    ucn: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), nullable=False)
    assigned_authority_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("authorities.id"), nullable=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=Severity.MEDIUM)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ComplaintStatus.SUBMITTED, index=True
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user: Mapped[UserModel] = relationship()
    category: Mapped[CategoryModel] = relationship()
    assigned_authority: Mapped[Optional[AuthorityModel]] = relationship()
    history: Mapped[List["StatusHistoryModel"]] = relationship(
        back_populates="complaint", cascade="all, delete-orphan", passive_deletes=True
    )
    escalations: Mapped[List["EscalationModel"]] = relationship(
        back_populates="complaint", cascade="all, delete-orphan", passive_deletes=True
    )


class StatusHistoryModel(Base):
    """
    Append-only status transitions.

    Maps to the 'complaint_status_history' table.
    """
    __tablename__ = "complaint_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    complaint_id: Mapped[int] = mapped_column(
        ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    old_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # NULL means the system made the change
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    complaint: Mapped[ComplaintModel] = relationship(back_populates="history")


class EscalationModel(Base):
    """
    Append-only escalation log.

    Maps to the 'escalations' table.
    """
    __tablename__ = "escalations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    complaint_id: Mapped[int] = mapped_column(
        ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_authority_id: Mapped[Optional[int]] = mapped_column(ForeignKey("authorities.id"), nullable=True)
    to_authority_id: Mapped[int] = mapped_column(ForeignKey("authorities.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    escalated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    complaint: Mapped[ComplaintModel] = relationship(back_populates="escalations")


class EscalationRuleModel(Base):
    """
    SLA rule per severity.

    Maps to the 'escalation_rules' table. At most one active rule
    per severity.
    """
    __tablename__ = "escalation_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    time_limit_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_authority_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("authorities.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    escalation_authority: Mapped[Optional[AuthorityModel]] = relationship()

    __table_args__ = (
        CheckConstraint("time_limit_hours > 0", name="ck_escalation_rules_time_limit_positive"),
        Index(
            "uq_escalation_rules_active_severity",
            "severity",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class NotificationModel(Base):
    """
    In-app notification polled by users.

    Maps to the 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    complaint_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("complaints.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default=NotificationType.STATUS_CHANGE)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    complaint: Mapped[Optional[ComplaintModel]] = relationship()
