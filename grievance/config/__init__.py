"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="grievance-service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/grievances",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation Engine ==========
    escalation_enabled: bool = Field(
        default=True,
        description="Start the escalation engine on application startup"
    )
    escalation_interval_seconds: int = Field(
        default=3600,
        description="Seconds between escalation sweeps",
        ge=60
    )
    escalation_min_age_hours: int = Field(
        default=1,
        description="Complaints younger than this are never considered for escalation",
        ge=0
    )
    escalation_rules_path: Path = Field(
        default=Path("escalation_rules.yaml"),
        description="YAML file with default escalation rules, seeded when the rule table is empty"
    )
    report_window_days: int = Field(
        default=30,
        description="Trailing window for the SLA compliance report",
        ge=1
    )

    # ========== Notifications ==========
    notification_retention_days: int = Field(
        default=90,
        description="Notifications older than this are purged",
        ge=1
    )
    notification_cleanup_interval_seconds: int = Field(
        default=86400,
        description="Seconds between notification retention sweeps",
        ge=60
    )
    email_relay_url: Optional[str] = Field(
        default=None,
        description="HTTP mail relay endpoint; email delivery is disabled when unset"
    )
    email_sender: str = Field(
        default="no-reply@grievance.local",
        description="From address for outgoing email"
    )
    email_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for mail relay calls",
        ge=0.1,
        le=30
    )
    portal_url: str = Field(
        default="http://localhost:5500",
        description="Public portal link included in emails"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5500"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Severity(str):
    """Complaint severity levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ComplaintStatus(str):
    """Complaint lifecycle statuses."""
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "Under Review"
    ASSIGNED_TO_AUTHORITY = "Assigned to Authority"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    ESCALATED = "Escalated"


class NotificationType(str):
    """Kinds of user notifications."""
    SUBMISSION = "submission"
    STATUS_CHANGE = "status_change"
    ESCALATION = "escalation"
    RESOLUTION = "resolution"


# ========== Lists for validation ==========

VALID_SEVERITIES = [Severity.LOW, Severity.MEDIUM, Severity.HIGH]
# Statuses the escalation sweep may act on
ESCALATABLE_STATUSES = [
    ComplaintStatus.SUBMITTED, ComplaintStatus.UNDER_REVIEW,
    ComplaintStatus.ASSIGNED_TO_AUTHORITY, ComplaintStatus.IN_PROGRESS
]
TERMINAL_STATUSES = [ComplaintStatus.RESOLVED]
# Targets an administrator may set directly
ADMIN_SETTABLE_STATUSES = [
    ComplaintStatus.UNDER_REVIEW, ComplaintStatus.ASSIGNED_TO_AUTHORITY,
    ComplaintStatus.IN_PROGRESS, ComplaintStatus.RESOLVED,
    ComplaintStatus.ESCALATED
]

# Severity -> default SLA hours, used when seeding rules
DEFAULT_RULE_HOURS = {
    Severity.HIGH: 72,
    Severity.MEDIUM: 168,
    Severity.LOW: 360,
}
