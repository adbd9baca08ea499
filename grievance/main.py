"""
Grievance Service - Main Application
====================================

Citizen complaint tracking with SLA-based escalation.

Modules:
- Escalation: SLA rules, scheduled escalation sweeps, manual escalation,
  status history, notifications and compliance reporting

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and escalation policy
- Infrastructure: Database, email relay, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from grievance.config import settings
from grievance.core import ApplicationException

# Infrastructure
from grievance.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)

# Escalation Module
from grievance.escalation.application import RuleService
from grievance.escalation.infrastructure import (
    EmailNotificationClient,
    RuleSeedLoader,
    SQLAlchemyAuthorityRepository,
    SQLAlchemyRuleStore,
)
from grievance.escalation.interfaces import (
    admin_router, complaints_router, notifications_router
)
from grievance.escalation.services import EscalationEngine

# Logging and HTTP plumbing
from grievance.shared.infrastructure.logging import setup_logging, get_logger
from grievance.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

logger = get_logger(__name__)


async def seed_escalation_rules() -> int:
    """Insert default rules from the seed file when none exist."""
    config = RuleSeedLoader(settings.escalation_rules_path).load()
    async with get_session_context() as session:
        service = RuleService(SQLAlchemyRuleStore(session), SQLAlchemyAuthorityRepository(session))
        return await service.seed_defaults(config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Seed default escalation rules
    5. Start the escalation engine

    SHUTDOWN:
    1. Stop the escalation engine
    2. Close the email client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Grievance Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
        seeded = await seed_escalation_rules()
        if seeded:
            logger.info("Default escalation rules seeded", extra={"rules": seeded})
    except ApplicationException:
        raise
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    email_client = EmailNotificationClient()
    engine = EscalationEngine(get_session_context, notification_sink=email_client)
    app.state.escalation_engine = engine

    if settings.escalation_enabled:
        await engine.start()
    else:
        logger.info("Escalation engine disabled by configuration")

    logger.info("Grievance Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Grievance Service")

    await engine.stop()
    await email_client.close()
    await close_database()

    logger.info("Grievance Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Grievance Service API",
    description="""
    ## Citizen Complaint Escalation

    Tracks complaint SLAs and escalates overdue complaints to a higher authority.

    ---

    ### Escalation Administration

    - `POST /admin/complaints/{id}/escalate` - Escalate a complaint manually
    - `PUT /admin/complaints/{id}/status` - Change a complaint's status
    - `POST /admin/escalations/sweep` - Run an escalation sweep now
    - `GET /admin/escalations/stats` - Escalation statistics
    - `GET /admin/reports/sla-compliance` - SLA compliance per severity
    - `GET /admin/escalation-rules` - Active SLA rules
    - `PUT /admin/escalation-rules/{id}` - Change an SLA rule

    ### Complaints & Notifications

    - `GET /complaints/{id}/history` - Status history
    - `GET /notifications` - A user's notifications
    - `PUT /notifications/{id}/read` - Mark one read
    - `PUT /notifications/read-all` - Mark all read

    ---

    ### Default SLA Rules

    | Severity | Time limit |
    |----------|-----------|
    | High     | 72 hours  |
    | Medium   | 168 hours |
    | Low      | 360 hours |
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(admin_router)
app.include_router(complaints_router)
app.include_router(notifications_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "escalation_scheduler": "running",
                        "last_sweep": "2024-01-15T10:00:00+00:00"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    engine = getattr(request.app.state, "escalation_engine", None)
    last_sweep = engine.last_sweep if engine else None

    checks = {
        "escalation_scheduler": "running" if engine and engine.is_running else "stopped",
        "last_sweep": last_sweep.started_at.isoformat() if last_sweep else None,
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Grievance Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "escalation": {
                "prefixes": ["/admin", "/complaints", "/notifications"]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "grievance.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
