"""
Escalation Interfaces Layer
===========================

Interface adapters (controllers) for the escalation module.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to the engine and application services.
"""

from grievance.escalation.interfaces.controllers import (
    admin_router,
    complaints_router,
    notifications_router,
)

__all__ = ["admin_router", "complaints_router", "notifications_router"]
