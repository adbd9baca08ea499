"""
Core Exceptions
================

Error taxonomy for the grievance service.

Services raise these; the escalation sweep counts and logs them per
complaint, and the HTTP handlers in grievance.shared.api.middleware turn
them into status codes (404, 422, 409, 503, 500).
"""

from typing import Optional


class ApplicationException(Exception):
    """
    Root of every error the service raises on purpose.

    `details` carries structured context (complaint id, status, limits)
    that ends up in the log record and the JSON error body.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A complaint is in a state that forbids the request, e.g. already resolved."""


class RepositoryException(ApplicationException):
    """A write or read against the complaint store failed; the unit of work rolls back."""


class ValidationException(ApplicationException):
    """Bad input: unknown severity, non-positive time limit, over-long reason."""


class ResourceNotFoundException(ApplicationException):
    """A referenced complaint, authority, rule or notification does not exist."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[object] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        if resource_id is None:
            message = f"{resource_type} not found"
        else:
            message = f"{resource_type} {resource_id} does not exist"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Escalation cannot run as configured: no active rules, bad seed file, engine missing."""


class ExternalServiceException(ApplicationException):
    """A collaborator outside the database failed."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class EmailDeliveryException(ExternalServiceException):
    """The mail relay rejected or dropped a complaint notification email."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("mail relay", message, details)
