"""
Shared Kernel Module
====================

Generic infrastructure used by every bounded context: structured logging,
HTTP middleware and exception handlers.

DO NOT add escalation business logic to the shared kernel.
"""
