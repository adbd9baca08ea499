"""
Grievance Service
=================

Citizen complaint tracking backend.

Modules:
- Escalation: SLA rules, the periodic escalation engine, manual escalation,
  status history, notifications and reporting
"""

__version__ = "1.0.0"
