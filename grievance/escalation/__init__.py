"""
Escalation Module
=================

Bounded context for complaint SLA tracking and escalation.

Responsibilities:
- Hold one active SLA rule per severity
- Periodically sweep open complaints and escalate those past their SLA
- Let administrators escalate or re-status a complaint on demand
- Record every transition in the status history and escalation log
- Notify complaint owners (in-app, plus best-effort email)
- Report escalation statistics and SLA compliance
"""
