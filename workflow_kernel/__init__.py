"""
Workflow Kernel - configurable approval workflows

A data-driven approval state machine for travel and expense requests:
- Templates of ordered, role-bound steps per module
- Runtime instances with an append-only step history
- Timeout escalation and delegation
- Full auditability via an append-only audit log
"""

__version__ = "0.1.0"
