"""
Approval Kernel

A multi-tenant approval workflow engine with:
- Configurable multi-step workflow definitions
- Condition-driven workflow selection and auto-approval
- Role, user, department and amount-based approver resolution
- Parallel steps gated on every required approver
- Time-based escalation driven by persisted deadlines
- Full auditability via hash chain
"""

__version__ = "0.1.0"
