"""Read-only selectors for the approval kernel."""

from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.selectors.base import BaseSelector

__all__ = ["ApprovalSelector", "BaseSelector"]
