"""
approval_kernel.models -- ORM models for approval persistence.

Architecture: approval_kernel/models. Imports from approval_kernel.db.base and
approval_kernel.domain only.
"""

from approval_kernel.models.approval import ApprovalModel

__all__ = [
    "ApprovalModel",
]
