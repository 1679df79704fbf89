"""Kernel services - approval store."""

from approval_kernel.services.approval_store import ANY_SETTLEMENT, ApprovalStore

__all__ = [
    "ANY_SETTLEMENT",
    "ApprovalStore",
]
