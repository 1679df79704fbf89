"""
approval_kernel.domain -- Pure types and value objects for approval records.

ZERO I/O.  All record types are frozen dataclasses.
"""

from approval_kernel.domain.types import (
    ALLOWED_TRANSITIONS,
    ApprovalRecord,
    CycleStage,
    GrantLine,
    GrantTransfer,
    GrantTransferStatus,
    GrantVerification,
    LifecycleState,
    StageCycleResult,
    is_allowed_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ApprovalRecord",
    "CycleStage",
    "GrantLine",
    "GrantTransfer",
    "GrantTransferStatus",
    "GrantVerification",
    "LifecycleState",
    "StageCycleResult",
    "is_allowed_transition",
]
