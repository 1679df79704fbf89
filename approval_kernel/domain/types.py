"""
approval_kernel.domain.types -- Pure frozen dataclasses for approval records.

ZERO I/O.

Follows the DTO pattern used across the codebase: frozen dataclasses with
enum status fields and tuples for immutable collections.  The ORM model in
``approval_kernel.models.approval`` converts to and from these types.

Invariants enforced:
    - Lifecycle edges are closed: only ``ALLOWED_TRANSITIONS`` may be taken.
    - Amounts are unsigned 64-bit integers in base units of the token.
    - ``grants`` is a tuple fixed at creation time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

U64_MAX = 2**64 - 1


# =============================================================================
# Status enums
# =============================================================================


class LifecycleState(str, Enum):
    """Approval record lifecycle.  Monotonic; never regresses."""

    SUBMITTED = "submitted"  # Stored by ingestion, not yet checked
    VERIFIED = "verified"  # Every grant confirmed on-chain
    VERIFICATION_FAILED = "verification_failed"  # Claim defect (terminal)
    TRANSFERRED = "transferred"  # Sweep closed (terminal)
    TRANSFER_FAILED = "transfer_failed"  # Settlement failed (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    LifecycleState.VERIFICATION_FAILED,
    LifecycleState.TRANSFERRED,
    LifecycleState.TRANSFER_FAILED,
})

ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.SUBMITTED: frozenset({
        LifecycleState.VERIFIED,
        LifecycleState.VERIFICATION_FAILED,
    }),
    LifecycleState.VERIFIED: frozenset({
        LifecycleState.TRANSFERRED,
        LifecycleState.TRANSFER_FAILED,
    }),
    LifecycleState.VERIFICATION_FAILED: frozenset(),
    LifecycleState.TRANSFERRED: frozenset(),
    LifecycleState.TRANSFER_FAILED: frozenset(),
}


def is_allowed_transition(
    from_state: LifecycleState, to_state: LifecycleState,
) -> bool:
    """Return True if ``from_state -> to_state`` is a legal lifecycle edge."""
    return to_state in ALLOWED_TRANSITIONS[from_state]


class GrantTransferStatus(str, Enum):
    """Per-grant outcome of the transfer stage."""

    PLANNED = "planned"  # In a broadcast batch, awaiting confirmation
    SETTLED = "settled"  # Batch confirmed on-chain
    REJECTED = "rejected"  # Omitted before submission
    UNSETTLED = "unsettled"  # Batch failed; nothing moved


class CycleStage(str, Enum):
    VERIFY = "verify"
    TRANSFER = "transfer"


# =============================================================================
# Record DTOs
# =============================================================================


@dataclass(frozen=True)
class GrantLine:
    """One token-account-level claim within an approval record.

    ``claimed_amount`` is informational only; sizing always uses the
    ledger's live delegated allowance.
    """

    token_account: str
    mint: str
    claimed_amount: int
    decimals: int
    symbol: str | None = None


@dataclass(frozen=True)
class GrantVerification:
    token_account: str
    verified: bool
    delegated_amount: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class GrantTransfer:
    token_account: str
    mint: str | None
    status: GrantTransferStatus
    amount: int | None = None
    destination: str | None = None
    reason: str | None = None

    def with_status(
        self, status: GrantTransferStatus, reason: str | None = None,
    ) -> GrantTransfer:
        return GrantTransfer(
            token_account=self.token_account,
            mint=self.mint,
            status=status,
            amount=self.amount,
            destination=self.destination,
            reason=reason if reason is not None else self.reason,
        )


@dataclass(frozen=True)
class ApprovalRecord:
    """Immutable snapshot of one claimed delegation event.

    The settlement fields are set once a signed batch has been claimed for
    broadcast; ``settlement_signature`` then identifies the only transaction
    that may move this record's funds until it is confirmed, failed, or
    provably expired.
    """

    approval_id: UUID
    owner: str
    delegate: str
    network: str
    claim_signature: str
    grants: tuple[GrantLine, ...]
    state: LifecycleState
    verification_results: tuple[GrantVerification, ...] = ()
    transfer_results: tuple[GrantTransfer, ...] = ()
    failure_reason: str | None = None
    submitted_at: datetime | None = None
    verified_at: datetime | None = None
    transferred_at: datetime | None = None
    settlement_signature: str | None = None
    settlement_last_valid_height: int | None = None
    settlement_submitted_at: datetime | None = None

    @property
    def has_pending_settlement(self) -> bool:
        return (
            self.state == LifecycleState.VERIFIED
            and self.settlement_signature is not None
        )


# =============================================================================
# Cycle summary
# =============================================================================


@dataclass(frozen=True)
class StageCycleResult:
    """Immutable summary of one Verifier or Transfer Executor pass.

    ``deferred`` counts records left unchanged because of a transient ledger
    condition; ``skipped`` counts configuration skips; ``conflicts`` counts
    guarded updates lost to another worker.
    """

    stage: CycleStage
    examined: int = 0
    advanced: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    conflicts: int = 0
    errors: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    cycle_id: str | None = None
