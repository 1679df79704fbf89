"""
ORM model for approval record persistence.

Contract:
    ApprovalModel persists one claimed delegation event, its lifecycle
    state, per-grant outcomes, and the settlement claim.  ``to_dto()`` /
    ``from_dto()`` convert to and from ``ApprovalRecord``.

Architecture: approval_kernel/models. Imports from approval_kernel.db.base
    and approval_kernel.domain only.

Invariants enforced:
    - Amounts are persisted as decimal strings inside JSON so u64 values
      survive every JSON backend unchanged.
    - ``state`` is indexed; every stage selects by it and every transition
      is guarded by it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TimestampedBase
from approval_kernel.domain.types import (
    ApprovalRecord,
    GrantLine,
    GrantTransfer,
    GrantTransferStatus,
    GrantVerification,
    LifecycleState,
)


def _amount_out(value: int | None) -> str | None:
    return str(value) if value is not None else None


def _amount_in(value: Any) -> int | None:
    return int(value) if value is not None else None


def grant_to_json(grant: GrantLine) -> dict[str, Any]:
    return {
        "tokenAccount": grant.token_account,
        "mint": grant.mint,
        "amount": str(grant.claimed_amount),
        "decimals": grant.decimals,
        "symbol": grant.symbol,
    }


def grant_from_json(data: dict[str, Any]) -> GrantLine:
    return GrantLine(
        token_account=data["tokenAccount"],
        mint=data["mint"],
        claimed_amount=int(data["amount"]),
        decimals=int(data["decimals"]),
        symbol=data.get("symbol"),
    )


def verification_to_json(result: GrantVerification) -> dict[str, Any]:
    return {
        "tokenAccount": result.token_account,
        "verified": result.verified,
        "delegatedAmount": _amount_out(result.delegated_amount),
        "reason": result.reason,
    }


def verification_from_json(data: dict[str, Any]) -> GrantVerification:
    return GrantVerification(
        token_account=data["tokenAccount"],
        verified=bool(data["verified"]),
        delegated_amount=_amount_in(data.get("delegatedAmount")),
        reason=data.get("reason"),
    )


def transfer_to_json(result: GrantTransfer) -> dict[str, Any]:
    return {
        "tokenAccount": result.token_account,
        "mint": result.mint,
        "status": result.status.value,
        "amount": _amount_out(result.amount),
        "destination": result.destination,
        "reason": result.reason,
    }


def transfer_from_json(data: dict[str, Any]) -> GrantTransfer:
    return GrantTransfer(
        token_account=data["tokenAccount"],
        mint=data.get("mint"),
        status=GrantTransferStatus(data["status"]),
        amount=_amount_in(data.get("amount")),
        destination=data.get("destination"),
        reason=data.get("reason"),
    )


class ApprovalModel(TimestampedBase):
    """Persistent approval record (one per claimed delegation event)."""

    __tablename__ = "delegation_approvals"

    __table_args__ = (
        Index("ix_delegation_approvals_state", "state"),
        Index("ix_delegation_approvals_network_state", "network", "state"),
        Index("ix_delegation_approvals_owner", "owner"),
    )

    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    delegate: Mapped[str] = mapped_column(String(64), nullable=False)
    network: Mapped[str] = mapped_column(String(64), nullable=False)
    claim_signature: Mapped[str] = mapped_column(String(128), nullable=False)
    grants: Mapped[list] = mapped_column(JSON, nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    verification_results: Mapped[list | None] = mapped_column(JSON, nullable=True)
    transfer_results: Mapped[list | None] = mapped_column(JSON, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    transferred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    settlement_signature: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True,
    )
    settlement_last_valid_height: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True,
    )
    settlement_submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_dto(self) -> ApprovalRecord:
        return ApprovalRecord(
            approval_id=self.id,
            owner=self.owner,
            delegate=self.delegate,
            network=self.network,
            claim_signature=self.claim_signature,
            grants=tuple(grant_from_json(g) for g in self.grants or ()),
            state=LifecycleState(self.state),
            verification_results=tuple(
                verification_from_json(v)
                for v in self.verification_results or ()
            ),
            transfer_results=tuple(
                transfer_from_json(t) for t in self.transfer_results or ()
            ),
            failure_reason=self.failure_reason,
            submitted_at=self.submitted_at,
            verified_at=self.verified_at,
            transferred_at=self.transferred_at,
            settlement_signature=self.settlement_signature,
            settlement_last_valid_height=self.settlement_last_valid_height,
            settlement_submitted_at=self.settlement_submitted_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRecord) -> ApprovalModel:
        return cls(
            id=dto.approval_id,
            owner=dto.owner,
            delegate=dto.delegate,
            network=dto.network,
            claim_signature=dto.claim_signature,
            grants=[grant_to_json(g) for g in dto.grants],
            state=dto.state.value,
            verification_results=(
                [verification_to_json(v) for v in dto.verification_results]
                or None
            ),
            transfer_results=(
                [transfer_to_json(t) for t in dto.transfer_results] or None
            ),
            failure_reason=dto.failure_reason,
            submitted_at=dto.submitted_at,
            verified_at=dto.verified_at,
            transferred_at=dto.transferred_at,
            settlement_signature=dto.settlement_signature,
            settlement_last_valid_height=dto.settlement_last_valid_height,
            settlement_submitted_at=dto.settlement_submitted_at,
        )
