"""
ApprovalStore -- durable approval records with state-guarded transitions.

Contract:
    Persists ApprovalRecords and moves them along the lifecycle with
    compare-and-swap updates: a transition only lands if the row is still in
    the state the caller observed.  A lost race returns ``False`` and is a
    harmless no-op for the caller.

Architecture: approval_kernel/services.  Imports from approval_kernel.db,
    approval_kernel.models, and approval_kernel.domain.

Invariants enforced:
    - Lifecycle edges outside ALLOWED_TRANSITIONS raise InvalidTransitionError.
    - Every stage entry/exit goes through a guarded UPDATE; this is the only
      concurrency-safety mechanism between overlapping cycles or drivers.
    - The settlement claim is written before a batch is broadcast and can
      only be taken once per record.
    - ``grants`` is written on insert and never updated.
    - Records are never deleted.

Each public method runs in its own short transaction so a claim is durable
before the caller goes back out to the ledger.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError

from approval_kernel.db.engine import SessionFactory, session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.types import (
    U64_MAX,
    ApprovalRecord,
    GrantLine,
    GrantTransfer,
    GrantVerification,
    LifecycleState,
    is_allowed_transition,
)
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    InvalidClaimError,
    InvalidTransitionError,
    StoreUnavailableError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import (
    ApprovalModel,
    grant_from_json,
    grant_to_json,
    transfer_to_json,
    verification_to_json,
)

logger = get_logger("services.approval_store")


class _AnySettlement:
    """Sentinel: do not constrain ``settlement_signature`` in a guard."""

    def __repr__(self) -> str:
        return "ANY_SETTLEMENT"


ANY_SETTLEMENT: Any = _AnySettlement()


def _coerce_grant(raw: GrantLine | Mapping[str, Any]) -> GrantLine:
    if isinstance(raw, GrantLine):
        return raw
    try:
        return grant_from_json(dict(raw))
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidClaimError(f"Malformed grant line: {exc}") from exc


def _validate_grant(grant: GrantLine) -> None:
    if not grant.token_account or not grant.mint:
        raise InvalidClaimError("Grant lines require tokenAccount and mint")
    if not 0 <= grant.claimed_amount <= U64_MAX:
        raise InvalidClaimError(
            f"Claimed amount out of range for {grant.token_account}"
        )
    if not 0 <= grant.decimals <= 255:
        raise InvalidClaimError(
            f"Decimals out of range for {grant.token_account}"
        )


class ApprovalStore:
    """Approval record persistence with compare-and-swap transitions.

    Contract:
        - ``submit_claim()`` validates and inserts a SUBMITTED record.
        - ``get()`` / ``list_in_state()`` for queries.
        - ``transition()`` moves a record along one lifecycle edge iff it is
          still in ``expected``.
        - ``claim_settlement()`` / ``release_settlement()`` guard the
          broadcast of a signed batch.
        - ``ping()`` checks reachability.

    Non-goals:
        - Does NOT deduplicate claims -- ingestion's responsibility.
        - Does NOT delete records.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def submit_claim(
        self,
        owner: str,
        delegate: str,
        network: str,
        claim_signature: str,
        grants: Sequence[GrantLine | Mapping[str, Any]],
    ) -> ApprovalRecord:
        """Store a new approval claim in SUBMITTED.

        Raises:
            InvalidClaimError: If a required field is missing or ``grants``
                is empty or malformed.
        """
        if not owner or not delegate or not network or not claim_signature:
            raise InvalidClaimError("Missing required fields")
        if not grants:
            raise InvalidClaimError("No approvals provided")

        grant_lines = tuple(_coerce_grant(g) for g in grants)
        for grant in grant_lines:
            _validate_grant(grant)

        dto = ApprovalRecord(
            approval_id=uuid4(),
            owner=owner,
            delegate=delegate,
            network=network,
            claim_signature=claim_signature,
            grants=grant_lines,
            state=LifecycleState.SUBMITTED,
            submitted_at=self._clock.now(),
        )

        with session_scope(self._session_factory) as session:
            session.add(ApprovalModel.from_dto(dto))

        logger.info(
            "approval_submitted",
            extra={
                "approval_id": str(dto.approval_id),
                "owner": owner,
                "network": network,
                "grant_count": len(grant_lines),
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, approval_id: UUID) -> ApprovalRecord:
        """Get an approval record by ID.

        Raises:
            ApprovalNotFoundError: If approval_id does not exist.
        """
        with session_scope(self._session_factory) as session:
            model = session.get(ApprovalModel, approval_id)
            if model is None:
                raise ApprovalNotFoundError(str(approval_id))
            return model.to_dto()

    def list_in_state(
        self,
        state: LifecycleState,
        limit: int | None = None,
    ) -> tuple[ApprovalRecord, ...]:
        """Records currently in ``state``, oldest submission first."""
        stmt = (
            select(ApprovalModel)
            .where(ApprovalModel.state == state.value)
            .order_by(ApprovalModel.submitted_at, ApprovalModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with session_scope(self._session_factory) as session:
            models = session.execute(stmt).scalars().all()
            return tuple(m.to_dto() for m in models)

    def ping(self) -> None:
        """Raise StoreUnavailableError if the database cannot be reached."""
        try:
            with session_scope(self._session_factory) as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    # -------------------------------------------------------------------------
    # Guarded transitions
    # -------------------------------------------------------------------------

    def transition(
        self,
        approval_id: UUID,
        expected: LifecycleState,
        target: LifecycleState,
        *,
        failure_reason: str | None = None,
        verification_results: Sequence[GrantVerification] | None = None,
        transfer_results: Sequence[GrantTransfer] | None = None,
        settlement_signature: str | None = None,
        expected_settlement: str | None = ANY_SETTLEMENT,
    ) -> bool:
        """Move a record from ``expected`` to ``target`` if nobody else has.

        ``expected_settlement`` additionally pins the settlement claim: pass
        ``None`` to require that no batch has been claimed, or a signature
        to require that exact claim.

        Returns:
            True if this call performed the transition, False if the record
            was no longer in ``expected`` (or the settlement guard failed).

        Raises:
            InvalidTransitionError: If ``expected -> target`` is not a legal
                lifecycle edge.
        """
        if not is_allowed_transition(expected, target):
            raise InvalidTransitionError(expected.value, target.value)

        now = self._clock.now()
        values: dict[str, Any] = {"state": target.value}

        if target in (
            LifecycleState.VERIFIED,
            LifecycleState.VERIFICATION_FAILED,
        ):
            values["verified_at"] = now
        else:
            values["transferred_at"] = now

        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        if verification_results is not None:
            values["verification_results"] = [
                verification_to_json(v) for v in verification_results
            ]
        if transfer_results is not None:
            values["transfer_results"] = [
                transfer_to_json(t) for t in transfer_results
            ]
        if settlement_signature is not None:
            values["settlement_signature"] = settlement_signature

        stmt = (
            update(ApprovalModel)
            .where(ApprovalModel.id == approval_id)
            .where(ApprovalModel.state == expected.value)
        )
        if expected_settlement is None:
            stmt = stmt.where(ApprovalModel.settlement_signature.is_(None))
        elif expected_settlement is not ANY_SETTLEMENT:
            stmt = stmt.where(
                ApprovalModel.settlement_signature == expected_settlement,
            )

        applied = self._execute_guarded(stmt.values(**values))

        if applied:
            logger.info(
                "transition_applied",
                extra={
                    "approval_id": str(approval_id),
                    "from_state": expected.value,
                    "to_state": target.value,
                },
            )
        else:
            logger.info(
                "transition_conflict",
                extra={
                    "approval_id": str(approval_id),
                    "from_state": expected.value,
                    "to_state": target.value,
                },
            )
        return applied

    def claim_settlement(
        self,
        approval_id: UUID,
        signature: str,
        last_valid_height: int,
        planned_results: Sequence[GrantTransfer],
    ) -> bool:
        """Record the signed batch about to be broadcast for this record.

        Guarded by ``state = VERIFIED AND settlement_signature IS NULL`` so
        at most one batch is ever in flight per record.
        """
        stmt = (
            update(ApprovalModel)
            .where(ApprovalModel.id == approval_id)
            .where(ApprovalModel.state == LifecycleState.VERIFIED.value)
            .where(ApprovalModel.settlement_signature.is_(None))
            .values(
                settlement_signature=signature,
                settlement_last_valid_height=last_valid_height,
                settlement_submitted_at=self._clock.now(),
                transfer_results=[transfer_to_json(t) for t in planned_results],
            )
        )
        applied = self._execute_guarded(stmt)
        logger.info(
            "settlement_claimed" if applied else "settlement_claim_conflict",
            extra={"approval_id": str(approval_id), "signature": signature},
        )
        return applied

    def release_settlement(self, approval_id: UUID, signature: str) -> bool:
        """Drop a settlement claim whose transaction can no longer land."""
        stmt = (
            update(ApprovalModel)
            .where(ApprovalModel.id == approval_id)
            .where(ApprovalModel.state == LifecycleState.VERIFIED.value)
            .where(ApprovalModel.settlement_signature == signature)
            .values(
                settlement_signature=None,
                settlement_last_valid_height=None,
                settlement_submitted_at=None,
                transfer_results=None,
            )
        )
        applied = self._execute_guarded(stmt)
        logger.info(
            "settlement_released" if applied else "settlement_release_conflict",
            extra={"approval_id": str(approval_id), "signature": signature},
        )
        return applied

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _execute_guarded(self, stmt) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                stmt.execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
