"""
ApprovalVerifier -- checks SUBMITTED claims against live ledger state.

Contract:
    ``run_cycle()`` takes every SUBMITTED record (oldest first, bounded by
    ``batch_limit``) and moves it to VERIFIED or VERIFICATION_FAILED, or
    leaves it untouched.

Architecture: approval_batch/services.  Uses approval_kernel.services for
    persistence and approval_ledger for ledger reads.

Invariants enforced:
    - The claim is never trusted: the claim transaction and every grant's
      delegate and allowance are read from the ledger.
    - All-or-nothing: any failing grant fails the whole record.
    - Every write is a guarded transition from SUBMITTED; a lost race is a
      conflict, never an error.
    - Transient ledger errors leave the record exactly as it was.
    - A configuration problem (unknown network) skips, never fails.
"""

from __future__ import annotations

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.types import (
    ApprovalRecord,
    CycleStage,
    GrantLine,
    GrantVerification,
    LifecycleState,
    StageCycleResult,
)
from approval_kernel.exceptions import (
    ClaimInvalidError,
    ConfigurationError,
    LedgerError,
    TransientLedgerError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.approval_store import ApprovalStore
from approval_ledger.gateway import LedgerGateway
from approval_ledger.registry import GatewayRegistry
from approval_batch.services.cycle import CycleTally, RecordOutcome

logger = get_logger("batch.verifier")

REASON_CLAIM_NOT_FOUND = "Claim transaction not found"
REASON_DELEGATE_NOT_SET = "Delegate not set"
REASON_NO_ALLOWANCE = "No allowance set"


class _Deferred(Exception):
    """Internal: a transient ledger condition hit while checking a record."""


def check_grant(
    gateway: LedgerGateway,
    grant: GrantLine,
    expected_delegate: str,
) -> GrantVerification:
    """Verify one grant against the token account's live state.

    Raises:
        TransientLedgerError: Propagated so the caller can defer the record.
    """
    try:
        state = gateway.get_token_account_state(grant.token_account)
    except TransientLedgerError:
        raise
    except LedgerError as exc:
        return GrantVerification(grant.token_account, False, reason=str(exc))

    if not state.delegate:
        return GrantVerification(
            grant.token_account, False, reason=REASON_DELEGATE_NOT_SET,
        )
    if state.delegate != expected_delegate:
        return GrantVerification(
            grant.token_account,
            False,
            reason=(
                f"Delegate mismatch: expected {expected_delegate}, "
                f"found {state.delegate}"
            ),
        )
    if state.delegated_amount <= 0:
        return GrantVerification(
            grant.token_account, False, reason=REASON_NO_ALLOWANCE,
        )
    return GrantVerification(
        grant.token_account, True, delegated_amount=state.delegated_amount,
    )


def failure_summary(results: tuple[GrantVerification, ...]) -> str:
    return "; ".join(
        f"{r.token_account}: {r.reason}" for r in results if not r.verified
    )


class ApprovalVerifier:
    """Verification stage of the reconciliation loop.

    Non-goals:
        - Does NOT move funds.
        - Does NOT retry within a cycle; deferred records are picked up on
          the next cycle.
    """

    def __init__(
        self,
        store: ApprovalStore,
        gateways: GatewayRegistry,
        clock: Clock | None = None,
        batch_limit: int | None = 100,
    ):
        self._store = store
        self._gateways = gateways
        self._clock = clock or SystemClock()
        self._batch_limit = batch_limit

    def run_cycle(self) -> StageCycleResult:
        """One pass over SUBMITTED records."""
        tally = CycleTally(CycleStage.VERIFY, self._clock)

        with LogContext.bind(cycle_id=tally.cycle_id, stage=tally.stage.value):
            records = self._store.list_in_state(
                LifecycleState.SUBMITTED, limit=self._batch_limit,
            )
            logger.info("verification_cycle_started", extra={"pending": len(records)})

            for record in records:
                with LogContext.bind(
                    approval_id=str(record.approval_id),
                    network=record.network,
                ):
                    tally.record(self._process(record))

            return tally.finish()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _process(self, record: ApprovalRecord) -> RecordOutcome:
        try:
            return self._verify(record)
        except _Deferred:
            return RecordOutcome.DEFERRED
        except Exception:
            logger.exception("verification_record_error")
            return RecordOutcome.ERROR

    def _verify(self, record: ApprovalRecord) -> RecordOutcome:
        try:
            network = self._gateways.network(record.network)
            gateway = self._gateways.gateway(record.network)
        except ConfigurationError as exc:
            logger.warning(
                "verification_skipped",
                extra={"reason": str(exc), "error_code": exc.code},
            )
            return RecordOutcome.SKIPPED

        expected_delegate = network.delegate_address or record.delegate

        try:
            self._check_claim_transaction(gateway, record)
        except ClaimInvalidError as exc:
            return self._fail(record, exc.reason, ())

        results = []
        for grant in record.grants:
            try:
                results.append(check_grant(gateway, grant, expected_delegate))
            except TransientLedgerError as exc:
                logger.warning(
                    "verification_deferred",
                    extra={"token_account": grant.token_account, "detail": str(exc)},
                )
                raise _Deferred() from exc
            except Exception as exc:
                logger.exception(
                    "grant_check_error",
                    extra={"token_account": grant.token_account},
                )
                results.append(GrantVerification(
                    grant.token_account, False, reason=f"Check error: {exc}",
                ))

        verified = tuple(results)
        if all(r.verified for r in verified):
            return self._pass(record, verified)
        return self._fail(record, failure_summary(verified), verified)

    def _check_claim_transaction(
        self,
        gateway: LedgerGateway,
        record: ApprovalRecord,
    ) -> None:
        """
        Raises:
            ClaimInvalidError: If the claim transaction is missing, failed,
                or refused by the ledger.
            _Deferred: On a transient ledger error.
        """
        try:
            tx = gateway.get_transaction(record.claim_signature)
        except TransientLedgerError as exc:
            logger.warning(
                "verification_deferred",
                extra={"claim_signature": record.claim_signature, "detail": str(exc)},
            )
            raise _Deferred() from exc
        except LedgerError as exc:
            raise ClaimInvalidError(f"Claim transaction rejected: {exc}") from exc

        if tx is None:
            raise ClaimInvalidError(REASON_CLAIM_NOT_FOUND)
        if not tx.succeeded:
            raise ClaimInvalidError(f"Claim transaction failed: {tx.error_detail}")

    def _pass(
        self,
        record: ApprovalRecord,
        results: tuple[GrantVerification, ...],
    ) -> RecordOutcome:
        applied = self._store.transition(
            record.approval_id,
            LifecycleState.SUBMITTED,
            LifecycleState.VERIFIED,
            verification_results=results,
        )
        if not applied:
            logger.info("verification_conflict")
            return RecordOutcome.CONFLICT
        logger.info("verification_passed", extra={"grant_count": len(results)})
        return RecordOutcome.ADVANCED

    def _fail(
        self,
        record: ApprovalRecord,
        reason: str,
        results: tuple[GrantVerification, ...],
    ) -> RecordOutcome:
        applied = self._store.transition(
            record.approval_id,
            LifecycleState.SUBMITTED,
            LifecycleState.VERIFICATION_FAILED,
            failure_reason=reason,
            verification_results=results,
        )
        if not applied:
            logger.info("verification_conflict")
            return RecordOutcome.CONFLICT
        logger.warning("verification_failed", extra={"reason": reason})
        return RecordOutcome.FAILED
