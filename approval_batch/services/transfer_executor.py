"""
TransferExecutor -- sweeps delegated funds for VERIFIED records.

Contract:
    ``run_cycle()`` takes every VERIFIED record and either closes it
    (TRANSFERRED / TRANSFER_FAILED) or leaves it for the next cycle.

Architecture: approval_batch/services.  Uses approval_kernel.services for
    persistence and approval_ledger for ledger reads and writes.

Invariants enforced:
    - Amounts come from live state at transfer time:
      ``min(delegated_amount, balance)``; the claimed amount is ignored.
    - One signed batch per record (one owner), all-or-nothing on-chain.
    - The settlement claim is persisted before broadcast; a record holding
      a claim is reconciled, never re-sent.
    - A grant is only marked ``settled`` after its batch confirmed.
    - TRANSFER_FAILED is terminal; nothing is retried automatically.
    - Timeouts and ambiguous send errors leave the record VERIFIED.
    - An error planning one grant rejects that grant only.
    - A claimed batch is never closed on a ledger read error.
"""

from __future__ import annotations

from dataclasses import dataclass

from approval_config.schema import NetworkConfig
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.types import (
    ApprovalRecord,
    CycleStage,
    GrantLine,
    GrantTransfer,
    GrantTransferStatus,
    LifecycleState,
    StageCycleResult,
)
from approval_kernel.exceptions import (
    ConfigurationError,
    DelegateMismatchError,
    LedgerError,
    LedgerRejectedError,
    TransferExecutionError,
    TransientLedgerError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.approval_store import ApprovalStore
from approval_ledger.gateway import (
    Confirmation,
    ConfirmationStatus,
    LedgerGateway,
    SignedBatch,
    Signer,
    TransferInstruction,
)
from approval_ledger.registry import GatewayRegistry
from approval_batch.services.cycle import CycleTally, RecordOutcome

logger = get_logger("batch.transfer_executor")

REASON_NOTHING_TO_TRANSFER = "No valid transfers to execute"


class _Deferred(Exception):
    """Internal: leave the record unchanged until the next cycle."""


@dataclass(frozen=True)
class GrantPlan:
    """Outcome of planning one grant: a result line and, if any, an instruction."""

    result: GrantTransfer
    instruction: TransferInstruction | None = None


def transfer_amount(delegated_amount: int, balance: int) -> int:
    """Base units that may move: the live allowance, capped by the balance."""
    return max(0, min(delegated_amount, balance))


def _rejected_plan(grant: GrantLine, reason: str, mint: str | None) -> GrantPlan:
    return GrantPlan(GrantTransfer(
        grant.token_account, mint, GrantTransferStatus.REJECTED, reason=reason,
    ))


def plan_grant(
    gateway: LedgerGateway,
    grant: GrantLine,
    signer_address: str,
    destination_owner: str,
) -> GrantPlan:
    """Re-check one grant and size its transfer from live state.

    Raises:
        TransientLedgerError: Propagated so the caller can defer the record.
    """

    def rejected(reason: str, mint: str | None = grant.mint) -> GrantPlan:
        return _rejected_plan(grant, reason, mint)

    try:
        state = gateway.get_token_account_state(grant.token_account)
    except TransientLedgerError:
        raise
    except LedgerError as exc:
        return rejected(str(exc))

    if not state.delegate:
        return rejected("Delegate not set", state.mint)
    if state.delegate != signer_address:
        return rejected(
            f"Delegate changed: expected {signer_address}, found {state.delegate}",
            state.mint,
        )
    if state.delegated_amount <= 0:
        return rejected("No allowance set", state.mint)
    if state.balance <= 0:
        return rejected("No balance", state.mint)

    amount = transfer_amount(state.delegated_amount, state.balance)

    try:
        receiving = gateway.find_receiving_account(destination_owner, state.mint)
    except TransientLedgerError:
        raise
    except LedgerError as exc:
        return rejected(str(exc), state.mint)

    if receiving is None:
        return rejected(
            f"Destination has no token account for mint {state.mint}", state.mint,
        )

    return GrantPlan(
        result=GrantTransfer(
            token_account=grant.token_account,
            mint=state.mint,
            status=GrantTransferStatus.PLANNED,
            amount=amount,
            destination=receiving,
        ),
        instruction=TransferInstruction(
            source=grant.token_account,
            destination=receiving,
            authority=signer_address,
            amount=amount,
        ),
    )


def _with_planned_as(
    results: tuple[GrantTransfer, ...],
    status: GrantTransferStatus,
    reason: str | None = None,
) -> tuple[GrantTransfer, ...]:
    return tuple(
        r.with_status(status, reason)
        if r.status == GrantTransferStatus.PLANNED else r
        for r in results
    )


class TransferExecutor:
    """Transfer stage of the reconciliation loop.

    Non-goals:
        - Does NOT retry TRANSFER_FAILED records.
        - Does NOT optimise fees or priority.
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
        """One pass over VERIFIED records."""
        tally = CycleTally(CycleStage.TRANSFER, self._clock)

        with LogContext.bind(cycle_id=tally.cycle_id, stage=tally.stage.value):
            records = self._store.list_in_state(
                LifecycleState.VERIFIED, limit=self._batch_limit,
            )
            logger.info("transfer_cycle_started", extra={"pending": len(records)})

            for record in records:
                with LogContext.bind(
                    approval_id=str(record.approval_id),
                    network=record.network,
                ):
                    tally.record(self._process(record))

            return tally.finish()

    # -------------------------------------------------------------------------
    # Per-record
    # -------------------------------------------------------------------------

    def _process(self, record: ApprovalRecord) -> RecordOutcome:
        try:
            network, gateway, signer, destination = self._resolve(record)
            if record.has_pending_settlement:
                return self._reconcile(record, gateway)
            return self._execute(record, network, gateway, signer, destination)
        except ConfigurationError as exc:
            logger.warning(
                "transfer_skipped",
                extra={"reason": str(exc), "error_code": exc.code},
            )
            return RecordOutcome.SKIPPED
        except _Deferred:
            return RecordOutcome.DEFERRED
        except Exception as exc:
            logger.exception("transfer_error")
            return self._fail_after_error(record, exc)

    def _fail_after_error(
        self,
        record: ApprovalRecord,
        exc: Exception,
    ) -> RecordOutcome:
        """Close a record whose transfer raised unexpectedly.

        The guard uses the settlement seen at the start of the cycle; if a
        batch was claimed since, the update loses and reconciliation takes
        over on the next cycle.
        """
        try:
            return self._close(
                record,
                LifecycleState.TRANSFER_FAILED,
                reason=f"Transfer error: {exc}",
                results=_with_planned_as(
                    record.transfer_results, GrantTransferStatus.UNSETTLED,
                ),
                expected_settlement=record.settlement_signature,
            )
        except Exception:
            logger.exception("transfer_error_unrecorded")
            return RecordOutcome.ERROR

    def _resolve(
        self,
        record: ApprovalRecord,
    ) -> tuple[NetworkConfig, LedgerGateway, Signer, str]:
        network = self._gateways.network(record.network)
        signer = self._gateways.signer(record.network)
        destination = self._gateways.destination(record.network)
        if signer.address != record.delegate:
            raise DelegateMismatchError(signer.address, record.delegate)
        return network, self._gateways.gateway(record.network), signer, destination

    def _execute(
        self,
        record: ApprovalRecord,
        network: NetworkConfig,
        gateway: LedgerGateway,
        signer: Signer,
        destination: str,
    ) -> RecordOutcome:
        plans = []
        for grant in record.grants:
            try:
                plans.append(plan_grant(gateway, grant, signer.address, destination))
            except TransientLedgerError as exc:
                logger.warning(
                    "transfer_deferred",
                    extra={"token_account": grant.token_account, "detail": str(exc)},
                )
                raise _Deferred() from exc
            except Exception as exc:
                logger.exception(
                    "grant_check_error",
                    extra={"token_account": grant.token_account},
                )
                plans.append(_rejected_plan(grant, f"Check error: {exc}", grant.mint))

        results = tuple(p.result for p in plans)
        instructions = tuple(p.instruction for p in plans if p.instruction is not None)

        if not instructions:
            return self._close(
                record,
                LifecycleState.TRANSFERRED,
                reason=REASON_NOTHING_TO_TRANSFER,
                results=results,
                expected_settlement=None,
            )

        try:
            batch = gateway.build_transfer_batch(instructions, signer)
        except TransientLedgerError as exc:
            logger.warning("transfer_deferred", extra={"detail": str(exc)})
            raise _Deferred() from exc

        if not self._store.claim_settlement(
            record.approval_id,
            batch.signature,
            batch.last_valid_block_height,
            results,
        ):
            return RecordOutcome.CONFLICT

        try:
            confirmation = self._broadcast(network, gateway, batch)
        except _Deferred:
            raise
        except TransferExecutionError as exc:
            return self._settlement_failed(record, batch.signature, results, exc.detail)
        except Exception as exc:
            logger.exception("transfer_error", extra={"signature": batch.signature})
            return self._settlement_failed(
                record, batch.signature, results, f"Transfer error: {exc}",
            )

        if confirmation.status == ConfirmationStatus.CONFIRMED:
            return self._settled(record, batch.signature, results)

        logger.warning("transfer_pending", extra={"signature": batch.signature})
        return RecordOutcome.DEFERRED

    def _broadcast(
        self,
        network: NetworkConfig,
        gateway: LedgerGateway,
        batch: SignedBatch,
    ) -> Confirmation:
        """Send a claimed batch and wait (bounded) for its outcome.

        Raises:
            TransferExecutionError: The ledger refused the batch or it failed
                on-chain.
            _Deferred: The outcome is unknown; reconcile on a later cycle.
        """
        try:
            gateway.send_batch(batch)
        except TransientLedgerError as exc:
            # The batch may or may not have reached the ledger.
            logger.warning(
                "transfer_send_ambiguous",
                extra={"signature": batch.signature, "detail": str(exc)},
            )
            raise _Deferred() from exc
        except LedgerRejectedError as exc:
            raise TransferExecutionError(
                f"Transfer rejected: {exc.detail}", batch.signature,
            ) from exc

        logger.info(
            "transfer_submitted",
            extra={
                "signature": batch.signature,
                "instruction_count": len(batch.instructions),
                "total_amount": sum(i.amount for i in batch.instructions),
            },
        )

        try:
            confirmation = gateway.await_confirmation(
                batch.signature, network.confirm_timeout_seconds,
            )
        except LedgerError as exc:
            logger.warning(
                "transfer_pending",
                extra={"signature": batch.signature, "detail": str(exc)},
            )
            raise _Deferred() from exc

        if confirmation.status == ConfirmationStatus.FAILED:
            raise TransferExecutionError(
                f"Transfer failed on ledger: {confirmation.error_detail}",
                batch.signature,
            )
        return confirmation

    def _reconcile(
        self,
        record: ApprovalRecord,
        gateway: LedgerGateway,
    ) -> RecordOutcome:
        """Resolve a batch claimed on an earlier cycle."""
        signature = record.settlement_signature
        try:
            # Expiry is observed before the final status probe so a batch
            # that lands in between is still seen as confirmed.
            expired = (
                record.settlement_last_valid_height is not None
                and gateway.is_expired(record.settlement_last_valid_height)
            )
            confirmation = gateway.get_confirmation(signature)
        except LedgerError as exc:
            logger.warning(
                "settlement_reconcile_deferred",
                extra={"signature": signature, "detail": str(exc)},
            )
            return RecordOutcome.DEFERRED

        if confirmation.status == ConfirmationStatus.CONFIRMED:
            return self._settled(record, signature, record.transfer_results)
        if confirmation.status == ConfirmationStatus.FAILED:
            return self._settlement_failed(
                record,
                signature,
                record.transfer_results,
                f"Transfer failed on ledger: {confirmation.error_detail}",
            )

        if expired:
            self._store.release_settlement(record.approval_id, signature)
            logger.warning("settlement_expired", extra={"signature": signature})
        else:
            logger.info("settlement_pending", extra={"signature": signature})
        return RecordOutcome.DEFERRED

    # -------------------------------------------------------------------------
    # Closing transitions
    # -------------------------------------------------------------------------

    def _settled(
        self,
        record: ApprovalRecord,
        signature: str,
        results: tuple[GrantTransfer, ...],
    ) -> RecordOutcome:
        return self._close(
            record,
            LifecycleState.TRANSFERRED,
            results=_with_planned_as(results, GrantTransferStatus.SETTLED),
            settlement_signature=signature,
            expected_settlement=signature,
        )

    def _settlement_failed(
        self,
        record: ApprovalRecord,
        signature: str,
        results: tuple[GrantTransfer, ...],
        reason: str,
    ) -> RecordOutcome:
        return self._close(
            record,
            LifecycleState.TRANSFER_FAILED,
            reason=reason,
            results=_with_planned_as(results, GrantTransferStatus.UNSETTLED),
            expected_settlement=signature,
        )

    def _close(
        self,
        record: ApprovalRecord,
        target: LifecycleState,
        *,
        results: tuple[GrantTransfer, ...],
        expected_settlement: str | None,
        reason: str | None = None,
        settlement_signature: str | None = None,
    ) -> RecordOutcome:
        applied = self._store.transition(
            record.approval_id,
            LifecycleState.VERIFIED,
            target,
            failure_reason=reason,
            transfer_results=results,
            settlement_signature=settlement_signature,
            expected_settlement=expected_settlement,
        )
        if not applied:
            logger.info("transfer_conflict", extra={"target": target.value})
            return RecordOutcome.CONFLICT

        if target == LifecycleState.TRANSFERRED:
            logger.info(
                "transfer_confirmed" if settlement_signature else "transfer_closed_empty",
                extra={"signature": settlement_signature, "reason": reason},
            )
            return RecordOutcome.ADVANCED

        logger.warning("transfer_failed", extra={"reason": reason})
        return RecordOutcome.FAILED
