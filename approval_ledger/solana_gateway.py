"""
SolanaLedgerGateway -- LedgerGateway over a Solana JSON-RPC endpoint.

Contract:
    Implements ``approval_ledger.gateway.LedgerGateway`` with the
    synchronous solana-py ``Client``, solders types, and the SPL Token
    ``transfer`` instruction.  One instance serves one network.

Error mapping:
    - ``SolanaRpcException`` and httpx transport errors -> TransientLedgerError
    - ``RPCException`` (error response from the node)    -> LedgerRejectedError
    - Malformed addresses / signatures                   -> LedgerRejectedError
    - Missing token account                              -> LedgerNotFoundError

Token account state is always read with ``jsonParsed`` encoding so the
delegate and allowance come straight from the node's SPL Token parser.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import TransferParams, transfer

from approval_kernel.exceptions import (
    LedgerNotFoundError,
    LedgerRejectedError,
    TransientLedgerError,
)
from approval_kernel.logging_config import get_logger
from approval_ledger.gateway import (
    Confirmation,
    ConfirmationStatus,
    LedgerTransaction,
    SignedBatch,
    Signer,
    TokenAccountState,
    TransferInstruction,
)

logger = get_logger("ledger.solana")

_ACCEPTED_STATUSES: dict[str, frozenset[str]] = {
    "processed": frozenset({"processed", "confirmed", "finalized"}),
    "confirmed": frozenset({"confirmed", "finalized"}),
    "finalized": frozenset({"finalized"}),
}


@contextmanager
def _rpc_call(operation: str) -> Iterator[None]:
    """Translate solana-py / httpx failures into ledger errors."""
    try:
        yield
    except RPCException as exc:
        raise LedgerRejectedError(operation, str(exc)) from exc
    except (SolanaRpcException, httpx.HTTPError) as exc:
        raise TransientLedgerError(operation, str(exc)) from exc


def _pubkey(value: str, operation: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise LedgerRejectedError(operation, f"invalid address {value!r}") from exc


def _signature(value: str, operation: str) -> Signature:
    try:
        return Signature.from_string(value)
    except ValueError as exc:
        raise LedgerRejectedError(operation, f"invalid signature {value!r}") from exc


def _status_name(status: Any) -> str | None:
    """``TransactionConfirmationStatus.Confirmed`` -> ``confirmed``."""
    if status is None:
        return None
    return str(status).rsplit(".", 1)[-1].lower()


def _parsed_amount(section: dict[str, Any] | None) -> int:
    if not section:
        return 0
    return int(section.get("amount") or 0)


class SolanaLedgerGateway:
    """LedgerGateway for one Solana cluster.

    Args:
        rpc_url: JSON-RPC endpoint.
        commitment: ``processed``, ``confirmed`` or ``finalized``.
        client: Optional pre-built solana-py ``Client`` (tests).
        poll_interval_seconds: Delay between status probes while awaiting
            confirmation.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        client: Client | None = None,
        poll_interval_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._rpc_url = rpc_url
        self._commitment = Commitment(commitment)
        self._accepted = _ACCEPTED_STATUSES[commitment]
        self._client = client or Client(rpc_url, commitment=self._commitment)
        self._poll_interval = poll_interval_seconds
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_transaction(self, signature: str) -> LedgerTransaction | None:
        sig = _signature(signature, "get_transaction")
        with _rpc_call("get_transaction"):
            resp = self._client.get_transaction(
                sig,
                encoding="json",
                commitment=self._commitment,
                max_supported_transaction_version=0,
            )

        tx = resp.value
        if tx is None:
            return None

        meta = tx.transaction.meta
        err = meta.err if meta is not None else None
        return LedgerTransaction(
            signature=signature,
            succeeded=err is None,
            error_detail=str(err) if err is not None else None,
            slot=tx.slot,
        )

    def get_token_account_state(self, address: str) -> TokenAccountState:
        key = _pubkey(address, "get_token_account_state")
        with _rpc_call("get_token_account_state"):
            resp = self._client.get_account_info_json_parsed(
                key, commitment=self._commitment,
            )

        account = resp.value
        if account is None:
            raise LedgerNotFoundError("token account", address)

        parsed = getattr(account.data, "parsed", None)
        if not isinstance(parsed, dict) or parsed.get("type") != "account":
            raise LedgerRejectedError(
                "get_token_account_state", f"{address} is not a token account",
            )

        info = parsed.get("info", {})
        return TokenAccountState(
            address=address,
            mint=info["mint"],
            owner=info["owner"],
            delegate=info.get("delegate"),
            delegated_amount=_parsed_amount(info.get("delegatedAmount")),
            balance=_parsed_amount(info.get("tokenAmount")),
        )

    def find_receiving_account(self, owner: str, mint: str) -> str | None:
        owner_key = _pubkey(owner, "find_receiving_account")
        mint_key = _pubkey(mint, "find_receiving_account")
        with _rpc_call("find_receiving_account"):
            resp = self._client.get_token_accounts_by_owner_json_parsed(
                owner_key,
                TokenAccountOpts(mint=mint_key),
                commitment=self._commitment,
            )

        if not resp.value:
            return None
        return str(resp.value[0].pubkey)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def build_transfer_batch(
        self,
        instructions: tuple[TransferInstruction, ...],
        signer: Signer,
    ) -> SignedBatch:
        keypair = getattr(signer, "keypair", None)
        if keypair is None:
            raise TypeError("SolanaLedgerGateway requires a KeypairSigner")

        ixs = [
            transfer(
                TransferParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=_pubkey(ins.source, "build_transfer_batch"),
                    dest=_pubkey(ins.destination, "build_transfer_batch"),
                    owner=_pubkey(ins.authority, "build_transfer_batch"),
                    amount=ins.amount,
                )
            )
            for ins in instructions
        ]

        with _rpc_call("get_latest_blockhash"):
            latest = self._client.get_latest_blockhash(
                commitment=self._commitment,
            ).value

        tx = Transaction.new_signed_with_payer(
            ixs, keypair.pubkey(), [keypair], latest.blockhash,
        )
        batch = SignedBatch(
            signature=str(tx.signatures[0]),
            last_valid_block_height=latest.last_valid_block_height,
            instructions=tuple(instructions),
            payload=bytes(tx),
        )
        logger.debug(
            "batch_built",
            extra={
                "signature": batch.signature,
                "instruction_count": len(ixs),
                "last_valid_block_height": batch.last_valid_block_height,
            },
        )
        return batch

    def send_batch(self, batch: SignedBatch) -> str:
        with _rpc_call("send_batch"):
            resp = self._client.send_raw_transaction(
                batch.payload,
                opts=TxOpts(
                    skip_preflight=False,
                    preflight_commitment=self._commitment,
                ),
            )
        return str(resp.value)

    # -------------------------------------------------------------------------
    # Confirmation
    # -------------------------------------------------------------------------

    def get_confirmation(self, signature: str) -> Confirmation:
        sig = _signature(signature, "get_confirmation")
        with _rpc_call("get_confirmation"):
            resp = self._client.get_signature_statuses(
                [sig], search_transaction_history=True,
            )

        status = resp.value[0] if resp.value else None
        if status is None:
            return Confirmation(ConfirmationStatus.PENDING)
        if status.err is not None:
            return Confirmation(ConfirmationStatus.FAILED, str(status.err))
        if _status_name(status.confirmation_status) in self._accepted:
            return Confirmation(ConfirmationStatus.CONFIRMED)
        return Confirmation(ConfirmationStatus.PENDING)

    def await_confirmation(
        self,
        signature: str,
        timeout_seconds: float,
    ) -> Confirmation:
        deadline = time.monotonic() + timeout_seconds
        while True:
            confirmation = self.get_confirmation(signature)
            if confirmation.is_final:
                return confirmation
            if time.monotonic() >= deadline:
                logger.warning(
                    "confirmation_timeout",
                    extra={
                        "signature": signature,
                        "timeout_seconds": timeout_seconds,
                    },
                )
                return confirmation
            self._sleep(self._poll_interval)

    def is_expired(self, last_valid_block_height: int) -> bool:
        with _rpc_call("get_block_height"):
            height = self._client.get_block_height(
                commitment=self._commitment,
            ).value
        return height > last_valid_block_height

    def close(self) -> None:
        # solana-py's sync Client keeps its httpx session on the provider.
        provider = getattr(self._client, "_provider", None)
        session = getattr(provider, "session", None)
        if session is not None:
            session.close()

    def __repr__(self) -> str:
        return (
            f"SolanaLedgerGateway(rpc_url={self._rpc_url!r}, "
            f"commitment={self._commitment!r})"
        )
