"""
LedgerGateway protocol and supporting types.

Contract:
    ``LedgerGateway`` is the only way the verifier and transfer executor
    talk to the ledger.  Implementations wrap one network's RPC endpoint;
    ``approval_ledger.registry.GatewayRegistry`` hands out one per network.

Architecture:
    approval_ledger.  Imports from approval_kernel.exceptions only; the
    Solana-specific implementation lives in ``solana_gateway``.

Error contract (every method):
    - ``TransientLedgerError``: network failure or timeout.  Callers leave
      the record unchanged and retry on a later cycle.
    - ``LedgerNotFoundError``: the requested object does not exist.
    - ``LedgerRejectedError``: the ledger refused the request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class LedgerTransaction:
    """A transaction as recorded on the ledger.

    ``succeeded`` is False when the transaction landed but its execution
    failed; ``error_detail`` then carries the ledger's error.
    """

    signature: str
    succeeded: bool
    error_detail: str | None = None
    slot: int | None = None


@dataclass(frozen=True)
class TokenAccountState:
    """Live state of one token account."""

    address: str
    mint: str
    owner: str
    delegate: str | None
    delegated_amount: int
    balance: int


@dataclass(frozen=True)
class TransferInstruction:
    """Move ``amount`` base units from ``source`` to ``destination``."""

    source: str
    destination: str
    authority: str
    amount: int


@dataclass(frozen=True)
class SignedBatch:
    """One signed transaction holding every transfer for one owner.

    ``last_valid_block_height`` bounds the window in which the transaction
    can still land; past it the batch can never confirm.
    """

    signature: str
    last_valid_block_height: int
    instructions: tuple[TransferInstruction, ...]
    payload: bytes = field(default=b"", repr=False)


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING = "pending"  # Not yet observed at the requested commitment


@dataclass(frozen=True)
class Confirmation:
    status: ConfirmationStatus
    error_detail: str | None = None

    @property
    def is_final(self) -> bool:
        return self.status != ConfirmationStatus.PENDING


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class Signer(Protocol):
    """Signing identity of the configured delegate."""

    @property
    def address(self) -> str: ...


@runtime_checkable
class LedgerGateway(Protocol):
    """Read and write access to one ledger network.

    Non-goals:
        - Does NOT retry -- transient failures surface to the caller, which
          defers the record to the next cycle.
        - Does NOT persist anything.
    """

    def get_transaction(self, signature: str) -> LedgerTransaction | None:
        """Look up a transaction by signature; None if the ledger has no record."""
        ...

    def get_token_account_state(self, address: str) -> TokenAccountState:
        """Live delegate, allowance, and balance of a token account.

        Raises:
            LedgerNotFoundError: If the account does not exist.
        """
        ...

    def find_receiving_account(self, owner: str, mint: str) -> str | None:
        """A token account owned by ``owner`` that can receive ``mint``."""
        ...

    def build_transfer_batch(
        self,
        instructions: tuple[TransferInstruction, ...],
        signer: Signer,
    ) -> SignedBatch:
        """Build and sign one atomic transaction for ``instructions``."""
        ...

    def send_batch(self, batch: SignedBatch) -> str:
        """Broadcast a signed batch and return its signature."""
        ...

    def await_confirmation(
        self,
        signature: str,
        timeout_seconds: float,
    ) -> Confirmation:
        """Wait up to ``timeout_seconds``; PENDING if still unresolved."""
        ...

    def get_confirmation(self, signature: str) -> Confirmation:
        """Single status probe, no waiting."""
        ...

    def is_expired(self, last_valid_block_height: int) -> bool:
        """True once the ledger has moved past ``last_valid_block_height``."""
        ...

    def close(self) -> None: ...
