"""
approval_ledger -- ledger access for the approval sweeper.

``LedgerGateway`` is the protocol every stage depends on;
``SolanaLedgerGateway`` implements it over Solana JSON-RPC, and
``GatewayRegistry`` hands out one gateway and one delegate signer per
configured network.  The Solana implementation is imported lazily so the
contract can be used without the solana-py stack loaded.
"""

from approval_ledger.gateway import (
    Confirmation,
    ConfirmationStatus,
    LedgerGateway,
    LedgerTransaction,
    SignedBatch,
    Signer,
    TokenAccountState,
    TransferInstruction,
)
from approval_ledger.registry import GatewayRegistry

__all__ = [
    "Confirmation",
    "ConfirmationStatus",
    "GatewayRegistry",
    "LedgerGateway",
    "LedgerTransaction",
    "SignedBatch",
    "Signer",
    "TokenAccountState",
    "TransferInstruction",
]
