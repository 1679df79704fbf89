"""
Pytest fixtures for the approval sweeper test suite.

Provides:
- SQLite-backed approval store (file database per test, real ORM models)
- DeterministicClock with naive datetimes (SQLite strips tzinfo)
- FakeLedgerGateway: in-memory ledger with per-call error injection
- Wired verifier / transfer executor over the fake ledger
- Structured log capture
"""

import json
import logging
from datetime import datetime
from io import StringIO
from typing import Callable

import pytest

from approval_config.schema import NetworkConfig, SweeperConfig
from approval_kernel.db.engine import (
    build_engine,
    build_session_factory,
    create_tables,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.types import GrantLine, LifecycleState
from approval_kernel.exceptions import LedgerNotFoundError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.approval_store import ApprovalStore
from approval_ledger.gateway import (
    Confirmation,
    ConfirmationStatus,
    LedgerTransaction,
    SignedBatch,
    TokenAccountState,
    TransferInstruction,
)
from approval_ledger.registry import GatewayRegistry
from approval_batch.services.transfer_executor import TransferExecutor
from approval_batch.services.verifier import ApprovalVerifier


NETWORK = "mainnet-beta"
OWNER = "OwnerWa11et1111111111111111111111111111111"
DELEGATE = "De1egateWa11et11111111111111111111111111111"
DESTINATION = "Destinati0nWa11et111111111111111111111111111"
MINT_USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
MINT_BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
CLAIM_SIG = "ClaimSig1111111111111111111111111111111111111111"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_sweeper logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, verifier):
            verifier.run_cycle()
            logs = captured_logs()
            assert any(r["message"] == "verification_passed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_sweeper")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Fake ledger
# =============================================================================


class FakeSigner:
    def __init__(self, address: str = DELEGATE):
        self.address = address


class FakeLedgerGateway:
    """In-memory LedgerGateway.

    Errors are injected per method with ``fail(method, key, exc)``; a key of
    None matches every call.  ``on_account_read`` runs inside
    ``get_token_account_state`` so tests can interleave a competing worker.
    """

    def __init__(self) -> None:
        self.transactions: dict[str, LedgerTransaction] = {}
        self.accounts: dict[str, TokenAccountState] = {}
        self.receiving: dict[tuple[str, str], str] = {}
        self.confirmations: dict[str, Confirmation] = {}
        self.default_confirmation = Confirmation(ConfirmationStatus.CONFIRMED)
        self.errors: dict[tuple[str, str | None], Exception] = {}
        self.on_account_read: Callable[[str], None] | None = None
        self.built: list[SignedBatch] = []
        self.sent: list[SignedBatch] = []
        self.await_calls: list[tuple[str, float]] = []
        self.block_height = 100
        self.last_valid_block_height = 250
        self.closed = False
        self._seq = 0

    # -- setup helpers ----------------------------------------------------

    def add_claim(
        self,
        signature: str = CLAIM_SIG,
        succeeded: bool = True,
        error_detail: str | None = None,
    ) -> None:
        self.transactions[signature] = LedgerTransaction(
            signature=signature,
            succeeded=succeeded,
            error_detail=error_detail,
            slot=1234,
        )

    def add_account(
        self,
        address: str,
        mint: str = MINT_USDC,
        owner: str = OWNER,
        delegate: str | None = DELEGATE,
        delegated_amount: int = 1_000_000,
        balance: int = 1_000_000,
    ) -> None:
        self.accounts[address] = TokenAccountState(
            address=address,
            mint=mint,
            owner=owner,
            delegate=delegate,
            delegated_amount=delegated_amount,
            balance=balance,
        )

    def add_receiving(self, mint: str = MINT_USDC, owner: str = DESTINATION) -> str:
        address = f"dest-{mint[:6]}"
        self.receiving[(owner, mint)] = address
        return address

    def fail(self, method: str, key: str | None, exc: Exception) -> None:
        self.errors[(method, key)] = exc

    def clear_failures(self) -> None:
        self.errors.clear()

    def _raise_if(self, method: str, key: str | None) -> None:
        exc = self.errors.get((method, key)) or self.errors.get((method, None))
        if exc is not None:
            raise exc

    # -- LedgerGateway ----------------------------------------------------

    def get_transaction(self, signature: str) -> LedgerTransaction | None:
        self._raise_if("get_transaction", signature)
        return self.transactions.get(signature)

    def get_token_account_state(self, address: str) -> TokenAccountState:
        self._raise_if("get_token_account_state", address)
        if self.on_account_read is not None:
            self.on_account_read(address)
        state = self.accounts.get(address)
        if state is None:
            raise LedgerNotFoundError("token account", address)
        return state

    def find_receiving_account(self, owner: str, mint: str) -> str | None:
        self._raise_if("find_receiving_account", mint)
        return self.receiving.get((owner, mint))

    def build_transfer_batch(
        self,
        instructions: tuple[TransferInstruction, ...],
        signer,
    ) -> SignedBatch:
        self._raise_if("build_transfer_batch", None)
        self._seq += 1
        batch = SignedBatch(
            signature=f"batch-sig-{self._seq}",
            last_valid_block_height=self.last_valid_block_height,
            instructions=tuple(instructions),
            payload=b"signed",
        )
        self.built.append(batch)
        return batch

    def send_batch(self, batch: SignedBatch) -> str:
        self._raise_if("send_batch", batch.signature)
        self.sent.append(batch)
        return batch.signature

    def await_confirmation(self, signature: str, timeout_seconds: float) -> Confirmation:
        self.await_calls.append((signature, timeout_seconds))
        self._raise_if("await_confirmation", signature)
        return self.confirmations.get(signature, self.default_confirmation)

    def get_confirmation(self, signature: str) -> Confirmation:
        self._raise_if("get_confirmation", signature)
        return self.confirmations.get(signature, self.default_confirmation)

    def is_expired(self, last_valid_block_height: int) -> bool:
        self._raise_if("is_expired", None)
        return self.block_height > last_valid_block_height

    def close(self) -> None:
        self.closed = True


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def clock():
    # Use naive datetimes for SQLite compatibility (SQLite strips tzinfo)
    return DeterministicClock(fixed_time=datetime(2024, 6, 1, 12, 0, 0))


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'approvals.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory, clock):
    return ApprovalStore(session_factory, clock=clock)


# =============================================================================
# Ledger / stage fixtures
# =============================================================================


@pytest.fixture
def network_config():
    return NetworkConfig(
        name=NETWORK,
        rpc_url="http://localhost:8899",
        delegate_address=DELEGATE,
        delegate_secret="test-secret",
        destination_address=DESTINATION,
        confirm_timeout_seconds=5.0,
    )


@pytest.fixture
def sweeper_config(network_config):
    return SweeperConfig(
        database_url="sqlite://",
        networks=(network_config,),
        batch_limit=100,
    )


@pytest.fixture
def gateway():
    return FakeLedgerGateway()


@pytest.fixture
def signer():
    return FakeSigner(DELEGATE)


@pytest.fixture
def gateways(sweeper_config, gateway, signer):
    return GatewayRegistry(
        sweeper_config,
        gateway_factory=lambda net: gateway,
        signer_factory=lambda secret: signer,
    )


@pytest.fixture
def verifier(store, gateways, clock):
    return ApprovalVerifier(store, gateways, clock=clock)


@pytest.fixture
def executor(store, gateways, clock):
    return TransferExecutor(store, gateways, clock=clock)


@pytest.fixture
def make_claim(store):
    """Submit a claim; grants default to one USDC grant on ``token-A``."""

    def _make(
        grants: list[GrantLine] | None = None,
        owner: str = OWNER,
        delegate: str = DELEGATE,
        network: str = NETWORK,
        claim_signature: str = CLAIM_SIG,
    ):
        return store.submit_claim(
            owner=owner,
            delegate=delegate,
            network=network,
            claim_signature=claim_signature,
            grants=grants or [GrantLine("token-A", MINT_USDC, 1_000_000, 6, "USDC")],
        )

    return _make


@pytest.fixture
def make_verified(store, make_claim, clock):
    """Create a record directly in VERIFIED, bypassing the verifier."""

    def _make(grants: list[GrantLine] | None = None, **kwargs):
        record = make_claim(grants, **kwargs)
        assert store.transition(
            record.approval_id,
            LifecycleState.SUBMITTED,
            LifecycleState.VERIFIED,
        )
        return store.get(record.approval_id)

    return _make
