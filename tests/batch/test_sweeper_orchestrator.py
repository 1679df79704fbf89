"""
Tests for approval_batch.orchestrator.SweeperOrchestrator.

Validates composition from a SweeperConfig, scheduler construction for the
selected stages, table creation, scoped shutdown, and one full
submit -> verify -> transfer pass through the wired system.
"""

import dataclasses

import pytest

from approval_kernel.domain.types import GrantTransferStatus, LifecycleState
from approval_batch.orchestrator import SweeperOrchestrator
from tests.conftest import CLAIM_SIG, DELEGATE, MINT_USDC, NETWORK, OWNER


@pytest.fixture
def orchestrator(sweeper_config, session_factory, clock, gateway, signer):
    return SweeperOrchestrator.from_config(
        sweeper_config,
        clock=clock,
        session_factory=session_factory,
        gateway_factory=lambda net: gateway,
        signer_factory=lambda secret: signer,
    )


@pytest.fixture
def file_config(sweeper_config, tmp_path):
    return dataclasses.replace(
        sweeper_config, database_url=f"sqlite:///{tmp_path / 'sweeper.db'}",
    )


class TestComposition:
    def test_shared_clock(self, orchestrator, clock):
        assert orchestrator.clock is clock

    def test_batch_limit_applied(self, sweeper_config, session_factory, clock):
        config = dataclasses.replace(sweeper_config, batch_limit=7)
        orch = SweeperOrchestrator.from_config(
            config, clock=clock, session_factory=session_factory,
        )
        assert orch.verifier._batch_limit == 7
        assert orch.executor._batch_limit == 7

    def test_gateways_are_lazy(self, sweeper_config, session_factory):
        built = []
        orch = SweeperOrchestrator.from_config(
            sweeper_config,
            session_factory=session_factory,
            gateway_factory=lambda net: built.append(net) or object(),
        )
        assert built == []
        assert NETWORK in orch.gateways

    def test_creation_logged(self, sweeper_config, session_factory, captured_logs):
        SweeperOrchestrator.from_config(sweeper_config, session_factory=session_factory)
        entry = next(r for r in captured_logs() if r["message"] == "orchestrator_created")
        assert entry["networks"] == [NETWORK]


class TestSchedulerCreation:
    def test_both_stages(self, orchestrator):
        scheduler = orchestrator.create_scheduler()
        assert [loop.name for loop in scheduler.loops] == ["verify", "transfer"]

    @pytest.mark.parametrize("verify,transfer,expected", [
        (True, False, ["verify"]),
        (False, True, ["transfer"]),
    ])
    def test_single_stage(self, orchestrator, verify, transfer, expected):
        scheduler = orchestrator.create_scheduler(verify=verify, transfer=transfer)
        assert [loop.name for loop in scheduler.loops] == expected

    def test_intervals_from_config(self, sweeper_config, session_factory):
        config = dataclasses.replace(
            sweeper_config, verify_interval_seconds=3, transfer_interval_seconds=9,
        )
        orch = SweeperOrchestrator.from_config(config, session_factory=session_factory)
        verify_loop, transfer_loop = orch.create_scheduler().loops
        assert verify_loop._interval == 3
        assert transfer_loop._interval == 9


class TestDatabaseLifecycle:
    def test_init_db_requires_engine(self, orchestrator):
        with pytest.raises(RuntimeError):
            orchestrator.init_db()

    def test_init_db_from_url(self, file_config):
        orch = SweeperOrchestrator.from_config(file_config)
        try:
            orch.init_db()
            orch.store.ping()
            assert orch.store.list_in_state(LifecycleState.SUBMITTED) == ()
        finally:
            orch.close()

    def test_close_releases_gateways(self, orchestrator, gateway):
        orchestrator.gateways.gateway(NETWORK)
        orchestrator.close()
        assert gateway.closed


class TestEndToEnd:
    def test_claim_swept_in_one_pass(self, orchestrator, gateway):
        gateway.add_claim()
        gateway.add_account("token-A", delegated_amount=500, balance=300)
        gateway.add_receiving()
        record = orchestrator.store.submit_claim(
            owner=OWNER,
            delegate=DELEGATE,
            network=NETWORK,
            claim_signature=CLAIM_SIG,
            grants=[{
                "tokenAccount": "token-A",
                "mint": MINT_USDC,
                "amount": "1000",
                "decimals": 6,
                "symbol": "USDC",
            }],
        )

        verify_result, transfer_result = orchestrator.create_scheduler().run_once()

        loaded = orchestrator.store.get(record.approval_id)
        assert verify_result.advanced == 1
        assert transfer_result.advanced == 1
        assert loaded.state == LifecycleState.TRANSFERRED
        assert loaded.transfer_results[0].status == GrantTransferStatus.SETTLED
        assert loaded.transfer_results[0].amount == 300
