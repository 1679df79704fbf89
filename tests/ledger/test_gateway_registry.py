"""
Tests for approval_ledger.registry.GatewayRegistry.

Gateways and signers are built lazily through injected factories, cached
per network, and missing settings surface as configuration errors.
"""

import pytest

from approval_config.schema import NetworkConfig, SweeperConfig
from approval_kernel.exceptions import (
    MissingNetworkSettingError,
    UnknownNetworkError,
)
from approval_ledger.registry import GatewayRegistry
from tests.conftest import DESTINATION, NETWORK, FakeLedgerGateway, FakeSigner


@pytest.fixture
def built():
    return {"gateways": [], "secrets": []}


def _registry(built, *networks: NetworkConfig) -> GatewayRegistry:
    def gateway_factory(net):
        gw = FakeLedgerGateway()
        built["gateways"].append((net.name, gw))
        return gw

    def signer_factory(secret):
        built["secrets"].append(secret)
        return FakeSigner()

    return GatewayRegistry(
        SweeperConfig(database_url="sqlite://", networks=networks),
        gateway_factory=gateway_factory,
        signer_factory=signer_factory,
    )


class TestNetworkLookup:
    def test_known_network(self, built, network_config):
        registry = _registry(built, network_config)
        assert registry.network(NETWORK) is network_config
        assert NETWORK in registry

    def test_unknown_network(self, built, network_config):
        registry = _registry(built, network_config)
        with pytest.raises(UnknownNetworkError) as exc_info:
            registry.network("devnet")
        assert exc_info.value.network == "devnet"
        assert "devnet" not in registry

    def test_none_network(self, built, network_config):
        with pytest.raises(UnknownNetworkError):
            _registry(built, network_config).gateway(None)


class TestGateways:
    def test_built_once_per_network(self, built, network_config):
        registry = _registry(built, network_config)

        first = registry.gateway(NETWORK)
        second = registry.gateway(NETWORK)

        assert first is second
        assert [name for name, _ in built["gateways"]] == [NETWORK]

    def test_separate_gateway_per_network(self, built, network_config):
        devnet = NetworkConfig(name="devnet", rpc_url="http://devnet")
        registry = _registry(built, network_config, devnet)

        assert registry.gateway(NETWORK) is not registry.gateway("devnet")

    def test_unknown_network_builds_nothing(self, built, network_config):
        registry = _registry(built, network_config)
        with pytest.raises(UnknownNetworkError):
            registry.gateway("devnet")
        assert built["gateways"] == []

    def test_close_closes_all(self, built, network_config, captured_logs):
        registry = _registry(built, network_config)
        gw = registry.gateway(NETWORK)

        registry.close()

        assert gw.closed
        assert any(r["message"] == "gateway_closed" for r in captured_logs())
        assert registry.gateway(NETWORK) is not gw


class TestSigners:
    def test_signer_built_from_secret_once(self, built, network_config):
        registry = _registry(built, network_config)
        assert registry.signer(NETWORK) is registry.signer(NETWORK)
        assert built["secrets"] == ["test-secret"]

    def test_missing_secret(self, built):
        registry = _registry(built, NetworkConfig(name=NETWORK, rpc_url="http://x"))
        with pytest.raises(MissingNetworkSettingError) as exc_info:
            registry.signer(NETWORK)
        assert exc_info.value.setting == "delegate private key"


class TestDestination:
    def test_configured(self, built, network_config):
        assert _registry(built, network_config).destination(NETWORK) == DESTINATION

    def test_missing(self, built):
        registry = _registry(built, NetworkConfig(name=NETWORK, rpc_url="http://x"))
        with pytest.raises(MissingNetworkSettingError, match="destination address"):
            registry.destination(NETWORK)
