"""
GatewayRegistry -- per-network ledger gateways and signers.

Contract:
    - ``network()`` returns the NetworkConfig for a record's network or
      raises ``UnknownNetworkError``.
    - ``gateway()`` lazily builds (via the injected factory) and caches one
      ``LedgerGateway`` per network.
    - ``signer()`` lazily decodes and caches the delegate signing identity;
      a missing or malformed secret raises a ``ConfigurationError``.
    - ``close()`` closes every gateway built so far.

Owned by the composition root; nothing in the codebase holds a
process-global RPC client.
"""

from __future__ import annotations

from collections.abc import Callable

from approval_config.schema import NetworkConfig, SweeperConfig
from approval_kernel.exceptions import (
    MissingNetworkSettingError,
    UnknownNetworkError,
)
from approval_kernel.logging_config import get_logger
from approval_ledger.gateway import LedgerGateway, Signer

logger = get_logger("ledger.registry")

GatewayFactory = Callable[[NetworkConfig], LedgerGateway]
SignerFactory = Callable[[str], Signer]


def solana_gateway_factory(network: NetworkConfig) -> LedgerGateway:
    """Default factory: one SolanaLedgerGateway per configured network."""
    from approval_ledger.solana_gateway import SolanaLedgerGateway

    return SolanaLedgerGateway(network.rpc_url, commitment=network.commitment)


def keypair_signer_factory(secret: str) -> Signer:
    from approval_ledger.keys import KeypairSigner

    return KeypairSigner.from_secret(secret)


class GatewayRegistry:
    """Lazily-built ledger gateways and signers, keyed by network name."""

    def __init__(
        self,
        config: SweeperConfig,
        gateway_factory: GatewayFactory = solana_gateway_factory,
        signer_factory: SignerFactory = keypair_signer_factory,
    ) -> None:
        self._config = config
        self._gateway_factory = gateway_factory
        self._signer_factory = signer_factory
        self._gateways: dict[str, LedgerGateway] = {}
        self._signers: dict[str, Signer] = {}

    def network(self, name: str | None) -> NetworkConfig:
        """Configuration for ``name``.

        Raises:
            UnknownNetworkError: If the network is not configured.
        """
        net = self._config.network(name)
        if net is None:
            raise UnknownNetworkError(name)
        return net

    def gateway(self, name: str | None) -> LedgerGateway:
        """Gateway for ``name``, built on first use.

        Raises:
            UnknownNetworkError: If the network is not configured.
        """
        net = self.network(name)
        gateway = self._gateways.get(net.name)
        if gateway is None:
            gateway = self._gateway_factory(net)
            self._gateways[net.name] = gateway
            logger.info(
                "gateway_created",
                extra={"network": net.name, "rpc_url": net.rpc_url},
            )
        return gateway

    def signer(self, name: str | None) -> Signer:
        """Delegate signing identity for ``name``, decoded on first use.

        Raises:
            UnknownNetworkError: If the network is not configured.
            MissingNetworkSettingError: If no delegate secret is configured.
            InvalidDelegateKeyError: If the secret cannot be decoded.
        """
        net = self.network(name)
        signer = self._signers.get(net.name)
        if signer is None:
            if not net.delegate_secret:
                raise MissingNetworkSettingError(net.name, "delegate private key")
            signer = self._signer_factory(net.delegate_secret)
            self._signers[net.name] = signer
        return signer

    def destination(self, name: str | None) -> str:
        """Sweep destination wallet for ``name``.

        Raises:
            UnknownNetworkError: If the network is not configured.
            MissingNetworkSettingError: If no destination is configured.
        """
        net = self.network(name)
        if not net.destination_address:
            raise MissingNetworkSettingError(net.name, "destination address")
        return net.destination_address

    def close(self) -> None:
        for name, gateway in self._gateways.items():
            gateway.close()
            logger.info("gateway_closed", extra={"network": name})
        self._gateways.clear()

    def __contains__(self, name: str) -> bool:
        return self._config.network(name) is not None
