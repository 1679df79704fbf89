"""
Sweeper configuration schema.

Frozen dataclasses produced by ``approval_config.loader``.  Network entries
may be partially filled in: a missing delegate secret or destination is not
a load error, it makes that network's records skip at run time.
"""

from __future__ import annotations

from dataclasses import dataclass

COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


@dataclass(frozen=True)
class NetworkConfig:
    """Per-network ledger settings."""

    name: str
    rpc_url: str
    delegate_address: str | None = None  # Expected delegate for verification
    delegate_secret: str | None = None  # Signing identity for transfers
    destination_address: str | None = None  # Sweep destination wallet
    commitment: str = "confirmed"
    confirm_timeout_seconds: float = 60.0

    def __repr__(self) -> str:
        secret = "<redacted>" if self.delegate_secret else None
        return (
            f"NetworkConfig(name={self.name!r}, rpc_url={self.rpc_url!r}, "
            f"delegate_address={self.delegate_address!r}, "
            f"delegate_secret={secret!r}, "
            f"destination_address={self.destination_address!r}, "
            f"commitment={self.commitment!r})"
        )


@dataclass(frozen=True)
class SweeperConfig:
    """Complete runtime configuration for one sweeper process."""

    database_url: str
    networks: tuple[NetworkConfig, ...] = ()
    verify_interval_seconds: float = 30.0
    transfer_interval_seconds: float = 30.0
    batch_limit: int = 100
    log_level: str = "INFO"

    def network(self, name: str | None) -> NetworkConfig | None:
        """Return the named network, or None if it is not configured."""
        for net in self.networks:
            if net.name == name:
                return net
        return None

    @property
    def network_names(self) -> tuple[str, ...]:
        return tuple(n.name for n in self.networks)
