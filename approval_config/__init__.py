"""
approval_config -- single public entrypoint for sweeper configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Stages receive the resulting
    ``SweeperConfig`` (or the per-network ``NetworkConfig``) by
    constructor injection and never read files or environment variables
    themselves.

Architecture position:
    Configuration -- sits beside ``approval_kernel`` and below
    ``approval_ledger`` / ``approval_batch``.  The kernel MUST NEVER import
    from ``approval_config``.

Resolution order:
    1. An explicit ``path`` argument.
    2. The ``APPROVAL_SWEEPER_CONFIG`` environment variable.
    3. The bundled ``sets/default.yaml``, which is driven entirely by the
       ``SOLANA_MAINNET_*`` and ``DATABASE_URL`` variables.

Failure modes:
    - ``FileNotFoundError`` -- the named YAML file does not exist.
    - ``ValueError`` / ``KeyError`` -- structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SWEEPER_CONFIG_TRACE`` log entry with the configuration checksum
    (secrets redacted), the network names, and the scheduler cadence.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from approval_config.loader import (
    compute_checksum,
    config_from_env,
    load_config_file,
)
from approval_config.schema import NetworkConfig, SweeperConfig
from approval_kernel.logging_config import get_logger

__all__ = [
    "NetworkConfig",
    "SweeperConfig",
    "get_active_config",
]

_logger = get_logger("config")

CONFIG_PATH_VAR = "APPROVAL_SWEEPER_CONFIG"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> SweeperConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file.  Falls back to ``APPROVAL_SWEEPER_CONFIG``
            and then to the bundled environment-driven defaults.
        environ: Environment mapping used for ``${VAR}`` expansion.
            Defaults to ``os.environ``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If a value fails validation.
    """
    env = os.environ if environ is None else environ
    source = path or env.get(CONFIG_PATH_VAR)

    if source:
        config = load_config_file(Path(source), env)
    else:
        config = config_from_env(env)

    _logger.info(
        "SWEEPER_CONFIG_TRACE",
        extra={
            "trace_type": "SWEEPER_CONFIG_TRACE",
            "source": str(source) if source else "environment",
            "checksum": compute_checksum(config),
            "networks": list(config.network_names),
            "verify_interval_seconds": config.verify_interval_seconds,
            "transfer_interval_seconds": config.transfer_interval_seconds,
            "batch_limit": config.batch_limit,
        },
    )
    return config
