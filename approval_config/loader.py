"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML configuration file, expands ``${VAR}`` / ``${VAR:-default}``
references from the environment, and parses the result into the frozen
dataclasses in ``approval_config.schema``.  Runtime callers go through
``approval_config.get_active_config()``.

Secrets are never written into YAML: the delegate secret is always an
environment reference.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` with the offending path.
* Invalid values (unknown commitment, non-positive interval)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
from collections.abc import Mapping
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import COMMITMENT_LEVELS, NetworkConfig, SweeperConfig

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_DATABASE_URL = "sqlite:///approvals.db"

BUNDLED_CONFIG = Path(__file__).parent / "sets" / "default.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def expand_env(value: Any, environ: Mapping[str, str]) -> Any:
    """Expand environment references in strings, recursively.

    A string that is exactly one unset reference with no default expands
    to None so optional settings read as absent rather than empty.
    """
    if isinstance(value, dict):
        return {k: expand_env(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, environ) for v in value]
    if not isinstance(value, str):
        return value

    whole = _ENV_REF.fullmatch(value)
    if whole is not None:
        name, default = whole.group(1), whole.group(2)
        resolved = environ.get(name) or default
        return resolved or None

    def _sub(match: re.Match[str]) -> str:
        return environ.get(match.group(1)) or match.group(2) or ""

    return _ENV_REF.sub(_sub, value)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive(value: Any, path: str) -> float:
    number = float(value)
    if number <= 0:
        raise ValueError(f"{path} must be positive, got {value!r}")
    return number


def parse_network(name: str, data: dict[str, Any]) -> NetworkConfig:
    """
    Parse one ``networks.<name>`` entry.

    Raises:
        ValueError: if the commitment level or timeout is invalid.
    """
    commitment = str(data.get("commitment") or "confirmed").lower()
    if commitment not in COMMITMENT_LEVELS:
        raise ValueError(
            f"networks.{name}.commitment must be one of {COMMITMENT_LEVELS}, "
            f"got {commitment!r}"
        )

    return NetworkConfig(
        name=name,
        rpc_url=_optional_str(data.get("rpc_url")) or DEFAULT_RPC_URL,
        delegate_address=_optional_str(data.get("delegate_address")),
        delegate_secret=_optional_str(data.get("delegate_secret")),
        destination_address=_optional_str(data.get("destination_address")),
        commitment=commitment,
        confirm_timeout_seconds=_positive(
            data.get("confirm_timeout_seconds", 60),
            f"networks.{name}.confirm_timeout_seconds",
        ),
    )


def parse_config(data: dict[str, Any]) -> SweeperConfig:
    """
    Parse a full configuration document (already env-expanded).

    Raises:
        KeyError: if ``networks`` is not a mapping of names to settings.
        ValueError: if a scheduler or network value is invalid.
    """
    networks_raw = data.get("networks") or {}
    if not isinstance(networks_raw, dict):
        raise KeyError("networks must map network names to settings")

    networks = tuple(
        parse_network(str(name), entry or {})
        for name, entry in networks_raw.items()
    )

    scheduler = data.get("scheduler") or {}
    logging_section = data.get("logging") or {}

    batch_limit = int(scheduler.get("batch_limit", 100))
    if batch_limit <= 0:
        raise ValueError(f"scheduler.batch_limit must be positive, got {batch_limit}")

    return SweeperConfig(
        database_url=_optional_str(data.get("database_url")) or DEFAULT_DATABASE_URL,
        networks=networks,
        verify_interval_seconds=_positive(
            scheduler.get("verify_interval_seconds", 30),
            "scheduler.verify_interval_seconds",
        ),
        transfer_interval_seconds=_positive(
            scheduler.get("transfer_interval_seconds", 30),
            "scheduler.transfer_interval_seconds",
        ),
        batch_limit=batch_limit,
        log_level=str(logging_section.get("level", "INFO")).upper(),
    )


def load_config_file(
    path: Path,
    environ: Mapping[str, str] | None = None,
) -> SweeperConfig:
    """Load, env-expand and parse a YAML configuration file."""
    env = os.environ if environ is None else environ
    return parse_config(expand_env(load_yaml_file(path), env))


def config_from_env(environ: Mapping[str, str] | None = None) -> SweeperConfig:
    """Configuration from environment variables only.

    Uses the bundled ``sets/default.yaml``, which declares the single
    ``mainnet-beta`` network in terms of the ``SOLANA_MAINNET_*`` variables
    and ``DATABASE_URL``.
    """
    return load_config_file(BUNDLED_CONFIG, environ)


def compute_checksum(config: SweeperConfig) -> str:
    """Deterministic SHA-256 of the effective configuration, secrets redacted."""
    data = asdict(config)
    for net in data["networks"]:
        if net.get("delegate_secret"):
            net["delegate_secret"] = "<redacted>"
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
