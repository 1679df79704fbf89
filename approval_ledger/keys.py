"""
Delegate signing identity.

The delegate secret is accepted in the two formats wallets export:
a base64-encoded 64-byte secret key, or a JSON array of 64 integers.
"""

from __future__ import annotations

import base64
import binascii
import json

from solders.keypair import Keypair

from approval_kernel.exceptions import InvalidDelegateKeyError
from approval_kernel.logging_config import get_logger

logger = get_logger("ledger.keys")

SECRET_KEY_LENGTH = 64


def _decode_secret(secret: str) -> bytes:
    text = secret.strip()

    if text.startswith("["):
        try:
            values = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidDelegateKeyError("malformed JSON array") from exc
        if not isinstance(values, list) or not all(
            isinstance(v, int) and 0 <= v <= 255 for v in values
        ):
            raise InvalidDelegateKeyError("JSON array must hold byte values")
        return bytes(values)

    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidDelegateKeyError("not valid base64") from exc


def load_delegate_keypair(secret: str | None) -> Keypair:
    """Decode a delegate secret into a solders ``Keypair``.

    Raises:
        InvalidDelegateKeyError: If the secret is empty, undecodable, or
            not exactly 64 bytes.
    """
    if not secret or not secret.strip():
        raise InvalidDelegateKeyError("empty secret")

    raw = _decode_secret(secret)
    if len(raw) != SECRET_KEY_LENGTH:
        raise InvalidDelegateKeyError(
            f"expected {SECRET_KEY_LENGTH} bytes, got {len(raw)}"
        )

    try:
        return Keypair.from_bytes(raw)
    except ValueError as exc:
        raise InvalidDelegateKeyError(str(exc)) from exc


class KeypairSigner:
    """Signer backed by an in-memory solders ``Keypair``."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_secret(cls, secret: str | None) -> KeypairSigner:
        signer = cls(load_delegate_keypair(secret))
        logger.info("delegate_key_loaded", extra={"address": signer.address})
        return signer

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    @property
    def address(self) -> str:
        return str(self._keypair.pubkey())

    def __repr__(self) -> str:
        return f"KeypairSigner(address={self.address!r})"
