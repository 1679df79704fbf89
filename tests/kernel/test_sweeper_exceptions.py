"""
Tests for approval_kernel.exceptions.

Every exception carries a machine-readable code and its structured fields,
and sits in the branch of the hierarchy the stages dispatch on.
"""

import pytest

from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    ClaimInvalidError,
    ConfigurationError,
    DelegateMismatchError,
    InvalidClaimError,
    InvalidDelegateKeyError,
    InvalidTransitionError,
    LedgerError,
    LedgerNotFoundError,
    LedgerRejectedError,
    MissingNetworkSettingError,
    StoreError,
    StoreUnavailableError,
    SweeperError,
    TransferExecutionError,
    TransientLedgerError,
    UnknownNetworkError,
)


class TestHierarchy:
    @pytest.mark.parametrize("exc_class", [
        UnknownNetworkError,
        MissingNetworkSettingError,
        InvalidDelegateKeyError,
        DelegateMismatchError,
    ])
    def test_configuration_errors(self, exc_class):
        assert issubclass(exc_class, ConfigurationError)

    @pytest.mark.parametrize("exc_class", [
        TransientLedgerError,
        LedgerNotFoundError,
        LedgerRejectedError,
    ])
    def test_ledger_errors(self, exc_class):
        assert issubclass(exc_class, LedgerError)

    @pytest.mark.parametrize("exc_class", [
        ApprovalNotFoundError,
        InvalidClaimError,
        InvalidTransitionError,
        StoreUnavailableError,
    ])
    def test_store_errors(self, exc_class):
        assert issubclass(exc_class, StoreError)

    def test_everything_is_a_sweeper_error(self):
        for exc_class in (
            ConfigurationError, ClaimInvalidError, TransferExecutionError,
            LedgerError, StoreError,
        ):
            assert issubclass(exc_class, SweeperError)

    def test_transient_is_not_configuration(self):
        assert not issubclass(TransientLedgerError, ConfigurationError)


class TestCodesAndFields:
    def test_codes_unique(self):
        classes = [
            SweeperError, ConfigurationError, UnknownNetworkError,
            MissingNetworkSettingError, InvalidDelegateKeyError,
            DelegateMismatchError, ClaimInvalidError, TransferExecutionError,
            LedgerError, TransientLedgerError, LedgerNotFoundError,
            LedgerRejectedError, StoreError, ApprovalNotFoundError,
            InvalidClaimError, InvalidTransitionError, StoreUnavailableError,
        ]
        codes = [c.code for c in classes]
        assert len(codes) == len(set(codes))

    def test_unknown_network(self):
        exc = UnknownNetworkError("devnet")
        assert exc.code == "UNKNOWN_NETWORK"
        assert exc.network == "devnet"
        assert "devnet" in str(exc)

    def test_missing_setting(self):
        exc = MissingNetworkSettingError("mainnet-beta", "destination address")
        assert exc.setting == "destination address"
        assert "mainnet-beta" in str(exc)

    def test_delegate_mismatch(self):
        exc = DelegateMismatchError("configured", "recorded")
        assert exc.configured == "configured"
        assert exc.recorded == "recorded"

    def test_invalid_delegate_key_message(self):
        exc = InvalidDelegateKeyError("expected 64 bytes, got 3")
        assert "base64" in str(exc)
        assert "JSON array" in str(exc)

    def test_transient(self):
        exc = TransientLedgerError("get_transaction", "timed out")
        assert exc.code == "LEDGER_TRANSIENT"
        assert exc.operation == "get_transaction"
        assert exc.detail == "timed out"

    def test_invalid_transition(self):
        exc = InvalidTransitionError("submitted", "transferred")
        assert exc.from_state == "submitted"
        assert exc.to_state == "transferred"

    def test_transfer_execution_keeps_signature(self):
        exc = TransferExecutionError("send failed", signature="sig")
        assert exc.signature == "sig"
        assert exc.code == "TRANSFER_EXECUTION_FAILED"
