"""
Typed Exception Hierarchy for the approval sweeper.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The reconciliation loop decides what happens to a record purely from the
*type* of error it sees.  A configuration problem must never close a claim,
a claim defect must always close it, and a network blip must leave it alone.
Parsing messages to tell those apart would be fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, log-safe)
  3. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SweeperError:

    SweeperError (base)
    |
    +-- ConfigurationError          -> skip record, retry next cycle
    |   +-- UnknownNetworkError
    |   +-- MissingNetworkSettingError
    |   +-- InvalidDelegateKeyError
    |   +-- DelegateMismatchError
    |
    +-- ClaimInvalidError           -> terminal VERIFICATION_FAILED
    |
    +-- TransferExecutionError      -> terminal TRANSFER_FAILED
    |
    +-- LedgerError
    |   +-- TransientLedgerError    -> no state change, retry next cycle
    |   +-- LedgerNotFoundError     -> terminal for that specific check
    |   +-- LedgerRejectedError     -> terminal for that specific check
    |
    +-- StoreError
        +-- ApprovalNotFoundError
        +-- InvalidClaimError
        +-- InvalidTransitionError
        +-- StoreUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | Effect on the record
----------------|-----------------------------|-----------------------------------
Configuration   | UNKNOWN_NETWORK             | skipped, unchanged
                | MISSING_NETWORK_SETTING     | skipped, unchanged
                | INVALID_DELEGATE_KEY        | skipped, unchanged
                | DELEGATE_MISMATCH           | skipped, unchanged
----------------|-----------------------------|-----------------------------------
Claim           | CLAIM_INVALID               | VERIFICATION_FAILED
----------------|-----------------------------|-----------------------------------
Transfer        | TRANSFER_EXECUTION_FAILED   | TRANSFER_FAILED
----------------|-----------------------------|-----------------------------------
Ledger          | LEDGER_TRANSIENT            | unchanged (deferred)
                | LEDGER_NOT_FOUND            | check fails
                | LEDGER_REJECTED             | check fails
----------------|-----------------------------|-----------------------------------
Store           | APPROVAL_NOT_FOUND          | n/a
                | INVALID_CLAIM               | rejected at intake
                | INVALID_TRANSITION          | programming error
                | STORE_UNAVAILABLE           | startup aborts
"""


class SweeperError(Exception):
    """
    Base exception for all approval sweeper errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SWEEPER_ERROR"


# Configuration-related exceptions


class ConfigurationError(SweeperError):
    """Operational misconfiguration -- never a defect of the claim itself."""

    code: str = "CONFIGURATION_ERROR"


class UnknownNetworkError(ConfigurationError):
    """Record names a network that has no configuration."""

    code: str = "UNKNOWN_NETWORK"

    def __init__(self, network: str | None):
        self.network = network
        super().__init__(f"Unsupported network: {network}")


class MissingNetworkSettingError(ConfigurationError):
    """A network is configured but lacks a setting a stage requires."""

    code: str = "MISSING_NETWORK_SETTING"

    def __init__(self, network: str, setting: str):
        self.network = network
        self.setting = setting
        super().__init__(f"No {setting} configured for network {network}")


class InvalidDelegateKeyError(ConfigurationError):
    """The configured delegate secret cannot be decoded into a keypair."""

    code: str = "INVALID_DELEGATE_KEY"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(
            "Invalid private key format. Use base64 encoded 64-byte secret "
            f"key or JSON array ({detail})"
        )


class DelegateMismatchError(ConfigurationError):
    """The local signing identity is not the delegate named on the record."""

    code: str = "DELEGATE_MISMATCH"

    def __init__(self, configured: str, recorded: str):
        self.configured = configured
        self.recorded = recorded
        super().__init__(
            f"Delegate mismatch: config={configured}, record={recorded}"
        )


# Claim / transfer outcomes


class ClaimInvalidError(SweeperError):
    """The claim failed independent on-chain verification."""

    code: str = "CLAIM_INVALID"

    def __init__(self, reason: str, token_account: str | None = None):
        self.reason = reason
        self.token_account = token_account
        super().__init__(reason)


class TransferExecutionError(SweeperError):
    """Submission or confirmation of a settlement batch failed."""

    code: str = "TRANSFER_EXECUTION_FAILED"

    def __init__(self, detail: str, signature: str | None = None):
        self.detail = detail
        self.signature = signature
        super().__init__(detail)


# Ledger-related exceptions


class LedgerError(SweeperError):
    """Base exception for ledger gateway errors."""

    code: str = "LEDGER_ERROR"


class TransientLedgerError(LedgerError):
    """Network failure or timeout talking to the ledger; retry later."""

    code: str = "LEDGER_TRANSIENT"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed transiently: {detail}")


class LedgerNotFoundError(LedgerError):
    """The requested ledger object does not exist."""

    code: str = "LEDGER_NOT_FOUND"

    def __init__(self, kind: str, address: str):
        self.kind = kind
        self.address = address
        super().__init__(f"{kind} not found: {address}")


class LedgerRejectedError(LedgerError):
    """The ledger refused the request (bad input, failed simulation, ...)."""

    code: str = "LEDGER_REJECTED"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} rejected: {detail}")


# Store-related exceptions


class StoreError(SweeperError):
    """Base exception for approval store errors."""

    code: str = "STORE_ERROR"


class ApprovalNotFoundError(StoreError):
    """Approval record with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval not found: {approval_id}")


class InvalidClaimError(StoreError):
    """A submitted claim is malformed and was not stored."""

    code: str = "INVALID_CLAIM"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class InvalidTransitionError(StoreError):
    """A lifecycle edge outside the allowed set was requested."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid lifecycle transition: {from_state} -> {to_state}"
        )


class StoreUnavailableError(StoreError):
    """The approval store cannot be reached at all."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Approval store unavailable: {detail}")
