"""
Property-based tests for the sweeper's pure decision points.

Boundaries fuzzed here:
- Transfer sizing: never more than the live allowance or balance
- Grant verification: verified iff delegate matches and allowance > 0
- Transfer planning: instruction amount matches the recorded result
- Lifecycle edges: monotonic, terminal states absorbing
- Environment expansion: text without references passes through
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from approval_config.loader import expand_env
from approval_kernel.domain.types import (
    GrantLine,
    GrantTransferStatus,
    LifecycleState,
    is_allowed_transition,
)
from approval_batch.services.transfer_executor import plan_grant, transfer_amount
from approval_batch.services.verifier import check_grant
from tests.conftest import DELEGATE, DESTINATION, MINT_USDC, FakeLedgerGateway

U64 = st.integers(min_value=0, max_value=2**64 - 1)
DELEGATES = st.sampled_from([DELEGATE, "0therWa11et1111111111111111111111111111111", None])

_ORDER = {
    LifecycleState.SUBMITTED: 0,
    LifecycleState.VERIFIED: 1,
    LifecycleState.VERIFICATION_FAILED: 1,
    LifecycleState.TRANSFERRED: 2,
    LifecycleState.TRANSFER_FAILED: 2,
}


class TestTransferSizing:
    @given(delegated=U64, balance=U64)
    @settings(max_examples=300)
    def test_bounded_by_allowance_and_balance(self, delegated, balance):
        amount = transfer_amount(delegated, balance)
        assert 0 <= amount <= delegated
        assert amount <= balance
        assert amount in (delegated, balance)

    @given(delegated=st.integers(), balance=st.integers())
    @settings(max_examples=300)
    def test_never_negative(self, delegated, balance):
        assert transfer_amount(delegated, balance) >= 0


class TestGrantDecisions:
    @given(delegate=DELEGATES, delegated=U64, claimed=U64)
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_verification_rule(self, delegate, delegated, claimed):
        ledger = FakeLedgerGateway()
        ledger.add_account("token-A", delegate=delegate, delegated_amount=delegated)

        result = check_grant(ledger, GrantLine("token-A", MINT_USDC, claimed, 6), DELEGATE)

        assert result.verified == (delegate == DELEGATE and delegated > 0)
        if not result.verified:
            assert result.reason

    @given(delegate=DELEGATES, delegated=U64, balance=U64)
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_plan_matches_instruction(self, delegate, delegated, balance):
        ledger = FakeLedgerGateway()
        ledger.add_account(
            "token-A", delegate=delegate, delegated_amount=delegated, balance=balance,
        )
        ledger.add_receiving(MINT_USDC, DESTINATION)

        plan = plan_grant(ledger, GrantLine("token-A", MINT_USDC, 1, 6), DELEGATE, DESTINATION)

        if plan.instruction is None:
            assert plan.result.status == GrantTransferStatus.REJECTED
            assert plan.result.amount is None
        else:
            assert plan.result.status == GrantTransferStatus.PLANNED
            assert plan.instruction.amount == plan.result.amount > 0
            assert plan.instruction.amount <= min(delegated, balance)
            assert plan.instruction.authority == DELEGATE


class TestLifecycleEdges:
    @given(
        src=st.sampled_from(list(LifecycleState)),
        dst=st.sampled_from(list(LifecycleState)),
    )
    def test_edges_only_move_forward(self, src, dst):
        if is_allowed_transition(src, dst):
            assert _ORDER[dst] == _ORDER[src] + 1
            assert not src.is_terminal

    @given(dst=st.sampled_from(list(LifecycleState)))
    def test_terminal_states_absorb(self, dst):
        for src in LifecycleState:
            if src.is_terminal:
                assert not is_allowed_transition(src, dst)


class TestEnvExpansion:
    @given(text=st.text().filter(lambda t: "${" not in t))
    def test_plain_text_unchanged(self, text):
        assert expand_env(text, {"ANY": "value"}) == text
