"""
Tests for tierstake_core.invariants — ledger consistency checks.
"""

import pytest

from conftest import ALICE, BOB, DAY, OWNER, T0
from tierstake_core.errors import ErrorKind, InvariantViolation
from tierstake_core.invariants import InvariantChecker
from tierstake_core.precision import to_units
from tierstake_core.state import LedgerState
from tierstake_core.token import InMemoryToken


@pytest.fixture
def state():
    st = LedgerState.create(OWNER)
    for user, tier_id, tokens in ((ALICE, 1, 1_000), (ALICE, 2, 5_000), (BOB, 2, 5_000)):
        tier = st.tiers.get_tier(tier_id)
        st.ledger.open_stake(user, tier, to_units(tokens), tier.reward_rate, T0)
    return st


@pytest.fixture
def checker(state):
    c = InvariantChecker()
    c.capture(state)
    state.ledger.begin_changes()
    return c


class TestConsistentState:
    def test_passes(self, state, checker):
        assert checker.verify(state, T0) == (True, "")

    def test_without_capture(self, state):
        assert InvariantChecker().verify(state, T0)[0]

    def test_custody_covers_principal(self, state, checker):
        token = InMemoryToken()
        token.mint(token.custody, to_units(11_000))
        assert checker.verify(state, T0, token)[0]


class TestViolations:
    def test_tier_total_drift(self, state, checker):
        state.tiers.get_tier(2).total_staked += 1
        ok, msg = checker.verify(state, T0)
        assert not ok
        assert "Tier 2" in msg

    def test_global_total_drift(self, state, checker):
        state.ledger.totals.total_staked -= 1
        ok, msg = checker.verify(state, T0)
        assert not ok and "Global" in msg

    def test_user_total_drift(self, state, checker):
        state.ledger.touch_account(ALICE)
        state.ledger.accounts[ALICE].total_staked += 1
        ok, msg = checker.verify(state, T0)
        assert not ok and ALICE in msg

    def test_stakers_count_drift(self, state, checker):
        state.tiers.get_tier(2).stakers_count = 1
        ok, msg = checker.verify(state, T0)
        assert not ok and "stakers_count" in msg

    def test_rate_changed(self, state, checker):
        state.ledger.touch_stake(state.ledger.stakes[0])
        state.ledger.stakes[0].reward_rate = 9_999
        ok, msg = checker.verify(state, T0)
        assert not ok and "reward_rate changed" in msg

    def test_settlement_in_future(self, state, checker):
        state.ledger.touch_stake(state.ledger.stakes[0])
        state.ledger.stakes[0].last_settlement = T0 + 10
        ok, msg = checker.verify(state, T0)
        assert not ok and "future" in msg

    def test_settlement_decreased(self, state, checker):
        state.ledger.touch_stake(state.ledger.stakes[1])
        state.ledger.stakes[1].last_settlement = T0 - 1
        ok, msg = checker.verify(state, T0)
        assert not ok and "decreased" in msg

    def test_closed_stake_modified(self, state):
        stake = state.ledger.stakes[0]
        state.ledger.mutate_on_close(stake, state.tiers.get_tier(1), T0)
        checker = InvariantChecker()
        checker.capture(state)
        state.ledger.begin_changes()
        state.ledger.touch_stake(stake)
        stake.rewards_claimed = 5
        ok, msg = checker.verify(state, T0)
        assert not ok and "Closed stake #0" in msg

    def test_emergency_fee_bounds(self, state, checker):
        state.params.emergency_fee_bps = 6_000
        ok, msg = checker.verify(state, T0)
        assert not ok and "Emergency fee" in msg

    def test_premium_roster_bound(self, state, checker):
        state.params.max_premium_users = 0
        state.premium.members[ALICE] = T0
        assert not checker.verify(state, T0)[0]

    def test_custody_shortfall(self, state, checker):
        token = InMemoryToken()
        token.mint(token.custody, to_units(10_999))
        ok, msg = checker.verify(state, T0, token)
        assert not ok and "Custody" in msg

    def test_all_errors_reported(self, state, checker):
        state.params.emergency_fee_bps = 1
        state.ledger.touch_stake(state.ledger.stakes[0])
        state.ledger.stakes[0].reward_rate = 1
        ok, msg = checker.verify(state, T0)
        assert not ok
        assert len(msg.split("; ")) == 2


class TestBoundaryEnforcement:
    def test_corruption_rolls_back(self, engine, controller):
        controller.stake(ALICE, to_units(1_000), 1)
        with pytest.raises(InvariantViolation) as exc:
            with engine.boundary.begin(T0 + DAY, "corrupt"):
                engine.state.tiers.get_tier(1).total_staked += 7
        assert exc.value.kind is ErrorKind.INVARIANT
        assert engine.state.tiers.get_tier(1).total_staked == to_units(1_000)
        assert engine.state.last_time == T0

    def test_commit_keeps_checks_to_touched_records(self, engine, controller):
        for user in (ALICE, BOB):
            controller.stake(user, to_units(1_000), 1)
        seen = {}
        verify = engine.boundary.checker.verify

        def spy(state, now, token=None):
            seen["stakes"] = dict(state.ledger.changes.stakes)
            seen["accounts"] = set(state.ledger.changes.accounts)
            return verify(state, now, token)

        engine.boundary.checker.verify = spy
        controller.claim(ALICE, 0, now=T0 + 2 * DAY)
        assert list(seen["stakes"]) == [0]
        assert seen["accounts"] == {ALICE}
        assert engine.state.ledger.changes is None


class TestFullAudit:
    def test_untouched_corruption_found_without_baseline(self, state, checker):
        state.ledger.accounts[ALICE].total_staked += 1
        assert checker.verify(state, T0) == (True, "")
        ok, msg = InvariantChecker().verify(state, T0)
        assert not ok and ALICE in msg

    def test_per_tier_counts(self, state):
        state.ledger.accounts[BOB].tier_active[2] = 2
        ok, msg = InvariantChecker().verify(state, T0)
        assert not ok and "per-tier" in msg
