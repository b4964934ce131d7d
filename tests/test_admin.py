"""
Tests for tierstake_core.admin — owner-only administration.
"""

import logging

import pytest

from conftest import ALICE, BOB, CAROL, DAY, OWNER, REWARD_RESERVE, T0
from tierstake_core.errors import (
    AuthorizationError,
    ErrorKind,
    ExternalTransferError,
    InsufficientRewardPool,
    InvalidTier,
    PrecisionError,
    PremiumRosterFull,
    ValidationError,
)
from tierstake_core.events import EventType
from tierstake_core.precision import SECONDS_PER_YEAR, to_units


def _tier_args(admin, tier_id, **overrides):
    tier = admin.state.tiers.get_tier(tier_id)
    args = dict(
        lock_duration=tier.lock_duration, reward_rate=tier.reward_rate,
        min_stake=tier.min_stake, max_stake=tier.max_stake, tier_cap=tier.tier_cap,
        active=tier.active, name=tier.name,
    )
    args.update(overrides)
    return args


class TestAuthorization:
    @pytest.mark.parametrize("call", [
        lambda a: a.pause(ALICE),
        lambda a: a.set_emergency_fee(ALICE, 1_000),
        lambda a: a.set_compound_fee(ALICE, 50),
        lambda a: a.set_claim_cooldown(ALICE, 0),
        lambda a: a.set_premium_user(ALICE, ALICE, True),
        lambda a: a.add_tier(ALICE, 0, 100, 1, 10, 100, "Mine"),
        lambda a: a.set_premium_bonus(ALICE, 1, 0),
        lambda a: a.set_reward_pool(ALICE, to_units(1), 1),
        lambda a: a.emergency_withdraw_rewards(ALICE, to_units(1)),
        lambda a: a.transfer_ownership(ALICE, ALICE),
    ])
    def test_non_owner_rejected(self, admin, engine, call):
        params_before = engine.state.params.to_dict()
        with pytest.raises(AuthorizationError) as exc:
            call(admin)
        assert exc.value.kind is ErrorKind.AUTHORIZATION
        assert exc.value.code == "OwnableUnauthorizedAccount"
        assert engine.state.params.to_dict() == params_before
        assert engine.state.tiers.total_tiers == 4
        assert len(engine.audit) == 0


class TestTierAdministration:
    def test_update_tier(self, admin, engine):
        admin.update_tier(OWNER, 2, **_tier_args(admin, 2, reward_rate=1_500, name="Silver+"))
        tier = engine.state.tiers.get_tier(2)
        assert tier.reward_rate == 1_500 and tier.name == "Silver+"
        ev = engine.audit.events[-1]
        assert ev.event_type is EventType.TIER_UPDATED
        assert ev.data["reward_rate"] == 1_500

    def test_update_next_id_appends(self, admin, engine):
        tier = admin.update_tier(OWNER, 5, 0, 300, 1, to_units(10), to_units(100), True, "Flex")
        assert tier.tier_id == 5
        assert engine.audit.events[-1].event_type is EventType.TIER_ADDED

    def test_update_unknown_tier(self, admin):
        with pytest.raises(InvalidTier):
            admin.update_tier(OWNER, 9, 0, 300, 1, 10, 100, True, "Nope")

    def test_rate_change_spares_existing_stakes(self, admin, controller):
        s = controller.stake(ALICE, to_units(1_000), 1)
        admin.update_tier(OWNER, 1, **_tier_args(admin, 1, reward_rate=5_000))
        assert s.reward_rate == 800
        assert controller.stake(BOB, to_units(1_000), 1).reward_rate == 5_000

    def test_cap_below_staked_rejected(self, admin, controller, engine):
        controller.stake(ALICE, to_units(5_000), 1)
        with pytest.raises(ValidationError):
            admin.update_tier(OWNER, 1, **_tier_args(admin, 1, tier_cap=to_units(4_000)))
        assert engine.state.tiers.get_tier(1).tier_cap == to_units(50_000_000)

    def test_add_tier(self, admin, engine):
        tier = admin.add_tier(OWNER, 14 * DAY, 600, to_units(100), to_units(1_000),
                              to_units(10_000), "Fortnight", premium_bonus=150)
        assert tier.tier_id == 5
        assert tier.effective_rate(True) == 750
        assert engine.audit.events[-1].data["name"] == "Fortnight"

    def test_add_tier_validation(self, admin):
        with pytest.raises(ValidationError):
            admin.add_tier(OWNER, 0, 10_001, 1, 10, 100, "Too rich")

    def test_premium_bonus(self, admin, engine):
        admin.set_premium_bonus(OWNER, 1, 1_000)
        assert engine.state.tiers.get_tier(1).premium_bonus == 1_000
        with pytest.raises(ValidationError):
            admin.set_premium_bonus(OWNER, 1, 1_001)
        assert engine.audit.events[-1].event_type is EventType.PREMIUM_BONUS_UPDATED


class TestPremiumRoster:
    def test_grant_and_revoke(self, admin, engine):
        assert admin.set_premium_user(OWNER, ALICE, True) is True
        assert engine.state.premium.joined_at(ALICE) == T0
        assert admin.set_premium_user(OWNER, ALICE, True) is False
        assert admin.set_premium_user(OWNER, ALICE, False) is True
        assert not engine.state.premium.is_premium(ALICE)

    def test_roster_limit(self, admin):
        admin.set_max_premium_users(OWNER, 2)
        admin.set_premium_user(OWNER, ALICE, True)
        admin.set_premium_user(OWNER, BOB, True)
        with pytest.raises(PremiumRosterFull):
            admin.set_premium_user(OWNER, CAROL, True)

    def test_limit_below_roster_rejected(self, admin):
        admin.set_premium_user(OWNER, ALICE, True)
        admin.set_premium_user(OWNER, BOB, True)
        with pytest.raises(ValidationError):
            admin.set_max_premium_users(OWNER, 1)


class TestFeesAndLimits:
    @pytest.mark.parametrize("fee, message", [(5_001, "Fee too high"), (499, "Fee too low")])
    def test_emergency_fee_bounds(self, admin, engine, fee, message):
        with pytest.raises(ValidationError, match=message):
            admin.set_emergency_fee(OWNER, fee)
        assert engine.state.params.emergency_fee_bps == 2_000

    @pytest.mark.parametrize("fee", [500, 5_000])
    def test_emergency_fee_edges(self, admin, engine, fee):
        admin.set_emergency_fee(OWNER, fee)
        assert engine.state.params.emergency_fee_bps == fee
        ev = engine.audit.events[-1]
        assert ev.event_type is EventType.PARAMETER_UPDATED
        assert ev.data == {"parameter": "emergency_fee_bps", "old": 2_000, "new": fee}

    def test_compound_fee(self, admin, engine):
        admin.set_compound_fee(OWNER, 0)
        admin.set_compound_fee(OWNER, 1_000)
        with pytest.raises(ValidationError):
            admin.set_compound_fee(OWNER, 1_001)
        assert engine.state.params.compound_fee_bps == 1_000

    def test_max_stakes_per_user(self, admin, controller, engine):
        controller.stake(ALICE, to_units(1_000), 1)
        controller.stake(ALICE, to_units(1_000), 1)
        with pytest.raises(ValidationError):
            admin.set_max_stakes_per_user(OWNER, 1)
        with pytest.raises(ValidationError):
            admin.set_max_stakes_per_user(OWNER, 0)
        admin.set_max_stakes_per_user(OWNER, 2)
        assert engine.state.params.max_stakes_per_user == 2

    @pytest.mark.parametrize("value", [-1, True, 1.5])
    def test_non_integer_parameters(self, admin, value):
        with pytest.raises(ValidationError):
            admin.set_claim_cooldown(OWNER, value)

    def test_cooldown_and_min_compound(self, admin, engine):
        admin.set_claim_cooldown(OWNER, 0)
        admin.set_min_compound_amount(OWNER, to_units(5))
        assert engine.state.params.claim_cooldown == 0
        assert engine.state.params.min_compound_amount == to_units(5)

    def test_zero_cooldown_allows_back_to_back_claims(self, admin, controller):
        admin.set_claim_cooldown(OWNER, 0)
        controller.stake(ALICE, to_units(10_000), 2)
        controller.claim(ALICE, 0, now=T0 + DAY)
        assert controller.claim(ALICE, 0, now=T0 + DAY + 60).reward > 0


class TestRewardPool:
    def test_set_pool(self, admin, engine):
        rate = admin.set_reward_pool(OWNER, to_units(3_153_600), SECONDS_PER_YEAR)
        assert rate == to_units("0.1")
        params = engine.state.params
        assert params.reward_pool == to_units(3_153_600)
        assert params.reward_per_second == rate
        assert engine.audit.events[-1].event_type is EventType.REWARD_POOL_UPDATED

    def test_pool_rate_floors_to_zero(self, admin, engine):
        with pytest.raises(PrecisionError):
            admin.set_reward_pool(OWNER, 10, 100)
        assert engine.state.params.reward_pool == 0

    def test_withdraw_surplus(self, admin, controller, token, caplog):
        controller.stake(ALICE, to_units(10_000), 1)
        with caplog.at_level(logging.WARNING, logger="tierstake_admin"):
            admin.emergency_withdraw_rewards(OWNER, to_units(40_000))
        assert "Owner withdrew 40000.0000 TOKEN" in caplog.text
        assert token.balance_of(OWNER) == to_units(40_000)
        assert token.balance_of(token.custody) == REWARD_RESERVE - to_units(40_000) + to_units(10_000)

    def test_withdraw_cannot_touch_principal(self, admin, controller, token):
        controller.stake(ALICE, to_units(10_000), 1)
        with pytest.raises(InsufficientRewardPool) as exc:
            admin.emergency_withdraw_rewards(OWNER, REWARD_RESERVE + 1)
        assert exc.value.context["available"] == REWARD_RESERVE
        admin.emergency_withdraw_rewards(OWNER, REWARD_RESERVE)
        assert token.balance_of(token.custody) == to_units(10_000)

    def test_withdraw_transfer_failure(self, admin, token, engine):
        token.fail_next(OWNER)
        with pytest.raises(ExternalTransferError):
            admin.emergency_withdraw_rewards(OWNER, to_units(1))
        assert token.balance_of(token.custody) == REWARD_RESERVE
        assert len(engine.audit) == 0


class TestPauseAndOwnership:
    def test_pause_twice(self, admin, engine):
        admin.pause(OWNER)
        assert engine.state.params.paused is True
        with pytest.raises(ValidationError):
            admin.pause(OWNER)
        admin.unpause(OWNER)
        with pytest.raises(ValidationError):
            admin.unpause(OWNER)
        kinds = [e.event_type for e in engine.audit.events]
        assert kinds == [EventType.PAUSED, EventType.UNPAUSED]

    def test_admin_works_while_paused(self, admin, engine):
        admin.pause(OWNER)
        admin.set_emergency_fee(OWNER, 1_000)
        assert engine.state.params.emergency_fee_bps == 1_000

    def test_two_step_transfer(self, admin, engine):
        admin.transfer_ownership(OWNER, ALICE)
        assert engine.owner == OWNER
        with pytest.raises(AuthorizationError):
            admin.accept_ownership(BOB)
        admin.accept_ownership(ALICE)
        assert engine.owner == ALICE
        assert engine.state.params.pending_owner == ""
        with pytest.raises(AuthorizationError):
            admin.pause(OWNER)
        admin.pause(ALICE)

    def test_accept_without_nomination(self, admin):
        with pytest.raises(AuthorizationError):
            admin.accept_ownership(ALICE)

    def test_empty_nominee(self, admin):
        with pytest.raises(ValidationError):
            admin.transfer_ownership(OWNER, "")

    def test_fees_follow_new_owner(self, admin, controller, token):
        admin.transfer_ownership(OWNER, CAROL)
        admin.accept_ownership(CAROL)
        controller.stake(ALICE, to_units(10_000), 3)
        controller.emergency_unstake(ALICE, 0)
        assert token.balance_of(CAROL) == to_units(52_000)
        assert token.balance_of(OWNER) == 0
