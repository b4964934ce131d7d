"""
Tests for tierstake_core.tiers — tier definitions and the registry.

Covers:
  - Default Bronze/Silver/Gold/Diamond parameters
  - Lookup of unknown, non-integer and inactive tiers
  - Parameter validation on add / update
  - Capacity floor on update, sequential append via define_tier
  - Premium bonus bounds and effective rate
"""

import pytest

from tierstake_core.errors import InvalidTier, TierNotActive, ValidationError
from tierstake_core.precision import SECONDS_PER_DAY, to_units
from tierstake_core.tiers import (
    MAX_PREMIUM_BONUS_BPS,
    Tier,
    TierRegistry,
    default_tiers,
)


@pytest.fixture
def registry():
    return TierRegistry(default_tiers())


class TestDefaultTiers:
    def test_four_tiers(self, registry):
        assert registry.total_tiers == 4
        assert [t.name for t in registry.list_tiers()] == ["Bronze", "Silver", "Gold", "Diamond"]

    def test_bronze(self, registry):
        t = registry.get_tier(1)
        assert t.lock_days == 30
        assert t.reward_rate == 800
        assert t.premium_bonus == 200
        assert t.min_stake == to_units(1_000)
        assert t.max_stake == to_units(1_000_000)
        assert t.tier_cap == to_units(50_000_000)

    def test_diamond(self, registry):
        t = registry.get_tier(4)
        assert t.lock_duration == 365 * SECONDS_PER_DAY
        assert t.reward_rate == 2_500
        assert t.effective_rate(premium=True) == 3_000

    def test_rates_increase_with_lock(self, registry):
        rates = [t.reward_rate for t in registry.list_tiers()]
        assert rates == sorted(rates)

    def test_to_dict(self, registry):
        d = registry.get_tier(2).to_dict()
        assert d["name"] == "Silver"
        assert d["lock_days"] == 90
        assert d["reward_rate_pct"] == "12.00%"


class TestLookup:
    @pytest.mark.parametrize("bad", [0, 5, -1, "1", 1.0, True, None])
    def test_invalid_ids(self, registry, bad):
        with pytest.raises(InvalidTier):
            registry.get_tier(bad)

    def test_inactive_tier(self, registry):
        t = registry.get_tier(3)
        registry.update_tier(3, t.lock_duration, t.reward_rate, t.min_stake,
                             t.max_stake, t.tier_cap, False, t.name)
        assert registry.get_tier(3).active is False
        with pytest.raises(TierNotActive):
            registry.get_active_tier(3)

    def test_ids_must_be_sequential(self):
        t = default_tiers()[1]  # tier_id 2
        with pytest.raises(InvalidTier):
            TierRegistry([t])


class TestAddAndUpdate:
    def test_add_appends_next_id(self, registry):
        t = registry.add_tier(7 * SECONDS_PER_DAY, 500, to_units(10), to_units(100),
                              to_units(1_000), "Weekly")
        assert t.tier_id == 5
        assert registry.total_tiers == 5
        assert t.active is True

    def test_define_tier_appends_when_next(self, registry):
        t = registry.define_tier(5, 0, 100, 1, 10, 100, True, "Flexible")
        assert t.tier_id == 5 and t.name == "Flexible"

    def test_define_tier_rejects_gap(self, registry):
        with pytest.raises(InvalidTier):
            registry.define_tier(7, 0, 100, 1, 10, 100, True, "Gap")

    @pytest.mark.parametrize("kwargs", [
        dict(lock_duration=-1),
        dict(reward_rate=10_001),
        dict(reward_rate=-1),
        dict(min_stake=0),
        dict(min_stake=200, max_stake=100),
        dict(tier_cap=0),
        dict(name=""),
        dict(name="   "),
    ])
    def test_validation(self, registry, kwargs):
        params = dict(lock_duration=0, reward_rate=100, min_stake=1, max_stake=100,
                      tier_cap=1_000, name="X")
        params.update(kwargs)
        with pytest.raises(ValidationError):
            registry.add_tier(**params)
        assert registry.total_tiers == 4

    def test_full_rate_allowed(self, registry):
        t = registry.add_tier(0, 10_000, 1, 10, 100, "Max")
        assert t.reward_rate == 10_000

    def test_cap_cannot_drop_below_staked(self, registry):
        t = registry.get_tier(1)
        t.total_staked = to_units(5_000)
        with pytest.raises(ValidationError):
            registry.update_tier(1, t.lock_duration, t.reward_rate, t.min_stake,
                                 t.max_stake, to_units(4_999), True, t.name)
        updated = registry.update_tier(1, t.lock_duration, t.reward_rate, t.min_stake,
                                       t.max_stake, to_units(5_000), True, t.name)
        assert updated.tier_cap == to_units(5_000)

    def test_update_keeps_running_totals(self, registry):
        t = registry.get_tier(2)
        t.total_staked, t.stakers_count = 42, 3
        registry.update_tier(2, 0, 1_500, 1, 10, 100, True, "Silver+")
        assert (t.total_staked, t.stakers_count) == (42, 3)
        assert t.reward_rate == 1_500 and t.name == "Silver+"

    def test_remaining_capacity(self):
        t = Tier(1, 0, 100, 1, 10, tier_cap=100, total_staked=60)
        assert t.remaining_capacity == 40


class TestPremiumBonus:
    def test_set_bonus(self, registry):
        registry.set_premium_bonus(1, 700)
        assert registry.get_tier(1).effective_rate(True) == 1_500
        assert registry.get_tier(1).effective_rate(False) == 800

    def test_bonus_ceiling(self, registry):
        registry.set_premium_bonus(1, MAX_PREMIUM_BONUS_BPS)
        with pytest.raises(ValidationError):
            registry.set_premium_bonus(1, MAX_PREMIUM_BONUS_BPS + 1)

    def test_bonus_unknown_tier(self, registry):
        with pytest.raises(InvalidTier):
            registry.set_premium_bonus(9, 100)
