"""
Tests for tierstake_core.engine — wiring and construction from config.
"""

import pytest

from conftest import ALICE, DAY, OWNER, T0, FakeClock
from tierstake_core.config import TierStakeConfig
from tierstake_core.engine import (
    StakingEngine,
    build_engine,
    params_from_config,
    tiers_from_config,
    token_from_config,
)
from tierstake_core.errors import ValidationError
from tierstake_core.precision import SECONDS_PER_DAY, to_units
from tierstake_core.storage import AuditStore


def _config(**staking):
    cfg = TierStakeConfig()
    cfg.staking.owner = OWNER
    for k, v in staking.items():
        setattr(cfg.staking, k, v)
    return cfg


class TestStakingEngine:
    def test_shared_boundary(self, engine):
        assert engine.controller.boundary is engine.boundary
        assert engine.admin.boundary is engine.boundary
        assert engine.queries.boundary is engine.boundary
        assert engine.controller.audit is engine.audit

    def test_owner(self, engine):
        assert engine.owner == OWNER

    def test_status(self, engine, controller):
        controller.stake(ALICE, to_units(1_000), 1)
        status = engine.status()
        assert status["owner"] == OWNER
        assert status["last_time"] == T0
        assert status["audit_events"] == 1
        assert status["params"]["emergency_fee_bps"] == 2_000
        assert status["stats"]["total_staked"] == to_units(1_000)

    def test_default_token_is_empty(self, clock):
        engine = StakingEngine.create(OWNER, clock=clock)
        assert engine.token.balance_of(engine.token.custody) == 0

    def test_attach_store(self, engine, controller):
        store = AuditStore(":memory:")
        engine.attach_store(store)
        controller.stake(ALICE, to_units(1_000), 1)
        assert store.count() == 1
        engine.close()
        assert engine.store is None


class TestTiersFromConfig:
    def test_lock_days_and_tokens(self):
        reg = tiers_from_config([
            {"name": "Flex", "lock_days": 0, "reward_rate": 300,
             "min_stake": "0.5", "max_stake": 1_000, "tier_cap": 100_000},
            {"name": "Quarter", "lock_duration": 90 * SECONDS_PER_DAY, "reward_rate": 1_000,
             "min_stake": 10, "max_stake": 5_000, "tier_cap": 1e6, "premium_bonus": 100},
        ])
        flex, quarter = reg.list_tiers()
        assert flex.tier_id == 1 and flex.lock_duration == 0
        assert flex.min_stake == to_units("0.5")
        assert quarter.lock_days == 90
        assert quarter.tier_cap == to_units(1_000_000)
        assert quarter.premium_bonus == 100

    def test_invalid_definition(self):
        with pytest.raises(ValidationError):
            tiers_from_config([{"name": "Bad", "reward_rate": 100, "min_stake": 0,
                                "max_stake": 1, "tier_cap": 1}])


class TestParamsFromConfig:
    def test_values(self):
        params = params_from_config(_config(min_compound_amount="2.5", reward_pool=3_153_600,
                                            reward_pool_duration=365 * DAY), OWNER)
        assert params.owner == OWNER
        assert params.min_compound_amount == to_units("2.5")
        assert params.reward_per_second == to_units("0.1")

    @pytest.mark.parametrize("field, value", [
        ("emergency_fee_bps", 100),
        ("emergency_fee_bps", 9_000),
        ("compound_fee_bps", 2_000),
        ("max_stakes_per_user", 0),
    ])
    def test_rejects(self, field, value):
        with pytest.raises(ValidationError):
            params_from_config(_config(**{field: value}), OWNER)


class TestBuildEngine:
    def test_requires_owner(self):
        with pytest.raises(ValidationError):
            build_engine(TierStakeConfig())

    def test_token_from_config(self):
        cfg = _config()
        cfg.token.balances = {ALICE: 1_000.25}
        cfg.token.reward_reserve = "500"
        token = token_from_config(cfg)
        assert token.balance_of(ALICE) == to_units("1000.25")
        assert token.balance_of(token.custody) == to_units(500)

    def test_build(self):
        cfg = _config()
        cfg.token.balances = {ALICE: 10_000}
        cfg.tiers.definitions = [{"name": "Flex", "lock_days": 0, "reward_rate": 500,
                                  "min_stake": 1, "max_stake": 10_000, "tier_cap": 1e6}]
        engine = build_engine(cfg, clock=FakeClock())
        assert engine.state.tiers.total_tiers == 1
        stake = engine.controller.stake(ALICE, to_units(100), 1)
        assert engine.controller.unstake(ALICE, stake.index).payout == to_units(100)

    def test_build_with_storage(self, tmp_path):
        cfg = _config()
        cfg.storage.enabled = True
        cfg.storage.path = str(tmp_path / "audit.db")
        engine = build_engine(cfg, clock=FakeClock())
        engine.admin.pause(OWNER)
        assert engine.store.count() == 1
        engine.close()
