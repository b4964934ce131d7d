"""
Shared pytest fixtures for the TierStake test suite.
"""

import pytest

from tierstake_core.engine import StakingEngine
from tierstake_core.precision import SECONDS_PER_DAY, to_units
from tierstake_core.token import InMemoryToken

OWNER = "tsOwner"
ALICE = "tsAlice"
BOB = "tsBob"
CAROL = "tsCarol"

T0 = 1_700_000_000
DAY = SECONDS_PER_DAY

# custody holds this much on top of staked principal for reward payouts
REWARD_RESERVE = to_units(100_000)


class FakeClock:
    """Manually advanced clock for the transaction boundary."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    """Token with funded users and a reward reserve in custody."""
    t = InMemoryToken({
        ALICE: to_units(2_000_000),
        BOB: to_units(2_000_000),
        CAROL: to_units(50_000),
    })
    t.mint(t.custody, REWARD_RESERVE)
    return t


@pytest.fixture
def engine(token, clock):
    """Engine over the default Bronze/Silver/Gold/Diamond tiers."""
    return StakingEngine.create(OWNER, token=token, clock=clock)


@pytest.fixture
def controller(engine):
    return engine.controller


@pytest.fixture
def admin(engine):
    return engine.admin


@pytest.fixture
def queries(engine):
    return engine.queries
