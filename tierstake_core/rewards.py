"""
Reward accrual for TierStake.

Pure functions only: nothing here mutates a stake.  Query paths and the
lifecycle controller call the same code, so what a user sees as "pending"
is exactly what a claim will settle.

Accrual formula
───────────────
    annual  = amount × rate_bps // 10_000
    reward  = annual × elapsed // SECONDS_PER_YEAR

    elapsed = now − max(last_settlement, reward_start)

The annual figure is computed first and the time fraction applied second,
each step multiplying before dividing and flooring.  This ordering must be
kept bit-for-bit: the numbers it produces are the ledger's numbers.  The
year is a fixed 365 days.

Python ints never overflow, so the wide intermediate products are exact;
results are narrowed against the 256-bit ceiling before being returned.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tierstake_core.errors import PrecisionError
from tierstake_core.precision import (
    BPS_DENOMINATOR,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    mul_div,
    narrow,
)

if TYPE_CHECKING:
    from tierstake_core.stake_ledger import Stake


def annual_reward(amount: int, rate_bps: int) -> int:
    """Reward a principal earns over one full 365-day year."""
    return mul_div(amount, rate_bps, BPS_DENOMINATOR)


def reward_for_period(amount: int, rate_bps: int, seconds: int) -> int:
    """Reward accrued by *amount* at *rate_bps* over *seconds*."""
    if seconds <= 0:
        return 0
    return mul_div(annual_reward(amount, rate_bps), seconds, SECONDS_PER_YEAR)


def accrual_start(stake: Stake, reward_start: int = 0) -> int:
    return max(stake.last_settlement, reward_start)


def pending_reward(stake: Stake, now: int, reward_start: int = 0) -> int:
    """Currently releasable reward of *stake* at time *now*.

    Inactive stakes and zero-length windows yield 0.  Rewards never accrue
    before ``reward_start``.
    """
    if not stake.is_active:
        return 0
    elapsed = now - accrual_start(stake, reward_start)
    if elapsed <= 0:
        return 0
    return reward_for_period(stake.amount, stake.reward_rate, elapsed)


def projected_reward(amount: int, rate_bps: int, days: int) -> int:
    """Reward for a hypothetical stake held for *days* whole days."""
    return reward_for_period(amount, rate_bps, days * SECONDS_PER_DAY)


def bps_of(amount: int, bps: int) -> int:
    """``amount × bps // 10_000`` (fees and bonuses)."""
    return mul_div(amount, bps, BPS_DENOMINATOR)


def require_accruing(amount: int, rate_bps: int) -> int:
    """Reject a nonzero stake whose yearly reward truncates to zero."""
    annual = annual_reward(amount, rate_bps)
    if amount > 0 and rate_bps > 0 and annual == 0:
        raise PrecisionError(
            "stake too small to accrue any reward",
            amount=amount, rate_bps=rate_bps,
            minimum=-(-BPS_DENOMINATOR // rate_bps),
        )
    return annual


def reward_per_second(pool: int, duration: int) -> int:
    """Amortised pool emission rate; a nonzero pool must not floor to 0."""
    if duration <= 0:
        raise PrecisionError("reward pool duration must be positive",
                             duration=duration)
    rate = narrow(pool // duration, "reward_per_second")
    if pool > 0 and rate == 0:
        raise PrecisionError(
            "reward pool too small for its duration",
            pool=pool, duration=duration,
        )
    return rate
