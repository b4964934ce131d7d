"""
Tier registry for TierStake.

A tier is a named staking plan: lock duration, base yield (bps/year),
premium bonus, per-user min/max stake and a tier-wide capacity.  Tier ids
are 1-based and sequential; a new tier always takes ``total_tiers + 1``.

The registry also carries the running ``total_staked`` and
``stakers_count`` of every tier.  Those two fields are only ever written by
the stake ledger inside a committed transaction; everything else is written
by the admin console.  Editing a tier's rate never touches existing stakes,
which captured their effective rate when they were opened.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from tierstake_core.errors import InvalidTier, TierNotActive, ValidationError
from tierstake_core.precision import BPS_DENOMINATOR, SECONDS_PER_DAY, to_units

# Highest premium bonus a tier may grant on top of its base rate.
MAX_PREMIUM_BONUS_BPS: int = 1_000


@dataclass
class Tier:
    tier_id: int
    lock_duration: int          # seconds
    reward_rate: int            # bps of principal per year
    min_stake: int              # units, per stake
    max_stake: int              # units, per user within this tier
    tier_cap: int               # units, across all users
    active: bool = True
    name: str = ""
    premium_bonus: int = 0      # bps added for premium users
    total_staked: int = 0
    stakers_count: int = 0

    @property
    def lock_days(self) -> int:
        return self.lock_duration // SECONDS_PER_DAY

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.tier_cap - self.total_staked)

    def effective_rate(self, premium: bool) -> int:
        return self.reward_rate + (self.premium_bonus if premium else 0)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["lock_days"] = self.lock_days
        d["reward_rate_pct"] = f"{self.reward_rate / 100:.2f}%"
        return d


# (name, lock days, rate bps, premium bonus bps, min, max, cap) in whole tokens
DEFAULT_TIERS: list[tuple[str, int, int, int, int, int, int]] = [
    ("Bronze",   30,   800, 200,  1_000,  1_000_000,  50_000_000),
    ("Silver",   90, 1_200, 300,  5_000,  2_000_000, 100_000_000),
    ("Gold",    180, 1_800, 400, 10_000,  5_000_000, 150_000_000),
    ("Diamond", 365, 2_500, 500, 25_000, 10_000_000, 200_000_000),
]


def default_tiers() -> list[Tier]:
    return [
        Tier(
            tier_id=i,
            lock_duration=days * SECONDS_PER_DAY,
            reward_rate=rate,
            min_stake=to_units(lo),
            max_stake=to_units(hi),
            tier_cap=to_units(cap),
            name=name,
            premium_bonus=bonus,
        )
        for i, (name, days, rate, bonus, lo, hi, cap) in enumerate(DEFAULT_TIERS, start=1)
    ]


def _validate_params(
    lock_duration: int,
    reward_rate: int,
    min_stake: int,
    max_stake: int,
    tier_cap: int,
    name: str,
) -> None:
    if lock_duration < 0:
        raise ValidationError("lock duration must be non-negative",
                              field="lock_duration", actual=lock_duration)
    if not 0 <= reward_rate <= BPS_DENOMINATOR:
        raise ValidationError("reward rate out of range", field="reward_rate",
                              actual=reward_rate, maximum=BPS_DENOMINATOR)
    if min_stake <= 0 or min_stake > max_stake:
        raise ValidationError("require 0 < min_stake <= max_stake",
                              min_stake=min_stake, max_stake=max_stake)
    if tier_cap <= 0:
        raise ValidationError("tier cap must be positive", field="tier_cap",
                              actual=tier_cap)
    if not name or not name.strip():
        raise ValidationError("tier name required", field="name")


class TierRegistry:
    """Numbered tiers plus their running totals."""

    def __init__(self, tiers: list[Tier] | None = None) -> None:
        self.tiers: dict[int, Tier] = {}
        for tier in tiers or []:
            if tier.tier_id != len(self.tiers) + 1:
                raise InvalidTier(tier.tier_id, len(self.tiers))
            self.tiers[tier.tier_id] = tier

    @property
    def total_tiers(self) -> int:
        return len(self.tiers)

    # ── lookups ─────────────────────────────────────────────────────

    def get_tier(self, tier_id: int) -> Tier:
        if isinstance(tier_id, bool) or not isinstance(tier_id, int):
            raise InvalidTier(tier_id, self.total_tiers)
        tier = self.tiers.get(tier_id)
        if tier is None:
            raise InvalidTier(tier_id, self.total_tiers)
        return tier

    def get_active_tier(self, tier_id: int) -> Tier:
        tier = self.get_tier(tier_id)
        if not tier.active:
            raise TierNotActive(tier_id)
        return tier

    def list_tiers(self) -> list[Tier]:
        return [self.tiers[i] for i in sorted(self.tiers)]

    def sum_total_staked(self) -> int:
        return sum(t.total_staked for t in self.tiers.values())

    # ── configuration ───────────────────────────────────────────────

    def define_tier(
        self,
        tier_id: int,
        lock_duration: int,
        reward_rate: int,
        min_stake: int,
        max_stake: int,
        tier_cap: int,
        active: bool,
        name: str,
    ) -> Tier:
        """Update an existing tier, or append one when ``tier_id`` is next."""
        if tier_id == self.total_tiers + 1:
            return self.add_tier(lock_duration, reward_rate, min_stake,
                                 max_stake, tier_cap, name, active=active)
        return self.update_tier(tier_id, lock_duration, reward_rate, min_stake,
                                max_stake, tier_cap, active, name)

    def update_tier(
        self,
        tier_id: int,
        lock_duration: int,
        reward_rate: int,
        min_stake: int,
        max_stake: int,
        tier_cap: int,
        active: bool,
        name: str,
    ) -> Tier:
        tier = self.get_tier(tier_id)
        _validate_params(lock_duration, reward_rate, min_stake, max_stake,
                         tier_cap, name)
        if tier_cap < tier.total_staked:
            raise ValidationError(
                "tier cap below already staked total",
                tier_id=tier_id, required=tier.total_staked, actual=tier_cap,
            )
        tier.lock_duration = lock_duration
        tier.reward_rate = reward_rate
        tier.min_stake = min_stake
        tier.max_stake = max_stake
        tier.tier_cap = tier_cap
        tier.active = bool(active)
        tier.name = name
        return tier

    def add_tier(
        self,
        lock_duration: int,
        reward_rate: int,
        min_stake: int,
        max_stake: int,
        tier_cap: int,
        name: str,
        active: bool = True,
        premium_bonus: int = 0,
    ) -> Tier:
        _validate_params(lock_duration, reward_rate, min_stake, max_stake,
                         tier_cap, name)
        self._check_bonus(premium_bonus)
        tier = Tier(
            tier_id=self.total_tiers + 1,
            lock_duration=lock_duration,
            reward_rate=reward_rate,
            min_stake=min_stake,
            max_stake=max_stake,
            tier_cap=tier_cap,
            active=bool(active),
            name=name,
            premium_bonus=premium_bonus,
        )
        self.tiers[tier.tier_id] = tier
        return tier

    def set_premium_bonus(self, tier_id: int, bonus: int) -> Tier:
        tier = self.get_tier(tier_id)
        self._check_bonus(bonus)
        tier.premium_bonus = bonus
        return tier

    @staticmethod
    def _check_bonus(bonus: int) -> None:
        if not 0 <= bonus <= MAX_PREMIUM_BONUS_BPS:
            raise ValidationError("premium bonus out of range", field="premium_bonus",
                                  actual=bonus, maximum=MAX_PREMIUM_BONUS_BPS)
