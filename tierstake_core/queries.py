"""
Read-only query interface for TierStake.

Nothing here mutates state or goes through the transaction boundary; every
figure is derived from the current ``LedgerState`` and the same reward
functions the controller settles with.  Each query holds the ledger lock
through ``TransactionBoundary.read()``, so it sees the state between
transactions, never a half-applied or rolled-back one.  Stake and tier
records are returned as copies.  Queries about unknown stakes return zeros
rather than raising, so dashboards can poll freely.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Optional

from tierstake_core.errors import InvalidTier, PrecisionError, StakingError
from tierstake_core.rewards import pending_reward, projected_reward, require_accruing
from tierstake_core.stake_ledger import Stake
from tierstake_core.state import LedgerState
from tierstake_core.tiers import Tier

if TYPE_CHECKING:
    from tierstake_core.atomic import TransactionBoundary


class StakingQueries:
    def __init__(self, boundary: TransactionBoundary) -> None:
        self.boundary = boundary

    @property
    def state(self) -> LedgerState:
        return self.boundary.state

    def _now(self, now: Optional[int]) -> int:
        return self.boundary.now(now)

    def _find(self, user: str, index: int) -> Optional[Stake]:
        try:
            return self.state.ledger.get_stake(user, index)
        except StakingError:
            return None

    # ── tiers ───────────────────────────────────────────────────────

    def get_tier(self, tier_id: int) -> Tier:
        with self.boundary.read() as st:
            return copy.copy(st.tiers.get_tier(tier_id))

    def list_tiers(self) -> list[Tier]:
        with self.boundary.read() as st:
            return [copy.copy(t) for t in st.tiers.list_tiers()]

    def get_tier_stats(self, tier_id: int) -> dict:
        with self.boundary.read() as st:
            tier = st.tiers.get_tier(tier_id)
            active = sum(1 for s in st.ledger.all_active() if s.tier_id == tier_id)
            return {
                "tier": tier.tier_id,
                "name": tier.name,
                "total_staked": tier.total_staked,
                "stakers_count": tier.stakers_count,
                "active_stakes": active,
                "average_stake": tier.total_staked // active if active else 0,
                "reward_rate": tier.reward_rate,
                "premium_bonus": tier.premium_bonus,
                "lock_duration": tier.lock_duration,
                "tier_cap": tier.tier_cap,
                "remaining_capacity": tier.remaining_capacity,
                "active": tier.active,
            }

    # ── stakes ──────────────────────────────────────────────────────

    def get_user_stakes(self, user: str) -> list[Stake]:
        with self.boundary.read() as st:
            return [copy.copy(s) for s in st.ledger.list_user_stakes(user)]

    def get_user_active_stakes(self, user: str) -> tuple[list[Stake], list[int]]:
        """Active stakes and their original indices."""
        with self.boundary.read() as st:
            active = [copy.copy(s) for s in st.ledger.active_stakes(user)]
        return active, [s.index for s in active]

    def get_stakes_by_tier(self, user: str, tier_id: int) -> tuple[list[int], list[int]]:
        """``(indices, amounts)`` of the user's active stakes in a tier."""
        with self.boundary.read() as st:
            active = [s for s in st.ledger.active_stakes(user) if s.tier_id == tier_id]
            return [s.index for s in active], [s.amount for s in active]

    def get_stake_details(self, user: str, index: int, now: Optional[int] = None) -> dict:
        now = self._now(now)
        with self.boundary.read() as st:
            stake = st.ledger.get_stake(user, index)
            tier = st.tiers.tiers.get(stake.tier_id)
            details = stake.to_dict()
            details.update({
                "tier_name": tier.name if tier else "",
                "pending_reward": pending_reward(stake, now, st.params.reward_start),
                "time_until_unlock": max(0, stake.unlock_time - now) if stake.is_active else 0,
                "can_unstake": stake.is_active and now >= stake.unlock_time,
            })
            return details

    # ── rewards ─────────────────────────────────────────────────────

    def pending_reward(self, user: str, index: int, now: Optional[int] = None) -> int:
        now = self._now(now)
        with self.boundary.read() as st:
            stake = self._find(user, index)
            if stake is None:
                return 0
            return pending_reward(stake, now, st.params.reward_start)

    def total_pending_rewards(self, user: str, now: Optional[int] = None) -> int:
        now = self._now(now)
        with self.boundary.read() as st:
            start = st.params.reward_start
            return sum(pending_reward(s, now, start) for s in st.ledger.active_stakes(user))

    def time_until_unlock(self, user: str, index: int, now: Optional[int] = None) -> int:
        now = self._now(now)
        with self.boundary.read():
            stake = self._find(user, index)
            if stake is None or not stake.is_active:
                return 0
            return max(0, stake.unlock_time - now)

    def projected_reward(self, amount: int, tier_id: int, days: int,
                         premium: bool = False) -> int:
        """Reward a hypothetical stake in *tier_id* would earn over *days*."""
        with self.boundary.read() as st:
            rate = st.tiers.get_tier(tier_id).effective_rate(premium)
        return projected_reward(amount, rate, days)

    def estimate_rewards_for_period(self, user: str, days: int) -> int:
        """Reward the user's active stakes would accrue over the next *days*."""
        with self.boundary.read() as st:
            return sum(
                projected_reward(s.amount, s.reward_rate, days)
                for s in st.ledger.active_stakes(user)
            )

    # ── eligibility ─────────────────────────────────────────────────

    def can_user_stake(self, user: str, amount: int, tier_id: int) -> tuple[bool, str]:
        """Dry-run of the ``stake`` checks with a human-readable reason."""
        with self.boundary.read() as st:
            if st.params.paused:
                return False, "Staking paused"
            try:
                tier = st.tiers.get_tier(tier_id)
            except InvalidTier:
                return False, "Invalid tier"
            if not tier.active:
                return False, "Tier not active"
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                return False, "Invalid amount"
            if amount < tier.min_stake:
                return False, "Below minimum stake"
            if tier.total_staked + amount > tier.tier_cap:
                return False, "Exceeds tier capacity"
            if st.ledger.user_tier_total(user, tier_id) + amount > tier.max_stake:
                return False, "Exceeds maximum stake"
            if st.ledger.account(user).active_stakes >= st.params.max_stakes_per_user:
                return False, "Max stakes reached"
            try:
                require_accruing(amount, tier.effective_rate(st.premium.is_premium(user)))
            except PrecisionError:
                return False, "Amount too small to earn rewards"
            return True, "Can stake"

    # ── aggregates ──────────────────────────────────────────────────

    def get_user_stats(self, user: str, now: Optional[int] = None) -> dict:
        now = self._now(now)
        with self.boundary.read() as st:
            acct = st.ledger.account(user)
            return {
                "user": user,
                "total_staked": acct.total_staked,
                "total_rewards": acct.total_rewards,
                "stake_count": acct.stake_count,
                "active_stakes": acct.active_stakes,
                "pending_rewards": self.total_pending_rewards(user, now),
                "is_premium": st.premium.is_premium(user),
                "premium_since": st.premium.joined_at(user),
                "last_claim": acct.last_claim,
            }

    def get_global_stats(self) -> dict:
        token = self.boundary.token
        with self.boundary.read() as st:
            totals = st.ledger.totals
            return {
                "total_staked": totals.total_staked,
                "total_rewards_paid": totals.total_rewards_paid,
                "total_stakers": totals.total_stakers,
                "total_tiers": st.tiers.total_tiers,
                "total_stakes": len(st.ledger.stakes),
                "total_emergency_fees": totals.total_emergency_fees,
                "total_compound_fees": totals.total_compound_fees,
                "reward_pool": st.params.reward_pool,
                "reward_pool_duration": st.params.reward_pool_duration,
                "reward_per_second": st.params.reward_per_second,
                "reward_start": st.params.reward_start,
                "available_rewards": max(0, token.balance_of(token.custody) - totals.total_staked),
                "premium_users": len(st.premium),
                "paused": st.params.paused,
            }
