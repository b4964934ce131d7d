"""
Stake lifecycle controller for TierStake.

Orchestrates every user-facing state change:

    stake → ACTIVE ──unstake──────────→ CLOSED
                   └─emergency_unstake→ EMERGENCY_CLOSED

plus reward claims (single and all-stakes) and auto-compound preferences.

Each public method is one atomic transaction (see ``atomic``).  Inside it
the ordering is always the same: cheap local validation first (existence,
ownership, bounds, capacity), then settlement and ledger mutation, then the
token transfer.  A failed transfer raises, and the boundary restores the
ledger and reverses any transfer already made in the operation.

Auto-compound
─────────────
A claim on a stake with auto-compound enabled folds the reward back into
the principal, minus ``compound_fee_bps`` which goes to the owner, but only
when the reward reaches ``min_compound_amount`` and the grown principal
still fits the tier capacity and the user's tier maximum.  Otherwise the
reward is paid out as a normal claim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tierstake_core.atomic import Transaction, TransactionBoundary
from tierstake_core.errors import (
    ClaimTooEarly,
    ContractPaused,
    InsufficientRewardPool,
    InvalidAmount,
    MaxStakesReached,
    StakeLocked,
    TierCapacityExceeded,
)
from tierstake_core.events import AuditLog, EventType
from tierstake_core.precision import format_amount, require_amount
from tierstake_core.rewards import bps_of, pending_reward, require_accruing
from tierstake_core.stake_ledger import Stake
from tierstake_core.state import LedgerState
from tierstake_core.tiers import Tier

logger = logging.getLogger("tierstake_controller")


@dataclass
class ClaimResult:
    reward: int = 0          # total settled
    paid: int = 0            # pushed to the user
    compounded: int = 0      # folded into principal
    fee: int = 0             # compound fee pushed to the owner
    stakes: int = 0          # number of stakes settled

    def to_dict(self) -> dict:
        return {
            "reward": self.reward,
            "paid": self.paid,
            "compounded": self.compounded,
            "fee": self.fee,
            "stakes": self.stakes,
        }


@dataclass
class ExitResult:
    index: int
    principal: int
    payout: int
    reward: int = 0
    fee: int = 0
    forfeited: int = 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "principal": self.principal,
            "payout": self.payout,
            "reward": self.reward,
            "fee": self.fee,
            "forfeited": self.forfeited,
        }


class StakeLifecycleController:
    def __init__(self, boundary: TransactionBoundary, audit: AuditLog) -> None:
        self.boundary = boundary
        self.audit = audit

    @property
    def state(self) -> LedgerState:
        return self.boundary.state

    # ── shared checks ───────────────────────────────────────────────

    def _require_not_paused(self, operation: str) -> None:
        if self.state.params.paused:
            raise ContractPaused(operation)

    def _check_cooldown(self, user: str, now: int) -> None:
        last = self.state.ledger.account(user).last_claim
        if last is not None and now < last + self.state.params.claim_cooldown:
            raise ClaimTooEarly(user, last + self.state.params.claim_cooldown, now)

    def available_rewards(self) -> int:
        """Custody balance not backing any active principal."""
        token = self.boundary.token
        return max(0, token.balance_of(token.custody) - self.state.ledger.totals.total_staked)

    def _require_pool(self, amount: int) -> None:
        available = self.available_rewards()
        if amount > available:
            raise InsufficientRewardPool(amount, available)

    def _pending(self, stake: Stake, now: int) -> int:
        return pending_reward(stake, now, self.state.params.reward_start)

    def _can_compound(self, stake: Stake, tier: Tier, reward: int, amount: int) -> bool:
        if not stake.auto_compound or reward < self.state.params.min_compound_amount:
            return False
        if tier.total_staked + amount > tier.tier_cap:
            return False
        return self.state.ledger.user_tier_total(stake.user, tier.tier_id) + amount <= tier.max_stake

    def _settle(self, stake: Stake, reward: int, now: int, result: ClaimResult) -> None:
        """Settle one stake's reward into *result* (ledger only, no transfer)."""
        tier = self.state.tiers.get_tier(stake.tier_id)
        fee = bps_of(reward, self.state.params.compound_fee_bps)
        if self._can_compound(stake, tier, reward, reward - fee):
            self.state.ledger.mutate_on_claim(
                stake, tier, reward, now,
                compound_amount=reward - fee, compound_fee=fee,
            )
            result.compounded += reward - fee
            result.fee += fee
            compounded = True
        else:
            self.state.ledger.mutate_on_claim(stake, tier, reward, now)
            result.paid += reward
            compounded = False
        result.reward += reward
        result.stakes += 1
        self.audit.emit(
            EventType.REWARDS_CLAIMED, now, stake.user,
            index=stake.index, amount=reward, compounded=compounded,
            fee=fee if compounded else 0,
        )

    def _pay_out(self, tx: Transaction, user: str, result: ClaimResult) -> None:
        tx.push(user, result.paid)
        tx.push(self.state.params.owner, result.fee)

    # ── operations ──────────────────────────────────────────────────

    def stake(self, user: str, amount: int, tier_id: int, now: int | None = None) -> Stake:
        """Lock *amount* units in tier *tier_id*; returns the new stake."""
        with self.boundary.begin(now, "stake") as tx:
            st = self.state
            self._require_not_paused("stake")
            tier = st.tiers.get_active_tier(tier_id)
            amount = require_amount(amount)
            if amount < tier.min_stake:
                raise InvalidAmount("Below minimum stake", tier_id=tier_id,
                                    required=tier.min_stake, actual=amount)
            if tier.total_staked + amount > tier.tier_cap:
                raise TierCapacityExceeded(tier_id, tier.tier_cap, tier.total_staked, amount)
            held = st.ledger.user_tier_total(user, tier_id)
            if held + amount > tier.max_stake:
                raise InvalidAmount("Exceeds maximum stake", tier_id=tier_id,
                                    maximum=tier.max_stake, current=held, actual=amount)
            if st.ledger.account(user).active_stakes >= st.params.max_stakes_per_user:
                raise MaxStakesReached(user, st.params.max_stakes_per_user)
            rate = tier.effective_rate(st.premium.is_premium(user))
            require_accruing(amount, rate)

            tx.pull(user, amount)
            stake = st.ledger.open_stake(user, tier, amount, rate, tx.now)
            self.audit.emit(
                EventType.STAKED, tx.now, user,
                index=stake.index, amount=amount, tier=tier_id,
                lock_duration=tier.lock_duration, reward_rate=rate,
            )
            logger.info(f"{user} staked {format_amount(amount)} in tier {tier_id} "
                        f"(#{stake.index}, {rate} bps)")
            return stake

    def unstake(self, user: str, index: int, now: int | None = None) -> ExitResult:
        """Close a matured stake, paying principal plus pending reward."""
        with self.boundary.begin(now, "unstake") as tx:
            st = self.state
            self._require_not_paused("unstake")
            stake = st.ledger.get_active_stake(user, index)
            if tx.now < stake.unlock_time:
                raise StakeLocked(user, index, stake.unlock_time, tx.now)
            tier = st.tiers.get_tier(stake.tier_id)
            reward = self._pending(stake, tx.now)
            self._require_pool(reward)

            principal = stake.amount
            st.ledger.mutate_on_close(stake, tier, tx.now, reward=reward)
            tx.push(user, principal + reward)
            self.audit.emit(
                EventType.UNSTAKED, tx.now, user,
                index=index, amount=principal, reward=reward,
            )
            logger.info(f"{user} unstaked #{index}: {format_amount(principal)} "
                        f"+ {format_amount(reward)} reward")
            return ExitResult(index=index, principal=principal,
                              payout=principal + reward, reward=reward)

    def claim(self, user: str, index: int, now: int | None = None) -> ClaimResult:
        """Claim (or compound) the pending reward of one stake."""
        with self.boundary.begin(now, "claim") as tx:
            self._require_not_paused("claim")
            stake = self.state.ledger.get_active_stake(user, index)
            self._check_cooldown(user, tx.now)
            reward = self._pending(stake, tx.now)
            result = ClaimResult()
            if reward == 0:
                return result
            self._require_pool(reward)
            self._settle(stake, reward, tx.now, result)
            self._pay_out(tx, user, result)
            self.state.ledger.record_claim_time(user, tx.now)
            logger.info(f"{user} claimed {format_amount(reward)} from #{index} "
                        f"(compounded {format_amount(result.compounded)}, "
                        f"fee {format_amount(result.fee)})")
            return result

    def claim_all(self, user: str, now: int | None = None) -> ClaimResult:
        """Claim every active stake of *user*; direct payouts are pushed once."""
        with self.boundary.begin(now, "claim_all") as tx:
            self._require_not_paused("claim_all")
            self._check_cooldown(user, tx.now)
            pending = [(s, self._pending(s, tx.now)) for s in self.state.ledger.active_stakes(user)]
            pending = [(s, r) for s, r in pending if r > 0]
            result = ClaimResult()
            if not pending:
                return result
            self._require_pool(sum(r for _, r in pending))
            for stake, reward in pending:
                self._settle(stake, reward, tx.now, result)
            self._pay_out(tx, user, result)
            self.state.ledger.record_claim_time(user, tx.now)
            logger.info(f"{user} claimed {format_amount(result.reward)} "
                        f"across {result.stakes} stakes")
            return result

    def emergency_unstake(self, user: str, index: int, now: int | None = None) -> ExitResult:
        """Exit before unlock: pending reward is forfeited and a fee is charged."""
        with self.boundary.begin(now, "emergency_unstake") as tx:
            self._require_not_paused("emergency_unstake")
            st = self.state
            stake = st.ledger.get_active_stake(user, index)
            tier = st.tiers.get_tier(stake.tier_id)
            principal = stake.amount
            fee = bps_of(principal, st.params.emergency_fee_bps)
            forfeited = self._pending(stake, tx.now)

            st.ledger.mutate_on_close(stake, tier, tx.now, emergency=True, fee=fee)
            tx.push(user, principal - fee)
            tx.push(st.params.owner, fee)
            self.audit.emit(
                EventType.EMERGENCY_WITHDRAW, tx.now, user,
                index=index, amount=principal - fee, fee=fee, forfeited=forfeited,
            )
            logger.warning(f"{user} emergency-unstaked #{index}: fee {format_amount(fee)}, "
                           f"forfeited {format_amount(forfeited)}")
            return ExitResult(index=index, principal=principal, payout=principal - fee,
                              fee=fee, forfeited=forfeited)

    def toggle_auto_compound(self, user: str, index: int, now: int | None = None) -> bool:
        with self.boundary.begin(now, "toggle_auto_compound") as tx:
            self._require_not_paused("toggle_auto_compound")
            stake = self.state.ledger.get_active_stake(user, index)
            self.state.ledger.set_auto_compound(stake, not stake.auto_compound)
            self.audit.emit(EventType.AUTO_COMPOUND_TOGGLED, tx.now, user,
                            index=index, enabled=stake.auto_compound)
            return stake.auto_compound

    def set_auto_compound_all(self, user: str, enabled: bool, now: int | None = None) -> int:
        """Set the flag on every active stake; returns how many were changed."""
        with self.boundary.begin(now, "set_auto_compound_all") as tx:
            self._require_not_paused("set_auto_compound_all")
            changed = 0
            for stake in self.state.ledger.active_stakes(user):
                if stake.auto_compound != bool(enabled):
                    self.state.ledger.set_auto_compound(stake, enabled)
                    self.audit.emit(EventType.AUTO_COMPOUND_TOGGLED, tx.now, user,
                                    index=stake.index, enabled=bool(enabled))
                    changed += 1
            return changed
