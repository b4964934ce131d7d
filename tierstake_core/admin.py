"""
Owner-only administration for TierStake.

Every operation authenticates the caller once, against
``StakingParameters.owner``, before it reads or writes anything else, and
then runs as one atomic transaction like the user operations.

Bounds enforced here:

  - emergency fee within [5 %, 50 %]; compound fee at most 10 %
  - a tier cap may not drop below what is already staked in the tier
  - the premium roster never exceeds ``max_premium_users``
  - the per-user stake limit may not drop below any user's active count
  - reward withdrawal can only touch custody above the staked principal
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from tierstake_core.atomic import TransactionBoundary
from tierstake_core.errors import (
    AuthorizationError,
    InsufficientRewardPool,
    PremiumRosterFull,
    ValidationError,
)
from tierstake_core.events import AuditLog, EventType
from tierstake_core.precision import format_amount, require_amount
from tierstake_core.rewards import reward_per_second
from tierstake_core.state import (
    MAX_COMPOUND_FEE_BPS,
    MAX_EMERGENCY_FEE_BPS,
    MIN_EMERGENCY_FEE_BPS,
    LedgerState,
)
from tierstake_core.tiers import Tier

logger = logging.getLogger("tierstake_admin")


def _require_non_negative(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer",
                              field=name, actual=value)
    return value


class AdminConsole:
    def __init__(self, boundary: TransactionBoundary, audit: AuditLog) -> None:
        self.boundary = boundary
        self.audit = audit

    @property
    def state(self) -> LedgerState:
        return self.boundary.state

    def _authorize(self, caller: str, operation: str) -> None:
        if caller != self.state.params.owner:
            logger.warning(f"Rejected {operation} from non-owner {caller}")
            raise AuthorizationError(caller, operation)

    def _set_param(
        self,
        caller: str,
        name: str,
        value: int,
        now: int | None,
        check: Callable[[int], None] | None = None,
    ) -> None:
        with self.boundary.begin(now, f"set_{name}") as tx:
            self._authorize(caller, f"set_{name}")
            _require_non_negative(value, name)
            if check is not None:
                check(value)
            old = getattr(self.state.params, name)
            setattr(self.state.params, name, value)
            self.audit.emit(EventType.PARAMETER_UPDATED, tx.now, caller,
                            parameter=name, old=old, new=value)
            logger.info(f"{name}: {old} -> {value}")

    # ── tiers ───────────────────────────────────────────────────────

    def update_tier(
        self,
        caller: str,
        tier_id: int,
        lock_duration: int,
        reward_rate: int,
        min_stake: int,
        max_stake: int,
        tier_cap: int,
        active: bool,
        name: str,
        now: int | None = None,
    ) -> Tier:
        """Update tier *tier_id*, or append it when it is the next id."""
        with self.boundary.begin(now, "update_tier") as tx:
            self._authorize(caller, "update_tier")
            appending = tier_id == self.state.tiers.total_tiers + 1
            tier = self.state.tiers.define_tier(
                tier_id, lock_duration, reward_rate, min_stake, max_stake,
                tier_cap, active, name,
            )
            event = EventType.TIER_ADDED if appending else EventType.TIER_UPDATED
            self.audit.emit(event, tx.now, caller, **self._tier_fields(tier))
            logger.info(f"Tier {tier.tier_id} ({tier.name}) {'added' if appending else 'updated'}")
            return tier

    def add_tier(
        self,
        caller: str,
        lock_duration: int,
        reward_rate: int,
        min_stake: int,
        max_stake: int,
        tier_cap: int,
        name: str,
        premium_bonus: int = 0,
        now: int | None = None,
    ) -> Tier:
        with self.boundary.begin(now, "add_tier") as tx:
            self._authorize(caller, "add_tier")
            tier = self.state.tiers.add_tier(
                lock_duration, reward_rate, min_stake, max_stake, tier_cap,
                name, premium_bonus=premium_bonus,
            )
            self.audit.emit(EventType.TIER_ADDED, tx.now, caller, **self._tier_fields(tier))
            logger.info(f"Tier {tier.tier_id} ({tier.name}) added")
            return tier

    def set_premium_bonus(self, caller: str, tier_id: int, bonus: int,
                          now: int | None = None) -> Tier:
        with self.boundary.begin(now, "set_premium_bonus") as tx:
            self._authorize(caller, "set_premium_bonus")
            tier = self.state.tiers.set_premium_bonus(tier_id, bonus)
            self.audit.emit(EventType.PREMIUM_BONUS_UPDATED, tx.now, caller,
                            tier=tier_id, bonus=bonus)
            return tier

    @staticmethod
    def _tier_fields(tier: Tier) -> dict:
        return {
            "tier": tier.tier_id,
            "lock_duration": tier.lock_duration,
            "reward_rate": tier.reward_rate,
            "min_stake": tier.min_stake,
            "max_stake": tier.max_stake,
            "tier_cap": tier.tier_cap,
            "active": tier.active,
            "name": tier.name,
        }

    # ── premium roster ──────────────────────────────────────────────

    def set_premium_user(self, caller: str, user: str, premium: bool,
                         now: int | None = None) -> bool:
        """Grant or revoke premium status; returns whether anything changed."""
        with self.boundary.begin(now, "set_premium_user") as tx:
            self._authorize(caller, "set_premium_user")
            roster = self.state.premium
            if bool(premium) == roster.is_premium(user):
                return False
            if premium:
                if len(roster) >= self.state.params.max_premium_users:
                    raise PremiumRosterFull(self.state.params.max_premium_users)
                roster.members[user] = tx.now
            else:
                del roster.members[user]
            self.audit.emit(EventType.PREMIUM_STATUS_UPDATED, tx.now, caller,
                            user=user, premium=bool(premium))
            logger.info(f"Premium status of {user} -> {bool(premium)}")
            return True

    def set_max_premium_users(self, caller: str, limit: int, now: int | None = None) -> None:
        def check(value: int) -> None:
            if value < len(self.state.premium):
                raise ValidationError("limit below current roster size",
                                      required=len(self.state.premium), actual=value)
        self._set_param(caller, "max_premium_users", limit, now, check)

    # ── fees and limits ─────────────────────────────────────────────

    def set_emergency_fee(self, caller: str, fee_bps: int, now: int | None = None) -> None:
        def check(value: int) -> None:
            if value > MAX_EMERGENCY_FEE_BPS:
                raise ValidationError("Fee too high", maximum=MAX_EMERGENCY_FEE_BPS, actual=value)
            if value < MIN_EMERGENCY_FEE_BPS:
                raise ValidationError("Fee too low", minimum=MIN_EMERGENCY_FEE_BPS, actual=value)
        self._set_param(caller, "emergency_fee_bps", fee_bps, now, check)

    def set_compound_fee(self, caller: str, fee_bps: int, now: int | None = None) -> None:
        def check(value: int) -> None:
            if value > MAX_COMPOUND_FEE_BPS:
                raise ValidationError("Fee too high", maximum=MAX_COMPOUND_FEE_BPS, actual=value)
        self._set_param(caller, "compound_fee_bps", fee_bps, now, check)

    def set_max_stakes_per_user(self, caller: str, limit: int, now: int | None = None) -> None:
        def check(value: int) -> None:
            if value == 0:
                raise ValidationError("limit must be positive", field="max_stakes_per_user")
            busiest = max((a.active_stakes for a in self.state.ledger.accounts.values()),
                          default=0)
            if value < busiest:
                raise ValidationError("limit below a user's active stake count",
                                      required=busiest, actual=value)
        self._set_param(caller, "max_stakes_per_user", limit, now, check)

    def set_claim_cooldown(self, caller: str, seconds: int, now: int | None = None) -> None:
        self._set_param(caller, "claim_cooldown", seconds, now)

    def set_min_compound_amount(self, caller: str, amount: int, now: int | None = None) -> None:
        self._set_param(caller, "min_compound_amount", amount, now)

    def set_reward_start(self, caller: str, timestamp: int, now: int | None = None) -> None:
        self._set_param(caller, "reward_start", timestamp, now)

    # ── reward pool ─────────────────────────────────────────────────

    def set_reward_pool(self, caller: str, amount: int, duration: int,
                        now: int | None = None) -> int:
        """Reconfigure the pool; returns the derived reward-per-second."""
        with self.boundary.begin(now, "set_reward_pool") as tx:
            self._authorize(caller, "set_reward_pool")
            _require_non_negative(amount, "reward_pool")
            _require_non_negative(duration, "reward_pool_duration")
            rate = reward_per_second(amount, duration)
            params = self.state.params
            params.reward_pool = amount
            params.reward_pool_duration = duration
            params.reward_per_second = rate
            self.audit.emit(EventType.REWARD_POOL_UPDATED, tx.now, caller,
                            amount=amount, duration=duration, reward_per_second=rate)
            logger.info(f"Reward pool set to {format_amount(amount)} over {duration}s ({rate}/s)")
            return rate

    def emergency_withdraw_rewards(self, caller: str, amount: int,
                                   now: int | None = None) -> None:
        """Withdraw unstaked custody tokens to the owner."""
        with self.boundary.begin(now, "emergency_withdraw_rewards") as tx:
            self._authorize(caller, "emergency_withdraw_rewards")
            amount = require_amount(amount)
            token = self.boundary.token
            available = max(0, token.balance_of(token.custody)
                            - self.state.ledger.totals.total_staked)
            if amount > available:
                raise InsufficientRewardPool(amount, available)
            tx.push(caller, amount)
            self.audit.emit(EventType.REWARDS_WITHDRAWN, tx.now, caller,
                            amount=amount, remaining=available - amount)
            logger.warning(f"Owner withdrew {format_amount(amount)} from the reward pool")

    # ── pause ───────────────────────────────────────────────────────

    def pause(self, caller: str, now: int | None = None) -> None:
        self._toggle_pause(caller, True, now)

    def unpause(self, caller: str, now: int | None = None) -> None:
        self._toggle_pause(caller, False, now)

    def _toggle_pause(self, caller: str, paused: bool, now: int | None) -> None:
        op = "pause" if paused else "unpause"
        with self.boundary.begin(now, op) as tx:
            self._authorize(caller, op)
            if self.state.params.paused == paused:
                raise ValidationError(f"already {'paused' if paused else 'unpaused'}")
            self.state.params.paused = paused
            self.audit.emit(EventType.PAUSED if paused else EventType.UNPAUSED, tx.now, caller)
            logger.warning(f"Staking {'paused' if paused else 'unpaused'} by {caller}")

    # ── ownership ───────────────────────────────────────────────────

    def transfer_ownership(self, caller: str, new_owner: str, now: int | None = None) -> None:
        """Step one: nominate *new_owner*, who must then accept."""
        with self.boundary.begin(now, "transfer_ownership") as tx:
            self._authorize(caller, "transfer_ownership")
            if not new_owner:
                raise ValidationError("new owner required", field="new_owner")
            self.state.params.pending_owner = new_owner
            self.audit.emit(EventType.OWNERSHIP_TRANSFER_STARTED, tx.now, caller,
                            new_owner=new_owner)

    def accept_ownership(self, caller: str, now: int | None = None) -> None:
        with self.boundary.begin(now, "accept_ownership") as tx:
            params = self.state.params
            if not params.pending_owner or caller != params.pending_owner:
                raise AuthorizationError(caller, "accept_ownership")
            previous, params.owner, params.pending_owner = params.owner, caller, ""
            self.audit.emit(EventType.OWNERSHIP_TRANSFERRED, tx.now, caller,
                            previous_owner=previous, new_owner=caller)
            logger.warning(f"Ownership transferred {previous} -> {caller}")
