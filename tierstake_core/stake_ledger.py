"""
Authoritative stake storage for TierStake.

Stakes live in a single arena list and are never removed; a user owns an
ordered list of arena positions, and a stake's public index is its position
in that list.  Indices are therefore stable for the lifetime of the ledger,
including after a stake is closed.

Every mutation entry point updates, in the same call:

  - the stake record itself
  - the tier's ``total_staked`` / ``stakers_count``
  - the owner's ``UserAccount`` aggregates
  - the global totals

The ledger makes no external calls.  It is only driven by the lifecycle
controller, which wraps each call in a transaction boundary.
While a ``ChangeSet`` is open, each write first saves the record it is
about to change, so a failed transaction is undone record by record.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from tierstake_core.errors import StakeNotActive, StakeNotFound
from tierstake_core.precision import narrow
from tierstake_core.tiers import Tier


class StakeStatus(Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"
    EMERGENCY_CLOSED = "EmergencyClosed"


@dataclass
class Stake:
    user: str
    index: int                  # position in the owner's stake list
    tier_id: int
    amount: int                 # current principal (grows when compounding)
    initial_amount: int
    reward_rate: int            # effective bps captured at creation
    start_time: int
    unlock_time: int            # start_time + tier lock captured at creation
    last_settlement: int
    status: StakeStatus = StakeStatus.ACTIVE
    rewards_claimed: int = 0
    auto_compound: bool = False
    closed_at: int = 0

    @property
    def is_active(self) -> bool:
        return self.status is StakeStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "index": self.index,
            "tier": self.tier_id,
            "amount": self.amount,
            "initial_amount": self.initial_amount,
            "reward_rate": self.reward_rate,
            "start_time": self.start_time,
            "unlock_time": self.unlock_time,
            "last_settlement": self.last_settlement,
            "status": self.status.value,
            "is_active": self.is_active,
            "rewards_claimed": self.rewards_claimed,
            "auto_compound": self.auto_compound,
            "closed_at": self.closed_at,
        }


@dataclass
class UserAccount:
    """Per-user aggregates derived from the user's stakes."""
    stake_refs: list[int] = field(default_factory=list)   # arena positions
    active_stakes: int = 0
    total_staked: int = 0
    total_rewards: int = 0
    last_claim: Optional[int] = None
    tier_staked: dict[int, int] = field(default_factory=dict)
    tier_active: dict[int, int] = field(default_factory=dict)

    @property
    def stake_count(self) -> int:
        return len(self.stake_refs)


@dataclass
class LedgerTotals:
    total_staked: int = 0
    total_rewards_paid: int = 0
    total_stakers: int = 0
    total_emergency_fees: int = 0
    total_compound_fees: int = 0


@dataclass
class AccountImage:
    """Aggregates of a ``UserAccount``; ``stake_refs`` is kept by length only."""
    stake_count: int = 0
    active_stakes: int = 0
    total_staked: int = 0
    total_rewards: int = 0
    last_claim: Optional[int] = None
    tier_staked: dict[int, int] = field(default_factory=dict)
    tier_active: dict[int, int] = field(default_factory=dict)

    @classmethod
    def of(cls, acct: UserAccount) -> AccountImage:
        return cls(
            stake_count=acct.stake_count,
            active_stakes=acct.active_stakes,
            total_staked=acct.total_staked,
            total_rewards=acct.total_rewards,
            last_claim=acct.last_claim,
            tier_staked=dict(acct.tier_staked),
            tier_active=dict(acct.tier_active),
        )

    def restore(self, acct: UserAccount) -> None:
        # refs are only ever appended
        del acct.stake_refs[self.stake_count:]
        acct.active_stakes = self.active_stakes
        acct.total_staked = self.total_staked
        acct.total_rewards = self.total_rewards
        acct.last_claim = self.last_claim
        acct.tier_staked = self.tier_staked
        acct.tier_active = self.tier_active


class ChangeSet:
    """
    Before-images of the records one transaction has touched.

    A stake or account is copied the first time it is written, so the cost
    of a transaction follows what it changes rather than the ledger size.
    Stakes at or past ``stake_count`` were opened inside the transaction.
    """

    def __init__(self, ledger: StakeLedger) -> None:
        self.stake_count = len(ledger.stakes)
        self.totals = copy.copy(ledger.totals)
        self.stakes: dict[int, Stake] = {}
        self.accounts: dict[str, Optional[AccountImage]] = {}   # None: created here


class StakeLedger:
    """Arena of stakes, per-user indices and the derived aggregates."""

    def __init__(self) -> None:
        self.stakes: list[Stake] = []
        self.accounts: dict[str, UserAccount] = {}
        self.totals = LedgerTotals()
        self.changes: Optional[ChangeSet] = None

    # ── change tracking ─────────────────────────────────────────────

    def begin_changes(self) -> ChangeSet:
        self.changes = ChangeSet(self)
        return self.changes

    def end_changes(self) -> None:
        self.changes = None

    def touch_stake(self, stake: Stake) -> None:
        """Save *stake* before its first write in the open change set."""
        changes = self.changes
        if changes is None:
            return
        pos = self.accounts[stake.user].stake_refs[stake.index]
        if pos < changes.stake_count and pos not in changes.stakes:
            changes.stakes[pos] = copy.copy(stake)

    def touch_account(self, user: str) -> None:
        changes = self.changes
        if changes is None or user in changes.accounts:
            return
        acct = self.accounts.get(user)
        changes.accounts[user] = AccountImage.of(acct) if acct is not None else None

    def rollback(self) -> None:
        """Put every touched record back as it was when changes began."""
        changes, self.changes = self.changes, None
        if changes is None:
            return
        del self.stakes[changes.stake_count:]
        for pos, before in changes.stakes.items():
            vars(self.stakes[pos]).update(vars(before))
        for user, image in changes.accounts.items():
            if image is None:
                self.accounts.pop(user, None)
            else:
                image.restore(self.accounts[user])
        vars(self.totals).update(vars(changes.totals))

    # ── lookups ─────────────────────────────────────────────────────

    def account(self, user: str) -> UserAccount:
        """The user's aggregates (an empty record for unknown users)."""
        return self.accounts.get(user) or UserAccount()

    def get_stake(self, user: str, index: int) -> Stake:
        acct = self.accounts.get(user)
        count = acct.stake_count if acct else 0
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < count:
            raise StakeNotFound(user, index, count)
        return self.stakes[acct.stake_refs[index]]

    def get_active_stake(self, user: str, index: int) -> Stake:
        stake = self.get_stake(user, index)
        if not stake.is_active:
            raise StakeNotActive(user, index, stake.status.value)
        return stake

    def list_user_stakes(self, user: str) -> list[Stake]:
        acct = self.accounts.get(user)
        if acct is None:
            return []
        return [self.stakes[ref] for ref in acct.stake_refs]

    def active_stakes(self, user: str) -> list[Stake]:
        return [s for s in self.list_user_stakes(user) if s.is_active]

    def all_active(self) -> list[Stake]:
        return [s for s in self.stakes if s.is_active]

    def user_tier_total(self, user: str, tier_id: int) -> int:
        return self.account(user).tier_staked.get(tier_id, 0)

    # ── mutations ───────────────────────────────────────────────────

    def open_stake(
        self,
        user: str,
        tier: Tier,
        amount: int,
        reward_rate: int,
        now: int,
        auto_compound: bool = False,
    ) -> Stake:
        self.touch_account(user)
        acct = self.accounts.setdefault(user, UserAccount())
        stake = Stake(
            user=user,
            index=acct.stake_count,
            tier_id=tier.tier_id,
            amount=amount,
            initial_amount=amount,
            reward_rate=reward_rate,
            start_time=now,
            unlock_time=now + tier.lock_duration,
            last_settlement=now,
            auto_compound=auto_compound,
        )
        acct.stake_refs.append(len(self.stakes))
        self.stakes.append(stake)

        if acct.active_stakes == 0:
            self.totals.total_stakers += 1
        acct.active_stakes += 1
        if acct.tier_active.get(tier.tier_id, 0) == 0:
            tier.stakers_count += 1
        acct.tier_active[tier.tier_id] = acct.tier_active.get(tier.tier_id, 0) + 1

        self._adjust_totals(user, tier, amount)
        return stake

    def mutate_on_claim(
        self,
        stake: Stake,
        tier: Tier,
        reward: int,
        now: int,
        compound_amount: int = 0,
        compound_fee: int = 0,
    ) -> None:
        """Settle *reward*; ``compound_amount`` of it is folded into principal."""
        self.touch_stake(stake)
        self.touch_account(stake.user)
        acct = self.accounts[stake.user]
        stake.last_settlement = now
        stake.rewards_claimed = narrow(stake.rewards_claimed + reward, "rewards_claimed")
        acct.total_rewards = narrow(acct.total_rewards + reward, "total_rewards")
        self.totals.total_rewards_paid = narrow(
            self.totals.total_rewards_paid + reward, "total_rewards_paid")
        if compound_amount:
            stake.amount = narrow(stake.amount + compound_amount, "stake amount")
            self._adjust_totals(stake.user, tier, compound_amount)
        if compound_fee:
            self.totals.total_compound_fees += compound_fee

    def mutate_on_close(
        self,
        stake: Stake,
        tier: Tier,
        now: int,
        reward: int = 0,
        emergency: bool = False,
        fee: int = 0,
    ) -> None:
        self.touch_stake(stake)
        self.touch_account(stake.user)
        acct = self.accounts[stake.user]
        if reward:
            self.mutate_on_claim(stake, tier, reward, now)
        self._adjust_totals(stake.user, tier, -stake.amount)
        stake.status = StakeStatus.EMERGENCY_CLOSED if emergency else StakeStatus.CLOSED
        stake.closed_at = now

        acct.active_stakes -= 1
        if acct.active_stakes == 0:
            self.totals.total_stakers -= 1
        acct.tier_active[tier.tier_id] -= 1
        if acct.tier_active[tier.tier_id] == 0:
            tier.stakers_count -= 1
        if emergency:
            self.totals.total_emergency_fees += fee

    def set_auto_compound(self, stake: Stake, enabled: bool) -> None:
        self.touch_stake(stake)
        stake.auto_compound = bool(enabled)

    def record_claim_time(self, user: str, now: int) -> None:
        self.touch_account(user)
        self.accounts.setdefault(user, UserAccount()).last_claim = now

    def _adjust_totals(self, user: str, tier: Tier, delta: int) -> None:
        # tier, user and global totals move together
        self.touch_account(user)
        acct = self.accounts[user]
        tier.total_staked = narrow(tier.total_staked + delta, "tier total")
        acct.total_staked = narrow(acct.total_staked + delta, "user total")
        acct.tier_staked[tier.tier_id] = narrow(
            acct.tier_staked.get(tier.tier_id, 0) + delta, "user tier total")
        self.totals.total_staked = narrow(self.totals.total_staked + delta, "global total")
