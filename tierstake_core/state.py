"""
Shared mutable state of a TierStake ledger.

``LedgerState`` bundles everything a transaction may touch so that the
transaction boundary can checkpoint and roll it back as one unit:

  - the tier registry
  - the stake ledger and its aggregates
  - the owner-guarded ``StakingParameters``
  - the premium roster
  - the last committed clock value
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Optional

from tierstake_core.precision import SECONDS_PER_DAY, to_units
from tierstake_core.stake_ledger import StakeLedger
from tierstake_core.tiers import Tier, TierRegistry, default_tiers

MIN_EMERGENCY_FEE_BPS: int = 500
MAX_EMERGENCY_FEE_BPS: int = 5_000
MAX_COMPOUND_FEE_BPS: int = 1_000


@dataclass
class StakingParameters:
    """Global knobs, only written by the admin console."""
    owner: str
    pending_owner: str = ""
    paused: bool = False
    emergency_fee_bps: int = 2_000
    compound_fee_bps: int = 100
    max_stakes_per_user: int = 10
    claim_cooldown: int = SECONDS_PER_DAY
    min_compound_amount: int = to_units(1)
    max_premium_users: int = 1_000
    reward_pool: int = 0
    reward_pool_duration: int = 3 * 365 * SECONDS_PER_DAY
    reward_per_second: int = 0
    reward_start: int = 0

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "pending_owner": self.pending_owner,
            "paused": self.paused,
            "emergency_fee_bps": self.emergency_fee_bps,
            "compound_fee_bps": self.compound_fee_bps,
            "max_stakes_per_user": self.max_stakes_per_user,
            "claim_cooldown": self.claim_cooldown,
            "min_compound_amount": self.min_compound_amount,
            "max_premium_users": self.max_premium_users,
            "reward_pool": self.reward_pool,
            "reward_pool_duration": self.reward_pool_duration,
            "reward_per_second": self.reward_per_second,
            "reward_start": self.reward_start,
        }


@dataclass
class PremiumRoster:
    """Premium users and the time each one joined."""
    members: dict[str, int] = field(default_factory=dict)

    def is_premium(self, user: str) -> bool:
        return user in self.members

    def joined_at(self, user: str) -> Optional[int]:
        return self.members.get(user)

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class Checkpoint:
    """Copies of the small parts of ``LedgerState`` taken when a transaction opens."""
    tiers: dict[int, Tier]
    params: StakingParameters
    premium: dict[str, int]
    last_time: int


@dataclass
class LedgerState:
    tiers: TierRegistry
    ledger: StakeLedger
    params: StakingParameters
    premium: PremiumRoster = field(default_factory=PremiumRoster)
    last_time: int = 0

    def checkpoint(self) -> Checkpoint:
        """Open a change set on the ledger and copy the bounded parts."""
        self.ledger.begin_changes()
        return Checkpoint(
            tiers={tier_id: copy.copy(t) for tier_id, t in self.tiers.tiers.items()},
            params=copy.copy(self.params),
            premium=dict(self.premium.members),
            last_time=self.last_time,
        )

    def rollback(self, checkpoint: Checkpoint) -> None:
        """Undo everything since *checkpoint*, in place."""
        self.ledger.rollback()
        current = self.tiers.tiers
        for tier_id in [i for i in current if i not in checkpoint.tiers]:
            del current[tier_id]
        for tier_id, saved in checkpoint.tiers.items():
            if tier_id in current:
                vars(current[tier_id]).update(vars(saved))
            else:
                current[tier_id] = saved
        vars(self.params).update(vars(checkpoint.params))
        self.premium.members.clear()
        self.premium.members.update(checkpoint.premium)
        self.last_time = checkpoint.last_time

    def commit(self) -> None:
        self.ledger.end_changes()

    @classmethod
    def create(
        cls,
        owner: str,
        tiers: TierRegistry | None = None,
        params: StakingParameters | None = None,
    ) -> LedgerState:
        return cls(
            tiers=tiers if tiers is not None else TierRegistry(default_tiers()),
            ledger=StakeLedger(),
            params=params if params is not None else StakingParameters(owner=owner),
        )
