"""
Post-transaction invariant checks for TierStake.

Captures a baseline before a transaction and verifies, before the
transaction commits:

  - every tier's ``total_staked`` moved by exactly the active principal
    that moved in that tier
  - the global total equals the sum of tier totals
  - user totals and stakers counts agree with the stake records
  - a stake's effective rate never changes
  - ``last_settlement`` never decreases and never passes the clock
  - closed stakes are never modified
  - premium roster, emergency fee and per-user stake count stay in bounds
  - custody holds at least the staked principal

Only the stakes and accounts recorded in the ledger's open ``ChangeSet``
(plus stakes opened since the baseline) are inspected, so a check costs
what the transaction touched.  Without a baseline every stake counts as
new and every account is audited, which is a full consistency check.

If any invariant fails, the transaction is rolled back and rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from tierstake_core.stake_ledger import AccountImage, Stake
from tierstake_core.state import MAX_EMERGENCY_FEE_BPS, MIN_EMERGENCY_FEE_BPS

if TYPE_CHECKING:
    from tierstake_core.state import LedgerState
    from tierstake_core.token import TokenCollaborator


@dataclass
class LedgerSnapshot:
    """Aggregates a transaction may only move in step with its stakes."""
    stake_count: int = 0
    tiers: dict[int, tuple[int, int]] = field(default_factory=dict)   # (total, stakers)
    total_staked: int = 0
    total_stakers: int = 0


@dataclass
class _Delta:
    """What the touched records say the aggregates should have moved by."""
    positions: list[int]
    before_stakes: dict[int, Stake]
    before_accounts: dict[str, Optional[AccountImage]]
    baseline: LedgerSnapshot


def _active_amount(stake: Optional[Stake]) -> int:
    return stake.amount if stake is not None and stake.is_active else 0


class InvariantChecker:
    """
    Captures a pre-transaction baseline of the ledger aggregates and
    validates invariants after the transaction is applied.
    """

    def __init__(self) -> None:
        self._snapshot: Optional[LedgerSnapshot] = None

    def capture(self, state: LedgerState) -> None:
        self._snapshot = LedgerSnapshot(
            stake_count=len(state.ledger.stakes),
            tiers={t.tier_id: (t.total_staked, t.stakers_count) for t in state.tiers.list_tiers()},
            total_staked=state.ledger.totals.total_staked,
            total_stakers=state.ledger.totals.total_stakers,
        )

    def verify(
        self,
        state: LedgerState,
        now: int,
        token: TokenCollaborator | None = None,
    ) -> tuple[bool, str]:
        """Returns ``(passed, error_message)``."""
        delta = self._delta(state)
        errors: list[str] = []
        checks = (
            self._check_tier_totals(state, delta),
            self._check_global_total(state),
            self._check_user_totals(state, delta),
            self._check_stakers_counts(state, delta),
            self._check_rates_immutable(state, delta),
            self._check_settlement_monotonic(state, delta, now),
            self._check_closed_immutable(state, delta),
            self._check_bounds(state, delta),
            self._check_custody(state, token),
        )
        for ok, msg in checks:
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _delta(self, state: LedgerState) -> _Delta:
        ledger = state.ledger
        if self._snapshot is None:
            return _Delta(
                positions=list(range(len(ledger.stakes))),
                before_stakes={},
                before_accounts={user: None for user in ledger.accounts},
                baseline=LedgerSnapshot(),
            )
        snap = self._snapshot
        changes = ledger.changes
        before_stakes = dict(changes.stakes) if changes is not None else {}
        before_accounts = dict(changes.accounts) if changes is not None else {}
        positions = sorted(set(before_stakes) | set(range(snap.stake_count, len(ledger.stakes))))
        # accounts behind a touched stake that were not themselves written
        for pos in positions:
            user = ledger.stakes[pos].user
            if user not in before_accounts:
                before_accounts[user] = AccountImage.of(ledger.accounts[user])
        return _Delta(positions, before_stakes, before_accounts, snap)

    def _check_tier_totals(self, state: LedgerState, delta: _Delta) -> tuple[bool, str]:
        moved: dict[int, int] = {}
        for pos in delta.positions:
            after = state.ledger.stakes[pos]
            before = delta.before_stakes.get(pos)
            moved[after.tier_id] = (moved.get(after.tier_id, 0)
                                    + _active_amount(after) - _active_amount(before))
        for tier in state.tiers.list_tiers():
            base, _ = delta.baseline.tiers.get(tier.tier_id, (0, 0))
            expected = base + moved.get(tier.tier_id, 0)
            if tier.total_staked != expected:
                return (False,
                        f"Tier {tier.tier_id} total_staked={tier.total_staked} "
                        f"but active sum={expected}")
        unknown = {t for t, amount in moved.items() if amount and t not in state.tiers.tiers}
        if unknown:
            return False, f"Active stakes in unknown tiers: {unknown}"
        return True, ""

    def _check_global_total(self, state: LedgerState) -> tuple[bool, str]:
        tier_sum = state.tiers.sum_total_staked()
        if state.ledger.totals.total_staked != tier_sum:
            return (False,
                    f"Global total_staked={state.ledger.totals.total_staked} "
                    f"but tier sum={tier_sum}")
        return True, ""

    def _check_user_totals(self, state: LedgerState, delta: _Delta) -> tuple[bool, str]:
        for user in delta.before_accounts:
            acct = state.ledger.account(user)
            active = state.ledger.active_stakes(user)
            if acct.total_staked != sum(s.amount for s in active):
                return False, f"User {user} total_staked mismatch"
            if acct.active_stakes != len(active):
                return False, f"User {user} active_stakes mismatch"
            per_tier: dict[int, int] = {}
            for s in active:
                per_tier[s.tier_id] = per_tier.get(s.tier_id, 0) + 1
            if {t: n for t, n in acct.tier_active.items() if n} != per_tier:
                return False, f"User {user} per-tier stake counts mismatch"
        return True, ""

    def _check_stakers_counts(self, state: LedgerState, delta: _Delta) -> tuple[bool, str]:
        # a user joins or leaves a tier's stakers when their count there crosses zero
        joined: dict[int, int] = {}
        stakers = 0
        for user, before in delta.before_accounts.items():
            after = state.ledger.account(user)
            was = before.tier_active if before is not None else {}
            for tier_id in set(was) | set(after.tier_active):
                step = (after.tier_active.get(tier_id, 0) > 0) - (was.get(tier_id, 0) > 0)
                joined[tier_id] = joined.get(tier_id, 0) + step
            was_staking = before is not None and before.active_stakes > 0
            stakers += (after.active_stakes > 0) - was_staking
        for tier in state.tiers.list_tiers():
            _, base = delta.baseline.tiers.get(tier.tier_id, (0, 0))
            expected = base + joined.get(tier.tier_id, 0)
            if tier.stakers_count != expected:
                return (False,
                        f"Tier {tier.tier_id} stakers_count={tier.stakers_count} "
                        f"but {expected} users hold active stakes")
        expected = delta.baseline.total_stakers + stakers
        if state.ledger.totals.total_stakers != expected:
            return False, f"total_stakers={state.ledger.totals.total_stakers} but {expected} active"
        return True, ""

    def _check_rates_immutable(self, state: LedgerState, delta: _Delta) -> tuple[bool, str]:
        for pos, before in delta.before_stakes.items():
            after = state.ledger.stakes[pos]
            if after.reward_rate != before.reward_rate:
                return False, f"Stake #{pos} reward_rate changed {before.reward_rate} -> {after.reward_rate}"
        return True, ""

    def _check_settlement_monotonic(
        self, state: LedgerState, delta: _Delta, now: int,
    ) -> tuple[bool, str]:
        for pos in delta.positions:
            stake = state.ledger.stakes[pos]
            if stake.last_settlement > now:
                return False, f"Stake #{pos} settled in the future: {stake.last_settlement} > {now}"
            before = delta.before_stakes.get(pos)
            if before is not None and stake.last_settlement < before.last_settlement:
                return (False,
                        f"Stake #{pos} last_settlement decreased "
                        f"{before.last_settlement} -> {stake.last_settlement}")
        return True, ""

    def _check_closed_immutable(self, state: LedgerState, delta: _Delta) -> tuple[bool, str]:
        for pos, before in delta.before_stakes.items():
            if not before.is_active and state.ledger.stakes[pos] != before:
                return False, f"Closed stake #{pos} was modified"
        return True, ""

    def _check_bounds(self, state: LedgerState, delta: _Delta) -> tuple[bool, str]:
        params = state.params
        if len(state.premium) > params.max_premium_users:
            return False, f"Premium roster {len(state.premium)} > {params.max_premium_users}"
        if not MIN_EMERGENCY_FEE_BPS <= params.emergency_fee_bps <= MAX_EMERGENCY_FEE_BPS:
            return False, f"Emergency fee {params.emergency_fee_bps} out of bounds"
        for user in delta.before_accounts:
            held = state.ledger.account(user).active_stakes
            if held > params.max_stakes_per_user:
                return False, f"User {user} holds {held} > {params.max_stakes_per_user} stakes"
        return True, ""

    def _check_custody(
        self, state: LedgerState, token: TokenCollaborator | None,
    ) -> tuple[bool, str]:
        if token is None:
            return True, ""
        held = token.balance_of(token.custody)
        if held < state.ledger.totals.total_staked:
            return (False,
                    f"Custody holds {held} but {state.ledger.totals.total_staked} is staked")
        return True, ""
