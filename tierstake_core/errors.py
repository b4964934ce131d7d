"""
Typed error hierarchy for the staking ledger.

Every rejection carries an ``ErrorKind`` (one per failure class) and a
structured ``context`` dict, e.g. ``{"required": ..., "actual": ...}``,
so callers never have to parse message text.  The HTTP layer maps kinds to
status codes; everything else just lets the exception propagate.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    VALIDATION = "validation"
    STATE = "state"
    CAPACITY = "capacity"
    AUTHORIZATION = "authorization"
    ARITHMETIC = "arithmetic"
    EXTERNAL = "external"
    INVARIANT = "invariant"


class StakingError(Exception):
    """Base class for every rejected ledger operation."""

    kind: ErrorKind = ErrorKind.VALIDATION
    code: str = "StakingError"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
        }


# ── validation ──────────────────────────────────────────────────────────

class ValidationError(StakingError):
    kind = ErrorKind.VALIDATION
    code = "InvalidInput"


class InvalidTier(ValidationError):
    code = "InvalidTier"

    def __init__(self, tier_id: Any, total_tiers: int = 0):
        super().__init__(f"Invalid tier {tier_id!r}",
                         tier_id=tier_id, total_tiers=total_tiers)


class InvalidAmount(ValidationError):
    code = "InvalidAmount"


class MaxStakesReached(ValidationError):
    code = "MaxStakesReached"

    def __init__(self, user: str, limit: int):
        super().__init__(f"{user} already holds {limit} active stakes",
                         user=user, limit=limit)


# ── state ───────────────────────────────────────────────────────────────

class StateError(StakingError):
    kind = ErrorKind.STATE
    code = "InvalidState"


class StakeNotFound(StateError):
    code = "InvalidStakeIndex"

    def __init__(self, user: str, index: Any, stake_count: int = 0):
        super().__init__(f"{user} has no stake at index {index!r}",
                         user=user, index=index, stake_count=stake_count)


class StakeNotActive(StateError):
    code = "StakeNotActive"

    def __init__(self, user: str, index: int, status: str = ""):
        super().__init__(f"Stake {index} of {user} is {status or 'not active'}",
                         user=user, index=index, status=status)


class TierNotActive(StateError):
    code = "TierNotActive"

    def __init__(self, tier_id: int):
        super().__init__(f"Tier {tier_id} is not active", tier_id=tier_id)


class StakeLocked(StateError):
    code = "StakeLocked"

    def __init__(self, user: str, index: int, unlock_time: int, now: int):
        super().__init__(
            f"Stake {index} of {user} is locked until {unlock_time}",
            user=user, index=index, unlock_time=unlock_time, now=now,
            remaining=unlock_time - now,
        )


class ClaimTooEarly(StateError):
    code = "ClaimTooEarly"

    def __init__(self, user: str, next_claim: int, now: int):
        super().__init__(
            f"{user} cannot claim before {next_claim}",
            user=user, next_claim=next_claim, now=now, remaining=next_claim - now,
        )


class ContractPaused(StateError):
    code = "Paused"

    def __init__(self, operation: str = ""):
        super().__init__("Staking is paused", operation=operation)


class ClockRegression(StateError):
    code = "ClockRegression"

    def __init__(self, now: int, last_seen: int):
        super().__init__(f"Clock moved backwards: {now} < {last_seen}",
                         now=now, last_seen=last_seen)


# ── capacity ────────────────────────────────────────────────────────────

class CapacityError(StakingError):
    kind = ErrorKind.CAPACITY
    code = "CapacityExceeded"


class TierCapacityExceeded(CapacityError):
    code = "TierCapacityExceeded"

    def __init__(self, tier_id: int, tier_cap: int, total_staked: int, amount: int):
        super().__init__(
            f"Tier {tier_id} capacity exceeded",
            tier_id=tier_id, required=total_staked + amount, available=tier_cap,
            headroom=max(0, tier_cap - total_staked),
        )


class PremiumRosterFull(CapacityError):
    code = "PremiumRosterFull"

    def __init__(self, limit: int):
        super().__init__(f"Premium roster is full ({limit})", limit=limit)


class InsufficientRewardPool(CapacityError):
    code = "InsufficientRewardPool"

    def __init__(self, required: int, available: int):
        super().__init__("Reward pool cannot cover this payout",
                         required=required, available=available)


# ── authorization ───────────────────────────────────────────────────────

class AuthorizationError(StakingError):
    kind = ErrorKind.AUTHORIZATION
    code = "OwnableUnauthorizedAccount"

    def __init__(self, caller: str, operation: str = ""):
        super().__init__(f"{caller} is not allowed to call {operation or 'this'}",
                         caller=caller, operation=operation)


# ── arithmetic ──────────────────────────────────────────────────────────

class PrecisionError(StakingError):
    """A nonzero input would truncate to a zero amount."""
    kind = ErrorKind.ARITHMETIC
    code = "PrecisionLoss"


class ArithmeticOverflowError(StakingError):
    kind = ErrorKind.ARITHMETIC
    code = "ArithmeticOverflow"

    def __init__(self, what: str, value: int):
        super().__init__(f"{what} out of range", what=what, value=value)


# ── external ────────────────────────────────────────────────────────────

class ExternalTransferError(StakingError):
    kind = ErrorKind.EXTERNAL
    code = "TransferFailed"

    def __init__(self, direction: str, account: str, amount: int):
        super().__init__(f"Token {direction} of {amount} for {account} failed",
                         direction=direction, account=account, amount=amount)


# ── invariants ──────────────────────────────────────────────────────────

class InvariantViolation(StakingError):
    kind = ErrorKind.INVARIANT
    code = "InvariantViolation"

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors), errors=errors)
