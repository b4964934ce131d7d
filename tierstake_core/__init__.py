"""
TierStake - a multi-tier, time-accrued token staking ledger.

Key features:
- Numbered tiers with lock duration, yield, premium bonus and capacity caps
- Exact integer reward accrual (multiply before divide, 18-decimal units)
- Atomic operations with in-place rollback of touched records and compensating token transfers
- Auto-compounding, claim-all and penalised emergency exit
- Owner-only administration with a committed audit trail
- Signed REST API on aiohttp
"""

__version__ = "0.9.0"
__all__ = [
    "precision",
    "errors",
    "tiers",
    "rewards",
    "stake_ledger",
    "state",
    "token",
    "events",
    "invariants",
    "atomic",
    "controller",
    "admin",
    "queries",
    "engine",
    "config",
    "wallet",
    "api",
    "storage",
    "logging_config",
]
