"""
TierStake engine: one ledger, one token, every component wired together.

    engine = build_engine(load_config("tierstake.toml"))
    engine.controller.stake(user, to_units(5_000), 2)
    engine.queries.get_user_stats(user)

The controller, admin console and query interface all share a single
``TransactionBoundary`` so user and owner operations are serialised
against the same ``LedgerState``.
"""

from __future__ import annotations

import logging
from typing import Any

from tierstake_core.admin import AdminConsole
from tierstake_core.atomic import Clock, TransactionBoundary, system_clock
from tierstake_core.config import TierStakeConfig
from tierstake_core.controller import StakeLifecycleController
from tierstake_core.errors import ValidationError
from tierstake_core.events import AuditLog
from tierstake_core.precision import SECONDS_PER_DAY, to_units
from tierstake_core.queries import StakingQueries
from tierstake_core.rewards import reward_per_second
from tierstake_core.state import (
    MAX_COMPOUND_FEE_BPS,
    MAX_EMERGENCY_FEE_BPS,
    MIN_EMERGENCY_FEE_BPS,
    LedgerState,
    StakingParameters,
)
from tierstake_core.storage import AuditStore
from tierstake_core.tiers import TierRegistry
from tierstake_core.token import InMemoryToken, TokenCollaborator

logger = logging.getLogger("tierstake_engine")


class StakingEngine:
    def __init__(
        self,
        state: LedgerState,
        token: TokenCollaborator,
        clock: Clock = system_clock,
        audit: AuditLog | None = None,
    ) -> None:
        self.state = state
        self.token = token
        self.audit = audit or AuditLog()
        self.boundary = TransactionBoundary(state, token, self.audit, clock)
        self.controller = StakeLifecycleController(self.boundary, self.audit)
        self.admin = AdminConsole(self.boundary, self.audit)
        self.queries = StakingQueries(self.boundary)
        self.store: AuditStore | None = None

    @classmethod
    def create(
        cls,
        owner: str,
        token: TokenCollaborator | None = None,
        clock: Clock = system_clock,
        tiers: TierRegistry | None = None,
        params: StakingParameters | None = None,
    ) -> StakingEngine:
        """Engine over the default tiers and an empty in-memory token."""
        return cls(
            LedgerState.create(owner, tiers=tiers, params=params),
            token if token is not None else InMemoryToken(),
            clock,
        )

    @property
    def owner(self) -> str:
        return self.state.params.owner

    def attach_store(self, store: AuditStore) -> None:
        self.store = store
        self.audit.add_sink(store)

    def status(self) -> dict:
        with self.boundary.read() as st:
            return {
                "owner": st.params.owner,
                "custody": self.token.custody,
                "last_time": st.last_time,
                "audit_events": len(self.audit),
                "params": st.params.to_dict(),
                "stats": self.queries.get_global_stats(),
            }

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
            self.store = None


# ── construction from config ────────────────────────────────────────

def _tokens(value: Any) -> int:
    # TOML floats go through str so 0.1 stays 0.1
    if isinstance(value, float):
        return to_units(str(value))
    return to_units(value)


def tiers_from_config(definitions: list[dict[str, Any]]) -> TierRegistry:
    """Build a registry from ``[[tiers]]`` tables; ids follow list order."""
    registry = TierRegistry()
    for raw in definitions:
        if "lock_duration" in raw:
            lock = int(raw["lock_duration"])
        else:
            lock = int(raw.get("lock_days", 0)) * SECONDS_PER_DAY
        registry.add_tier(
            lock_duration=lock,
            reward_rate=int(raw.get("reward_rate", 0)),
            min_stake=_tokens(raw.get("min_stake", 0)),
            max_stake=_tokens(raw.get("max_stake", 0)),
            tier_cap=_tokens(raw.get("tier_cap", 0)),
            name=str(raw.get("name", "")),
            active=bool(raw.get("active", True)),
            premium_bonus=int(raw.get("premium_bonus", 0)),
        )
    return registry


def params_from_config(cfg: TierStakeConfig, owner: str) -> StakingParameters:
    s = cfg.staking
    if not MIN_EMERGENCY_FEE_BPS <= s.emergency_fee_bps <= MAX_EMERGENCY_FEE_BPS:
        raise ValidationError("emergency fee out of range", field="emergency_fee_bps",
                              actual=s.emergency_fee_bps)
    if not 0 <= s.compound_fee_bps <= MAX_COMPOUND_FEE_BPS:
        raise ValidationError("compound fee out of range", field="compound_fee_bps",
                              actual=s.compound_fee_bps)
    if s.max_stakes_per_user <= 0:
        raise ValidationError("max_stakes_per_user must be positive",
                              field="max_stakes_per_user")
    pool = _tokens(s.reward_pool)
    return StakingParameters(
        owner=owner,
        emergency_fee_bps=s.emergency_fee_bps,
        compound_fee_bps=s.compound_fee_bps,
        max_stakes_per_user=s.max_stakes_per_user,
        claim_cooldown=s.claim_cooldown,
        min_compound_amount=_tokens(s.min_compound_amount),
        max_premium_users=s.max_premium_users,
        reward_pool=pool,
        reward_pool_duration=s.reward_pool_duration,
        reward_per_second=reward_per_second(pool, s.reward_pool_duration) if pool else 0,
        reward_start=s.reward_start,
    )


def token_from_config(cfg: TierStakeConfig) -> InMemoryToken:
    token = InMemoryToken(
        {addr: _tokens(amount) for addr, amount in cfg.token.balances.items()},
        custody=cfg.token.custody,
    )
    reserve = _tokens(cfg.token.reward_reserve)
    if reserve:
        token.mint(token.custody, reserve)
    return token


def build_engine(
    cfg: TierStakeConfig,
    token: TokenCollaborator | None = None,
    clock: Clock = system_clock,
) -> StakingEngine:
    """Build an engine from configuration; raises ``ValidationError`` on bad values."""
    owner = cfg.staking.owner
    if not owner:
        raise ValidationError("staking.owner is required", field="owner")
    tiers = tiers_from_config(cfg.tiers.definitions) if cfg.tiers.definitions else None
    engine = StakingEngine(
        LedgerState.create(owner, tiers=tiers, params=params_from_config(cfg, owner)),
        token if token is not None else token_from_config(cfg),
        clock,
    )
    if cfg.storage.enabled:
        engine.attach_store(AuditStore(cfg.storage.path))
    logger.info(
        f"Engine ready: owner={owner} tiers={engine.state.tiers.total_tiers} "
        f"custody={engine.token.custody}"
    )
    return engine
