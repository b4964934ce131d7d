"""
TOML-based configuration for a TierStake server.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from tierstake_core.config import load_config
    cfg = load_config("tierstake.toml")

Token amounts in the file are written in whole tokens (``1000`` or
``"0.5"``) and converted to base units when the engine is built.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]

from tierstake_core.precision import SECONDS_PER_DAY
from tierstake_core.token import DEFAULT_CUSTODY


@dataclass
class ServerConfig:
    """HTTP listener settings."""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class StakingConfig:
    """Initial ``StakingParameters``; the owner may change them later."""
    owner: str = ""
    owner_key_file: str = ""          # PEM/JSON key used by scripts to sign admin calls
    emergency_fee_bps: int = 2_000
    compound_fee_bps: int = 100
    max_stakes_per_user: int = 10
    claim_cooldown: int = SECONDS_PER_DAY
    min_compound_amount: float | str = 1
    max_premium_users: int = 1_000
    reward_start: int = 0
    reward_pool: float | str = 0
    reward_pool_duration: int = 3 * 365 * SECONDS_PER_DAY


@dataclass
class TiersConfig:
    """
    Tier definitions.

    ``definitions`` is a list of tables with the ``Tier`` field names
    (``lock_days`` may be given instead of ``lock_duration``).  When empty,
    the default Bronze/Silver/Gold/Diamond set is used.
    """
    definitions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TokenConfig:
    """
    In-memory token ledger used by the server.

    ``balances`` maps address → initial balance in whole tokens.  The
    ``reward_reserve`` is minted straight into custody so claims can be paid.
    """
    custody: str = DEFAULT_CUSTODY
    balances: dict[str, float] = field(default_factory=dict)
    reward_reserve: float | str = 0


@dataclass
class APIConfig:
    """REST API settings."""
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536
    require_signatures: bool = True    # POST bodies must be signed by the caller's key


@dataclass
class StorageConfig:
    """Audit persistence settings."""
    enabled: bool = False
    path: str = "data/tierstake_audit.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class TierStakeConfig:
    """Top-level configuration container."""
    server: ServerConfig = field(default_factory=ServerConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    tiers: TiersConfig = field(default_factory=TiersConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> TierStakeConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        TIERSTAKE_HOST         -> server.host
        TIERSTAKE_PORT         -> server.port
        TIERSTAKE_OWNER        -> staking.owner
        TIERSTAKE_API_KEY      -> api.api_key
        TIERSTAKE_CORS_ORIGINS -> api.cors_origins (comma-separated)
        TIERSTAKE_LOG_LEVEL    -> logging.level
        TIERSTAKE_LOG_FMT      -> logging.format
        TIERSTAKE_DB_PATH      -> storage.path (enables storage)
    """
    cfg = TierStakeConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("server", cfg.server),
                ("staking", cfg.staking),
                ("token", cfg.token),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            # [[tiers]] array of tables
            if isinstance(data.get("tiers"), list):
                cfg.tiers.definitions = list(data["tiers"])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("TIERSTAKE_HOST"):
        cfg.server.host = v
    if v := os.environ.get("TIERSTAKE_PORT"):
        cfg.server.port = int(v)
    if v := os.environ.get("TIERSTAKE_OWNER"):
        cfg.staking.owner = v
    if v := os.environ.get("TIERSTAKE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("TIERSTAKE_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("TIERSTAKE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("TIERSTAKE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("TIERSTAKE_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True

    return cfg
