#!/usr/bin/env python3
"""
TierStake server runner — starts the staking ledger with:
  - an in-memory token ledger seeded from ``[token]`` config
  - the staking engine (tiers, controller, admin console, queries)
  - the signed REST API
  - optional SQLite audit persistence

Usage:
    python run_server.py --config tierstake.toml --port 8080

Environment variables (alternative to flags):
    TIERSTAKE_HOST, TIERSTAKE_PORT, TIERSTAKE_OWNER, TIERSTAKE_API_KEY,
    TIERSTAKE_LOG_LEVEL, TIERSTAKE_LOG_FMT, TIERSTAKE_DB_PATH,
    TIERSTAKE_OWNER_PASSPHRASE (decrypts ``staking.owner_key_file``)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tierstake_core.api import APIServer  # noqa: E402
from tierstake_core.config import TierStakeConfig, load_config  # noqa: E402
from tierstake_core.engine import build_engine  # noqa: E402
from tierstake_core.logging_config import setup_logging  # noqa: E402
from tierstake_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("tierstake_server")


def resolve_owner(cfg: TierStakeConfig) -> str:
    """
    Owner address from config, else from the owner key file.

    When neither is set a fresh owner key is generated and written to
    ``data/owner.json`` so the operator can sign admin requests.
    """
    if cfg.staking.owner:
        return cfg.staking.owner
    key_file = cfg.staking.owner_key_file or os.path.join("data", "owner.json")
    if os.path.exists(key_file):
        with open(key_file) as f:
            data = json.load(f)
        if "encrypted_private_key" in data:
            passphrase = os.environ.get("TIERSTAKE_OWNER_PASSPHRASE", "")
            wallet = Wallet.import_encrypted(data, passphrase)
        else:
            wallet = Wallet.from_private_hex(data["private_key"])
        logger.info(f"Owner key loaded from {key_file}")
        return wallet.address

    wallet = Wallet.create()
    os.makedirs(os.path.dirname(key_file) or ".", exist_ok=True)
    passphrase = os.environ.get("TIERSTAKE_OWNER_PASSPHRASE", "")
    payload = wallet.export_encrypted(passphrase) if passphrase else wallet.to_dict()
    with open(key_file, "w") as f:
        json.dump(payload, f, indent=2)
    os.chmod(key_file, 0o600)
    logger.warning(f"Generated new owner key {wallet.address} -> {key_file}")
    return wallet.address


def parse_args():
    p = argparse.ArgumentParser(description="TierStake staking ledger server")
    p.add_argument("--config", default=None, help="Path to tierstake.toml config file")
    p.add_argument("--host", default=None, help="Listen host")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--owner", default=None, help="Owner address")
    p.add_argument("--db", default=None, help="Persist audit records to this SQLite file")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    p.add_argument("--insecure-unsigned", action="store_true",
                   help="Accept unsigned POST bodies with a 'caller' field (development only)")
    return p.parse_args()


async def main():
    args = parse_args()

    # Load config (TOML + env overrides), then CLI flags override config
    cfg = load_config(args.config)
    if args.host:
        cfg.server.host = args.host
    if args.port is not None:
        cfg.server.port = args.port
    if args.owner:
        cfg.staking.owner = args.owner
    if args.db:
        cfg.storage.path = args.db
        cfg.storage.enabled = True
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    if args.insecure_unsigned:
        cfg.api.require_signatures = False

    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)
    cfg.staking.owner = resolve_owner(cfg)

    engine = build_engine(cfg)
    api = APIServer(engine, host=cfg.server.host, port=cfg.server.port, api_config=cfg.api)
    await api.start()

    if not cfg.api.require_signatures:
        logger.warning(
            "Running with UNSIGNED requests — any client can act as any user. "
            "Do not expose this server."
        )

    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await api.stop()
        engine.close()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
