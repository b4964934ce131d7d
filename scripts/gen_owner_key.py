#!/usr/bin/env python3
"""
Generate a secp256k1 identity for TierStake.

Writes a JSON key file (encrypted with AES-256-GCM when a passphrase is
given) and prints the address to put in ``tierstake.toml``:

    [staking]
    owner = "ts..."
    owner_key_file = "data/owner.json"

Usage:
    python scripts/gen_owner_key.py --out data/owner.json
    python scripts/gen_owner_key.py --out data/owner.json --passphrase-env OWNER_PASS
    python scripts/gen_owner_key.py --seed "my recovery phrase" --out data/owner.json
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure project root is on sys.path so we can import tierstake_core
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tierstake_core.wallet import Wallet  # noqa: E402


def write_key_file(wallet: Wallet, out: Path, passphrase: str = "") -> Path:
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = wallet.export_encrypted(passphrase) if passphrase else wallet.to_dict()
    out.write_text(json.dumps(payload, indent=2) + "\n")
    # Restrict permissions on the private key
    os.chmod(out, 0o600)
    return out


def main() -> None:
    p = argparse.ArgumentParser(description="Generate a TierStake owner/user key")
    p.add_argument("--out", default="data/owner.json", help="Key file to write")
    p.add_argument("--seed", default=None, help="Derive deterministically from a seed phrase")
    p.add_argument("--passphrase-env", default=None,
                   help="Name of an environment variable holding the encryption passphrase")
    p.add_argument("--force", action="store_true", help="Overwrite an existing key file")
    args = p.parse_args()

    out = Path(args.out)
    if out.exists() and not args.force:
        sys.exit(f"ERROR: {out} already exists (use --force to overwrite)")

    passphrase = ""
    if args.passphrase_env:
        passphrase = os.environ.get(args.passphrase_env, "")
        if not passphrase:
            sys.exit(f"ERROR: environment variable {args.passphrase_env} is empty")

    wallet = Wallet.from_seed(args.seed) if args.seed else Wallet.create()
    write_key_file(wallet, out, passphrase)

    print(f"Address:    {wallet.address}")
    print(f"Public key: {wallet.public_key.hex()}")
    print(f"Key file:   {out} ({'encrypted' if passphrase else 'PLAINTEXT'})")
    print()
    print("Add to tierstake.toml:")
    print()
    print("    [staking]")
    print(f'    owner = "{wallet.address}"')
    print(f'    owner_key_file = "{out}"')


if __name__ == "__main__":
    main()
