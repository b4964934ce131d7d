"""
Identities for TierStake.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation (``"ts" + RIPEMD160(SHA256(pubkey))``)
  - Request signing and verification
  - Serialisable import / export (encrypted with passphrase)

The owner and every user are identified by the address derived from the
public key that signed their request, so the HTTP layer never has to
trust a caller-supplied name.
"""

from __future__ import annotations

import hashlib
import os

from Crypto.Cipher import AES
from Crypto.Hash import RIPEMD160
from ecdsa import BadSignatureError, MalformedPointError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_string, sigencode_string

ADDRESS_PREFIX = "ts"

_KDF_ITERATIONS = 600_000
_SEED_SALT = b"TierStake/seed/v1"

_ORDER = SECP256k1.order
_HALF_ORDER = _ORDER // 2


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def derive_address(public_key: bytes) -> str:
    return ADDRESS_PREFIX + hash160(public_key).hex()


def is_address(value: str) -> bool:
    if not isinstance(value, str) or not value.startswith(ADDRESS_PREFIX):
        return False
    body = value[len(ADDRESS_PREFIX):]
    return len(body) == 40 and all(c in "0123456789abcdef" for c in body)


def generate_keypair() -> tuple[bytes, bytes]:
    """Returns ``(private_key, uncompressed_public_key)``."""
    sk = SigningKey.generate(curve=SECP256k1)
    return sk.to_string(), b"\x04" + sk.get_verifying_key().to_string()


def normalize_signature(signature: bytes) -> bytes:
    """Map ``(r, s)`` to the low-s form ``(r, min(s, n - s))``."""
    r, s = sigdecode_string(signature, _ORDER)
    if s > _HALF_ORDER:
        s = _ORDER - s
    return sigencode_string(r, s, _ORDER)


def sign(private_key: bytes, message: bytes) -> bytes:
    """Deterministic (RFC 6979) low-s signature over SHA-256(message), 64 raw bytes."""
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return normalize_signature(sk.sign_deterministic(message, hashfunc=hashlib.sha256))


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """
    Check a raw 64-byte signature.  High-s signatures are refused so each
    message has exactly one valid encoding per key.
    """
    if len(signature) != 64:
        return False
    if int.from_bytes(signature[32:], "big") > _HALF_ORDER:
        return False
    try:
        vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return vk.verify(signature, message, hashfunc=hashlib.sha256)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


class Wallet:
    """A secp256k1 key-pair and the TierStake address it controls."""

    def __init__(self, private_key: bytes, public_key: bytes | None = None):
        self.private_key = private_key
        if public_key is None:
            sk = SigningKey.from_string(private_key, curve=SECP256k1)
            public_key = b"\x04" + sk.get_verifying_key().to_string()
        self.public_key = public_key
        self.address = derive_address(public_key)

    # ---- factory methods ----

    @classmethod
    def create(cls) -> Wallet:
        priv, pub = generate_keypair()
        return cls(priv, pub)

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """
        Derive a wallet deterministically from a seed phrase.

        Uses PBKDF2-HMAC-SHA256 with 600 000 iterations.
        """
        priv = hashlib.pbkdf2_hmac("sha256", seed.encode("utf-8"), _SEED_SALT, _KDF_ITERATIONS)
        return cls(priv)

    @classmethod
    def from_private_hex(cls, private_hex: str) -> Wallet:
        return cls(bytes.fromhex(private_hex))

    # ---- signing ----

    def sign(self, message: bytes) -> bytes:
        return sign(self.private_key, message)

    def signed_headers(self, body: bytes) -> dict[str, str]:
        """Headers that authenticate *body* as coming from this wallet."""
        return {
            "X-Public-Key": self.public_key.hex(),
            "X-Signature": self.sign(body).hex(),
        }

    # ---- serialisation ----

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "public_key": self.public_key.hex(),
            "private_key": self.private_key.hex(),
        }

    def export_encrypted(self, passphrase: str) -> dict:
        """
        Export wallet as an encrypted JSON-compatible dict.

        AES-256-GCM with a fresh nonce, key from PBKDF2-HMAC-SHA256.
        """
        salt = os.urandom(16)
        key = hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, _KDF_ITERATIONS)
        nonce = os.urandom(12)
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(self.private_key)
        return {
            "version": 1,
            "address": self.address,
            "public_key": self.public_key.hex(),
            "encrypted_private_key": ciphertext.hex(),
            "nonce": nonce.hex(),
            "tag": tag.hex(),
            "salt": salt.hex(),
            "kdf": "pbkdf2-hmac-sha256",
            "kdf_iterations": _KDF_ITERATIONS,
        }

    @classmethod
    def import_encrypted(cls, data: dict, passphrase: str) -> Wallet:
        """Decrypt an export.  Raises ``ValueError`` on a wrong passphrase or tamper."""
        salt = bytes.fromhex(data["salt"])
        iterations = data.get("kdf_iterations", _KDF_ITERATIONS)
        key = hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, iterations)
        cipher = AES.new(key, AES.MODE_GCM, nonce=bytes.fromhex(data["nonce"]))
        priv = cipher.decrypt_and_verify(
            bytes.fromhex(data["encrypted_private_key"]), bytes.fromhex(data["tag"]),
        )
        wallet = cls(priv)
        if data.get("address") and data["address"] != wallet.address:
            raise ValueError("address does not match the decrypted key")
        return wallet

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
