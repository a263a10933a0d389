"""Wallet signature checks.

Actor addresses are base58-encoded Ed25519 public keys (Solana wallets) and
signatures are base58-encoded detached Ed25519 signatures over the UTF-8
message bytes.
"""
from __future__ import annotations

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def decode_address(address: str) -> bytes:
    raw = base58.b58decode(str(address or "").strip())
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise ValueError("wallet address must decode to a 32-byte public key")
    return raw


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
    except ValueError:
        return False
    return True


def verify_signature(address: str, message: str, signature: str) -> bool:
    try:
        public_key = Ed25519PublicKey.from_public_bytes(decode_address(address))
        signature_bytes = base58.b58decode(str(signature or "").strip())
        if len(signature_bytes) != SIGNATURE_LENGTH:
            return False
        public_key.verify(signature_bytes, message.encode("utf-8"))
    except (ValueError, InvalidSignature):
        return False
    return True
