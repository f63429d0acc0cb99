"""Helpers for encoding Ed25519 public keys as did:key identifiers.

DID format:
- did:key:z<base58btc(0xed 0x01 || public_key_bytes)>
where 0xed01 is the Ed25519 multicodec prefix.
"""

from __future__ import annotations

import base58

DID_KEY_PREFIX = "did:key:z"
ED25519_MULTICODEC = b"\xed\x01"
PUBLIC_KEY_LEN = 32


def compute_did_key(public_key_bytes: bytes) -> str:
    if len(public_key_bytes) != PUBLIC_KEY_LEN:
        raise ValueError(f"ed25519 public key must be {PUBLIC_KEY_LEN} bytes")
    encoded = base58.b58encode(ED25519_MULTICODEC + public_key_bytes).decode("ascii")
    return f"{DID_KEY_PREFIX}{encoded}"


def extract_public_key(did: str) -> bytes:
    if not did.startswith(DID_KEY_PREFIX):
        raise ValueError(f"invalid did:key: missing prefix {DID_KEY_PREFIX!r}")
    try:
        decoded = base58.b58decode(did[len(DID_KEY_PREFIX):])
    except ValueError as exc:
        raise ValueError(f"invalid did:key: base58 decode: {exc}") from exc

    expected = len(ED25519_MULTICODEC) + PUBLIC_KEY_LEN
    if len(decoded) != expected:
        raise ValueError(f"invalid did:key: expected {expected} bytes, got {len(decoded)}")
    if decoded[:2] != ED25519_MULTICODEC:
        raise ValueError(
            f"invalid did:key: expected Ed25519 multicodec 0xed01, got 0x{decoded[:2].hex()}"
        )
    return decoded[2:]


def did_multibase(did: str) -> str:
    """Return the multibase-encoded key part (``z...``) of a did:key."""
    return did[len("did:key:"):] if did.startswith("did:key:") else ""


def did_fingerprint(did: str, length: int = 12) -> str:
    multibase = did_multibase(did)
    if not multibase:
        raise ValueError("fingerprint requires a did:key identifier")
    return multibase[-length:]
