"""Ed25519 signing helpers for key rotation."""

from __future__ import annotations

import base64
import json

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


def b64encode_raw(data: bytes) -> str:
    """Standard base64 without padding."""
    return base64.b64encode(data).decode("ascii").rstrip("=")


def b64decode_raw(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.b64decode(data + padding, validate=True)


def canonical_rotation_payload(*, old_did: str, new_did: str, timestamp: str) -> bytes:
    """Canonical bytes for the old key's rotation signature (sorted keys, compact)."""
    return json.dumps(
        {"new_did": new_did, "old_did": old_did, "timestamp": timestamp},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def sign_rotation(
    private_key_bytes: bytes,
    *,
    old_did: str,
    new_did: str,
    timestamp: str,
) -> str:
    payload = canonical_rotation_payload(old_did=old_did, new_did=new_did, timestamp=timestamp)
    signature = Ed25519PrivateKey.from_private_bytes(private_key_bytes).sign(payload)
    return b64encode_raw(signature)


def verify_rotation_signature(
    old_public_key: bytes,
    *,
    old_did: str,
    new_did: str,
    timestamp: str,
    signature: str,
) -> bool:
    try:
        raw_signature = b64decode_raw(signature)
        key = Ed25519PublicKey.from_public_bytes(old_public_key)
        key.verify(
            raw_signature,
            canonical_rotation_payload(old_did=old_did, new_did=new_did, timestamp=timestamp),
        )
    except (InvalidSignature, ValueError):
        return False
    return True
