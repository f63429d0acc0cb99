"""Local Ed25519 key material for aw accounts."""

from __future__ import annotations

import base64
import os
import textwrap
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from awcli.awconfig.atomic import atomic_write_bytes
from awcli.crypto.didkey import compute_did_key, did_fingerprint
from awcli.errors import KeyMaterialError

PRIVATE_KEY_PEM_TYPE = "ED25519 PRIVATE KEY"
PUBLIC_KEY_PEM_TYPE = "ED25519 PUBLIC KEY"
ROTATED_DIR_NAME = "rotated"
SEED_LEN = 32


@dataclass(frozen=True)
class KeyPair:
    private_key_bytes: bytes
    public_key_bytes: bytes

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls.from_seed(
            Ed25519PrivateKey.generate().private_bytes(
                Encoding.Raw, PrivateFormat.Raw, NoEncryption()
            )
        )

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeyPair":
        if len(seed) != SEED_LEN:
            raise KeyMaterialError(f"invalid seed size {len(seed)}")
        private = Ed25519PrivateKey.from_private_bytes(seed)
        public_key_bytes = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return cls(private_key_bytes=seed, public_key_bytes=public_key_bytes)

    @property
    def did(self) -> str:
        return compute_did_key(self.public_key_bytes)


def _encode_pem(block_type: str, data: bytes) -> bytes:
    body = "\n".join(textwrap.wrap(base64.b64encode(data).decode("ascii"), 64))
    return f"-----BEGIN {block_type}-----\n{body}\n-----END {block_type}-----\n".encode("ascii")


def _decode_pem(path: Path, expected_type: str) -> bytes:
    try:
        text = path.read_text(encoding="ascii")
    except (OSError, UnicodeDecodeError) as exc:
        raise KeyMaterialError(f"read {path}: {exc}") from exc

    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2 or not lines[0].startswith("-----BEGIN ") or not lines[-1].startswith("-----END "):
        raise KeyMaterialError(f"no PEM block in {path}")
    block_type = lines[0][len("-----BEGIN "):].rstrip("-")
    if block_type != expected_type:
        raise KeyMaterialError(f"unexpected PEM type {block_type!r} in {path}")
    try:
        return base64.b64decode("".join(lines[1:-1]), validate=True)
    except ValueError as exc:
        raise KeyMaterialError(f"invalid PEM body in {path}") from exc


def address_to_file_base(address: str) -> str:
    return address.replace("/", "-")


def did_to_file_base(did: str) -> str:
    return did.replace(":", "-")


def signing_key_path(keys_dir: str | Path, address: str, did: str) -> Path:
    """Active key path; the DID fragment keeps a new key from replacing the old one."""
    base = f"{address_to_file_base(address)}.{did_fingerprint(did)}"
    return Path(keys_dir) / f"{base}.signing.key"


def public_key_path_for(signing_path: str | Path) -> Path:
    path = Path(signing_path)
    return path.with_name(path.name.removesuffix(".key") + ".pub")


def _write_keypair(
    key_path: Path,
    pub_path: Path,
    keypair: KeyPair,
    *,
    overwrite: bool,
) -> None:
    try:
        atomic_write_bytes(
            key_path,
            _encode_pem(PRIVATE_KEY_PEM_TYPE, keypair.private_key_bytes),
            mode=0o600,
            overwrite=overwrite,
        )
        atomic_write_bytes(
            pub_path,
            _encode_pem(PUBLIC_KEY_PEM_TYPE, keypair.public_key_bytes),
            mode=0o644,
            overwrite=overwrite,
        )
    except FileExistsError as exc:
        target = exc.filename2 or exc.filename
        raise KeyMaterialError(f"refusing to overwrite existing key file {target}") from exc


def save_keypair(keys_dir: str | Path, address: str, keypair: KeyPair) -> Path:
    """Write the keypair as PEM files and return the private key path.

    Raises OSError when the files cannot be written.
    """
    key_path = signing_key_path(keys_dir, address, keypair.did)
    _write_keypair(key_path, public_key_path_for(key_path), keypair, overwrite=True)
    return key_path


def archive_key(keys_dir: str | Path, old_did: str, keypair: KeyPair) -> Path:
    """Copy a retired keypair to ``keys/rotated/<did>.key``. Never overwrites."""
    rotated_dir = Path(keys_dir) / ROTATED_DIR_NAME
    rotated_dir.mkdir(parents=True, exist_ok=True)
    if os.name == "posix":
        rotated_dir.chmod(0o700)
    base = did_to_file_base(old_did)
    key_path = rotated_dir / f"{base}.key"
    _write_keypair(key_path, rotated_dir / f"{base}.pub", keypair, overwrite=False)
    return key_path


def load_signing_key(path: str | Path) -> KeyPair:
    seed = _decode_pem(Path(path).expanduser(), PRIVATE_KEY_PEM_TYPE)
    if len(seed) != SEED_LEN:
        raise KeyMaterialError(f"invalid seed size {len(seed)} in {path}")
    return KeyPair.from_seed(seed)


def load_public_key(path: str | Path) -> bytes:
    public_key_bytes = _decode_pem(Path(path).expanduser(), PUBLIC_KEY_PEM_TYPE)
    if len(public_key_bytes) != 32:
        raise KeyMaterialError(f"invalid public key size {len(public_key_bytes)} in {path}")
    return public_key_bytes
