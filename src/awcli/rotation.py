"""Signing-key rotation for aw accounts.

Nothing local is written until the server has accepted the rotation. After
that, persistence runs in a fixed order:

1. archive the old keypair under its old DID (failure is only a warning);
2. write the new keypair (failure aborts before the config is touched);
3. rewrite the account's did/custody/signing_key under the config lock.

Step 3 is the commit point. A crash before it leaves the account on the old,
still-present key; a crash after it leaves a consistent new identity.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path

from awcli.awconfig.global_config import CUSTODY_SELF, GlobalConfig, keys_dir, update_global_at
from awcli.awconfig.keys import KeyPair, archive_key, load_signing_key, save_keypair
from awcli.awconfig.selection import Selection
from awcli.client import AwebClient
from awcli.errors import (
    ConfigurationError,
    KeyMaterialError,
    PersistenceError,
    RotationPreconditionError,
)

logger = logging.getLogger(__name__)

ROTATION_TIMEOUT = 10.0


@dataclass(frozen=True)
class RotationResult:
    account_name: str
    old_did: str
    new_did: str
    custody: str
    signing_key_path: Path
    archive_path: Path | None = None


def update_account_identity(
    config_path: str | Path,
    account_name: str,
    *,
    did: str,
    custody: str,
    signing_key: str,
) -> None:
    """Commit a new identity for ``account_name`` in one locked, atomic rewrite."""

    def mutate(config: GlobalConfig) -> None:
        account = config.accounts.get(account_name)
        if account is None:
            raise ConfigurationError(f"account {account_name!r} disappeared from the config")
        config.accounts[account_name] = dataclasses.replace(
            account, did=did, custody=custody, signing_key=signing_key
        )

    try:
        update_global_at(config_path, mutate)
    except OSError as exc:
        raise PersistenceError(f"update config {config_path}: {exc}") from exc


def _persist_new_key(
    selection: Selection,
    *,
    config_path: str | Path,
    keypair: KeyPair,
) -> Path:
    try:
        key_path = save_keypair(
            keys_dir(config_path),
            selection.address or selection.account_name,
            keypair,
        )
    except (OSError, KeyMaterialError) as exc:
        raise PersistenceError(f"save new keypair: {exc}") from exc
    update_account_identity(
        config_path,
        selection.account_name,
        did=keypair.did,
        custody=CUSTODY_SELF,
        signing_key=str(key_path),
    )
    return key_path


def check_rotation(selection: Selection) -> None:
    if not selection.signing_key:
        raise RotationPreconditionError(
            "no signing key configured; use --self-custody to graduate from custodial "
            "to self-custody"
        )
    if not selection.did:
        raise RotationPreconditionError(
            f"no DID configured for account {selection.account_name!r}"
        )


def check_graduation(selection: Selection) -> None:
    if selection.custody == CUSTODY_SELF:
        raise RotationPreconditionError(
            f"account {selection.account_name!r} is already self-custody"
        )
    if not selection.api_key:
        raise RotationPreconditionError(
            f"account {selection.account_name!r} has no API key to authenticate the rotation"
        )


def rotate_self_custody(
    selection: Selection,
    *,
    config_path: str | Path,
    timeout: float = ROTATION_TIMEOUT,
) -> RotationResult:
    """Replace a self-custody signing key, authenticated by the current key."""
    check_rotation(selection)

    old_keypair = load_signing_key(selection.signing_key)
    client = AwebClient.with_identity(
        selection.base_url,
        selection.api_key,
        old_keypair,
        selection.did,
        timeout=timeout,
    )

    new_keypair = KeyPair.generate()
    response = client.rotate_key(
        new_did=new_keypair.did,
        new_public_key=new_keypair.public_key_bytes,
        custody=CUSTODY_SELF,
    )
    logger.debug("server accepted rotation %s -> %s", response.old_did, response.new_did)

    archive_path: Path | None = None
    try:
        archive_path = archive_key(keys_dir(config_path), selection.did, old_keypair)
    except (OSError, KeyMaterialError) as exc:
        logger.warning("failed to archive old key %s: %s", selection.did, exc)

    key_path = _persist_new_key(selection, config_path=config_path, keypair=new_keypair)
    return RotationResult(
        account_name=selection.account_name,
        old_did=selection.did,
        new_did=new_keypair.did,
        custody=CUSTODY_SELF,
        signing_key_path=key_path,
        archive_path=archive_path,
    )


def graduate_to_self_custody(
    selection: Selection,
    *,
    config_path: str | Path,
    timeout: float = ROTATION_TIMEOUT,
) -> RotationResult:
    """Move a custodial account to a locally held key; the server signs the handover."""
    check_graduation(selection)

    new_keypair = KeyPair.generate()
    client = AwebClient.with_api_key(selection.base_url, selection.api_key, timeout=timeout)
    response = client.rotate_key_custodial(
        new_did=new_keypair.did,
        new_public_key=new_keypair.public_key_bytes,
        custody=CUSTODY_SELF,
    )

    key_path = _persist_new_key(selection, config_path=config_path, keypair=new_keypair)
    return RotationResult(
        account_name=selection.account_name,
        old_did=response.old_did or selection.did,
        new_did=new_keypair.did,
        custody=CUSTODY_SELF,
        signing_key_path=key_path,
    )
