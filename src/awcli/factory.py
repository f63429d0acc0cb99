"""Turn a resolved Selection into an authenticated client."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

import yaml

from awcli.awconfig.global_config import known_agents_path
from awcli.awconfig.keys import load_signing_key
from awcli.awconfig.selection import Selection
from awcli.client import DEFAULT_TIMEOUT, AwebClient
from awcli.pinstore import PinStore
from awcli.probe import resolve_working_base_url

logger = logging.getLogger(__name__)


def build_client(
    selection: Selection,
    *,
    config_path: str | Path,
    timeout: float = DEFAULT_TIMEOUT,
) -> AwebClient:
    """API-key client for plain selections, identity client when a key and DID are set."""
    if not selection.has_identity:
        return AwebClient.with_api_key(selection.base_url, selection.api_key, timeout=timeout)

    keypair = load_signing_key(selection.signing_key)
    client = AwebClient.with_identity(
        selection.base_url,
        selection.api_key,
        keypair,
        selection.did,
        timeout=timeout,
    )
    client.address = selection.address

    pin_path = known_agents_path(config_path)
    try:
        pins = PinStore.load(pin_path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.debug("load pin store %s: %s", pin_path, exc)
        pins = PinStore()
    client.set_pin_store(pins, pin_path)
    return client


def with_working_base_url(selection: Selection) -> Selection:
    """Return ``selection`` with its base URL replaced by the probed mount root."""
    return dataclasses.replace(selection, base_url=resolve_working_base_url(selection.base_url))
