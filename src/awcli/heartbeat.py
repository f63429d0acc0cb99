"""Best-effort presence heartbeat fired alongside authenticated commands."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from awcli.awconfig.global_config import load_global_from
from awcli.awconfig.selection import EnvSnapshot, ResolveOptions, resolve
from awcli.client import AwebClient
from awcli.probe import resolve_working_base_url

logger = logging.getLogger(__name__)

HEARTBEAT_TIMEOUT = 5.0


def fire_heartbeat(
    *,
    config_path: str | Path,
    working_dir: str | Path | None,
    env: EnvSnapshot,
) -> bool:
    """Send one heartbeat for the default selection. Never raises."""
    try:
        config = load_global_from(config_path)
        selection = resolve(config, ResolveOptions(working_dir=working_dir, env=env))
        if not selection.api_key:
            logger.debug("heartbeat: no API key configured")
            return False
        base_url = resolve_working_base_url(selection.base_url)
        client = AwebClient.with_api_key(base_url, selection.api_key, retries=0)
        client.heartbeat(timeout=HEARTBEAT_TIMEOUT)
    except Exception as exc:  # noqa: BLE001
        logger.debug("heartbeat: %s", exc)
        return False
    return True


def start_heartbeat(
    *,
    config_path: str | Path,
    working_dir: str | Path | None,
    env: EnvSnapshot,
) -> threading.Thread:
    thread = threading.Thread(
        target=fire_heartbeat,
        kwargs={"config_path": config_path, "working_dir": working_dir, "env": env},
        name="aw-heartbeat",
        daemon=True,
    )
    thread.start()
    return thread
