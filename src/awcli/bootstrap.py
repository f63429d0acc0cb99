"""Account bootstrap for ``aw init``: pick a server, register an agent, save it."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from awcli.awconfig.context import load_worktree_context_from_dir
from awcli.awconfig.global_config import (
    Account,
    GlobalConfig,
    Server,
    derive_base_url_from_server_name,
    derive_server_name_from_url,
    update_global_at,
    validate_base_url,
)
from awcli.awconfig.selection import EnvSnapshot
from awcli.client import DEFAULT_TIMEOUT, AwebClient
from awcli.errors import (
    AwebRequestError,
    ConfigurationError,
    InvalidBaseURLError,
    PersistenceError,
    ProtocolError,
)
from awcli.probe import resolve_working_base_url
from awcli.schemas import InitRequest, InitResponse

logger = logging.getLogger(__name__)

CLOUD_FALLBACK_STATUSES = (403, 404)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9._-]+")


@dataclass(frozen=True)
class InitTarget:
    base_url: str
    server_name: str


def sanitize_key_component(value: str) -> str:
    """Lowercase ``value`` and collapse runs of unsafe characters into one dash."""
    cleaned = _UNSAFE_KEY_CHARS.sub("-", (value or "").strip().lower()).strip("-")
    return cleaned or "x"


def derive_account_name(server_name: str, project_slug: str, alias: str) -> str:
    return (
        f"acct-{sanitize_key_component(server_name)}"
        f"__{sanitize_key_component(project_slug)}"
        f"__{sanitize_key_component(alias)}"
    )


def cloud_root_base_url(base_url: str) -> str:
    """Strip a trailing ``/api`` mount so cloud routes can be addressed from the root."""
    parts = urlsplit((base_url or "").strip())
    if not parts.scheme or not parts.netloc:
        raise InvalidBaseURLError(f"invalid base url {base_url!r}")
    path = parts.path.rstrip("/")
    if path == "/api":
        path = ""
    return urlunsplit((parts.scheme, parts.netloc, path, "", "")).rstrip("/")


def _server_url(config: GlobalConfig, server_name: str) -> str:
    server = config.servers.get(server_name)
    if server is not None and server.url:
        return server.url
    return derive_base_url_from_server_name(server_name)


def resolve_base_url_for_init(
    *,
    url: str,
    server_name: str,
    config: GlobalConfig,
    working_dir: str | Path | None,
    env: EnvSnapshot,
    probe: bool = True,
) -> InitTarget:
    """Pick the server a new agent registers with, then locate its API mount.

    Order: ``--url``, ``AWEB_URL``, the worktree context's account server (or
    its single ``server_accounts`` entry), ``--server``, the config's default
    account.
    """
    base_url = (url or "").strip() or env.url
    server = (server_name or "").strip()

    if not base_url and not server and working_dir is not None:
        context, _ = load_worktree_context_from_dir(working_dir)
        if context is not None:
            account = config.accounts.get(context.default_account)
            if account is not None:
                server = account.server
            if not server and len(context.server_accounts) == 1:
                server = next(iter(context.server_accounts))

    if not base_url and server:
        base_url = _server_url(config, server)

    if not base_url and config.default_account:
        account = config.accounts.get(config.default_account)
        if account is not None and account.server:
            server = account.server
            base_url = _server_url(config, server)

    if not base_url:
        raise ConfigurationError(
            "no server selected (pass --url or --server, set AWEB_URL, "
            "or configure a default account in your aw config)"
        )
    validate_base_url(base_url)
    if not server:
        server = derive_server_name_from_url(base_url)
    if probe:
        base_url = resolve_working_base_url(base_url)
    return InitTarget(base_url=base_url, server_name=server)


def resolve_cloud_token(
    *,
    explicit_token: str,
    token_account: str,
    config: GlobalConfig,
    env: EnvSnapshot,
) -> str:
    """``--cloud-token``, else ``AWEB_CLOUD_TOKEN``, else the named account's API key."""
    token = (explicit_token or "").strip()
    if token:
        return token
    if env.cloud_token:
        return env.cloud_token
    account_name = (token_account or "").strip()
    if not account_name:
        return ""
    account = config.accounts.get(account_name)
    if account is None:
        raise ConfigurationError(f"unknown account {account_name!r} (--cloud-token-account)")
    return account.api_key


def bootstrap_via_cloud(
    base_url: str,
    request: InitRequest,
    *,
    cloud_token: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> InitResponse:
    if not cloud_token:
        raise ConfigurationError(
            "hosted cloud bootstrap requires --cloud-token, AWEB_CLOUD_TOKEN "
            "or --cloud-token-account"
        )
    client = AwebClient.with_api_key(cloud_root_base_url(base_url), cloud_token, timeout=timeout)
    response = client.cloud_bootstrap_agent(
        alias=request.alias,
        human_name=request.human_name,
        agent_type=request.agent_type,
    )
    if not response.api_key:
        raise ProtocolError("cloud bootstrap: missing api_key in response")
    return InitResponse(
        project_id=response.project_id,
        project_slug=response.project_slug,
        agent_id=response.agent_id,
        alias=response.alias,
        api_key=response.api_key,
        created=response.created,
    )


def init_agent(
    base_url: str,
    request: InitRequest,
    *,
    cloud_token: str = "",
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[InitResponse, bool]:
    """Register through ``/v1/init``; hosted deployments fall back to cloud bootstrap.

    Returns the response and whether the cloud route was used.
    """
    client = AwebClient(base_url=base_url, timeout=timeout)
    try:
        return client.init(request), False
    except AwebRequestError as exc:
        if exc.status_code not in CLOUD_FALLBACK_STATUSES:
            raise
        logger.debug("init endpoint returned %s, trying cloud bootstrap", exc.status_code)
        return bootstrap_via_cloud(base_url, request, cloud_token=cloud_token, timeout=timeout), True


def save_initialized_account(
    config_path: str | Path,
    *,
    account_name: str,
    server_name: str,
    base_url: str,
    response: InitResponse,
    default_project: str,
    set_default: bool = False,
) -> GlobalConfig:
    def mutate(config: GlobalConfig) -> None:
        existing = config.servers.get(server_name)
        if existing is None or not existing.url:
            config.servers[server_name] = Server(url=base_url)
        config.accounts[account_name] = Account(
            server=server_name,
            api_key=response.api_key,
            default_project=default_project,
            agent_id=response.agent_id,
            agent_alias=response.alias,
            namespace_slug=response.namespace_slug,
        )
        if not config.default_account or set_default:
            config.default_account = account_name

    try:
        return update_global_at(config_path, mutate)
    except OSError as exc:
        raise PersistenceError(f"update config {config_path}: {exc}") from exc


def shell_exports(base_url: str, response: InitResponse) -> list[str]:
    return [
        f"export AWEB_URL={base_url}",
        f"export AWEB_API_KEY={response.api_key}",
        f"export AWEB_PROJECT_ID={response.project_id}",
        f"export AWEB_AGENT_ID={response.agent_id}",
        f"export AWEB_AGENT_ALIAS={response.alias}",
    ]
