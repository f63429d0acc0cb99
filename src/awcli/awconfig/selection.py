"""Resolve the effective server/account selection for one CLI invocation.

Precedence, highest first:

1. explicit ``--account``;
2. explicit ``--server``: the worktree context's ``server_accounts`` entry,
   else the single config account bound to that server;
3. the worktree context's ``default_account``;
4. the config's ``default_account``.

Environment overrides (URL, API key) apply on top of 3 and 4 only.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from awcli.awconfig.context import WorktreeContext, load_worktree_context_from_dir
from awcli.awconfig.global_config import (
    CONFIG_PATH_ENV_VAR,
    Account,
    GlobalConfig,
    derive_base_url_from_server_name,
)
from awcli.errors import (
    AccountNotFoundError,
    ConfigurationError,
    NoDefaultConfiguredError,
    ServerAmbiguousError,
)

URL_ENV_VAR = "AWEB_URL"
API_KEY_ENV_VAR = "AWEB_API_KEY"
CLOUD_TOKEN_ENV_VAR = "AWEB_CLOUD_TOKEN"


@dataclass(frozen=True)
class EnvSnapshot:
    url: str = ""
    api_key: str = ""
    cloud_token: str = ""
    config_path: str = ""

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "EnvSnapshot":
        return cls(
            url=environ.get(URL_ENV_VAR, "").strip(),
            api_key=environ.get(API_KEY_ENV_VAR, "").strip(),
            cloud_token=environ.get(CLOUD_TOKEN_ENV_VAR, "").strip(),
            config_path=environ.get(CONFIG_PATH_ENV_VAR, "").strip(),
        )


@dataclass(frozen=True)
class ResolveOptions:
    account_name: str = ""
    server_name: str = ""
    working_dir: str | Path | None = None
    env: EnvSnapshot = EnvSnapshot()
    allow_env_overrides: bool = True


@dataclass(frozen=True)
class Selection:
    account_name: str
    server_name: str
    base_url: str
    api_key: str = ""
    agent_id: str = ""
    agent_alias: str = ""
    did: str = ""
    custody: str = ""
    signing_key: str = ""
    default_project: str = ""
    namespace_slug: str = ""
    email: str = ""
    lifetime: str = ""

    @property
    def address(self) -> str:
        return derive_agent_address(self.namespace_slug, self.default_project, self.agent_alias)

    @property
    def has_identity(self) -> bool:
        return bool(self.signing_key and self.did)


def derive_agent_address(namespace_slug: str, project_slug: str, alias: str) -> str:
    if namespace_slug:
        return f"{namespace_slug}/{alias}"
    if project_slug:
        return f"{project_slug}/{alias}"
    return alias


def _lookup(config: GlobalConfig, account_name: str, source: str) -> Account:
    account = config.accounts.get(account_name)
    if account is None:
        raise AccountNotFoundError(
            f"unknown account {account_name!r} ({source})",
            account_name=account_name,
        )
    return account


def _pick_for_server(
    config: GlobalConfig,
    context: WorktreeContext | None,
    context_path: Path | None,
    server_name: str,
) -> str:
    if context is not None:
        mapped = context.server_accounts.get(server_name, "")
        if mapped:
            _lookup(config, mapped, f"server_accounts[{server_name}] in {context_path}")
            return mapped

    matches = tuple(
        sorted(name for name, account in config.accounts.items() if account.server == server_name)
    )
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ServerAmbiguousError(
            f"no account configured for server {server_name!r}",
            server_name=server_name,
        )
    raise ServerAmbiguousError(
        f"server {server_name!r} has {len(matches)} accounts ({', '.join(matches)}); "
        "pass --account to choose one",
        server_name=server_name,
        matches=matches,
    )


def _pick_account(
    config: GlobalConfig,
    options: ResolveOptions,
    context: WorktreeContext | None,
    context_path: Path | None,
) -> str:
    account_name = options.account_name.strip()
    if account_name:
        _lookup(config, account_name, "--account")
        return account_name

    server_name = options.server_name.strip()
    if server_name:
        return _pick_for_server(config, context, context_path, server_name)

    if context is not None and context.default_account:
        _lookup(config, context.default_account, f"default_account in {context_path}")
        return context.default_account

    if config.default_account:
        _lookup(config, config.default_account, "default_account in config")
        return config.default_account

    raise NoDefaultConfiguredError(
        "no account selected (pass --account or --server, run `aw init`, "
        "or set default_account in your aw config)"
    )


def resolve(config: GlobalConfig, options: ResolveOptions) -> Selection:
    """Merge CLI overrides, env, worktree context and config into one Selection."""
    context: WorktreeContext | None = None
    context_path: Path | None = None
    if options.working_dir is not None:
        context, context_path = load_worktree_context_from_dir(options.working_dir)

    account_name = _pick_account(config, options, context, context_path)
    account = config.accounts[account_name]

    base_url = ""
    server = config.servers.get(account.server)
    if server is not None and server.url:
        base_url = server.url
    elif account.server:
        base_url = derive_base_url_from_server_name(account.server)
    api_key = account.api_key

    explicit = bool(options.account_name.strip() or options.server_name.strip())
    if options.allow_env_overrides and not explicit:
        if options.env.url:
            base_url = options.env.url
        if options.env.api_key:
            api_key = options.env.api_key

    if not base_url:
        raise ConfigurationError(f"account {account_name!r} has no server URL configured")

    return Selection(
        account_name=account_name,
        server_name=account.server,
        base_url=base_url,
        api_key=api_key,
        agent_id=account.agent_id,
        agent_alias=account.agent_alias,
        did=account.did,
        custody=account.custody,
        signing_key=account.signing_key,
        default_project=account.default_project,
        namespace_slug=account.namespace_slug,
        email=account.email,
        lifetime=account.lifetime,
    )
