from __future__ import annotations

import pytest

from awcli.awconfig.context import WorktreeContext, save_worktree_context_to
from awcli.awconfig.global_config import Account, GlobalConfig, Server
from awcli.awconfig.selection import (
    EnvSnapshot,
    ResolveOptions,
    derive_agent_address,
    resolve,
)
from awcli.errors import (
    AccountNotFoundError,
    ConfigurationError,
    NoDefaultConfiguredError,
    ServerAmbiguousError,
)


def _config() -> GlobalConfig:
    return GlobalConfig(
        servers={
            "serverX": Server(url="https://x.example"),
            "serverY": Server(url="https://y.example"),
        },
        accounts={
            "a": Account(server="serverX", api_key="key-a", agent_alias="alice"),
            "b": Account(server="serverY", api_key="key-b", agent_alias="bob"),
        },
        default_account="a",
    )


def _write_context(tmp_path, context: WorktreeContext) -> None:
    save_worktree_context_to(tmp_path / ".aw" / "context", context)


def test_default_account_from_config() -> None:
    selection = resolve(_config(), ResolveOptions())
    assert selection.account_name == "a"
    assert selection.base_url == "https://x.example"
    assert selection.api_key == "key-a"


def test_explicit_account_wins_over_context_and_env(tmp_path) -> None:
    _write_context(tmp_path, WorktreeContext(default_account="a", server_accounts={"serverY": "a"}))
    options = ResolveOptions(
        account_name="b",
        server_name="serverX",
        working_dir=tmp_path,
        env=EnvSnapshot(url="https://env.example", api_key="env-key"),
    )

    selection = resolve(_config(), options)

    assert selection.account_name == "b"
    assert selection.base_url == "https://y.example"
    assert selection.api_key == "key-b"


def test_server_override_uses_context_mapping(tmp_path) -> None:
    _write_context(
        tmp_path,
        WorktreeContext(default_account="a", server_accounts={"serverY": "b"}),
    )
    selection = resolve(_config(), ResolveOptions(server_name="serverY", working_dir=tmp_path))
    assert selection.account_name == "b"
    assert selection.server_name == "serverY"


def test_server_override_falls_back_to_single_bound_account() -> None:
    selection = resolve(_config(), ResolveOptions(server_name="serverY"))
    assert selection.account_name == "b"


def test_server_override_with_several_accounts_is_ambiguous() -> None:
    config = _config()
    config.accounts["c"] = Account(server="serverY", api_key="key-c")

    with pytest.raises(ServerAmbiguousError) as excinfo:
        resolve(config, ResolveOptions(server_name="serverY"))
    assert excinfo.value.matches == ("b", "c")
    assert "pass --account" in str(excinfo.value)


def test_server_override_with_no_accounts_is_an_error() -> None:
    with pytest.raises(ServerAmbiguousError, match="no account configured"):
        resolve(_config(), ResolveOptions(server_name="serverZ"))


def test_context_default_beats_config_default(tmp_path) -> None:
    _write_context(tmp_path, WorktreeContext(default_account="b"))
    selection = resolve(_config(), ResolveOptions(working_dir=tmp_path))
    assert selection.account_name == "b"


def test_env_overrides_apply_without_explicit_selection() -> None:
    env = EnvSnapshot(url="https://env.example", api_key="env-key")
    selection = resolve(_config(), ResolveOptions(env=env))
    assert selection.base_url == "https://env.example"
    assert selection.api_key == "env-key"


def test_env_overrides_ignored_when_disabled() -> None:
    env = EnvSnapshot(url="https://env.example", api_key="env-key")
    selection = resolve(_config(), ResolveOptions(env=env, allow_env_overrides=False))
    assert selection.base_url == "https://x.example"
    assert selection.api_key == "key-a"


def test_env_overrides_ignored_with_explicit_server() -> None:
    env = EnvSnapshot(url="https://env.example", api_key="env-key")
    selection = resolve(_config(), ResolveOptions(server_name="serverY", env=env))
    assert selection.base_url == "https://y.example"
    assert selection.api_key == "key-b"


def test_unknown_account_is_reported() -> None:
    with pytest.raises(AccountNotFoundError) as excinfo:
        resolve(_config(), ResolveOptions(account_name="ghost"))
    assert excinfo.value.account_name == "ghost"


def test_stale_context_account_is_reported(tmp_path) -> None:
    _write_context(tmp_path, WorktreeContext(default_account="ghost"))
    with pytest.raises(AccountNotFoundError, match="ghost"):
        resolve(_config(), ResolveOptions(working_dir=tmp_path))


def test_nothing_selected_is_reported() -> None:
    config = _config()
    config.default_account = ""
    with pytest.raises(NoDefaultConfiguredError):
        resolve(config, ResolveOptions())


def test_base_url_derived_from_server_name_when_unlisted() -> None:
    config = GlobalConfig(
        accounts={"local": Account(server="localhost:8000", api_key="k")},
        default_account="local",
    )
    assert resolve(config, ResolveOptions()).base_url == "http://localhost:8000"


def test_account_without_server_needs_env_url() -> None:
    config = GlobalConfig(accounts={"bare": Account(api_key="k")}, default_account="bare")
    with pytest.raises(ConfigurationError, match="no server URL"):
        resolve(config, ResolveOptions())
    selection = resolve(config, ResolveOptions(env=EnvSnapshot(url="https://env.example")))
    assert selection.base_url == "https://env.example"


def test_resolve_is_deterministic(tmp_path) -> None:
    _write_context(tmp_path, WorktreeContext(default_account="b"))
    options = ResolveOptions(working_dir=tmp_path, env=EnvSnapshot(api_key="env-key"))
    assert resolve(_config(), options) == resolve(_config(), options)


def test_derive_agent_address_prefers_namespace() -> None:
    assert derive_agent_address("acme", "proj", "alice") == "acme/alice"
    assert derive_agent_address("", "proj", "alice") == "proj/alice"
    assert derive_agent_address("", "", "alice") == "alice"


def test_env_snapshot_reads_known_variables() -> None:
    env = EnvSnapshot.from_environ(
        {
            "AWEB_URL": " https://env.example ",
            "AWEB_API_KEY": "k",
            "AWEB_CLOUD_TOKEN": "t",
            "AW_CONFIG_PATH": "/tmp/aw.yaml",
            "UNRELATED": "x",
        }
    )
    assert env == EnvSnapshot(
        url="https://env.example",
        api_key="k",
        cloud_token="t",
        config_path="/tmp/aw.yaml",
    )
