from __future__ import annotations

import io
import json
import logging

import pytest

from awcli.awconfig.global_config import (
    Account,
    GlobalConfig,
    Server,
    keys_dir,
    load_global_from,
    save_global_to,
)
from awcli.awconfig.keys import KeyPair, save_keypair
from awcli.cli import main as cli_main
from awcli.cli.main import main
from awcli.errors import AwebRequestError, NoAPIDetectedError, PersistenceError
from awcli.schemas import InitResponse, IntrospectResponse, RotateKeyResponse


@pytest.fixture(autouse=True)
def _no_heartbeat(monkeypatch) -> list[dict]:
    started: list[dict] = []
    monkeypatch.setattr("awcli.cli.main.start_heartbeat", lambda **kwargs: started.append(kwargs))
    return started


@pytest.fixture
def no_probe(monkeypatch) -> None:
    monkeypatch.setattr("awcli.factory.resolve_working_base_url", lambda raw: raw)
    monkeypatch.setattr("awcli.bootstrap.resolve_working_base_url", lambda raw: raw)


def _run(argv: list[str], *, tmp_path, environ: dict[str, str] | None = None) -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    rc = main(
        ["--config", str(tmp_path / "aw" / "config.yaml"), *argv],
        stdout=out,
        stderr=err,
        environ=environ or {},
        cwd=tmp_path,
    )
    return rc, out.getvalue(), err.getvalue()


def _write_config(tmp_path, **accounts: Account) -> None:
    save_global_to(
        tmp_path / "aw" / "config.yaml",
        GlobalConfig(
            servers={"app.aweb.ai": Server(url="https://app.aweb.ai")},
            accounts=dict(accounts),
            default_account=next(iter(accounts), ""),
        ),
    )


def _self_custody_account(tmp_path) -> Account:
    keypair = KeyPair.generate()
    key_path = save_keypair(keys_dir(tmp_path / "aw" / "config.yaml"), "demo/alice", keypair)
    return Account(
        server="app.aweb.ai",
        api_key="aw_sk_secret",
        agent_alias="alice",
        default_project="demo",
        did=keypair.did,
        custody="self",
        signing_key=str(key_path),
    )


def test_version_json(tmp_path) -> None:
    rc, out, _ = _run(["version", "--json"], tmp_path=tmp_path)
    assert rc == 0
    payload = json.loads(out)
    assert payload["cli"] == "aw"
    assert payload["version"]


def test_config_show_redacts_api_key(tmp_path, _no_heartbeat) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="aw_sk_secret", agent_alias="alice"))

    rc, out, _ = _run(["config", "show", "--json"], tmp_path=tmp_path)

    assert rc == 0
    payload = json.loads(out)
    assert payload["account"] == "a"
    assert payload["base_url"] == "https://app.aweb.ai"
    assert payload["api_key"] == "[REDACTED]"
    assert "aw_sk_secret" not in out
    assert _no_heartbeat == []


def test_config_show_honours_account_flag_and_env(tmp_path) -> None:
    _write_config(
        tmp_path,
        a=Account(server="app.aweb.ai", api_key="ka"),
        b=Account(server="localhost:8000", api_key="kb"),
    )

    rc, out, _ = _run(
        ["--account", "b", "config", "show", "--json"],
        tmp_path=tmp_path,
        environ={"AWEB_URL": "https://env.example"},
    )
    assert rc == 0
    assert json.loads(out)["base_url"] == "http://localhost:8000"

    rc, out, _ = _run(
        ["config", "show", "--json"],
        tmp_path=tmp_path,
        environ={"AWEB_URL": "https://env.example"},
    )
    assert json.loads(out)["base_url"] == "https://env.example"


def test_unknown_account_is_config_error(tmp_path) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="ka"))
    rc, _, err = _run(["--account", "ghost", "config", "show"], tmp_path=tmp_path)
    assert rc == 1
    assert err.startswith("config error: unknown account 'ghost'")


def test_whoami_merges_local_identity(tmp_path, monkeypatch, no_probe, _no_heartbeat) -> None:
    account = _self_custody_account(tmp_path)
    _write_config(tmp_path, a=account)
    monkeypatch.setattr(
        "awcli.client.AwebClient.introspect",
        lambda self: IntrospectResponse(agent_id="ag-1", alias="alice"),
    )

    rc, out, _ = _run(["whoami"], tmp_path=tmp_path)

    assert rc == 0
    payload = json.loads(out)
    assert payload["agent_id"] == "ag-1"
    assert payload["did"] == account.did
    assert payload["public_key"] == account.did[len("did:key:"):]
    assert payload["custody"] == "self"
    assert payload["address"] == "demo/alice"
    assert len(_no_heartbeat) == 1


def test_discovery_failure_exits_with_network_code(tmp_path, monkeypatch) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="ka"))

    def no_api(raw):  # noqa: ANN001
        raise NoAPIDetectedError(raw, (raw, f"{raw}/api"))

    monkeypatch.setattr("awcli.factory.resolve_working_base_url", no_api)

    rc, _, err = _run(["introspect"], tmp_path=tmp_path)
    assert rc == 2
    assert err.startswith("discovery error: no aweb API detected")


def test_rotate_key_json(tmp_path, monkeypatch, no_probe) -> None:
    account = _self_custody_account(tmp_path)
    _write_config(tmp_path, a=account)
    monkeypatch.setattr(
        "awcli.client.AwebClient.rotate_key",
        lambda self, *, new_did, new_public_key, custody: RotateKeyResponse(
            old_did=self.did, new_did=new_did
        ),
    )

    rc, out, _ = _run(["did", "rotate-key", "--json"], tmp_path=tmp_path)

    assert rc == 0
    payload = json.loads(out)
    assert payload["old_did"] == account.did
    assert load_global_from(tmp_path / "aw" / "config.yaml").accounts["a"].did == payload["new_did"]


def test_rotate_key_conflict_message(tmp_path, monkeypatch, no_probe) -> None:
    _write_config(tmp_path, a=_self_custody_account(tmp_path))
    before = (tmp_path / "aw" / "config.yaml").read_bytes()

    def conflict(self, **kwargs):  # noqa: ANN001, ANN003, ARG001
        raise AwebRequestError("aweb: http 409: stale key", status_code=409, body="stale key")

    monkeypatch.setattr("awcli.client.AwebClient.rotate_key", conflict)

    rc, _, err = _run(["did", "rotate-key"], tmp_path=tmp_path)
    assert rc == 2
    assert err.startswith("rotation conflict:")
    assert (tmp_path / "aw" / "config.yaml").read_bytes() == before


def test_self_custody_flag_on_self_custody_account_makes_no_request(
    tmp_path, monkeypatch, _no_heartbeat
) -> None:
    _write_config(tmp_path, a=_self_custody_account(tmp_path))

    def unexpected(*args, **kwargs):  # noqa: ANN002, ANN003, ARG001
        raise AssertionError("no network expected")

    monkeypatch.setattr("awcli.factory.resolve_working_base_url", unexpected)
    monkeypatch.setattr("awcli.client.AwebClient.rotate_key_custodial", unexpected)

    rc, _, err = _run(["did", "rotate-key", "--self-custody"], tmp_path=tmp_path)
    assert rc == 1
    assert "account 'a' is already self-custody" in err
    assert len(_no_heartbeat) == 1


def test_rotate_without_key_suggests_self_custody(tmp_path, monkeypatch) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="ka", custody="custodial"))

    def unexpected(raw):  # noqa: ANN001, ARG001
        raise AssertionError("no network expected")

    monkeypatch.setattr("awcli.factory.resolve_working_base_url", unexpected)

    rc, _, err = _run(["did", "rotate-key"], tmp_path=tmp_path)
    assert rc == 1
    assert "--self-custody" in err


def test_persistence_failure_exits_three(tmp_path, monkeypatch, no_probe) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="ka", custody="custodial"))

    def failing(selection, *, config_path):  # noqa: ANN001, ARG001
        raise PersistenceError("update config: read-only file system")

    monkeypatch.setattr("awcli.cli.main.graduate_to_self_custody", failing)

    rc, _, err = _run(["did", "rotate-key", "--self-custody"], tmp_path=tmp_path)
    assert rc == 3
    assert err.strip() == "persistence error: update config: read-only file system"


def test_error_output_redacts_secrets(tmp_path, monkeypatch) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="ka"))

    def leaky(raw):  # noqa: ANN001, ARG001
        raise AwebRequestError(
            "aweb: http 500: api_key=aw_sk_leak Authorization: Bearer tok123",
            status_code=500,
        )

    monkeypatch.setattr("awcli.factory.resolve_working_base_url", leaky)

    rc, _, err = _run(["whoami"], tmp_path=tmp_path)
    assert rc == 2
    assert "aw_sk_leak" not in err
    assert "tok123" not in err
    assert "api_key=[REDACTED]" in err


def test_init_saves_account_and_context(tmp_path, monkeypatch, no_probe, _no_heartbeat) -> None:
    captured: dict[str, object] = {}

    def fake_init(self, request):  # noqa: ANN001
        captured["base_url"] = self.base_url
        captured["request"] = request
        return InitResponse(
            project_id="p1",
            project_slug="demo",
            agent_id="ag-1",
            alias="alice",
            api_key="aw_sk_new",
            created=True,
        )

    monkeypatch.setattr("awcli.client.AwebClient.init", fake_init)

    rc, out, _ = _run(
        ["init", "--url", "http://localhost:8000", "--project-slug", "demo", "--print-exports"],
        tmp_path=tmp_path,
        environ={"USER": "ada"},
    )

    assert rc == 0
    assert captured["base_url"] == "http://localhost:8000"
    assert captured["request"].alias is None
    assert captured["request"].human_name == "ada"
    config = load_global_from(tmp_path / "aw" / "config.yaml")
    account_name = "acct-localhost-8000__demo__alice"
    assert config.default_account == account_name
    assert config.accounts[account_name].api_key == "aw_sk_new"
    assert config.servers["localhost:8000"].url == "http://localhost:8000"
    context_text = (tmp_path / ".aw" / "context").read_text(encoding="utf-8")
    assert account_name in context_text
    assert "export AWEB_API_KEY=aw_sk_new" in out
    assert _no_heartbeat == []


def test_init_alias_conflict_message(tmp_path, monkeypatch, no_probe) -> None:
    def conflict(self, request):  # noqa: ANN001, ARG001
        raise AwebRequestError("aweb: http 409: alias taken", status_code=409)

    monkeypatch.setattr("awcli.client.AwebClient.init", conflict)

    rc, _, err = _run(
        ["init", "--url", "http://localhost:8000", "--project-slug", "demo", "--alias", "alice"],
        tmp_path=tmp_path,
    )
    assert rc == 2
    assert err.startswith("alias already in use:")
    assert not (tmp_path / "aw" / "config.yaml").exists()


def test_init_no_save_config_leaves_config_absent(tmp_path, monkeypatch, no_probe) -> None:
    monkeypatch.setattr(
        "awcli.client.AwebClient.init",
        lambda self, request: InitResponse(alias="bob", api_key="aw_sk_b"),
    )

    rc, out, _ = _run(
        [
            "init",
            "--url",
            "http://localhost:8000",
            "--project-slug",
            "demo",
            "--no-save-config",
            "--no-write-context",
        ],
        tmp_path=tmp_path,
    )
    assert rc == 0
    assert json.loads(out)["alias"] == "bob"
    assert not (tmp_path / "aw" / "config.yaml").exists()
    assert not (tmp_path / ".aw" / "context").exists()


def test_undecodable_config_is_one_line_config_error(tmp_path) -> None:
    config_path = tmp_path / "aw" / "config.yaml"
    config_path.parent.mkdir(parents=True)
    config_path.write_bytes(b"default_account: \xff\xfe\n")

    rc, _, err = _run(["config", "show"], tmp_path=tmp_path)

    assert rc == 1
    assert err.startswith(f"config error: read {config_path}")
    assert len(err.strip().splitlines()) == 1


def test_config_path_that_is_a_directory_is_config_error(tmp_path) -> None:
    (tmp_path / "aw" / "config.yaml").mkdir(parents=True)

    rc, _, err = _run(["config", "show"], tmp_path=tmp_path)

    assert rc == 1
    assert err.startswith("config error: read ")
    assert len(err.strip().splitlines()) == 1


def test_undecodable_worktree_context_is_config_error(tmp_path) -> None:
    _write_config(tmp_path, a=Account(server="app.aweb.ai", api_key="ka"))
    (tmp_path / ".aw").mkdir()
    (tmp_path / ".aw" / "context").write_bytes(b"default_account: \xff\n")

    rc, _, err = _run(["config", "show"], tmp_path=tmp_path)

    assert rc == 1
    assert err.startswith("config error: read ")
    assert len(err.strip().splitlines()) == 1


def test_init_context_write_failure_is_persistence_error(tmp_path, monkeypatch, no_probe) -> None:
    monkeypatch.setattr(
        "awcli.client.AwebClient.init",
        lambda self, request: InitResponse(alias="bob", api_key="aw_sk_b"),
    )

    def read_only(working_dir, server_name, account_name):  # noqa: ANN001, ARG001
        raise PermissionError(13, "Permission denied", str(working_dir / ".aw" / "context"))

    monkeypatch.setattr("awcli.cli.main.write_or_update_context", read_only)

    rc, _, err = _run(
        ["init", "--url", "http://localhost:8000", "--project-slug", "demo"],
        tmp_path=tmp_path,
    )

    assert rc == 3
    assert err.startswith("persistence error: write worktree context: [Errno 13] Permission denied")
    assert len(err.strip().splitlines()) == 1
    assert load_global_from(tmp_path / "aw" / "config.yaml").accounts


def test_repeated_runs_replace_the_log_handler(tmp_path) -> None:
    _run(["version"], tmp_path=tmp_path)
    first = cli_main._log_handler
    _run(["--debug", "version"], tmp_path=tmp_path)

    handlers = logging.getLogger("awcli").handlers
    assert first not in handlers
    assert handlers.count(cli_main._log_handler) == 1
