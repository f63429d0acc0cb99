"""Command-line interface for aw."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Mapping, Sequence

from awcli.awconfig.context import write_or_update_context
from awcli.awconfig.global_config import default_global_config_path, load_global_from
from awcli.awconfig.selection import EnvSnapshot, Selection, resolve
from awcli.bootstrap import (
    derive_account_name,
    init_agent,
    resolve_base_url_for_init,
    resolve_cloud_token,
    save_initialized_account,
    shell_exports,
)
from awcli.cli.context import CommandContext
from awcli.client import AwebClient
from awcli.crypto.didkey import did_multibase
from awcli.errors import (
    AwebError,
    AwebRequestError,
    ConfigurationError,
    DiscoveryError,
    KeyMaterialError,
    PersistenceError,
    ProtocolError,
    RotationPreconditionError,
    ServerUnavailableError,
)
from awcli.factory import build_client, with_working_base_url
from awcli.heartbeat import start_heartbeat
from awcli.rotation import (
    RotationResult,
    check_graduation,
    check_rotation,
    graduate_to_self_custody,
    rotate_self_custody,
)
from awcli.schemas import InitRequest

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_NETWORK_ERROR = 2
EXIT_PERSISTENCE_ERROR = 3

HEARTBEAT_COMMANDS = ("whoami", "introspect", "did")

_SENSITIVE_FIELDS = (
    "api_key",
    "cloud_token",
    "token",
    "secret",
    "authorization",
)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_log_handler: logging.Handler | None = None


def _cli_version() -> str:
    try:
        return pkg_version("aw-cli")
    except PackageNotFoundError:
        return "0.0.0+local"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aw")
    parser.add_argument(
        "--version",
        action="version",
        version=f"aw {_cli_version()}",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to aw config YAML (default: AW_CONFIG_PATH or ~/.config/aw/config.yaml)",
    )
    parser.add_argument("--server", default="", help="Select the account bound to this server")
    parser.add_argument("--account", default="", help="Select this account by name")
    parser.add_argument("--debug", action="store_true", help="Log debug details to stderr")

    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version", help="Show CLI version")
    version.add_argument("--json", action="store_true", help="Print version details as JSON")

    sub.add_parser(
        "whoami",
        aliases=["introspect"],
        help="Show the server's view of the selected agent plus its local identity",
    )

    config = sub.add_parser("config", help="Inspect local configuration")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_show = config_sub.add_parser("show", help="Show the effective account selection")
    config_show.add_argument("--json", action="store_true")

    did = sub.add_parser("did", help="Manage the agent's DID and signing key")
    did_sub = did.add_subparsers(dest="did_command", required=True)
    rotate = did_sub.add_parser("rotate-key", help="Rotate the agent's signing key")
    rotate.add_argument(
        "--self-custody",
        action="store_true",
        help="Graduate a custodial account to a locally held signing key",
    )
    rotate.add_argument("--json", action="store_true")

    init = sub.add_parser("init", help="Register a new agent and save its credentials")
    init.add_argument("--project-slug", required=True, help="Project slug to join or create")
    init.add_argument("--url", default="", help="Base URL of the aweb server")
    init.add_argument("--alias", default="", help="Agent alias (default: server-allocated)")
    init.add_argument("--project-name", default="", help="Project name (default: project slug)")
    init.add_argument("--human-name", default="", help="Human name (default: $USER)")
    init.add_argument("--agent-type", default="agent", help="Agent type")
    init.add_argument(
        "--cloud-token",
        default="",
        help="Bearer token for hosted cloud bootstrap (default: AWEB_CLOUD_TOKEN)",
    )
    init.add_argument(
        "--cloud-token-account",
        default="",
        help="Use this configured account's API key as the cloud bootstrap token",
    )
    init.add_argument(
        "--set-default",
        action="store_true",
        help="Make the new account the config's default_account",
    )
    init.add_argument(
        "--no-save-config",
        action="store_true",
        help="Do not write the new account to the aw config",
    )
    init.add_argument(
        "--no-write-context",
        action="store_true",
        help="Do not write .aw/context in the current worktree",
    )
    init.add_argument(
        "--print-exports",
        action="store_true",
        help="Print shell export lines after the JSON output",
    )
    return parser


def _configure_logging(stderr, *, debug: bool) -> None:
    global _log_handler
    logger = logging.getLogger("awcli")
    if _log_handler is not None:
        logger.removeHandler(_log_handler)
    _log_handler = logging.StreamHandler(stderr)
    _log_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(_log_handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)


def _sanitize_error_text(value: str) -> str:
    redacted = re.sub(r"(?i)(bearer\s+)(\S+)", r"\1[REDACTED]", value)
    for field in _SENSITIVE_FIELDS:
        redacted = re.sub(
            rf"(?i)({field}\"?\s*[=:]\s*\"?)([^,\s\"]+)",
            r"\1[REDACTED]",
            redacted,
        )
    return redacted


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {_sanitize_error_text(message)}", file=stderr)
    return code


def _print_aweb_error(stderr, exc: AwebError, *, command: str) -> int:
    if isinstance(exc, AwebRequestError) and exc.status_code == 409:
        if command == "did":
            return _print_error(stderr, "rotation conflict", str(exc), code=EXIT_NETWORK_ERROR)
        if command == "init":
            return _print_error(stderr, "alias already in use", str(exc), code=EXIT_NETWORK_ERROR)
    if isinstance(exc, ConfigurationError):
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)
    if isinstance(exc, RotationPreconditionError):
        return _print_error(stderr, "rotation error", str(exc), code=EXIT_VALIDATION_ERROR)
    if isinstance(exc, KeyMaterialError):
        return _print_error(stderr, "key error", str(exc), code=EXIT_VALIDATION_ERROR)
    if isinstance(exc, DiscoveryError):
        return _print_error(stderr, "discovery error", str(exc), code=EXIT_NETWORK_ERROR)
    if isinstance(exc, ServerUnavailableError):
        return _print_error(stderr, "server error", str(exc), code=EXIT_NETWORK_ERROR)
    if isinstance(exc, ProtocolError):
        return _print_error(stderr, "protocol error", str(exc), code=EXIT_NETWORK_ERROR)
    if isinstance(exc, PersistenceError):
        return _print_error(stderr, "persistence error", str(exc), code=EXIT_PERSISTENCE_ERROR)
    return _print_error(stderr, "error", str(exc), code=EXIT_VALIDATION_ERROR)


def _resolve_selection(ctx: CommandContext) -> Selection:
    config = load_global_from(ctx.config_path)
    return resolve(config, ctx.resolve_options())


def _resolve_client(ctx: CommandContext) -> tuple[Selection, AwebClient]:
    selection = with_working_base_url(_resolve_selection(ctx))
    return selection, build_client(selection, config_path=ctx.config_path)


def _redact_key(value: str) -> str:
    if not value:
        return ""
    return "[REDACTED]"


def _run_version(*, as_json: bool, stdout) -> int:
    payload = {"cli": "aw", "version": _cli_version()}
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"aw {payload['version']}", file=stdout)
    return EXIT_SUCCESS


def _run_whoami(*, ctx: CommandContext, stdout) -> int:
    selection, client = _resolve_client(ctx)
    info = client.introspect()

    payload: dict[str, object] = info.model_dump(exclude_none=True)
    payload["account"] = selection.account_name
    payload["server"] = selection.server_name
    payload["base_url"] = selection.base_url
    if selection.agent_alias:
        payload["address"] = selection.address
    if selection.did:
        payload["did"] = selection.did
        payload["public_key"] = did_multibase(selection.did)
    if selection.custody:
        payload["custody"] = selection.custody
    if selection.lifetime:
        payload["lifetime"] = selection.lifetime
    print(json.dumps(payload, sort_keys=True, indent=2), file=stdout)
    return EXIT_SUCCESS


def _run_config_show(*, ctx: CommandContext, as_json: bool, stdout) -> int:
    selection = _resolve_selection(ctx)
    payload = {
        "config_path": str(ctx.config_path),
        "account": selection.account_name,
        "server": selection.server_name,
        "base_url": selection.base_url,
        "api_key": _redact_key(selection.api_key),
        "agent_id": selection.agent_id,
        "agent_alias": selection.agent_alias,
        "address": selection.address,
        "default_project": selection.default_project,
        "did": selection.did,
        "custody": selection.custody,
        "signing_key": selection.signing_key,
    }
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    for key, value in payload.items():
        print(f"{key}: {value}", file=stdout)
    return EXIT_SUCCESS


def _print_rotation(result: RotationResult, *, as_json: bool, stdout) -> None:
    payload = {
        "account": result.account_name,
        "old_did": result.old_did,
        "new_did": result.new_did,
        "custody": result.custody,
        "signing_key": str(result.signing_key_path),
        "archived_key": str(result.archive_path) if result.archive_path else None,
    }
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return
    print(f"account: {payload['account']}", file=stdout)
    print(f"old_did: {payload['old_did'] or '(none)'}", file=stdout)
    print(f"new_did: {payload['new_did']}", file=stdout)
    print(f"custody: {payload['custody']}", file=stdout)
    print(f"signing_key: {payload['signing_key']}", file=stdout)
    if payload["archived_key"]:
        print(f"archived_key: {payload['archived_key']}", file=stdout)


def _run_did_rotate_key(*, args, ctx: CommandContext, stdout) -> int:
    selection = _resolve_selection(ctx)
    # Preconditions run before discovery so a refused rotation makes no network call.
    if args.self_custody:
        check_graduation(selection)
        result = graduate_to_self_custody(
            with_working_base_url(selection), config_path=ctx.config_path
        )
    else:
        check_rotation(selection)
        result = rotate_self_custody(with_working_base_url(selection), config_path=ctx.config_path)
    _print_rotation(result, as_json=args.json, stdout=stdout)
    return EXIT_SUCCESS


def _run_init(*, args, ctx: CommandContext, environ: Mapping[str, str], stdout) -> int:
    config = load_global_from(ctx.config_path)
    target = resolve_base_url_for_init(
        url=args.url,
        server_name=ctx.server_override,
        config=config,
        working_dir=ctx.working_dir,
        env=ctx.env,
    )

    project_slug = args.project_slug.strip()
    human_name = args.human_name.strip() or environ.get("USER", "").strip() or "developer"
    request = InitRequest(
        project_slug=project_slug,
        project_name=args.project_name.strip() or project_slug,
        alias=args.alias.strip() or None,
        human_name=human_name,
        agent_type=args.agent_type.strip() or "agent",
    )
    cloud_token = resolve_cloud_token(
        explicit_token=args.cloud_token,
        token_account=args.cloud_token_account,
        config=config,
        env=ctx.env,
    )
    response, used_cloud = init_agent(target.base_url, request, cloud_token=cloud_token)

    account_name = ctx.account_override or derive_account_name(
        target.server_name, project_slug, response.alias
    )
    if not args.no_save_config:
        save_initialized_account(
            ctx.config_path,
            account_name=account_name,
            server_name=target.server_name,
            base_url=target.base_url,
            response=response,
            default_project=response.project_slug or project_slug,
            set_default=args.set_default,
        )
    if not args.no_write_context and ctx.working_dir is not None:
        try:
            write_or_update_context(ctx.working_dir, target.server_name, account_name)
        except OSError as exc:
            raise PersistenceError(f"write worktree context: {exc}") from exc

    payload = response.model_dump(exclude_none=True)
    payload["account"] = account_name
    payload["server"] = target.server_name
    payload["base_url"] = target.base_url
    payload["cloud_bootstrap"] = used_cloud
    print(json.dumps(payload, sort_keys=True, indent=2), file=stdout)
    if args.print_exports:
        print("", file=stdout)
        print("# Copy/paste to configure your shell:", file=stdout)
        for line in shell_exports(target.base_url, response):
            print(line, file=stdout)
    return EXIT_SUCCESS


def _dispatch(args, *, ctx: CommandContext, environ: Mapping[str, str], stdout, stderr) -> int:
    if args.command == "version":
        return _run_version(as_json=args.json, stdout=stdout)

    if args.command in ("whoami", "introspect"):
        return _run_whoami(ctx=ctx, stdout=stdout)

    if args.command == "config":
        if args.config_command == "show":
            return _run_config_show(ctx=ctx, as_json=args.json, stdout=stdout)

    if args.command == "did":
        if args.did_command == "rotate-key":
            return _run_did_rotate_key(args=args, ctx=ctx, stdout=stdout)

    if args.command == "init":
        return _run_init(args=args, ctx=ctx, environ=environ, stdout=stdout)

    print("unknown command", file=stderr)
    return EXIT_VALIDATION_ERROR


def main(
    argv: Sequence[str] | None = None,
    *,
    stdout=sys.stdout,
    stderr=sys.stderr,
    environ: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_source = os.environ if environ is None else environ
    _configure_logging(stderr, debug=args.debug)

    ctx = CommandContext(
        config_path=(
            Path(args.config).expanduser() if args.config else default_global_config_path(env_source)
        ),
        server_override=args.server.strip(),
        account_override=args.account.strip(),
        working_dir=Path(cwd) if cwd is not None else Path.cwd(),
        env=EnvSnapshot.from_environ(env_source),
        debug=args.debug,
    )

    if args.command in HEARTBEAT_COMMANDS:
        start_heartbeat(config_path=ctx.config_path, working_dir=ctx.working_dir, env=ctx.env)

    try:
        return _dispatch(args, ctx=ctx, environ=env_source, stdout=stdout, stderr=stderr)
    except AwebError as exc:
        return _print_aweb_error(stderr, exc, command=args.command)


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()
