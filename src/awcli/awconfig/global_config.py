"""Global config store for the aw CLI (servers, accounts, default account)."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

import yaml

from awcli.awconfig.atomic import atomic_write_text, file_lock
from awcli.errors import ConfigurationError, InvalidBaseURLError

CONFIG_PATH_ENV_VAR = "AW_CONFIG_PATH"
DEFAULT_CONFIG_RELATIVE_PATH = Path(".config") / "aw" / "config.yaml"
KNOWN_AGENTS_FILE = "known_agents.yaml"
KEYS_DIR_NAME = "keys"

CUSTODY_SELF = "self"
CUSTODY_CUSTODIAL = "custodial"
ALLOWED_CUSTODY = (CUSTODY_SELF, CUSTODY_CUSTODIAL)


@dataclass(frozen=True)
class Server:
    url: str = ""


@dataclass(frozen=True)
class Account:
    server: str = ""
    api_key: str = ""
    default_project: str = ""
    agent_id: str = ""
    agent_alias: str = ""
    did: str = ""
    custody: str = ""
    signing_key: str = ""
    namespace_slug: str = ""
    email: str = ""
    lifetime: str = ""


@dataclass
class GlobalConfig:
    servers: dict[str, Server] = field(default_factory=dict)
    accounts: dict[str, Account] = field(default_factory=dict)
    default_account: str = ""


def default_global_config_path(
    environ: Mapping[str, str] | None = None,
    *,
    home: str | Path | None = None,
) -> Path:
    """Pick the config path once: AW_CONFIG_PATH, else ~/.config/aw/config.yaml."""
    override = (environ or {}).get(CONFIG_PATH_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    base = Path(home) if home is not None else Path.home()
    return base / DEFAULT_CONFIG_RELATIVE_PATH


def keys_dir(config_path: str | Path) -> Path:
    return Path(config_path).expanduser().parent / KEYS_DIR_NAME


def known_agents_path(config_path: str | Path) -> Path:
    return Path(config_path).expanduser().parent / KNOWN_AGENTS_FILE


def _as_str(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value).strip()
    raise ConfigurationError(f"{field_name} must be a string")


def _as_mapping(value: Any, field_name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{field_name} must be a mapping")
    return value


def _parse_account(name: str, raw: Any) -> Account:
    source = _as_mapping(raw, f"accounts.{name}")
    known = {f.name for f in fields(Account)}
    values = {
        key: _as_str(value, f"accounts.{name}.{key}")
        for key, value in source.items()
        if key in known
    }
    account = Account(**values)
    if bool(account.did) != bool(account.signing_key):
        raise ConfigurationError(
            f"account {name!r} must set both did and signing_key, or neither"
        )
    if account.custody and account.custody not in ALLOWED_CUSTODY:
        raise ConfigurationError(
            f"accounts.{name}.custody must be one of: {', '.join(ALLOWED_CUSTODY)}"
        )
    return account


def parse_global_config(payload: Any) -> GlobalConfig:
    source = _as_mapping(payload, "config")
    servers = {
        str(name): Server(url=_as_str(_as_mapping(raw, f"servers.{name}").get("url"), "url"))
        for name, raw in _as_mapping(source.get("servers"), "servers").items()
    }
    accounts = {
        str(name): _parse_account(str(name), raw)
        for name, raw in _as_mapping(source.get("accounts"), "accounts").items()
    }
    return GlobalConfig(
        servers=servers,
        accounts=accounts,
        default_account=_as_str(source.get("default_account"), "default_account"),
    )


def load_global_from(path: str | Path) -> GlobalConfig:
    config_path = Path(path).expanduser()
    if not config_path.exists():
        return GlobalConfig()
    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {config_path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"read {config_path}: {exc}") from exc
    return parse_global_config(payload)


def _omit_empty(record: object) -> dict[str, str]:
    return {f.name: getattr(record, f.name) for f in fields(record) if getattr(record, f.name)}


def dump_global_config(config: GlobalConfig) -> str:
    payload: dict[str, Any] = {
        "servers": {name: _omit_empty(server) for name, server in sorted(config.servers.items())},
        "accounts": {
            name: _omit_empty(account) for name, account in sorted(config.accounts.items())
        },
    }
    if config.default_account:
        payload["default_account"] = config.default_account
    return yaml.safe_dump(payload, sort_keys=False, default_flow_style=False)


def save_global_to(path: str | Path, config: GlobalConfig) -> Path:
    return atomic_write_text(Path(path).expanduser(), dump_global_config(config), mode=0o600)


def update_global_at(
    path: str | Path,
    mutate: Callable[[GlobalConfig], None],
) -> GlobalConfig:
    """Read-modify-write the config under an exclusive inter-process lock."""
    config_path = Path(path).expanduser()
    with file_lock(config_path):
        config = load_global_from(config_path)
        mutate(config)
        save_global_to(config_path, config)
    return config


def validate_base_url(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        raise InvalidBaseURLError("empty base url")
    parts = urlsplit(value)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise InvalidBaseURLError(f"invalid base url {raw!r}")
    return value


def _is_loopback(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def derive_base_url_from_server_name(server_name: str) -> str:
    """Map a host[:port] server name to a URL; loopback hosts use plain http."""
    name = server_name.strip().rstrip("/")
    if not name:
        raise InvalidBaseURLError("empty server name")
    if "://" in name:
        return validate_base_url(name)
    host = urlsplit(f"//{name}").hostname or ""
    if not host:
        raise InvalidBaseURLError(f"cannot derive a URL from server name {server_name!r}")
    scheme = "http" if _is_loopback(host) else "https"
    return f"{scheme}://{name}"


def derive_server_name_from_url(base_url: str) -> str:
    parts = urlsplit(validate_base_url(base_url))
    return parts.netloc.lower()
