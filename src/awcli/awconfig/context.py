"""Per-worktree account pointer (``.aw/context``)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from awcli.awconfig.atomic import atomic_write_text
from awcli.errors import ConfigurationError

CONTEXT_DIR_NAME = ".aw"
CONTEXT_FILE_NAME = "context"


@dataclass
class WorktreeContext:
    default_account: str = ""
    server_accounts: dict[str, str] = field(default_factory=dict)
    human_account: str = ""


def default_worktree_context_relative_path() -> Path:
    return Path(CONTEXT_DIR_NAME) / CONTEXT_FILE_NAME


def find_worktree_context_path(start_dir: str | Path) -> Path:
    """Return the nearest ``.aw/context`` at or above ``start_dir``."""
    current = Path(start_dir).expanduser().resolve(strict=False)
    for directory in (current, *current.parents):
        candidate = directory / CONTEXT_DIR_NAME / CONTEXT_FILE_NAME
        if candidate.is_file():
            return candidate
    raise FileNotFoundError(f"no {default_worktree_context_relative_path()} above {start_dir}")


def load_worktree_context_from(path: str | Path) -> WorktreeContext:
    context_path = Path(path)
    try:
        payload = yaml.safe_load(context_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {context_path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"read {context_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"{context_path} must be a mapping")

    server_accounts = payload.get("server_accounts") or {}
    if not isinstance(server_accounts, dict):
        raise ConfigurationError(f"server_accounts in {context_path} must be a mapping")
    return WorktreeContext(
        default_account=str(payload.get("default_account") or "").strip(),
        server_accounts={
            str(server).strip(): str(account).strip()
            for server, account in server_accounts.items()
            if account
        },
        human_account=str(payload.get("human_account") or "").strip(),
    )


def load_worktree_context_from_dir(
    start_dir: str | Path,
) -> tuple[WorktreeContext | None, Path | None]:
    """Load the nearest context, or ``(None, None)`` when there is none."""
    try:
        path = find_worktree_context_path(start_dir)
    except FileNotFoundError:
        return None, None
    return load_worktree_context_from(path), path


def save_worktree_context_to(path: str | Path, context: WorktreeContext) -> Path:
    payload: dict[str, object] = {}
    if context.default_account:
        payload["default_account"] = context.default_account
    if context.server_accounts:
        payload["server_accounts"] = dict(sorted(context.server_accounts.items()))
    if context.human_account:
        payload["human_account"] = context.human_account
    text = yaml.safe_dump(payload, sort_keys=False, default_flow_style=False)
    return atomic_write_text(path, text, mode=0o600)


def write_or_update_context(working_dir: str | Path, server_name: str, account_name: str) -> Path:
    """Point this worktree at ``account_name`` for ``server_name`` and by default."""
    try:
        path = find_worktree_context_path(working_dir)
    except FileNotFoundError:
        path = Path(working_dir) / default_worktree_context_relative_path()

    context = WorktreeContext()
    if path.exists():
        context = load_worktree_context_from(path)
    context.default_account = account_name
    context.server_accounts[server_name] = account_name
    return save_worktree_context_to(path, context)
