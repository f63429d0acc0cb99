from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from awcli.awconfig.selection import EnvSnapshot, ResolveOptions


@dataclass(frozen=True)
class CommandContext:
    """Everything a command handler may read about this invocation."""

    config_path: Path
    server_override: str = ""
    account_override: str = ""
    working_dir: Path | None = None
    env: EnvSnapshot = field(default_factory=EnvSnapshot)
    debug: bool = False

    def resolve_options(self) -> ResolveOptions:
        return ResolveOptions(
            account_name=self.account_override,
            server_name=self.server_override,
            working_dir=self.working_dir,
            env=self.env,
        )
