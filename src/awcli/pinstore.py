"""Trust-on-first-use pins for peer agent identities (``known_agents.yaml``)."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from awcli.awconfig.atomic import atomic_write_text

LIFETIME_EPHEMERAL = "ephemeral"
LIFETIME_PERSISTENT = "persistent"

PIN_OK = "ok"
PIN_NEW = "new"
PIN_MISMATCH = "mismatch"
PIN_SKIPPED = "skipped"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class Pin:
    address: str
    first_seen: str
    last_seen: str
    handle: str = ""
    server: str = ""


@dataclass
class PinStore:
    pins: dict[str, Pin] = field(default_factory=dict)
    addresses: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path) -> "PinStore":
        """Read a pin store; a missing file yields an empty store."""
        pin_path = Path(path)
        if not pin_path.exists():
            return cls()
        payload = yaml.safe_load(pin_path.read_text(encoding="utf-8")) or {}
        if not isinstance(payload, dict):
            raise ValueError(f"{pin_path} must be a mapping")
        raw_pins = payload.get("pins") or {}
        raw_addresses = payload.get("addresses") or {}
        if not isinstance(raw_pins, dict) or not isinstance(raw_addresses, dict):
            raise ValueError(f"{pin_path}: pins and addresses must be mappings")
        pins = {
            str(did): Pin(
                address=str(raw.get("address", "")),
                first_seen=str(raw.get("first_seen", "")),
                last_seen=str(raw.get("last_seen", "")),
                handle=str(raw.get("handle") or ""),
                server=str(raw.get("server") or ""),
            )
            for did, raw in raw_pins.items()
            if isinstance(raw, dict)
        }
        addresses = {str(k): str(v) for k, v in raw_addresses.items()}
        return cls(pins=pins, addresses=addresses)

    def save(self, path: str | Path) -> Path:
        payload = {
            "pins": {did: asdict(pin) for did, pin in sorted(self.pins.items())},
            "addresses": dict(sorted(self.addresses.items())),
        }
        return atomic_write_text(path, yaml.safe_dump(payload, sort_keys=False), mode=0o600)

    def check_pin(self, address: str, did: str, lifetime: str = LIFETIME_PERSISTENT) -> str:
        if lifetime == LIFETIME_EPHEMERAL:
            return PIN_SKIPPED
        pinned = self.addresses.get(address)
        if pinned is None:
            return PIN_NEW
        return PIN_OK if pinned == did else PIN_MISMATCH

    def store_pin(self, did: str, address: str, *, handle: str = "", server: str = "") -> None:
        now = _utc_now_iso()
        existing = self.pins.get(did)
        if existing is not None:
            if existing.address != address:
                self.addresses.pop(existing.address, None)
                existing.address = address
            self.addresses[address] = did
            existing.last_seen = now
            existing.handle = handle
            existing.server = server
            return
        self.pins[did] = Pin(address=address, first_seen=now, last_seen=now, handle=handle, server=server)
        self.addresses[address] = did
