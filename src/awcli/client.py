"""Typed HTTP client for the aweb server endpoints used by the identity layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

import requests
from pydantic import BaseModel, ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from awcli.awconfig.keys import KeyPair
from awcli.crypto.signing import b64encode_raw, sign_rotation
from awcli.errors import AwebRequestError, KeyMaterialError, ProtocolError, ServerUnavailableError
from awcli.pinstore import PinStore
from awcli.schemas import (
    CloudBootstrapAgentResponse,
    HeartbeatResponse,
    InitRequest,
    InitResponse,
    IntrospectResponse,
    RotateKeyResponse,
)

DEFAULT_TIMEOUT = 10.0
HEARTBEAT_PATH = "/v1/agents/heartbeat"
ROTATE_PATH = "/v1/agents/me/rotate"
CLOUD_BOOTSTRAP_PATH = "/api/v1/agents/bootstrap"

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class AwebClient:
    base_url: str
    api_key: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    retries: int = 2
    keypair: KeyPair | None = None
    did: str | None = None
    address: str = ""
    pin_store: PinStore | None = field(default=None, repr=False)
    pin_store_path: Path | None = None

    def __post_init__(self) -> None:
        self._session = requests.Session()
        # Only idempotent reads are retried; rotation and bootstrap are one-shot.
        retry = Retry(
            total=max(0, int(self.retries)),
            connect=max(0, int(self.retries)),
            read=max(0, int(self.retries)),
            status=max(0, int(self.retries)),
            status_forcelist=(429, 500, 502, 503, 504),
            backoff_factor=0.2,
            allowed_methods=("GET",),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    @classmethod
    def with_api_key(cls, base_url: str, api_key: str, **kwargs) -> "AwebClient":
        return cls(base_url=base_url, api_key=api_key or None, **kwargs)

    @classmethod
    def with_identity(
        cls,
        base_url: str,
        api_key: str,
        keypair: KeyPair,
        did: str,
        **kwargs,
    ) -> "AwebClient":
        if not did:
            raise KeyMaterialError("did must not be empty")
        if keypair.did != did:
            raise KeyMaterialError("configured did does not match the signing key")
        return cls(base_url=base_url, api_key=api_key or None, keypair=keypair, did=did, **kwargs)

    def set_pin_store(self, store: PinStore, path: str | Path | None) -> None:
        self.pin_store = store
        self.pin_store_path = Path(path) if path else None

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict | None = None,
        authenticated: bool = True,
        timeout: float | None = None,
    ) -> dict:
        headers = {"Accept": "application/json"}
        if authenticated and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self._session.request(
                method,
                self._url(path),
                json=json_payload,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.RequestException as exc:
            raise ServerUnavailableError(str(exc)) from exc

        if response.status_code < 200 or response.status_code >= 300:
            body = response.text or ""
            message = f"aweb: http {response.status_code}"
            if body:
                message = f"{message}: {body.strip()}"
            raise AwebRequestError(message, status_code=response.status_code, body=body)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(f"{method} {path}: response is not JSON") from exc
        if not isinstance(payload, dict):
            raise ProtocolError(f"{method} {path}: expected a JSON object")
        return payload

    @staticmethod
    def _parse(model: type[_ModelT], payload: dict, *, context: str) -> _ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise ProtocolError(f"{context}: unexpected response: {exc}") from exc

    def heartbeat(self, *, timeout: float | None = None) -> HeartbeatResponse:
        payload = self._request("POST", HEARTBEAT_PATH, timeout=timeout)
        return self._parse(HeartbeatResponse, payload, context="heartbeat")

    def introspect(self) -> IntrospectResponse:
        payload = self._request("GET", "/v1/auth/introspect")
        return self._parse(IntrospectResponse, payload, context="introspect")

    def rotate_key(self, *, new_did: str, new_public_key: bytes, custody: str) -> RotateKeyResponse:
        """Rotate to ``new_did`` over the current identity's authenticated channel."""
        if self.keypair is None or not self.did:
            raise KeyMaterialError("rotate_key requires a client with a signing key")
        timestamp = _utc_timestamp()
        wire = {
            "new_did": new_did,
            "new_public_key": b64encode_raw(new_public_key),
            "custody": custody,
            "rotation_signature": sign_rotation(
                self.keypair.private_key_bytes,
                old_did=self.did,
                new_did=new_did,
                timestamp=timestamp,
            ),
            "timestamp": timestamp,
        }
        payload = self._request("PUT", ROTATE_PATH, json_payload=wire)
        return self._parse(RotateKeyResponse, payload, context="rotate")

    def rotate_key_custodial(
        self,
        *,
        new_did: str,
        new_public_key: bytes,
        custody: str,
    ) -> RotateKeyResponse:
        """Custodial graduation: the server signs the rotation for the old identity."""
        wire = {
            "new_did": new_did,
            "new_public_key": b64encode_raw(new_public_key),
            "custody": custody,
        }
        payload = self._request("PUT", ROTATE_PATH, json_payload=wire)
        return self._parse(RotateKeyResponse, payload, context="rotate")

    def init(self, request: InitRequest) -> InitResponse:
        payload = self._request(
            "POST",
            "/v1/init",
            json_payload=request.model_dump(exclude_none=True),
            authenticated=False,
        )
        return self._parse(InitResponse, payload, context="init")

    def cloud_bootstrap_agent(
        self,
        *,
        alias: str | None = None,
        human_name: str = "",
        agent_type: str = "",
        project_id: str | None = None,
    ) -> CloudBootstrapAgentResponse:
        wire: dict[str, object] = {}
        if project_id:
            wire["project_id"] = project_id
        if alias:
            wire["alias"] = alias
        if human_name:
            wire["human_name"] = human_name
        if agent_type:
            wire["agent_type"] = agent_type
        payload = self._request("POST", CLOUD_BOOTSTRAP_PATH, json_payload=wire)
        return self._parse(CloudBootstrapAgentResponse, payload, context="cloud bootstrap")


__all__ = ["AwebClient", "DEFAULT_TIMEOUT"]
