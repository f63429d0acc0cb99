"""Wire schemas for aweb server responses used by the identity layer."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class _Response(BaseModel):
    model_config = ConfigDict(extra="allow")


class IntrospectResponse(_Response):
    project_id: Optional[str] = None
    agent_id: Optional[str] = None
    alias: Optional[str] = None
    human_name: Optional[str] = None
    agent_type: Optional[str] = None


class HeartbeatResponse(_Response):
    agent_id: Optional[str] = None
    last_seen: Optional[str] = None
    ttl_seconds: Optional[int] = None


class RotateKeyResponse(_Response):
    old_did: str
    new_did: str
    rotated_at: Optional[str] = None


class InitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_slug: str
    project_name: str = ""
    alias: Optional[str] = None
    human_name: str = ""
    agent_type: str = ""


class InitResponse(_Response):
    status: str = "ok"
    created_at: Optional[str] = None
    project_id: str = ""
    project_slug: str = ""
    namespace_slug: str = ""
    agent_id: str = ""
    alias: str
    api_key: str
    created: bool = False


class CloudBootstrapAgentResponse(_Response):
    org_id: str = ""
    org_slug: str = ""
    project_id: str = ""
    project_slug: str = ""
    server_url: str = ""
    api_key: str = ""
    agent_id: str = ""
    alias: str = ""
    created: bool = False
