"""Locate the API mount root of an aweb deployment.

The same deployment may serve its API at the host root or under ``/api``
depending on hosting mode. Candidates are probed in order with a GET against
the heartbeat endpoint; anything but a 404 (including 405, since the real
endpoint is POST-only) counts as "API present".
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit, urlunsplit

import requests

from awcli.client import HEARTBEAT_PATH
from awcli.errors import InvalidBaseURLError, NoAPIDetectedError

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 2.0


def clean_base_url(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        raise InvalidBaseURLError("empty base url")
    try:
        parts = urlsplit(value)
    except ValueError as exc:
        raise InvalidBaseURLError(f"invalid base url {raw!r}: {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise InvalidBaseURLError(f"invalid base url {raw!r}")
    cleaned = urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/"), "", ""))
    return cleaned.rstrip("/")


def candidate_base_urls(base: str) -> list[str]:
    """Ordered, de-duplicated mount roots to try for a cleaned base URL."""
    candidates: list[str] = []

    def add(value: str) -> None:
        value = value.strip().rstrip("/")
        if value and value not in candidates:
            candidates.append(value)

    add(base)
    if base.endswith("/v1"):
        add(base[: -len("/v1")])
    if not base.endswith("/api"):
        add(f"{base}/api")
    return candidates


def probe_base_url(
    candidate: str,
    *,
    session: requests.Session,
    timeout: float = PROBE_TIMEOUT,
) -> bool:
    """Return True when ``candidate`` looks like an aweb mount root.

    Transport failures propagate as ``requests.RequestException``.
    """
    response = session.get(f"{candidate}{HEARTBEAT_PATH}", timeout=timeout, allow_redirects=False)
    response.close()
    return response.status_code != 404


def resolve_working_base_url(
    raw: str,
    *,
    session: requests.Session | None = None,
    timeout: float = PROBE_TIMEOUT,
) -> str:
    base = clean_base_url(raw)
    candidates = candidate_base_urls(base)

    owns_session = session is None
    http = session if session is not None else requests.Session()
    last_error: requests.RequestException | None = None
    try:
        for candidate in candidates:
            try:
                found = probe_base_url(candidate, session=http, timeout=timeout)
            except requests.RequestException as exc:
                logger.debug("probe %s failed: %s", candidate, exc)
                last_error = exc
                continue
            if found:
                logger.debug("aweb API detected at %s", candidate)
                return candidate
            logger.debug("probe %s: 404", candidate)
    finally:
        if owns_session:
            http.close()
    raise NoAPIDetectedError(raw, tuple(candidates), last_error=last_error) from last_error
