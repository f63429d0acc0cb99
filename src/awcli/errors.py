"""aw-cli error types."""

from __future__ import annotations


class AwebError(RuntimeError):
    """Base aw-cli error."""


class ConfigurationError(AwebError):
    """Configuration is missing, unknown or ambiguous. No network was attempted."""


class AccountNotFoundError(ConfigurationError):
    """A referenced account does not exist in the config store."""

    def __init__(self, message: str, *, account_name: str | None = None) -> None:
        super().__init__(message)
        self.account_name = account_name


class ServerAmbiguousError(ConfigurationError):
    """A server override did not map to exactly one account."""

    def __init__(self, message: str, *, server_name: str, matches: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.server_name = server_name
        self.matches = matches


class NoDefaultConfiguredError(ConfigurationError):
    """Nothing selects an account for this invocation."""


class InvalidBaseURLError(ConfigurationError):
    """A base URL is empty or lacks a scheme/host."""


class DiscoveryError(AwebError):
    """Endpoint discovery failed."""


class NoAPIDetectedError(DiscoveryError):
    """No candidate mount root answered the liveness probe."""

    def __init__(
        self,
        raw: str,
        candidates: tuple[str, ...],
        *,
        last_error: BaseException | None = None,
    ) -> None:
        message = f"no aweb API detected at {raw!r} (tried {', '.join(candidates)})"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.raw = raw
        self.candidates = candidates
        self.last_error = last_error


class ServerUnavailableError(AwebError):
    """Server could not be reached."""


class AwebRequestError(ServerUnavailableError):
    """Server returned a non-success HTTP status."""

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(AwebError):
    """Server response did not match the expected payload shape."""


class KeyMaterialError(AwebError):
    """Key material is missing, unreadable or malformed."""


class RotationPreconditionError(AwebError):
    """Key rotation was requested for an account in the wrong state."""


class PersistenceError(AwebError):
    """Writing key material or committing config failed."""


def http_status_code(exc: BaseException) -> int | None:
    if isinstance(exc, AwebRequestError):
        return exc.status_code
    return None
