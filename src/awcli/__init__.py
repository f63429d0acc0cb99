"""aw CLI identity layer public surface."""

from awcli.awconfig.global_config import (
    Account,
    GlobalConfig,
    Server,
    default_global_config_path,
    load_global_from,
    update_global_at,
)
from awcli.awconfig.keys import KeyPair, archive_key, load_signing_key, save_keypair
from awcli.awconfig.selection import EnvSnapshot, ResolveOptions, Selection, resolve
from awcli.client import AwebClient
from awcli.crypto.didkey import compute_did_key, extract_public_key
from awcli.crypto.signing import sign_rotation, verify_rotation_signature
from awcli.errors import (
    AccountNotFoundError,
    AwebError,
    AwebRequestError,
    ConfigurationError,
    DiscoveryError,
    KeyMaterialError,
    NoAPIDetectedError,
    NoDefaultConfiguredError,
    PersistenceError,
    ProtocolError,
    RotationPreconditionError,
    ServerAmbiguousError,
    ServerUnavailableError,
)
from awcli.factory import build_client, with_working_base_url
from awcli.probe import resolve_working_base_url
from awcli.rotation import RotationResult, graduate_to_self_custody, rotate_self_custody

__all__ = [
    "AwebError",
    "ConfigurationError",
    "AccountNotFoundError",
    "ServerAmbiguousError",
    "NoDefaultConfiguredError",
    "DiscoveryError",
    "NoAPIDetectedError",
    "ServerUnavailableError",
    "AwebRequestError",
    "ProtocolError",
    "KeyMaterialError",
    "RotationPreconditionError",
    "PersistenceError",
    "Account",
    "GlobalConfig",
    "Server",
    "default_global_config_path",
    "load_global_from",
    "update_global_at",
    "EnvSnapshot",
    "ResolveOptions",
    "Selection",
    "resolve",
    "resolve_working_base_url",
    "KeyPair",
    "save_keypair",
    "archive_key",
    "load_signing_key",
    "compute_did_key",
    "extract_public_key",
    "sign_rotation",
    "verify_rotation_signature",
    "AwebClient",
    "build_client",
    "with_working_base_url",
    "RotationResult",
    "rotate_self_custody",
    "graduate_to_self_custody",
]
