"""sdxauth - multi-provider sign-in and token lifecycle for AtlanticWave-SDX.

Authenticates against CILogon (device or popup flow), ORCID (PKCE popup
flow) and FABRIC (project token issued against a CILogon token), keeps
the tokens in a pluggable store, refreshes them before they expire and
hands them to the SDX backend.
"""

from __future__ import annotations

from .auth import (
    AuthOrchestrator,
    CILogonProvider,
    FabricProvider,
    FileTokenStore,
    KeyringTokenStore,
    MemoryTokenStore,
    ORCIDProvider,
    PopupChannel,
    SystemBrowserContext,
    TokenRefreshMonitor,
    TokenStore,
    decode_claims,
    get_token_store,
)
from .backend import BackendClient
from .config import SdxAuthSettings, get_settings, reload_settings
from .exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    AuthFlowTimeout,
    ConfigurationError,
    MalformedResponseError,
    NetworkError,
    PopupBlockedError,
    PreconditionError,
    ProviderDeniedError,
    SdxAuthException,
    StateMismatchError,
    TokenError,
    TokenRefreshError,
    TransientProviderError,
)
from .types import (
    AuthFlowResult,
    AuthFlowState,
    DeviceFlowState,
    DeviceFlowStatus,
    ProviderId,
    RefreshStatus,
    TokenRecord,
)


__version__ = "0.3.0"

__all__ = [
    "AuthFlowCancelled",
    "AuthFlowResult",
    "AuthFlowState",
    "AuthFlowTimeout",
    "AuthOrchestrator",
    "AuthenticationError",
    "BackendClient",
    "CILogonProvider",
    "ConfigurationError",
    "DeviceFlowState",
    "DeviceFlowStatus",
    "FabricProvider",
    "FileTokenStore",
    "KeyringTokenStore",
    "MalformedResponseError",
    "MemoryTokenStore",
    "NetworkError",
    "ORCIDProvider",
    "PopupBlockedError",
    "PopupChannel",
    "PreconditionError",
    "ProviderDeniedError",
    "ProviderId",
    "RefreshStatus",
    "SdxAuthException",
    "SdxAuthSettings",
    "StateMismatchError",
    "SystemBrowserContext",
    "TokenError",
    "TokenRecord",
    "TokenRefreshError",
    "TokenRefreshMonitor",
    "TokenStore",
    "TransientProviderError",
    "__version__",
    "decode_claims",
    "get_settings",
    "get_token_store",
    "reload_settings",
]
