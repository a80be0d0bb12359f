"""Multi-provider authentication for sdxauth.

Provides the provider adapters (CILogon, ORCID, FABRIC), the popup and
device-flow channels they run on, token storage, background refresh
and the orchestrator that ties them together.
"""

from __future__ import annotations

from .callback_server import OAuthCallbackServer, SystemBrowserContext
from .device_flow import DeviceFlowPoller
from .flow import AuthOrchestrator
from .jwt_claims import claims_hint, decode_claims, encode_unsigned
from .pkce import PKCEChallenge, generate_state
from .popup import (
    BrowsingContext,
    MessageBus,
    PopupChannel,
    PopupSizing,
    PopupWindow,
    Screen,
    parse_popup_message,
)
from .providers import (
    CILogonProvider,
    FabricProvider,
    OAuthProvider,
    ORCIDProvider,
    create_provider,
)
from .refresh import TokenRefreshMonitor
from .token_store import (
    FileTokenStore,
    KeyringTokenStore,
    MemoryTokenStore,
    TokenStore,
    get_token_store,
    reset_token_store,
)


__all__ = [
    "AuthOrchestrator",
    "BrowsingContext",
    "CILogonProvider",
    "DeviceFlowPoller",
    "FabricProvider",
    "FileTokenStore",
    "KeyringTokenStore",
    "MemoryTokenStore",
    "MessageBus",
    "OAuthCallbackServer",
    "OAuthProvider",
    "ORCIDProvider",
    "PKCEChallenge",
    "PopupChannel",
    "PopupSizing",
    "PopupWindow",
    "Screen",
    "SystemBrowserContext",
    "TokenRefreshMonitor",
    "TokenStore",
    "claims_hint",
    "create_provider",
    "decode_claims",
    "encode_unsigned",
    "generate_state",
    "get_token_store",
    "parse_popup_message",
    "reset_token_store",
]
