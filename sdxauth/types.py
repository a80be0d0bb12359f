"""Type definitions shared across sdxauth.

Token records, flow states and refresh bookkeeping used by the token
store, provider adapters, refresh monitor and orchestrator.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


#: Injectable source of the current epoch time in seconds.
Clock = Callable[[], float]

#: Decoded token payload.
Claims = dict[str, Any]


class ProviderId(str, Enum):
    """Identity providers known to sdxauth."""

    CILOGON = "cilogon"
    ORCID = "orcid"
    FABRIC = "fabric"

    @property
    def label(self) -> str:
        """Display name of the provider."""
        return _PROVIDER_LABELS[self]


_PROVIDER_LABELS = {
    ProviderId.CILOGON: "CILogon",
    ProviderId.ORCID: "ORCID",
    ProviderId.FABRIC: "FABRIC",
}


@dataclass(frozen=True)
class TokenRecord:
    """Normalized token held for one provider.

    Attributes
    ----------
    id_token : str
        Opaque compact token (a signed JWT, or an unsigned placeholder).
    expires_in : int
        Token lifetime in seconds from issuance.
    issued_at : int
        Unix timestamp (seconds) when the token was issued.
    provider : ProviderId
        The provider that issued the token.
    refresh_token : str or None
        Optional refresh credential.
    placeholder : bool
        True for tokens synthesized client-side without a real exchange.
    """

    id_token: str
    expires_in: int
    issued_at: int
    provider: ProviderId
    refresh_token: str | None = None
    placeholder: bool = False

    def __post_init__(self) -> None:
        """Validate invariants of the record."""
        if not self.id_token:
            msg = "id_token must not be empty"
            raise ValueError(msg)
        if self.expires_in <= 0:
            msg = f"expires_in must be positive, got {self.expires_in}"
            raise ValueError(msg)

    @property
    def expires_at(self) -> int:
        """Authoritative expiry instant (epoch seconds)."""
        return self.issued_at + self.expires_in

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-serialisable form of the record."""
        return {
            "id_token": self.id_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "issued_at": self.issued_at,
            "provider": self.provider.value,
            "placeholder": self.placeholder,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenRecord:
        """Build a record from its serialised form.

        Raises
        ------
        KeyError, OverflowError, TypeError, ValueError
            If the data does not describe a valid record.
        """
        refresh_token = data.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            msg = "refresh_token must be a string"
            raise TypeError(msg)
        id_token = data["id_token"]
        if not isinstance(id_token, str):
            msg = "id_token must be a string"
            raise TypeError(msg)
        expires_in = data["expires_in"]
        issued_at = data["issued_at"]
        if isinstance(expires_in, bool) or isinstance(issued_at, bool):
            msg = "expires_in and issued_at must be numbers"
            raise TypeError(msg)
        return cls(
            id_token=id_token,
            refresh_token=refresh_token or None,
            expires_in=int(expires_in),
            issued_at=int(issued_at),
            provider=ProviderId(data["provider"]),
            placeholder=bool(data.get("placeholder", False)),
        )


@dataclass(frozen=True)
class DeviceAuthorization:
    """Device authorization response (RFC 8628, section 3.2).

    Attributes
    ----------
    device_code : str
        Code the client exchanges while polling.
    user_code : str
        Code the user enters on the verification page.
    verification_uri : str
        Page where the user enters ``user_code``.
    expires_in : int
        Lifetime of ``device_code`` in seconds.
    interval : int
        Minimum seconds between polling attempts.
    verification_uri_complete : str or None
        Verification page with the user code embedded.
    """

    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int = 5
    verification_uri_complete: str | None = None


class DeviceFlowStatus(str, Enum):
    """Status of a device flow polling loop."""

    IDLE = "idle"
    POLLING = "polling"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DeviceFlowState:
    """Snapshot of one device flow login attempt.

    Attributes
    ----------
    status : DeviceFlowStatus
        Current status of the polling loop.
    user_code : str or None
        Code to show to the user.
    verification_uri : str or None
        Where the user should go to authorize.
    verification_uri_complete : str or None
        Verification URI with the user code embedded.
    expires_at : float or None
        Hard deadline of the attempt (epoch seconds).
    interval : int or None
        Current polling interval in seconds.
    attempts : int
        Number of exchange calls issued so far.
    error : str or None
        Reason for the ``error`` status.
    """

    status: DeviceFlowStatus = DeviceFlowStatus.IDLE
    user_code: str | None = None
    verification_uri: str | None = None
    verification_uri_complete: str | None = None
    expires_at: float | None = None
    interval: int | None = None
    attempts: int = 0
    error: str | None = None


class AuthFlowState(str, Enum):
    """State of a provider login flow as seen by the presentation layer."""

    IDLE = "idle"
    POPUP_OPEN = "popup_open"
    DEVICE_PENDING = "device_pending"
    POLLING = "polling"
    WAITING = "waiting"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class PopupResult:
    """Outcome delivered by the authorization popup.

    Attributes
    ----------
    code : str or None
        Authorization code.
    state : str or None
        OAuth state echoed back by the provider.
    error : str or None
        OAuth error code.
    error_description : str or None
        Human-readable error detail.
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def is_error(self) -> bool:
        """Whether the popup reported an error."""
        return self.error is not None


@dataclass
class RefreshStatus:
    """Process-wide refresh bookkeeping.

    Attributes
    ----------
    is_refreshing : bool
        True while at least one refresh is in flight.
    last_refresh_at : dict[str, int]
        Epoch seconds of the last successful refresh, by provider.
    last_error : dict[str, str or None]
        Last refresh error, by provider (None after a success).
    """

    is_refreshing: bool = False
    last_refresh_at: dict[str, int] = field(default_factory=dict)
    last_error: dict[str, str | None] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-serialisable form."""
        return {
            "is_refreshing": self.is_refreshing,
            "last_refresh_at": dict(self.last_refresh_at),
            "last_error": dict(self.last_error),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefreshStatus:
        """Build a status from its serialised form."""
        return cls(
            is_refreshing=bool(data.get("is_refreshing", False)),
            last_refresh_at={str(k): int(v) for k, v in data.get("last_refresh_at", {}).items()},
            last_error={
                str(k): (None if v is None else str(v))
                for k, v in data.get("last_error", {}).items()
            },
        )


@dataclass
class AuthFlowResult:
    """Result of a login attempt, handed to the presentation layer.

    Attributes
    ----------
    success : bool
        Whether authentication completed successfully.
    provider : ProviderId
        The provider the attempt was for.
    token : TokenRecord or None
        The stored token if authentication succeeded.
    error : str or None
        Human-readable error message if authentication failed.
    """

    success: bool
    provider: ProviderId
    token: TokenRecord | None = None
    error: str | None = None
