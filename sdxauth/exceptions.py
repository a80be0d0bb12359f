"""sdxauth exception hierarchy.

All sdxauth-specific exceptions inherit from SdxAuthException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class SdxAuthException(Exception):
    """Base exception for all sdxauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize sdxauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, flow_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(SdxAuthException, ValueError):
    """A required setting is missing or has no usable value."""


class AuthenticationError(SdxAuthException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including
    OAuth2 flows, token exchange, or token lifecycle management.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider name (e.g., "cilogon", "orcid").
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, **context)
        self.provider = provider
        self.flow_id = flow_id


class PreconditionError(AuthenticationError):
    """A flow was started without the token it depends on.

    Raised before any network call when, for example, the FABRIC flow
    runs without a valid CILogon token.
    """

    def __init__(
        self,
        message: str,
        missing: str,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize precondition error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        missing : str
            The provider whose token is missing or expired.
        provider : str, optional
            The provider whose flow failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, missing=missing, **context)
        self.missing = missing


class StateMismatchError(AuthenticationError):
    """The OAuth ``state`` returned by the provider does not match.

    Always a security failure; the authorization code is discarded and
    never exchanged.
    """


class PopupBlockedError(AuthenticationError):
    """The authorization popup could not be opened."""


class AuthFlowCancelled(AuthenticationError):
    """Authentication flow was cancelled.

    Raised when the user closes the authorization popup, or the login
    attempt is aborted (new attempt, navigation away).
    """


class AuthFlowTimeout(AuthenticationError, TimeoutError):
    """Authentication flow exceeded its deadline.

    Raised when the popup produces no result within its timeout, or a
    device code expires while still polling.
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        provider : str, optional
            The provider name.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class ProviderDeniedError(AuthenticationError):
    """The provider explicitly denied the request.

    Covers ``access_denied`` and ``expired_token`` answers, as well as
    errors returned through the popup callback.
    """


class TransientProviderError(AuthenticationError):
    """The provider asked the client to keep waiting.

    Covers ``authorization_pending`` and ``slow_down``. Only the device
    flow poller sees these; they never reach the presentation layer.
    """

    def __init__(
        self,
        message: str,
        slow_down: bool = False,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize transient error.

        Parameters
        ----------
        message : str
            The raw provider error code.
        slow_down : bool
            True if the provider asked to increase the polling interval.
        provider : str, optional
            The provider name.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.slow_down = slow_down


class NetworkError(AuthenticationError):
    """The HTTP transport failed before a response was received."""


class MalformedResponseError(AuthenticationError):
    """A provider or backend response did not have the expected shape."""


class TokenError(AuthenticationError):
    """Base exception for token-related failures.

    Raised when token operations (exchange, issuance, handoff) fail.
    """


class TokenRefreshError(TokenError):
    """Token refresh failed.

    Raised when a refresh credential is missing or the provider rejects it.
    """
