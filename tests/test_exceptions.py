"""Tests for sdxauth.exceptions module.

These tests verify the exception hierarchy, message formatting,
context storage, and inheritance relationships.
"""

from __future__ import annotations

import pytest

from sdxauth.exceptions import (
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


class TestSdxAuthException:
    """Test base exception class behavior."""

    def test_message_only(self) -> None:
        """Exception with just a message stores it correctly."""
        exc = SdxAuthException("Something went wrong")
        assert exc.message == "Something went wrong"
        assert not exc.context
        assert str(exc) == "Something went wrong"

    def test_with_context(self) -> None:
        """Context is included in the string representation."""
        exc = SdxAuthException("Failed", provider="orcid", status_code=400)
        assert exc.context == {"provider": "orcid", "status_code": 400}
        exc_str = str(exc)
        assert exc_str.startswith("Failed (")
        assert "provider='orcid'" in exc_str
        assert "status_code=400" in exc_str

    def test_none_context_omitted(self) -> None:
        """Context entries that are None are not rendered."""
        exc = SdxAuthException("Failed", provider=None)
        assert str(exc) == "Failed"

    def test_args_preserved(self) -> None:
        """Standard exception args are preserved."""
        assert SdxAuthException("message").args == ("message",)


class TestAuthenticationError:
    """Tests for AuthenticationError and its direct subclasses."""

    def test_provider_and_flow_id(self) -> None:
        """Provider and flow id are attributes and context."""
        exc = AuthenticationError("nope", provider="cilogon", flow_id="f-1")
        assert exc.provider == "cilogon"
        assert exc.flow_id == "f-1"
        assert exc.context["provider"] == "cilogon"
        assert "flow_id='f-1'" in str(exc)

    @pytest.mark.parametrize(
        "cls",
        [
            StateMismatchError,
            PopupBlockedError,
            AuthFlowCancelled,
            ProviderDeniedError,
            NetworkError,
            MalformedResponseError,
            TokenError,
        ],
    )
    def test_hierarchy(self, cls: type[AuthenticationError]) -> None:
        """Every flow failure is an AuthenticationError."""
        exc = cls("failed", provider="orcid")
        assert isinstance(exc, AuthenticationError)
        assert isinstance(exc, SdxAuthException)
        with pytest.raises(AuthenticationError):
            raise exc

    def test_refresh_error_is_token_error(self) -> None:
        """Refresh failures can be caught as token errors."""
        with pytest.raises(TokenError, match="invalid_grant"):
            raise TokenRefreshError("Token refresh failed: invalid_grant")


class TestSpecializedErrors:
    """Tests for errors carrying extra fields."""

    def test_precondition_missing(self) -> None:
        """PreconditionError names the missing provider."""
        exc = PreconditionError("Please authenticate with CILogon first.", missing="cilogon")
        assert exc.missing == "cilogon"
        assert exc.context["missing"] == "cilogon"

    def test_timeout_is_timeout_error(self) -> None:
        """AuthFlowTimeout can be caught as a builtin TimeoutError."""
        exc = AuthFlowTimeout("Device code expired", timeout=900, provider="cilogon")
        assert exc.timeout == 900
        assert isinstance(exc, TimeoutError)
        assert "timeout=900" in str(exc)
        with pytest.raises(TimeoutError):
            raise exc

    def test_transient_slow_down(self) -> None:
        """TransientProviderError records whether to slow down."""
        assert TransientProviderError("authorization_pending").slow_down is False
        exc = TransientProviderError("slow_down", slow_down=True, provider="cilogon")
        assert exc.slow_down is True
        assert exc.message == "slow_down"

    def test_configuration_error_is_value_error(self) -> None:
        """ConfigurationError is caught both as sdxauth error and ValueError."""
        exc = ConfigurationError("No backend URL", environment="dev")
        assert isinstance(exc, SdxAuthException)
        assert isinstance(exc, ValueError)
        assert str(exc) == "No backend URL (environment='dev')"

    def test_catch_all(self) -> None:
        """A single handler catches every sdxauth error."""
        errors = [
            PreconditionError("x", missing="cilogon"),
            AuthFlowTimeout("x", timeout=1),
            TransientProviderError("x"),
            TokenRefreshError("x"),
        ]
        for error in errors:
            with pytest.raises(SdxAuthException):
                raise error
