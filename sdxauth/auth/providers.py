"""Identity provider adapters.

Defines the OAuthProvider ABC and the adapters for the three providers:

- ``CILogonProvider``: academic federation; device authorization grant
  (default) or authorization code through the popup channel.
- ``ORCIDProvider``: researcher identifier; authorization code with PKCE
  through the popup channel.
- ``FabricProvider``: testbed credential manager; issues a project
  token against a valid CILogon token.

Every adapter normalizes its result into a TokenRecord. Adapters never
write to the token store; the orchestrator and refresh monitor do.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import secrets
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    AuthenticationError,
    MalformedResponseError,
    NetworkError,
    PreconditionError,
    ProviderDeniedError,
    StateMismatchError,
    TokenError,
    TokenRefreshError,
    TransientProviderError,
)
from ..types import AuthFlowState, DeviceAuthorization, ProviderId, TokenRecord
from .device_flow import DeviceFlowPoller
from .jwt_claims import encode_unsigned
from .pkce import PKCEChallenge, generate_state


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..config import (
        CILogonSettings,
        FabricSettings,
        ORCIDSettings,
        ProviderSettings,
        SdxAuthSettings,
    )
    from ..types import Clock, DeviceFlowState
    from .popup import PopupChannel, PopupSizing
    from .token_store import TokenStore

    ProgressCallback = Callable[[AuthFlowState], None]


logger = logging.getLogger("sdxauth.auth")

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

PLACEHOLDER_MARKER = "sdx_placeholder"
PLACEHOLDER_SIGNATURE = "placeholder"

_TRANSIENT_ERRORS = frozenset({"authorization_pending", "slow_down"})
_DENIED_ERRORS = frozenset({"access_denied", "expired_token"})


class OAuthProvider(ABC):
    """Abstract base class for provider adapters.

    Parameters
    ----------
    settings : ProviderSettings or FabricSettings
        Endpoint and client configuration of the provider.
    http_client : httpx.AsyncClient, optional
        Client used for every request. One is created on first use if
        omitted, and closed by :meth:`close`.
    clock : callable, optional
        Returns the current epoch time in seconds (default ``time.time``).
    """

    provider_id: ClassVar[ProviderId]
    login_modes: ClassVar[tuple[str, ...]]

    def __init__(
        self,
        settings: ProviderSettings | FabricSettings,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the provider adapter."""
        self.settings = settings
        self._clock: Clock = clock or time.time
        self._http_client = http_client
        self._owns_client = http_client is None
        self.flow_id: str | None = None

    @property
    def name(self) -> str:
        """Provider identifier used in errors and logs."""
        return self.provider_id.value

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def cancel(self) -> None:
        """Abort background work owned by the adapter (no-op by default)."""

    def _resolve_mode(self, mode: str | None) -> str:
        if mode is None:
            return self.login_modes[0]
        if mode not in self.login_modes:
            supported = ", ".join(self.login_modes)
            msg = f"{self.provider_id.label} does not support '{mode}' login (use: {supported})"
            raise ValueError(msg)
        return mode

    def _progress(self, on_progress: ProgressCallback | None, state: AuthFlowState) -> None:
        if on_progress is None:
            return
        try:
            on_progress(state)
        except Exception:
            logger.exception("Progress callback failed for %s", self.name)

    @abstractmethod
    async def start_login(
        self,
        on_progress: ProgressCallback | None = None,
        mode: str | None = None,
    ) -> TokenRecord:
        """Run the provider's login flow.

        Parameters
        ----------
        on_progress : callable, optional
            Called with each AuthFlowState the flow passes through.
        mode : str, optional
            One of :attr:`login_modes` (defaults to the first).

        Returns
        -------
        TokenRecord
            The newly acquired token.

        Raises
        ------
        AuthenticationError
            If any step of the flow fails.
        """

    # ── HTTP helpers ────────────────────────────────────────────────

    async def _post(
        self,
        url: str,
        *,
        data: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST to ``url`` and return the JSON object response.

        Raises
        ------
        NetworkError
            If the request could not be completed.
        TransientProviderError, ProviderDeniedError, TokenError
            If the provider answered with an OAuth error.
        MalformedResponseError
            If a successful response is not a JSON object.
        """
        client = await self._get_client()
        try:
            resp = await client.post(
                url,
                data=data,
                json=json_body,
                headers={"Accept": "application/json", **(headers or {})},
            )
        except httpx.HTTPError as exc:
            msg = f"Request to {url} failed: {exc}"
            raise NetworkError(msg, provider=self.name, flow_id=self.flow_id) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        # Some servers answer OAuth errors with a 200 status
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            raise self._oauth_error(body, resp.status_code)
        if resp.is_success:
            if not isinstance(body, dict):
                msg = f"Expected a JSON object from {url}"
                raise MalformedResponseError(
                    msg, provider=self.name, flow_id=self.flow_id, status_code=resp.status_code
                )
            return body

        msg = f"Request to {url} failed: {resp.status_code}"
        raise TokenError(msg, provider=self.name, flow_id=self.flow_id, status_code=resp.status_code)

    def _oauth_error(self, body: dict[str, Any], status_code: int) -> AuthenticationError:
        """Map an OAuth error response to an exception."""
        error = body["error"]
        description = body.get("error_description")
        if error in _TRANSIENT_ERRORS:
            return TransientProviderError(
                error, slow_down=error == "slow_down", provider=self.name
            )
        message = f"{error}: {description}" if description else error
        if error in _DENIED_ERRORS:
            return ProviderDeniedError(message, provider=self.name, flow_id=self.flow_id)
        return TokenError(message, provider=self.name, flow_id=self.flow_id, status_code=status_code)

    def _token_record(
        self,
        raw: dict[str, Any],
        refresh_fallback: str | None = None,
    ) -> TokenRecord:
        """Normalize a token response into a TokenRecord.

        ``id_token`` is preferred over ``access_token``. A missing or
        invalid ``expires_in`` falls back to the configured default.
        """
        token = raw.get("id_token") or raw.get("access_token")
        if not isinstance(token, str) or not token:
            msg = "No token received"
            raise MalformedResponseError(msg, provider=self.name, flow_id=self.flow_id)

        expires_in = raw.get("expires_in")
        try:
            expires_in = int(expires_in)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            expires_in = 0
        if expires_in <= 0:
            expires_in = self.settings.default_expires_in

        refresh_token = raw.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            refresh_token = refresh_fallback

        return TokenRecord(
            id_token=token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            issued_at=int(self._clock()),
            provider=self.provider_id,
        )

    # ── Lifecycle ───────────────────────────────────────────────────

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """Exchange the record's refresh token for a new token.

        The previous refresh token is kept when the response omits one.

        Raises
        ------
        TokenRefreshError
            If there is no refresh token or the provider rejects it.
        NetworkError
            If the request could not be completed.
        """
        if not record.refresh_token:
            msg = "No refresh token available"
            raise TokenRefreshError(msg, provider=self.name)

        settings: ProviderSettings = self.settings  # type: ignore[assignment]
        data = {
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "client_id": settings.client_id,
        }
        if settings.client_secret:
            data["client_secret"] = settings.client_secret
        try:
            raw = await self._post(settings.token_endpoint, data=data)
        except TokenRefreshError:
            raise
        except TokenError as exc:
            msg = f"Token refresh failed: {exc.message}"
            raise TokenRefreshError(msg, provider=self.name) from exc
        return self._token_record(raw, refresh_fallback=record.refresh_token)

    async def revoke(self, record: TokenRecord) -> bool:
        """Revoke a token at the provider (RFC 7009).

        Revokes the refresh token when there is one, otherwise the token
        itself. Placeholder tokens are never sent.

        Returns
        -------
        bool
            True if revocation succeeded, False if no endpoint is
            configured or the request failed.
        """
        endpoint = self.settings.revocation_endpoint
        if not endpoint or record.placeholder:
            return False
        if record.refresh_token:
            data = {"token": record.refresh_token, "token_type_hint": "refresh_token"}
        else:
            data = {"token": record.id_token, "token_type_hint": "access_token"}
        client_id = getattr(self.settings, "client_id", "")
        if client_id:
            data["client_id"] = client_id
        try:
            client = await self._get_client()
            resp = await client.post(endpoint, data=data, timeout=10.0)
        except httpx.HTTPError as exc:
            logger.warning("Token revocation failed for %s: %s", self.name, exc)
            return False
        return resp.is_success


class AuthorizationCodeProvider(OAuthProvider):
    """Provider adapter with an authorization-code popup flow.

    Parameters
    ----------
    settings : ProviderSettings
        Endpoint and client configuration.
    http_client : httpx.AsyncClient, optional
        Client used for every request.
    clock : callable, optional
        Returns the current epoch time in seconds.
    popup : PopupChannel, optional
        Channel that opens the authorization page. Required for popup
        logins.
    popup_sizing : PopupSizing, optional
        Popup geometry.
    """

    settings: ProviderSettings

    def __init__(
        self,
        settings: ProviderSettings,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        popup: PopupChannel | None = None,
        popup_sizing: PopupSizing | None = None,
    ) -> None:
        """Initialize the provider adapter."""
        super().__init__(settings, http_client=http_client, clock=clock)
        self.popup = popup
        self.popup_sizing = popup_sizing

    def build_authorize_url(
        self,
        redirect_uri: str,
        state: str,
        pkce: PKCEChallenge | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The callback URL to redirect to after authorization.
        state : str
            CSRF protection nonce.
        pkce : PKCEChallenge, optional
            PKCE challenge for public clients.
        extra_params : dict, optional
            Additional query parameters.

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.settings.scope,
            "state": state,
        }
        if pkce:
            params.update(pkce.authorize_params())
        if extra_params:
            params.update(extra_params)
        return f"{self.settings.authorization_endpoint}?{urlencode(params)}"

    def _redirect_uri(self) -> str:
        if self.settings.redirect_uri:
            return self.settings.redirect_uri
        if self.popup is not None and self.popup.context.redirect_uri:
            return self.popup.context.redirect_uri
        msg = "No redirect URI configured and the browsing context has no callback page"
        raise AuthenticationError(msg, provider=self.name, flow_id=self.flow_id)

    async def _authorize_with_popup(
        self,
        on_progress: ProgressCallback | None,
        use_pkce: bool,
    ) -> tuple[str, str, PKCEChallenge | None]:
        """Run the popup leg of the flow.

        Returns
        -------
        tuple
            The authorization code, the redirect URI used, and the PKCE
            pair (None without PKCE).

        Raises
        ------
        StateMismatchError
            If the returned state differs from the one generated. The
            code is discarded without being exchanged.
        """
        if self.popup is None:
            msg = "Popup login requires a browsing context"
            raise AuthenticationError(msg, provider=self.name, flow_id=self.flow_id)

        state = generate_state()
        pkce = PKCEChallenge.generate() if use_pkce else None
        redirect_uri = self._redirect_uri()
        url = self.build_authorize_url(redirect_uri=redirect_uri, state=state, pkce=pkce)

        self._progress(on_progress, AuthFlowState.POPUP_OPEN)
        logger.info("Auth flow %s: opening %s authorization popup", self.flow_id, self.name)
        result = await self.popup.open(url, self.popup_sizing)

        if result.is_error:
            message = result.error_description or result.error or "unknown_error"
            msg = f"Provider returned error: {message}"
            raise ProviderDeniedError(msg, provider=self.name, flow_id=self.flow_id)
        if result.state != state:
            msg = "State parameter mismatch (possible CSRF attack)"
            raise StateMismatchError(msg, provider=self.name, flow_id=self.flow_id)
        if not result.code:
            msg = "No authorization code in callback"
            raise MalformedResponseError(msg, provider=self.name, flow_id=self.flow_id)

        self._progress(on_progress, AuthFlowState.WAITING)
        return result.code, redirect_uri, pkce

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        pkce_verifier: str | None = None,
    ) -> TokenRecord:
        """Exchange an authorization code for a token.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        redirect_uri : str
            The redirect URI used in the authorization request.
        pkce_verifier : str, optional
            The PKCE code verifier if PKCE was used.

        Returns
        -------
        TokenRecord
            The issued token.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.settings.client_id,
        }
        if self.settings.client_secret:
            data["client_secret"] = self.settings.client_secret
        if pkce_verifier:
            data["code_verifier"] = pkce_verifier
        raw = await self._post(self.settings.token_endpoint, data=data)
        return self._token_record(raw)


class CILogonProvider(AuthorizationCodeProvider):
    """CILogon adapter (academic federation).

    ``device`` logins use the device authorization grant (RFC 8628),
    driven by a DeviceFlowPoller. ``popup`` logins use the authorization
    code grant through the popup channel.

    Parameters
    ----------
    settings : CILogonSettings
        CILogon configuration.
    http_client : httpx.AsyncClient, optional
        Client used for every request.
    clock : callable, optional
        Returns the current epoch time in seconds.
    popup : PopupChannel, optional
        Channel for popup logins.
    popup_sizing : PopupSizing, optional
        Popup geometry.
    sleep : callable, optional
        Sleep used between device-code exchanges.
    on_device_code : callable, optional
        Called with the DeviceAuthorization before polling starts.
    on_device_state : callable, optional
        Called with every DeviceFlowState.
    """

    provider_id = ProviderId.CILOGON
    login_modes = ("device", "popup")

    settings: CILogonSettings

    def __init__(
        self,
        settings: CILogonSettings,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        popup: PopupChannel | None = None,
        popup_sizing: PopupSizing | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        on_device_code: Callable[[DeviceAuthorization], None] | None = None,
        on_device_state: Callable[[DeviceFlowState], None] | None = None,
    ) -> None:
        """Initialize the CILogon adapter."""
        super().__init__(
            settings,
            http_client=http_client,
            clock=clock,
            popup=popup,
            popup_sizing=popup_sizing,
        )
        self.on_device_code = on_device_code
        self.poller: DeviceFlowPoller[TokenRecord] = DeviceFlowPoller(
            self.exchange_device_code,
            clock=self._clock,
            sleep=sleep,
            on_state_change=on_device_state,
            provider=self.name,
        )

    async def start_login(
        self,
        on_progress: ProgressCallback | None = None,
        mode: str | None = None,
    ) -> TokenRecord:
        """Log in with the device flow (default) or the popup flow."""
        mode = self._resolve_mode(mode)
        self.flow_id = secrets.token_urlsafe(16)
        if mode == "popup":
            code, redirect_uri, pkce = await self._authorize_with_popup(
                on_progress, use_pkce=self.settings.use_pkce
            )
            return await self.exchange_code(
                code, redirect_uri, pkce_verifier=pkce.verifier if pkce else None
            )

        self._progress(on_progress, AuthFlowState.DEVICE_PENDING)
        authorization = await self.start_device_authorization()
        if self.on_device_code is not None:
            try:
                self.on_device_code(authorization)
            except Exception:
                logger.exception("Device code callback failed")
        self._progress(on_progress, AuthFlowState.POLLING)
        return await self.poller.poll(authorization)

    async def start_device_authorization(self) -> DeviceAuthorization:
        """Request a device code and user code.

        Returns
        -------
        DeviceAuthorization
            The codes and verification page to show to the user.

        Raises
        ------
        MalformedResponseError
            If the response lacks the required fields.
        """
        data = {"client_id": self.settings.client_id, "scope": self.settings.scope}
        if self.settings.client_secret:
            data["client_secret"] = self.settings.client_secret
        body = await self._post(self.settings.device_authorization_endpoint, data=data)
        try:
            authorization = DeviceAuthorization(
                device_code=str(body["device_code"]),
                user_code=str(body["user_code"]),
                verification_uri=str(body.get("verification_uri") or body["verification_url"]),
                expires_in=int(body.get("expires_in") or 600),
                interval=int(body.get("interval") or 5),
                verification_uri_complete=body.get("verification_uri_complete"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Invalid device authorization response: {exc}"
            raise MalformedResponseError(msg, provider=self.name, flow_id=self.flow_id) from exc
        logger.info(
            "Auth flow %s: device code issued, user code %s",
            self.flow_id,
            authorization.user_code,
        )
        return authorization

    async def exchange_device_code(self, device_code: str) -> TokenRecord:
        """Attempt one device-code exchange.

        Raises
        ------
        TransientProviderError
            While the user has not yet approved (``authorization_pending``)
            or when asked to poll slower (``slow_down``).
        ProviderDeniedError
            If the user denied access or the device code expired.
        """
        data = {
            "grant_type": DEVICE_CODE_GRANT,
            "device_code": device_code,
            "client_id": self.settings.client_id,
        }
        if self.settings.client_secret:
            data["client_secret"] = self.settings.client_secret
        raw = await self._post(self.settings.token_endpoint, data=data)
        return self._token_record(raw)

    def cancel(self) -> None:
        """Stop device-code polling."""
        self.poller.cancel()


class ORCIDProvider(AuthorizationCodeProvider):
    """ORCID adapter (researcher identifier).

    Authorization code grant with PKCE through the popup channel. When
    the code exchange cannot reach ORCID and the placeholder fallback is
    enabled, a placeholder token is synthesized so the session can
    continue. Placeholder tokens are unsigned, carry the
    ``sdx_placeholder`` claim and have ``placeholder=True``.
    """

    provider_id = ProviderId.ORCID
    login_modes = ("popup",)

    settings: ORCIDSettings

    async def start_login(
        self,
        on_progress: ProgressCallback | None = None,
        mode: str | None = None,
    ) -> TokenRecord:
        """Log in through the popup."""
        self._resolve_mode(mode)
        self.flow_id = secrets.token_urlsafe(16)
        code, redirect_uri, pkce = await self._authorize_with_popup(
            on_progress, use_pkce=self.settings.use_pkce
        )
        try:
            return await self.exchange_code(
                code, redirect_uri, pkce_verifier=pkce.verifier if pkce else None
            )
        except NetworkError as exc:
            if not self.settings.allow_placeholder_fallback:
                raise
            logger.warning(
                "ORCID token exchange unreachable (%s); issuing an unverified placeholder token",
                exc.message,
            )
            return self.placeholder_token(code)

    def placeholder_token(self, code: str) -> TokenRecord:
        """Synthesize a placeholder token for ``code``.

        Parameters
        ----------
        code : str
            The authorization code; only its first 8 characters are kept.

        Returns
        -------
        TokenRecord
            A record flagged with ``placeholder=True``.
        """
        now = int(self._clock())
        expires_in = self.settings.default_expires_in
        claims = {
            "iss": self.settings.issuer_url,
            "aud": self.settings.client_id,
            "iat": now,
            "exp": now + expires_in,
            "code_prefix": code[:8],
            PLACEHOLDER_MARKER: "unverified",
        }
        return TokenRecord(
            id_token=encode_unsigned(claims, signature=PLACEHOLDER_SIGNATURE),
            expires_in=expires_in,
            issued_at=now,
            provider=self.provider_id,
            placeholder=True,
        )


class FabricProvider(OAuthProvider):
    """FABRIC credential manager adapter (dependent infrastructure).

    Issues a project-scoped token using the stored CILogon token as the
    bearer credential. Without a valid CILogon token the login fails
    before any request is made.

    Parameters
    ----------
    settings : FabricSettings
        Credential manager configuration.
    store : TokenStore
        Store read for the CILogon token.
    http_client : httpx.AsyncClient, optional
        Client used for every request.
    clock : callable, optional
        Returns the current epoch time in seconds.
    """

    provider_id = ProviderId.FABRIC
    login_modes = ("issue",)

    settings: FabricSettings

    def __init__(
        self,
        settings: FabricSettings,
        store: TokenStore,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the FABRIC adapter."""
        super().__init__(settings, http_client=http_client, clock=clock)
        self.store = store

    def _url(self, path: str) -> str:
        return f"{self.settings.cm_base.rstrip('/')}{path}"

    @staticmethod
    def _unwrap(body: dict[str, Any]) -> dict[str, Any]:
        """Return the token object of a credential manager response."""
        data = body.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0]
        return body

    async def start_login(
        self,
        on_progress: ProgressCallback | None = None,
        mode: str | None = None,
    ) -> TokenRecord:
        """Issue a FABRIC token for the configured project.

        Raises
        ------
        PreconditionError
            If there is no valid CILogon token.
        """
        self._resolve_mode(mode)
        cilogon = self.store.get(ProviderId.CILOGON)
        if cilogon is None or not self.store.is_valid(cilogon):
            msg = (
                "FABRIC API authentication requires a valid CILogon token. "
                "Please authenticate with CILogon first."
            )
            raise PreconditionError(msg, missing=ProviderId.CILOGON.value, provider=self.name)

        self.flow_id = secrets.token_urlsafe(16)
        self._progress(on_progress, AuthFlowState.WAITING)
        body = await self._post(
            self._url(self.settings.create_path),
            json_body={
                "project_id": self.settings.project_id,
                "project_name": self.settings.project_name,
                "scope": self.settings.scope,
            },
            headers={"Authorization": f"Bearer {cilogon.id_token}"},
        )
        logger.info("Auth flow %s: FABRIC token issued", self.flow_id)
        return self._token_record(self._unwrap(body))

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """Refresh a FABRIC token with its refresh token."""
        if not record.refresh_token:
            msg = "No refresh token available"
            raise TokenRefreshError(msg, provider=self.name)
        try:
            body = await self._post(
                self._url(self.settings.refresh_path),
                json_body={"project_id": self.settings.project_id},
                headers={"Authorization": f"Bearer {record.refresh_token}"},
            )
        except TokenRefreshError:
            raise
        except TokenError as exc:
            msg = f"FABRIC API token refresh failed: {exc.message}"
            raise TokenRefreshError(msg, provider=self.name) from exc
        return self._token_record(self._unwrap(body), refresh_fallback=record.refresh_token)


def create_provider(
    provider: ProviderId | str,
    settings: SdxAuthSettings,
    store: TokenStore,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
    popup: PopupChannel | None = None,
    popup_sizing: PopupSizing | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> OAuthProvider:
    """Factory function for provider adapters.

    Parameters
    ----------
    provider : ProviderId or str
        The provider to build.
    settings : SdxAuthSettings
        Full configuration; the provider's section is used.
    store : TokenStore
        Token store (read by the FABRIC precondition).
    http_client : httpx.AsyncClient, optional
        Shared HTTP client.
    clock : callable, optional
        Returns the current epoch time in seconds.
    popup : PopupChannel, optional
        Popup channel for authorization-code logins.
    popup_sizing : PopupSizing, optional
        Popup geometry.
    sleep : callable, optional
        Sleep used by device-code polling.

    Returns
    -------
    OAuthProvider
        The configured adapter.
    """
    provider = ProviderId(provider)
    if provider is ProviderId.CILOGON:
        return CILogonProvider(
            settings.cilogon,
            http_client=http_client,
            clock=clock,
            popup=popup,
            popup_sizing=popup_sizing,
            sleep=sleep,
        )
    if provider is ProviderId.ORCID:
        return ORCIDProvider(
            settings.orcid,
            http_client=http_client,
            clock=clock,
            popup=popup,
            popup_sizing=popup_sizing,
        )
    return FabricProvider(settings.fabric, store, http_client=http_client, clock=clock)
