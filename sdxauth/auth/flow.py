"""Authentication orchestrator.

Provides AuthOrchestrator, which sequences provider logins, persists
the resulting tokens, tracks each provider's flow state for the
presentation layer and hands tokens to the backend.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from typing import TYPE_CHECKING, Any

from ..exceptions import AuthenticationError, PreconditionError, SdxAuthException
from ..types import AuthFlowResult, AuthFlowState, DeviceFlowState, ProviderId
from .jwt_claims import decode_claims
from .providers import CILogonProvider, create_provider
from .refresh import TokenRefreshMonitor


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    import httpx

    from ..backend import BackendClient
    from ..config import RefreshSettings, SdxAuthSettings
    from ..types import Claims, Clock, DeviceAuthorization, TokenRecord
    from .popup import PopupChannel, PopupSizing
    from .providers import OAuthProvider
    from .token_store import TokenStore


logger = logging.getLogger("sdxauth.auth")

_CANCELLED = "Authentication cancelled"


class AuthOrchestrator:
    """Coordinates logins across providers.

    Each provider has at most one login attempt in flight; starting a
    new one cancels the previous attempt. ``login`` reports failures in
    the returned AuthFlowResult and in :meth:`flow_state` rather than
    raising.

    Parameters
    ----------
    providers : Mapping[ProviderId, OAuthProvider]
        Adapter for each supported provider.
    store : TokenStore
        Where acquired tokens are persisted.
    backend : BackendClient, optional
        Target of :meth:`send_to_backend`.
    on_state_change : callable, optional
        ``on_state_change(provider, state)`` on every flow transition.
    on_device_code : callable, optional
        Called with the DeviceAuthorization of a device login, so the
        user code can be shown.
    on_device_state : callable, optional
        Called with every DeviceFlowState of a device login.
    """

    def __init__(
        self,
        providers: Mapping[ProviderId, OAuthProvider],
        store: TokenStore,
        backend: BackendClient | None = None,
        on_state_change: Callable[[ProviderId, AuthFlowState], None] | None = None,
        on_device_code: Callable[[DeviceAuthorization], None] | None = None,
        on_device_state: Callable[[DeviceFlowState], None] | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self.providers = dict(providers)
        self.store = store
        self.backend = backend
        self.on_state_change = on_state_change

        for adapter in self.providers.values():
            if isinstance(adapter, CILogonProvider):
                if on_device_code is not None:
                    adapter.on_device_code = on_device_code
                if on_device_state is not None:
                    adapter.poller.on_state_change = on_device_state

        self._states: dict[ProviderId, AuthFlowState] = {p: AuthFlowState.IDLE for p in ProviderId}
        self._errors: dict[ProviderId, str | None] = {}
        self._tasks: dict[ProviderId, asyncio.Task[TokenRecord]] = {}
        self._cancelled: set[asyncio.Task[TokenRecord]] = set()
        self._selected: ProviderId | None = None

    @classmethod
    def from_settings(
        cls,
        settings: SdxAuthSettings,
        store: TokenStore,
        *,
        popup: PopupChannel | None = None,
        popup_sizing: PopupSizing | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        backend: BackendClient | None = None,
        **callbacks: Any,
    ) -> AuthOrchestrator:
        """Build an orchestrator with adapters for every provider.

        Parameters
        ----------
        settings : SdxAuthSettings
            Full configuration.
        store : TokenStore
            Token store shared by all adapters.
        popup : PopupChannel, optional
            Channel for popup logins.
        popup_sizing : PopupSizing, optional
            Popup geometry.
        http_client : httpx.AsyncClient, optional
            Shared HTTP client.
        clock : callable, optional
            Returns the current epoch time in seconds.
        sleep : callable, optional
            Sleep used by device-code polling.
        backend : BackendClient, optional
            Backend handoff client.
        **callbacks : Any
            ``on_state_change``, ``on_device_code``, ``on_device_state``.

        Returns
        -------
        AuthOrchestrator
            The configured orchestrator.
        """
        providers = {
            provider: create_provider(
                provider,
                settings,
                store,
                http_client=http_client,
                clock=clock,
                popup=popup,
                popup_sizing=popup_sizing,
                sleep=sleep,
            )
            for provider in ProviderId
        }
        return cls(providers, store, backend=backend, **callbacks)

    # ── State ───────────────────────────────────────────────────────

    @property
    def selected_provider(self) -> ProviderId | None:
        """Provider whose token is currently shown."""
        return self._selected

    def select(self, provider: ProviderId | str | None) -> None:
        """Choose the provider whose token is shown."""
        self._selected = None if provider is None else ProviderId(provider)

    def flow_state(self, provider: ProviderId | str) -> AuthFlowState:
        """Current flow state of ``provider``."""
        return self._states[ProviderId(provider)]

    def last_error(self, provider: ProviderId | str) -> str | None:
        """Message of the provider's last failed login, if any."""
        return self._errors.get(ProviderId(provider))

    @property
    def device_flow(self) -> DeviceFlowState:
        """State of the current device login (idle when none)."""
        adapter = self.providers.get(ProviderId.CILOGON)
        if isinstance(adapter, CILogonProvider):
            return adapter.poller.state
        return DeviceFlowState()

    def _set_state(self, provider: ProviderId, state: AuthFlowState) -> None:
        if self._states[provider] is state:
            return
        self._states[provider] = state
        logger.debug("%s flow state: %s", provider.value, state.value)
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(provider, state)
        except Exception:
            logger.exception("State change callback failed")

    # ── Login ───────────────────────────────────────────────────────

    async def login(self, provider: ProviderId | str, mode: str | None = None) -> AuthFlowResult:
        """Run a login for ``provider`` and store the token.

        Parameters
        ----------
        provider : ProviderId or str
            The provider to log in with.
        mode : str, optional
            Login mode of the adapter (``"device"`` or ``"popup"`` for
            CILogon); defaults to the adapter's first mode.

        Returns
        -------
        AuthFlowResult
            The stored token, or a human-readable error.
        """
        provider = ProviderId(provider)
        adapter = self.providers.get(provider)
        if adapter is None:
            return self._fail(provider, f"{provider.label} login is not configured")

        self.cancel(provider)
        self._errors[provider] = None
        task = asyncio.create_task(
            adapter.start_login(
                on_progress=lambda state: self._set_state(provider, state),
                mode=mode,
            )
        )
        self._tasks[provider] = task
        try:
            record = await task
        except asyncio.CancelledError:
            if task not in self._cancelled:
                self.cancel(provider)
                raise
            return AuthFlowResult(success=False, provider=provider, error=_CANCELLED)
        except AuthenticationError as exc:
            if task in self._cancelled:
                return AuthFlowResult(success=False, provider=provider, error=_CANCELLED)
            return self._fail(provider, exc.message)
        except ValueError as exc:
            return self._fail(provider, str(exc))
        finally:
            self._cancelled.discard(task)
            if self._tasks.get(provider) is task:
                del self._tasks[provider]

        try:
            self.store.set(provider, record)
        except OSError as exc:
            return self._fail(provider, f"Could not store the {provider.label} token: {exc}")

        self._set_state(provider, AuthFlowState.SUCCESS)
        if self._selected is None:
            self._selected = provider
        logger.info("%s login completed", provider.label)
        return AuthFlowResult(success=True, provider=provider, token=record)

    def _fail(self, provider: ProviderId, message: str) -> AuthFlowResult:
        self._errors[provider] = message
        self._set_state(provider, AuthFlowState.ERROR)
        logger.warning("%s login failed: %s", provider.label, message)
        return AuthFlowResult(success=False, provider=provider, error=message)

    def cancel(self, provider: ProviderId | str) -> None:
        """Abort the provider's login attempt and reset its state to idle."""
        provider = ProviderId(provider)
        adapter = self.providers.get(provider)
        if adapter is not None:
            adapter.cancel()
        task = self._tasks.pop(provider, None)
        if task is not None and not task.done():
            self._cancelled.add(task)
            task.cancel()
            logger.info("%s login cancelled", provider.label)
        self._set_state(provider, AuthFlowState.IDLE)

    # ── Tokens ──────────────────────────────────────────────────────

    def claims(self, provider: ProviderId | str | None = None) -> Claims | None:
        """Decoded claims of the provider's token (default: selected).

        Returns None when there is no token or it cannot be decoded.
        """
        target = self._selected if provider is None else ProviderId(provider)
        if target is None:
            return None
        record = self.store.get(target)
        if record is None:
            return None
        return decode_claims(record.id_token)

    async def logout(self, provider: ProviderId | str) -> bool:
        """Revoke (best effort) and forget the provider's token.

        Returns
        -------
        bool
            True if the provider confirmed the revocation.
        """
        provider = ProviderId(provider)
        self.cancel(provider)
        record = self.store.get(provider)
        revoked = False
        adapter = self.providers.get(provider)
        if record is not None and adapter is not None:
            try:
                revoked = await adapter.revoke(record)
            except SdxAuthException as exc:
                logger.warning("Revocation failed for %s: %s", provider.value, exc)
        self.store.remove(provider)
        self._errors.pop(provider, None)
        if self._selected is provider:
            remaining = self.store.all_tokens()
            self._selected = next(iter(remaining), None)
        logger.info("%s logged out", provider.label)
        return revoked

    async def logout_all(self) -> None:
        """Log out of every provider and clear the store."""
        for provider in ProviderId:
            await self.logout(provider)
        self.store.clear_all()
        self._selected = None

    async def send_to_backend(self, provider: ProviderId | str | None = None) -> dict[str, Any]:
        """Hand the provider's token (default: selected) to the backend.

        Raises
        ------
        PreconditionError
            If there is no valid token for the provider.
        AuthenticationError
            If no backend is configured or the handoff fails.
        """
        if self.backend is None:
            msg = "No backend configured for token handoff"
            raise AuthenticationError(msg)
        target = self._selected if provider is None else ProviderId(provider)
        if target is None:
            msg = "No provider selected"
            raise PreconditionError(msg, missing="provider")
        record = self.store.get(target)
        if record is None or not self.store.is_valid(record):
            msg = f"No valid {target.label} token to send"
            raise PreconditionError(msg, missing=target.value, provider=target.value)
        return await self.backend.send_token(record)

    def refresh_monitor(
        self,
        settings: RefreshSettings | None = None,
        **callbacks: Any,
    ) -> TokenRefreshMonitor:
        """Build a refresh monitor over this orchestrator's adapters.

        Parameters
        ----------
        settings : RefreshSettings, optional
            Interval, windows and watched providers (defaults apply
            when omitted).
        **callbacks : Any
            ``on_refreshed``, ``on_warning``, ``on_error``.

        Returns
        -------
        TokenRefreshMonitor
            A monitor that has not been started.
        """
        if settings is None:
            return TokenRefreshMonitor(self.store, self.providers, **callbacks)
        watched = {ProviderId(p) for p in settings.providers}
        return TokenRefreshMonitor(
            self.store,
            {p: a for p, a in self.providers.items() if p in watched},
            interval=settings.check_interval_seconds,
            refresh_window=settings.refresh_window_seconds,
            warning_window=settings.warning_window_seconds,
            **callbacks,
        )

    async def close(self) -> None:
        """Cancel running logins and close HTTP clients."""
        pending = [task for task in self._tasks.values() if not task.done()]
        for provider in list(self._tasks):
            self.cancel(provider)
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError, AuthenticationError):
                await task
        for adapter in self.providers.values():
            await adapter.close()
        if self.backend is not None:
            await self.backend.close()
