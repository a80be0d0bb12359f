"""Background token refresh.

TokenRefreshMonitor periodically inspects every stored token. Tokens
that expire soon are refreshed when they carry a refresh token; the
others produce a re-authentication warning. Failures are recorded in
the RefreshStatus and retried on the next tick, never raised.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from typing import TYPE_CHECKING, Any

from ..exceptions import TokenRefreshError
from ..types import ProviderId, RefreshStatus


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from ..types import Clock, TokenRecord
    from .providers import OAuthProvider
    from .token_store import TokenStore


logger = logging.getLogger("sdxauth.auth")


class TokenRefreshMonitor:
    """Watches stored tokens and refreshes them before they expire.

    Parameters
    ----------
    store : TokenStore
        Store holding the tokens and the refresh status.
    providers : Mapping[ProviderId, OAuthProvider]
        Adapters used for refresh calls; only these providers are watched.
    interval : float
        Seconds between checks (default 60).
    refresh_window : float
        Refresh tokens expiring within this many seconds (default 300).
    warning_window : float
        Warn about non-refreshable tokens expiring within this many
        seconds (default 300).
    clock : callable, optional
        Time source for refresh timestamps (default: the store's clock).
    on_refreshed : callable, optional
        ``on_refreshed(provider, record)`` after a successful refresh.
    on_warning : callable, optional
        ``on_warning(provider, seconds_left)`` for tokens that need a
        manual login.
    on_error : callable, optional
        ``on_error(provider, message)`` after a failed refresh.
    """

    def __init__(
        self,
        store: TokenStore,
        providers: Mapping[ProviderId, OAuthProvider],
        interval: float = 60.0,
        refresh_window: float = 300.0,
        warning_window: float = 300.0,
        clock: Clock | None = None,
        on_refreshed: Callable[[ProviderId, TokenRecord], None] | None = None,
        on_warning: Callable[[ProviderId, float], None] | None = None,
        on_error: Callable[[ProviderId, str], None] | None = None,
    ) -> None:
        """Initialize the refresh monitor."""
        self.store = store
        self.providers = dict(providers)
        self.interval = interval
        self.refresh_window = refresh_window
        self.warning_window = warning_window
        self._clock: Clock = clock or store.clock
        self.on_refreshed = on_refreshed
        self.on_warning = on_warning
        self.on_error = on_error

        self._in_flight: set[ProviderId] = set()
        self._task: asyncio.Task[None] | None = None
        self._status = store.load_refresh_status()
        # A previous process may have died mid-refresh
        self._status.is_refreshing = False

    @property
    def status(self) -> RefreshStatus:
        """Copy of the current refresh bookkeeping."""
        return RefreshStatus.from_dict(self._status.to_dict())

    @property
    def running(self) -> bool:
        """Whether the background task is active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start periodic checks on the running event loop.

        The first check runs immediately.
        """
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug("Token refresh monitor started (every %ss)", self.interval)

    async def stop(self) -> None:
        """Stop periodic checks."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Token refresh monitor stopped")

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def tick(self) -> None:
        """Check every watched provider once, concurrently."""
        providers = list(self.providers)
        results = await asyncio.gather(
            *(self._check(provider) for provider in providers), return_exceptions=True
        )
        for provider, result in zip(providers, results):
            if isinstance(result, Exception):
                logger.error("Refresh check failed for %s: %s", provider.value, result)

    async def _check(self, provider: ProviderId) -> None:
        record = self.store.get(provider)
        if record is None:
            return
        remaining = self.store.time_until_expiry(record)
        if self.store.can_refresh(record):
            if 0 < remaining <= self.refresh_window:
                logger.info(
                    "%s token expires in %d minutes, refreshing",
                    provider.label,
                    remaining // 60,
                )
                await self.manual_refresh(provider)
        elif 0 < remaining <= self.warning_window:
            logger.warning(
                "%s token expires soon and cannot be refreshed; sign in again",
                provider.label,
            )
            self._emit(self.on_warning, provider, remaining)

    async def manual_refresh(self, provider: ProviderId | str) -> bool:
        """Refresh one provider's token now.

        A refresh already in flight for the provider suppresses this one.

        Parameters
        ----------
        provider : ProviderId or str
            The provider to refresh.

        Returns
        -------
        bool
            True if the token was refreshed, False if the attempt was
            suppressed or failed (see :attr:`status`).
        """
        provider = ProviderId(provider)
        if provider in self._in_flight:
            logger.info("Token refresh already in progress for %s", provider.value)
            return False

        self._in_flight.add(provider)
        self._status.is_refreshing = True
        self._status.last_error[provider.value] = None
        self._save_status()
        try:
            adapter = self.providers.get(provider)
            if adapter is None:
                msg = f"Unsupported provider for refresh: {provider.value}"
                raise TokenRefreshError(msg, provider=provider.value)
            record = self.store.get(provider)
            if record is None or not record.refresh_token:
                msg = (
                    f"{provider.label} refresh token not available. "
                    "Manual re-authentication required."
                )
                raise TokenRefreshError(msg, provider=provider.value)
            new_record = await adapter.refresh(record)
            self.store.set(provider, new_record)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc)
            logger.warning("Failed to refresh %s token: %s", provider.value, message)
            self._status.last_error[provider.value] = message
            self._emit(self.on_error, provider, message)
            return False
        else:
            self._status.last_refresh_at[provider.value] = int(self._clock())
            logger.info("Successfully refreshed %s token", provider.value)
            self._emit(self.on_refreshed, provider, new_record)
            return True
        finally:
            self._in_flight.discard(provider)
            self._status.is_refreshing = bool(self._in_flight)
            self._save_status()

    def is_near_expiry(self, provider: ProviderId | str, window: float | None = None) -> bool:
        """Whether the provider's token is valid but expires within ``window``."""
        record = self.store.get(provider)
        return self.store.is_near_expiry(
            record, self.refresh_window if window is None else window
        )

    def _save_status(self) -> None:
        try:
            self.store.save_refresh_status(self._status)
        except Exception:
            logger.exception("Could not persist refresh status")

    @staticmethod
    def _emit(callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Token refresh callback failed")
