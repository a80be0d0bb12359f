"""Popup authorization channel.

Opens a provider's authorization page in a second browsing context and
waits for its outcome. The wait settles exactly once, on whichever comes
first:

- a result message posted from the opener's own origin,
- the popup being closed by the user (``AuthFlowCancelled``),
- the timeout elapsing (``AuthFlowTimeout``; the popup is force-closed).

Every exit path unsubscribes the message listener, cancels the
closed-check task and the timeout timer, and closes the popup if it is
still open.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import threading

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..exceptions import AuthFlowCancelled, AuthFlowTimeout, PopupBlockedError
from ..types import PopupResult


if TYPE_CHECKING:
    from collections.abc import Callable

    MessageListener = Callable[[str, Any], None]


logger = logging.getLogger("sdxauth.auth")

OAUTH_RESULT = "OAUTH_RESULT"
ORCID_AUTH_SUCCESS = "ORCID_AUTH_SUCCESS"
ORCID_AUTH_ERROR = "ORCID_AUTH_ERROR"

_DEFAULT_FEATURES = "scrollbars=yes,resizable=yes,status=yes,location=yes,toolbar=no,menubar=no"


class MessageBus:
    """Cross-context message delivery for one browsing context.

    Listeners receive ``(origin, data)`` for every posted message.
    Posting is safe from any thread.
    """

    def __init__(self) -> None:
        """Initialize an empty bus."""
        self._listeners: list[MessageListener] = []
        self._lock = threading.Lock()

    @property
    def listener_count(self) -> int:
        """Number of subscribed listeners."""
        with self._lock:
            return len(self._listeners)

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        """Register ``listener`` and return a function that removes it."""
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: MessageListener) -> None:
        """Remove ``listener``; removing an unknown listener is a no-op."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def post(self, origin: str, data: Any) -> None:
        """Deliver a message to every current listener."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(origin, data)


@dataclass(frozen=True)
class Screen:
    """Geometry of the screen hosting the opener."""

    width: int = 1280
    height: int = 800
    left: int = 0
    top: int = 0


@dataclass(frozen=True)
class PopupSizing:
    """Size of the authorization popup.

    Attributes
    ----------
    width : int
        Popup width in pixels.
    height : int
        Popup height in pixels.
    base_features : str
        Window features added before the geometry.
    """

    width: int = 600
    height: int = 700
    base_features: str = _DEFAULT_FEATURES

    def features(self, screen: Screen) -> str:
        """Build the window feature string, centred on ``screen``."""
        left = max(0, (screen.width - self.width) // 2 + screen.left)
        top = max(0, (screen.height - self.height) // 2 + screen.top)
        return f"{self.base_features},width={self.width},height={self.height},left={left},top={top}"


class PopupWindow(ABC):
    """Handle to an opened popup."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether the popup has been closed."""

    @abstractmethod
    def close(self) -> None:
        """Close the popup."""

    @abstractmethod
    def focus(self) -> None:
        """Bring the popup to the front."""


class BrowsingContext(ABC):
    """The opener side of a popup flow.

    Subclasses provide the origin, screen geometry and window opening;
    the callback page delivers results through :attr:`messages`.
    """

    def __init__(self) -> None:
        """Initialize the context with its own message bus."""
        self.messages = MessageBus()

    @property
    @abstractmethod
    def origin(self) -> str:
        """Origin that result messages must come from."""

    @property
    def redirect_uri(self) -> str | None:
        """Callback page of this context, if it hosts one."""
        return None

    @property
    def screen(self) -> Screen:
        """Geometry used to centre popups."""
        return Screen()

    @abstractmethod
    def open_window(self, url: str, name: str, features: str) -> PopupWindow | None:
        """Open ``url`` in a new window.

        Returns
        -------
        PopupWindow or None
            The opened window, or None if opening was blocked.
        """


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_popup_message(data: Any) -> PopupResult | None:
    """Interpret a message posted by the callback page.

    Parameters
    ----------
    data : Any
        The posted message.

    Returns
    -------
    PopupResult or None
        The popup outcome, or None if the message is not a result.
    """
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    if kind == OAUTH_RESULT:
        result = data.get("result")
        if not isinstance(result, dict):
            result = data
        return PopupResult(
            code=_text(result.get("code")),
            state=_text(result.get("state")),
            error=_text(result.get("error")),
            error_description=_text(
                result.get("error_description") or result.get("errorDescription")
            ),
        )
    if kind == ORCID_AUTH_SUCCESS:
        return PopupResult(code=_text(data.get("code")), state=_text(data.get("state")))
    if kind == ORCID_AUTH_ERROR:
        return PopupResult(
            error=_text(data.get("error")) or "unknown_error",
            error_description=_text(data.get("errorDescription")),
        )
    return None


class PopupChannel:
    """Single-use popup waits over a browsing context.

    Parameters
    ----------
    context : BrowsingContext
        The opener.
    timeout : float
        Seconds to wait for a result before giving up (default 300).
    closed_check_interval : float
        Seconds between checks for a user-closed popup (default 1).
    """

    def __init__(
        self,
        context: BrowsingContext,
        timeout: float = 300.0,
        closed_check_interval: float = 1.0,
    ) -> None:
        """Initialize the popup channel."""
        self.context = context
        self.timeout = timeout
        self.closed_check_interval = closed_check_interval

    async def open(
        self,
        url: str,
        sizing: PopupSizing | None = None,
        name: str = "oauth_popup",
    ) -> PopupResult:
        """Open ``url`` in a popup and wait for its outcome.

        Parameters
        ----------
        url : str
            The authorization URL.
        sizing : PopupSizing, optional
            Popup geometry (default 600x700).
        name : str
            Window name passed to the context.

        Returns
        -------
        PopupResult
            The code/state pair, or the error reported by the provider.

        Raises
        ------
        PopupBlockedError
            If the popup could not be opened.
        AuthFlowCancelled
            If the user closed the popup first.
        AuthFlowTimeout
            If no result arrived in time.
        """
        sizing = sizing or PopupSizing()
        window = self.context.open_window(url, name, sizing.features(self.context.screen))
        if window is None:
            msg = "Popup blocked. Please allow popups for this site and try again."
            raise PopupBlockedError(msg)
        window.focus()

        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[PopupResult] = loop.create_future()
        expected_origin = self.context.origin

        def settle(result: PopupResult | None = None, error: Exception | None = None) -> None:
            if outcome.done():
                return
            if error is not None:
                outcome.set_exception(error)
            else:
                outcome.set_result(result)  # type: ignore[arg-type]

        def on_message(origin: str, data: Any) -> None:
            if origin != expected_origin:
                logger.warning("Ignoring popup message from untrusted origin %s", origin)
                return
            result = parse_popup_message(data)
            if result is None:
                return
            logger.debug("Popup result received (error=%s)", result.error)
            loop.call_soon_threadsafe(settle, result)

        async def watch_closed() -> None:
            while not outcome.done():
                await asyncio.sleep(self.closed_check_interval)
                if window.closed:
                    settle(error=AuthFlowCancelled("Authentication cancelled by user"))
                    return

        unsubscribe = self.context.messages.subscribe(on_message)
        timer = loop.call_later(
            self.timeout,
            lambda: settle(
                error=AuthFlowTimeout(
                    "Authentication timeout - please try again", timeout=self.timeout
                )
            ),
        )
        watcher = asyncio.create_task(watch_closed())
        try:
            return await outcome
        finally:
            unsubscribe()
            timer.cancel()
            watcher.cancel()
            if not window.closed:
                window.close()
