"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json
import os

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from sdxauth.auth.jwt_claims import encode_unsigned
from sdxauth.auth.popup import OAUTH_RESULT, BrowsingContext, PopupChannel, PopupWindow
from sdxauth.auth.token_store import MemoryTokenStore, reset_token_store
from sdxauth.config import clear_settings
from sdxauth.types import ProviderId, TokenRecord


NOW = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeServer:
    """Scripted HTTP peer for an ``httpx.MockTransport``.

    Each request consumes the next scripted item: an ``httpx.Response``,
    an exception to raise, or a callable building a response from the
    request.
    """

    def __init__(self, *script: Any) -> None:
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            msg = f"Unexpected request: {request.method} {request.url}"
            raise AssertionError(msg)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def form(self, index: int = -1) -> dict[str, str]:
        """Form body of a recorded request."""
        body = self.requests[index].content.decode("utf-8")
        return {k: v[0] for k, v in parse_qs(body).items()}

    def json(self, index: int = -1) -> Any:
        """JSON body of a recorded request."""
        return json.loads(self.requests[index].content)


def make_jwt(claims: dict[str, Any]) -> str:
    """Build a three-segment token with the given claims."""
    return encode_unsigned(claims, header={"alg": "RS256", "typ": "JWT"}, signature="sig")


POPUP_ORIGIN = "https://sdx.example.org"


class _StaticWindow(PopupWindow):
    def __init__(self) -> None:
        self.is_closed = False

    @property
    def closed(self) -> bool:
        return self.is_closed

    def close(self) -> None:
        self.is_closed = True

    def focus(self) -> None:
        return None


class ScriptedPopupContext(BrowsingContext):
    """Opener that answers each authorization URL with a scripted message.

    ``respond`` receives the query parameters of the opened URL and
    returns the message the callback page would post (or None to post
    nothing).
    """

    def __init__(self, respond: Callable[[dict[str, str]], Any]) -> None:
        super().__init__()
        self.respond = respond
        self.opened: list[str] = []

    @property
    def origin(self) -> str:
        return POPUP_ORIGIN

    @property
    def redirect_uri(self) -> str | None:
        return f"{POPUP_ORIGIN}/callback"

    def open_window(self, url: str, name: str, features: str) -> PopupWindow | None:
        self.opened.append(url)
        params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        data = self.respond(params)
        if data is not None:
            asyncio.get_running_loop().call_soon(self.messages.post, self.origin, data)
        return _StaticWindow()

    @property
    def last_params(self) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlparse(self.opened[-1]).query).items()}


def approve(code: str = "auth-code-12345") -> Callable[[dict[str, str]], Any]:
    """Popup response echoing the state with an authorization code."""
    return lambda params: {
        "type": OAUTH_RESULT,
        "result": {"code": code, "state": params.get("state")},
    }


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> Any:
    """Isolate tests from user configuration and cached singletons."""
    for key in [k for k in os.environ if k.startswith("SDXAUTH_")]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    reset_token_store()
    yield
    clear_settings()
    reset_token_store()


@pytest.fixture()
def clock() -> FakeClock:
    """A fake clock starting at NOW."""
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> MemoryTokenStore:
    """An in-memory token store on the fake clock."""
    return MemoryTokenStore(clock=clock)


@pytest.fixture()
def server_factory() -> Callable[..., FakeServer]:
    """Build scripted HTTP peers."""
    return FakeServer


@pytest.fixture()
def record_factory(clock: FakeClock) -> Callable[..., TokenRecord]:
    """Build token records relative to the fake clock."""

    def factory(
        provider: ProviderId = ProviderId.CILOGON,
        remaining: float = 3600,
        expires_in: int = 3600,
        refresh_token: str | None = "rt-old",
        id_token: str | None = None,
        placeholder: bool = False,
    ) -> TokenRecord:
        issued_at = int(clock() + remaining - expires_in)
        return TokenRecord(
            id_token=id_token or make_jwt({"sub": f"{provider.value}-user", "iss": "test"}),
            refresh_token=refresh_token,
            expires_in=expires_in,
            issued_at=issued_at,
            provider=provider,
            placeholder=placeholder,
        )

    return factory


@pytest.fixture()
def jwt_factory() -> Callable[[dict[str, Any]], str]:
    """Build unsigned three-segment tokens."""
    return make_jwt


@pytest.fixture()
def popup_factory() -> Callable[..., PopupChannel]:
    """Build popup channels over a scripted browsing context."""

    def factory(respond: Callable[[dict[str, str]], Any], timeout: float = 5) -> PopupChannel:
        return PopupChannel(ScriptedPopupContext(respond), timeout=timeout, closed_check_interval=0.01)

    return factory
