"""Unit tests for the localhost OAuth callback server."""

# pylint: disable=consider-using-with

from __future__ import annotations

import asyncio
import threading

from typing import Any
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import urlopen

import pytest

from sdxauth.auth.callback_server import OAuthCallbackServer, SystemBrowserContext
from sdxauth.auth.popup import OAUTH_RESULT, PopupChannel


pytestmark = pytest.mark.network


def _get(url: str) -> tuple[int, str, Any]:
    with urlopen(url, timeout=5) as response:  # noqa: S310
        return response.status, response.read().decode("utf-8"), response.headers


class TestOAuthCallbackServer:
    """Tests for OAuthCallbackServer."""

    def test_start_and_stop(self) -> None:
        """Server starts, binds to a port, and stops cleanly."""
        server = OAuthCallbackServer()
        redirect_uri = server.start()

        assert redirect_uri.startswith("http://127.0.0.1:")
        assert redirect_uri.endswith("/callback")
        assert server.running

        server.stop()
        assert not server.running

    def test_start_is_idempotent(self) -> None:
        """A second start() keeps the same port."""
        server = OAuthCallbackServer()
        try:
            assert server.start() == server.start()
        finally:
            server.stop()

    def test_callback_with_code(self) -> None:
        """Code and state are handed to on_callback."""
        received: list[dict[str, Any]] = []
        done = threading.Event()

        def on_callback(result: dict[str, Any]) -> None:
            received.append(result)
            done.set()

        server = OAuthCallbackServer(on_callback=on_callback)
        server.start()
        try:
            params = urlencode({"code": "test_code_123", "state": "test_state"})
            status, body, headers = _get(f"{server.redirect_uri}?{params}")
            assert status == 200
            assert "Authentication Complete" in body
            assert headers["Cache-Control"] == "no-store"
            assert done.wait(5)
        finally:
            server.stop()

        assert received == [
            {"code": "test_code_123", "state": "test_state", "error": None, "error_description": None}
        ]

    def test_callback_with_error(self) -> None:
        """Provider errors are rendered escaped and reported."""
        received: list[dict[str, Any]] = []
        done = threading.Event()

        def on_callback(result: dict[str, Any]) -> None:
            received.append(result)
            done.set()

        server = OAuthCallbackServer(on_callback=on_callback)
        server.start()
        try:
            params = urlencode({"error": "access_denied", "error_description": "<b>nope</b>"})
            _, body, _ = _get(f"{server.redirect_uri}?{params}")
            assert "Authentication Failed" in body
            assert "&lt;b&gt;nope&lt;/b&gt;" in body
            assert "<b>nope</b>" not in body
            assert done.wait(5)
        finally:
            server.stop()

        assert received[0]["error"] == "access_denied"
        assert received[0]["code"] is None

    def test_root_serves_waiting_page(self) -> None:
        """The root path shows a waiting page."""
        server = OAuthCallbackServer()
        server.start()
        try:
            _, body, _ = _get(server.origin + "/")
            assert "Waiting for authentication" in body
        finally:
            server.stop()

    def test_unknown_path_404(self) -> None:
        """Other paths return 404."""
        server = OAuthCallbackServer()
        server.start()
        try:
            with pytest.raises(HTTPError) as excinfo:
                _get(server.origin + "/favicon.ico")
            assert excinfo.value.code == 404
        finally:
            server.stop()


class TestSystemBrowserContext:
    """Tests for the system-browser popup context."""

    def test_redirect_uri_only_while_running(self) -> None:
        """The callback URL exists only while the server runs."""
        context = SystemBrowserContext(opener=lambda url: True)
        assert context.redirect_uri is None
        with context:
            assert context.redirect_uri is not None
            assert context.redirect_uri.startswith(context.origin)
        assert context.redirect_uri is None

    def test_blocked_opener(self) -> None:
        """A failed browser launch reads as a blocked popup."""
        context = SystemBrowserContext(opener=lambda url: False)
        assert context.open_window("https://idp", "oauth_popup", "") is None

    def test_posts_result_message(self) -> None:
        """Callbacks become OAUTH_RESULT messages from the server origin."""
        seen: list[tuple[str, Any]] = []
        done = threading.Event()

        def listener(origin: str, data: Any) -> None:
            seen.append((origin, data))
            done.set()

        with SystemBrowserContext(opener=lambda url: True) as context:
            context.messages.subscribe(listener)
            _get(f"{context.redirect_uri}?code=c1&state=s1")
            assert done.wait(5)
            origin = context.origin

        assert seen[0][0] == origin
        assert seen[0][1]["type"] == OAUTH_RESULT
        assert seen[0][1]["result"]["code"] == "c1"

    @pytest.mark.asyncio
    async def test_popup_channel_end_to_end(self) -> None:
        """A browser redirect settles a PopupChannel wait."""
        opened: list[str] = []

        def opener(url: str) -> bool:
            opened.append(url)
            return True

        with SystemBrowserContext(opener=opener) as context:
            channel = PopupChannel(context, timeout=10)
            task = asyncio.create_task(channel.open("https://idp/authorize"))
            await asyncio.sleep(0)
            await asyncio.to_thread(_get, f"{context.redirect_uri}?code=xyz&state=st")
            result = await task

        assert opened == ["https://idp/authorize"]
        assert result.code == "xyz"
        assert result.state == "st"
