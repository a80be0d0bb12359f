"""Ephemeral localhost HTTP server acting as the popup callback page.

Used from desktop and CLI sessions, where the "popup" is a tab in the
system browser. The provider redirects to ``/callback`` on a randomly
assigned port; the handler serves a success/error HTML page and posts
an ``OAUTH_RESULT`` message with the code and state onto the opener's
message bus.

Uses only stdlib (http.server, threading, urllib.parse, webbrowser).
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103

from __future__ import annotations

import html
import logging
import threading
import webbrowser

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from .popup import OAUTH_RESULT, BrowsingContext, PopupWindow


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("sdxauth.auth")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f4f6fa; color: #14213d; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.4rem; margin-bottom: 0.5rem; }
  h1.error { color: #b00020; }
  p { color: #5c6370; }
"""

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>{title}</title><style>{style}</style></head>
<body><div class="card">
  <h1 class="{css_class}">{heading}</h1>
  <p>{detail}</p>
</div></body></html>"""


def _render_page(title: str, heading: str, detail: str, *, error: bool = False) -> str:
    return _PAGE_TEMPLATE.format(
        title=title,
        style=_PAGE_STYLE,
        css_class="error" if error else "",
        heading=heading,
        detail=html.escape(detail, quote=True),
    )


class OAuthCallbackServer:
    """Ephemeral localhost HTTP server for capturing OAuth2 redirects.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    on_callback : callable, optional
        Called with the callback parameters (``code``, ``state``,
        ``error``, ``error_description``) from the server thread.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        on_callback: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        """Initialize the callback server."""
        self._host = host
        self._port = port
        self._on_callback = on_callback
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._actual_port: int = 0

    @property
    def origin(self) -> str:
        """Origin of pages served by this server."""
        return f"http://{self._host}:{self._actual_port}"

    @property
    def redirect_uri(self) -> str:
        """Get the redirect URI for this callback server.

        Returns
        -------
        str
            The full redirect URI (e.g. ``http://127.0.0.1:54321/callback``).
        """
        return f"{self.origin}/callback"

    @property
    def running(self) -> bool:
        """Whether the server is accepting requests."""
        return self._server is not None

    def start(self) -> str:
        """Start the callback server on a daemon thread.

        Returns
        -------
        str
            The redirect URI to use with the OAuth2 provider.
        """
        if self._server is not None:
            return self.redirect_uri

        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth2 callbacks."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path == "/callback":
                    params = parse_qs(parsed.query)
                    result: dict[str, Any] = {
                        "code": params.get("code", [None])[0],
                        "state": params.get("state", [None])[0],
                        "error": params.get("error", [None])[0],
                        "error_description": params.get("error_description", [None])[0],
                    }
                    if result["error"]:
                        detail = result["error_description"] or result["error"]
                        self._send_html(
                            _render_page(
                                "Authentication Error",
                                "Authentication Failed",
                                str(detail),
                                error=True,
                            )
                        )
                    else:
                        self._send_html(
                            _render_page(
                                "Authentication Complete",
                                "Authentication Complete",
                                "You can close this window and return to the application.",
                            )
                        )
                    if server_ref._on_callback is not None:
                        server_ref._on_callback(result)

                elif parsed.path == "/":
                    self._send_html(
                        _render_page(
                            "Waiting for Authentication",
                            "Waiting for authentication",
                            "Please complete the login in the browser window.",
                        )
                    )
                else:
                    self.send_error(404)

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the sdxauth logger."""
                if args:
                    logger.debug("OAuth callback server: %s", args[0] % args[1:])

        self._server = HTTPServer((self._host, self._port), _CallbackHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("OAuth callback server started on %s", self.redirect_uri)
        return self.redirect_uri

    def stop(self) -> None:
        """Shut down the callback server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None


class _BrowserTab(PopupWindow):
    """A page handed to the system browser.

    The browser does not report closure, and the page cannot be closed
    from here.
    """

    @property
    def closed(self) -> bool:
        return False

    def close(self) -> None:
        logger.debug("System browser tab left open; the user closes it")

    def focus(self) -> None:
        return None


class SystemBrowserContext(BrowsingContext):
    """Browsing context backed by the system browser and a callback server.

    Parameters
    ----------
    host : str
        Bind address of the callback server.
    port : int
        Callback server port (``0`` for auto-assign).
    opener : callable, optional
        Opens a URL and returns whether it succeeded
        (default ``webbrowser.open``).
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        opener: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the system browser context."""
        super().__init__()
        self._server = OAuthCallbackServer(host=host, port=port, on_callback=self._post_result)
        self._opener = opener or webbrowser.open

    def __enter__(self) -> SystemBrowserContext:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def origin(self) -> str:
        """Origin of the callback server."""
        return self._server.origin

    @property
    def redirect_uri(self) -> str | None:
        """Callback URL, once the server is running."""
        return self._server.redirect_uri if self._server.running else None

    def start(self) -> str:
        """Start the callback server and return the redirect URI."""
        return self._server.start()

    def close(self) -> None:
        """Stop the callback server."""
        self._server.stop()

    def open_window(self, url: str, name: str, features: str) -> PopupWindow | None:
        """Open ``url`` in the system browser."""
        logger.info("Opening the browser for sign-in: %s", url)
        if not self._opener(url):
            return None
        return _BrowserTab()

    def _post_result(self, result: dict[str, Any]) -> None:
        self.messages.post(self.origin, {"type": OAUTH_RESULT, "result": result})
