"""Token handoff to the SDX backend.

Posts a provider token to the backend's handoff endpoint so the backend
can establish its own session for the user.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

import httpx

from .auth.jwt_claims import claims_hint, decode_claims
from .exceptions import NetworkError, TokenError
from .log import redact_sensitive_data


if TYPE_CHECKING:
    from .config import BackendSettings
    from .types import TokenRecord


logger = logging.getLogger("sdxauth.backend")


class BackendClient:
    """Client for the backend token handoff endpoint.

    Parameters
    ----------
    settings : BackendSettings
        Environment, base URLs and handoff path.
    http_client : httpx.AsyncClient, optional
        Client used for requests. One is created on first use if omitted,
        and closed by :meth:`close`.
    """

    def __init__(
        self,
        settings: BackendSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the backend client."""
        self.settings = settings
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def url(self) -> str:
        """Full URL of the handoff endpoint."""
        return f"{self.settings.base_url.rstrip('/')}{self.settings.token_handoff_path}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.settings.timeout_seconds)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def build_payload(self, record: TokenRecord) -> dict[str, Any]:
        """Build the handoff body for ``record``.

        Placeholder tokens are marked with ``"placeholder": true`` so the
        backend can reject them.
        """
        payload: dict[str, Any] = {
            "provider": record.provider.value,
            "environment": self.settings.environment,
            "id_token": record.id_token,
            "expires_in": record.expires_in,
            "issued_at": record.issued_at,
            "token_format": "jwt",
            "claims_hint": claims_hint(decode_claims(record.id_token)),
        }
        if record.refresh_token:
            payload["refresh_token"] = record.refresh_token
        if record.placeholder:
            payload["placeholder"] = True
        return payload

    def build_headers(self, record: TokenRecord) -> dict[str, str]:
        """Build the handoff request headers for ``record``."""
        return {
            "Content-Type": "application/json",
            "X-Env": self.settings.environment,
            "X-Provider": record.provider.value,
            "Authorization": f"Bearer {record.id_token}",
        }

    async def send_token(self, record: TokenRecord) -> dict[str, Any]:
        """Hand ``record`` to the backend.

        Parameters
        ----------
        record : TokenRecord
            The token to send.

        Returns
        -------
        dict
            The backend's JSON response (empty if it sent none).

        Raises
        ------
        TokenError
            If the backend answers with a non-2xx status.
        NetworkError
            If the request could not be completed.
        """
        payload = self.build_payload(record)
        logger.debug("Token handoff to %s: %s", self.url, redact_sensitive_data(payload))

        client = await self._get_client()
        try:
            resp = await client.post(self.url, json=payload, headers=self.build_headers(record))
        except httpx.HTTPError as exc:
            msg = f"Token handoff request failed: {exc}"
            raise NetworkError(msg, provider=record.provider.value) from exc

        if not resp.is_success:
            msg = f"Backend rejected the token: {resp.status_code}"
            raise TokenError(
                msg,
                provider=record.provider.value,
                status_code=resp.status_code,
                detail=resp.text[:200] or None,
            )

        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"data": body}
