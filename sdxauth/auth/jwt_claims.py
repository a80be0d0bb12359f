"""Best-effort JWT payload inspection.

Reads the claims of a compact JWS without verifying its signature.
Tokens are received over the providers' TLS endpoints and treated as
opaque trusted strings; this module only looks inside them for display
and for the backend handoff hint.
"""

from __future__ import annotations

import binascii
import json

from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any

from ..types import Claims


_HINT_CLAIMS = ("sub", "iss", "exp", "email", "name")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return urlsafe_b64decode((segment + padding).encode("ascii"))


def _b64url_encode(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_claims(token: str | None) -> Claims | None:
    """Decode the payload segment of a compact token.

    Parameters
    ----------
    token : str or None
        A ``header.payload.signature`` string.

    Returns
    -------
    dict or None
        The payload claims, or None if the token is not a three-segment
        string with a base64url-encoded JSON object payload.
    """
    if not isinstance(token, str):
        return None
    segments = token.split(".")
    if len(segments) != 3 or not segments[1]:
        return None
    try:
        payload = _b64url_decode(segments[1])
        claims = json.loads(payload.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeError):
        # ValueError covers json.JSONDecodeError and non-ascii input
        return None
    if not isinstance(claims, dict):
        return None
    return claims


def encode_unsigned(
    claims: Claims,
    header: dict[str, Any] | None = None,
    signature: str = "unsigned",
) -> str:
    """Build an unsigned compact token carrying ``claims``.

    Used for client-side placeholder tokens. The result is never a valid
    signed JWT.

    Parameters
    ----------
    claims : dict
        Payload claims.
    header : dict, optional
        JOSE header (defaults to ``{"alg": "none", "typ": "JWT"}``).
    signature : str
        Literal third segment.

    Returns
    -------
    str
        The three-segment token string.
    """
    header = header or {"alg": "none", "typ": "JWT"}
    head = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    body = _b64url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    return f"{head}.{body}.{signature}"


def claims_hint(claims: Claims | None) -> dict[str, Any]:
    """Pick the identity claims forwarded to the backend.

    Parameters
    ----------
    claims : dict or None
        Decoded claims (None when the token could not be decoded).

    Returns
    -------
    dict
        ``sub``, ``iss``, ``exp``, ``email`` and ``name`` (None if absent).
    """
    claims = claims or {}
    return {key: claims.get(key) for key in _HINT_CLAIMS}
