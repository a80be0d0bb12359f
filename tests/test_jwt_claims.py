"""Unit tests for JWT claim inspection and PKCE helpers."""

from __future__ import annotations

import base64
import hashlib

import pytest

from sdxauth.auth.jwt_claims import claims_hint, decode_claims, encode_unsigned
from sdxauth.auth.pkce import PKCEChallenge, generate_state


class TestDecodeClaims:
    """Tests for decode_claims."""

    def test_round_trip(self) -> None:
        """Claims of an encoded token decode back unchanged."""
        token = encode_unsigned({"sub": "u1", "exp": 123})
        assert decode_claims(token) == {"sub": "u1", "exp": 123}

    def test_ignores_signature(self) -> None:
        """The signature segment is never checked."""
        token = encode_unsigned({"sub": "u1"}, signature="definitely-not-valid")
        assert decode_claims(token) == {"sub": "u1"}

    def test_unpadded_payload(self) -> None:
        """Payloads without base64 padding decode."""
        payload = base64.urlsafe_b64encode(b'{"a":1}').rstrip(b"=").decode()
        assert decode_claims(f"h.{payload}.s") == {"a": 1}

    def test_unicode_claims(self) -> None:
        """Non-ASCII claim values survive."""
        token = encode_unsigned({"name": "Zoë Ångström"})
        claims = decode_claims(token)
        assert claims is not None
        assert claims["name"] == "Zoë Ångström"

    @pytest.mark.parametrize(
        "token",
        [
            "header.payload",
            "a.b.c.d",
            "",
            "..",
            "h.!!!not-base64!!!.s",
            "h." + base64.urlsafe_b64encode(b"not json").decode() + ".s",
            "h." + base64.urlsafe_b64encode(b"[1, 2]").decode() + ".s",
            "h." + base64.urlsafe_b64encode(b"\xff\xfe").decode() + ".s",
            "h.ñ.s",
        ],
    )
    def test_malformed_returns_none(self, token: str) -> None:
        """Anything but a JSON-object payload yields None."""
        assert decode_claims(token) is None

    def test_non_string(self) -> None:
        """Non-string input yields None."""
        assert decode_claims(None) is None
        assert decode_claims(42) is None  # type: ignore[arg-type]


class TestEncodeUnsigned:
    """Tests for encode_unsigned."""

    def test_default_header(self) -> None:
        """The default header declares alg none."""
        token = encode_unsigned({"sub": "x"})
        header = token.split(".")[0]
        padded = header + "=" * (-len(header) % 4)
        assert base64.urlsafe_b64decode(padded) == b'{"alg":"none","typ":"JWT"}'

    def test_signature_literal(self) -> None:
        """The third segment is the literal given."""
        assert encode_unsigned({}, signature="placeholder").endswith(".placeholder")

    def test_no_padding(self) -> None:
        """Segments never carry base64 padding."""
        assert "=" not in encode_unsigned({"sub": "ab"})


class TestClaimsHint:
    """Tests for claims_hint."""

    def test_picks_identity_claims(self) -> None:
        """Only the hint claims are forwarded."""
        hint = claims_hint({"sub": "u", "iss": "i", "exp": 5, "aud": "x", "email": "e@x"})
        assert hint == {"sub": "u", "iss": "i", "exp": 5, "email": "e@x", "name": None}

    def test_none_claims(self) -> None:
        """Undecodable tokens give an all-None hint."""
        assert set(claims_hint(None).values()) == {None}


class TestPKCE:
    """Tests for PKCE challenge generation."""

    def test_challenge_matches_verifier(self) -> None:
        """The challenge is the unpadded S256 hash of the verifier."""
        pkce = PKCEChallenge.generate()
        digest = hashlib.sha256(pkce.verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert pkce.challenge == expected
        assert pkce.method == "S256"

    def test_rfc7636_vector(self) -> None:
        """Appendix B example of RFC 7636."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert PKCEChallenge.derive(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_verifier_length(self) -> None:
        """Verifiers fall within the 43..128 character range."""
        pkce = PKCEChallenge.generate()
        assert 43 <= len(pkce.verifier) <= 128

    def test_from_verifier(self) -> None:
        """A known verifier rebuilds the same pair."""
        pkce = PKCEChallenge.generate()
        assert PKCEChallenge.from_verifier(pkce.verifier) == pkce
        assert pkce.authorize_params() == {
            "code_challenge": pkce.challenge,
            "code_challenge_method": "S256",
        }

    @pytest.mark.parametrize("length", [42, 129])
    def test_verifier_length_checked(self, length: int) -> None:
        """Verifiers outside the RFC range are rejected."""
        with pytest.raises(ValueError, match="PKCE verifier"):
            PKCEChallenge.from_verifier("a" * length)

    def test_unique(self) -> None:
        """Each call produces a new verifier."""
        assert PKCEChallenge.generate().verifier != PKCEChallenge.generate().verifier

    def test_generate_state(self) -> None:
        """State values are URL-safe and unique."""
        first, second = generate_state(), generate_state()
        assert first != second
        assert all(c.isalnum() or c in "-_" for c in first)
