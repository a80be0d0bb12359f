"""PKCE and ``state`` helpers for the authorization-code flows.

ORCID runs as a public client, so every popup login carries an S256
challenge (RFC 7636) and an unguessable ``state`` that the callback must
echo back.
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


# RFC 7636 section 4.1
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128


def generate_state(length: int = 32) -> str:
    """Return a URL-safe random ``state`` value of ``length`` bytes."""
    return secrets.token_urlsafe(length)


def s256(verifier: str) -> str:
    """Compute the unpadded base64url SHA-256 challenge of ``verifier``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """Code verifier kept by the client and the challenge sent with it.

    Attributes
    ----------
    verifier : str
        Secret sent only with the code exchange.
    challenge : str
        ``s256(verifier)``, sent on the authorize URL.
    method : str
        Always "S256"; the plain method is never offered.
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 32) -> PKCEChallenge:
        """Create a fresh pair from ``length`` random bytes.

        32 bytes encode to a 43 character verifier, the RFC minimum.
        """
        return cls.from_verifier(secrets.token_urlsafe(length))

    @classmethod
    def from_verifier(cls, verifier: str) -> PKCEChallenge:
        """Rebuild the pair for a known verifier.

        Raises
        ------
        ValueError
            If the verifier length is outside 43..128 characters.
        """
        if not VERIFIER_MIN_LENGTH <= len(verifier) <= VERIFIER_MAX_LENGTH:
            msg = (
                f"PKCE verifier must be {VERIFIER_MIN_LENGTH}-{VERIFIER_MAX_LENGTH} "
                f"characters, got {len(verifier)}"
            )
            raise ValueError(msg)
        return cls(verifier=verifier, challenge=s256(verifier))

    @staticmethod
    def derive(verifier: str) -> str:
        """Compute the S256 challenge for ``verifier``."""
        return s256(verifier)

    def authorize_params(self) -> dict[str, str]:
        """Query parameters announcing the challenge."""
        return {"code_challenge": self.challenge, "code_challenge_method": self.method}
