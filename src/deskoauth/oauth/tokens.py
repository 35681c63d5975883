"""Security-critical random values: PKCE material and CSRF state.

Every authorization attempt gets exactly one :class:`~deskoauth.models.PkceMaterial`
and one CSRF state, both drawn from :class:`RandomTokenGenerator`. The
verifier and state use the URL-safe base64 alphabet without padding, and the
challenge is the S256 transform of the verifier (:rfc:`7636` section 4.2).
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Callable

from deskoauth.exceptions import EntropyError
from deskoauth.models import PkceMaterial

# 32 bytes encode to 43 characters, the RFC 7636 minimum verifier length.
VERIFIER_BYTES = 32
STATE_BYTES = 16


class RandomTokenGenerator:
    """Produces cryptographically strong random byte strings.

    Args:
        source: Callable returning ``n`` random bytes. Defaults to
            :func:`secrets.token_bytes`; tests may inject a failing source.
    """

    def __init__(self, source: Callable[[int], bytes] = secrets.token_bytes) -> None:
        self._source = source

    def generate(self, size: int) -> bytes:
        """Return *size* random bytes.

        Raises:
            EntropyError: If the random source fails or returns fewer bytes
                than requested. A weak or truncated token is never returned.
        """
        if size <= 0:
            raise ValueError("size must be positive")
        try:
            data = self._source(size)
        except (OSError, NotImplementedError) as exc:
            raise EntropyError(f"System random source unavailable: {exc}") from exc
        if len(data) != size:
            raise EntropyError(
                f"Random source returned {len(data)} bytes, expected {size}"
            )
        return data


def encode_urlsafe(data: bytes) -> str:
    """Base64url-encode *data* without ``=`` padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def derive_code_challenge(verifier: str) -> str:
    """Return the S256 code challenge for *verifier*."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return encode_urlsafe(digest)


def generate_pkce(generator: RandomTokenGenerator) -> PkceMaterial:
    """Generate a fresh verifier/challenge pair."""
    verifier = encode_urlsafe(generator.generate(VERIFIER_BYTES))
    return PkceMaterial(verifier=verifier, challenge=derive_code_challenge(verifier))


def generate_state(generator: RandomTokenGenerator) -> str:
    """Generate an opaque CSRF state value."""
    return encode_urlsafe(generator.generate(STATE_BYTES))
