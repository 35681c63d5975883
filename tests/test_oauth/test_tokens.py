"""Tests for PKCE material and CSRF state generation."""

from __future__ import annotations

import re

import pytest

from deskoauth.exceptions import EntropyError
from deskoauth.oauth.tokens import (
    RandomTokenGenerator,
    derive_code_challenge,
    encode_urlsafe,
    generate_pkce,
    generate_state,
)

_URLSAFE = re.compile(r"^[A-Za-z0-9_-]+$")


class TestRandomTokenGenerator:
    def test_returns_requested_size(self) -> None:
        assert len(RandomTokenGenerator().generate(32)) == 32

    def test_values_differ(self) -> None:
        generator = RandomTokenGenerator()
        assert generator.generate(16) != generator.generate(16)

    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            RandomTokenGenerator().generate(0)

    def test_failing_source_raises_entropy_error(self) -> None:
        def broken(size: int) -> bytes:
            raise OSError("no entropy")

        with pytest.raises(EntropyError, match="no entropy"):
            RandomTokenGenerator(broken).generate(32)

    def test_short_read_raises_entropy_error(self) -> None:
        with pytest.raises(EntropyError, match="expected 32"):
            RandomTokenGenerator(lambda size: b"\x00" * (size - 1)).generate(32)


class TestEncoding:
    def test_no_padding(self) -> None:
        assert encode_urlsafe(b"\xff\xfe") == "__4"

    def test_rfc7636_appendix_b_vector(self) -> None:
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert derive_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestPkce:
    def test_verifier_is_43_urlsafe_chars(self) -> None:
        pkce = generate_pkce(RandomTokenGenerator())
        assert len(pkce.verifier) == 43
        assert _URLSAFE.match(pkce.verifier)

    def test_challenge_matches_verifier(self) -> None:
        pkce = generate_pkce(RandomTokenGenerator())
        assert pkce.challenge == derive_code_challenge(pkce.verifier)
        assert pkce.method == "S256"

    def test_repr_hides_verifier(self) -> None:
        pkce = generate_pkce(RandomTokenGenerator())
        assert pkce.verifier not in repr(pkce)

    def test_fresh_pair_per_call(self) -> None:
        generator = RandomTokenGenerator()
        assert generate_pkce(generator).verifier != generate_pkce(generator).verifier


class TestState:
    def test_state_is_16_bytes_urlsafe(self) -> None:
        state = generate_state(RandomTokenGenerator())
        assert len(state) == 22
        assert _URLSAFE.match(state)
