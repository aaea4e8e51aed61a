"""Tests for PKCE and state generation."""

import base64
import hashlib
import re

import pytest

from granola_auth.oauth.pkce import (
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
)

BASE64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class TestGenerateCodeVerifier:
    """Tests for code verifier generation."""

    def test_default_length(self) -> None:
        """Test that 32 random bytes encode to 43 characters."""
        assert len(generate_code_verifier()) == 43

    def test_unreserved_characters_only(self) -> None:
        """Test that the verifier uses the URL-safe alphabet without padding."""
        verifier = generate_code_verifier()
        assert BASE64URL_PATTERN.match(verifier)
        assert "=" not in verifier

    def test_verifiers_are_unique(self) -> None:
        """Test that successive verifiers differ."""
        verifiers = {generate_code_verifier() for _ in range(50)}
        assert len(verifiers) == 50

    def test_larger_verifier(self) -> None:
        """Test that 96 bytes encode to exactly 128 characters."""
        assert len(generate_code_verifier(96)) == 128

    def test_too_few_bytes_rejected(self) -> None:
        """Test that fewer than 32 bytes raises ValueError."""
        with pytest.raises(ValueError, match="needs at least"):
            generate_code_verifier(16)

    def test_too_long_rejected(self) -> None:
        """Test that a verifier over 128 characters raises ValueError."""
        with pytest.raises(ValueError, match="must be at most"):
            generate_code_verifier(97)


class TestGenerateCodeChallenge:
    """Tests for S256 challenge derivation."""

    def test_rfc7636_appendix_b_vector(self) -> None:
        """Test the known-answer vector from RFC 7636 Appendix B."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_deterministic(self) -> None:
        """Test that the same verifier always yields the same challenge."""
        verifier = generate_code_verifier()
        assert generate_code_challenge(verifier) == generate_code_challenge(verifier)

    def test_matches_manual_computation(self) -> None:
        """Test the challenge equals unpadded base64url of the SHA-256 digest."""
        verifier = generate_code_verifier()
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
        assert generate_code_challenge(verifier) == expected
        assert len(expected) == 43


class TestGeneratePkcePair:
    """Tests for PKCE pair generation."""

    def test_pair_is_consistent(self) -> None:
        """Test that the challenge belongs to the verifier."""
        pair = generate_pkce_pair()
        assert isinstance(pair, PKCEPair)
        assert pair.method == "S256"
        assert pair.challenge == generate_code_challenge(pair.verifier)

    def test_pairs_are_unique(self) -> None:
        """Test that two pairs never share a verifier."""
        assert generate_pkce_pair().verifier != generate_pkce_pair().verifier


class TestGenerateState:
    """Tests for state generation."""

    def test_default_length(self) -> None:
        """Test that 16 random bytes encode to 22 characters."""
        state = generate_state()
        assert len(state) == 22
        assert BASE64URL_PATTERN.match(state)

    def test_states_are_unique(self) -> None:
        """Test that successive states differ."""
        assert len({generate_state() for _ in range(50)}) == 50

    def test_too_few_bytes_rejected(self) -> None:
        """Test that fewer than 16 bytes raises ValueError."""
        with pytest.raises(ValueError, match="at least 16"):
            generate_state(8)
