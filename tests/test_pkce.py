"""Unit tests for PKCE code verifiers."""

from __future__ import annotations

import pytest

from gitops.services.auth.pkce import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    UNRESERVED_CHARACTERS,
    CodeVerifier,
    InvalidRangeError,
    derive_code_challenge,
)


@pytest.mark.unit
class TestDeriveCodeChallenge:
    def test_rfc7636_appendix_b_vector(self) -> None:
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert derive_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_challenge_is_unpadded_base64url(self) -> None:
        challenge = derive_code_challenge("a" * 43)
        assert len(challenge) == 43
        assert "=" not in challenge
        assert "+" not in challenge
        assert "/" not in challenge


@pytest.mark.unit
class TestCodeVerifierNew:
    def test_length_within_default_bounds(self) -> None:
        for _ in range(20):
            verifier = CodeVerifier.new()
            assert MIN_VERIFIER_LENGTH <= len(verifier.raw_value) <= MAX_VERIFIER_LENGTH

    def test_fixed_length(self) -> None:
        assert len(CodeVerifier.new(64, 64).raw_value) == 64

    def test_only_unreserved_characters(self) -> None:
        verifier = CodeVerifier.new(128, 128)
        assert set(verifier.raw_value) <= set(UNRESERVED_CHARACTERS)

    def test_verifiers_are_unique(self) -> None:
        values = {CodeVerifier.new().raw_value for _ in range(50)}
        assert len(values) == 50

    def test_inverted_bounds_rejected(self) -> None:
        with pytest.raises(InvalidRangeError):
            CodeVerifier.new(100, 50)

    @pytest.mark.parametrize(("low", "high"), [(42, 60), (43, 129), (0, 10)])
    def test_bounds_outside_rfc_range_rejected(self, low: int, high: int) -> None:
        with pytest.raises(InvalidRangeError):
            CodeVerifier.new(low, high)


@pytest.mark.unit
class TestCodeVerifier:
    def test_code_challenge_matches_derivation(self) -> None:
        verifier = CodeVerifier.new()
        assert verifier.code_challenge() == derive_code_challenge(verifier.raw_value)

    def test_too_short_rejected(self) -> None:
        with pytest.raises(InvalidRangeError):
            CodeVerifier("short")

    def test_reserved_character_rejected(self) -> None:
        with pytest.raises(ValueError, match="unreserved"):
            CodeVerifier("!" * 43)

    def test_repr_hides_value(self) -> None:
        verifier = CodeVerifier("x" * 50)
        assert "x" * 50 not in repr(verifier)
        assert repr(verifier) == "CodeVerifier(length=50)"
