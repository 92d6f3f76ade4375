"""Unit tests for provider-token JWT envelopes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from gitops.server.auth.tokens import InvalidSignatureError, MalformedTokenError, TokenExpiredError
from gitops.services.auth.jwt import JWTClient
from gitops.services.auth.providers import GitProviderName

SECRET = "a-long-shared-secret-key-of-at-least-32-bytes"
ISSUED_AT = datetime(2024, 1, 1, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.mark.unit
class TestJWTClient:
    def test_round_trip_preserves_provider_and_token(self) -> None:
        client = JWTClient(SECRET, clock=_Clock(ISSUED_AT))
        token = client.generate_jwt(timedelta(minutes=5), GitProviderName.GITLAB, "glpat-123")

        claims = client.verify_jwt(token)

        assert claims.provider is GitProviderName.GITLAB
        assert claims.provider_token == "glpat-123"
        assert claims.expires_at == ISSUED_AT + timedelta(minutes=5)

    def test_expired_token_rejected(self) -> None:
        clock = _Clock(ISSUED_AT)
        client = JWTClient(SECRET, clock=clock)
        token = client.generate_jwt(timedelta(minutes=5), "github", "gho_x")

        clock.now = ISSUED_AT + timedelta(minutes=5, seconds=1)

        with pytest.raises(TokenExpiredError):
            client.verify_jwt(token)

    def test_other_key_rejected(self) -> None:
        token = JWTClient(SECRET, clock=_Clock(ISSUED_AT)).generate_jwt(
            timedelta(minutes=5), "github", "gho_x"
        )
        other = JWTClient("another-shared-secret-key-at-least-32-bytes", clock=_Clock(ISSUED_AT))

        with pytest.raises(InvalidSignatureError):
            other.verify_jwt(token)

    def test_garbage_rejected(self) -> None:
        with pytest.raises(MalformedTokenError):
            JWTClient(SECRET).verify_jwt("not-a-jwt")

    def test_unknown_provider_rejected_on_generate(self) -> None:
        with pytest.raises(ValueError):
            JWTClient(SECRET).generate_jwt(timedelta(minutes=5), "bitbucket", "x")

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            JWTClient("")
