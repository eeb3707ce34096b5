"""Unit tests for auth/tokens.py -- access-token issuance and verification.

Covers:
- issued claims (sub, email, roles, permissions, iat, exp, jti, iss, aud)
- expiry boundary with zero leeway against the injected clock
- tampered, foreign-key, wrong-audience, wrong-issuer, alg=none tokens
- refresh-token values: opaque and high-entropy
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import TokenIssuer

SECRET = "s" * 48


@pytest.fixture
def token_issuer(clock) -> TokenIssuer:
    return TokenIssuer(
        SECRET,
        timedelta(minutes=15),
        issuer="volcanion-auth",
        audience="volcanion-admin",
        clock=clock,
    )


class TestIssueAccessToken:
    def test_claims(self, token_issuer: TokenIssuer, clock) -> None:
        token, expires_at = token_issuer.issue_access_token("u1", "a@x.com", ["User"], ["users.read"])
        claims = token_issuer.decode(token)
        assert claims is not None
        assert claims["sub"] == "u1"
        assert claims["email"] == "a@x.com"
        assert claims["roles"] == ["User"]
        assert claims["permissions"] == ["users.read"]
        assert claims["iss"] == "volcanion-auth"
        assert claims["aud"] == "volcanion-admin"
        assert claims["jti"]
        assert expires_at == clock.now() + timedelta(minutes=15)
        assert claims["exp"] == int(expires_at.timestamp())

    def test_each_token_has_unique_jti(self, token_issuer: TokenIssuer) -> None:
        first, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        second, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        assert token_issuer.decode(first)["jti"] != token_issuer.decode(second)["jti"]

    def test_empty_claims_are_lists(self, token_issuer: TokenIssuer) -> None:
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", (), ())
        claims = token_issuer.decode(token)
        assert claims["roles"] == []
        assert claims["permissions"] == []

    def test_constructor_rejects_bad_config(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer("", timedelta(minutes=5))
        with pytest.raises(ValueError):
            TokenIssuer(SECRET, timedelta(0))


class TestExpiry:
    """Expiry is checked against the injected clock with no leeway."""

    def test_valid_until_the_last_second(self, token_issuer: TokenIssuer, clock) -> None:
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        clock.advance(minutes=14, seconds=59)
        assert token_issuer.validate(token)

    def test_invalid_at_expiry(self, token_issuer: TokenIssuer, clock) -> None:
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        clock.advance(minutes=15)
        assert not token_issuer.validate(token)
        assert token_issuer.decode(token) is None

    def test_wall_clock_is_not_consulted(self, token_issuer: TokenIssuer, clock) -> None:
        """A token minted at a past instant stays valid while the injected clock says so."""
        clock.set(datetime(2020, 3, 1, 9, 0, tzinfo=timezone.utc))
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", ["User"], [])
        clock.advance(minutes=1)
        assert token_issuer.validate(token)
        assert token_issuer.decode(token)["roles"] == ["User"]

    def test_future_clock_expires_a_fresh_token(self, token_issuer: TokenIssuer, clock) -> None:
        clock.set(datetime(2100, 1, 1, tzinfo=timezone.utc))
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        assert token_issuer.validate(token)
        clock.advance(minutes=15)
        assert not token_issuer.validate(token)


class TestRejection:
    """Every kind of bad token decodes to None -- same outcome, no reason."""

    def test_garbage(self, token_issuer: TokenIssuer) -> None:
        assert token_issuer.decode("not-a-jwt") is None
        assert token_issuer.decode("") is None
        assert token_issuer.decode(None) is None  # type: ignore[arg-type]

    def test_tampered_signature(self, token_issuer: TokenIssuer) -> None:
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        head, body, sig = token.split(".")
        flipped = sig[:-2] + ("AA" if sig[-2:] != "AA" else "BB")
        assert token_issuer.decode(f"{head}.{body}.{flipped}") is None

    def test_signed_with_another_key(self, token_issuer: TokenIssuer, clock) -> None:
        other = TokenIssuer("x" * 48, timedelta(minutes=15), "volcanion-auth", "volcanion-admin", clock=clock)
        token, _ = other.issue_access_token("u1", "a@x.com", [], [])
        assert token_issuer.decode(token) is None

    def test_wrong_audience(self, token_issuer: TokenIssuer, clock) -> None:
        other = TokenIssuer(SECRET, timedelta(minutes=15), "volcanion-auth", "someone-else", clock=clock)
        token, _ = other.issue_access_token("u1", "a@x.com", [], [])
        assert token_issuer.decode(token) is None

    def test_wrong_issuer(self, token_issuer: TokenIssuer, clock) -> None:
        other = TokenIssuer(SECRET, timedelta(minutes=15), "impostor", "volcanion-admin", clock=clock)
        token, _ = other.issue_access_token("u1", "a@x.com", [], [])
        assert token_issuer.decode(token) is None

    def test_missing_role_claims(self, token_issuer: TokenIssuer, clock) -> None:
        now = int(clock.now().timestamp())
        token = jwt.encode(
            {"sub": "u1", "iat": now, "exp": now + 60, "iss": "volcanion-auth", "aud": "volcanion-admin"},
            SECRET,
            algorithm="HS256",
        )
        assert token_issuer.decode(token) is None

    @pytest.mark.parametrize("dropped", ["exp", "iat"])
    def test_missing_time_claims(self, token_issuer: TokenIssuer, clock, dropped: str) -> None:
        now = int(clock.now().timestamp())
        payload = {
            "sub": "u1",
            "roles": [],
            "permissions": [],
            "iat": now,
            "exp": now + 60,
            "iss": "volcanion-auth",
            "aud": "volcanion-admin",
        }
        del payload[dropped]
        assert token_issuer.decode(jwt.encode(payload, SECRET, algorithm="HS256")) is None

    def test_unsigned_token(self, token_issuer: TokenIssuer, clock) -> None:
        token, _ = token_issuer.issue_access_token("u1", "a@x.com", [], [])
        _, body, _ = token.split(".")
        # {"alg":"none","typ":"JWT"}
        unsigned = f"eyJhbGciOiJub25lIiwidHlwIjoiSldUIn0.{body}."
        assert token_issuer.decode(unsigned) is None


class TestRefreshTokenValue:
    def test_opaque_and_unique(self) -> None:
        values = {TokenIssuer.issue_refresh_token() for _ in range(50)}
        assert len(values) == 50
        for value in values:
            assert len(value) >= 64
            assert value.count(".") != 2  # not a JWT
