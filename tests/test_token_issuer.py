"""Access token issuing and validation."""

import base64
import json

import pytest

from tasknest.config import AuthConfig
from tasknest.service.security import SecretsTokenSource
from tasknest.service.tokens import TokenIssuer
from tasknest.storage.models import Role

SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _unb64(segment: str) -> dict:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(AuthConfig(jwt_secret=SECRET), clock=clock)


class TestIssue:
    def test_claims_round_trip(self, issuer, clock):
        token = issuer.issue_access_token(7, "a@example.com", Role.ADMIN)

        claims = issuer.validate(token)

        assert claims.user_no == 7
        assert claims.email == "a@example.com"
        assert claims.role is Role.ADMIN
        assert claims.issued_at.timestamp() == int(clock.now)
        assert (claims.expires_at - claims.issued_at).total_seconds() == 30 * 60

    def test_payload_layout(self, issuer):
        token = issuer.issue_access_token(7, "a@example.com", Role.USER)
        header, payload, _ = token.split(".")

        assert _unb64(header) == {"alg": "HS256", "typ": "JWT"}
        decoded = _unb64(payload)
        assert decoded["sub"] == "a@example.com"
        assert decoded["userNo"] == 7
        assert decoded["role"] == "USER"
        assert decoded["exp"] - decoded["iat"] == 1800

    def test_custom_lifetime(self, clock):
        issuer = TokenIssuer(
            AuthConfig(jwt_secret=SECRET, access_token_ttl_minutes=1), clock=clock
        )
        claims = issuer.validate(issuer.issue_access_token(1, "a@example.com", Role.USER))
        assert (claims.expires_at - claims.issued_at).total_seconds() == 60

    def test_refresh_identifier_uses_token_source(self):
        class FixedSource:
            def new_opaque_token(self):
                return "opaque-value"

        issuer = TokenIssuer(AuthConfig(jwt_secret=SECRET), FixedSource())
        assert issuer.issue_refresh_identifier() == "opaque-value"

    def test_default_source_is_url_safe(self):
        token = SecretsTokenSource().new_opaque_token()
        assert len(token) >= 43
        assert set(token) <= set(
            "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
        )


class TestValidate:
    def test_expired_token_rejected(self, issuer, clock):
        token = issuer.issue_access_token(1, "a@example.com", Role.USER)

        clock.now += 30 * 60 - 1
        assert issuer.validate(token) is not None
        clock.now += 1
        assert issuer.validate(token) is None

    def test_other_secret_rejected(self, issuer, clock):
        other = TokenIssuer(AuthConfig(jwt_secret="another-secret-value-0123456789"), clock=clock)
        token = other.issue_access_token(1, "a@example.com", Role.USER)

        assert issuer.validate(token) is None

    def test_tampered_payload_rejected(self, issuer):
        token = issuer.issue_access_token(1, "a@example.com", Role.USER)
        header, payload, signature = token.split(".")
        forged = _unb64(payload)
        forged["role"] = "ADMIN"

        assert issuer.validate(f"{header}.{_b64(forged)}.{signature}") is None

    def test_alg_none_rejected(self, issuer, clock):
        payload = {
            "sub": "a@example.com",
            "userNo": 1,
            "role": "ADMIN",
            "iat": int(clock.now),
            "exp": int(clock.now) + 600,
        }
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(payload)}."

        assert issuer.validate(token) is None

    @pytest.mark.parametrize(
        "token",
        ["", "not-a-jwt", "a.b", "a.b.c.d", "!!!.???.***", "é.é.é"],
    )
    def test_malformed_rejected(self, issuer, token):
        assert issuer.validate(token) is None

    def test_unknown_role_rejected(self, issuer, clock):
        header = _b64({"alg": "HS256", "typ": "JWT"})
        payload = _b64(
            {
                "sub": "a@example.com",
                "userNo": 1,
                "role": "ROOT",
                "iat": int(clock.now),
                "exp": int(clock.now) + 600,
            }
        )
        signing_input = f"{header}.{payload}"
        token = f"{signing_input}.{issuer._sign(signing_input)}"

        assert issuer.validate(token) is None
