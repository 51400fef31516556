from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from tasknest.config import AuthConfig
from tasknest.logging import get_logger
from tasknest.service.security import SecretsTokenSource, TokenSource
from tasknest.storage.models import Role

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccessClaims:
    email: str
    user_no: int
    role: Role
    issued_at: datetime
    expires_at: datetime


class TokenIssuer:
    """Mints HS256 access tokens and opaque refresh identifiers.

    The signing key comes from the immutable :class:`AuthConfig` handed in at
    construction; there is no way to swap it afterwards.
    """

    def __init__(
        self,
        config: AuthConfig,
        token_source: Optional[TokenSource] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._key = config.jwt_secret.encode()
        self._token_source = token_source or SecretsTokenSource()
        self._clock = clock

    @property
    def access_token_lifetime(self) -> timedelta:
        return timedelta(minutes=self._config.access_token_ttl_minutes)

    @property
    def refresh_token_lifetime(self) -> timedelta:
        return timedelta(minutes=self._config.refresh_token_ttl_minutes)

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue_access_token(self, user_no: int, email: str, role: Role) -> str:
        issued_at = int(self._clock())
        payload = {
            "sub": email,
            "userNo": user_no,
            "role": Role(role).value,
            "iat": issued_at,
            "exp": issued_at + int(self.access_token_lifetime.total_seconds()),
        }
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def issue_refresh_identifier(self) -> str:
        return self._token_source.new_opaque_token()

    def validate(self, token: str) -> Optional[AccessClaims]:
        """Return the claims of a well-formed, correctly signed, unexpired token."""

        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            logger.info("jwt_malformed")
            return None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.info("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        expected = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected.encode(), sig_b64.encode()):
            logger.warning("jwt_signature_mismatch")
            return None

        try:
            payload: Any = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.info("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            logger.info("jwt_payload_decode_failed", error="payload is not an object")
            return None

        try:
            email = payload["sub"]
            user_no = int(payload["userNo"])
            role = Role(payload["role"])
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
        except (KeyError, TypeError, ValueError):
            logger.info("jwt_claims_invalid")
            return None
        if not isinstance(email, str) or not email:
            logger.info("jwt_claims_invalid")
            return None
        if expires_at <= self._clock():
            logger.info("jwt_expired", user_no=user_no)
            return None

        return AccessClaims(
            email=email,
            user_no=user_no,
            role=role,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )
