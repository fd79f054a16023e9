"""Utilities for issuing and validating application JWTs and refresh tokens."""

from __future__ import annotations

import hashlib
import secrets
import time
import uuid
from typing import Any, Mapping

import jwt

from ..config import Settings, get_settings

ALGORITHM = "HS256"


class JwtTokenIssuer:
    """Signs access tokens with the server-held symmetric key and mints refresh tokens."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Bind the issuer to the signing key and issuer name from ``settings``."""
        self._settings = settings or get_settings()

    def sign(self, claims: Mapping[str, Any], expires_in: int) -> str:
        """Create a signed JWT carrying ``claims`` that expires after ``expires_in`` seconds.

        Parameters
        ----------
        claims:
            Application claims to embed; registered claims (``iss``, ``iat``,
            ``exp``, ``jti``) are added here and override same-named entries.
        expires_in:
            Lifetime of the token in seconds.

        Returns
        -------
        str
            The encoded JWT string.
        """

        now = int(time.time())
        payload: dict[str, Any] = dict(claims)
        payload.update(
            {
                "iss": self._settings.jwt_issuer,
                "iat": now,
                "exp": now + expires_in,
                "jti": uuid.uuid4().hex,
            }
        )
        # PyJWT returns str for HS256 even in PyJWT>=2
        return jwt.encode(payload, self._settings.jwt_secret, algorithm=ALGORITHM)

    def random_token(self, byte_length: int = 32) -> str:
        """Return ``byte_length`` random bytes as URL-safe base64 text."""
        return secrets.token_urlsafe(byte_length)

    def decode(self, token: str) -> dict[str, Any]:
        """Decode and verify a JWT returning its payload.

        Raises
        ------
        jwt.PyJWTError
            Propagated when the token is invalid, expired, or signed by another issuer.
        """

        return jwt.decode(
            token,
            self._settings.jwt_secret,
            algorithms=[ALGORITHM],
            issuer=self._settings.jwt_issuer,
            options={"require": ["exp", "iat", "sub", "jti"]},
        )

    def hash_refresh_token(self, token: str) -> str:
        return hash_refresh_token(token)


def hash_refresh_token(token: str) -> str:
    """Return the SHA-256 hex digest for a refresh token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
