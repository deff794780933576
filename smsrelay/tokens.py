"""
Stateless bearer tokens.

Tokens are HS256 JWTs carrying the user id, a snapshot of the user's
token_version and an expiry. Verification only checks the signature and the
claims; comparing token_version with the stored value is the caller's job,
which is what lets a logout revoke every outstanding token without a
server-side blacklist.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import jwt

from smsrelay.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpiredError(TokenError):
    pass


class TokenMalformedError(TokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    token_version: int
    expires_at: datetime


class TokenService:
    """Signs and verifies bearer tokens with a symmetric key."""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl: timedelta = DEFAULT_TTL):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = ttl

    def issue(self, user_id: str, token_version: int, ttl: Optional[timedelta] = None) -> str:
        issued_at = datetime.now(timezone.utc)
        expires_at = issued_at + (ttl if ttl is not None else self._ttl)
        payload = {
            "user_id": user_id,
            "token_version": token_version,
            "exp": int(expires_at.timestamp()),
            "iat": int(issued_at.timestamp()),
            # unique per token
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """
        Decode and check a token.

        Raises:
            TokenExpiredError: the exp claim is in the past
            TokenMalformedError: bad signature, undecodable token, or
                missing/mistyped claims
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "user_id", "token_version"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            raise TokenMalformedError(f"Invalid token: {e}") from e

        user_id = payload["user_id"]
        token_version = payload["token_version"]
        exp = payload["exp"]

        if not isinstance(user_id, str) or not user_id:
            raise TokenMalformedError("Invalid token: user_id must be a non-empty string")
        # bool is a subclass of int and must not pass as a version
        if isinstance(token_version, bool) or not isinstance(token_version, int) or token_version < 0:
            raise TokenMalformedError("Invalid token: token_version must be a non-negative integer")
        if isinstance(exp, bool) or not isinstance(exp, int):
            raise TokenMalformedError("Invalid token: exp must be an integer timestamp")

        return TokenClaims(
            user_id=user_id,
            token_version=token_version,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


@lru_cache()
def get_token_service() -> TokenService:
    """Token service built from settings. The signing key is read-only after startup."""
    return TokenService(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        ttl=timedelta(hours=settings.TOKEN_TTL_HOURS),
    )
