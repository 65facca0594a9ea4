"""Bearer tokens issued by the identity layer.

The portal never authenticates users itself. It trusts HS256 tokens whose
``sub`` is the numeric user id and, optionally, carries the account type the
identity layer knew at issue time. Authorization always re-reads the user row;
the embedded account type is informational only.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError, field_validator

from portal.config.settings import settings
from portal.models.user import AccountType


class AuthenticationError(Exception):
    """Raised when a bearer token is missing, malformed, expired or forged."""


class TokenPayload(BaseModel):
    sub: str
    exp: datetime
    iat: Optional[datetime] = None
    account_type: Optional[AccountType] = None

    @field_validator("sub")
    @classmethod
    def _numeric_subject(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("token subject must be a user id")
        return value

    @property
    def user_id(self) -> int:
        return int(self.sub)


def issue_access_token(
    user_id: int,
    account_type: Optional[AccountType] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Sign a token for ``user_id``; used by tooling and tests."""

    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(
        minutes=settings.security.access_token_expires_minutes
    )
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    if account_type is not None:
        claims["account_type"] = account_type.value
    return jwt.encode(
        claims,
        settings.security.jwt_secret_key.get_secret_value(),
        algorithm=settings.security.jwt_algorithm,
    )


def decode_access_token(token: str) -> TokenPayload:
    try:
        claims = jwt.decode(
            token,
            settings.security.jwt_secret_key.get_secret_value(),
            algorithms=[settings.security.jwt_algorithm],
        )
        return TokenPayload.model_validate(claims)
    except (JWTError, ValidationError) as exc:
        raise AuthenticationError("Invalid authentication token") from exc


def bearer_subject(authorization: Optional[str]) -> Optional[int]:
    """User id from an ``Authorization`` header value, or None if unusable."""

    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        return decode_access_token(token).user_id
    except AuthenticationError:
        return None


__all__ = [
    "AuthenticationError",
    "TokenPayload",
    "bearer_subject",
    "decode_access_token",
    "issue_access_token",
]
