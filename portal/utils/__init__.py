from .security import (
    AuthenticationError,
    TokenPayload,
    bearer_subject,
    decode_access_token,
    issue_access_token,
)

__all__ = [
    "AuthenticationError",
    "TokenPayload",
    "bearer_subject",
    "decode_access_token",
    "issue_access_token",
]
