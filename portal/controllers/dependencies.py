"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal.application.interfaces import (
    ApplicationWindowInterface,
    NotificationDispatcherInterface,
)
from portal.database import get_session
from portal.models.user import User as UserModel
from portal.services import AllocationFacade, build_dispatcher
from portal.utils import AuthenticationError, decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: SessionDep,
) -> UserModel:
    """Resolve and validate the user referenced by the bearer token."""

    try:
        user_id = decode_access_token(token).user_id
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    user = await session.get(UserModel, user_id, populate_existing=True)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


CurrentUserDep = Annotated[UserModel, Depends(get_current_user)]


@lru_cache
def get_notifier() -> NotificationDispatcherInterface:
    """Process-wide notification dispatcher selected by settings."""

    return build_dispatcher()


def get_application_window() -> Optional[ApplicationWindowInterface]:
    """No window service is wired by default; submissions are always open."""

    return None


async def get_facade(
    session: SessionDep,
    notifier: Annotated[NotificationDispatcherInterface, Depends(get_notifier)],
    window: Annotated[
        Optional[ApplicationWindowInterface], Depends(get_application_window)
    ],
) -> AllocationFacade:
    return AllocationFacade(session, notifier=notifier, window=window)


FacadeDep = Annotated[AllocationFacade, Depends(get_facade)]


__all__ = [
    "get_current_user",
    "get_notifier",
    "get_application_window",
    "get_facade",
    "oauth2_scheme",
    "SessionDep",
    "CurrentUserDep",
    "FacadeDep",
]
