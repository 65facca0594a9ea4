"""Shared fixtures: in-memory database, factories and a recording notifier."""

from __future__ import annotations

import itertools
import os
from typing import AsyncIterator

os.environ.setdefault("DB_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-for-testing")
os.environ.setdefault("NOTIFY_BACKEND", "log")

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from portal.application.interfaces import Notification, NotificationDispatcherInterface
from portal.config.settings import AllocationConfig
from portal.models import (
    AccountType,
    Base,
    Project,
    ProjectStatus,
    ProjectType,
    User,
)
from portal.services import AllocationFacade

YEAR = 2025


class RecordingNotifier(NotificationDispatcherInterface):
    """Keeps every delivered notification in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, Notification]] = []

    async def notify(self, user_id: int, notification: Notification) -> None:
        self.sent.append((user_id, notification))

    def types_for(self, user_id: int) -> list[str]:
        return [n.type for uid, n in self.sent if uid == user_id]


class FailingNotifier(NotificationDispatcherInterface):
    """Transport that is always down."""

    def __init__(self) -> None:
        self.attempts = 0

    async def notify(self, user_id: int, notification: Notification) -> None:
        self.attempts += 1
        raise ConnectionError("notification transport unavailable")


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session:
        yield session


@pytest.fixture
def config() -> AllocationConfig:
    return AllocationConfig()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def facade(session: AsyncSession, notifier: RecordingNotifier, config) -> AllocationFacade:
    return AllocationFacade(session, notifier=notifier, config=config)


@pytest.fixture
def make_user(session: AsyncSession):
    counter = itertools.count(1)

    async def _make(
        name: str | None = None,
        account_type: AccountType = AccountType.STUDENT,
        is_coordinator: bool = False,
    ) -> User:
        number = next(counter)
        user = User(
            email=f"user{number}@example.edu",
            name=name or f"User {number}",
            account_type=account_type,
            is_coordinator=is_coordinator,
        )
        session.add(user)
        await session.commit()
        return user

    return _make


@pytest.fixture
def make_project(session: AsyncSession):
    counter = itertools.count(1)

    async def _make(
        faculty: User,
        project_type: ProjectType = ProjectType.IDP,
        capacity: int = 1,
        status: ProjectStatus = ProjectStatus.PUBLISHED,
    ) -> Project:
        project = Project(
            title=f"Project {next(counter)}",
            project_type=project_type,
            status=status,
            capacity=capacity,
            assigned_count=0,
            faculty_id=faculty.id,
        )
        session.add(project)
        await session.commit()
        return project

    return _make


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def reload(session: AsyncSession):
    """Refresh an instance from the database, discarding cached state."""

    async def _reload(instance):
        await session.refresh(instance)
        return instance

    return _reload
