from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

from portal.models.project import ProjectType


@dataclass(slots=True)
class Notification:
    """Payload handed to a notification dispatcher."""

    type: str
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcherInterface(ABC):
    """Fire-and-forget delivery contract for user notifications"""

    @abstractmethod
    async def notify(self, user_id: int, notification: Notification) -> None:
        ...


class ApplicationWindowInterface(ABC):
    """Gate deciding whether submissions are currently accepted"""

    @abstractmethod
    async def is_open(self, project_type: ProjectType, semester: int) -> bool:
        ...
