"""Best-effort notification delivery for engine side effects."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from portal.application.interfaces import Notification, NotificationDispatcherInterface
from portal.config.settings import NotificationConfig, settings

logger = logging.getLogger(__name__)


class LoggingNotificationDispatcher(NotificationDispatcherInterface):
    """Write notifications to the application log instead of a transport."""

    async def notify(self, user_id: int, notification: Notification) -> None:
        logger.info(
            "Notification for user %s: [%s] %s - %s",
            user_id,
            notification.type,
            notification.title,
            notification.message,
        )


def build_dispatcher(
    config: Optional[NotificationConfig] = None,
) -> NotificationDispatcherInterface:
    """Return the dispatcher selected by ``NOTIFY_BACKEND``."""

    config = config or settings.notifications
    if config.backend == "rabbitmq":
        from portal.infrastructure.external.mq_adapter import (
            RabbitMQNotificationDispatcher,
        )

        return RabbitMQNotificationDispatcher(config)
    if config.backend != "log":
        logger.warning(
            "Unknown notification backend '%s'; falling back to log delivery.",
            config.backend,
        )
    return LoggingNotificationDispatcher()


async def dispatch_safely(
    dispatcher: Optional[NotificationDispatcherInterface],
    user_ids: Iterable[int],
    notification: Notification,
) -> int:
    """Deliver ``notification`` to each user, containing every failure.

    Returns the number of successful deliveries. Failures are logged and never
    raised; callers invoke this only after their state change is committed.
    """

    if dispatcher is None:
        return 0

    delivered = 0
    for user_id in dict.fromkeys(user_ids):
        if user_id is None:
            continue
        try:
            await dispatcher.notify(user_id, notification)
        except Exception:
            logger.exception(
                "Failed to deliver %s notification to user %s",
                notification.type,
                user_id,
            )
            continue
        delivered += 1
    return delivered


__all__ = [
    "LoggingNotificationDispatcher",
    "build_dispatcher",
    "dispatch_safely",
]
