import asyncio
import json
import logging
from dataclasses import asdict
from typing import Optional

import pika

from portal.application.interfaces import Notification, NotificationDispatcherInterface
from portal.config.settings import NotificationConfig, settings

logger = logging.getLogger(__name__)


class RabbitMQNotificationDispatcher(NotificationDispatcherInterface):
    """Publish notifications to a durable RabbitMQ queue"""

    def __init__(self, config: Optional[NotificationConfig] = None):
        self.config = config or settings.notifications

        self.credentials = pika.PlainCredentials(
            self.config.rabbitmq_username,
            self.config.rabbitmq_password.get_secret_value(),
        )
        self.connection_params = pika.ConnectionParameters(
            host=self.config.rabbitmq_host,
            port=self.config.rabbitmq_port,
            credentials=self.credentials,
        )

    def _get_connection(self):
        """Get a connection to RabbitMQ"""
        return pika.BlockingConnection(self.connection_params)

    def _publish_sync(self, body: bytes) -> None:
        connection = self._get_connection()
        try:
            channel = connection.channel()

            # Declare queue if it doesn't exist
            channel.queue_declare(queue=self.config.rabbitmq_queue, durable=True)

            channel.basic_publish(
                exchange="",
                routing_key=self.config.rabbitmq_queue,
                body=body,
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type="application/json",
                ),
            )
        finally:
            connection.close()

    async def notify(self, user_id: int, notification: Notification) -> None:
        body = json.dumps({"user_id": user_id, **asdict(notification)}, default=str)
        # pika's blocking client must stay off the event loop.
        await asyncio.to_thread(self._publish_sync, body.encode("utf-8"))
        logger.debug(
            "Published %s notification for user %s", notification.type, user_id
        )
