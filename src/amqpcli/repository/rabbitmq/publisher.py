"""
RabbitMQ publisher implementation.

Publishes text messages either to an exchange with a routing key, or
directly to a named queue through the default exchange.
"""

import concurrent.futures
import datetime
import logging
from datetime import timedelta
from typing import Optional

from amqpstorm import AMQPError, Channel

from amqpcli.config import AmqpCliConfig
from amqpcli.exceptions import DeclareError, PublishError, PublishTimeoutError
from amqpcli.repository.rabbitmq.config import QueueConfig
from amqpcli.repository.rabbitmq.util import declare_queue
from amqpcli.util import NamedThreadPool

logger = logging.getLogger(__name__)

# The default exchange routes a message to the queue named by its routing key
DEFAULT_EXCHANGE = ""


def describe_target(exchange: str, routing_key: str) -> str:
    if exchange == DEFAULT_EXCHANGE:
        return f"queue {routing_key}"
    return f"exchange {exchange} with routing key {routing_key}"


class RabbitPublisher:
    """
    Publishes text messages on an open channel.

    Each submission is bounded by a deadline; no retry is attempted.
    """

    def __init__(
        self,
        channel: Channel,
        timeout: Optional[timedelta] = None,
    ) -> None:
        self._channel = channel
        self._timeout = timeout or AmqpCliConfig.PUBLISH_TIMEOUT

    def publish(self, exchange: str, routing_key: str, body: str) -> None:
        """
        Publish a text message to an exchange with a routing key.

        No queue is declared; the exchange and routing key must already lead
        somewhere useful.

        :param exchange: Exchange name, empty for the default exchange.
        :param routing_key: Routing key.
        :param body: Message body.
        :raises PublishTimeoutError: If submission exceeds the deadline.
        :raises PublishError: If the transport rejects the message.
        """
        target = describe_target(exchange, routing_key)
        timeout = self._timeout.total_seconds()

        pool = NamedThreadPool(max_workers=1)
        try:
            future = pool.submit(
                self._submit, "rmq-publisher", exchange, routing_key, body
            )
            try:
                future.result(timeout=timeout)
            except concurrent.futures.TimeoutError as e:
                raise PublishTimeoutError(target, timeout) from e
            except AMQPError as e:
                raise PublishError(target, e) from e
        finally:
            pool.shutdown(wait=False)

        logger.info("Message published to %s", target)

    def publish_to_queue(self, queue_name: str, body: str) -> None:
        """
        Ensure a queue exists, then publish a text message directly to it.

        The queue is declared durable, non-exclusive and non-auto-delete. A
        declare failure aborts before anything is published.

        :raises DeclareError: If the queue cannot be declared.
        """
        queue_config = QueueConfig.durable_queue(queue_name)
        try:
            declare_queue(self._channel, queue_config)
        except AMQPError as e:
            raise DeclareError(queue_name, e) from e

        self.publish(DEFAULT_EXCHANGE, queue_name, body)

    def _submit(self, exchange: str, routing_key: str, body: str) -> None:
        self._channel.basic.publish(
            body=body,
            routing_key=routing_key,
            exchange=exchange,
            properties={
                "content_type": AmqpCliConfig.PUBLISH_CONTENT_TYPE,
                "timestamp": datetime.datetime.now(datetime.timezone.utc),
            },
        )
        logger.debug(
            "Message submitted to exchange '%s' with routing key '%s'",
            exchange,
            routing_key,
        )
