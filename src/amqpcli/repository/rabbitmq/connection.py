"""
RabbitMQ session management.

A session owns exactly one connection and one channel, both opened eagerly
and both released on close. There is no reconnection: a lost connection is
surfaced to the caller.
"""

import logging
import threading
from typing import Callable, Optional

from amqpstorm import AMQPError, Channel, Connection, UriConnection

from amqpcli.exceptions import BrokerConnectionError
from amqpcli.models import Delivery
from amqpcli.repository.rabbitmq.config import SessionConfig
from amqpcli.repository.rabbitmq.publisher import RabbitPublisher
from amqpcli.repository.rabbitmq.subscriber import ConsumeResult, RabbitConsumer
from amqpcli.repository.rabbitmq.util import get_rabbitmq_ssl_options

logger = logging.getLogger(__name__)


class Session:
    """
    One connection and one channel to the broker.

    Not thread safe: a session serves at most one publish call or one
    consume loop at a time.
    """

    def __init__(
        self,
        config: SessionConfig,
        connection: Optional[Connection] = None,
        channel: Optional[Channel] = None,
    ) -> None:
        self._config = config
        self._connection = connection
        self._channel = channel

    @classmethod
    def open(cls, config: SessionConfig) -> "Session":
        """
        Connect to the broker and open a channel.

        :param config: Connection parameters.
        :return: An open session.
        :raises BrokerConnectionError: If the broker is unreachable, rejects
            the credentials, or refuses to open a channel.
        """
        session = cls(config)
        logger.info("Connecting to %s", config.redacted_url())
        try:
            session._connection = UriConnection(
                config.url(),
                ssl_options=get_rabbitmq_ssl_options(config.host)
                if config.ssl_enabled
                else None,
            )
        except AMQPError as e:
            raise BrokerConnectionError(config.redacted_url(), e) from e

        try:
            session._channel = session._connection.channel()
        except AMQPError as e:
            # no leaked connection on partial failure
            session.close()
            raise BrokerConnectionError(config.redacted_url(), e) from e

        logger.info(
            "Session opened on virtual host %s with channel %s",
            config.virtual_host,
            session._channel,
        )
        return session

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def channel(self) -> Channel:
        if self._channel is None:
            raise BrokerConnectionError(
                self._config.redacted_url(), message="session has no open channel"
            )
        return self._channel

    def publish(self, exchange: str, routing_key: str, body: str) -> None:
        """Publish a text message to an exchange with a routing key."""
        RabbitPublisher(self.channel).publish(exchange, routing_key, body)

    def publish_to_queue(self, queue_name: str, body: str) -> None:
        """Ensure the queue exists, then publish a text message directly to it."""
        RabbitPublisher(self.channel).publish_to_queue(queue_name, body)

    def consume(
        self,
        queue_name: str,
        handler: Callable[[Delivery], None],
        auto_ack: bool = False,
        count: int = 0,
        stop_event: Optional[threading.Event] = None,
        prefetch_count: Optional[int] = None,
    ) -> ConsumeResult:
        """
        Consume from a queue until a stop condition fires.

        See RabbitConsumer for the acknowledgment policy.
        """
        consumer = RabbitConsumer(
            self.channel,
            queue_name,
            handler,
            auto_ack=auto_ack,
            count=count,
            stop_event=stop_event,
            prefetch_count=prefetch_count,
        )
        return consumer.run()

    def close(self) -> None:
        """
        Release the channel, then the connection.

        Best-effort and idempotent: errors are logged, never raised.
        """
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None

        if channel is not None:
            try:
                if channel.is_open:
                    channel.close()
                    logger.info("Channel closed.")
            except Exception as e:
                logger.warning("Error closing channel: %s", e)

        if connection is not None:
            try:
                if connection.is_open:
                    connection.close()
                    logger.info("Connection closed.")
            except Exception as e:
                logger.warning("Error closing connection: %s", e)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
