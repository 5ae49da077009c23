"""
RabbitMQ consumer implementation.

The consume loop declares the queue, subscribes, then hands each delivery to
a caller-supplied handler, one at a time and in arrival order. The outcome of
the handler decides the acknowledgment:

- handler returns: ack (manual ack mode only)
- handler raises: nack with requeue (manual ack mode only)

With auto_ack the broker treats every delivery as acknowledged before the
handler runs. A delivery whose handler fails is therefore lost; this mode is
lossy by construction.

The loop stops when a positive count limit is reached, when the stop event is
set, or raises ConsumeLoopError when the subscription ends abnormally.
"""

import logging
import threading
from datetime import timedelta
from enum import Enum
from typing import Callable, NamedTuple, Optional

from amqpstorm import AMQPError, Channel, Message

from amqpcli.config import AmqpCliConfig
from amqpcli.exceptions import ConsumeLoopError, DeclareError, SubscribeError
from amqpcli.models import Delivery
from amqpcli.repository.rabbitmq.config import QueueConfig
from amqpcli.repository.rabbitmq.util import declare_queue

logger = logging.getLogger(__name__)


class StopReason(Enum):
    COUNT_REACHED = "count_reached"
    CANCELLED = "cancelled"


class ConsumeResult(NamedTuple):
    """Outcome of a consume loop run."""

    processed: int
    failed: int
    reason: StopReason


class RabbitConsumer:
    """
    Single-use consume loop over an open channel.

    Cancellation is cooperative: the stop event is checked between
    deliveries and while idle, so a handler already running always finishes
    and its delivery always gets its ack/nack decision.
    """

    def __init__(
        self,
        channel: Channel,
        queue_name: str,
        handler: Callable[[Delivery], None],
        auto_ack: bool = False,
        count: int = 0,
        stop_event: Optional[threading.Event] = None,
        prefetch_count: Optional[int] = None,
        idle_interval: Optional[timedelta] = None,
    ) -> None:
        if count < 0:
            raise ValueError("count must be zero (unlimited) or positive")

        self._channel = channel
        self._queue_config = QueueConfig.durable_queue(queue_name)
        self._handler = handler
        self._auto_ack = auto_ack
        self._count = count
        self._stop_event = stop_event or threading.Event()
        self._prefetch_count = (
            AmqpCliConfig.CONSUME_PREFETCH_COUNT
            if prefetch_count is None
            else prefetch_count
        )
        self._idle_interval = (
            idle_interval or AmqpCliConfig.CONSUME_IDLE_INTERVAL
        ).total_seconds()

        self._consumer_tag: Optional[str] = None
        self._processed = 0
        self._failed = 0

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def queue_name(self) -> str:
        return self._queue_config.name

    def run(self) -> ConsumeResult:
        """
        Run the loop until a stop condition fires.

        :return: How many deliveries were processed and why the loop stopped.
        :raises DeclareError: If the queue cannot be declared.
        :raises SubscribeError: If the consumer cannot be registered.
        :raises ConsumeLoopError: If the subscription ends abnormally.
        """
        self._declare()
        self._subscribe()
        try:
            reason = self._receive()
        finally:
            self._unsubscribe()

        logger.info(
            "Consume loop on queue %s stopped (%s) after %d delivery(ies)",
            self.queue_name,
            reason.value,
            self._processed,
        )
        return ConsumeResult(self._processed, self._failed, reason)

    def _declare(self) -> None:
        try:
            declare_queue(self._channel, self._queue_config)
        except AMQPError as e:
            raise DeclareError(self.queue_name, e) from e

    def _subscribe(self) -> None:
        try:
            if self._prefetch_count > 0:
                self._channel.basic.qos(prefetch_count=self._prefetch_count)
            self._consumer_tag = self._channel.basic.consume(
                queue=self.queue_name,
                no_ack=self._auto_ack,
            )
        except AMQPError as e:
            raise SubscribeError(self.queue_name, e) from e

        logger.info(
            "Consumer %s registered on queue %s (auto_ack=%s)",
            self._consumer_tag,
            self.queue_name,
            self._auto_ack,
        )

    def _receive(self) -> StopReason:
        while True:
            if self._stop_event.is_set():
                return StopReason.CANCELLED

            received = False
            try:
                self._channel.check_for_errors()
                if self._consumer_tag not in self._channel.consumer_tags:
                    raise ConsumeLoopError(
                        self.queue_name,
                        message=f"subscription on queue '{self.queue_name}' was cancelled by the broker",
                    )

                for message in self._channel.build_inbound_messages(
                    break_on_empty=True, auto_decode=False
                ):
                    received = True
                    self._dispatch(message)

                    if self._count_reached():
                        return StopReason.COUNT_REACHED
                    if self._stop_event.is_set():
                        return StopReason.CANCELLED
            except AMQPError as e:
                raise ConsumeLoopError(self.queue_name, e) from e

            if not received:
                self._stop_event.wait(self._idle_interval)

    def _dispatch(self, message: Message) -> None:
        delivery = Delivery.from_message(message)
        try:
            self._handler(delivery)
        except Exception as e:
            self._failed += 1
            logger.exception(
                "Handler failed for delivery %s: %s", delivery.delivery_tag, e
            )
            if not self._auto_ack:
                message.nack(requeue=True)
                logger.debug("Delivery %s requeued", delivery.delivery_tag)
        else:
            if not self._auto_ack:
                message.ack()
                logger.debug("Delivery %s acknowledged", delivery.delivery_tag)
        self._processed += 1

    def _count_reached(self) -> bool:
        return self._count > 0 and self._processed >= self._count

    def _unsubscribe(self) -> None:
        if self._consumer_tag is None:
            return
        try:
            if self._channel.is_open:
                self._channel.basic.cancel(self._consumer_tag)
                logger.debug("Consumer %s cancelled", self._consumer_tag)
        except Exception as e:
            logger.warning("Error cancelling consumer: %s", e)
