"""
Shared pytest fixtures and utilities for testing.

## Fake Broker Infrastructure

The tests never talk to a real RabbitMQ. `FakeBroker` builds a `Mock` channel
whose methods behave like an amqpstorm channel backed by in-memory queues:

- `channel.queue.declare(...)` records the declaration and creates the queue
- `channel.basic.publish(...)` on the default exchange appends to the queue
  named by the routing key; other exchanges are only recorded
- `channel.basic.consume(...)` registers a consumer tag
- `channel.build_inbound_messages(...)` yields `FakeMessage` objects lazily,
  one at a time, so messages that are never pulled stay in the queue
- `FakeMessage.ack()` / `FakeMessage.nack(requeue)` are recorded per
  delivery tag; a requeued message goes back to the tail of its queue

Because everything hangs off a single `Mock`, `broker.channel.mock_calls`
gives the order of every declare/publish/consume call.

### Usage

```python
def test_ack(fake_broker):
    fake_broker.enqueue("q1", b"hello")
    consumer = RabbitConsumer(fake_broker.channel, "q1", lambda d: None, count=1)
    consumer.run()
    assert fake_broker.acks == [1]
```
"""

import datetime
from collections import deque
from typing import Optional
from unittest.mock import Mock

import pytest

from amqpcli.repository.rabbitmq.config import SessionConfig


class FakeMessage:
    """Inbound message with the attributes the consume loop reads."""

    def __init__(
        self,
        broker: "FakeBroker",
        queue: str,
        body: bytes,
        delivery_tag: int,
        exchange: str = "",
        routing_key: str = "",
        redelivered: bool = False,
        properties: Optional[dict] = None,
    ):
        self._broker = broker
        self._queue = queue
        self.body = body
        self.method = {
            "consumer_tag": broker.consumer_tag,
            "delivery_tag": delivery_tag,
            "redelivered": redelivered,
            "exchange": exchange,
            "routing_key": routing_key,
        }
        self.properties = dict(properties or {})

    @property
    def delivery_tag(self) -> int:
        return self.method["delivery_tag"]

    def ack(self) -> None:
        self._broker.acks.append(self.delivery_tag)

    def nack(self, requeue: bool = True) -> None:
        self._broker.nacks.append((self.delivery_tag, requeue))
        if requeue:
            self._broker.queues[self._queue].append(
                (
                    self.body,
                    self.method["exchange"],
                    self.method["routing_key"],
                    True,
                    self.properties,
                )
            )


class FakeBroker:
    """In-memory stand-in for a broker, seen through one channel."""

    consumer_tag = "ctag-1"

    def __init__(self):
        self.queues: dict[str, deque] = {}
        self.declared: list[dict] = []
        self.exchange_publishes: list[dict] = []
        self.acks: list[int] = []
        self.nacks: list[tuple[int, bool]] = []
        self.delivered: list[FakeMessage] = []
        self.consuming_queue: Optional[str] = None
        self.no_ack: Optional[bool] = None
        self._next_tag = 0

        self.channel = Mock()
        self.channel.is_open = True
        self.channel.consumer_tags = []
        self.channel.queue.declare.side_effect = self._declare
        self.channel.basic.publish.side_effect = self._publish
        self.channel.basic.consume.side_effect = self._consume
        self.channel.basic.cancel.side_effect = self._cancel
        self.channel.build_inbound_messages.side_effect = self._inbound

    def enqueue(
        self,
        queue: str,
        body: bytes,
        exchange: str = "",
        routing_key: Optional[str] = None,
        **properties,
    ) -> None:
        """Put a message straight into a queue."""
        self.queues.setdefault(queue, deque()).append(
            (
                body,
                exchange,
                queue if routing_key is None else routing_key,
                False,
                properties,
            )
        )

    def pending(self, queue: str) -> int:
        return len(self.queues.get(queue, ()))

    def _declare(
        self,
        queue="",
        passive=False,
        durable=False,
        exclusive=False,
        auto_delete=False,
        arguments=None,
    ):
        self.declared.append(
            {
                "queue": queue,
                "durable": durable,
                "exclusive": exclusive,
                "auto_delete": auto_delete,
                "arguments": arguments,
            }
        )
        self.queues.setdefault(queue, deque())
        return {"queue": queue, "message_count": self.pending(queue), "consumer_count": 0}

    def _publish(self, body, routing_key, exchange="", properties=None, **kwargs):
        if isinstance(body, str):
            body = body.encode("utf-8")
        if exchange == "":
            if routing_key in self.queues:
                self.queues[routing_key].append(
                    (body, exchange, routing_key, False, dict(properties or {}))
                )
            return
        self.exchange_publishes.append(
            {
                "body": body,
                "exchange": exchange,
                "routing_key": routing_key,
                "properties": properties,
            }
        )

    def _consume(self, callback=None, queue="", consumer_tag="", exclusive=False,
                 no_ack=False, no_local=False, arguments=None):
        self.consuming_queue = queue
        self.no_ack = no_ack
        self.channel.consumer_tags.append(self.consumer_tag)
        return self.consumer_tag

    def _cancel(self, consumer_tag=""):
        if consumer_tag in self.channel.consumer_tags:
            self.channel.consumer_tags.remove(consumer_tag)

    def _inbound(self, break_on_empty=False, to_tuple=False, auto_decode=True,
                 message_impl=None):
        pending = self.queues.get(self.consuming_queue, deque())
        while pending and self.consumer_tag in self.channel.consumer_tags:
            body, exchange, routing_key, redelivered, properties = pending.popleft()
            self._next_tag += 1
            message = FakeMessage(
                self,
                self.consuming_queue,
                body,
                self._next_tag,
                exchange=exchange,
                routing_key=routing_key,
                redelivered=redelivered,
                properties=properties,
            )
            self.delivered.append(message)
            yield message


@pytest.fixture
def fake_broker():
    """A fresh FakeBroker with its channel."""
    return FakeBroker()


@pytest.fixture
def session_config():
    return SessionConfig(
        host="localhost",
        port=5672,
        username="guest",
        password="guest",
        vhost="",
    )


@pytest.fixture
def sample_timestamp():
    return datetime.datetime(2024, 5, 1, 12, 30, 45)
