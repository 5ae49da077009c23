"""
Tests for the consume loop: acknowledgment policy, stop conditions and
abnormal subscription endings, all against the in-memory FakeBroker.
"""

import threading
from datetime import timedelta

import pytest
from amqpstorm import AMQPChannelError, AMQPConnectionError

from amqpcli.exceptions import ConsumeLoopError, DeclareError, SubscribeError
from amqpcli.repository.rabbitmq.publisher import RabbitPublisher
from amqpcli.repository.rabbitmq.subscriber import (
    ConsumeResult,
    RabbitConsumer,
    StopReason,
)


class Recorder:
    """Handler that records bodies and fails on demand."""

    def __init__(self, fail_on=(), on_call=None):
        self.bodies = []
        self.fail_on = set(fail_on)
        self.on_call = on_call

    def __call__(self, delivery):
        self.bodies.append(delivery.body)
        if self.on_call is not None:
            self.on_call(delivery)
        if delivery.body in self.fail_on:
            raise RuntimeError(f"cannot handle {delivery.body}")


def _consumer(broker, handler, **kwargs):
    kwargs.setdefault("idle_interval", timedelta(milliseconds=10))
    return RabbitConsumer(broker.channel, "orders", handler, **kwargs)


def _fill(broker, *bodies):
    for body in bodies:
        broker.enqueue("orders", body)


class TestAcknowledgment:
    def test_success_acks_each_delivery_once(self, fake_broker):
        _fill(fake_broker, b"a", b"b", b"c")
        handler = Recorder()

        result = _consumer(fake_broker, handler, count=3).run()

        assert result == ConsumeResult(processed=3, failed=0, reason=StopReason.COUNT_REACHED)
        assert handler.bodies == ["a", "b", "c"]
        assert fake_broker.acks == [1, 2, 3]
        assert fake_broker.nacks == []

    def test_failure_nacks_with_requeue_once(self, fake_broker):
        _fill(fake_broker, b"bad")
        handler = Recorder(fail_on={"bad"})

        result = _consumer(fake_broker, handler, count=1).run()

        assert result.processed == 1
        assert result.failed == 1
        assert fake_broker.acks == []
        assert fake_broker.nacks == [(1, True)]
        # requeued, still available for the next consumer
        assert fake_broker.pending("orders") == 1

    def test_mixed_outcomes(self, fake_broker):
        _fill(fake_broker, b"ok-1", b"bad", b"ok-2")
        handler = Recorder(fail_on={"bad"})

        result = _consumer(fake_broker, handler, count=3).run()

        assert result.failed == 1
        assert fake_broker.acks == [1, 3]
        assert fake_broker.nacks == [(2, True)]

    def test_auto_ack_never_acks_or_nacks(self, fake_broker):
        _fill(fake_broker, b"ok", b"bad")
        handler = Recorder(fail_on={"bad"})

        result = _consumer(fake_broker, handler, auto_ack=True, count=2).run()

        assert result.processed == 2
        assert fake_broker.no_ack is True
        assert fake_broker.acks == []
        assert fake_broker.nacks == []
        # the failed delivery is gone
        assert fake_broker.pending("orders") == 0

    def test_manual_ack_subscribes_without_no_ack(self, fake_broker):
        _fill(fake_broker, b"a")

        _consumer(fake_broker, Recorder(), count=1).run()

        assert fake_broker.no_ack is False
        fake_broker.channel.basic.qos.assert_called_once_with(prefetch_count=1)

    def test_prefetch_zero_skips_qos(self, fake_broker):
        _fill(fake_broker, b"a")

        _consumer(fake_broker, Recorder(), count=1, prefetch_count=0).run()

        fake_broker.channel.basic.qos.assert_not_called()


class TestStopConditions:
    def test_count_limit_leaves_remaining_messages(self, fake_broker):
        _fill(fake_broker, b"1", b"2", b"3", b"4", b"5")
        handler = Recorder()

        result = _consumer(fake_broker, handler, count=3).run()

        assert result.reason is StopReason.COUNT_REACHED
        assert handler.bodies == ["1", "2", "3"]
        assert fake_broker.pending("orders") == 2

    def test_stop_event_during_handler_finishes_inflight_delivery(self, fake_broker):
        _fill(fake_broker, b"1", b"2", b"3", b"4", b"5")
        stop_event = threading.Event()

        def stop_after_second(delivery):
            if delivery.delivery_tag == 2:
                stop_event.set()

        handler = Recorder(on_call=stop_after_second)

        result = _consumer(fake_broker, handler, stop_event=stop_event).run()

        assert result.reason is StopReason.CANCELLED
        assert result.processed == 2
        assert fake_broker.acks == [1, 2]
        assert fake_broker.pending("orders") == 3

    def test_stop_event_while_idle(self, fake_broker):
        stop_event = threading.Event()
        timer = threading.Timer(0.1, stop_event.set)
        timer.start()

        try:
            result = _consumer(fake_broker, Recorder(), stop_event=stop_event).run()
        finally:
            timer.cancel()

        assert result == ConsumeResult(processed=0, failed=0, reason=StopReason.CANCELLED)

    def test_stop_event_set_before_run(self, fake_broker):
        _fill(fake_broker, b"1")
        stop_event = threading.Event()
        stop_event.set()

        result = _consumer(fake_broker, Recorder(), stop_event=stop_event).run()

        assert result.reason is StopReason.CANCELLED
        assert result.processed == 0
        assert fake_broker.pending("orders") == 1

    def test_message_arriving_while_idle_is_delivered(self, fake_broker):
        timer = threading.Timer(0.05, fake_broker.enqueue, args=("orders", b"late"))
        timer.start()
        handler = Recorder()

        try:
            result = _consumer(fake_broker, handler, count=1).run()
        finally:
            timer.cancel()

        assert result.reason is StopReason.COUNT_REACHED
        assert handler.bodies == ["late"]

    def test_consumer_cancelled_on_exit(self, fake_broker):
        _fill(fake_broker, b"1")

        _consumer(fake_broker, Recorder(), count=1).run()

        fake_broker.channel.basic.cancel.assert_called_once_with("ctag-1")

    def test_negative_count_rejected(self, fake_broker):
        with pytest.raises(ValueError):
            _consumer(fake_broker, Recorder(), count=-1)


class TestAbnormalEndings:
    def test_declare_error(self, fake_broker):
        fake_broker.channel.queue.declare.side_effect = AMQPChannelError(
            "ACCESS_REFUSED"
        )

        with pytest.raises(DeclareError) as exc_info:
            _consumer(fake_broker, Recorder()).run()

        assert "orders" in str(exc_info.value)
        fake_broker.channel.basic.consume.assert_not_called()

    def test_subscribe_error(self, fake_broker):
        fake_broker.channel.basic.consume.side_effect = AMQPChannelError(
            "NOT_FOUND - no queue 'orders'"
        )

        with pytest.raises(SubscribeError) as exc_info:
            _consumer(fake_broker, Recorder()).run()

        assert "NOT_FOUND" in str(exc_info.value)

    def test_connection_lost_while_consuming(self, fake_broker):
        fake_broker.channel.check_for_errors.side_effect = AMQPConnectionError(
            "connection was closed"
        )

        with pytest.raises(ConsumeLoopError) as exc_info:
            _consumer(fake_broker, Recorder()).run()

        assert isinstance(exc_info.value.cause, AMQPConnectionError)
        fake_broker.channel.basic.cancel.assert_called_once_with("ctag-1")

    def test_broker_cancel_ends_subscription(self, fake_broker):
        _fill(fake_broker, b"1", b"2")

        def broker_cancels(delivery):
            fake_broker.channel.consumer_tags.remove(delivery.consumer_tag)

        handler = Recorder(on_call=broker_cancels)

        with pytest.raises(ConsumeLoopError) as exc_info:
            _consumer(fake_broker, handler).run()

        assert "cancelled by the broker" in str(exc_info.value)
        assert handler.bodies == ["1"]
        assert fake_broker.acks == [1]


def test_publish_then_consume_round_trip(fake_broker):
    RabbitPublisher(fake_broker.channel).publish_to_queue("orders", "hello")
    received = []

    result = _consumer(fake_broker, received.append, count=1).run()

    assert result.processed == 1
    delivery = received[0]
    assert delivery.body == "hello"
    assert delivery.raw_body == b"hello"
    assert delivery.routing_key == "orders"
    assert delivery.content_type == "text/plain"
    assert delivery.timestamp is not None
    assert fake_broker.acks == [1]
