"""Tests for the event publishers. pika is mocked; no broker is needed."""

import json
import threading
import time
from unittest.mock import MagicMock, patch

import pika
import pytest

from fabric_inventory.messaging import bus as bus_module
from fabric_inventory.messaging.bus import LoggingPublisher, RabbitMQProducer, get_event_bus


@pytest.fixture(autouse=True)
def reset_singleton(monkeypatch):
    monkeypatch.setattr(bus_module, "_event_bus", None)


def test_disabled_bus_logs_only(monkeypatch):
    monkeypatch.setattr(bus_module.config, "EVENT_BUS_ENABLED", False)
    publisher = get_event_bus()
    assert isinstance(publisher, LoggingPublisher)
    assert get_event_bus() is publisher
    publisher.publish("fabric.low_stock", {"fabric_name": "silk"})


def test_enabled_bus_uses_rabbitmq(monkeypatch):
    monkeypatch.setattr(bus_module.config, "EVENT_BUS_ENABLED", True)
    assert isinstance(get_event_bus(), RabbitMQProducer)


@patch("fabric_inventory.messaging.bus.pika.BlockingConnection")
def test_publish_declares_exchange_and_sends_persistent_json(mock_connection):
    channel = MagicMock()
    mock_connection.return_value.channel.return_value = channel
    mock_connection.return_value.is_closed = False

    producer = RabbitMQProducer(exchange_name="events", host="localhost")
    producer.publish("order.reconciled", {"order_id": "1"})

    channel.exchange_declare.assert_called_once_with(exchange="events", exchange_type="topic", durable=True)
    kwargs = channel.basic_publish.call_args.kwargs
    assert kwargs["exchange"] == "events"
    assert kwargs["routing_key"] == "order.reconciled"
    assert json.loads(kwargs["body"]) == {"order_id": "1"}
    assert kwargs["properties"].delivery_mode == 2


class TestBrokerOutage:

    @patch("fabric_inventory.messaging.bus.time.sleep")
    @patch("fabric_inventory.messaging.bus.pika.BlockingConnection",
           side_effect=pika.exceptions.AMQPConnectionError("down"))
    def test_publish_fails_fast_without_raising(self, mock_connection, mock_sleep):
        producer = RabbitMQProducer(host="localhost")
        producer.publish("fabric.low_stock", {"fabric_name": "silk"})

        assert mock_connection.call_count == 1
        mock_sleep.assert_not_called()

    @patch("fabric_inventory.messaging.bus.pika.BlockingConnection",
           side_effect=pika.exceptions.AMQPConnectionError("down"))
    def test_no_reconnect_during_retry_interval(self, mock_connection):
        producer = RabbitMQProducer(host="localhost", retry_interval=60)
        for _ in range(3):
            producer.publish("fabric.low_stock", {"fabric_name": "silk"})
        assert mock_connection.call_count == 1

    @patch("fabric_inventory.messaging.bus.pika.BlockingConnection")
    def test_reconnects_after_retry_interval(self, mock_connection):
        mock_connection.side_effect = [pika.exceptions.AMQPConnectionError("down"), MagicMock()]
        producer = RabbitMQProducer(host="localhost", retry_interval=0)

        producer.publish("fabric.low_stock", {"fabric_name": "silk"})
        producer.publish("fabric.low_stock", {"fabric_name": "silk"})

        assert mock_connection.call_count == 2


@patch("fabric_inventory.messaging.bus.pika.BlockingConnection")
def test_concurrent_publishes_never_share_the_channel(mock_connection):
    in_use = threading.Event()
    overlaps = []

    def basic_publish(**kwargs):
        if in_use.is_set():
            overlaps.append(kwargs["routing_key"])
        in_use.set()
        time.sleep(0.01)
        in_use.clear()

    channel = MagicMock()
    channel.basic_publish.side_effect = basic_publish
    mock_connection.return_value.channel.return_value = channel
    mock_connection.return_value.is_closed = False
    producer = RabbitMQProducer(host="localhost")

    threads = [threading.Thread(target=producer.publish, args=(f"order.{n}", {"n": n})) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert channel.basic_publish.call_count == 8
    assert mock_connection.call_count == 1
