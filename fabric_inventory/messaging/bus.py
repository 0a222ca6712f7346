import json
import logging
import threading
import time

import pika

from .. import config

logger = logging.getLogger(__name__)


class LoggingPublisher:
    """
    Event publisher used when the RabbitMQ bus is disabled.
    Events only end up in the service log.
    """

    def publish(self, routing_key, message):
        logger.info("Event '%s': %s", routing_key, message)

    def close(self):
        pass


class RabbitMQProducer:
    """
    Publishes service events (low stock, order reconciled/skipped) to a
    RabbitMQ topic exchange.

    One producer is shared by all request threads, so every use of the
    pika connection happens under `self.lock`. The connection is opened on
    first publish with a single attempt; after a failure no reconnect is
    tried for `retry_interval` seconds and events are only logged.
    """

    def __init__(self, exchange_name=config.EVENTS_EXCHANGE, exchange_type="topic",
                 host=config.RABBITMQ_HOST, retry_interval=config.RABBITMQ_RETRY_INTERVAL):
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.host = host
        self.retry_interval = retry_interval
        self.connection = None
        self.channel = None
        self.lock = threading.Lock()
        self._retry_at = 0.0

    def connect(self):
        """Opens the connection and declares the exchange. Raises AMQPConnectionError when the broker is down."""
        credentials = pika.PlainCredentials(config.RABBITMQ_USER, config.RABBITMQ_PASSWORD)
        parameters = pika.ConnectionParameters(host=self.host, credentials=credentials)
        self.connection = pika.BlockingConnection(parameters)
        self.channel = self.connection.channel()

        # Declare the exchange (durable ensures it survives restarts)
        self.channel.exchange_declare(
            exchange=self.exchange_name,
            exchange_type=self.exchange_type,
            durable=True
        )
        logger.info("Connected to RabbitMQ exchange %s", self.exchange_name)

    def publish(self, routing_key, message):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g., 'fabric.low_stock', 'order.reconciled').
            message (dict): The data payload to send.
        """
        with self.lock:
            if not self.connection or self.connection.is_closed:
                if time.monotonic() < self._retry_at:
                    logger.warning("RabbitMQ unavailable, event '%s' not sent: %s", routing_key, message)
                    return
            try:
                # Reconnect if the connection was lost
                if not self.connection or self.connection.is_closed:
                    self.connect()

                self.channel.basic_publish(
                    exchange=self.exchange_name,
                    routing_key=routing_key,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Make message persistent
                        content_type='application/json'
                    )
                )
                logger.info("Sent event '%s': %s", routing_key, message)
            except pika.exceptions.AMQPError:
                # Events are notifications; a broker outage must not fail the request.
                self._retry_at = time.monotonic() + self.retry_interval
                self.connection = None
                self.channel = None
                logger.exception("Failed to publish event '%s': %s", routing_key, message)

    def close(self):
        """Closes the connection cleanly."""
        with self.lock:
            if self.connection and not self.connection.is_closed:
                self.connection.close()


_event_bus = None
_event_bus_lock = threading.Lock()


def get_event_bus():
    """FastAPI dependency returning the process-wide event publisher."""
    global _event_bus
    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = RabbitMQProducer() if config.EVENT_BUS_ENABLED else LoggingPublisher()
    return _event_bus
