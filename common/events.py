"""Domain events published to RabbitMQ for the notification dispatcher."""
from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Dict

import pika
from circuitbreaker import CircuitBreakerError, circuit
from pika.exceptions import AMQPError

from .config import get_settings

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
BOOKING_CANCELLED = "booking_cancelled"
WAITLIST_PROMOTED = "waitlist_promoted"


def _default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


@circuit(failure_threshold=5, recovery_timeout=60)
def _send(host: str, queue: str, body: str) -> None:
    connection = pika.BlockingConnection(pika.ConnectionParameters(host=host))
    try:
        channel = connection.channel()
        channel.queue_declare(queue=queue, durable=True)
        channel.basic_publish(
            exchange="",
            routing_key=queue,
            body=body,
            properties=pika.BasicProperties(delivery_mode=2),
        )
    finally:
        connection.close()


def publish_event(event: str, payload: Dict[str, Any]) -> bool:
    """Publish ``event`` after the surrounding transaction committed.

    Delivery is best effort: failures are logged and reported as ``False``.
    """
    settings = get_settings()
    if not settings.events_enabled:
        logger.debug("Events disabled, dropping %s", event)
        return False

    body = json.dumps({"event": event, **payload}, default=_default)
    try:
        _send(settings.rabbitmq_host, settings.events_queue, body)
    except CircuitBreakerError:
        logger.warning("Event broker circuit open, dropping %s", event)
        return False
    except AMQPError:
        logger.exception("Failed to publish %s", event)
        return False
    logger.info("Published %s", event)
    return True
