"""Best-effort reservation events published to RabbitMQ after commit."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

import pika
from pika.exceptions import AMQPError

from .config import Settings, get_settings
from .models import Reservation

logger = logging.getLogger(__name__)


def reservation_message(event: str, reservation: Reservation) -> Dict[str, Any]:
    return {
        "event": event,
        "reservation_id": reservation.id,
        "user_id": reservation.user_id,
        "room_id": reservation.room_id,
        "start_time": reservation.start_time.isoformat(),
        "end_time": reservation.end_time.isoformat(),
        "status": reservation.status.value,
        "total_price": str(reservation.total_price),
    }


class ReservationEventPublisher:
    """Sends one persistent message per committed reservation change.

    The reservation is already durable when this runs, so a broker outage is
    logged and otherwise ignored.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def publish(self, event: str, reservation: Reservation) -> None:
        message = reservation_message(event, reservation)
        try:
            connection = pika.BlockingConnection(pika.ConnectionParameters(host=self._settings.event_broker_host))
            try:
                channel = connection.channel()
                channel.queue_declare(queue=self._settings.event_queue, durable=True)
                channel.basic_publish(
                    exchange="",
                    routing_key=self._settings.event_queue,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(delivery_mode=2),
                )
            finally:
                connection.close()
        except (AMQPError, OSError) as exc:
            logger.error("Could not publish %s for reservation %s: %s", event, reservation.id, exc)
            return
        logger.info("Published %s for reservation %s", event, reservation.id)


def build_publisher(settings: Settings | None = None) -> ReservationEventPublisher | None:
    settings = settings or get_settings()
    if not settings.events_enabled:
        return None
    return ReservationEventPublisher(settings)
