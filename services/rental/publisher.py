# ============================================================
# publisher.py — Booking events on RabbitMQ
# ------------------------------------------------------------
# Events are broadcast on the "events" fanout exchange. The
# notification service turns them into SMS / WhatsApp messages.
#
# Publishing is fire-and-forget: notify() is called after the
# booking transaction has committed, and a broker failure is
# logged without touching the booking.
# ============================================================
import json
import logging

import pika

from .config import RABBIT_HOST

log = logging.getLogger(__name__)


class EventPublisher:
    def __init__(self, host: str = RABBIT_HOST):
        self.host = host

    def publish(self, event_type: str, payload: dict):
        conn = pika.BlockingConnection(pika.ConnectionParameters(host=self.host, heartbeat=60))
        try:
            ch = conn.channel()
            # durable=True to survive RabbitMQ restarts
            ch.exchange_declare(exchange="events", exchange_type="fanout", durable=True)
            message = {"type": event_type, "payload": payload}
            ch.basic_publish(exchange="events", routing_key="", body=json.dumps(message, default=str))
        finally:
            conn.close()
        log.info("[publisher] %s %s", event_type, payload)


def notify(publisher, event_type: str, payload: dict):
    if publisher is None:
        return
    try:
        publisher.publish(event_type, payload)
    except Exception as e:
        log.warning("[publisher] could not publish %s for %s: %s", event_type, payload, e)


def booking_payload(b) -> dict:
    return {
        "bookingId": b.id,
        "bookingCode": b.booking_code,
        "userId": b.user_id,
        "bookingStatus": b.booking_status,
        "pickupAt": b.pickup_at.isoformat(),
        "returnAt": b.return_at.isoformat(),
    }
