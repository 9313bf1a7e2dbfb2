# ============================================================
# consumer.py — Payment signals from RabbitMQ
# ------------------------------------------------------------
# Listens on the "events" exchange. The payment flow publishes
#   - PaymentCaptured : payment_status -> completed
#   - PaymentFailed   : payment_status -> failed
# Each message is applied once: its id is stored in the
# ProcessedMessage table and redeliveries are skipped.
# ============================================================
import json
import logging
import time

import pika
from sqlmodel import Session, select

from .clock import Clock
from .config import RABBIT_HOST
from .errors import RentalError
from .models import ProcessedMessage
from .state_machine import BookingEvent, transition_booking

log = logging.getLogger(__name__)

EVENTS = {
    "PaymentCaptured": BookingEvent.PAYMENT_CAPTURED,
    "PaymentFailed": BookingEvent.PAYMENT_FAILED,
}


def already_processed(s: Session, mid: str) -> bool:
    return s.exec(select(ProcessedMessage).where(ProcessedMessage.message_id == mid)).first() is not None


def mark_processed(s: Session, mid: str):
    s.add(ProcessedMessage(message_id=mid))
    s.commit()


def handle_message(s: Session, body: bytes, clock: Clock) -> bool:
    """Apply one broker message; True when it changed a booking."""
    try:
        msg = json.loads(body)
    except ValueError as e:
        log.warning("[consumer] bad payload: %s", e)
        return False

    if not isinstance(msg, dict):
        log.warning("[consumer] ignoring non-object message")
        return False
    etype = msg.get("type")
    event = EVENTS.get(etype)
    if event is None:
        return False
    payload = msg.get("payload")
    if not isinstance(payload, dict) or not payload.get("bookingId"):
        log.info("[consumer] skipping %s (no bookingId)", etype)
        return False
    try:
        booking_id = int(payload["bookingId"])
    except (TypeError, ValueError):
        log.warning("[consumer] skipping %s (bad bookingId %r)", etype, payload["bookingId"])
        return False

    # messageId when given, otherwise "Type:bookingId"
    message_id = msg.get("messageId") or f"{etype}:{booking_id}"
    if already_processed(s, message_id):
        log.info("[consumer] %s already processed, skipping", message_id)
        return False

    changed = True
    try:
        transition_booking(s, booking_id, event, clock.now())
    except RentalError as e:
        log.warning("[consumer] %s for booking %s refused: %s %s", etype, booking_id, e.code, e.detail)
        changed = False
    mark_processed(s, message_id)
    return changed


def start_consumer(engine, clock: Clock = None):
    clock = clock or Clock()

    def on_message(ch, method, properties, body):
        try:
            with Session(engine) as s:
                handle_message(s, body, clock)
        except Exception:
            # keep consuming after a bad message
            log.exception("[consumer] failed to handle message")

    attempt = 0
    while True:
        try:
            log.info("[consumer] connecting to rabbitmq at %s...", RABBIT_HOST)
            conn = pika.BlockingConnection(pika.ConnectionParameters(host=RABBIT_HOST, heartbeat=60))
            ch = conn.channel()
            ch.exchange_declare(exchange="events", exchange_type="fanout", durable=True)
            q = ch.queue_declare(queue="", exclusive=True).method.queue
            ch.queue_bind(exchange="events", queue=q)
            log.info("[consumer] bound to exchange 'events' queue='%s'", q)
            attempt = 0
            ch.basic_consume(queue=q, on_message_callback=on_message, auto_ack=True)
            ch.start_consuming()
        except Exception as e:
            attempt += 1
            wait = min(5 * attempt, 30)
            log.warning("[consumer] connection error: %s, retrying in %ss", e, wait)
            time.sleep(wait)
