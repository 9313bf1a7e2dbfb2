# ============================================================
# consumer.py — Notification worker
# ------------------------------------------------------------
# Consumes booking events from the "events" exchange and sends
# the renter a text message through the SMS / WhatsApp webhook.
# Without NOTIFY_WEBHOOK_URL the message is only logged.
# A delivery failure is logged; the booking is never affected.
# ============================================================
import json
import logging
import os
import time
from typing import Optional

import httpx
import pika

RABBIT = os.getenv("RABBITMQ_HOST", "rabbitmq")
WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")

log = logging.getLogger(__name__)

TEMPLATES = {
    "BookingConfirmed": "Booking {bookingCode} confirmed. Pickup on {pickupAt}. Total {totalAmount}, pay at pickup.",
    "BookingModified": "Booking {bookingCode} updated. Price difference: {priceDelta}.",
    "BookingActivated": "Enjoy your ride! Booking {bookingCode} is active until {returnAt}.",
    "CancellationRequested": "We received your cancellation request for booking {bookingCode}.",
    "BookingCancelled": "Booking {bookingCode} cancelled. Fee {cancellationFee}, refund {refundAmount}.",
    "CancellationRejected": "Cancellation of booking {bookingCode} was declined: {reason}",
    "CycleReturned": "Cycle for booking {bookingCode} returned. Late fee {lateFee}, damage {damageCost}.",
    "BookingCompleted": "Booking {bookingCode} completed. Thank you for riding with us!",
}


def render(event_type: str, payload: dict) -> Optional[str]:
    template = TEMPLATES.get(event_type)
    if template is None:
        return None
    try:
        return template.format(**payload)
    except KeyError as e:
        log.warning("[notification] %s payload lacks %s", event_type, e)
        return None


def deliver(text: str, payload: dict, client: Optional[httpx.Client] = None) -> bool:
    if not WEBHOOK_URL:
        log.info("[notification] mock sms -> user %s: %s", payload.get("userId"), text)
        return True
    body = {"userId": payload.get("userId"), "bookingCode": payload.get("bookingCode"), "message": text}
    try:
        if client is not None:
            r = client.post(WEBHOOK_URL, json=body)
        else:
            r = httpx.post(WEBHOOK_URL, json=body, timeout=5)
        r.raise_for_status()
    except httpx.HTTPError as e:
        log.warning("[notification] delivery for %s failed: %s", payload.get("bookingCode"), e)
        return False
    return True


def on_message(ch, method, properties, body):
    try:
        msg = json.loads(body)
    except ValueError:
        return
    if not isinstance(msg, dict) or not isinstance(msg.get("payload"), dict):
        log.warning("[notification] ignoring malformed message")
        return
    t = msg.get("type")
    p = msg["payload"]
    text = render(t, p)
    if text:
        deliver(text, p)


def start_consumer():
    while True:
        try:
            log.info("[notification] connecting to rabbitmq...")
            conn = pika.BlockingConnection(pika.ConnectionParameters(RABBIT, heartbeat=60))
            ch = conn.channel()
            ch.exchange_declare(exchange="events", exchange_type="fanout", durable=True)
            q = ch.queue_declare(queue="", exclusive=True).method.queue
            ch.queue_bind(exchange="events", queue=q)
            log.info("[notification] bound to 'events'. waiting...")
            ch.basic_consume(queue=q, on_message_callback=on_message, auto_ack=True)
            ch.start_consuming()
        except Exception as e:
            log.warning("[notification] error: %s, retry 5s", e)
            time.sleep(5)
