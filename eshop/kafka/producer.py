import json
import logging
from kafka import KafkaProducer
from eshop.core.config import settings

logger = logging.getLogger(__name__)

_producer = None

def get_producer() -> KafkaProducer:
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def emit(topic: str, key: str, value: dict):
    """Best-effort publish: order and payment state never depend on the broker."""
    if not settings.KAFKA_ENABLED:
        return
    try:
        send(topic, key, value)
    except Exception:
        logger.exception("Failed to publish %s to %s", value.get("type"), topic)

def order_event(event_type: str, order, **fields) -> dict:
    ev = {
        "type": event_type,
        "order_id": order.id,
        "order_number": order.order_number,
        "user_email": order.user_email,
        "status": order.status,
        "payment_status": order.payment_status,
        "amount": order.total,
        "currency": order.currency,
    }
    ev.update(fields)
    return ev
