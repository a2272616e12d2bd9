from typing import Callable, Optional

import structlog

from orderpay.core.config import settings
from orderpay.db.models import Order, Payment
from orderpay.kafka import producer

logger = structlog.get_logger(__name__)

Publisher = Callable[[str, str, dict], None]


class EventEmitter:
    """Sends domain events after the owning transaction has committed.

    Delivery is best-effort: a broker failure is logged, it never undoes a
    committed order or payment change.
    """

    def __init__(self, publish: Optional[Publisher] = None,
                 order_topic: str = settings.TOPIC_ORDER_EVENTS,
                 payment_topic: str = settings.TOPIC_PAYMENT_EVENTS):
        self._publish = publish or producer.send
        self.order_topic = order_topic
        self.payment_topic = payment_topic

    def order_event(self, event_type: str, order: Order, **extra) -> None:
        value = {
            "type": event_type,
            "order_id": order.id,
            "order_number": order.order_number,
            "user_email": order.user_email,
            "amount_cents": order.total_cents,
            "order_status": _value(order.order_status),
            "payment_status": _value(order.payment_status),
            **extra,
        }
        self._send(self.order_topic, str(order.id), value)

    def payment_event(self, event_type: str, payment: Payment, **extra) -> None:
        order = payment.order
        value = {
            "type": event_type,
            "order_id": payment.order_id,
            "order_number": order.order_number if order is not None else None,
            "user_email": order.user_email if order is not None else None,
            "payment_id": payment.payment_id,
            "gateway": payment.gateway,
            "amount_cents": payment.amount_cents,
            "currency": payment.currency,
            "status": _value(payment.status),
            **extra,
        }
        self._send(self.payment_topic, str(payment.order_id), value)

    def _send(self, topic: str, key: str, value: dict) -> None:
        try:
            self._publish(topic, key, value)
        except Exception:
            logger.exception("event_publish_failed", topic=topic, key=key, event=value)


def _value(v):
    return getattr(v, "value", v)
