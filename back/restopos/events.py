"""
Live order events over Redis pub/sub.

Publishes to:
- orders:all - staff screens (kitchen, cashier, floor)
- orders:table:{table_id} - the customer page of that table
"""
import json
import logging

import redis

from .models import Order
from .settings import settings

logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


def get_redis() -> redis.Redis | None:
    global redis_client
    if not settings.redis_url:
        return None
    if redis_client is None:
        try:
            redis_client = redis.from_url(settings.redis_url)
            redis_client.ping()
        except redis.RedisError:
            redis_client = None
    return redis_client


def publish_order_update(event_type: str, order: Order, **extra) -> None:
    """Best-effort broadcast; order processing never depends on it."""
    r = get_redis()
    if not r:
        return

    payload = {
        "type": event_type,
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        **extra,
    }
    try:
        r.publish("orders:all", json.dumps(payload))
        if order.table_id is not None:
            r.publish(f"orders:table:{order.table_id}", json.dumps(payload))
    except redis.RedisError as e:
        logger.warning(f"Could not publish {event_type} for order #{order.order_number}: {e}")
