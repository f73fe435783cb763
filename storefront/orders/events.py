"""
Side effects that follow a committed order change.

They run after the transaction commits and are best effort: a Redis or Kafka
outage is logged and the committed order stands. Caches heal on the next read
from the database.
"""
import json
import logging
from typing import Dict

from ..common.config import settings
from ..common.kafka_client import publish
from ..common.redis_client import get_redis, product_key, stock_key
from .model import Order

_logger = logging.getLogger(__name__)


def order_event(event_type: str, order: Order) -> dict:
    return {
        "event": event_type,
        "order_id": order.id,
        "user_id": order.user_id,
        "status": order.status.value,
        "total": str(order.total),
        "payment_method": order.payment_method.value,
        "items": [
            {"product_id": item.product_id, "quantity": item.quantity, "price": str(item.price)}
            for item in order.items
        ],
    }


async def publish_stock_levels(levels: Dict[int, int]) -> None:
    """Refresh cached stock for each product and announce it on the events channel."""
    r = await get_redis()
    if r is None:
        return
    for product_id, stock in levels.items():
        await r.set(stock_key(product_id), stock)
        prod_raw = await r.get(product_key(product_id))
        if prod_raw:
            prod = json.loads(prod_raw)
            prod["stock_quantity"] = stock
            prod["in_stock"] = stock > 0
            await r.set(product_key(product_id), json.dumps(prod))
        await r.publish(
            settings.REDIS_EVENTS_CHANNEL,
            json.dumps({"type": "stock", "product_id": product_id, "stock": stock}),
        )
        _logger.info("Published stock update via Redis | product_id=%s stock=%s", product_id, stock)


async def publish_order_status(order: Order) -> None:
    r = await get_redis()
    if r is None:
        return
    await r.publish(
        settings.REDIS_EVENTS_CHANNEL,
        json.dumps({"type": "order", "order_id": order.id, "user_id": order.user_id, "status": order.status.value}),
    )


async def order_changed(event_type: str, order: Order, stock_levels: Dict[int, int]) -> None:
    try:
        if stock_levels:
            await publish_stock_levels(stock_levels)
        await publish_order_status(order)
    except Exception as e:
        _logger.warning("Redis notification failed | order_id=%s err=%s", order.id, e)

    if not settings.KAFKA_ENABLED:
        return
    try:
        await publish(settings.ORDER_EVENTS_TOPIC, order.id, order_event(event_type, order))
        _logger.info("Published order event | event=%s order_id=%s", event_type, order.id)
    except Exception as e:
        _logger.warning("Broker unavailable, order event dropped | event=%s order_id=%s err=%s", event_type, order.id, e)
