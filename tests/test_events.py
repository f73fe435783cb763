import json
from decimal import Decimal

from storefront.common.config import settings
from storefront.orders import events
from storefront.orders.model import Order, OrderItem, OrderStatus, PaymentMethod
from storefront.realtime.controller import format_event


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.published = []

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value):
        self.store[key] = value

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))


def _order() -> Order:
    order = Order(
        id=10,
        user_id=3,
        total=Decimal("190000"),
        status=OrderStatus.PENDING,
        shipping_address={},
        payment_method=PaymentMethod.COD,
    )
    order.items = [OrderItem(product_id=1, quantity=2, price=Decimal("95000"))]
    return order


async def test_stock_levels_refresh_cache_and_publish(monkeypatch):
    fake = FakeRedis()
    fake.store["product:1:data"] = json.dumps({"id": 1, "stock_quantity": 9, "in_stock": True})

    async def get_fake():
        return fake

    monkeypatch.setattr(events, "get_redis", get_fake)

    await events.publish_stock_levels({1: 0, 2: 4})

    assert fake.store["product:1:stock"] == 0
    assert fake.store["product:2:stock"] == 4
    cached = json.loads(fake.store["product:1:data"])
    assert cached["stock_quantity"] == 0
    assert cached["in_stock"] is False
    assert (settings.REDIS_EVENTS_CHANNEL, {"type": "stock", "product_id": 2, "stock": 4}) in fake.published


async def test_order_changed_publishes_to_kafka(monkeypatch):
    sent = []

    async def fake_publish(topic, key, payload):
        sent.append((topic, key, payload))

    monkeypatch.setattr(settings, "KAFKA_ENABLED", True)
    monkeypatch.setattr(events, "publish", fake_publish)

    await events.order_changed("order.created", _order(), {})

    assert len(sent) == 1
    topic, key, payload = sent[0]
    assert topic == settings.ORDER_EVENTS_TOPIC
    assert key == 10
    assert payload["event"] == "order.created"
    assert payload["total"] == "190000"
    assert payload["items"] == [{"product_id": 1, "quantity": 2, "price": "95000"}]


async def test_broker_failures_do_not_escape(monkeypatch):
    async def broken_redis():
        raise ConnectionError("redis down")

    async def broken_publish(topic, key, payload):
        raise ConnectionError("kafka down")

    monkeypatch.setattr(settings, "KAFKA_ENABLED", True)
    monkeypatch.setattr(events, "get_redis", broken_redis)
    monkeypatch.setattr(events, "publish", broken_publish)

    await events.order_changed("order.cancelled", _order(), {1: 5})


def test_format_event_uses_type_as_event_name():
    frame = format_event(json.dumps({"type": "stock", "product_id": 1, "stock": 2}))
    assert frame.startswith("event: stock\n")
    assert json.loads(frame.split("data: ", 1)[1]) == {"type": "stock", "product_id": 1, "stock": 2}

    assert format_event("7").startswith("event: message\n")
    assert format_event("not json").startswith("event: message\n")
