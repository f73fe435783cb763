from decimal import Decimal

import pytest

from conftest import command
from storefront.common.errors import OrderNotFound
from storefront.inventory.service import ProductUpdate, update_product
from storefront.orders import engine
from storefront.orders.model import OrderStatus
from storefront.orders.queries import get_order, list_orders, serialize_order


async def _place(sessions, user_id, *lines):
    async with sessions() as s:
        return await engine.create_order(s, user_id, command(*lines))


async def test_get_order_joins_items_and_live_product(sessions, make_product):
    pid = await make_product(name="Bánh pía", price="65000", stock=10, image="pia.jpg")
    order = await _place(sessions, 1, (pid, 2))

    async with sessions() as s:
        await update_product(s, pid, ProductUpdate(name="Bánh pía Sóc Trăng", image="pia-v2.jpg"))

    async with sessions() as s:
        fetched = await get_order(s, order.id)
        data = serialize_order(fetched)

    assert data["id"] == order.id
    assert data["status"] == "pending"
    assert data["payment_method"] == "cod"
    assert data["item_count"] == 1
    item = data["items"][0]
    assert Decimal(item["price"]) == Decimal("65000")
    assert Decimal(item["subtotal"]) == Decimal("130000")
    assert item["product"]["name"] == "Bánh pía Sóc Trăng"
    assert item["product"]["image"] == "pia-v2.jpg"


async def test_get_order_missing(session):
    with pytest.raises(OrderNotFound):
        await get_order(session, 42)


async def test_list_orders_newest_first_with_total(sessions, make_product):
    pid = await make_product(stock=50)
    placed = [await _place(sessions, 1, (pid, 1)) for _ in range(3)]
    await _place(sessions, 2, (pid, 1))

    async with sessions() as s:
        first_page, total = await list_orders(s, user_id=1, page=1, limit=2)
        second_page, _ = await list_orders(s, user_id=1, page=2, limit=2)

    assert total == 3
    assert [o.id for o in first_page] == [placed[2].id, placed[1].id]
    assert [o.id for o in second_page] == [placed[0].id]
    assert all(o.user_id == 1 for o in first_page + second_page)


async def test_list_orders_by_status(sessions, make_product):
    pid = await make_product(stock=50)
    keep = await _place(sessions, 1, (pid, 1))
    moved = await _place(sessions, 2, (pid, 1))
    async with sessions() as s:
        await engine.update_status(s, moved.id, OrderStatus.PROCESSING)

    async with sessions() as s:
        pending, pending_total = await list_orders(s, status=OrderStatus.PENDING)
        processing, processing_total = await list_orders(s, status=OrderStatus.PROCESSING)
        everything, everything_total = await list_orders(s)

    assert (pending_total, [o.id for o in pending]) == (1, [keep.id])
    assert (processing_total, [o.id for o in processing]) == (1, [moved.id])
    assert everything_total == 2
    assert len(everything) == 2


async def test_list_orders_is_read_only(sessions, make_product, stock_of):
    pid = await make_product(stock=5)
    await _place(sessions, 1, (pid, 2))

    async with sessions() as s:
        await list_orders(s, user_id=1)
        await list_orders(s, user_id=1)

    assert await stock_of(pid) == 3
