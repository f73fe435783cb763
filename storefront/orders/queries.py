from typing import List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..common.errors import OrderNotFound
from .model import Order, OrderItem, OrderStatus


def _with_items(stmt):
    return stmt.options(selectinload(Order.items).selectinload(OrderItem.product)).execution_options(
        populate_existing=True
    )


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_item(item: OrderItem) -> dict:
    product = item.product
    return {
        "id": item.id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "price": str(item.price),
        "subtotal": str(item.subtotal),
        # display fields are live, price/quantity above are what was sold
        "product": None if product is None else {
            "id": product.id,
            "name": product.name,
            "image": product.image,
            "price": str(product.price),
        },
    }


def serialize_order(order: Order, include_items: bool = True) -> dict:
    data = {
        "id": order.id,
        "user_id": order.user_id,
        "total": str(order.total),
        "status": order.status.value,
        "payment_method": order.payment_method.value,
        "shipping_address": dict(order.shipping_address),
        "notes": order.notes,
        "item_count": len(order.items),
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }
    if include_items:
        data["items"] = [serialize_item(item) for item in order.items]
    return data


async def get_order(session: AsyncSession, order_id: int) -> Order:
    stmt = _with_items(sa.select(Order).where(Order.id == order_id))
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def list_orders(
    session: AsyncSession,
    user_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Order], int]:
    """Orders matching the filters, newest first, plus the unpaged count."""
    conditions = []
    if user_id is not None:
        conditions.append(Order.user_id == user_id)
    if status is not None:
        conditions.append(Order.status == status)

    count_stmt = sa.select(sa.func.count(Order.id)).where(*conditions)
    total = int((await session.execute(count_stmt)).scalar() or 0)

    stmt = _with_items(
        sa.select(Order)
        .where(*conditions)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    orders = list((await session.execute(stmt)).scalars().all())
    return orders, total
