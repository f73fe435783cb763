"""
Order transaction engine.

Every operation here runs as one transaction on the session it is handed and
either applies completely or not at all. Concurrency control is left to the
database: product rows are read ``FOR UPDATE`` (SQLite serialises writers with
``BEGIN IMMEDIATE``) and every write is a compare-and-set, so a stale check can
never push stock below zero or restore stock twice.
"""
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..common.auth import Caller
from ..common.database import transaction
from ..common.errors import Forbidden, InsufficientStock, InvalidTransition, OrderNotFound, ProductNotFound
from ..inventory import ledger
from ..inventory.model import Product
from .model import Order, OrderItem, OrderStatus
from .schemas import CreateOrderCommand, OrderLine
from .status import ensure_transition

_logger = logging.getLogger(__name__)


def _aggregate_demand(lines: Iterable[OrderLine]) -> Dict[int, int]:
    demand: Dict[int, int] = OrderedDict()
    for line in lines:
        demand[line.product_id] = demand.get(line.product_id, 0) + line.quantity
    return demand


async def _lock_products(session: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    # ascending id order keeps lock acquisition consistent across transactions
    stmt = (
        sa.select(Product)
        .where(Product.id.in_(sorted(product_ids)))
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return {p.id: p for p in res.scalars().all()}


async def _lock_order(session: AsyncSession, order_id: int) -> Order:
    stmt = (
        sa.select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def _compare_and_set_status(
    session: AsyncSession, order: Order, expected: OrderStatus, new_status: OrderStatus
) -> None:
    stmt = (
        sa.update(Order)
        .where(Order.id == order.id, Order.status == expected)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if (res.rowcount or 0) == 0:
        # someone else moved the order since we read it
        current = (await session.execute(sa.select(Order.status).where(Order.id == order.id))).scalar_one()
        raise InvalidTransition(OrderStatus(current).value, new_status.value)
    await session.refresh(order, ["status", "updated_at"])


async def create_order(session: AsyncSession, user_id: int, command: CreateOrderCommand) -> Order:
    """Place an order for ``user_id``.

    Prices come from the product rows read inside the transaction; the total
    is computed here and every line item keeps the unit price it was sold at.
    Raises ProductNotFound or InsufficientStock with nothing written.
    """
    demand = _aggregate_demand(command.items)

    async with transaction(session):
        products = await _lock_products(session, demand.keys())

        for product_id, quantity in demand.items():
            product = products.get(product_id)
            if product is None or not product.is_active:
                raise ProductNotFound(product_id)
            if product.stock_quantity < quantity:
                raise InsufficientStock(product_id, product.name, quantity, product.stock_quantity)

        total = sum(
            (products[line.product_id].price * line.quantity for line in command.items),
            Decimal("0"),
        )

        order = Order(
            user_id=user_id,
            total=total,
            status=OrderStatus.PENDING,
            shipping_address=command.shipping_address.snapshot(),
            payment_method=command.payment_method,
            notes=command.notes,
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                price=products[line.product_id].price,
            )
            for line in command.items
        ]
        session.add(order)
        await session.flush()

        for product_id, quantity in demand.items():
            await ledger.decrement(session, product_id, quantity)

    _logger.info(
        "Order created | order_id=%s user_id=%s items=%s total=%s",
        order.id, user_id, len(order.items), order.total,
    )
    return order


async def _cancel_locked(session: AsyncSession, order: Order) -> None:
    ensure_transition(order.status, OrderStatus.CANCELLED)
    await _compare_and_set_status(session, order, OrderStatus.PENDING, OrderStatus.CANCELLED)
    for item in order.items:
        await ledger.increment(session, item.product_id, item.quantity)


async def cancel_order(session: AsyncSession, order_id: int, caller: Caller) -> Order:
    """Cancel a pending order and put its stock back.

    The owner may cancel their own order; admins may cancel any order.
    """
    async with transaction(session):
        order = await _lock_order(session, order_id)
        if order.user_id != caller.id and not caller.is_admin:
            raise Forbidden("You can only cancel your own orders")
        await _cancel_locked(session, order)

    _logger.info("Order cancelled | order_id=%s by_user=%s items=%s", order.id, caller.id, len(order.items))
    return order


async def update_status(session: AsyncSession, order_id: int, new_status: OrderStatus) -> Order:
    async with transaction(session):
        order = await _lock_order(session, order_id)
        previous = order.status
        if new_status is OrderStatus.CANCELLED:
            await _cancel_locked(session, order)
        else:
            ensure_transition(previous, new_status)
            await _compare_and_set_status(session, order, previous, new_status)

    _logger.info("Order status changed | order_id=%s from=%s to=%s", order.id, previous.value, new_status.value)
    return order
